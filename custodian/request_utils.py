"""Utilities for handling FastAPI requests."""

from fastapi import Request


def get_client_ip(request: Request) -> str | None:
    """Extract the client IP address with proxy support.

    Checks ``X-Forwarded-For`` (first hop), then ``X-Real-IP``, then the
    socket peer. Returns None when none of them is available.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return str(request.client.host)

    return None
