import socket
from contextlib import asynccontextmanager
from typing import Final

from fastapi import FastAPI

from .config import settings
from .infrastructure.database.database import get_main_engine, init_db
from .logging_config import get_logger, setup_logging
from .logging_utils import log_system_info
from .middleware import log_requests_middleware
from .presentation.api_routes import api_router
from .presentation.error_handlers import register_error_handlers
from .telemetry import setup_telemetry

DESCRIPTION: Final = """
**Custodian** - archival and emergency recovery for the school portal.

## Core Features

- **Account archive** - snapshot an account and remove it together with the
  rows that depend on it, one transaction per account
- **Preview and restore** - classify records, then restore only what is
  recoverable at the moment of the restore
- **Soft delete** - flag students, activities and attendance records as removed
- **Identifier reconciliation** - keep role identifiers consistent between the
  account and its role table

## Schema Discovery

Tables and columns are discovered at runtime. A missing table or column is
reported as a `503` problem naming what is missing.

## Authentication

Authorization happens upstream. The acting administrator is passed in the
`X-Actor-Id` header; requests without it are rejected with `401`.
""".strip()


def _host_address() -> tuple[str, str]:
    hostname = socket.gethostname()
    try:
        return hostname, socket.gethostbyname(hostname)
    except OSError:
        return hostname, "unknown"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    logger = get_logger(__name__)

    # Only the audit log table is owned here; portal tables are introspected
    init_db(get_main_engine())
    logger.info("Audit log table ready", table=settings.audit_table)

    hostname, ip_addr = _host_address()
    log_system_info(hostname, ip_addr, settings.debug)

    yield

    logger.info("Application shutdown completed")


app: Final = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
    description=DESCRIPTION,
    openapi_tags=[
        {
            "name": "archive",
            "description": "Archive accounts and reconcile their identifiers",
        },
        {
            "name": "recovery",
            "description": "Preview, restore, soft delete and summarize removals",
        },
    ],
)

setup_telemetry(app)
app.middleware("http")(log_requests_middleware)
register_error_handlers(app)


@app.get("/health", tags=["recovery"], summary="Liveness check")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(api_router)
