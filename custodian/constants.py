"""Infrastructure and technical constants."""

from typing import Final

# Technical configuration constants
DEFAULT_PORT: Final = 8000
DEFAULT_METRICS_PORT: Final = 9464
ACTOR_HEADER: Final = "X-Actor-Id"
REQUEST_ID_HEADER: Final = "X-Request-ID"

# Audit log column limits
AUDIT_ACTION_MAX_LENGTH: Final = 80
AUDIT_USER_MAX_LENGTH: Final = 100
AUDIT_IP_MAX_LENGTH: Final = 45
AUDIT_DETAILS_MAX_LENGTH: Final = 65000
