"""
Error types and message constants for the metrics engine.

Rank computation never raises (failures degrade to rank 0). Metrics
computation raises PartnerNotFoundError for a partner that does not exist;
bulk recalculation catches and counts it.
"""

# Partner errors
ERROR_PARTNER_NOT_FOUND = "Partner not found"
ERROR_PARTNER_IS_ADMIN = "Partner is an administrative account"

# Store errors
ERROR_KV_UNAVAILABLE = "Key-value store unavailable"
ERROR_KV_NOT_CONFIGURED = "Key-value store is not configured"

# Generic errors
ERROR_UNAUTHORIZED = "Unauthorized"
ERROR_INTERNAL = "Internal server error"


class MetricsError(Exception):
    """Base class for metrics engine errors."""


class PartnerNotFoundError(MetricsError):
    """Raised when metrics are requested for a partner with no stored record."""

    def __init__(self, partner_id: str):
        self.partner_id = partner_id
        super().__init__(f"{ERROR_PARTNER_NOT_FOUND}: {partner_id}")


class KVStoreError(MetricsError):
    """Backend failure while talking to the key-value store."""

    def __init__(self, operation: str, key: str, cause: Exception | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f"{ERROR_KV_UNAVAILABLE}: {operation} {key!r}"
        if cause is not None:
            detail = f"{detail} ({type(cause).__name__}: {cause})"
        super().__init__(detail)


__all__ = [
    "ERROR_PARTNER_NOT_FOUND",
    "ERROR_PARTNER_IS_ADMIN",
    "ERROR_KV_UNAVAILABLE",
    "ERROR_KV_NOT_CONFIGURED",
    "ERROR_UNAUTHORIZED",
    "ERROR_INTERNAL",
    "MetricsError",
    "PartnerNotFoundError",
    "KVStoreError",
]
