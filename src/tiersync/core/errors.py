"""
Error Taxonomy

Every failure the webhook pipeline can surface. Each class carries the HTTP
status the API answers with and a stable ``code`` used in error bodies.
"""


class SyncError(Exception):
    """Base class for reconciliation failures."""

    status_code: int = 500
    code: str = "sync_error"

    def __init__(self, message: str = "", **context: object):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context
        self.correlation_id: str | None = None

    def to_detail(self) -> dict[str, str | None]:
        """Body returned to the HTTP caller."""
        return {
            "error": self.code,
            "message": self.message,
            "correlation_id": self.correlation_id,
        }


# ══════════════════════════════════════════════════════════════
# Authentication
# ══════════════════════════════════════════════════════════════


class AuthError(SyncError):
    """Inbound payload failed integrity or origin checks."""

    status_code = 400
    code = "auth_error"


class InvalidSignature(AuthError):
    code = "invalid_signature"


class StaleTimestamp(AuthError):
    code = "stale_timestamp"


class MalformedEnvelope(AuthError):
    """Verified body is not a Stripe event envelope."""

    code = "malformed_envelope"


class PayloadTooLarge(AuthError):
    status_code = 503
    code = "payload_too_large"


class PayloadUnreadable(AuthError):
    status_code = 503
    code = "payload_unreadable"


# ══════════════════════════════════════════════════════════════
# Classification & Projection
# ══════════════════════════════════════════════════════════════


class UnsupportedEventError(SyncError):
    code = "unsupported_event"


class MalformedPayload(SyncError):
    """Event data object does not decode to the expected record."""

    code = "malformed_payload"


class UserNotFound(SyncError):
    code = "user_not_found"


class ProjectionNotFound(SyncError):
    code = "projection_not_found"


class InvalidTierMetadata(SyncError):
    code = "invalid_tier_metadata"


class ProjectionConflict(SyncError):
    """Uniqueness constraint rejected a new projection."""

    status_code = 409
    code = "projection_conflict"


class StorageError(SyncError):
    code = "storage_error"
