"""Core domain models and error taxonomy."""

from .errors import (
    AuthError,
    InvalidSignature,
    InvalidTierMetadata,
    MalformedEnvelope,
    MalformedPayload,
    PayloadTooLarge,
    PayloadUnreadable,
    ProjectionConflict,
    ProjectionNotFound,
    StaleTimestamp,
    StorageError,
    SyncError,
    UnsupportedEventError,
    UserNotFound,
)
from .models import (
    CustomerProjection,
    CustomerRecord,
    ReconciliationAction,
    ReconciliationResult,
    ResultStatus,
    SubscriptionRecord,
    WebhookEvent,
)

__all__ = [
    "AuthError",
    "InvalidSignature",
    "InvalidTierMetadata",
    "MalformedEnvelope",
    "MalformedPayload",
    "PayloadTooLarge",
    "PayloadUnreadable",
    "ProjectionConflict",
    "ProjectionNotFound",
    "StaleTimestamp",
    "StorageError",
    "SyncError",
    "UnsupportedEventError",
    "UserNotFound",
    "CustomerProjection",
    "CustomerRecord",
    "ReconciliationAction",
    "ReconciliationResult",
    "ResultStatus",
    "SubscriptionRecord",
    "WebhookEvent",
]
