"""
Event Classifier

Maps Stripe event type strings onto the closed set of reconciliation actions.
"""

from tiersync.core.errors import UnsupportedEventError
from tiersync.core.models import ReconciliationAction, WebhookEvent


def classify(event: WebhookEvent) -> ReconciliationAction:
    """Select the reconciliation action for ``event``."""
    try:
        return ReconciliationAction(event.type)
    except ValueError:
        raise UnsupportedEventError(
            f"unhandled stripe event type: {event.type}",
            event_id=event.id,
            event_type=event.type,
        ) from None
