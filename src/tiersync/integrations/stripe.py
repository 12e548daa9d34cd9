"""
Stripe Integration

Direct Stripe API access used for manual reconciliation of missed events.
"""

import stripe
import structlog
from pydantic import ValidationError

from tiersync.config import settings
from tiersync.core.errors import MalformedEnvelope
from tiersync.core.models import WebhookEvent

logger = structlog.get_logger()

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key


# ══════════════════════════════════════════════════════════════
# Stripe Client
# ══════════════════════════════════════════════════════════════


class StripeClient:
    """
    Low-level Stripe API client.

    Handles direct Stripe API interactions.
    """

    @staticmethod
    async def retrieve_event(event_id: str) -> WebhookEvent | None:
        """Fetch an event by id. Returns None if Stripe does not know it."""
        try:
            event = stripe.Event.retrieve(event_id)
        except stripe.InvalidRequestError:
            logger.warning("Stripe event not found", event_id=event_id)
            return None
        except stripe.StripeError as e:
            logger.error("Failed to retrieve Stripe event", event_id=event_id, error=str(e))
            raise

        try:
            return WebhookEvent.model_validate(event.to_dict())
        except ValidationError as e:
            raise MalformedEnvelope(f"event {event_id} is not a Stripe event envelope") from e
