"""
Event Authenticator

Verifies Stripe webhook deliveries before anything else looks at them.
"""

import time
from typing import Callable

import stripe
import structlog
from pydantic import ValidationError

from tiersync.core.errors import (
    InvalidSignature,
    MalformedEnvelope,
    PayloadTooLarge,
    StaleTimestamp,
)
from tiersync.core.models import WebhookEvent

logger = structlog.get_logger()

DEFAULT_MAX_BODY_BYTES = 65536
DEFAULT_TOLERANCE_SECONDS = 300


def _header_timestamp(header: str) -> int:
    """
    Extract the ``t=`` element of a Stripe-Signature header.

    Elements are split on the first two ``=`` the way the Stripe SDK splits
    them, so any header the SDK accepted parses here too.
    """
    for item in header.split(","):
        parts = item.split("=", 2)
        if parts[0] == "t" and len(parts) > 1:
            return int(parts[1])
    raise ValueError("no timestamp in signature header")


class EventAuthenticator:
    """
    Checks size, signature and timestamp of a raw webhook body.

    The signature is checked before the timestamp, so a tampered body is
    always reported as ``InvalidSignature``.
    """

    def __init__(
        self,
        secret: str,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        clock: Callable[[], float] = time.time,
    ):
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds
        self.max_body_bytes = max_body_bytes
        self.clock = clock

    def verify(self, raw_body: bytes, signature_header: str | None) -> WebhookEvent:
        """Verify a delivery and parse its event envelope."""
        if len(raw_body) > self.max_body_bytes:
            raise PayloadTooLarge(
                f"body of {len(raw_body)} bytes exceeds {self.max_body_bytes}",
                size=len(raw_body),
            )

        if not signature_header:
            raise InvalidSignature("missing Stripe-Signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidSignature("body is not valid UTF-8") from e

        try:
            # tolerance=None: the timestamp window is checked separately below
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.secret, tolerance=None
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e

        try:
            timestamp = _header_timestamp(signature_header)
        except ValueError as e:
            raise InvalidSignature(f"unreadable signature timestamp: {e}") from e

        skew = abs(self.clock() - timestamp)
        if skew > self.tolerance_seconds:
            raise StaleTimestamp(
                f"timestamp outside the tolerance zone ({timestamp})",
                header_timestamp=timestamp,
            )

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as e:
            raise MalformedEnvelope(f"not a Stripe event: {e.error_count()} errors") from e

        logger.debug("Webhook verified", event_id=event.id, event_type=event.type)
        return event
