"""External service integrations."""

from .stripe import StripeClient

__all__ = ["StripeClient"]
