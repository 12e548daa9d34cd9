"""Inbound Stripe webhook handling."""

from .authenticator import EventAuthenticator
from .classifier import classify
from .service import WebhookService

__all__ = ["EventAuthenticator", "classify", "WebhookService"]
