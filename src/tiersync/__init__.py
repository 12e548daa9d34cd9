"""
tiersync

Keeps local customer projections in step with Stripe webhook events.
"""

__version__ = "0.1.0"
