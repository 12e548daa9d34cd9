"""
Tier Resolver

Derives the integer service tier from a subscription's price metadata.
"""

import re

from tiersync.core.errors import InvalidTierMetadata
from tiersync.core.models import SubscriptionRecord

TIER_METADATA_KEY = "tier"

# customers.tier is a Postgres INTEGER
MAX_TIER = 2**31 - 1

_INTEGER = re.compile(r"[+-]?[0-9]+")


def resolve_tier(subscription: SubscriptionRecord | None) -> int:
    """
    Resolve the tier of ``subscription``.

    No subscription means tier 0. Otherwise the first line item's price must
    carry a base-10 integer in ``0..MAX_TIER`` under ``tier``; anything else raises
    ``InvalidTierMetadata`` rather than falling back to 0.
    """
    if subscription is None:
        return 0

    if not subscription.items.data:
        raise InvalidTierMetadata(
            "subscription has no line items",
            subscription_id=subscription.id,
        )

    raw = subscription.items.data[0].price.metadata.get(TIER_METADATA_KEY)
    if not raw:
        raise InvalidTierMetadata(
            "price metadata has no tier",
            subscription_id=subscription.id,
        )

    if not _INTEGER.fullmatch(raw):
        raise InvalidTierMetadata(
            f"tier metadata is not an integer: {raw!r}",
            subscription_id=subscription.id,
        )

    tier = int(raw)
    if tier < 0:
        raise InvalidTierMetadata(
            f"tier metadata is negative: {tier}",
            subscription_id=subscription.id,
        )
    if tier > MAX_TIER:
        raise InvalidTierMetadata(
            f"tier metadata exceeds {MAX_TIER}: {tier}",
            subscription_id=subscription.id,
        )
    return tier
