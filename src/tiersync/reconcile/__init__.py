"""Reconciliation core: tier resolution and projection transitions."""

from .projector import DISPATCH, EntityProjector, LookupKey
from .tier import resolve_tier

__all__ = ["DISPATCH", "EntityProjector", "LookupKey", "resolve_tier"]
