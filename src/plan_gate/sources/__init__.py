"""Subscription and usage sources consumed by the feature gate."""

from plan_gate.sources.base import (
    SourceUnavailableError,
    SubscriptionSource,
    UsageSource,
    build_sources,
)
from plan_gate.sources.memory import InMemoryUsageStore, StaticSubscriptionSource, load_tenants

__all__ = [
    "InMemoryUsageStore",
    "SourceUnavailableError",
    "StaticSubscriptionSource",
    "SubscriptionSource",
    "UsageSource",
    "build_sources",
    "load_tenants",
]
