"""Collaborator protocols for subscription state and usage counts.

The gate never fetches tenant data itself; it asks a SubscriptionSource
and a UsageSource. Real deployments back these with their billing
database and counter store. Built-in backends: the in-memory sources in
``plan_gate.sources.memory`` (development/testing and the CLI).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from plan_gate.models import SubscriptionState, UsageSnapshot


class SourceUnavailableError(Exception):
    """Raised when a source cannot supply data for a tenant.

    Callers must treat this as a denial (fail closed).
    """


@runtime_checkable
class SubscriptionSource(Protocol):
    """Protocol for subscription state backends."""

    def get_subscription(self, tenant_id: str) -> SubscriptionState:
        """Return the tenant's current subscription state.

        Raises:
            SourceUnavailableError: If the state cannot be fetched.
        """
        ...


@runtime_checkable
class UsageSource(Protocol):
    """Protocol for usage counter backends.

    Implementations are responsible for atomicity if strict caps are
    required; the gate only reads a snapshot.
    """

    def get_usage(self, tenant_id: str) -> UsageSnapshot:
        """Return consumption in the tenant's current period.

        Raises:
            SourceUnavailableError: If the counts cannot be fetched.
        """
        ...


def build_sources(config: dict[str, Any]) -> tuple[SubscriptionSource, UsageSource]:
    """Build a subscription source and usage source from a config dict.

    Supported keys:
    - type: ``"memory"`` (default), in-memory sources
    - tenants: path to a tenants YAML file to preload (optional)
    """
    from plan_gate.sources.memory import (
        InMemoryUsageStore,
        StaticSubscriptionSource,
        load_tenants,
    )

    source_type = config.get("type", "memory")

    if source_type == "memory":
        tenants_path = config.get("tenants")
        if tenants_path is not None:
            return load_tenants(tenants_path)
        return StaticSubscriptionSource(), InMemoryUsageStore()

    raise SourceUnavailableError(
        f"Unknown source type: {source_type}. Available: 'memory'."
    )
