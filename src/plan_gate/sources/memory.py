"""In-memory subscription and usage sources.

Suitable for development, tests and the CLI. State is held in dicts and
guarded by a lock, so a single process can record usage from several
threads. Nothing is persisted.

Tenants can be preloaded from YAML::

    tenants:
      - id: salon-a
        plan: starter
        status: active
        usage:
          clients: 42
      - id: salon-b
        status: trial
        trial_ends_at: 2026-11-01T00:00:00Z
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from plan_gate.models import SubscriptionState, SubscriptionStatus, UsageSnapshot
from plan_gate.sources.base import SourceUnavailableError


class StaticSubscriptionSource:
    """Subscription states keyed by tenant id."""

    def __init__(self, subscriptions: dict[str, SubscriptionState] | None = None) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, SubscriptionState] = dict(subscriptions or {})

    @property
    def tenants(self) -> list[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def get_subscription(self, tenant_id: str) -> SubscriptionState:
        with self._lock:
            state = self._subscriptions.get(tenant_id)
        if state is None:
            raise SourceUnavailableError(f"No subscription on record for tenant '{tenant_id}'")
        return state

    def set_subscription(
        self,
        tenant_id: str,
        status: SubscriptionStatus | str,
        plan_id: str | None = None,
        trial_ends_at: datetime | None = None,
    ) -> SubscriptionState:
        """Record a billing event (signup, upgrade, cancellation...)."""
        state = SubscriptionState(
            plan_id=plan_id,
            status=SubscriptionStatus(status),
            trial_ends_at=trial_ends_at,
        )
        with self._lock:
            self._subscriptions[tenant_id] = state
        return state


class InMemoryUsageStore:
    """Per-tenant usage counters for the current period.

    ``record`` is the increment performed by the gated action itself, after
    ``FeatureGate.enforce`` allowed it. It does not check caps.
    """

    def __init__(self, counts: dict[str, dict[str, int]] | None = None) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, dict[str, int]] = {
            tenant: dict(per_feature) for tenant, per_feature in (counts or {}).items()
        }

    def get_usage(self, tenant_id: str) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(counts=dict(self._counts.get(tenant_id, {})))

    def record(self, tenant_id: str, feature_id: str, amount: int = 1) -> int:
        """Add ``amount`` to a tenant's counter and return the new count."""
        if amount < 0:
            raise ValueError(f"amount must be non-negative, got {amount}")
        with self._lock:
            per_feature = self._counts.setdefault(tenant_id, {})
            per_feature[feature_id] = per_feature.get(feature_id, 0) + amount
            return per_feature[feature_id]

    def set_count(self, tenant_id: str, feature_id: str, count: int) -> None:
        if count < 0:
            raise ValueError(f"count must be non-negative, got {count}")
        with self._lock:
            self._counts.setdefault(tenant_id, {})[feature_id] = count

    def reset(self, tenant_id: str) -> None:
        """Clear a tenant's counters at period rollover."""
        with self._lock:
            self._counts.pop(tenant_id, None)


def load_tenants(path: str | Path) -> tuple[StaticSubscriptionSource, InMemoryUsageStore]:
    """Load tenant fixtures from a YAML file into in-memory sources.

    Raises:
        SourceUnavailableError: If the file cannot be read, parsed, or validated.
    """
    path = Path(path)
    if not path.is_file():
        raise SourceUnavailableError(f"Tenants file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SourceUnavailableError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict) or "tenants" not in raw:
        raise SourceUnavailableError(f"Tenants file must have a top-level 'tenants' key: {path}")

    raw_tenants: Any = raw["tenants"]
    if not isinstance(raw_tenants, list):
        raise SourceUnavailableError(f"'tenants' must be a list: {path}")

    subscriptions: dict[str, SubscriptionState] = {}
    counts: dict[str, dict[str, int]] = {}
    for i, entry in enumerate(raw_tenants):
        if not isinstance(entry, dict) or not entry.get("id"):
            raise SourceUnavailableError(f"Tenant at index {i} in {path} must have an 'id'")
        tenant_id = str(entry["id"])
        if tenant_id in subscriptions:
            raise SourceUnavailableError(f"Duplicate tenant id '{tenant_id}' in {path}")
        try:
            subscriptions[tenant_id] = SubscriptionState(
                plan_id=entry.get("plan"),
                status=entry.get("status", "active"),
                trial_ends_at=entry.get("trial_ends_at"),
            )
            counts[tenant_id] = UsageSnapshot(counts=entry.get("usage") or {}).counts
        except ValidationError as e:
            raise SourceUnavailableError(f"Invalid tenant '{tenant_id}' in {path}: {e}") from e

    return StaticSubscriptionSource(subscriptions), InMemoryUsageStore(counts)
