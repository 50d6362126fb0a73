"""Core data models for plan-gate.

Defines the schemas for:
- Feature registry entries (what features exist)
- Plan catalog entries (what each plan offers)
- Subscription state and usage snapshots (per-tenant inputs)
- Access decisions (resolver output)
- Gate results, denials and warnings (enforcement output)
- Audit events (what was checked)
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

# --- Enums ---


class SubscriptionStatus(enum.StrEnum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class DenialCode(enum.StrEnum):
    FEATURE_DISABLED = "feature_disabled"
    LIMIT_REACHED = "limit_reached"


class UsageStatus(enum.StrEnum):
    DISABLED = "disabled"
    UNLIMITED = "unlimited"
    OK = "ok"
    NEAR_LIMIT = "near_limit"
    AT_LIMIT = "at_limit"


# --- Feature Registry Schema ---


class FeatureDefinition(BaseModel):
    """A feature known to the platform.

    Loaded from the registry YAML. Plans reference features by ``id``.
    """

    id: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    label: str
    description: str = ""
    category: str | None = None


class FeatureCategory(BaseModel):
    """A display grouping of features."""

    id: str
    label: str
    features: list[str] = Field(default_factory=list)


# --- Plan Catalog Schema ---


class FeatureRule(BaseModel):
    """Availability of one feature under one plan.

    ``cap`` of None means unlimited. ``cap`` is ignored when the
    feature is not enabled.
    """

    model_config = {"frozen": True}

    feature_id: str
    enabled: bool
    cap: int | None = None

    @field_validator("cap", mode="before")
    @classmethod
    def _cap_is_whole(cls, value: Any) -> Any:
        if isinstance(value, bool) or (value is not None and not isinstance(value, int)):
            raise ValueError(f"cap must be null or a non-negative integer, got {value!r}")
        if value is not None and value < 0:
            raise ValueError(f"cap must be non-negative, got {value}")
        return value


class PlanDefinition(BaseModel):
    """A subscription tier and the feature rules it bundles.

    Loaded from a plan YAML file. Prices are in minor currency units.
    """

    model_config = {"frozen": True}

    id: str = Field(..., pattern=r"^[a-z][a-z0-9_-]*$")
    name: str
    description: str = ""
    price_monthly: int = Field(0, ge=0)
    price_yearly: int = Field(0, ge=0)
    sort_order: int = 0
    features: dict[str, FeatureRule] = Field(default_factory=dict)


# --- Tenant inputs ---


class SubscriptionState(BaseModel):
    """A tenant's current subscription, as seen by the gate."""

    plan_id: str | None = None
    status: SubscriptionStatus
    trial_ends_at: datetime | None = None


class UsageSnapshot(BaseModel):
    """Per-feature consumption in the tenant's current period."""

    counts: dict[str, int] = Field(default_factory=dict)

    def get(self, feature_id: str) -> int:
        """Return usage for a feature; missing or negative counts read as 0."""
        return max(0, self.counts.get(feature_id, 0))


# --- Decision (resolver output) ---


class FeatureAccessDecision(BaseModel):
    """The resolver's verdict for one tenant and feature at one instant.

    Derived, never persisted.
    """

    model_config = {"frozen": True}

    feature_id: str
    enabled: bool
    unlimited: bool
    usage: int = 0
    limit: int | None = None
    remaining: int | None = None
    can_consume: bool
    near_limit: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# --- Enforcement output ---


class UpgradeAction(BaseModel):
    """The next step offered to a user who hit a gate."""

    label: str = "Upgrade"
    url: str
    suggested_plan: str | None = None


class DenialReason(BaseModel):
    """Why an action was blocked, with enough detail to display directly."""

    code: DenialCode
    feature_id: str
    label: str
    message: str
    usage: int = 0
    limit: int | None = None
    upgrade: UpgradeAction


class LimitWarning(BaseModel):
    """Advisory payload for a feature approaching its cap."""

    feature_id: str
    label: str
    usage: int
    limit: int
    message: str
    upgrade: UpgradeAction


class GateResult(BaseModel):
    """Outcome of ``FeatureGate.enforce()``.

    ``denial`` is None exactly when the action is permitted.
    """

    tenant_id: str
    feature_id: str
    decision: FeatureAccessDecision
    denial: DenialReason | None = None

    @property
    def ok(self) -> bool:
        return self.denial is None

    def raise_for_denial(self) -> None:
        """Raise ``FeatureDeniedError`` if the action was denied."""
        if self.denial is not None:
            from plan_gate.enforcement.gate import FeatureDeniedError

            raise FeatureDeniedError(self.denial)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["ok"] = self.ok
        return data


# --- Audit Event Schema ---


class AuditEvent(BaseModel):
    """A single entry in the append-only gate audit log."""

    event_id: str
    timestamp: datetime
    prev_hash: str
    entry_hash: str = ""
    tenant_id: str
    feature_id: str
    allowed: bool
    denial_code: DenialCode | None = None
    usage: int = 0
    limit: int | None = None
    plan_id: str | None = None
    status: SubscriptionStatus | None = None
    context: dict[str, Any] | None = None
