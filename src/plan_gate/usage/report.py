"""Usage report: per-category view of a tenant's feature consumption.

Resolves every registered feature for a tenant and classifies it as
disabled, unlimited, ok, near_limit or at_limit, with a percentage of
the cap consumed. Also reports days left in a trial.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field

from plan_gate.models import (
    FeatureAccessDecision,
    SubscriptionState,
    SubscriptionStatus,
    UsageSnapshot,
    UsageStatus,
)
from plan_gate.registry.loader import FeatureRegistry
from plan_gate.resolver.engine import FeatureAccessResolver

UNCATEGORIZED = "other"


class FeatureUsage(BaseModel):
    feature_id: str
    label: str
    decision: FeatureAccessDecision
    percentage: float = 0.0
    status: UsageStatus


class CategoryUsage(BaseModel):
    id: str
    label: str
    features: list[FeatureUsage] = Field(default_factory=list)


class UsageReport(BaseModel):
    """Everything a usage dashboard needs for one tenant."""

    plan_id: str | None
    status: SubscriptionStatus
    trial_days_left: int | None = None
    categories: list[CategoryUsage] = Field(default_factory=list)

    def features(self) -> list[FeatureUsage]:
        return [f for c in self.categories for f in c.features]

    def by_status(self, status: UsageStatus) -> list[FeatureUsage]:
        return [f for f in self.features() if f.status == status]


def classify(decision: FeatureAccessDecision) -> tuple[UsageStatus, float]:
    """Map a decision to a display status and percentage of cap used."""
    if not decision.enabled:
        return UsageStatus.DISABLED, 0.0
    if decision.unlimited or decision.limit is None:
        return UsageStatus.UNLIMITED, 0.0

    percentage = decision.usage / decision.limit * 100 if decision.limit else 100.0
    if not decision.can_consume:
        return UsageStatus.AT_LIMIT, percentage
    if decision.near_limit:
        return UsageStatus.NEAR_LIMIT, percentage
    return UsageStatus.OK, percentage


def trial_days_left(subscription: SubscriptionState, now: datetime | None = None) -> int | None:
    """Whole days until the trial ends, rounded up and never negative.

    None unless the subscription is trialing with a known end date.
    """
    if subscription.status != SubscriptionStatus.TRIAL or subscription.trial_ends_at is None:
        return None
    now = now or datetime.now(tz=UTC)
    ends_at = subscription.trial_ends_at
    if ends_at.tzinfo is None:
        ends_at = ends_at.replace(tzinfo=UTC)
    return max(0, math.ceil((ends_at - now) / timedelta(days=1)))


def build_usage_report(
    resolver: FeatureAccessResolver,
    registry: FeatureRegistry,
    subscription: SubscriptionState,
    usage: UsageSnapshot,
    now: datetime | None = None,
) -> UsageReport:
    """Resolve every registered feature and group the results by category.

    Features without a category are collected under ``other``.
    """
    def _feature_usage(feature_id: str) -> FeatureUsage:
        decision = resolver.resolve(subscription, usage, feature_id)
        status, percentage = classify(decision)
        return FeatureUsage(
            feature_id=feature_id,
            label=registry.label(feature_id),
            decision=decision,
            percentage=round(percentage, 1),
            status=status,
        )

    categories: list[CategoryUsage] = []
    seen: set[str] = set()
    for category in registry.categories:
        features = registry.list_by_category(category.id)
        seen.update(f.id for f in features)
        categories.append(CategoryUsage(
            id=category.id,
            label=category.label,
            features=[_feature_usage(f.id) for f in features],
        ))

    leftovers = [f for f in registry.list_features() if f not in seen]
    if leftovers:
        categories.append(CategoryUsage(
            id=UNCATEGORIZED,
            label="Other",
            features=[_feature_usage(f) for f in leftovers],
        ))

    return UsageReport(
        plan_id=subscription.plan_id,
        status=subscription.status,
        trial_days_left=trial_days_left(subscription, now),
        categories=categories,
    )
