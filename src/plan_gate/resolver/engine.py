"""Feature Access Resolver: the core decision function.

Takes a tenant's subscription state, its usage snapshot and a feature id
and returns a FeatureAccessDecision.

Evaluation:
1. Reject programmer errors (no subscription, empty feature id)
2. Lapsed subscriptions (past_due, canceled) lose every feature
3. Trials get the trial allow-list, uncapped, regardless of plan
4. Active subscriptions get the plan's rule from the catalog
5. Missing or disabled rule: disabled. No cap: unlimited.
6. Capped: compare usage with the cap
"""

from __future__ import annotations

from collections.abc import Iterable

from plan_gate.catalog.loader import PlanCatalog
from plan_gate.models import (
    FeatureAccessDecision,
    SubscriptionState,
    SubscriptionStatus,
    UsageSnapshot,
)

DEFAULT_TRIAL_FEATURES: frozenset[str] = frozenset(
    {"appointments", "clients", "staff", "services", "reports"}
)

DEFAULT_NEAR_LIMIT_RATIO = 0.8


class GateInputError(ValueError):
    """Raised when the resolver is called with invalid arguments."""


class FeatureAccessResolver:
    """Stateless feature access evaluator.

    All context comes from the arguments and the catalog. Nothing is held
    between calls, so identical inputs always yield identical decisions.
    """

    def __init__(
        self,
        catalog: PlanCatalog,
        trial_features: Iterable[str] | None = None,
        near_limit_ratio: float = DEFAULT_NEAR_LIMIT_RATIO,
    ) -> None:
        if not 0 < near_limit_ratio <= 1:
            raise ValueError(f"near_limit_ratio must be in (0, 1], got {near_limit_ratio}")
        self._catalog = catalog
        self._trial_features = frozenset(
            DEFAULT_TRIAL_FEATURES if trial_features is None else trial_features
        )
        self._near_limit_ratio = near_limit_ratio

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    @property
    def trial_features(self) -> frozenset[str]:
        return self._trial_features

    @property
    def near_limit_ratio(self) -> float:
        return self._near_limit_ratio

    def resolve(
        self,
        subscription: SubscriptionState | None,
        usage: UsageSnapshot | None,
        feature_id: str,
    ) -> FeatureAccessDecision:
        """Compute the access decision for one feature.

        Args:
            subscription: The tenant's subscription state. Required.
            usage: Consumption in the current period. None reads as empty.
            feature_id: The feature being checked. Must be non-empty.

        Returns:
            A FeatureAccessDecision. Callers must check ``can_consume``,
            not just ``enabled``, before allowing a create action.

        Raises:
            GateInputError: If ``subscription`` is None or ``feature_id``
                is empty.
        """
        if subscription is None:
            raise GateInputError("subscription state is required")
        if not feature_id:
            raise GateInputError("feature_id must be a non-empty string")

        if subscription.status == SubscriptionStatus.TRIAL:
            if feature_id in self._trial_features:
                return _unlimited(feature_id)
            return _disabled(feature_id)

        if subscription.status != SubscriptionStatus.ACTIVE:
            return _disabled(feature_id)

        rule = self._catalog.get_rule(subscription.plan_id, feature_id)
        if rule is None or not rule.enabled:
            return _disabled(feature_id)

        if rule.cap is None:
            return _unlimited(feature_id)

        used = usage.get(feature_id) if usage is not None else 0
        remaining = max(0, rule.cap - used)
        return FeatureAccessDecision(
            feature_id=feature_id,
            enabled=True,
            unlimited=False,
            usage=used,
            limit=rule.cap,
            remaining=remaining,
            can_consume=remaining > 0,
            near_limit=used >= self._near_limit_ratio * rule.cap,
        )

    def resolve_many(
        self,
        subscription: SubscriptionState | None,
        usage: UsageSnapshot | None,
        feature_ids: Iterable[str],
    ) -> dict[str, FeatureAccessDecision]:
        """Resolve several features against the same inputs."""
        return {f: self.resolve(subscription, usage, f) for f in feature_ids}


def _disabled(feature_id: str) -> FeatureAccessDecision:
    return FeatureAccessDecision(
        feature_id=feature_id,
        enabled=False,
        unlimited=False,
        can_consume=False,
    )


def _unlimited(feature_id: str) -> FeatureAccessDecision:
    return FeatureAccessDecision(
        feature_id=feature_id,
        enabled=True,
        unlimited=True,
        can_consume=True,
    )
