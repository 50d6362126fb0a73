"""Enforcement layer: turns access decisions into gates and warnings.

Usage::

    gate = FeatureGate(resolver, subscriptions, usage, registry=registry)

    result = gate.enforce("salon-a", "clients")
    if not result.ok:
        show(result.denial.message, result.denial.upgrade.url)
        return
    create_client(...)
    usage.record("salon-a", "clients")

    warning = gate.warn_if_near_limit("salon-a", "clients")

The gate never increments usage; the gated action does. Between
``enforce`` and that increment two concurrent requests can both pass
when one slot remains. Strict caps need an atomic increment in the
usage backend.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

from plan_gate.models import (
    DenialCode,
    DenialReason,
    FeatureAccessDecision,
    GateResult,
    LimitWarning,
    UpgradeAction,
)
from plan_gate.resolver.engine import FeatureAccessResolver

if TYPE_CHECKING:
    from plan_gate.audit.logger import GateAuditLogger
    from plan_gate.registry.loader import FeatureRegistry
    from plan_gate.sources.base import SubscriptionSource, UsageSource

logger = logging.getLogger(__name__)

DEFAULT_UPGRADE_URL = "/settings?tab=subscription"


class FeatureDeniedError(Exception):
    """Raised by ``GateResult.raise_for_denial()`` for a blocked action."""

    def __init__(self, denial: DenialReason) -> None:
        super().__init__(denial.message)
        self.denial = denial


class AuditWarning(UserWarning):
    """Emitted when writing a gate check to the audit log fails (non-fatal)."""


def upgrade_message(decision: FeatureAccessDecision, label: str) -> str:
    """User-facing text explaining a gate outcome."""
    if not decision.enabled:
        return f"{label} is not available in your current plan. Upgrade to access this feature."
    if not decision.can_consume:
        return f"You've reached your {label} limit. Upgrade to add more."
    if decision.near_limit and decision.limit is not None:
        return f"You've used {decision.usage}/{decision.limit}. Consider upgrading your plan."
    return f"Upgrade your plan to unlock {label}."


class FeatureGate:
    """Per-tenant gate over the resolver.

    Reads subscription state and usage from its sources on every call;
    nothing is cached between calls.
    """

    def __init__(
        self,
        resolver: FeatureAccessResolver,
        subscriptions: SubscriptionSource,
        usage: UsageSource,
        registry: FeatureRegistry | None = None,
        upgrade_url: str = DEFAULT_UPGRADE_URL,
        audit_logger: GateAuditLogger | None = None,
    ) -> None:
        self._resolver = resolver
        self._subscriptions = subscriptions
        self._usage = usage
        self._registry = registry
        self._upgrade_url = upgrade_url
        self._audit = audit_logger

    @property
    def resolver(self) -> FeatureAccessResolver:
        return self._resolver

    def label(self, feature_id: str) -> str:
        if self._registry is None:
            return feature_id
        return self._registry.label(feature_id)

    def access(self, tenant_id: str, feature_id: str) -> FeatureAccessDecision:
        """Resolve the current decision for a tenant's feature.

        Exceptions from the sources propagate unchanged.
        """
        subscription = self._subscriptions.get_subscription(tenant_id)
        usage = self._usage.get_usage(tenant_id)
        return self._resolver.resolve(subscription, usage, feature_id)

    def enforce(self, tenant_id: str, feature_id: str) -> GateResult:
        """Check whether the tenant may consume one unit of a feature.

        Business denials come back as a GateResult with a ``denial``;
        they are never raised. Source failures and invalid input raise,
        and callers must treat those as a denial.
        """
        subscription = self._subscriptions.get_subscription(tenant_id)
        usage = self._usage.get_usage(tenant_id)
        decision = self._resolver.resolve(subscription, usage, feature_id)

        denial: DenialReason | None = None
        if not decision.can_consume:
            denial = self._denial(subscription.plan_id, decision)
            logger.info(
                "Denied %s for tenant %s: %s (usage=%d, limit=%s)",
                feature_id, tenant_id, denial.code, decision.usage, decision.limit,
            )

        result = GateResult(
            tenant_id=tenant_id,
            feature_id=feature_id,
            decision=decision,
            denial=denial,
        )

        if self._audit is not None:
            try:
                self._audit.log_enforcement(result, subscription=subscription)
            except OSError as exc:
                warnings.warn(
                    f"Gate audit log write failed: {exc}",
                    AuditWarning,
                    stacklevel=2,
                )

        return result

    def warn_if_near_limit(self, tenant_id: str, feature_id: str) -> LimitWarning | None:
        """Return an advisory warning when a feature is close to its cap.

        Only returned while the feature can still be consumed; at the cap
        ``enforce`` reports the denial instead. Never blocks.
        """
        subscription = self._subscriptions.get_subscription(tenant_id)
        usage = self._usage.get_usage(tenant_id)
        decision = self._resolver.resolve(subscription, usage, feature_id)

        if not (decision.near_limit and decision.can_consume) or decision.limit is None:
            return None

        label = self.label(feature_id)
        logger.info(
            "Tenant %s approaching %s limit: %d/%d",
            tenant_id, feature_id, decision.usage, decision.limit,
        )
        return LimitWarning(
            feature_id=feature_id,
            label=label,
            usage=decision.usage,
            limit=decision.limit,
            message=f"Approaching {label} limit. {upgrade_message(decision, label)}",
            upgrade=self._upgrade_action(subscription.plan_id, feature_id),
        )

    def _denial(self, plan_id: str | None, decision: FeatureAccessDecision) -> DenialReason:
        label = self.label(decision.feature_id)
        code = DenialCode.FEATURE_DISABLED if not decision.enabled else DenialCode.LIMIT_REACHED
        return DenialReason(
            code=code,
            feature_id=decision.feature_id,
            label=label,
            message=upgrade_message(decision, label),
            usage=decision.usage,
            limit=decision.limit,
            upgrade=self._upgrade_action(plan_id, decision.feature_id),
        )

    def _upgrade_action(self, plan_id: str | None, feature_id: str) -> UpgradeAction:
        candidates = self._resolver.catalog.upgrade_candidates(plan_id, feature_id)
        return UpgradeAction(
            url=self._upgrade_url,
            suggested_plan=candidates[0] if candidates else None,
        )
