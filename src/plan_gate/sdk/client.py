"""PlanGate SDK: the single public entry point.

Wires together every internal component (catalog, registry, resolver,
sources, gate, audit) behind one class.

Usage::

    from plan_gate import PlanGate

    gate = PlanGate(
        catalog="./plans/",
        registry="./features.yaml",
        tenants="./tenants.yaml",
    )
    result = gate.enforce("salon-a", "clients")
    if not result.ok:
        print(result.denial.message)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from plan_gate.audit.logger import GateAuditLogger, verify_log
from plan_gate.catalog.loader import PlanCatalog, load_catalog
from plan_gate.config import PlanGateConfig
from plan_gate.enforcement.gate import DEFAULT_UPGRADE_URL, FeatureGate
from plan_gate.models import (
    FeatureAccessDecision,
    GateResult,
    LimitWarning,
    SubscriptionState,
    UsageSnapshot,
)
from plan_gate.registry.loader import FeatureRegistry, load_registry
from plan_gate.resolver.engine import DEFAULT_NEAR_LIMIT_RATIO, FeatureAccessResolver
from plan_gate.sources.base import SubscriptionSource, UsageSource
from plan_gate.sources.memory import InMemoryUsageStore, StaticSubscriptionSource, load_tenants
from plan_gate.usage.report import UsageReport, build_usage_report

logger = logging.getLogger(__name__)


class PlanGateError(Exception):
    """Raised for configuration or initialization errors."""


class PlanGate:
    """Public API for plan-gate.

    Loads the catalog (and optionally the registry and tenant fixtures)
    from disk, wires internal components, and exposes ``check()`` for
    pure evaluation and ``enforce()`` for per-tenant gating.
    """

    def __init__(
        self,
        catalog: str | Path | PlanCatalog,
        registry: str | Path | FeatureRegistry | None = None,
        trial_features: Iterable[str] | None = None,
        subscriptions: SubscriptionSource | None = None,
        usage: UsageSource | None = None,
        tenants: str | Path | None = None,
        audit_log: str | Path | None = None,
        upgrade_url: str = DEFAULT_UPGRADE_URL,
        near_limit_ratio: float = DEFAULT_NEAR_LIMIT_RATIO,
    ) -> None:
        """Initialize PlanGate.

        Args:
            catalog: Plan catalog, or a path to a plan YAML file/directory.
            registry: Feature registry, or a path to its YAML file (optional).
                Supplies display labels and the usage report layout.
            trial_features: Features usable during a trial (default:
                appointments, clients, staff, services, reports).
            subscriptions: Subscription state backend (optional).
            usage: Usage counter backend (optional).
            tenants: Path to a tenants YAML file used to build in-memory
                sources. Mutually exclusive with ``subscriptions``/``usage``.
            audit_log: Path to the gate audit log (optional, enables logging).
            upgrade_url: Where denials and warnings point the user.
            near_limit_ratio: Fraction of a cap at which warnings start.
        """
        self._catalog = catalog if isinstance(catalog, PlanCatalog) else load_catalog(catalog)

        self._registry: FeatureRegistry | None
        if registry is None or isinstance(registry, FeatureRegistry):
            self._registry = registry
        else:
            self._registry = load_registry(registry)

        if self._registry is not None:
            for problem in self._catalog.validate_against(self._registry):
                logger.warning("Catalog check: %s", problem)

        if tenants is not None:
            if subscriptions is not None or usage is not None:
                raise PlanGateError("tenants cannot be combined with subscriptions/usage sources")
            subscriptions, usage = load_tenants(tenants)

        self._subscriptions: SubscriptionSource = subscriptions or StaticSubscriptionSource()
        self._usage: UsageSource = usage or InMemoryUsageStore()

        self._audit: GateAuditLogger | None = None
        if audit_log is not None:
            self._audit = GateAuditLogger(Path(audit_log))

        self._resolver = FeatureAccessResolver(
            self._catalog,
            trial_features=trial_features,
            near_limit_ratio=near_limit_ratio,
        )
        self._gate = FeatureGate(
            resolver=self._resolver,
            subscriptions=self._subscriptions,
            usage=self._usage,
            registry=self._registry,
            upgrade_url=upgrade_url,
            audit_logger=self._audit,
        )

    @classmethod
    def from_config(cls, config: PlanGateConfig, **overrides: object) -> PlanGate:
        """Build a PlanGate from a parsed ``plan-gate.yaml``.

        Keyword overrides take precedence over config values.
        """
        if config.catalog is None and "catalog" not in overrides:
            raise PlanGateError("No catalog configured")

        kwargs: dict[str, object] = {
            "catalog": config.catalog,
            "registry": config.registry,
            "trial_features": config.trial_features,
            "tenants": config.tenants,
            "audit_log": config.audit_log,
        }
        if config.upgrade_url is not None:
            kwargs["upgrade_url"] = config.upgrade_url
        if config.near_limit_ratio is not None:
            kwargs["near_limit_ratio"] = config.near_limit_ratio
        kwargs.update(overrides)
        return cls(**kwargs)  # type: ignore[arg-type]

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog

    @property
    def registry(self) -> FeatureRegistry | None:
        return self._registry

    @property
    def resolver(self) -> FeatureAccessResolver:
        return self._resolver

    @property
    def gate(self) -> FeatureGate:
        return self._gate

    @property
    def subscriptions(self) -> SubscriptionSource:
        return self._subscriptions

    @property
    def usage(self) -> UsageSource:
        return self._usage

    @property
    def audit(self) -> GateAuditLogger | None:
        return self._audit

    def check(
        self,
        feature_id: str,
        subscription: SubscriptionState,
        usage: UsageSnapshot | dict[str, int] | None = None,
    ) -> FeatureAccessDecision:
        """Evaluate a feature against explicit inputs (no sources involved)."""
        if isinstance(usage, dict):
            usage = UsageSnapshot(counts=usage)
        return self._resolver.resolve(subscription, usage, feature_id)

    def access(self, tenant_id: str, feature_id: str) -> FeatureAccessDecision:
        return self._gate.access(tenant_id, feature_id)

    def enforce(self, tenant_id: str, feature_id: str) -> GateResult:
        """Gate one action for a tenant. See ``FeatureGate.enforce``."""
        return self._gate.enforce(tenant_id, feature_id)

    def warn_if_near_limit(self, tenant_id: str, feature_id: str) -> LimitWarning | None:
        return self._gate.warn_if_near_limit(tenant_id, feature_id)

    def usage_report(self, tenant_id: str, now: datetime | None = None) -> UsageReport:
        """Resolve every registered feature for a tenant.

        Requires a registry.
        """
        if self._registry is None:
            raise PlanGateError("usage_report requires a feature registry")
        return build_usage_report(
            self._resolver,
            self._registry,
            self._subscriptions.get_subscription(tenant_id),
            self._usage.get_usage(tenant_id),
            now=now,
        )

    def verify_audit(self) -> tuple[bool, list[str]]:
        """Verify the audit log chain integrity.

        Returns (is_valid, list_of_errors).
        If no audit log is configured, returns (True, []).
        """
        if self._audit is None:
            return True, []
        return verify_log(self._audit.path)
