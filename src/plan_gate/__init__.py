"""plan-gate: subscription plan feature gating for multi-tenant SaaS."""

__version__ = "0.4.0"

from plan_gate.catalog.loader import CatalogError, PlanCatalog, load_catalog
from plan_gate.config import PlanGateConfig, find_config, load_config
from plan_gate.enforcement.gate import FeatureDeniedError, FeatureGate
from plan_gate.models import (
    DenialCode,
    DenialReason,
    FeatureAccessDecision,
    FeatureDefinition,
    FeatureRule,
    GateResult,
    LimitWarning,
    PlanDefinition,
    SubscriptionState,
    SubscriptionStatus,
    UpgradeAction,
    UsageSnapshot,
)
from plan_gate.registry.loader import FeatureRegistry, RegistryError, load_registry
from plan_gate.resolver.engine import FeatureAccessResolver, GateInputError
from plan_gate.sdk.client import PlanGate, PlanGateError
from plan_gate.sources import (
    InMemoryUsageStore,
    SourceUnavailableError,
    StaticSubscriptionSource,
    SubscriptionSource,
    UsageSource,
)

__all__ = [
    "CatalogError",
    "DenialCode",
    "DenialReason",
    "FeatureAccessDecision",
    "FeatureAccessResolver",
    "FeatureDefinition",
    "FeatureDeniedError",
    "FeatureGate",
    "FeatureRegistry",
    "FeatureRule",
    "find_config",
    "GateInputError",
    "GateResult",
    "InMemoryUsageStore",
    "LimitWarning",
    "load_catalog",
    "load_config",
    "load_registry",
    "PlanCatalog",
    "PlanDefinition",
    "PlanGate",
    "PlanGateConfig",
    "PlanGateError",
    "RegistryError",
    "SourceUnavailableError",
    "StaticSubscriptionSource",
    "SubscriptionSource",
    "SubscriptionState",
    "SubscriptionStatus",
    "UpgradeAction",
    "UsageSnapshot",
    "UsageSource",
    "__version__",
]
