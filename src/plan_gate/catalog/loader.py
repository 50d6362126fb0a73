"""Plan Catalog: the static (plan, feature) -> rule table.

Loads plan definitions from YAML, validates every rule once at load time,
and serves read-only lookups to the resolver. The catalog is not
tenant-specific and has no mutation operations after loading.

A plan file looks like::

    plan:
      id: starter
      name: Starter
      price_monthly: 2900
      sort_order: 1
      features:
        appointments: {enabled: true, cap: 500}
        reports: true          # shorthand for {enabled: true}
        inventory: false       # shorthand for {enabled: false}
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from plan_gate.models import FeatureRule, PlanDefinition
from plan_gate.registry.loader import FeatureRegistry

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when the plan catalog cannot be loaded or is malformed."""


class PlanCatalog:
    """Immutable lookup from plan id and feature id to a FeatureRule."""

    def __init__(self, plans: Iterable[PlanDefinition]) -> None:
        self._plans: dict[str, PlanDefinition] = {}
        for plan in plans:
            if plan.id in self._plans:
                raise CatalogError(f"Duplicate plan id: {plan.id}")
            for key, rule in plan.features.items():
                if key != rule.feature_id:
                    raise CatalogError(
                        f"Plan '{plan.id}': rule keyed '{key}' is for feature '{rule.feature_id}'"
                    )
            self._plans[plan.id] = plan.model_copy(deep=True)

    def _ordered(self) -> list[PlanDefinition]:
        return sorted(self._plans.values(), key=lambda p: (p.sort_order, p.id))

    @property
    def plans(self) -> list[PlanDefinition]:
        """Copies of the plans, ordered by sort_order, then id."""
        return [p.model_copy(deep=True) for p in self._ordered()]

    def __len__(self) -> int:
        return len(self._plans)

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def get_plan(self, plan_id: str | None) -> PlanDefinition | None:
        """Return a copy of a plan; edits to it do not reach the catalog."""
        plan = self._plans.get(plan_id) if plan_id is not None else None
        return plan.model_copy(deep=True) if plan is not None else None

    def get_plan_or_raise(self, plan_id: str) -> PlanDefinition:
        plan = self.get_plan(plan_id)
        if plan is None:
            raise CatalogError(f"Plan not found: {plan_id}")
        return plan

    def list_plans(self) -> list[str]:
        """Plan ids in display order."""
        return [p.id for p in self._ordered()]

    def get_rule(self, plan_id: str | None, feature_id: str) -> FeatureRule | None:
        """Return the rule for a feature under a plan.

        None means the plan does not offer the feature; callers treat it
        as ``enabled=False, cap=0``.
        """
        plan = self._plans.get(plan_id) if plan_id is not None else None
        if plan is None:
            return None
        return plan.features.get(feature_id)

    def feature_ids(self) -> set[str]:
        """Every feature id referenced by any plan."""
        return {f for plan in self._plans.values() for f in plan.features}

    def upgrade_candidates(self, plan_id: str | None, feature_id: str) -> list[str]:
        """Plans ranked above ``plan_id`` that offer more of a feature.

        "More" means enabled where the current plan is not, or a higher
        (or no) cap. With no current plan, every plan enabling the
        feature is a candidate.
        """
        current = self._plans.get(plan_id) if plan_id is not None else None
        current_rule = self.get_rule(plan_id, feature_id)

        candidates: list[str] = []
        for plan in self._ordered():
            if current is not None and plan.sort_order <= current.sort_order:
                continue
            rule = plan.features.get(feature_id)
            if rule is None or not rule.enabled:
                continue
            if current_rule is None or not current_rule.enabled:
                candidates.append(plan.id)
            elif current_rule.cap is not None and (rule.cap is None or rule.cap > current_rule.cap):
                candidates.append(plan.id)
        return candidates

    def validate_against(self, registry: FeatureRegistry) -> list[str]:
        """List feature ids used by plans but missing from the registry.

        Returns a list of error messages. Empty list means every plan
        only references registered features.
        """
        errors: list[str] = []
        for plan in self._ordered():
            for feature_id in sorted(plan.features):
                if feature_id not in registry:
                    errors.append(f"Plan '{plan.id}' references unknown feature '{feature_id}'")
        return errors


def _normalize_rules(raw_features: Any, source: str) -> dict[str, dict[str, Any]]:
    """Expand boolean shorthand and attach feature ids to each rule."""
    if raw_features is None:
        return {}
    if not isinstance(raw_features, dict):
        raise CatalogError(f"'features' must be a mapping: {source}")

    rules: dict[str, dict[str, Any]] = {}
    for feature_id, value in raw_features.items():
        if isinstance(value, bool):
            rules[feature_id] = {"feature_id": feature_id, "enabled": value}
        elif isinstance(value, dict):
            rules[feature_id] = {"feature_id": feature_id, **value}
        else:
            raise CatalogError(
                f"Rule for '{feature_id}' must be a boolean or a mapping, "
                f"got {type(value).__name__}: {source}"
            )
    return rules


def parse_plan(raw: Any, source: str) -> PlanDefinition:
    """Validate one raw plan mapping.

    Raises CatalogError naming ``source`` on any failure.
    """
    if not isinstance(raw, dict):
        raise CatalogError(f"Plan must be a YAML mapping: {source}")

    data = dict(raw)
    data["features"] = _normalize_rules(data.get("features"), source)
    try:
        return PlanDefinition(**data)
    except ValidationError as e:
        raise CatalogError(f"Invalid plan definition in {source}: {e}") from e


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in {path}: {e}") from e


def load_plan_file(path: Path) -> list[PlanDefinition]:
    """Load plans from one YAML file.

    Accepts either a top-level 'plan' mapping or a 'plans' list.
    """
    raw = _read_yaml(path)
    if not isinstance(raw, dict) or ("plan" not in raw and "plans" not in raw):
        raise CatalogError(f"Plan file must have a top-level 'plan' or 'plans' key: {path}")

    if "plan" in raw:
        return [parse_plan(raw["plan"], str(path))]

    raw_plans = raw["plans"]
    if not isinstance(raw_plans, list):
        raise CatalogError(f"'plans' must be a list: {path}")
    return [parse_plan(entry, f"{path} (index {i})") for i, entry in enumerate(raw_plans)]


def load_catalog(path: str | Path) -> PlanCatalog:
    """Load a plan catalog from a YAML file or a directory of YAML files.

    Raises:
        CatalogError: If the path is missing, any file is invalid, or two
            plans share an id.
    """
    path = Path(path)
    if path.is_dir():
        files = sorted(list(path.glob("*.yaml")) + list(path.glob("*.yml")))
    elif path.is_file():
        files = [path]
    else:
        raise CatalogError(f"Catalog path not found: {path}")

    plans: list[PlanDefinition] = []
    for f in files:
        plans.extend(load_plan_file(f))

    if not plans:
        raise CatalogError(f"No plans found in {path}")

    catalog = PlanCatalog(plans)
    logger.debug("Loaded %d plans from %s", len(catalog), path)
    return catalog
