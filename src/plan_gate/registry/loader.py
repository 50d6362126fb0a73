"""Feature Registry: loads, validates, and serves feature definitions.

The registry is the master list of features the platform knows about,
with their display labels, descriptions and categories. Plans reference
features by id; the registry is what denial messages and usage reports
use to name them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from plan_gate.models import FeatureCategory, FeatureDefinition


class RegistryError(Exception):
    """Raised when the registry cannot load or validate features."""


class FeatureRegistry:
    """In-memory registry of feature definitions.

    Features are keyed by id. Registering two features with the same id
    is an error.
    """

    def __init__(self, categories: list[FeatureCategory] | None = None) -> None:
        self._features: dict[str, FeatureDefinition] = {}
        self._categories: dict[str, FeatureCategory] = {}
        for category in categories or []:
            if category.id in self._categories:
                raise RegistryError(f"Duplicate category id: {category.id}")
            self._categories[category.id] = category

    @property
    def features(self) -> list[FeatureDefinition]:
        return list(self._features.values())

    @property
    def categories(self) -> list[FeatureCategory]:
        return list(self._categories.values())

    def __len__(self) -> int:
        return len(self._features)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._features

    def get(self, feature_id: str) -> FeatureDefinition | None:
        """Look up a feature by id. Returns None if not found."""
        return self._features.get(feature_id)

    def get_or_raise(self, feature_id: str) -> FeatureDefinition:
        feature = self._features.get(feature_id)
        if feature is None:
            raise RegistryError(f"Feature not found: {feature_id}")
        return feature

    def label(self, feature_id: str) -> str:
        """Display label for a feature, or the raw id if unregistered."""
        feature = self._features.get(feature_id)
        return feature.label if feature is not None else feature_id

    def list_features(self) -> list[str]:
        """Return sorted list of registered feature ids."""
        return sorted(self._features.keys())

    def list_by_category(self, category_id: str) -> list[FeatureDefinition]:
        """Return features in a category, in the category's declared order."""
        category = self._categories.get(category_id)
        if category is None:
            return []
        return [self._features[f] for f in category.features if f in self._features]

    def register(self, feature: FeatureDefinition) -> None:
        """Register a single feature definition.

        Raises RegistryError if a feature with the same id already exists.
        """
        if feature.id in self._features:
            raise RegistryError(f"Duplicate feature id '{feature.id}'")
        self._features[feature.id] = feature

    def validate(self) -> list[str]:
        """Cross-check categories against features.

        Returns a list of error messages. Empty list means consistent.
        """
        errors: list[str] = []
        for category in self._categories.values():
            for feature_id in category.features:
                if feature_id not in self._features:
                    errors.append(
                        f"Category '{category.id}' lists unknown feature '{feature_id}'"
                    )
        for feature in self._features.values():
            if feature.category is not None and feature.category not in self._categories:
                errors.append(
                    f"Feature '{feature.id}' has unknown category '{feature.category}'"
                )
        return errors


def load_registry(path: str | Path) -> FeatureRegistry:
    """Load and validate a feature registry from a YAML file.

    The file must have a top-level 'features' list and may have a
    'categories' list. A feature's category is taken from the category
    that lists it unless the feature declares one itself.

    Raises:
        RegistryError: If the file cannot be read, parsed, or validated.
    """
    path = Path(path)
    if not path.is_file():
        raise RegistryError(f"Registry file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise RegistryError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict) or "features" not in raw:
        raise RegistryError(f"Registry file must have a top-level 'features' key: {path}")

    raw_features: Any = raw["features"]
    raw_categories: Any = raw.get("categories") or []
    if not isinstance(raw_features, list):
        raise RegistryError(f"'features' must be a list: {path}")
    if not isinstance(raw_categories, list):
        raise RegistryError(f"'categories' must be a list: {path}")

    categories: list[FeatureCategory] = []
    for i, entry in enumerate(raw_categories):
        try:
            categories.append(FeatureCategory(**entry))
        except (ValidationError, TypeError) as e:
            raise RegistryError(f"Invalid category at index {i} in {path}: {e}") from e

    category_of = {f: c.id for c in categories for f in c.features}
    registry = FeatureRegistry(categories)

    for i, entry in enumerate(raw_features):
        if not isinstance(entry, dict):
            raise RegistryError(f"Invalid feature at index {i} in {path}: not a mapping")
        entry = dict(entry)
        if entry.get("category") is None and entry.get("id") in category_of:
            entry["category"] = category_of[entry["id"]]
        try:
            feature = FeatureDefinition(**entry)
        except ValidationError as e:
            raise RegistryError(f"Invalid feature at index {i} in {path}: {e}") from e
        try:
            registry.register(feature)
        except RegistryError as e:
            raise RegistryError(f"Error loading {path}: {e}") from e

    return registry
