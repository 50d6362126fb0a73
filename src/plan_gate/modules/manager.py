"""Module access: which application modules a user can open.

A module groups routes under a set of permissions. A user can access a
module when the tenant has the module enabled and the user holds at
least one of the module's permissions. Module definitions are loaded
from YAML.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

DEFAULT_MODULES: tuple[str, ...] = ("appointments", "sales", "services")


class ModuleCatalogError(Exception):
    """Raised when module definitions cannot be loaded or validated."""


class ModuleRoute(BaseModel):
    path: str
    component: str = ""
    permissions: list[str] | None = None


class ModuleDefinition(BaseModel):
    """An application module and the permissions that unlock it."""

    id: str
    name: str
    description: str = ""
    category: str = ""
    permissions: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    routes: list[ModuleRoute] = Field(default_factory=list)


class DependencyCheck(BaseModel):
    satisfied: bool
    missing: list[str] = Field(default_factory=list)


class ModuleCatalog:
    """Module definitions keyed by id, in declaration order."""

    def __init__(self, modules: Iterable[ModuleDefinition]) -> None:
        self._modules: dict[str, ModuleDefinition] = {}
        for module in modules:
            if module.id in self._modules:
                raise ModuleCatalogError(f"Duplicate module id: {module.id}")
            self._modules[module.id] = module

    @property
    def modules(self) -> list[ModuleDefinition]:
        return list(self._modules.values())

    def __len__(self) -> int:
        return len(self._modules)

    def get(self, module_id: str) -> ModuleDefinition | None:
        return self._modules.get(module_id)

    def validate(self) -> list[str]:
        """Report dependencies on modules that are not defined."""
        errors: list[str] = []
        for module in self._modules.values():
            for dep in module.dependencies:
                if dep not in self._modules:
                    errors.append(f"Module '{module.id}' depends on unknown module '{dep}'")
        return errors


class ModuleManager:
    """Set-membership checks over enabled modules and user permissions."""

    def __init__(
        self,
        catalog: ModuleCatalog,
        enabled_modules: Iterable[str] | None = None,
        user_permissions: Iterable[str] | None = None,
    ) -> None:
        enabled = list(enabled_modules or [])
        self._catalog = catalog
        self._enabled = frozenset(enabled or DEFAULT_MODULES)
        self._permissions = frozenset(user_permissions or [])

    @property
    def enabled_modules(self) -> frozenset[str]:
        return self._enabled

    def is_module_enabled(self, module_id: str) -> bool:
        return module_id in self._enabled

    def has_permission(self, permission: str) -> bool:
        return permission in self._permissions

    def can_access_module(self, module_id: str) -> bool:
        """Module enabled for the tenant and at least one permission held."""
        module = self._catalog.get(module_id)
        if module is None or not self.is_module_enabled(module_id):
            return False
        return any(self.has_permission(p) for p in module.permissions)

    def available_modules(self) -> list[ModuleDefinition]:
        return [m for m in self._catalog.modules if self.can_access_module(m.id)]

    def module_routes(self, module_id: str) -> list[ModuleRoute]:
        """Routes the user may open within an accessible module."""
        if not self.can_access_module(module_id):
            return []
        module = self._catalog.get(module_id)
        assert module is not None
        return [
            route for route in module.routes
            if route.permissions is None or any(self.has_permission(p) for p in route.permissions)
        ]

    def check_dependencies(self, module_id: str) -> DependencyCheck:
        module = self._catalog.get(module_id)
        if module is None or not module.dependencies:
            return DependencyCheck(satisfied=True)
        missing = [dep for dep in module.dependencies if not self.is_module_enabled(dep)]
        return DependencyCheck(satisfied=not missing, missing=missing)


def load_modules(path: str | Path) -> ModuleCatalog:
    """Load module definitions from a YAML file with a top-level 'modules' list.

    Raises:
        ModuleCatalogError: If the file cannot be read, parsed, or validated.
    """
    path = Path(path)
    if not path.is_file():
        raise ModuleCatalogError(f"Modules file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ModuleCatalogError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict) or "modules" not in raw:
        raise ModuleCatalogError(f"Modules file must have a top-level 'modules' key: {path}")

    raw_modules: Any = raw["modules"]
    if not isinstance(raw_modules, list):
        raise ModuleCatalogError(f"'modules' must be a list: {path}")

    modules: list[ModuleDefinition] = []
    for i, entry in enumerate(raw_modules):
        try:
            modules.append(ModuleDefinition(**entry))
        except (ValidationError, TypeError) as e:
            raise ModuleCatalogError(f"Invalid module at index {i} in {path}: {e}") from e

    return ModuleCatalog(modules)
