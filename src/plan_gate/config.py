"""Project configuration (``plan-gate.yaml``).

The file is looked up from the working directory upward. Path-valued
keys are relative to the file itself, so the CLI behaves the same from
any subdirectory of a project::

    catalog: ./plans
    registry: ./features.yaml
    modules: ./modules.yaml
    tenants: ./tenants.yaml
    audit_log: ./gate-audit.jsonl
    trial_features: [appointments, clients, staff, services, reports]
    near_limit_ratio: 0.8
    upgrade_url: /settings?tab=subscription
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "plan-gate.yaml"

_PATH_KEYS = ("catalog", "registry", "modules", "tenants", "audit_log")


@dataclass(frozen=True)
class PlanGateConfig:
    """Parsed ``plan-gate.yaml``. Every field is optional."""

    config_path: Path | None = None
    catalog: str | None = None
    registry: str | None = None
    modules: str | None = None
    tenants: str | None = None
    audit_log: str | None = None
    trial_features: tuple[str, ...] | None = None
    near_limit_ratio: float | None = None
    upgrade_url: str | None = None


def find_config(start: Path | None = None) -> Path | None:
    """Return the nearest ``plan-gate.yaml`` at or above *start* (default: cwd)."""
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> PlanGateConfig:
    """Load project configuration.

    An explicit *path* must exist. Without one the file is discovered
    (unless ``auto_discover`` is off); when nothing is found an empty
    PlanGateConfig is returned.

    Raises:
        FileNotFoundError: If an explicit *path* does not exist.
        ValueError: If the file is not a mapping or a key has the wrong type.
    """
    if path is not None:
        config_path: Path | None = Path(path).resolve()
        if not config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = find_config() if auto_discover else None

    if config_path is None:
        return PlanGateConfig()
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    return parse_config(data, config_path)


def parse_config(data: Any, config_path: Path) -> PlanGateConfig:
    """Build a PlanGateConfig from raw YAML data read from *config_path*."""
    if not isinstance(data, dict):
        raise ValueError(
            f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        )

    base = config_path.parent
    paths = {
        key: str((base / data[key]).resolve())
        for key in _PATH_KEYS
        if data.get(key) is not None
    }

    trial = data.get("trial_features")
    if trial is not None and not isinstance(trial, list):
        raise ValueError(f"'trial_features' must be a list in {config_path}")

    ratio = data.get("near_limit_ratio")
    return PlanGateConfig(
        config_path=config_path,
        trial_features=None if trial is None else tuple(str(f) for f in trial),
        near_limit_ratio=None if ratio is None else float(ratio),
        upgrade_url=data.get("upgrade_url"),
        **paths,
    )
