"""Tests for the feature registry loader."""

from pathlib import Path

import pytest

from plan_gate.models import FeatureDefinition
from plan_gate.registry.loader import FeatureRegistry, RegistryError, load_registry

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
REGISTRY_FILE = _PROJECT_ROOT / "features.yaml"


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "features.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestShippedRegistry:
    def test_loads(self):
        reg = load_registry(REGISTRY_FILE)
        assert len(reg) == 31
        assert reg.validate() == []

    def test_labels(self):
        reg = load_registry(REGISTRY_FILE)
        assert reg.label("clients") == "Client Management"
        assert reg.label("no_such_feature") == "no_such_feature"

    def test_category_inherited(self):
        reg = load_registry(REGISTRY_FILE)
        assert reg.get_or_raise("suppliers").category == "inventory"

    def test_list_by_category_in_declared_order(self):
        reg = load_registry(REGISTRY_FILE)
        ids = [f.id for f in reg.list_by_category("core")]
        assert ids == ["appointments", "clients", "staff", "services"]

    def test_unknown_category_empty(self):
        assert load_registry(REGISTRY_FILE).list_by_category("nope") == []


class TestLoadRegistry:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(RegistryError, match="not found"):
            load_registry(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        with pytest.raises(RegistryError, match="Invalid YAML"):
            load_registry(_write(tmp_path, "features: [unclosed\n"))

    def test_missing_features_key(self, tmp_path: Path):
        with pytest.raises(RegistryError, match="top-level 'features'"):
            load_registry(_write(tmp_path, "categories: []\n"))

    def test_duplicate_feature(self, tmp_path: Path):
        text = (
            "features:\n"
            "  - {id: clients, label: Clients}\n"
            "  - {id: clients, label: Clients again}\n"
        )
        with pytest.raises(RegistryError, match="Duplicate feature id"):
            load_registry(_write(tmp_path, text))

    def test_invalid_feature_id(self, tmp_path: Path):
        with pytest.raises(RegistryError, match="index 0"):
            load_registry(_write(tmp_path, "features:\n  - {id: Bad-Id, label: x}\n"))

    def test_explicit_category_wins(self, tmp_path: Path):
        text = (
            "categories:\n"
            "  - {id: core, label: Core, features: [clients]}\n"
            "  - {id: crm, label: CRM}\n"
            "features:\n"
            "  - {id: clients, label: Clients, category: crm}\n"
        )
        reg = load_registry(_write(tmp_path, text))
        assert reg.get_or_raise("clients").category == "crm"


class TestFeatureRegistry:
    def test_get_or_raise(self):
        reg = FeatureRegistry()
        with pytest.raises(RegistryError, match="not found"):
            reg.get_or_raise("clients")

    def test_register_and_list(self):
        reg = FeatureRegistry()
        reg.register(FeatureDefinition(id="staff", label="Staff"))
        reg.register(FeatureDefinition(id="clients", label="Clients"))
        assert reg.list_features() == ["clients", "staff"]
        assert "clients" in reg
        assert reg.get("missing") is None

    def test_validate_reports_dangling_references(self, tmp_path: Path):
        text = (
            "categories:\n"
            "  - {id: core, label: Core, features: [clients, ghosts]}\n"
            "features:\n"
            "  - {id: clients, label: Clients}\n"
            "  - {id: staff, label: Staff, category: people}\n"
        )
        errors = load_registry(_write(tmp_path, text)).validate()
        assert len(errors) == 2
        assert any("ghosts" in e for e in errors)
        assert any("people" in e for e in errors)
