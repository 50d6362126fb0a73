"""Tests for the plan-gate CLI."""

import json
from pathlib import Path

from click.testing import CliRunner

from plan_gate.cli.main import cli

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
PLANS_DIR = str(_PROJECT_ROOT / "plans")
REGISTRY_FILE = str(_PROJECT_ROOT / "features.yaml")
MODULES_FILE = str(_PROJECT_ROOT / "modules.yaml")
TENANTS_FILE = str(_PROJECT_ROOT / "tenants.yaml")
SCENARIOS_DIR = str(_PROJECT_ROOT / "scenarios")


def runner() -> CliRunner:
    return CliRunner()


def _config_args() -> list[str]:
    return ["--catalog", PLANS_DIR, "--registry", REGISTRY_FILE]


# --- check command ---


class TestCheckCommand:
    def test_plan_allow(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--usage", '{"clients": 10}',
            *_config_args(),
        ])
        assert result.exit_code == 0
        assert "ALLOW" in result.output
        assert "Client Management" in result.output
        assert "remaining: 90" in result.output

    def test_plan_limit_reached(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--usage", '{"clients": 100}',
            *_config_args(),
        ])
        assert result.exit_code == 0
        assert "DENY" in result.output
        assert "near limit" in result.output

    def test_plan_unlimited(self):
        result = runner().invoke(cli, [
            "check", "appointments", "--plan", "enterprise", *_config_args(),
        ])
        assert result.exit_code == 0
        assert "unlimited" in result.output

    def test_json_output(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--usage", '{"clients": 80}',
            "--json-output", *_config_args(),
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["can_consume"] is True
        assert data["near_limit"] is True
        assert data["remaining"] == 20

    def test_trial_status(self):
        result = runner().invoke(cli, [
            "check", "inventory", "--status", "trial", "--json-output", *_config_args(),
        ])
        assert result.exit_code == 0
        assert json.loads(result.output)["enabled"] is False

    def test_invalid_usage_json(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--usage", "{bad", *_config_args(),
        ])
        assert result.exit_code == 1
        assert "invalid JSON" in result.output

    def test_usage_not_object(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--usage", "[1]", *_config_args(),
        ])
        assert result.exit_code == 1

    def test_invalid_status(self):
        result = runner().invoke(cli, [
            "check", "clients", "--plan", "starter", "--status", "paused", *_config_args(),
        ])
        assert result.exit_code == 1

    def test_missing_catalog(self, tmp_path: Path):
        result = runner().invoke(cli, [
            "check", "clients", "--catalog", str(tmp_path / "nope"),
        ])
        assert result.exit_code == 1
        assert "Error loading config" in result.output

    def test_tenant_denied(self, tmp_path: Path):
        result = runner().invoke(cli, [
            "check", "staff", "--tenant", "glow-salon", "--tenants", TENANTS_FILE,
            "--audit-log", str(tmp_path / "gate-audit.jsonl"), *_config_args(),
        ])
        assert result.exit_code == 0
        assert "DENY" in result.output
        assert "You've reached your Staff Management limit" in result.output
        assert "try 'professional'" in result.output

    def test_tenant_near_limit_warning(self, tmp_path: Path):
        result = runner().invoke(cli, [
            "check", "clients", "--tenant", "glow-salon", "--tenants", TENANTS_FILE,
            "--audit-log", str(tmp_path / "gate-audit.jsonl"), *_config_args(),
        ])
        assert result.exit_code == 0
        assert "ALLOW" in result.output
        assert "Approaching Client Management limit" in result.output

    def test_tenant_json_output(self, tmp_path: Path):
        result = runner().invoke(cli, [
            "check", "inventory", "--tenant", "glow-salon", "--tenants", TENANTS_FILE,
            "--audit-log", str(tmp_path / "gate-audit.jsonl"), "--json-output",
            *_config_args(),
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["ok"] is False
        assert data["denial"]["code"] == "feature_disabled"

    def test_unknown_tenant_fails_closed(self, tmp_path: Path):
        result = runner().invoke(cli, [
            "check", "clients", "--tenant", "nobody", "--tenants", TENANTS_FILE,
            "--audit-log", str(tmp_path / "gate-audit.jsonl"), *_config_args(),
        ])
        assert result.exit_code == 1
        assert "DENY" in result.output

    def test_corrupt_audit_log(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        log.write_text("{not json\n", encoding="utf-8")
        result = runner().invoke(cli, [
            "check", "clients", "--tenant", "glow-salon", "--tenants", TENANTS_FILE,
            "--audit-log", str(log), *_config_args(),
        ])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Corrupt audit log" in result.output


# --- test command ---


class TestTestCommand:
    def test_shipped_scenarios_pass(self):
        result = runner().invoke(cli, ["test", SCENARIOS_DIR, "--catalog", PLANS_DIR])
        assert result.exit_code == 0
        assert "All 8 test(s) passed." in result.output

    def test_failing_scenario(self, tmp_path: Path):
        f = tmp_path / "cases.yaml"
        f.write_text(
            "tests:\n"
            "  - {name: wrong, plan: starter, feature: inventory, expect: allow}\n",
            encoding="utf-8",
        )
        result = runner().invoke(cli, ["test", str(f), "--catalog", PLANS_DIR])
        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert "expected allow, got feature_disabled" in result.output

    def test_malformed_file(self, tmp_path: Path):
        f = tmp_path / "cases.yaml"
        f.write_text("nothing: here\n", encoding="utf-8")
        result = runner().invoke(cli, ["test", str(f), "--catalog", PLANS_DIR])
        assert result.exit_code == 1


# --- list commands ---


class TestListCommands:
    def test_list_plans(self):
        result = runner().invoke(cli, ["list-plans", "--catalog", PLANS_DIR])
        assert result.exit_code == 0
        assert "starter" in result.output
        assert "29.00/mo" in result.output
        assert "3 plan(s) in catalog." in result.output

    def test_list_plans_json(self):
        result = runner().invoke(cli, ["list-plans", "--catalog", PLANS_DIR, "--json-output"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [p["id"] for p in data] == ["starter", "professional", "enterprise"]
        assert data[0]["features"]["clients"]["cap"] == 100

    def test_list_features(self):
        result = runner().invoke(cli, ["list-features", "--registry", REGISTRY_FILE])
        assert result.exit_code == 0
        assert "31 feature(s) registered." in result.output

    def test_list_features_by_category(self):
        result = runner().invoke(cli, [
            "list-features", "--registry", REGISTRY_FILE, "--category", "core", "--json-output",
        ])
        assert result.exit_code == 0
        ids = [f["id"] for f in json.loads(result.output)]
        assert ids == ["appointments", "clients", "services", "staff"]

    def test_list_features_missing_registry(self, tmp_path: Path):
        result = runner().invoke(cli, ["list-features", "--registry", str(tmp_path / "x.yaml")])
        assert result.exit_code == 1

    def test_list_modules(self):
        result = runner().invoke(cli, [
            "list-modules", "--modules", MODULES_FILE,
            "--enabled", "pos", "--permission", "pos:access",
        ])
        assert result.exit_code == 0
        assert "Point of Sale" in result.output
        assert "missing: sales" in result.output

    def test_list_modules_json(self):
        result = runner().invoke(cli, [
            "list-modules", "--modules", MODULES_FILE,
            "--permission", "appointments:view", "--json-output",
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [m["id"] for m in data] == ["appointments"]
        assert data[0]["routes"] == ["/appointments"]

    def test_list_modules_none(self):
        result = runner().invoke(cli, ["list-modules", "--modules", MODULES_FILE])
        assert result.exit_code == 0
        assert "No accessible modules." in result.output


# --- validate command ---


class TestValidateCommand:
    def test_shipped_config_valid(self):
        result = runner().invoke(cli, [
            "validate", *_config_args(),
            "--modules", MODULES_FILE, "--tenants", TENANTS_FILE,
        ])
        assert result.exit_code == 0
        assert "All 5 check(s) passed." in result.output

    def test_unregistered_feature(self, tmp_path: Path):
        reg = tmp_path / "features.yaml"
        reg.write_text("features:\n  - {id: clients, label: Clients}\n", encoding="utf-8")
        result = runner().invoke(cli, [
            "validate", "--catalog", PLANS_DIR, "--registry", str(reg),
            "--modules", str(tmp_path / "none.yaml"), "--tenants", str(tmp_path / "none.yaml"),
        ])
        assert result.exit_code == 1
        assert "references unknown feature" in result.output

    def test_tenant_on_unknown_plan(self, tmp_path: Path):
        tenants = tmp_path / "tenants.yaml"
        tenants.write_text("tenants:\n  - {id: t1, plan: platinum}\n", encoding="utf-8")
        result = runner().invoke(cli, [
            "validate", "--catalog", PLANS_DIR, "--registry", str(tmp_path / "none.yaml"),
            "--modules", str(tmp_path / "none.yaml"), "--tenants", str(tenants),
        ])
        assert result.exit_code == 1
        assert "'t1' is on a plan missing from the catalog" in result.output

    def test_broken_catalog(self, tmp_path: Path):
        (tmp_path / "bad.yaml").write_text("plan: {id: x}\n", encoding="utf-8")
        result = runner().invoke(cli, [
            "validate", "--catalog", str(tmp_path), "--registry", str(tmp_path / "none.yaml"),
            "--modules", str(tmp_path / "none.yaml"), "--tenants", str(tmp_path / "none.yaml"),
        ])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_nothing_to_validate(self, tmp_path: Path):
        missing = str(tmp_path / "none")
        result = runner().invoke(cli, [
            "validate", "--catalog", missing, "--registry", missing,
            "--modules", missing, "--tenants", missing,
        ])
        assert result.exit_code == 0
        assert "No config files found" in result.output


# --- usage command ---


class TestUsageCommand:
    def test_usage_report(self):
        result = runner().invoke(cli, [
            "usage", "glow-salon", *_config_args(), "--tenants", TENANTS_FILE,
        ])
        assert result.exit_code == 0
        assert "plan=starter" in result.output
        assert "Core Features" in result.output
        assert "85/100 (85%)" in result.output
        assert "at_limit" in result.output

    def test_usage_json(self):
        result = runner().invoke(cli, [
            "usage", "fresh-start", *_config_args(), "--tenants", TENANTS_FILE, "--json-output",
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "trial"
        assert data["trial_days_left"] is not None

    def test_unknown_tenant(self):
        result = runner().invoke(cli, [
            "usage", "nobody", *_config_args(), "--tenants", TENANTS_FILE,
        ])
        assert result.exit_code == 1


# --- audit commands ---


def _write_audit(log: Path) -> None:
    for feature in ("clients", "staff", "inventory"):
        runner().invoke(cli, [
            "check", feature, "--tenant", "glow-salon", "--tenants", TENANTS_FILE,
            "--audit-log", str(log), *_config_args(),
        ])


class TestAuditCommands:
    def test_verify_valid(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        _write_audit(log)
        result = runner().invoke(cli, ["audit", "verify", str(log)])
        assert result.exit_code == 0
        assert "VALID" in result.output

    def test_verify_tampered(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        _write_audit(log)
        lines = log.read_text(encoding="utf-8").splitlines()
        entry = json.loads(lines[0])
        entry["tenant_id"] = "someone-else"
        lines[0] = json.dumps(entry, sort_keys=True)
        log.write_text("\n".join(lines) + "\n", encoding="utf-8")

        result = runner().invoke(cli, ["audit", "verify", str(log)])
        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_verify_missing(self, tmp_path: Path):
        result = runner().invoke(cli, ["audit", "verify", str(tmp_path / "none.jsonl")])
        assert result.exit_code == 1

    def test_show(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        _write_audit(log)
        result = runner().invoke(cli, ["audit", "show", str(log)])
        assert result.exit_code == 0
        assert "3 event(s) shown." in result.output
        assert "LIMIT_REACHED" in result.output

    def test_show_denied_only_json(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        _write_audit(log)
        result = runner().invoke(cli, [
            "audit", "show", str(log), "--denied-only", "--json-output",
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [e["feature_id"] for e in data] == ["staff", "inventory"]

    def test_show_last(self, tmp_path: Path):
        log = tmp_path / "gate-audit.jsonl"
        _write_audit(log)
        result = runner().invoke(cli, ["audit", "show", str(log), "--last", "1", "--json-output"])
        assert [e["feature_id"] for e in json.loads(result.output)] == ["inventory"]


# --- init command ---


class TestInitCommand:
    def test_scaffold(self, tmp_path: Path):
        result = runner().invoke(cli, ["init", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / "plan-gate.yaml").exists()
        assert (tmp_path / "features.yaml").exists()
        assert (tmp_path / "tenants.yaml").exists()
        assert (tmp_path / "plans" / "starter.yaml").exists()
        assert "Next steps" in result.output

    def test_idempotent(self, tmp_path: Path):
        runner().invoke(cli, ["init", str(tmp_path)])
        result = runner().invoke(cli, ["init", str(tmp_path)])
        assert result.exit_code == 0
        assert "skip  plan-gate.yaml" in result.output
        assert "skip  plans/" in result.output

    def test_scaffold_validates_and_checks(self, tmp_path: Path, monkeypatch):
        runner().invoke(cli, ["init", str(tmp_path)])
        monkeypatch.chdir(tmp_path)

        result = runner().invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "All 4 check(s) passed." in result.output

        result = runner().invoke(cli, ["check", "clients", "--tenant", "demo-tenant"])
        assert result.exit_code == 0
        assert "ALLOW" in result.output
        assert "Approaching Client Management limit" in result.output
        assert (tmp_path / "gate-audit.jsonl").exists()


class TestVersion:
    def test_version(self):
        result = runner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.4.0" in result.output
