"""plan-gate CLI: command-line interface for plan-gate.

Commands:
    init            Scaffold a new plan-gate project
    check           Evaluate feature access for a plan or a tenant
    test            Run plan scenario files
    list-plans      Show all plans in the catalog
    list-features   Show all registered features
    list-modules    Show modules a user can open
    validate        Validate config files (catalog, registry, modules, tenants)
    usage           Show a tenant's usage report
    audit verify    Verify audit log chain integrity
    audit show      Show recent audit log entries
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from plan_gate import __version__
from plan_gate.audit.logger import AuditError, GateAuditLogger, verify_log
from plan_gate.catalog.loader import CatalogError, load_catalog
from plan_gate.config import PlanGateConfig, load_config
from plan_gate.models import FeatureAccessDecision, SubscriptionState, UsageStatus
from plan_gate.modules.manager import ModuleCatalogError, ModuleManager, load_modules
from plan_gate.registry.loader import RegistryError, load_registry
from plan_gate.sdk.client import PlanGate
from plan_gate.sources.base import SourceUnavailableError
from plan_gate.sources.memory import load_tenants
from plan_gate.testing.runner import ScenarioTestError, load_test_files, run_tests

# --- Defaults ---

DEFAULT_CATALOG = "./plans"
DEFAULT_REGISTRY = "./features.yaml"
DEFAULT_MODULES = "./modules.yaml"
DEFAULT_TENANTS = "./tenants.yaml"
DEFAULT_AUDIT_LOG = "./gate-audit.jsonl"


def _resolve_cfg() -> PlanGateConfig:
    """Load config from plan-gate.yaml (auto-discover, never error)."""
    try:
        return load_config()
    except (OSError, ValueError):
        return PlanGateConfig()


def _or(explicit: str | None, cfg_val: str | None, fallback: str) -> str:
    """Return first non-None value: explicit CLI flag > config > fallback."""
    return explicit or cfg_val or fallback


def _existing(path: str) -> str | None:
    return path if Path(path).exists() else None


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """plan-gate: subscription plan feature gating."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# --- init command ---


_INIT_PLAN = """\
plan:
  id: starter
  name: Starter
  description: Entry plan
  price_monthly: 2900
  price_yearly: 29000
  sort_order: 1
  features:
    appointments: {enabled: true, cap: 500}
    clients: {enabled: true, cap: 100}
    staff: {enabled: true, cap: 5}
    reports: true
    inventory: false
"""

_INIT_PLAN_PRO = """\
plan:
  id: professional
  name: Professional
  description: For growing teams
  price_monthly: 5900
  price_yearly: 59000
  sort_order: 2
  features:
    appointments: {enabled: true, cap: 2000}
    clients: {enabled: true, cap: 1000}
    staff: {enabled: true, cap: 25}
    reports: true
    inventory: true
"""

_INIT_REGISTRY = """\
categories:
  - id: core
    label: Core Features
    features: [appointments, clients, staff]
  - id: operations
    label: Operations
    features: [inventory, reports]

features:
  - id: appointments
    label: Appointment Management
  - id: clients
    label: Client Management
  - id: staff
    label: Staff Management
  - id: inventory
    label: Inventory Management
  - id: reports
    label: Basic Reports
"""

_INIT_TENANTS = """\
tenants:
  - id: demo-tenant
    plan: starter
    status: active
    usage:
      clients: 82
"""

_INIT_CONFIG = """\
# plan-gate project configuration
# Paths are relative to this file.
catalog: ./plans
registry: ./features.yaml
tenants: ./tenants.yaml
audit_log: ./gate-audit.jsonl

# Features usable during a trial, uncapped.
trial_features: [appointments, clients, staff, services, reports]

# Warn when usage reaches this fraction of a cap.
near_limit_ratio: 0.8

upgrade_url: /settings?tab=subscription
"""


@cli.command()
@click.argument("directory", default=".")
def init(directory: str) -> None:
    """Scaffold a new plan-gate project with example config."""
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)

    created: list[str] = []
    skipped: list[str] = []

    files = {
        "plan-gate.yaml": _INIT_CONFIG,
        "features.yaml": _INIT_REGISTRY,
        "tenants.yaml": _INIT_TENANTS,
    }
    for name, content in files.items():
        target = root / name
        if target.exists():
            skipped.append(name)
            continue
        target.write_text(content, encoding="utf-8")
        created.append(name)

    plans_dir = root / "plans"
    if not plans_dir.exists():
        plans_dir.mkdir(parents=True)
        (plans_dir / "starter.yaml").write_text(_INIT_PLAN, encoding="utf-8")
        (plans_dir / "professional.yaml").write_text(_INIT_PLAN_PRO, encoding="utf-8")
        created.extend(["plans/starter.yaml", "plans/professional.yaml"])
    else:
        skipped.append("plans/")

    if created:
        click.echo(click.style("Created:", fg="green", bold=True))
        for f in created:
            click.echo(f"  + {f}")

    for s in skipped:
        click.echo(f"  skip  {s} (already exists)")

    if created:
        click.echo("\n" + click.style("Next steps:", bold=True))
        click.echo("  plan-gate validate")
        click.echo("  plan-gate list-plans")
        click.echo("  plan-gate check clients --tenant demo-tenant")
    elif not skipped:
        click.echo("Nothing to create, all files already exist.")


# --- check command ---


def _print_decision(decision: FeatureAccessDecision, label: str) -> None:
    if decision.can_consume:
        headline = click.style("ALLOW", fg="green", bold=True)
    else:
        headline = click.style("DENY", fg="red", bold=True)
    click.echo(f"{headline} {label} ({decision.feature_id})")
    click.echo(f"  enabled:   {decision.enabled}")
    if decision.unlimited:
        click.echo("  limit:     unlimited")
    else:
        click.echo(f"  usage:     {decision.usage}")
        click.echo(f"  limit:     {decision.limit}")
        click.echo(f"  remaining: {decision.remaining}")
    if decision.near_limit:
        click.echo(click.style("  near limit", fg="yellow"))


@cli.command()
@click.argument("feature")
@click.option("--tenant", "-t", default=None, help="Tenant id (looked up in the tenants file)")
@click.option("--plan", "-p", default=None, help="Plan id, when not using --tenant")
@click.option("--status", "-s", default="active", help="Subscription status, when not using --tenant")
@click.option("--usage", "usage_json", default=None, help="Usage counts as JSON")
@click.option("--catalog", default=None, help="Path to plan YAML file or directory")
@click.option("--registry", default=None, help="Path to feature registry YAML")
@click.option("--tenants", default=None, help="Path to tenants YAML")
@click.option("--audit-log", default=None, help="Path to gate audit log")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def check(
    feature: str,
    tenant: str | None,
    plan: str | None,
    status: str,
    usage_json: str | None,
    catalog: str | None,
    registry: str | None,
    tenants: str | None,
    audit_log: str | None,
    json_output: bool,
) -> None:
    """Evaluate access to a feature."""
    cfg = _resolve_cfg()
    catalog = _or(catalog, cfg.catalog, DEFAULT_CATALOG)
    registry = _or(registry, cfg.registry, DEFAULT_REGISTRY)
    tenants = _or(tenants, cfg.tenants, DEFAULT_TENANTS)
    audit_log = audit_log or cfg.audit_log

    try:
        gate = PlanGate(
            catalog=catalog,
            registry=_existing(registry),
            trial_features=cfg.trial_features,
            tenants=_existing(tenants) if tenant is not None else None,
            audit_log=audit_log if tenant is not None else None,
            **({"upgrade_url": cfg.upgrade_url} if cfg.upgrade_url else {}),
        )
    except (CatalogError, RegistryError, SourceUnavailableError, AuditError) as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    label = gate.registry.label(feature) if gate.registry is not None else feature

    if tenant is not None:
        try:
            result = gate.enforce(tenant, feature)
        except SourceUnavailableError as e:
            # Fail closed: no tenant data means no access.
            click.echo(click.style("DENY", fg="red", bold=True) + f" {e}")
            sys.exit(1)
        if json_output:
            click.echo(json.dumps(result.to_dict(), indent=2))
            return
        _print_decision(result.decision, label)
        if result.denial is not None:
            click.echo(f"  reason:    {result.denial.message}")
            suggested = result.denial.upgrade.suggested_plan
            click.echo(
                f"  upgrade:   {result.denial.upgrade.url}"
                + (f" (try '{suggested}')" if suggested else "")
            )
        warning = gate.warn_if_near_limit(tenant, feature)
        if warning is not None:
            click.echo(click.style(f"  warning:   {warning.message}", fg="yellow"))
        return

    parsed_usage: dict[str, Any] = {}
    if usage_json is not None:
        try:
            parsed_usage = json.loads(usage_json)
        except json.JSONDecodeError as e:
            click.echo(f"Error: invalid JSON in --usage: {e}", err=True)
            sys.exit(1)
        if not isinstance(parsed_usage, dict):
            click.echo("Error: --usage must be a JSON object", err=True)
            sys.exit(1)

    try:
        subscription = SubscriptionState(plan_id=plan, status=status)
        decision = gate.check(feature, subscription, parsed_usage)
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(decision.to_dict(), indent=2))
    else:
        _print_decision(decision, label)


# --- test command ---


@cli.command("test")
@click.argument("test_path")
@click.option("--catalog", default=None, help="Path to plan YAML file or directory")
def test_scenarios(test_path: str, catalog: str | None) -> None:
    """Run plan scenarios against the catalog.

    TEST_PATH is a YAML file or directory of YAML files containing scenarios.
    Each scenario declares a plan/status/usage/feature and the expected outcome.
    """
    cfg = _resolve_cfg()
    catalog = _or(catalog, cfg.catalog, DEFAULT_CATALOG)

    try:
        cases = load_test_files(Path(test_path))
    except ScenarioTestError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)

    try:
        gate = PlanGate(catalog=catalog, trial_features=cfg.trial_features)
    except CatalogError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    suite = run_tests(gate.resolver, cases)

    for result in suite.results:
        if result.passed:
            click.echo(click.style("  PASS", fg="green") + f"  {result.case.name}")
        else:
            click.echo(
                click.style("  FAIL", fg="red")
                + f"  {result.case.name}"
                + f"  ({result.reason})"
            )

    click.echo("")
    if suite.all_passed:
        click.echo(click.style(f"All {suite.total} test(s) passed.", fg="green", bold=True))
    else:
        click.echo(
            click.style(f"{suite.failed} failed", fg="red", bold=True)
            + f", {suite.passed} passed, {suite.total} total."
        )
        sys.exit(1)


# --- list commands ---


@cli.command("list-plans")
@click.option("--catalog", default=None, help="Path to plan YAML file or directory")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def list_plans(catalog: str | None, json_output: bool) -> None:
    """Show all plans in the catalog."""
    cfg = _resolve_cfg()
    catalog = _or(catalog, cfg.catalog, DEFAULT_CATALOG)
    try:
        cat = load_catalog(catalog)
    except CatalogError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps([p.model_dump(mode="json") for p in cat.plans], indent=2))
        return

    for p in cat.plans:
        enabled = sum(1 for r in p.features.values() if r.enabled)
        capped = sum(1 for r in p.features.values() if r.enabled and r.cap is not None)
        click.echo(
            f"  {p.id:<16} {p.name:<16} "
            f"{p.price_monthly / 100:>8.2f}/mo  "
            f"{enabled} feature(s), {capped} capped"
        )
    click.echo(f"\n{len(cat)} plan(s) in catalog.")


@cli.command("list-features")
@click.option("--registry", default=None, help="Path to feature registry YAML")
@click.option("--category", default=None, help="Filter by category")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def list_features(registry: str | None, category: str | None, json_output: bool) -> None:
    """Show all registered features."""
    cfg = _resolve_cfg()
    registry = _or(registry, cfg.registry, DEFAULT_REGISTRY)
    try:
        reg = load_registry(registry)
    except RegistryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    features = reg.list_by_category(category) if category else reg.features
    features = sorted(features, key=lambda f: f.id)

    if json_output:
        click.echo(json.dumps([f.model_dump(mode="json") for f in features], indent=2))
        return

    if not features:
        click.echo("No features found.")
        return
    for f in features:
        click.echo(f"  {f.id:<24} {f.label:<28} [{f.category or '-'}]")
    click.echo(f"\n{len(features)} feature(s) registered.")


@cli.command("list-modules")
@click.option("--modules", "modules_path", default=None, help="Path to modules YAML")
@click.option("--enabled", default=None, help="Comma-separated enabled module ids")
@click.option("--permission", "permissions", multiple=True, help="Permission held (repeatable)")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def list_modules(
    modules_path: str | None,
    enabled: str | None,
    permissions: tuple[str, ...],
    json_output: bool,
) -> None:
    """Show modules a user with the given permissions can open."""
    cfg = _resolve_cfg()
    modules_path = _or(modules_path, cfg.modules, DEFAULT_MODULES)
    try:
        catalog = load_modules(modules_path)
    except ModuleCatalogError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    enabled_ids = [m.strip() for m in enabled.split(",") if m.strip()] if enabled else None
    manager = ModuleManager(catalog, enabled_ids, permissions)
    available = manager.available_modules()

    if json_output:
        data = [
            {
                "id": m.id,
                "name": m.name,
                "routes": [r.path for r in manager.module_routes(m.id)],
                "dependencies": manager.check_dependencies(m.id).model_dump(),
            }
            for m in available
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not available:
        click.echo("No accessible modules.")
        return
    for m in available:
        deps = manager.check_dependencies(m.id)
        note = "" if deps.satisfied else click.style(
            f"  missing: {', '.join(deps.missing)}", fg="yellow",
        )
        click.echo(f"  {m.id:<16} {m.name:<20} {len(manager.module_routes(m.id))} route(s){note}")


# --- validate command ---


@cli.command()
@click.option("--catalog", default=None, help="Path to plan YAML file or directory")
@click.option("--registry", default=None, help="Path to feature registry YAML")
@click.option("--modules", "modules_path", default=None, help="Path to modules YAML")
@click.option("--tenants", default=None, help="Path to tenants YAML")
def validate(
    catalog: str | None,
    registry: str | None,
    modules_path: str | None,
    tenants: str | None,
) -> None:
    """Validate configuration files."""
    cfg = _resolve_cfg()
    catalog = _or(catalog, cfg.catalog, DEFAULT_CATALOG)
    registry = _or(registry, cfg.registry, DEFAULT_REGISTRY)
    modules_path = _or(modules_path, cfg.modules, DEFAULT_MODULES)
    tenants = _or(tenants, cfg.tenants, DEFAULT_TENANTS)

    errors: list[str] = []
    ok_count = 0

    def _ok(msg: str) -> None:
        click.echo(click.style("OK", fg="green") + f"  {msg}")

    def _fail(msg: str) -> None:
        errors.append(msg)
        click.echo(click.style("FAIL", fg="red") + f"  {msg}")

    cat = None
    if Path(catalog).exists():
        try:
            cat = load_catalog(catalog)
            _ok(f"catalog: {len(cat)} plan(s) loaded")
            ok_count += 1
        except CatalogError as e:
            _fail(f"catalog: {e}")

    reg = None
    if Path(registry).exists():
        try:
            reg = load_registry(registry)
            problems = reg.validate()
            if problems:
                for p in problems:
                    _fail(f"registry: {p}")
            else:
                _ok(f"registry: {len(reg)} feature(s) loaded")
                ok_count += 1
        except RegistryError as e:
            _fail(f"registry: {e}")

    if cat is not None and reg is not None:
        problems = cat.validate_against(reg)
        if problems:
            for p in problems:
                _fail(f"catalog: {p}")
        else:
            _ok("catalog: every plan feature is registered")
            ok_count += 1

    if Path(modules_path).exists():
        try:
            mods = load_modules(modules_path)
            problems = mods.validate()
            if problems:
                for p in problems:
                    _fail(f"modules: {p}")
            else:
                _ok(f"modules: {len(mods)} module(s) loaded")
                ok_count += 1
        except ModuleCatalogError as e:
            _fail(f"modules: {e}")

    if Path(tenants).exists():
        try:
            subs, _ = load_tenants(tenants)
            unknown = [
                t for t in subs.tenants
                if cat is not None
                and (plan_id := subs.get_subscription(t).plan_id) is not None
                and plan_id not in cat
            ]
            if unknown:
                for t in unknown:
                    _fail(f"tenants: '{t}' is on a plan missing from the catalog")
            else:
                _ok(f"tenants: {len(subs.tenants)} tenant(s) loaded")
                ok_count += 1
        except SourceUnavailableError as e:
            _fail(f"tenants: {e}")

    if errors:
        click.echo(f"\n{len(errors)} error(s) found.")
        sys.exit(1)
    elif ok_count > 0:
        click.echo(f"\nAll {ok_count} check(s) passed.")
    else:
        click.echo("No config files found to validate.")


# --- usage command ---


_STATUS_COLORS = {
    UsageStatus.DISABLED: "white",
    UsageStatus.UNLIMITED: "cyan",
    UsageStatus.OK: "green",
    UsageStatus.NEAR_LIMIT: "yellow",
    UsageStatus.AT_LIMIT: "red",
}


@cli.command()
@click.argument("tenant")
@click.option("--catalog", default=None, help="Path to plan YAML file or directory")
@click.option("--registry", default=None, help="Path to feature registry YAML")
@click.option("--tenants", default=None, help="Path to tenants YAML")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def usage(
    tenant: str,
    catalog: str | None,
    registry: str | None,
    tenants: str | None,
    json_output: bool,
) -> None:
    """Show a tenant's usage against its plan."""
    cfg = _resolve_cfg()
    catalog = _or(catalog, cfg.catalog, DEFAULT_CATALOG)
    registry = _or(registry, cfg.registry, DEFAULT_REGISTRY)
    tenants = _or(tenants, cfg.tenants, DEFAULT_TENANTS)

    try:
        gate = PlanGate(
            catalog=catalog,
            registry=registry,
            tenants=tenants,
            trial_features=cfg.trial_features,
        )
        report = gate.usage_report(tenant)
    except (CatalogError, RegistryError, SourceUnavailableError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    click.echo(
        click.style(tenant, bold=True)
        + f"  plan={report.plan_id or '-'}  status={report.status.value}"
    )
    if report.trial_days_left is not None:
        click.echo(f"  trial ends in {report.trial_days_left} day(s)")

    for category in report.categories:
        click.echo(f"\n  {category.label}")
        for f in category.features:
            if f.status in (UsageStatus.DISABLED, UsageStatus.UNLIMITED):
                amount = ""
            else:
                amount = f"{f.decision.usage}/{f.decision.limit} ({f.percentage:.0f}%)"
            click.echo(
                f"    {f.label:<28} "
                + click.style(f"{f.status.value:<11}", fg=_STATUS_COLORS[f.status])
                + f" {amount}"
            )


# --- audit group ---


@cli.group()
def audit() -> None:
    """Audit log commands."""


@audit.command("verify")
@click.argument("log_file", default=DEFAULT_AUDIT_LOG)
def audit_verify(log_file: str) -> None:
    """Verify audit log chain integrity."""
    path = Path(log_file)
    if not path.exists():
        click.echo(f"Audit log not found: {path}")
        sys.exit(1)

    is_valid, errors = verify_log(path)

    if is_valid:
        click.echo(click.style("VALID", fg="green", bold=True)
                   + f"  audit log chain is intact ({path})")
    else:
        click.echo(click.style("INVALID", fg="red", bold=True)
                   + f"  {len(errors)} error(s) found:")
        for error in errors:
            click.echo(f"  - {error}")
        sys.exit(1)


@audit.command("show")
@click.argument("log_file", default=DEFAULT_AUDIT_LOG)
@click.option("--last", "count", default=20, help="Number of entries to show")
@click.option("--denied-only", is_flag=True, help="Only show denied checks")
@click.option("--tenant", "-t", default=None, help="Only show one tenant's checks")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def audit_show(
    log_file: str,
    count: int,
    denied_only: bool,
    tenant: str | None,
    json_output: bool,
) -> None:
    """Show recent audit log entries."""
    path = Path(log_file)
    if not path.exists():
        click.echo(f"Audit log not found: {path}")
        sys.exit(1)

    try:
        events = GateAuditLogger(path).read_events(tenant)
    except AuditError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if denied_only:
        events = [e for e in events if not e.allowed]
    events = events[-count:]

    if json_output:
        click.echo(json.dumps([e.model_dump(mode="json") for e in events], indent=2))
        return

    if not events:
        click.echo("No audit entries found.")
        return
    for event in events:
        if event.allowed:
            verdict = click.style(f"{'ALLOW':<16}", fg="green")
        else:
            code = event.denial_code.value.upper() if event.denial_code else "DENY"
            verdict = click.style(f"{code:<16}", fg="red")
        limit = "unlimited" if event.limit is None else f"{event.usage}/{event.limit}"
        click.echo(
            f"  {event.timestamp.isoformat()[:19]}  {verdict} "
            f"{event.feature_id:<22} tenant={event.tenant_id}  {limit}"
        )
    click.echo(f"\n{len(events)} event(s) shown.")
