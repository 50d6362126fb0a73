#!/usr/bin/env python3
"""Demo: A salon on the Starter plan runs into its limits.

The salon adds clients until the plan cap, sees the near-limit warning,
gets blocked at the cap, and is let through again after upgrading.
Every gate check lands in a hash-chained audit log.

Run from the project root:
    python examples/demo_salon.py
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add src to path for running without install
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from plan_gate import InMemoryUsageStore, PlanGate, StaticSubscriptionSource
from plan_gate.models import GateResult, SubscriptionStatus


def main() -> None:
    # --- Setup ---
    project_root = Path(__file__).resolve().parent.parent
    audit_path = project_root / "examples" / "demo_audit.jsonl"
    audit_path.unlink(missing_ok=True)

    subscriptions = StaticSubscriptionSource()
    subscriptions.set_subscription("demo-salon", SubscriptionStatus.ACTIVE, plan_id="starter")
    usage = InMemoryUsageStore({"demo-salon": {"clients": 76}})

    gate = PlanGate(
        catalog=project_root / "plans",
        registry=project_root / "features.yaml",
        subscriptions=subscriptions,
        usage=usage,
        audit_log=audit_path,
    )

    print("=" * 70)
    print("  plan-gate Demo: Starter salon")
    print("=" * 70)
    print(f"\n  Plans:    {', '.join(gate.catalog.list_plans())}")
    print(f"  Features: {len(gate.registry)} registered")
    print()

    # --- Scenario 1: Adding clients up to the cap ---
    print("-" * 70)
    print("  Scenario 1: Add clients until the Starter cap of 100")
    print("-" * 70)

    for _ in range(26):
        result = gate.enforce("demo-salon", "clients")
        _print_result(result)
        if not result.ok:
            break
        usage.record("demo-salon", "clients")
        warning = gate.warn_if_near_limit("demo-salon", "clients")
        if warning is not None and warning.usage % 5 == 0:
            print(f"      \033[93mwarning\033[0m {warning.message}")

    # --- Scenario 2: A feature the plan does not include ---
    print()
    print("-" * 70)
    print("  Scenario 2: Inventory is not part of Starter")
    print("-" * 70)
    _print_result(gate.enforce("demo-salon", "inventory"))

    # --- Scenario 3: Upgrade ---
    print()
    print("-" * 70)
    print("  Scenario 3: Upgrade to Professional")
    print("-" * 70)
    subscriptions.set_subscription("demo-salon", SubscriptionStatus.ACTIVE, plan_id="professional")
    _print_result(gate.enforce("demo-salon", "clients"))
    _print_result(gate.enforce("demo-salon", "inventory"))

    # --- Scenario 4: Payment fails ---
    print()
    print("-" * 70)
    print("  Scenario 4: Subscription goes past due")
    print("-" * 70)
    subscriptions.set_subscription("demo-salon", SubscriptionStatus.PAST_DUE, plan_id="professional")
    _print_result(gate.enforce("demo-salon", "appointments"))

    # --- Audit ---
    print()
    print("-" * 70)
    print("  Audit trail")
    print("-" * 70)
    is_valid, errors = gate.verify_audit()
    events = gate.audit.read_events()
    denied = sum(1 for e in events if not e.allowed)
    print(f"  {len(events)} checks logged, {denied} denied, chain valid: {is_valid}")
    for error in errors:
        print(f"  - {error}")

    print()
    print("=" * 70)
    print("  Demo complete. Audit log: examples/demo_audit.jsonl")
    print("=" * 70)


def _print_result(result: GateResult) -> None:
    """Pretty-print a gate result."""
    decision = result.decision
    if decision.unlimited:
        amount = "unlimited"
    elif decision.enabled:
        amount = f"{decision.usage}/{decision.limit}"
    else:
        amount = "-"

    if result.ok:
        verdict = "\033[92mALLOW\033[0m"
        detail = ""
    else:
        verdict = "\033[91mDENY \033[0m"
        suggested = result.denial.upgrade.suggested_plan
        detail = f"| {result.denial.message}"
        if suggested:
            detail += f" (try {suggested})"

    print(f"  {result.feature_id:<14} {amount:<10} -> {verdict} {detail}")


if __name__ == "__main__":
    main()
