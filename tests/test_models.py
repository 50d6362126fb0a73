"""Tests for plan-gate data models."""

import pytest
from pydantic import ValidationError

from plan_gate.enforcement.gate import FeatureDeniedError
from plan_gate.models import (
    DenialCode,
    DenialReason,
    FeatureAccessDecision,
    FeatureDefinition,
    FeatureRule,
    GateResult,
    PlanDefinition,
    SubscriptionState,
    SubscriptionStatus,
    UpgradeAction,
    UsageSnapshot,
)


class TestFeatureRule:
    def test_unlimited_when_cap_missing(self):
        rule = FeatureRule(feature_id="reports", enabled=True)
        assert rule.cap is None

    def test_zero_cap_allowed(self):
        assert FeatureRule(feature_id="sms", enabled=True, cap=0).cap == 0

    @pytest.mark.parametrize("cap", [-1, 2.5, "100", True])
    def test_rejects_bad_caps(self, cap):
        with pytest.raises(ValidationError):
            FeatureRule(feature_id="clients", enabled=True, cap=cap)

    def test_frozen(self):
        rule = FeatureRule(feature_id="clients", enabled=True, cap=100)
        with pytest.raises(ValidationError):
            rule.cap = 200


class TestFeatureDefinition:
    def test_valid(self):
        f = FeatureDefinition(id="api_access", label="API Access")
        assert f.description == ""
        assert f.category is None

    @pytest.mark.parametrize("bad_id", ["", "Clients", "1clients", "api-access"])
    def test_rejects_bad_ids(self, bad_id):
        with pytest.raises(ValidationError):
            FeatureDefinition(id=bad_id, label="x")


class TestPlanDefinition:
    def test_defaults(self):
        plan = PlanDefinition(id="free", name="Free")
        assert plan.features == {}
        assert plan.price_monthly == 0
        assert plan.sort_order == 0

    def test_rejects_negative_price(self):
        with pytest.raises(ValidationError):
            PlanDefinition(id="free", name="Free", price_monthly=-1)


class TestSubscriptionState:
    def test_status_from_string(self):
        s = SubscriptionState(plan_id="starter", status="active")
        assert s.status == SubscriptionStatus.ACTIVE

    def test_rejects_unknown_status(self):
        with pytest.raises(ValidationError):
            SubscriptionState(plan_id="starter", status="paused")

    def test_plan_optional(self):
        assert SubscriptionState(status="trial").plan_id is None


class TestUsageSnapshot:
    def test_missing_reads_as_zero(self):
        assert UsageSnapshot().get("clients") == 0

    def test_negative_reads_as_zero(self):
        assert UsageSnapshot(counts={"clients": -4}).get("clients") == 0

    def test_value(self):
        assert UsageSnapshot(counts={"clients": 42}).get("clients") == 42


class TestGateResult:
    def _decision(self, can_consume: bool) -> FeatureAccessDecision:
        return FeatureAccessDecision(
            feature_id="clients", enabled=True, unlimited=False,
            usage=100, limit=100, remaining=0, can_consume=can_consume,
        )

    def test_ok_without_denial(self):
        result = GateResult(tenant_id="t1", feature_id="clients", decision=self._decision(True))
        assert result.ok
        result.raise_for_denial()

    def test_raise_for_denial(self):
        denial = DenialReason(
            code=DenialCode.LIMIT_REACHED,
            feature_id="clients",
            label="Client Management",
            message="You've reached your Client Management limit. Upgrade to add more.",
            usage=100,
            limit=100,
            upgrade=UpgradeAction(url="/billing"),
        )
        result = GateResult(
            tenant_id="t1", feature_id="clients",
            decision=self._decision(False), denial=denial,
        )
        assert not result.ok
        with pytest.raises(FeatureDeniedError) as exc_info:
            result.raise_for_denial()
        assert exc_info.value.denial.code == DenialCode.LIMIT_REACHED
        assert "limit" in str(exc_info.value)

    def test_to_dict_includes_ok(self):
        result = GateResult(tenant_id="t1", feature_id="clients", decision=self._decision(True))
        data = result.to_dict()
        assert data["ok"] is True
        assert data["decision"]["limit"] == 100
        assert data["denial"] is None
