# Overview: Pytest coverage for plan lookup and legacy schema normalization.

import math

import pytest

from fitsuite.services import plan_catalog
from fitsuite.services.plan_catalog import (
    PlanNotFound,
    normalize_limits,
    normalize_modules,
    normalize_plan,
    to_cents,
)


class TestPlanLookup:
    def test_primary_plan_is_normalized(self, db_session, plans):
        plan = plan_catalog.read_plan("basic")
        assert plan.name == "Basic"
        assert plan.price_cents == 100000
        assert plan.duration_days == 30
        assert plan.modules == {"members": True, "payments": True, "reports": False}
        assert plan.limits == {"maxMembers": 100, "maxDevices": 2, "maxBranches": 1, "maxOfflineHours": 72}

    def test_legacy_namespace_is_fallback(self, db_session, plans):
        plan = plan_catalog.read_plan("clasico")
        assert plan.name == "Clasico"
        assert plan.price_cents == 75050
        assert plan.duration_days == 15
        assert plan.max_members == 40
        assert plan.modules["members"] is True

    def test_primary_wins_over_legacy(self, db_session, plans):
        plan_catalog.upsert_plan("basic", {"name": "Old basic", "price": 1}, legacy=True)
        db_session.commit()
        assert plan_catalog.read_plan("basic").name == "Basic"

    def test_missing_plan_raises(self, db_session, plans):
        with pytest.raises(PlanNotFound) as exc:
            plan_catalog.read_plan("enterprise")
        assert exc.value.plan_id == "enterprise"

    def test_missing_duration_uses_default(self, db_session):
        plan_catalog.upsert_plan("nodays", {"name": "No days", "price": 10})
        db_session.commit()
        assert plan_catalog.read_plan("nodays", default_duration_days=45).duration_days == 45

    def test_list_plans_hides_shadowed_legacy_entries(self, db_session, plans):
        plan_catalog.upsert_plan("basic", {"name": "Old basic"}, legacy=True)
        db_session.commit()
        listed = plan_catalog.list_plans()
        assert [(p["plan_id"], p["namespace"]) for p in listed] == [
            ("basic", "primary"),
            ("pro", "primary"),
            ("clasico", "legacy"),
        ]


class TestModuleNormalization:
    def test_list_encoding(self):
        assert normalize_modules({"modules": ["a", "b"]}) == {"a": True, "b": True, "reports": False}

    def test_map_encoding_keeps_disabled(self):
        modules = normalize_modules({"modulos": {"a": 1, "b": 0, "reports": True}})
        assert modules == {"a": True, "b": False, "reports": True}

    def test_several_fields_are_merged(self):
        modules = normalize_modules({"modulosPlan": ["a"], "features": {"b": True}})
        assert modules == {"a": True, "b": True, "reports": False}

    def test_no_modules(self):
        assert normalize_modules({}) == {"reports": False}


class TestLimitNormalization:
    def test_defaults(self):
        assert normalize_limits({}) == {
            "maxMembers": 0,
            "maxDevices": 1,
            "maxBranches": 1,
            "maxOfflineHours": 168,
        }

    def test_floors_apply(self):
        limits = normalize_limits({"limits": {"maxMembers": -5, "maxDevices": 0, "maxBranches": -1, "maxOfflineHours": 2}})
        assert limits == {"maxMembers": 0, "maxDevices": 1, "maxBranches": 1, "maxOfflineHours": 24}

    def test_non_finite_values_take_floor(self):
        limits = normalize_limits({"maxDevices": math.inf, "maxBranches": "abc", "maxOfflineHours": math.nan})
        assert limits["maxDevices"] == 1
        assert limits["maxBranches"] == 1
        assert limits["maxOfflineHours"] == 24

    def test_flat_keys_are_read(self):
        assert normalize_limits({"maxDevices": "4"})["maxDevices"] == 4

    def test_nested_wins_over_flat(self):
        assert normalize_limits({"maxDevices": 9, "limits": {"maxDevices": 2}})["maxDevices"] == 2

    @pytest.mark.parametrize("raw", [
        {},
        {"limits": {"maxMembers": 12.7, "maxDevices": -3}},
        {"maxOfflineHours": "1e400", "maxBranches": None},
        {"limits": {"maxMembers": "x", "maxDevices": 5, "maxBranches": 2, "maxOfflineHours": 500}},
    ])
    def test_normalization_is_idempotent(self, raw):
        once = normalize_limits(raw)
        assert normalize_limits(once) == once

    def test_plan_normalization_is_pure(self):
        data = {"nombre": "X", "precio": 10, "modulos": ["a"], "limits": {"maxDevices": 0}}
        snapshot = dict(data)
        assert normalize_plan("x", data) == normalize_plan("x", data)
        assert data == snapshot


class TestPriceConversion:
    @pytest.mark.parametrize("amount,cents", [
        (1000, 100000),
        ("750.50", 75050),
        (0.005, 1),
        (None, 0),
        ("nope", 0),
        (-5, 0),
    ])
    def test_to_cents(self, amount, cents):
        assert to_cents(amount) == cents
