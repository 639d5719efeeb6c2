# Overview: Service-layer operations for the license plan catalog; lookup and normalization.

"""
License Plan Catalog

Plans are authored as loose JSON documents and have accumulated several
field-name conventions over time (English and legacy Spanish keys, limits
nested or flat, modules as a list or a map). Everything downstream works
on PlanDescriptor only; the alias handling lives here and nowhere else.

Normalization is pure: no I/O, no clock, same input -> same output. It runs
inside retried transactions and must be safe to repeat.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..extensions import db
from ..models import LicensePlan, LegacyLicensePlan


class PlanNotFound(Exception):
    """Raised when a plan id is absent from both catalogs."""
    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id!r} not found")
        self.plan_id = plan_id


MODULE_KEYS = ("modulosPlan", "modulos", "modules", "features")

DEFAULT_MAX_MEMBERS = 0
DEFAULT_MAX_DEVICES = 1
DEFAULT_MAX_BRANCHES = 1
DEFAULT_MAX_OFFLINE_HOURS = 168

MIN_MAX_MEMBERS = 0
MIN_MAX_DEVICES = 1
MIN_MAX_BRANCHES = 1
MIN_MAX_OFFLINE_HOURS = 24


@dataclass(frozen=True)
class PlanDescriptor:
    plan_id: str
    name: str
    price_cents: int
    duration_days: int
    tier: str
    modules: dict = field(default_factory=dict)
    limits: dict = field(default_factory=dict)

    @property
    def max_members(self) -> int:
        return self.limits["maxMembers"]

    @property
    def enabled_modules(self) -> dict:
        return {name: True for name, enabled in self.modules.items() if enabled}

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "duration_days": self.duration_days,
            "tier": self.tier,
            "modules": dict(self.modules),
            "limits": dict(self.limits),
        }


# =============================================================================
# LOOKUP
# =============================================================================

def read_plan_data(plan_id: str) -> dict:
    """
    Raw plan document: primary catalog first, legacy namespace as fallback.

    Raises:
        PlanNotFound: if neither catalog holds the id
    """
    plan = db.session.query(LicensePlan).filter_by(plan_id=plan_id).first()
    if plan is None:
        plan = db.session.query(LegacyLicensePlan).filter_by(plan_id=plan_id).first()
    if plan is None:
        raise PlanNotFound(plan_id)
    return dict(plan.data or {})


def read_plan(plan_id: str, *, default_duration_days: int = 30) -> PlanDescriptor:
    """Resolve a plan id to a normalized PlanDescriptor."""
    return normalize_plan(plan_id, read_plan_data(plan_id), default_duration_days=default_duration_days)


def upsert_plan(plan_id: str, data: dict, *, legacy: bool = False):
    """Create or replace a catalog entry (caller commits)."""
    model = LegacyLicensePlan if legacy else LicensePlan
    plan = db.session.query(model).filter_by(plan_id=plan_id).first()
    if plan is None:
        plan = model(plan_id=plan_id, data=dict(data))
        db.session.add(plan)
    else:
        plan.data = dict(data)
    db.session.flush()
    return plan


def list_plans() -> list[dict]:
    primary = db.session.query(LicensePlan).order_by(LicensePlan.plan_id).all()
    legacy = db.session.query(LegacyLicensePlan).order_by(LegacyLicensePlan.plan_id).all()
    seen = {p.plan_id for p in primary}
    return [p.to_dict() for p in primary] + [p.to_dict() for p in legacy if p.plan_id not in seen]


# =============================================================================
# NORMALIZATION (pure)
# =============================================================================

def normalize_plan(plan_id: str, data: dict, *, default_duration_days: int = 30) -> PlanDescriptor:
    max_members_fallback = _first_present(data, ("maxUsuarios",))
    duration = _finite_number(_first_present(data, ("durationDays", "duracion", "duracionDias")))
    if duration is None or duration < 1:
        duration = default_duration_days

    return PlanDescriptor(
        plan_id=str(plan_id),
        name=str(data.get("name") or data.get("nombre") or plan_id),
        price_cents=normalize_price_cents(data),
        duration_days=int(duration),
        tier=str(data.get("tier") or "custom"),
        modules=normalize_modules(data),
        limits=normalize_limits(data, fallback_max_members=max_members_fallback),
    )


def normalize_modules(plan: dict) -> dict:
    """
    Merge every legacy module encoding into one {name: bool} map.

    Lists enable each named module; maps copy their truthiness. Later keys
    in MODULE_KEYS override earlier ones. `reports` is always present.
    """
    out: dict[str, bool] = {}
    for key in MODULE_KEYS:
        value = plan.get(key)
        if not value:
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                name = str(item or "").strip()
                if name:
                    out[name] = True
        elif isinstance(value, dict):
            for name, enabled in value.items():
                if name:
                    out[str(name)] = bool(enabled)
    out.setdefault("reports", False)
    return out


def normalize_limits(plan: dict, fallback_max_members=None) -> dict:
    """
    Canonical limits with floors applied.

    Reads `plan["limits"][k]`, then `plan[k]`, then the default. Missing values
    take the default; non-finite or below-floor values take the floor.
    normalize_limits(normalize_limits(x)) == normalize_limits(x).
    """
    nested = plan.get("limits") if isinstance(plan.get("limits"), dict) else {}

    def pick(key, default):
        raw = nested.get(key)
        if raw is None:
            raw = plan.get(key)
        return default if raw is None else raw

    members_default = DEFAULT_MAX_MEMBERS if fallback_max_members is None else fallback_max_members
    return {
        "maxMembers": _floor(pick("maxMembers", members_default), MIN_MAX_MEMBERS),
        "maxDevices": _floor(pick("maxDevices", DEFAULT_MAX_DEVICES), MIN_MAX_DEVICES),
        "maxBranches": _floor(pick("maxBranches", DEFAULT_MAX_BRANCHES), MIN_MAX_BRANCHES),
        "maxOfflineHours": _floor(pick("maxOfflineHours", DEFAULT_MAX_OFFLINE_HOURS), MIN_MAX_OFFLINE_HOURS),
    }


def normalize_price_cents(plan: dict) -> int:
    if plan.get("priceCents") is not None:
        cents = _finite_number(plan.get("priceCents"))
        return max(0, int(cents)) if cents is not None else 0
    return to_cents(_first_present(plan, ("price", "precio")))


def to_cents(amount) -> int:
    """Currency units (int/float/str) -> integer cents, half-up. Invalid -> 0."""
    if amount is None or isinstance(amount, bool):
        return 0
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite():
        return 0
    return max(0, int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def from_cents(cents: int) -> float:
    return float(Decimal(int(cents)) / 100)


def _first_present(data: dict, keys: tuple):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _finite_number(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _floor(value, minimum: int) -> int:
    number = _finite_number(value)
    if number is None or number < minimum:
        return minimum
    return int(number)
