# Overview: Service-layer operations for the license state machine; source record plus derived caches.

"""
License State Machine

apply_payment() computes the next license state for a gym from its previous
record, the resolved plan and the approved payment, then stages:

1. LicenseRecord (source of truth) with revision + 1
2. LicenseConfigCache and DeviceClientCache (same values, client field names)
3. LicensePaymentHistory row

It never commits: the caller's transactional unit owns commit/rollback, so a
failure anywhere leaves every record untouched.

EVENT CLASSIFICATION:
- activated: no previous record, or previous record not active
- renewed:   previous active record on the same plan
- upgraded:  previous active record on a different plan

START DATE POLICY:
start_date is always the issuance time. A lapsed-then-renewed license
restarts from now; unused days from the previous period are not carried.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import LicenseRecord, LicenseConfigCache, DeviceClientCache, LicensePaymentHistory
from fitsuite.time_utils import utcnow, business_day_id
from .concurrency import lock_for_update
from .plan_catalog import PlanDescriptor


EVENT_ACTIVATED = "license_activated"
EVENT_RENEWED = "license_renewed"
EVENT_UPGRADED = "license_upgraded"

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


@dataclass(frozen=True)
class LicenseEvent:
    """Handed to the notification sink after commit."""
    event_type: str
    gym_id: str
    payment_id: str
    plan_id: str
    plan_name: str
    start_date: datetime
    expiry_date: datetime
    discount_pct: int
    revision: int

    def to_dict(self) -> dict:
        return {
            "eventType": self.event_type,
            "planId": self.plan_id,
            "planName": self.plan_name,
            "startDate": self.start_date.isoformat(),
            "expiryDate": self.expiry_date.isoformat(),
            "discountPercent": self.discount_pct,
            "revision": self.revision,
        }


def classify_event(previous: LicenseRecord | None, plan_id: str) -> str:
    if previous is None or previous.status != STATUS_ACTIVE:
        return EVENT_ACTIVATED
    if previous.plan_id and previous.plan_id != plan_id:
        return EVENT_UPGRADED
    return EVENT_RENEWED


def compute_discount_pct(amount_paid_cents: int, original_price_cents: int) -> int:
    """round((1 - paid/original) * 100), half-up, never below 0."""
    if original_price_cents <= 0:
        return 0
    ratio = Decimal(amount_paid_cents) / Decimal(original_price_cents)
    pct = ((Decimal(1) - ratio) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, int(pct))


def get_license(gym_id: str, *, lock: bool = False) -> LicenseRecord | None:
    query = db.session.query(LicenseRecord).filter_by(gym_id=gym_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def apply_payment(
    gym_id: str,
    plan: PlanDescriptor,
    *,
    payment_id: str,
    amount_paid_cents: int,
    default_grace_hours: int = 72,
    now: datetime | None = None,
) -> LicenseEvent:
    """
    Stage the next license state for `gym_id` (caller commits).

    Returns:
        LicenseEvent describing the transition
    """
    now = now or utcnow()
    previous = get_license(gym_id, lock=True)
    event_type = classify_event(previous, plan.plan_id)

    start_date = now
    expiry_date = start_date + timedelta(days=plan.duration_days)
    discount_pct = compute_discount_pct(amount_paid_cents, plan.price_cents)

    if previous is None:
        record = LicenseRecord(
            gym_id=gym_id,
            revision=0,
            grace_hours=default_grace_hours,
            license_id=_mint_license_id(plan.plan_id, now),
        )
        db.session.add(record)
    else:
        record = previous
        if not record.license_id:
            record.license_id = _mint_license_id(plan.plan_id, now)
        if record.grace_hours is None:
            record.grace_hours = default_grace_hours

    record.status = STATUS_ACTIVE
    record.plan_id = plan.plan_id
    record.start_date = start_date
    record.expiry_date = expiry_date
    record.modules = dict(plan.modules)
    record.limits = dict(plan.limits)
    record.last_payment_id = str(payment_id)
    record.revision = (record.revision or 0) + 1

    _write_caches(gym_id, plan, start_date=start_date, expiry_date=expiry_date)

    db.session.add(LicensePaymentHistory(
        gym_id=gym_id,
        payment_id=str(payment_id),
        plan_id=plan.plan_id,
        event_type=event_type,
        amount_paid_cents=amount_paid_cents,
        discount_pct=discount_pct,
        occurred_at=now,
    ))
    db.session.flush()

    return LicenseEvent(
        event_type=event_type,
        gym_id=gym_id,
        payment_id=str(payment_id),
        plan_id=plan.plan_id,
        plan_name=plan.name,
        start_date=start_date,
        expiry_date=expiry_date,
        discount_pct=discount_pct,
        revision=record.revision,
    )


def _mint_license_id(plan_id: str, now: datetime) -> str:
    return f"{plan_id}-{business_day_id(now, 'UTC')}"


def _write_caches(gym_id: str, plan: PlanDescriptor, *, start_date: datetime, expiry_date: datetime) -> None:
    """Overwrite both derived projections from the same normalized plan."""
    config = db.session.query(LicenseConfigCache).filter_by(gym_id=gym_id).first()
    if config is None:
        config = LicenseConfigCache(gym_id=gym_id)
        db.session.add(config)

    config.status = STATUS_ACTIVE
    config.plan = plan.plan_id
    config.plan_name = plan.name
    config.start = start_date
    config.expiry = expiry_date
    config.tier = plan.tier
    config.limits = dict(plan.limits)
    config.max_users = plan.max_members
    config.modules = dict(plan.modules)

    client = db.session.query(DeviceClientCache).filter_by(gym_id=gym_id).first()
    if client is None:
        client = DeviceClientCache(gym_id=gym_id)
        db.session.add(client)

    client.license_plan_id = plan.plan_id
    client.license_name = plan.name
    client.license_duration_days = plan.duration_days
    client.license_max_users = plan.max_members
    client.license_tier = plan.tier
    client.license_price_cents = plan.price_cents
    client.plan_modules = dict(plan.modules)
    client.enabled_modules = plan.enabled_modules
    client.limits = dict(plan.limits)
