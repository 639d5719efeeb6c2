# Overview: Service-layer operations for accounting records and daily/monthly revenue rollups.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import AccountingTransaction, RevenueRollup
from fitsuite.time_utils import utcnow, business_day_id, business_month_id
"""
Revenue Rollup Invariants (authoritative)

- Buckets are keyed by (gym, period_type, period_key, category); period keys
  are computed in the gym's reference timezone, not UTC.
- Every period is initialized with zeroed buckets for all categories via
  insert-if-absent, so concurrent first writes of the day never clobber.
- Counter updates are SQL increments (col = col + n), never read-modify-write.
- Each accounting event increments exactly one category/medium pair of the
  day bucket and of the month bucket, once.
"""


class AccountingError(Exception):
    """Raised for invalid accounting events."""
    pass


CATEGORY_NEW_SIGNUP = "newSignup"
CATEGORY_RENEWAL = "renewal"
CATEGORY_STORE_SALE = "storeSale"

VALID_CATEGORIES = [
    CATEGORY_NEW_SIGNUP,
    CATEGORY_RENEWAL,
    CATEGORY_STORE_SALE,
]

MEDIUM_CASH = "cash"
MEDIUM_ONLINE = "online"

PERIOD_DAY = "day"
PERIOD_MONTH = "month"

CASH_METHODS = {"cash", "efectivo"}


def medium_for_method(method: str | None) -> str:
    """Provider payment method -> rollup medium."""
    normalized = (method or "").strip().lower()
    return MEDIUM_CASH if normalized in CASH_METHODS else MEDIUM_ONLINE


# =============================================================================
# ROLLUP
# =============================================================================

def accumulate(
    gym_id: str,
    category: str,
    amount_cents: int,
    medium: str,
    *,
    tz_name: str,
    at: datetime | None = None,
) -> None:
    """
    Add one accounting event to the gym's day and month buckets.

    Runs inside the caller's transaction (does not commit).
    """
    if category not in VALID_CATEGORIES:
        raise AccountingError(f"Invalid category: {category}. Must be one of {VALID_CATEGORIES}")
    if medium not in (MEDIUM_CASH, MEDIUM_ONLINE):
        raise AccountingError(f"Invalid medium: {medium}")
    if amount_cents < 0:
        raise AccountingError("Amount must not be negative")

    at = at or utcnow()
    periods = [
        (PERIOD_DAY, business_day_id(at, tz_name)),
        (PERIOD_MONTH, business_month_id(at, tz_name)),
    ]

    medium_col = RevenueRollup.cash_cents if medium == MEDIUM_CASH else RevenueRollup.online_cents

    for period_type, period_key in periods:
        _ensure_period_buckets(gym_id, period_type, period_key)
        db.session.query(RevenueRollup).filter_by(
            gym_id=gym_id,
            period_type=period_type,
            period_key=period_key,
            category=category,
        ).update(
            {
                RevenueRollup.count: RevenueRollup.count + 1,
                RevenueRollup.total_cents: RevenueRollup.total_cents + amount_cents,
                medium_col: medium_col + amount_cents,
            },
            synchronize_session=False,
        )


def _ensure_period_buckets(gym_id: str, period_type: str, period_key: str) -> None:
    rows = [
        {
            "gym_id": gym_id,
            "period_type": period_type,
            "period_key": period_key,
            "category": category,
            "count": 0,
            "total_cents": 0,
            "cash_cents": 0,
            "online_cents": 0,
        }
        for category in VALID_CATEGORIES
    ]

    dialect = db.engine.dialect.name
    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            from sqlalchemy.dialects.postgresql import insert
        stmt = insert(RevenueRollup.__table__).values(rows).on_conflict_do_nothing(
            index_elements=["gym_id", "period_type", "period_key", "category"]
        )
        db.session.execute(stmt)
        return

    # Other dialects: insert the missing buckets; a concurrent insert fails
    # the unit with IntegrityError and the retry sees the committed rows.
    existing = {
        row.category
        for row in db.session.query(RevenueRollup.category).filter_by(
            gym_id=gym_id, period_type=period_type, period_key=period_key
        )
    }
    for row in rows:
        if row["category"] not in existing:
            db.session.add(RevenueRollup(**row))
    db.session.flush()


def get_rollup(gym_id: str, period_type: str, period_key: str) -> dict:
    """
    Nested counters for one period:
    {"period": key, "income": {category: {count, total, cashTotal, onlineTotal}}}
    """
    if period_type not in (PERIOD_DAY, PERIOD_MONTH):
        raise AccountingError("period_type must be day or month")

    buckets = db.session.query(RevenueRollup).filter_by(
        gym_id=gym_id, period_type=period_type, period_key=period_key
    ).all()

    income = {category: {"count": 0, "total": 0, "cashTotal": 0, "onlineTotal": 0} for category in VALID_CATEGORIES}
    for bucket in buckets:
        income[bucket.category] = bucket.to_dict()

    return {
        "gym_id": gym_id,
        "period_type": period_type,
        "period": period_key,
        "income": income,
    }


# =============================================================================
# TRANSACTION RECORDS
# =============================================================================

def record_transaction(
    *,
    gym_id: str,
    payment_id: str,
    txn_type: str,
    amount_cents: int,
    method: str | None,
    discount_pct: int = 0,
    detail: str | None = None,
    occurred_at: datetime | None = None,
) -> AccountingTransaction:
    """Stage an accounting transaction record (caller commits)."""
    txn = AccountingTransaction(
        gym_id=gym_id,
        payment_id=str(payment_id),
        type=txn_type,
        amount_cents=amount_cents,
        method=method,
        medium=medium_for_method(method),
        discount_pct=discount_pct,
        detail=(detail or "")[:255] or None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn
