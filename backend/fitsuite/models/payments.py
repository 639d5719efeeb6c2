from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class ProcessedPayment(db.Model):
    """
    Idempotency marker: one row per provider payment id, global namespace.

    Write-once. Its existence is the sole gate against re-applying a
    payment; it is inserted last in the same transaction as the effects it
    guards, so an aborted unit leaves no marker behind.
    """
    __tablename__ = "processed_payments"

    payment_id = db.Column(db.String(64), primary_key=True)
    gym_id = db.Column(db.String(64), nullable=True, index=True)
    kind = db.Column(db.String(16), nullable=False)  # license | order
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "gym_id": self.gym_id,
            "kind": self.kind,
            "processed_at": to_utc_z(self.processed_at),
        }


class AccountingTransaction(db.Model):
    """
    Append-only accounting record of money received by a gym.

    TYPES:
    - license: software license payment
    - store: e-commerce order settlement
    """
    __tablename__ = "accounting_transactions"
    __table_args__ = (
        db.UniqueConstraint("gym_id", "payment_id", "type", name="uq_acct_txn_gym_payment_type"),
        db.Index("ix_acct_txn_gym_occurred", "gym_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    payment_id = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(16), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=True)
    medium = db.Column(db.String(16), nullable=False)  # cash | online
    discount_pct = db.Column(db.Integer, nullable=False, default=0)
    detail = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "payment_id": self.payment_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "medium": self.medium,
            "discount_pct": self.discount_pct,
            "detail": self.detail,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class RevenueRollup(db.Model):
    """
    Revenue counters per gym, period and category.

    period_type is 'day' (YYYY-MM-DD) or 'month' (YYYY-MM), both computed in
    the gym's reference timezone. All counter updates are SQL increments.
    """
    __tablename__ = "revenue_rollups"
    __table_args__ = (
        db.UniqueConstraint("gym_id", "period_type", "period_key", "category", name="uq_rollup_bucket"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    period_type = db.Column(db.String(8), nullable=False)
    period_key = db.Column(db.String(10), nullable=False)
    category = db.Column(db.String(16), nullable=False)

    count = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_cents = db.Column(db.Integer, nullable=False, default=0)
    online_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "total": self.total_cents,
            "cashTotal": self.cash_cents,
            "onlineTotal": self.online_cents,
        }
