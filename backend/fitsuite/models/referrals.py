from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class ReferralConfig(db.Model):
    """
    Referral program state for a gym acting as referrer (and as buyer, for
    its own link discount).

    INVARIANTS:
    - 0 <= discount_tier <= tier cap (20)
    - points_available >= 0
    - total_referrals only increases
    """
    __tablename__ = "referral_configs"
    __table_args__ = (
        db.CheckConstraint("discount_tier >= 0 AND discount_tier <= 20", name="ck_referral_tier_range"),
        db.CheckConstraint("points_available >= 0", name="ck_referral_points_nonnegative"),
    )

    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), primary_key=True)
    code = db.Column(db.String(64), nullable=True, unique=True, index=True)

    discount_tier = db.Column(db.Integer, nullable=False, default=0)
    points_available = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    total_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    total_referrals = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "gym_id": self.gym_id,
            "code": self.code,
            "discount_tier": self.discount_tier,
            "points_available": self.points_available,
            "total_points_earned": self.total_points_earned,
            "total_points_redeemed": self.total_points_redeemed,
            "total_referrals": self.total_referrals,
            "updated_at": to_utc_z(self.updated_at),
        }


class ReferralPendingClaim(db.Model):
    """
    Buyer-side record of a referral code used at signup.

    STATUS: pending -> consumed (one-way). Written by the signup flow,
    consumed by the first applied payment of the buyer.
    """
    __tablename__ = "referral_pending_claims"

    buyer_gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), primary_key=True)
    referrer_gym_id = db.Column(db.String(64), nullable=True)
    used_code = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")
    payment_id = db.Column(db.String(64), nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "buyer_gym_id": self.buyer_gym_id,
            "referrer_gym_id": self.referrer_gym_id,
            "used_code": self.used_code,
            "status": self.status,
            "payment_id": self.payment_id,
            "consumed_at": to_utc_z(self.consumed_at),
            "created_at": to_utc_z(self.created_at),
        }


class ReferralApproval(db.Model):
    """Buyer-side record that its referral was confirmed (feeds the referrer notification)."""
    __tablename__ = "referral_approvals"

    buyer_gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), primary_key=True)
    referrer_gym_id = db.Column(db.String(64), nullable=False)
    used_code = db.Column(db.String(64), nullable=True)
    payment_id = db.Column(db.String(64), nullable=False)
    plan_id = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "buyer_gym_id": self.buyer_gym_id,
            "referrer_gym_id": self.referrer_gym_id,
            "used_code": self.used_code,
            "payment_id": self.payment_id,
            "plan_id": self.plan_id,
            "approved_at": to_utc_z(self.approved_at),
        }


class ReferralHistoryEntry(db.Model):
    """
    One row per (referrer, payment): the durable guard for credit issuance.

    Independent of ProcessedPayment, so a retried unit never credits twice.
    """
    __tablename__ = "referral_history"
    __table_args__ = (
        db.UniqueConstraint("referrer_gym_id", "payment_id", name="uq_referral_history_referrer_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    referrer_gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    payment_id = db.Column(db.String(64), nullable=False)
    buyer_gym_id = db.Column(db.String(64), nullable=False)
    plan_id = db.Column(db.String(64), nullable=True)
    tier_after = db.Column(db.Integer, nullable=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "referrer_gym_id": self.referrer_gym_id,
            "payment_id": self.payment_id,
            "buyer_gym_id": self.buyer_gym_id,
            "plan_id": self.plan_id,
            "tier_after": self.tier_after,
            "points_awarded": self.points_awarded,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ReferralRedemption(db.Model):
    """Append-only record of points redeemed by a gym."""
    __tablename__ = "referral_redemptions"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    balance_after = db.Column(db.Integer, nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "points": self.points,
            "reason": self.reason,
            "balance_after": self.balance_after,
            "occurred_at": to_utc_z(self.occurred_at),
        }
