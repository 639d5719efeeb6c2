# Overview: Service-layer operations for the referral program; claim consumption, credit and redemption.

"""
Referral Ledger

WHY: A gym that refers another earns a license discount tier and points
once the referred gym pays. Webhooks are delivered at least once and
transactions are retried, so crediting must be exactly-once per
(referrer, payment) on its own terms.

DESIGN:
- The buyer's pending claim is consumed by its first applied payment
  (pending -> consumed, never back).
- ReferralHistoryEntry(referrer, payment) is the durable credit guard,
  checked inside the same transaction as the credit. If it already exists
  the credit is skipped but the claim is still consumed and the approval
  recorded, which makes replays safe even without the global idempotency
  marker.
- Policy: +tier_step per confirmed referral, capped at TIER_CAP, and a
  flat points_per_referral award per confirmed referral.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import (
    ReferralConfig,
    ReferralPendingClaim,
    ReferralApproval,
    ReferralHistoryEntry,
    ReferralRedemption,
)
from fitsuite.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, CLAIM_RETRY_ON
from .external_reference import is_valid_id
from .tenant_service import ensure_gym


class ReferralError(Exception):
    """Raised for referral operation errors."""
    pass


class InsufficientReferralBalance(ReferralError):
    """Raised when a redemption costs more points than are available."""
    def __init__(self, requested: int, available: int):
        super().__init__(f"Requested {requested} points but only {available} available")
        self.requested = requested
        self.available = available


TIER_CAP = 20

CLAIM_PENDING = "pending"
CLAIM_CONSUMED = "consumed"


@dataclass(frozen=True)
class ReferralPolicy:
    tier_step: int = 4
    points_per_referral: int = 100

    @classmethod
    def from_config(cls, config) -> "ReferralPolicy":
        return cls(
            tier_step=int(config.get("REFERRAL_TIER_STEP", 4)),
            points_per_referral=int(config.get("REFERRAL_POINTS_PER_REFERRAL", 100)),
        )


@dataclass(frozen=True)
class ReferralOutcome:
    referrer_gym_id: str
    buyer_gym_id: str
    used_code: str | None
    payment_id: str
    credited: bool


def clamp_tier(value) -> int:
    try:
        tier = int(value or 0)
    except (TypeError, ValueError):
        tier = 0
    return max(0, min(tier, TIER_CAP))


def next_tier(current: int, step: int) -> int:
    return clamp_tier(clamp_tier(current) + step)


# =============================================================================
# CREDIT (runs inside the payment transaction)
# =============================================================================

def apply_referral_credit(
    buyer_gym_id: str,
    payment_id: str,
    plan_id: str | None,
    *,
    policy: ReferralPolicy,
    default_timezone: str,
) -> ReferralOutcome | None:
    """
    Consume the buyer's pending claim and credit the referrer once.

    Returns None when there is nothing to do (no claim, already consumed,
    self-referral, malformed referrer). Does not commit.
    """
    payment_id = str(payment_id)
    claim = lock_for_update(
        db.session.query(ReferralPendingClaim).filter_by(buyer_gym_id=buyer_gym_id)
    ).first()
    if claim is None or (claim.status or CLAIM_PENDING) != CLAIM_PENDING:
        return None

    referrer_gym_id = claim.referrer_gym_id
    if not is_valid_id(referrer_gym_id) or referrer_gym_id == buyer_gym_id:
        return None

    ensure_gym(referrer_gym_id, default_timezone=default_timezone)

    history = db.session.query(ReferralHistoryEntry).filter_by(
        referrer_gym_id=referrer_gym_id,
        payment_id=payment_id,
    ).first()

    credited = False
    if history is None:
        config = _get_or_create_config(referrer_gym_id, lock=True)
        config.total_referrals = (config.total_referrals or 0) + 1
        config.discount_tier = next_tier(config.discount_tier, policy.tier_step)
        config.points_available = (config.points_available or 0) + policy.points_per_referral
        config.total_points_earned = (config.total_points_earned or 0) + policy.points_per_referral

        db.session.add(ReferralHistoryEntry(
            referrer_gym_id=referrer_gym_id,
            payment_id=payment_id,
            buyer_gym_id=buyer_gym_id,
            plan_id=plan_id,
            tier_after=config.discount_tier,
            points_awarded=policy.points_per_referral,
        ))
        credited = True

    _record_approval(buyer_gym_id, referrer_gym_id, claim.used_code, payment_id, plan_id)

    claim.status = CLAIM_CONSUMED
    claim.consumed_at = utcnow()
    claim.payment_id = payment_id
    db.session.flush()

    return ReferralOutcome(
        referrer_gym_id=referrer_gym_id,
        buyer_gym_id=buyer_gym_id,
        used_code=claim.used_code,
        payment_id=payment_id,
        credited=credited,
    )


def _record_approval(buyer_gym_id, referrer_gym_id, used_code, payment_id, plan_id) -> None:
    approval = db.session.query(ReferralApproval).filter_by(buyer_gym_id=buyer_gym_id).first()
    if approval is None:
        approval = ReferralApproval(buyer_gym_id=buyer_gym_id)
        db.session.add(approval)
    approval.referrer_gym_id = referrer_gym_id
    approval.used_code = used_code
    approval.payment_id = payment_id
    approval.plan_id = plan_id
    approval.approved_at = utcnow()


def _get_or_create_config(gym_id: str, *, lock: bool = False) -> ReferralConfig:
    query = db.session.query(ReferralConfig).filter_by(gym_id=gym_id)
    if lock:
        query = lock_for_update(query)
    config = query.first()
    if config is None:
        config = ReferralConfig(
            gym_id=gym_id,
            discount_tier=0,
            points_available=0,
            total_points_earned=0,
            total_points_redeemed=0,
            total_referrals=0,
        )
        db.session.add(config)
        db.session.flush()
    return config


# =============================================================================
# BUYER DISCOUNT
# =============================================================================

def get_discount_pct_for_buyer(gym_id: str) -> int:
    """The gym's own referral discount for its next license link (0..20)."""
    config = db.session.query(ReferralConfig).filter_by(gym_id=gym_id).first()
    if config is None:
        return 0
    return clamp_tier(config.discount_tier)


# =============================================================================
# CLAIMS AND CODES (signup-time collaborators)
# =============================================================================

def set_referral_code(gym_id: str, code: str, *, default_timezone: str) -> ReferralConfig:
    """Assign a gym's public referral code (unique across gyms)."""
    code = (code or "").strip().upper()
    if not is_valid_id(code):
        raise ReferralError("Referral code must be 1-64 letters, digits, '-', '_' or '.'")

    def _op():
        ensure_gym(gym_id, default_timezone=default_timezone)
        owner = db.session.query(ReferralConfig).filter_by(code=code).first()
        if owner and owner.gym_id != gym_id:
            raise ReferralError(f"Referral code {code} already in use")
        config = _get_or_create_config(gym_id, lock=True)
        config.code = code
        db.session.commit()
        return config

    return run_with_retry(_op, retry_on=CLAIM_RETRY_ON)


def register_pending_claim(buyer_gym_id: str, code: str, *, default_timezone: str) -> ReferralPendingClaim:
    """
    Record that `buyer_gym_id` signed up with referral `code`.

    Raises:
        ReferralError: unknown code, self-referral, or claim already consumed
    """
    normalized = (code or "").strip().upper()

    def _op():
        owner = db.session.query(ReferralConfig).filter_by(code=normalized).first()
        if owner is None:
            raise ReferralError(f"Unknown referral code {code!r}")
        if owner.gym_id == buyer_gym_id:
            raise ReferralError("A gym cannot refer itself")

        ensure_gym(buyer_gym_id, default_timezone=default_timezone)
        claim = lock_for_update(
            db.session.query(ReferralPendingClaim).filter_by(buyer_gym_id=buyer_gym_id)
        ).first()
        if claim is not None and claim.status == CLAIM_CONSUMED:
            raise ReferralError("Referral already consumed for this gym")

        if claim is None:
            claim = ReferralPendingClaim(buyer_gym_id=buyer_gym_id)
            db.session.add(claim)
        claim.referrer_gym_id = owner.gym_id
        claim.used_code = normalized
        claim.status = CLAIM_PENDING
        db.session.commit()
        return claim

    return run_with_retry(_op, retry_on=CLAIM_RETRY_ON)


# =============================================================================
# REDEMPTION
# =============================================================================

def redeem_points(gym_id: str, points: int, reason: str | None = None) -> ReferralRedemption:
    """
    Spend referral points.

    Raises:
        ReferralError: non-positive amount or gym without referral account
        InsufficientReferralBalance: cost exceeds points_available
    """
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise ReferralError("Points to redeem must be a positive integer")

    def _op():
        config = lock_for_update(db.session.query(ReferralConfig).filter_by(gym_id=gym_id)).first()
        if config is None:
            raise ReferralError(f"Gym {gym_id!r} has no referral account")

        available = config.points_available or 0
        if points > available:
            raise InsufficientReferralBalance(points, available)

        config.points_available = available - points
        config.total_points_redeemed = (config.total_points_redeemed or 0) + points

        redemption = ReferralRedemption(
            gym_id=gym_id,
            points=points,
            reason=reason,
            balance_after=config.points_available,
            occurred_at=utcnow(),
        )
        db.session.add(redemption)
        db.session.commit()
        return redemption

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_referral_summary(gym_id: str, *, history_limit: int = 50) -> dict:
    config = db.session.query(ReferralConfig).filter_by(gym_id=gym_id).first()
    history = db.session.query(ReferralHistoryEntry).filter_by(
        referrer_gym_id=gym_id
    ).order_by(ReferralHistoryEntry.occurred_at.desc(), ReferralHistoryEntry.id.desc()).limit(history_limit).all()
    claim = db.session.query(ReferralPendingClaim).filter_by(buyer_gym_id=gym_id).first()

    return {
        "config": config.to_dict() if config else None,
        "history": [h.to_dict() for h in history],
        "claim": claim.to_dict() if claim else None,
    }
