# Overview: Payment reconciliation engine; one approved payment -> one atomic state transition.

"""
Payment Processing

WHY: The provider delivers notifications at least once, possibly out of
order, and the same payment can also arrive through the success return
page. Each distinct payment must change state exactly once.

FLOW for process_payment(payment_id):
1. Provider lookup (outside any transaction). Transport failure ->
   provider_error; status != approved -> not_approved.
2. Parse the external reference (fail closed -> bad_reference).
3. One unit through run_with_retry:
   - idempotency marker present -> already_processed, nothing staged
   - license: plan lookup, state machine, history, accounting record,
     revenue rollup, preference approval, referral credit
   - order: all-or-nothing stock settlement
   - marker claimed last, then commit
   Retries exhausted on concurrent conflicts -> conflict, nothing committed.
4. After commit: notifications through a PostCommitQueue (best-effort).

Ordering between different payments of the same gym is last-commit-wins:
every unit reads the current license at apply time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import PaymentPreference
from .concurrency import run_with_retry, CLAIM_RETRY_ON
from .external_reference import (
    BadReference,
    ExternalReference,
    KIND_LICENSE,
    KIND_ORDER,
    build_license_reference,
    is_valid_id,
    parse_reference,
)
from .idempotency_service import already_processed, claim
from .license_service import EVENT_ACTIVATED, apply_payment
from .accounting_service import (
    CATEGORY_NEW_SIGNUP,
    CATEGORY_RENEWAL,
    accumulate,
    medium_for_method,
    record_transaction,
)
from .notification_service import (
    PostCommitQueue,
    license_message_key,
    order_message_key,
    referral_message_key,
)
from .order_service import OrderSettlementError, _settle_order_locked
from .payment_provider import ProviderError, ProviderPayment
from .plan_catalog import PlanNotFound, read_plan, from_cents
from .referral_service import ReferralPolicy, apply_referral_credit, clamp_tier, get_discount_pct_for_buyer
from .tenant_service import ensure_gym


OUTCOME_APPLIED = "applied"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_NOT_APPROVED = "not_approved"
OUTCOME_BAD_REFERENCE = "bad_reference"
OUTCOME_PLAN_NOT_FOUND = "plan_not_found"
OUTCOME_PROVIDER_ERROR = "provider_error"
OUTCOME_SETTLEMENT_FAILED = "settlement_failed"
OUTCOME_CONFLICT = "conflict"
OUTCOME_IGNORED = "ignored"

MERCHANT_ORDER_RE = re.compile(r"merchant_orders/(\d+)")
PREFERENCE_APPROVED = "approved"


@dataclass(frozen=True)
class ProcessResult:
    outcome: str
    payment_id: str | None = None
    gym_id: str | None = None
    kind: str | None = None
    event_type: str | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (OUTCOME_APPLIED, OUTCOME_ALREADY_PROCESSED)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "outcome": self.outcome,
            "payment_id": self.payment_id,
            "gym_id": self.gym_id,
            "kind": self.kind,
            "event_type": self.event_type,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class PaymentSettings:
    default_timezone: str = "America/Argentina/Buenos_Aires"
    default_grace_hours: int = 72
    default_duration_days: int = 30
    public_base_url: str = "http://localhost:10000"
    brand_name: str = "FitSuite Pro"
    statement_descriptor: str = "FITSUITE"
    referral_policy: ReferralPolicy = field(default_factory=ReferralPolicy)

    @classmethod
    def from_config(cls, config) -> "PaymentSettings":
        return cls(
            default_timezone=config.get("BUSINESS_TIMEZONE", cls.default_timezone),
            default_grace_hours=int(config.get("DEFAULT_GRACE_HOURS", cls.default_grace_hours)),
            default_duration_days=int(config.get("DEFAULT_PLAN_DURATION_DAYS", cls.default_duration_days)),
            public_base_url=(config.get("PUBLIC_BASE_URL") or cls.public_base_url).rstrip("/"),
            brand_name=config.get("BRAND_NAME", cls.brand_name),
            statement_descriptor=config.get("STATEMENT_DESCRIPTOR", cls.statement_descriptor),
            referral_policy=ReferralPolicy.from_config(config),
        )


class PaymentProcessor:
    """
    Orchestrates provider lookups and the transactional unit.

    provider: get_payment / get_merchant_order / create_preference
    notifier: notify(event_type, gym_id, details, *, message_key=...)
    """

    def __init__(self, provider, notifier, settings: PaymentSettings, logger: logging.Logger | None = None):
        self.provider = provider
        self.notifier = notifier
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

    # -------------------------------------------------------------------------
    # Webhook resolution
    # -------------------------------------------------------------------------

    def resolve_webhook_payment_id(self, body: dict | None) -> str | None:
        """
        Payment id from a notification body: data.id, then id; for
        merchant_order topics (or a resource URL) the order's approved
        payment, else its first one.
        """
        body = body or {}
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        topic = body.get("topic") or body.get("type")
        resource = body.get("resource") or ""

        if topic == "merchant_order" or resource:
            match = MERCHANT_ORDER_RE.search(str(resource))
            if match:
                return self._payment_id_from_merchant_order(match.group(1))
            if topic == "merchant_order":
                return None

        payment_id = data.get("id") or body.get("id")
        return str(payment_id) if payment_id else None

    def _payment_id_from_merchant_order(self, merchant_order_id: str) -> str | None:
        try:
            order = self.provider.get_merchant_order(merchant_order_id)
        except ProviderError as exc:
            self.logger.warning("merchant_order %s lookup failed: %s", merchant_order_id, exc)
            return None

        payments = order.get("payments") or []
        chosen = next((p for p in payments if p and p.get("status") == "approved"), None)
        if chosen is None and payments:
            chosen = payments[0]
        if chosen and chosen.get("id"):
            return str(chosen["id"])
        return None

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def process_payment(self, payment_id) -> ProcessResult:
        payment_id = str(payment_id or "").strip()
        if not payment_id:
            return ProcessResult(OUTCOME_IGNORED, detail="no payment id")

        try:
            payment = self.provider.get_payment(payment_id)
        except ProviderError as exc:
            self.logger.warning("Payment %s lookup failed: %s", payment_id, exc)
            return ProcessResult(OUTCOME_PROVIDER_ERROR, payment_id=payment_id, detail=str(exc))

        if not payment.is_approved:
            return ProcessResult(OUTCOME_NOT_APPROVED, payment_id=payment_id, detail=payment.status)

        try:
            reference = parse_reference(payment.external_reference)
        except BadReference as exc:
            self.logger.warning("Payment %s dropped: %s", payment_id, exc)
            return ProcessResult(OUTCOME_BAD_REFERENCE, payment_id=payment_id, detail=str(exc))

        if reference.kind == KIND_ORDER:
            return self._process_order_payment(payment, reference)
        return self._process_license_payment(payment, reference)

    def _process_license_payment(self, payment: ProviderPayment, reference: ExternalReference) -> ProcessResult:
        settings = self.settings
        preference_id = self._resolve_preference_id(payment)
        gym_id = reference.gym_id

        def _op():
            if already_processed(payment.id):
                db.session.rollback()
                return None

            gym = ensure_gym(gym_id, default_timezone=settings.default_timezone)
            plan = read_plan(reference.plan_id, default_duration_days=settings.default_duration_days)

            event = apply_payment(
                gym_id,
                plan,
                payment_id=payment.id,
                amount_paid_cents=payment.amount_cents,
                default_grace_hours=settings.default_grace_hours,
            )

            record_transaction(
                gym_id=gym_id,
                payment_id=payment.id,
                txn_type="license",
                amount_cents=payment.amount_cents,
                method=payment.payment_type,
                discount_pct=event.discount_pct,
                detail=f"License {plan.name}",
            )
            category = CATEGORY_NEW_SIGNUP if event.event_type == EVENT_ACTIVATED else CATEGORY_RENEWAL
            accumulate(
                gym_id,
                category,
                payment.amount_cents,
                medium_for_method(payment.payment_type),
                tz_name=gym.timezone or settings.default_timezone,
            )

            if preference_id:
                preference = db.session.query(PaymentPreference).filter_by(
                    preference_id=preference_id, gym_id=gym_id
                ).first()
                if preference is not None:
                    preference.status = PREFERENCE_APPROVED

            referral = apply_referral_credit(
                gym_id,
                payment.id,
                plan.plan_id,
                policy=settings.referral_policy,
                default_timezone=settings.default_timezone,
            )

            claim(payment.id, gym_id=gym_id, kind=KIND_LICENSE)
            db.session.commit()
            return event, referral

        try:
            applied = run_with_retry(_op, retry_on=CLAIM_RETRY_ON)
        except PlanNotFound as exc:
            self.logger.error("Payment %s left unprocessed: %s", payment.id, exc)
            return ProcessResult(OUTCOME_PLAN_NOT_FOUND, payment_id=payment.id, gym_id=gym_id,
                                 kind=KIND_LICENSE, detail=str(exc))
        except CLAIM_RETRY_ON as exc:
            return self._conflict(payment, gym_id, KIND_LICENSE, exc)

        if applied is None:
            return ProcessResult(OUTCOME_ALREADY_PROCESSED, payment_id=payment.id, gym_id=gym_id, kind=KIND_LICENSE)

        event, referral = applied
        queue = PostCommitQueue(self.logger)
        details = dict(event.to_dict(), source="licensing", paymentId=payment.id)
        queue.enqueue(self.notifier.notify, event.event_type, gym_id, details,
                      message_key=license_message_key(payment.id))
        if referral is not None:
            queue.enqueue(
                self.notifier.notify,
                "referral_credit",
                referral.referrer_gym_id,
                {
                    "source": "referrals",
                    "buyerGymId": referral.buyer_gym_id,
                    "usedCode": referral.used_code,
                    "paymentId": payment.id,
                    "planId": reference.plan_id,
                    "credited": referral.credited,
                },
                message_key=referral_message_key(payment.id),
            )
        queue.run()

        self.logger.info("Payment %s applied: %s for gym %s (revision %s)",
                         payment.id, event.event_type, gym_id, event.revision)
        return ProcessResult(OUTCOME_APPLIED, payment_id=payment.id, gym_id=gym_id,
                             kind=KIND_LICENSE, event_type=event.event_type)

    def _process_order_payment(self, payment: ProviderPayment, reference: ExternalReference) -> ProcessResult:
        settings = self.settings
        gym_id = reference.gym_id

        def _op():
            if already_processed(payment.id):
                db.session.rollback()
                return None

            gym = ensure_gym(gym_id, default_timezone=settings.default_timezone)
            result = _settle_order_locked(
                gym_id,
                reference.order_id,
                payment_id=payment.id,
                amount_paid_cents=payment.amount_cents,
                method=payment.payment_type,
                tz_name=gym.timezone or settings.default_timezone,
            )
            claim(payment.id, gym_id=gym_id, kind=KIND_ORDER)
            db.session.commit()
            return result

        try:
            settled = run_with_retry(_op, retry_on=CLAIM_RETRY_ON)
        except OrderSettlementError as exc:
            # Order stays pending for manual retry or refund
            self.logger.error("Order %s settlement failed for payment %s: %s (%s)",
                              reference.order_id, payment.id, exc, exc.details)
            return ProcessResult(OUTCOME_SETTLEMENT_FAILED, payment_id=payment.id, gym_id=gym_id,
                                 kind=KIND_ORDER, detail=str(exc))
        except CLAIM_RETRY_ON as exc:
            return self._conflict(payment, gym_id, KIND_ORDER, exc)

        if settled is None or settled.already_paid:
            return ProcessResult(OUTCOME_ALREADY_PROCESSED, payment_id=payment.id, gym_id=gym_id, kind=KIND_ORDER)

        queue = PostCommitQueue(self.logger)
        queue.enqueue(
            self.notifier.notify,
            "order_paid",
            gym_id,
            {"source": "store", "orderId": settled.order.id, "paymentId": payment.id,
             "amount": from_cents(settled.order.amount_paid_cents or 0)},
            message_key=order_message_key(payment.id),
        )
        queue.run()

        self.logger.info("Payment %s settled order %s for gym %s", payment.id, reference.order_id, gym_id)
        return ProcessResult(OUTCOME_APPLIED, payment_id=payment.id, gym_id=gym_id, kind=KIND_ORDER)

    def _conflict(self, payment: ProviderPayment, gym_id: str, kind: str, exc: Exception) -> ProcessResult:
        # Retries exhausted; nothing committed, so redelivery can apply it later
        self.logger.warning("Payment %s left unprocessed after concurrent conflicts: %s", payment.id, exc)
        return ProcessResult(OUTCOME_CONFLICT, payment_id=payment.id, gym_id=gym_id,
                             kind=kind, detail=type(exc).__name__)

    def _resolve_preference_id(self, payment: ProviderPayment) -> str | None:
        """Best-effort: the preference behind a payment, via its merchant order."""
        if not payment.merchant_order_id:
            return None
        try:
            order = self.provider.get_merchant_order(payment.merchant_order_id)
        except ProviderError as exc:
            self.logger.warning("merchant_order %s lookup failed: %s", payment.merchant_order_id, exc)
            return None
        preference_id = order.get("preference_id")
        return str(preference_id) if preference_id else None

    # -------------------------------------------------------------------------
    # Payment links
    # -------------------------------------------------------------------------

    def create_payment_link(self, gym_id: str, plan_id: str, referral_code: str | None = None) -> dict:
        """
        Create a provider checkout preference for a license plan, discounted
        by the gym's own referral tier.

        Raises:
            BadReference: malformed gym/plan id or referral code
            PlanNotFound: plan absent from both catalogs
            ProviderError: preference creation failed
        """
        settings = self.settings
        if referral_code and not is_valid_id(referral_code):
            raise BadReference(f"malformed referral code {referral_code!r}")
        reference = build_license_reference(gym_id, plan_id, referral_code, 0)
        parse_reference(reference)

        plan = read_plan(plan_id, default_duration_days=settings.default_duration_days)
        pct = clamp_tier(get_discount_pct_for_buyer(gym_id))

        price_cents = plan.price_cents
        discounted_cents = int(
            (Decimal(price_cents) * (100 - pct) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        discount_cents = max(0, price_cents - discounted_cents)

        title = f"License {plan.name}"
        if pct > 0:
            title = f"{title} (-{pct}% referrals)"

        payload = {
            "items": [{
                "title": title,
                "description": f"Includes {pct}% referral discount" if pct > 0 else f"License {plan.name}",
                "unit_price": from_cents(discounted_cents),
                "quantity": 1,
            }],
            "statement_descriptor": settings.statement_descriptor,
            "external_reference": build_license_reference(gym_id, plan_id, referral_code, pct),
            "notification_url": f"{settings.public_base_url}/webhook",
            "back_urls": {
                "success": f"{settings.public_base_url}/success",
                "failure": f"{settings.public_base_url}/failure",
                "pending": f"{settings.public_base_url}/pending",
            },
            "auto_return": "approved",
        }
        if pct > 0:
            payload["coupon_code"] = f"REFERRALS_{pct}"
            payload["coupon_amount"] = from_cents(discount_cents)

        created = self.provider.create_preference(payload)
        preference_id = str(created.get("id"))

        def _op():
            ensure_gym(gym_id, default_timezone=settings.default_timezone)
            preference = db.session.get(PaymentPreference, preference_id)
            if preference is None:
                preference = PaymentPreference(preference_id=preference_id, gym_id=gym_id)
                db.session.add(preference)
            preference.plan_id = plan.plan_id
            preference.status = "pending"
            preference.init_point = created.get("init_point")
            preference.discount_pct = pct
            db.session.commit()

        try:
            run_with_retry(_op, retry_on=CLAIM_RETRY_ON)
        except Exception:
            # Link exists at the provider; the preference row only backs approval tracking
            self.logger.warning("Could not store preference %s for gym %s", preference_id, gym_id, exc_info=True)

        return {
            "init_point": created.get("init_point"),
            "sandbox_init_point": created.get("sandbox_init_point"),
            "preference_id": preference_id,
            "discount_pct": pct,
            "discount_amount": from_cents(discount_cents),
        }
