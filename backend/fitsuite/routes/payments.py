# Overview: Flask routes for payment links, provider webhooks and checkout return pages.

# backend/fitsuite/routes/payments.py
"""
Payment API Routes

WHY: Buyers pay for licenses through provider checkout links; the provider
reports payments asynchronously through the webhook, and redirects the
buyer back to a return page.

DESIGN:
- GET /payment-link creates a checkout preference (redirect or JSON)
- POST /webhook always answers 200 "OK" so the provider does not retry
  aggressively; the internal outcome is logged
- /success re-processes the payment idempotently; all return pages show a
  generic message regardless of the internal outcome
"""

from flask import Blueprint, request, jsonify, redirect, current_app

from ..services.payment_processing import PaymentProcessor, PaymentSettings
from ..services.external_reference import BadReference
from ..services.payment_provider import ProviderError
from ..services.plan_catalog import PlanNotFound


payments_bp = Blueprint("payments", __name__)

RETURN_PAGE = (
    '<!doctype html><meta charset="utf-8">'
    '<body style="font-family:sans-serif;padding:20px"><h2>{message}</h2>'
    "<p>You can close this tab and return to the app.</p></body>"
)


def get_payment_processor() -> PaymentProcessor:
    """Processor bound to the app's provider client and notification sink."""
    return PaymentProcessor(
        current_app.extensions["payment_provider"],
        current_app.extensions["notification_sink"],
        PaymentSettings.from_config(current_app.config),
        logger=current_app.logger,
    )


def _return_page(message: str):
    return RETURN_PAGE.format(message=message), 200, {"Content-Type": "text/html; charset=utf-8"}


# =============================================================================
# PAYMENT LINKS
# =============================================================================

@payments_bp.get("/payment-link")
def create_payment_link_route():
    """
    Create a checkout link for a license plan.

    Query params:
        gym_id (required), plan (required), ref (optional referral code),
        format=json (optional; default redirects to the checkout)

    Returns:
        302: redirect to init_point
        200: {init_point, sandbox_init_point, preference_id, discount_pct, discount_amount}
        400: missing or malformed parameters
        404: unknown plan
        502: provider rejected or unreachable
    """
    gym_id = request.args.get("gym_id") or request.args.get("gimnasioId")
    plan_id = request.args.get("plan")
    ref = request.args.get("ref") or None

    if not gym_id or not plan_id:
        return jsonify({"error": "gym_id and plan required"}), 400

    try:
        link = get_payment_processor().create_payment_link(gym_id, plan_id, ref)
    except BadReference as e:
        return jsonify({"error": str(e)}), 400
    except PlanNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ProviderError as e:
        current_app.logger.warning("Payment link for gym %s failed: %s", gym_id, e)
        return jsonify({"error": "Payment provider error"}), 502
    except Exception:
        current_app.logger.exception("Failed to create payment link")
        return jsonify({"error": "Internal server error"}), 500

    if request.args.get("format") == "json":
        return jsonify(link), 200
    return redirect(link["init_point"], code=302)


# =============================================================================
# PROVIDER WEBHOOK
# =============================================================================

@payments_bp.post("/webhook")
def webhook_route():
    """Provider notification. Always 200 "OK"."""
    try:
        body = request.get_json(silent=True) or {}
        processor = get_payment_processor()

        payment_id = processor.resolve_webhook_payment_id(body)
        if not payment_id:
            current_app.logger.info("Webhook without payment id ignored: %s", body.get("topic") or body.get("type"))
            return "OK", 200

        result = processor.process_payment(payment_id)
        current_app.logger.info("Webhook result: %s", result.to_dict())
    except Exception:
        current_app.logger.exception("Webhook processing failed")
    return "OK", 200


# =============================================================================
# RETURN PAGES
# =============================================================================

@payments_bp.get("/success")
def success_route():
    payment_id = request.args.get("payment_id") or request.args.get("collection_id")
    if not payment_id:
        return _return_page("Payment approved")
    try:
        result = get_payment_processor().process_payment(payment_id)
        current_app.logger.info("Return page result: %s", result.to_dict())
    except Exception:
        current_app.logger.exception("Return page processing failed for payment %s", payment_id)
        return _return_page("Payment received (processing)")
    return _return_page("Payment approved")


@payments_bp.get("/failure")
def failure_route():
    return _return_page("The payment could not be completed")


@payments_bp.get("/pending")
def pending_route():
    return _return_page("Payment pending")
