# Overview: Flask API routes for the referral program; codes, claims, summary and redemption.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_service_token
from ..services import referral_service
from ..services.referral_service import ReferralError, InsufficientReferralBalance
from ..services.tenant_service import TenantError


referrals_bp = Blueprint("referrals", __name__, url_prefix="/api/gyms/<gym_id>/referrals")


@referrals_bp.get("")
@require_service_token
def get_referrals_route(gym_id: str):
    """Referral config, credit history and the gym's own pending claim."""
    limit = request.args.get("limit", 50, type=int)
    summary = referral_service.get_referral_summary(gym_id, history_limit=max(1, min(limit, 500)))
    return jsonify(summary), 200


@referrals_bp.put("/code")
@require_service_token
def set_code_route(gym_id: str):
    data = request.get_json(silent=True) or {}
    try:
        config = referral_service.set_referral_code(
            gym_id,
            data.get("code"),
            default_timezone=current_app.config["BUSINESS_TIMEZONE"],
        )
        return jsonify({"config": config.to_dict()}), 200
    except (ReferralError, TenantError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to set referral code")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.post("/claim")
@require_service_token
def register_claim_route(gym_id: str):
    """
    Record that this gym signed up with a referral code.

    Request body:
    {
        "code": "GYMFRIEND"
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("code"):
        return jsonify({"error": "code required"}), 400

    try:
        claim = referral_service.register_pending_claim(
            gym_id,
            data["code"],
            default_timezone=current_app.config["BUSINESS_TIMEZONE"],
        )
        return jsonify({"claim": claim.to_dict()}), 201
    except (ReferralError, TenantError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register referral claim")
        return jsonify({"error": "Internal server error"}), 500


@referrals_bp.post("/redeem")
@require_service_token
def redeem_route(gym_id: str):
    """
    Spend referral points.

    Request body:
    {
        "points": 100,
        "reason": "Free month"  (optional)
    }

    Returns:
        201: redemption recorded
        400: invalid amount or no referral account
        409: insufficient balance
    """
    data = request.get_json(silent=True) or {}
    try:
        redemption = referral_service.redeem_points(gym_id, data.get("points"), data.get("reason"))
        return jsonify({"redemption": redemption.to_dict()}), 201
    except InsufficientReferralBalance as e:
        return jsonify({"error": str(e), "requested": e.requested, "available": e.available}), 409
    except ReferralError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to redeem referral points")
        return jsonify({"error": "Internal server error"}), 500
