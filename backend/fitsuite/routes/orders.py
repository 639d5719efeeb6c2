# Overview: Flask API routes for store orders; manual creation and settlement.

"""
Store Order API Routes

Manual/API counterpart of webhook-driven settlement. Settlement errors are
surfaced to the caller here (4xx); the webhook path logs and swallows them.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_service_token
from ..services import order_service
from ..services.order_service import (
    OrderSettlementError,
    OrderNotFound,
    ProductNotFound,
    VariantNotFound,
    InsufficientStock,
)
from ..services.tenant_service import get_gym, TenantError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/gyms/<gym_id>/orders")


def _error(e: OrderSettlementError, status: int):
    payload = {"error": str(e)}
    if e.details:
        payload["details"] = e.details
    return jsonify(payload), status


@orders_bp.post("")
@require_service_token
def create_order_route(gym_id: str):
    """
    Create a pending order.

    Request body:
    {
        "lines": [{"product_id": 1, "quantity": 2, "color": "Red", "size": "M"}]
    }
    """
    data = request.get_json(silent=True) or {}
    lines = data.get("lines")
    if not isinstance(lines, list) or not lines:
        return jsonify({"error": "lines required"}), 400

    try:
        get_gym(gym_id)
        order = order_service.create_order(gym_id, lines)
        return jsonify({"order": order.to_dict()}), 201
    except TenantError as e:
        return jsonify({"error": str(e)}), 404
    except ProductNotFound as e:
        return _error(e, 404)
    except OrderSettlementError as e:
        return _error(e, 400)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_service_token
def get_order_route(gym_id: str, order_id: int):
    try:
        order = order_service.get_order(gym_id, order_id)
        return jsonify({"order": order.to_dict()}), 200
    except OrderNotFound as e:
        return _error(e, 404)


@orders_bp.post("/<int:order_id>/settle")
@require_service_token
def settle_order_route(gym_id: str, order_id: int):
    """
    Settle an order against an approved payment.

    Request body:
    {
        "payment_id": "123456",
        "amount_cents": 15000,  (optional, defaults to the order total)
        "method": "cash"  (optional)
    }

    Returns:
        200: settled (or already paid)
        400: invalid input
        404: order/product/variant not found
        409: insufficient stock
    """
    data = request.get_json(silent=True) or {}
    payment_id = data.get("payment_id")
    if not payment_id:
        return jsonify({"error": "payment_id required"}), 400

    amount_cents = data.get("amount_cents")
    if amount_cents is not None and (not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents < 0):
        return jsonify({"error": "amount_cents must be a non-negative integer"}), 400

    try:
        gym = get_gym(gym_id)
        result = order_service.settle_order(
            gym_id,
            order_id,
            payment_id=str(payment_id),
            amount_paid_cents=amount_cents,
            method=data.get("method"),
            tz_name=gym.timezone or current_app.config["BUSINESS_TIMEZONE"],
        )
        return jsonify({"order": result.order.to_dict(), "already_paid": result.already_paid}), 200
    except TenantError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStock as e:
        return _error(e, 409)
    except (OrderNotFound, ProductNotFound, VariantNotFound) as e:
        return _error(e, 404)
    except OrderSettlementError as e:
        return _error(e, 400)
    except Exception:
        current_app.logger.exception("Failed to settle order")
        return jsonify({"error": "Internal server error"}), 500
