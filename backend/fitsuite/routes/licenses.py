# Overview: Flask API routes for reading license state, inbox messages and revenue rollups.

from flask import Blueprint, request, jsonify

from ..extensions import db
from ..decorators import require_service_token
from ..models import LicenseConfigCache, DeviceClientCache, LicensePaymentHistory, InboxMessage
from ..services import license_service, accounting_service
from ..services.accounting_service import AccountingError


licenses_bp = Blueprint("licenses", __name__, url_prefix="/api/gyms/<gym_id>")


@licenses_bp.get("/license")
@require_service_token
def get_license_route(gym_id: str):
    """Source record plus both derived caches."""
    record = license_service.get_license(gym_id)
    if record is None:
        return jsonify({"error": f"Gym {gym_id} has no license"}), 404

    config = db.session.get(LicenseConfigCache, gym_id)
    client = db.session.get(DeviceClientCache, gym_id)
    history = db.session.query(LicensePaymentHistory).filter_by(gym_id=gym_id).order_by(
        LicensePaymentHistory.occurred_at.desc(), LicensePaymentHistory.id.desc()
    ).limit(20).all()

    return jsonify({
        "license": record.to_dict(),
        "config": config.to_dict() if config else None,
        "client": client.to_dict() if client else None,
        "payments": [h.to_dict() for h in history],
    }), 200


@licenses_bp.get("/inbox")
@require_service_token
def get_inbox_route(gym_id: str):
    query = db.session.query(InboxMessage).filter_by(gym_id=gym_id)
    if request.args.get("unread") == "true":
        query = query.filter_by(unread=True)
    messages = query.order_by(InboxMessage.created_at.desc(), InboxMessage.id.desc()).limit(100).all()
    return jsonify({"messages": [m.to_dict() for m in messages]}), 200


@licenses_bp.get("/rollups/<period_type>/<period_key>")
@require_service_token
def get_rollup_route(gym_id: str, period_type: str, period_key: str):
    """period_type is day (YYYY-MM-DD) or month (YYYY-MM)."""
    try:
        return jsonify(accounting_service.get_rollup(gym_id, period_type, period_key)), 200
    except AccountingError as e:
        return jsonify({"error": str(e)}), 400
