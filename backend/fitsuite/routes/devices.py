# Overview: Flask API routes for desktop device seats; claim, heartbeat, revoke.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_service_token
from ..services import device_service
from ..services.device_service import DeviceError, DeviceNotFound, DeviceRevoked, DeviceLimitReached
from ..services.tenant_service import TenantError


devices_bp = Blueprint("devices", __name__, url_prefix="/api/gyms/<gym_id>/devices")


def _hwid():
    data = request.get_json(silent=True) or {}
    return data, (data.get("hwid") or "").strip()


@devices_bp.get("")
@require_service_token
def list_devices_route(gym_id: str):
    devices = device_service.list_devices(gym_id)
    return jsonify({
        "devices": [d.to_dict() for d in devices],
        "limits": device_service.get_gym_limits(gym_id),
    }), 200


@devices_bp.post("/claim")
@require_service_token
def claim_device_route(gym_id: str):
    """
    Returns:
        200: {claimed, remaining, maxDevices, device}
        400: hwid missing
        403: device revoked or device limit reached
    """
    data, hwid = _hwid()
    if not hwid:
        return jsonify({"error": "hwid required"}), 400

    try:
        result = device_service.claim_device(
            gym_id,
            hwid,
            data.get("name"),
            default_timezone=current_app.config["BUSINESS_TIMEZONE"],
        )
        return jsonify(result), 200
    except (DeviceRevoked, DeviceLimitReached) as e:
        return jsonify({"error": str(e)}), 403
    except (DeviceError, TenantError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to claim device")
        return jsonify({"error": "Internal server error"}), 500


@devices_bp.post("/heartbeat")
@require_service_token
def heartbeat_route(gym_id: str):
    _, hwid = _hwid()
    if not hwid:
        return jsonify({"error": "hwid required"}), 400

    try:
        device = device_service.heartbeat(gym_id, hwid)
        return jsonify({"device": device.to_dict()}), 200
    except DeviceNotFound as e:
        return jsonify({"error": str(e)}), 404
    except DeviceRevoked as e:
        return jsonify({"error": str(e)}), 403


@devices_bp.post("/revoke")
@require_service_token
def revoke_route(gym_id: str):
    _, hwid = _hwid()
    if not hwid:
        return jsonify({"error": "hwid required"}), 400

    try:
        device = device_service.revoke_device(gym_id, hwid)
        return jsonify({"device": device.to_dict()}), 200
    except DeviceNotFound as e:
        return jsonify({"error": str(e)}), 404
