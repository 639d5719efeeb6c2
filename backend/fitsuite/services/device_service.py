# Overview: Service-layer operations for desktop device seats; bounded by the license maxDevices limit.

from __future__ import annotations

from ..extensions import db
from ..models import Device, DeviceClientCache, LicenseConfigCache
from fitsuite.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, CLAIM_RETRY_ON
from .plan_catalog import normalize_limits
from .tenant_service import ensure_gym


class DeviceError(Exception):
    """Raised for device seat errors."""
    pass


class DeviceNotFound(DeviceError):
    pass


class DeviceRevoked(DeviceError):
    pass


class DeviceLimitReached(DeviceError):
    def __init__(self, max_devices: int):
        super().__init__(f"Device limit reached ({max_devices})")
        self.max_devices = max_devices


def get_gym_limits(gym_id: str) -> dict:
    """Limits from the device-client cache, then the license-config cache, then defaults."""
    for model in (DeviceClientCache, LicenseConfigCache):
        cache = db.session.query(model).filter_by(gym_id=gym_id).first()
        if cache is not None and cache.limits:
            return normalize_limits(cache.limits)
    return normalize_limits({})


def count_active_devices(gym_id: str) -> int:
    return db.session.query(Device).filter_by(gym_id=gym_id, revoked=False).count()


def claim_device(gym_id: str, hwid: str, name: str | None = None, *, default_timezone: str) -> dict:
    """
    Claim (or refresh) a device seat.

    Returns:
        {"claimed": bool, "remaining": int, "maxDevices": int, "device": {...}}

    Raises:
        DeviceRevoked: the device was revoked
        DeviceLimitReached: no free seat for a new device
    """
    def _op():
        ensure_gym(gym_id, default_timezone=default_timezone)
        max_devices = get_gym_limits(gym_id)["maxDevices"]
        now = utcnow()

        device = lock_for_update(db.session.query(Device).filter_by(gym_id=gym_id, hwid=hwid)).first()
        if device is None:
            current = count_active_devices(gym_id)
            if current >= max_devices:
                raise DeviceLimitReached(max_devices)
            device = Device(gym_id=gym_id, hwid=hwid, name=name, revoked=False, claimed_at=now, last_seen_at=now)
            db.session.add(device)
            db.session.commit()
            return {
                "claimed": True,
                "remaining": max(0, max_devices - (current + 1)),
                "maxDevices": max_devices,
                "device": device.to_dict(),
            }

        if device.revoked:
            raise DeviceRevoked(f"Device {hwid} was revoked")

        device.last_seen_at = now
        device.name = name or device.name
        db.session.commit()
        current = count_active_devices(gym_id)
        return {
            "claimed": False,
            "remaining": max(0, max_devices - current),
            "maxDevices": max_devices,
            "device": device.to_dict(),
        }

    return run_with_retry(_op, retry_on=CLAIM_RETRY_ON)


def heartbeat(gym_id: str, hwid: str) -> Device:
    def _op():
        device = db.session.query(Device).filter_by(gym_id=gym_id, hwid=hwid).first()
        if device is None:
            raise DeviceNotFound(f"Device {hwid} not registered")
        if device.revoked:
            raise DeviceRevoked(f"Device {hwid} was revoked")
        device.last_seen_at = utcnow()
        db.session.commit()
        return device

    return run_with_retry(_op)


def revoke_device(gym_id: str, hwid: str) -> Device:
    """Revoke a device seat. Revoking twice keeps the first revoked_at."""
    def _op():
        device = lock_for_update(db.session.query(Device).filter_by(gym_id=gym_id, hwid=hwid)).first()
        if device is None:
            raise DeviceNotFound(f"Device {hwid} not registered")
        if not device.revoked:
            device.revoked = True
            device.revoked_at = utcnow()
        db.session.commit()
        return device

    return run_with_retry(_op)


def list_devices(gym_id: str) -> list[Device]:
    return db.session.query(Device).filter_by(gym_id=gym_id).order_by(Device.id).all()
