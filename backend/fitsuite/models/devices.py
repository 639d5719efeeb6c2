from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class Device(db.Model):
    """
    Desktop installation holding one of the gym's device seats.

    Seats are bounded by limits.maxDevices from the device-client cache.
    A revoked device keeps its row and cannot re-claim.
    """
    __tablename__ = "devices"
    __table_args__ = (
        db.UniqueConstraint("gym_id", "hwid", name="uq_devices_gym_hwid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    hwid = db.Column(db.String(128), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "hwid": self.hwid,
            "name": self.name,
            "revoked": self.revoked,
            "claimed_at": to_utc_z(self.claimed_at),
            "last_seen_at": to_utc_z(self.last_seen_at),
            "revoked_at": to_utc_z(self.revoked_at),
        }
