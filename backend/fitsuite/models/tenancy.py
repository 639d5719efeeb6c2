from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class Gym(db.Model):
    """
    Multi-tenant root: every tenant is a Gym.

    Gym ids are opaque strings minted by the desktop/mobile clients and echoed
    back through payment references, so rows are created lazily the first
    time a payment or referral touches the tenant.

    timezone is the tenant's fixed reference zone for business-day rollups.
    """
    __tablename__ = "gyms"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=True)
    timezone = db.Column(db.String(64), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Gym id={self.id!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "timezone": self.timezone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
