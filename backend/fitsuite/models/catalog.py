from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class LicensePlan(db.Model):
    """
    Primary license plan catalog.

    `data` is the loosely-typed plan descriptor as authored by the back office
    (price, duration, modules, limits under several historical field names).
    It is never read directly by business logic; see plan_catalog.read_plan.
    """
    __tablename__ = "license_plans"

    plan_id = db.Column(db.String(64), primary_key=True)
    data = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "data": self.data or {},
            "namespace": "primary",
            "updated_at": to_utc_z(self.updated_at),
        }


class LegacyLicensePlan(db.Model):
    """Legacy plan namespace, consulted only when the primary catalog misses."""
    __tablename__ = "legacy_license_plans"

    plan_id = db.Column(db.String(64), primary_key=True)
    data = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "data": self.data or {},
            "namespace": "legacy",
        }
