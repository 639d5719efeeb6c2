from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class LicenseRecord(db.Model):
    """
    Source of truth for a gym's software license (one row per gym).

    INVARIANTS:
    - revision increases by exactly 1 per distinct applied payment; never reset
    - expiry_date = start_date + plan duration
    - license_id is minted on first activation and preserved afterwards
    - never deleted by the payment engine

    version_id is the optimistic-concurrency column; revision is the business
    counter exposed to clients.
    """
    __tablename__ = "license_records"

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="inactive")
    plan_id = db.Column(db.String(64), nullable=True)
    revision = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    grace_hours = db.Column(db.Integer, nullable=False, default=72)
    license_id = db.Column(db.String(128), nullable=True)

    modules = db.Column(db.JSON, nullable=False, default=dict)
    limits = db.Column(db.JSON, nullable=False, default=dict)

    last_payment_id = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    gym = db.relationship("Gym", backref=db.backref("license", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LicenseRecord gym_id={self.gym_id!r} plan_id={self.plan_id!r} revision={self.revision}>"

    def to_dict(self) -> dict:
        return {
            "gym_id": self.gym_id,
            "status": self.status,
            "plan_id": self.plan_id,
            "revision": self.revision,
            "start_date": to_utc_z(self.start_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "grace_hours": self.grace_hours,
            "license_id": self.license_id,
            "modules": self.modules or {},
            "limits": self.limits or {},
            "last_payment_id": self.last_payment_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class LicenseConfigCache(db.Model):
    """
    Denormalized license projection read by the license-check client.

    Overwritten wholesale in the same transaction as LicenseRecord.
    Never the source of truth.
    """
    __tablename__ = "license_config_cache"

    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), primary_key=True)

    status = db.Column(db.String(16), nullable=False)
    plan = db.Column(db.String(64), nullable=False)
    plan_name = db.Column(db.String(255), nullable=True)
    start = db.Column(db.DateTime(timezone=True), nullable=True)
    expiry = db.Column(db.DateTime(timezone=True), nullable=True)
    tier = db.Column(db.String(64), nullable=True)
    limits = db.Column(db.JSON, nullable=False, default=dict)
    max_users = db.Column(db.Integer, nullable=False, default=0)
    modules = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "plan": self.plan,
            "planName": self.plan_name,
            "start": to_utc_z(self.start),
            "expiry": to_utc_z(self.expiry),
            "tier": self.tier,
            "limits": self.limits or {},
            "maxUsers": self.max_users,
            "modules": self.modules or {},
            "updatedAt": to_utc_z(self.updated_at),
        }


class DeviceClientCache(db.Model):
    """
    Desktop-client configuration projection (legacy field names preserved
    in to_dict for older clients).
    """
    __tablename__ = "device_client_cache"

    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), primary_key=True)

    license_plan_id = db.Column(db.String(64), nullable=False)
    license_name = db.Column(db.String(255), nullable=True)
    license_duration_days = db.Column(db.Integer, nullable=False)
    license_max_users = db.Column(db.Integer, nullable=False, default=0)
    license_tier = db.Column(db.String(64), nullable=True)
    license_price_cents = db.Column(db.Integer, nullable=False, default=0)
    plan_modules = db.Column(db.JSON, nullable=False, default=dict)
    enabled_modules = db.Column(db.JSON, nullable=False, default=dict)
    limits = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "licenciaPlanId": self.license_plan_id,
            "licenciaNombre": self.license_name,
            "licenciaDuracionDias": self.license_duration_days,
            "licenciaMaxUsuarios": self.license_max_users,
            "licenciaTier": self.license_tier,
            "licenciaPrecioCents": self.license_price_cents,
            "modulosPlan": self.plan_modules or {},
            "modulosActivados": self.enabled_modules or {},
            "limits": self.limits or {},
            "ultimaActualizacionLicencia": to_utc_z(self.updated_at),
        }


class LicensePaymentHistory(db.Model):
    """Per-gym history of applied license payments."""
    __tablename__ = "license_payment_history"
    __table_args__ = (
        db.UniqueConstraint("gym_id", "payment_id", name="uq_license_history_gym_payment"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    payment_id = db.Column(db.String(64), nullable=False)
    plan_id = db.Column(db.String(64), nullable=False)
    event_type = db.Column(db.String(32), nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_pct = db.Column(db.Integer, nullable=False, default=0)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "payment_id": self.payment_id,
            "plan_id": self.plan_id,
            "event_type": self.event_type,
            "amount_paid_cents": self.amount_paid_cents,
            "discount_pct": self.discount_pct,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class PaymentPreference(db.Model):
    """
    Payment link created for a gym; flipped to approved when a payment
    that resolves to this preference is applied.
    """
    __tablename__ = "payment_preferences"

    preference_id = db.Column(db.String(128), primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    plan_id = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    init_point = db.Column(db.Text, nullable=True)
    discount_pct = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "preference_id": self.preference_id,
            "gym_id": self.gym_id,
            "plan_id": self.plan_id,
            "status": self.status,
            "init_point": self.init_point,
            "discount_pct": self.discount_pct,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
