"""
Tenant Service: Gym lookup and lazy provisioning

Gym ids arrive from payment references, referral claims and client calls.
Rows are created on first touch inside the caller's transaction; a
concurrent first touch surfaces as IntegrityError at commit and the
caller's retry re-reads the committed row.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Gym
from .external_reference import is_valid_id


class TenantError(Exception):
    """Raised for malformed or unknown gym ids."""
    pass


def ensure_gym(gym_id: str, *, default_timezone: str, name: str | None = None) -> Gym:
    """Get or stage a Gym row (caller commits)."""
    if not is_valid_id(gym_id):
        raise TenantError(f"Malformed gym id {gym_id!r}")

    gym = db.session.query(Gym).filter_by(id=gym_id).first()
    if gym:
        return gym

    gym = Gym(id=gym_id, name=name, timezone=default_timezone)
    db.session.add(gym)
    db.session.flush()
    return gym


def get_gym(gym_id: str) -> Gym:
    gym = db.session.query(Gym).filter_by(id=gym_id).first()
    if not gym:
        raise TenantError(f"Gym {gym_id!r} not found")
    return gym
