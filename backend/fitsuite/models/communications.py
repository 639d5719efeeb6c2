from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class InboxMessage(db.Model):
    """
    In-app notification delivered to a gym.

    message_key is deterministic per source event (e.g. lic-{paymentId}),
    so a re-delivered notification overwrites instead of duplicating.
    """
    __tablename__ = "inbox_messages"
    __table_args__ = (
        db.UniqueConstraint("gym_id", "message_key", name="uq_inbox_gym_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    message_key = db.Column(db.String(128), nullable=False)

    type = db.Column(db.String(32), nullable=False)
    source = db.Column(db.String(32), nullable=False)
    level = db.Column(db.String(16), nullable=False, default="info")
    title = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)
    tags = db.Column(db.JSON, nullable=False, default=list)

    unread = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "message_key": self.message_key,
            "type": self.type,
            "source": self.source,
            "level": self.level,
            "title": self.title,
            "details": self.details or {},
            "tags": self.tags or [],
            "unread": self.unread,
            "created_at": to_utc_z(self.created_at),
        }
