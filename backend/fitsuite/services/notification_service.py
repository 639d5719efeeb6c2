# Overview: Post-commit notification fan-out; best-effort, never inside a payment transaction.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import InboxMessage


class PostCommitQueue:
    """
    Side effects collected during a unit and run only after it committed.

    Each task runs inside its own error boundary: failures are logged and
    swallowed, and never cause the payment to be reprocessed.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._tasks = []

    def __len__(self) -> int:
        return len(self._tasks)

    def enqueue(self, func, *args, **kwargs) -> None:
        self._tasks.append((func, args, kwargs))

    def clear(self) -> None:
        self._tasks = []

    def run(self) -> int:
        """Run queued tasks in order; returns the number that failed."""
        failures = 0
        tasks, self._tasks = self._tasks, []
        for func, args, kwargs in tasks:
            try:
                func(*args, **kwargs)
            except Exception:
                failures += 1
                self.logger.warning("Post-commit task %s failed", getattr(func, "__name__", func), exc_info=True)
        return failures


LICENSE_TITLES = {
    "license_activated": "License activated: {plan_name}",
    "license_renewed": "License renewed: {plan_name}",
    "license_upgraded": "Plan upgraded: {plan_name}",
}


class InboxNotificationSink:
    """
    Default sink: persists notifications as gym inbox messages.

    Keyed per source event, so a repeated notification overwrites the
    existing message instead of creating a second one.
    """

    def notify(self, event_type: str, gym_id: str, details: dict, *, message_key: str) -> InboxMessage:
        try:
            message = db.session.query(InboxMessage).filter_by(gym_id=gym_id, message_key=message_key).first()
            if message is None:
                message = InboxMessage(gym_id=gym_id, message_key=message_key)
                db.session.add(message)

            message.type = event_type
            message.source = details.get("source", "system")
            message.level = "info"
            message.title = _title_for(event_type, details)
            message.details = dict(details)
            message.tags = list(details.get("tags", []))
            message.unread = True
            db.session.commit()
            return message
        except Exception:
            db.session.rollback()
            raise


def _title_for(event_type: str, details: dict) -> str:
    if event_type in LICENSE_TITLES:
        return LICENSE_TITLES[event_type].format(plan_name=details.get("planName") or details.get("planId") or "")
    if event_type == "referral_credit":
        return "New referral confirmed"
    return event_type


def license_message_key(payment_id: str) -> str:
    return f"lic-{payment_id}"


def referral_message_key(payment_id: str) -> str:
    return f"ref-{payment_id}"


def order_message_key(payment_id: str) -> str:
    return f"ord-{payment_id}"
