# Overview: Service-layer operations for the processed-payment idempotency ledger.

"""
Idempotency Ledger

USAGE (inside one transactional unit):

    if already_processed(payment_id):
        return  # whole unit short-circuits, nothing staged yet
    ... stage every mutation ...
    claim(payment_id, gym_id=..., kind=...)  # last write before commit
    db.session.commit()

The marker's primary key makes a concurrent second claim fail at commit
with IntegrityError; the retried unit then sees the marker and no-ops.
"""

from __future__ import annotations

from ..extensions import db
from ..models import ProcessedPayment


def already_processed(payment_id: str) -> bool:
    return db.session.query(ProcessedPayment.payment_id).filter_by(
        payment_id=str(payment_id)
    ).first() is not None


def claim(payment_id: str, *, gym_id: str | None, kind: str) -> ProcessedPayment:
    """Stage the write-once marker. Must be the last write of the unit."""
    marker = ProcessedPayment(payment_id=str(payment_id), gym_id=gym_id, kind=kind)
    db.session.add(marker)
    db.session.flush()
    return marker
