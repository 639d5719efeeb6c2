# Overview: Encoding and parsing of the payment external reference echoed by the provider.

"""
External Reference

A payment link carries a delimited reference string that the provider
echoes back verbatim on every notification:

    gym:{gymId}|plan:{planId}|ref:{referralCode}|disc:{pct}   (license)
    gym:{gymId}|order:{orderId}                              (store order)

Optional segments may be missing or empty. Parsing fails closed: a missing
or malformed gym, or anything but exactly one of plan and order, raises
BadReference.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


class BadReference(ValueError):
    """Raised when an external reference cannot be trusted."""


ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,64}$")

KIND_LICENSE = "license"
KIND_ORDER = "order"


@dataclass(frozen=True)
class ExternalReference:
    gym_id: str
    plan_id: str | None = None
    order_id: int | None = None
    referral_code: str | None = None
    discount_pct: int | None = None

    @property
    def kind(self) -> str:
        return KIND_ORDER if self.order_id is not None else KIND_LICENSE


def is_valid_id(value) -> bool:
    return isinstance(value, str) and bool(ID_PATTERN.match(value))


def build_license_reference(gym_id: str, plan_id: str, referral_code: str | None = None, discount_pct: int = 0) -> str:
    return f"gym:{gym_id}|plan:{plan_id}|ref:{referral_code or ''}|disc:{int(discount_pct)}"


def build_order_reference(gym_id: str, order_id: int) -> str:
    return f"gym:{gym_id}|order:{int(order_id)}"


def parse_reference(raw: str | None) -> ExternalReference:
    """
    Parse a reference string.

    Raises:
        BadReference: if gym is absent/malformed, or plan and order are both
            absent, both are present, or a present plan/order is malformed
    """
    if not raw or not isinstance(raw, str):
        raise BadReference("empty external reference")

    parts: dict[str, str] = {}
    for segment in raw.split("|"):
        key, sep, value = segment.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key and key not in parts:
            parts[key] = value.strip()

    gym_id = parts.get("gym") or ""
    if not is_valid_id(gym_id):
        raise BadReference(f"malformed gym in reference {raw!r}")

    plan_id = parts.get("plan") or None
    order_raw = parts.get("order") or None

    if plan_id is None and order_raw is None:
        raise BadReference(f"reference {raw!r} carries neither plan nor order")
    if plan_id is not None and order_raw is not None:
        raise BadReference(f"reference {raw!r} carries both plan and order")
    if plan_id is not None and not is_valid_id(plan_id):
        raise BadReference(f"malformed plan in reference {raw!r}")

    order_id = None
    if order_raw is not None:
        if not order_raw.isdigit():
            raise BadReference(f"malformed order in reference {raw!r}")
        order_id = int(order_raw)

    discount_pct = None
    disc_raw = parts.get("disc")
    if disc_raw and disc_raw.isdigit():
        discount_pct = int(disc_raw)

    return ExternalReference(
        gym_id=gym_id,
        plan_id=plan_id,
        order_id=order_id,
        referral_code=parts.get("ref") or None,
        discount_pct=discount_pct,
    )
