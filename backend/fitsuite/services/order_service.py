"""
Order/Stock Settlement

WHY: A paid e-commerce order must move stock exactly once, and never
oversell. Settlement is all-or-nothing across the order's lines.

FLOW (one transaction):
1. Resolve each line's stock target: the matching variant (case-insensitive
   color/size) when the product has variants, else the flat product stock.
2. Verify every target covers the summed requested quantity before any
   decrement.
3. Decrement, flip the order to paid, stamp payment metadata, record the
   accounting transaction and update the revenue rollup.

Any error aborts the unit and leaves the order pending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import Order, OrderLine, Product
from fitsuite.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .accounting_service import (
    CATEGORY_STORE_SALE,
    accumulate,
    medium_for_method,
    record_transaction,
)


class OrderSettlementError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFound(OrderSettlementError):
    pass


class ProductNotFound(OrderSettlementError):
    pass


class VariantNotFound(OrderSettlementError):
    pass


class InsufficientStock(OrderSettlementError):
    pass


ORDER_PENDING = "pending"
ORDER_PAID = "paid"


@dataclass(frozen=True)
class SettlementResult:
    order: Order
    already_paid: bool


def _norm(value) -> str:
    return (value or "").strip().lower()


def _match_variant(product: Product, line: OrderLine):
    for variant in product.variants:
        if _norm(variant.color) == _norm(line.color) and _norm(variant.size) == _norm(line.size):
            return variant
    return None


def create_order(gym_id: str, lines: list[dict]) -> Order:
    """
    Create a pending order from [{product_id, quantity, color?, size?}].

    Prices are taken from the product at creation time.
    """
    if not lines:
        raise OrderSettlementError("Order must have at least one line")

    def _op():
        order = Order(gym_id=gym_id, status=ORDER_PENDING, total_cents=0)
        db.session.add(order)
        db.session.flush()

        total = 0
        for item in lines:
            quantity = item.get("quantity")
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise OrderSettlementError("quantity must be a positive integer")
            product = db.session.query(Product).filter_by(id=item.get("product_id"), gym_id=gym_id).first()
            if not product:
                raise ProductNotFound(f"Product {item.get('product_id')} not found")
            db.session.add(OrderLine(
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                color=item.get("color"),
                size=item.get("size"),
            ))
            total += product.price_cents * quantity

        order.total_cents = total
        db.session.commit()
        return order

    return run_with_retry(_op)


def _settle_order_locked(
    gym_id: str,
    order_id: int,
    *,
    payment_id: str,
    amount_paid_cents: int | None,
    method: str | None,
    tz_name: str,
    now: datetime | None = None,
) -> SettlementResult:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id, gym_id=gym_id)).first()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")

    if order.status == ORDER_PAID:
        return SettlementResult(order=order, already_paid=True)

    if order.status != ORDER_PENDING:
        raise OrderSettlementError(f"Cannot settle order with status {order.status}")

    other = db.session.query(Order.id).filter(
        Order.payment_id == str(payment_id),
        Order.id != order.id,
    ).first()
    if other:
        raise OrderSettlementError(f"Payment {payment_id} already settled order {other.id}")

    lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id).all()
    if not lines:
        raise OrderSettlementError("Cannot settle order with no lines")

    # Resolve targets and sum requested quantities per target
    targets: dict[tuple, object] = {}
    requested: dict[tuple, int] = {}
    for line in lines:
        product = lock_for_update(
            db.session.query(Product).filter_by(id=line.product_id, gym_id=gym_id)
        ).first()
        if not product:
            raise ProductNotFound(
                f"Product {line.product_id} not found",
                details={"product_id": line.product_id},
            )

        if product.variants:
            variant = _match_variant(product, line)
            if variant is None:
                raise VariantNotFound(
                    f"No variant of product {product.id} matches color={line.color!r} size={line.size!r}",
                    details={"product_id": product.id, "color": line.color, "size": line.size},
                )
            key = ("variant", variant.id)
            targets[key] = variant
        else:
            key = ("product", product.id)
            targets[key] = product
        requested[key] = requested.get(key, 0) + line.quantity

    insufficient = []
    for key, quantity in requested.items():
        available = targets[key].stock or 0
        if available < quantity:
            insufficient.append({
                "target": key[0],
                "id": key[1],
                "requested_quantity": quantity,
                "available": available,
            })
    if insufficient:
        raise InsufficientStock(
            "Insufficient stock to settle order",
            details={"items": insufficient},
        )

    for key, quantity in requested.items():
        target = targets[key]
        target.stock = (target.stock or 0) - quantity

    now = now or utcnow()
    amount = order.total_cents if amount_paid_cents is None else amount_paid_cents

    order.status = ORDER_PAID
    order.payment_id = str(payment_id)
    order.payment_method = method
    order.amount_paid_cents = amount
    order.paid_at = now

    record_transaction(
        gym_id=gym_id,
        payment_id=str(payment_id),
        txn_type="store",
        amount_cents=amount,
        method=method,
        detail=f"Order {order.id}",
        occurred_at=now,
    )
    accumulate(gym_id, CATEGORY_STORE_SALE, amount, medium_for_method(method), tz_name=tz_name, at=now)

    db.session.flush()
    return SettlementResult(order=order, already_paid=False)


def settle_order(
    gym_id: str,
    order_id: int,
    *,
    payment_id: str,
    amount_paid_cents: int | None = None,
    method: str | None = None,
    tz_name: str,
    now: datetime | None = None,
) -> SettlementResult:
    """
    Settle a pending order against an approved payment.

    Idempotent: an already-paid order returns without mutation.

    Raises:
        OrderNotFound, ProductNotFound, VariantNotFound, InsufficientStock
    """
    def _op():
        result = _settle_order_locked(
            gym_id,
            order_id,
            payment_id=payment_id,
            amount_paid_cents=amount_paid_cents,
            method=method,
            tz_name=tz_name,
            now=now,
        )
        db.session.commit()
        return result

    return run_with_retry(_op)


def get_order(gym_id: str, order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, gym_id=gym_id).first()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found")
    return order
