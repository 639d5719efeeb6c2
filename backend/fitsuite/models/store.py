from __future__ import annotations

from ..extensions import db
from fitsuite.time_utils import to_utc_z


class Product(db.Model):
    """
    Gym e-commerce product.

    STOCK MODEL:
    - Plain products carry a flat `stock` integer.
    - Products with variants (color/size) keep stock per ProductVariant and
      ignore `stock`.
    Stock never goes negative; settlement refuses to oversell.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_gym_name", "gym_id", "name"),
        db.CheckConstraint("stock IS NULL OR stock >= 0", name="ck_products_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        order_by="ProductVariant.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} gym_id={self.gym_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "is_active": self.is_active,
            "variants": [v.to_dict() for v in self.variants],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_variants_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "color": self.color,
            "size": self.size,
            "stock": self.stock,
        }


class Order(db.Model):
    """
    E-commerce order.

    STATUS: pending -> paid (one-way). The flip to paid and the stock
    decrement happen in the same transaction, never independently.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_gym_status", "gym_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gym_id = db.Column(db.String(64), db.ForeignKey("gyms.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending")
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_id = db.Column(db.String(64), nullable=True, unique=True)
    payment_method = db.Column(db.String(32), nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} gym_id={self.gym_id!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gym_id": self.gym_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "payment_id": self.payment_id,
            "payment_method": self.payment_method,
            "amount_paid_cents": self.amount_paid_cents,
            "paid_at": to_utc_z(self.paid_at),
            "lines": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    # Variant selector; matched case-insensitively against ProductVariant
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "color": self.color,
            "size": self.size,
        }
