from __future__ import annotations

from ..extensions import db
from mallhub.time_utils import to_utc_z


class Cart(db.Model):
    """
    A buyer's in-progress selection. One per buyer, created lazily.

    Prices are not stored here: the priced view is recomputed on every read
    so that promotions and price changes show up immediately. Checkout
    empties the cart but keeps the row.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.UniqueConstraint("buyer_id", name="uq_carts_buyer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy="selectin",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def find_item(self, product_id: int):
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


class CartItem(db.Model):
    """Cart line; quantity >= 1. Adding an existing product accumulates quantity."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")


# Order status constants
ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"

ORDER_STATUSES = [
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PAID,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
]


class Order(db.Model):
    """
    Shop-scoped purchase created at checkout.

    A cart spanning N shops becomes N orders. Unit prices are frozen on the
    lines at creation time (promotion-adjusted) so receipts never change.

    LIFECYCLE:
    - PENDING -> PAID (payment transaction; the only point stock is consumed)
    - PENDING | PAID -> CANCELLED
    - PAID -> DELIVERED (handled by fulfilment)
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_buyer_status_created", "buyer_id", "status", "created_at"),
        db.Index("ix_orders_shop_status", "shop_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    total_cents = db.Column(db.Integer, nullable=False)

    # Payment sub-record (set when PAID)
    payment_method = db.Column(db.String(32), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_amount_cents = db.Column(db.Integer, nullable=True)

    # Cancellation sub-record (set when CANCELLED)
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_from_status = db.Column(db.String(16), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop")
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy="selectin",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reference(self) -> str:
        return f"CMD-{self.id:08d}"

    def to_dict(self) -> dict:
        payment = None
        if self.paid_at is not None:
            payment = {
                "method": self.payment_method,
                "paid_at": to_utc_z(self.paid_at),
                "amount_cents": self.paid_amount_cents,
            }
        cancellation = None
        if self.cancelled_at is not None:
            cancellation = {
                "reason": self.cancel_reason,
                "cancelled_at": to_utc_z(self.cancelled_at),
                "previous_status": self.cancelled_from_status,
            }
        return {
            "id": self.id,
            "reference": self.reference,
            "buyer_id": self.buyer_id,
            "shop_id": self.shop_id,
            "status": self.status,
            "total_cents": self.total_cents,
            "lines": [line.to_dict() for line in self.lines],
            "payment": payment,
            "cancellation": cancellation,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLine(db.Model):
    """Order line with the unit price captured at checkout."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
