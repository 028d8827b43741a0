from __future__ import annotations

from ..extensions import db
from mallhub.time_utils import to_utc_z


promotion_products = db.Table(
    "promotion_products",
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    db.Index("ix_promotion_products_product", "product_id"),
)


class Shop(db.Model):
    """
    Tenant storefront.

    A shop holds at most one Box at a time (box_id). The link is written only
    by the box assignment/release/transfer services, which check occupancy
    before mutating; there is no database-level uniqueness on box_id.
    """
    __tablename__ = "shops"
    __table_args__ = (
        db.Index("ix_shops_box_id", "box_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Identity lives outside this service; keep the reference only
    owner_user_id = db.Column(db.Integer, nullable=True, index=True)

    box_id = db.Column(db.Integer, db.ForeignKey("boxes.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    box = db.relationship("Box", foreign_keys=[box_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Shop id={self.id} name={self.name!r} box_id={self.box_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner_user_id": self.owner_user_id,
            "box_id": self.box_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product sold by a shop.

    INVARIANT: stock is never negative. Only the inventory service writes it:
    manual adjustments (clamped at zero) and the order payment transaction
    (pre-validated, never clamped).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_shop_active", "shop_id", "is_active"),
        db.Index("ix_products_shop_name", "shop_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(16), nullable=False, default="unit")  # unit, kg, litre, metre
    stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} shop_id={self.shop_id} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "unit": self.unit,
            "stock": self.stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Promotion(db.Model):
    """
    Time-windowed percentage discount over a set of products.

    Overlapping promotions on the same product are allowed; the resolver
    picks the highest discount among those active at evaluation time.
    The window is inclusive on both ends.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_promotions_discount_range",
        ),
        db.Index("ix_promotions_window", "start_at", "end_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    discount_percent = db.Column(db.Integer, nullable=False)

    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    products = db.relationship(
        "Product",
        secondary=promotion_products,
        lazy="selectin",
        backref=db.backref("promotions", lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "discount_percent": self.discount_percent,
            "product_ids": sorted(p.id for p in self.products),
            "start_at": to_utc_z(self.start_at),
            "end_at": to_utc_z(self.end_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
