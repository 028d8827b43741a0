# backend/mallhub/services/catalog_service.py
"""
Shops and products.

Stock is deliberately not patchable here: it moves only through
inventory_service (manual adjustments and the payment transaction).
"""
from __future__ import annotations

from ..extensions import db
from ..models import Shop, Product
from ..errors import ShopNotFound, ProductNotFound, ValidationError

PRODUCT_MUTABLE_FIELDS = {"name", "description", "price_cents", "unit", "is_active"}
VALID_UNITS = ["unit", "kg", "litre", "metre"]


def _validate_price(price_cents) -> int:
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        raise ValidationError("price_cents must be an integer", details={"price_cents": price_cents})
    if price_cents < 0:
        raise ValidationError("price_cents must be zero or positive", details={"price_cents": price_cents})
    return price_cents


def get_shop(shop_id: int) -> Shop:
    shop = db.session.query(Shop).filter_by(id=shop_id).first()
    if not shop:
        raise ShopNotFound(details={"shop_id": shop_id})
    return shop


def create_shop(name: str, description: str | None = None, owner_user_id: int | None = None) -> Shop:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name required")

    shop = Shop(name=name, description=description, owner_user_id=owner_user_id, is_active=True)
    db.session.add(shop)
    db.session.commit()
    return shop


def create_product(
    shop_id: int,
    name: str,
    price_cents: int,
    stock: int = 0,
    *,
    description: str | None = None,
    unit: str = "unit",
    is_active: bool = True,
) -> Product:
    get_shop(shop_id)

    name = (name or "").strip()
    if not name:
        raise ValidationError("name required")
    _validate_price(price_cents)
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError("stock must be a non-negative integer", details={"stock": stock})
    if unit not in VALID_UNITS:
        raise ValidationError(f"Invalid unit: {unit}", details={"valid_units": VALID_UNITS})

    product = Product(
        shop_id=shop_id,
        name=name,
        description=description,
        price_cents=price_cents,
        unit=unit,
        stock=stock,
        is_active=is_active,
    )
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, patch: dict, shop_id: int | None = None) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product or (shop_id is not None and product.shop_id != shop_id):
        raise ProductNotFound(details={"product_id": product_id})

    if "stock" in patch:
        raise ValidationError("stock cannot be patched; use a stock adjustment")
    if "price_cents" in patch:
        _validate_price(patch["price_cents"])
    if "unit" in patch and patch["unit"] not in VALID_UNITS:
        raise ValidationError(f"Invalid unit: {patch['unit']}", details={"valid_units": VALID_UNITS})

    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(product, k, v)

    db.session.commit()
    return product
