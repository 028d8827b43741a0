from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Promotion, Product, promotion_products
from ..errors import PromotionNotFound, ValidationError
from mallhub.time_utils import utcnow, normalize_datetime


def effective_price_cents(price_cents: int, discount_percent: int | None) -> int:
    """
    price * (1 - discount/100), rounded half-up to the cent.
    """
    if not discount_percent:
        return price_cents
    price = Decimal(price_cents) * (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return int(price.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def best_promotion(product_id: int, now: datetime | None = None) -> Promotion | None:
    """
    Highest-discount promotion covering product_id whose [start, end] window
    contains now (both ends inclusive). Ties go to the oldest promotion.
    """
    if now is None:
        now = utcnow()
    return (
        db.session.query(Promotion)
        .join(promotion_products, promotion_products.c.promotion_id == Promotion.id)
        .filter(
            promotion_products.c.product_id == product_id,
            Promotion.start_at <= now,
            Promotion.end_at >= now,
        )
        .order_by(Promotion.discount_percent.desc(), Promotion.id.asc())
        .first()
    )


def price_product(product: Product, now: datetime | None = None) -> tuple[int, Promotion | None]:
    """Return (unit_price_cents, promotion) for product at now."""
    promotion = best_promotion(product.id, now)
    discount = promotion.discount_percent if promotion else 0
    return effective_price_cents(product.price_cents, discount), promotion


def _validate_discount(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("discount_percent must be an integer", details={"discount_percent": value})
    if value < 0 or value > 100:
        raise ValidationError("discount_percent must be between 0 and 100", details={"discount_percent": value})
    return value


def _validate_window(start_at, end_at) -> tuple[datetime, datetime]:
    try:
        start = normalize_datetime(start_at)
        end = normalize_datetime(end_at)
    except ValueError:
        raise ValidationError("start_at and end_at must be ISO-8601 datetimes")
    if start is None or end is None:
        raise ValidationError("start_at and end_at are required")
    if start > end:
        raise ValidationError("start_at must be on or before end_at")
    return start, end


def _require_owned(promotion_id: int, shop_id: int) -> Promotion:
    promo = db.session.query(Promotion).filter_by(id=promotion_id).first()
    if not promo:
        raise PromotionNotFound(details={"promotion_id": promotion_id})
    if promo.shop_id != shop_id:
        raise PromotionNotFound(details={"promotion_id": promotion_id})
    return promo


def create_promotion(
    shop_id: int,
    product_ids: list[int],
    discount_percent: int,
    start_at,
    end_at,
) -> Promotion:
    """Create a promotion over products that all belong to shop_id."""
    discount = _validate_discount(discount_percent)
    start, end = _validate_window(start_at, end_at)

    unique_ids = sorted(set(product_ids or []))
    if not unique_ids:
        raise ValidationError("At least one product is required")

    products = (
        db.session.query(Product)
        .filter(Product.id.in_(unique_ids), Product.shop_id == shop_id)
        .all()
    )
    if len(products) != len(unique_ids):
        found = {p.id for p in products}
        raise ValidationError(
            "Some products do not belong to this shop",
            details={"product_ids": [pid for pid in unique_ids if pid not in found]},
        )

    promo = Promotion(
        shop_id=shop_id,
        discount_percent=discount,
        start_at=start,
        end_at=end,
        products=products,
    )
    db.session.add(promo)
    db.session.commit()
    return promo


def update_promotion(promotion_id: int, shop_id: int, data: dict) -> Promotion:
    promo = _require_owned(promotion_id, shop_id)

    if "discount_percent" in data:
        promo.discount_percent = _validate_discount(data["discount_percent"])

    if "start_at" in data or "end_at" in data:
        start, end = _validate_window(
            data.get("start_at", promo.start_at),
            data.get("end_at", promo.end_at),
        )
        promo.start_at = start
        promo.end_at = end

    db.session.commit()
    return promo


def delete_promotion(promotion_id: int, shop_id: int) -> None:
    promo = _require_owned(promotion_id, shop_id)
    db.session.delete(promo)
    db.session.commit()


def list_shop_promotions(shop_id: int, active_only: bool = False, now: datetime | None = None) -> list[dict]:
    q = db.session.query(Promotion).filter_by(shop_id=shop_id)
    if active_only:
        if now is None:
            now = utcnow()
        q = q.filter(Promotion.start_at <= now, Promotion.end_at >= now)
    return [p.to_dict() for p in q.order_by(Promotion.created_at.desc(), Promotion.id.desc()).all()]
