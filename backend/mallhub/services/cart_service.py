"""
Cart service - one cart per buyer, priced on read.

Stock checks here read *current* stock and are advisory only: nothing is
reserved, and checkout/payment re-validate authoritatively.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Cart, CartItem, Product
from ..errors import CartItemNotFound, InsufficientStock, ValidationError
from mallhub.time_utils import utcnow
from .inventory_service import require_available_product
from .promotions_service import price_product
from .concurrency import begin_write, run_with_retry


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be an integer", details={"quantity": quantity})
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})
    return quantity


def _find_cart(buyer_id: int) -> Cart | None:
    return db.session.query(Cart).filter_by(buyer_id=buyer_id).first()


def _require_cart(buyer_id: int) -> Cart:
    cart = _find_cart(buyer_id)
    if cart is None:
        raise CartItemNotFound("Cart not found", details={"buyer_id": buyer_id})
    return cart


def _check_stock(product: Product, quantity: int, in_cart: int = 0) -> None:
    if product.stock < quantity:
        err = InsufficientStock(
            product_id=product.id,
            requested=quantity,
            available=product.stock,
            message=f"Insufficient stock. Available: {product.stock}",
        )
        if in_cart:
            err.details["in_cart"] = in_cart
        raise err


def add_item(buyer_id: int, product_id: int, quantity: int = 1) -> Cart:
    """
    Add a product to the buyer's cart, creating the cart on first use.
    An existing line for the same product accumulates quantity; the stock
    check applies to the accumulated total.
    """
    _validate_quantity(quantity)

    def _op():
        begin_write()
        product = require_available_product(product_id)

        cart = _find_cart(buyer_id)
        if cart is None:
            cart = Cart(buyer_id=buyer_id)
            db.session.add(cart)

        item = cart.find_item(product_id)
        if item is not None:
            new_quantity = item.quantity + quantity
            _check_stock(product, new_quantity, in_cart=item.quantity)
            item.quantity = new_quantity
        else:
            _check_stock(product, quantity)
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))

        cart.updated_at = utcnow()
        db.session.commit()
        return cart

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # A concurrent writer created the cart or the line first; merge into it.
        return run_with_retry(_op)


def remove_item(buyer_id: int, product_id: int) -> Cart:
    """Drop a product line; removing a product that is not in the cart is a no-op."""
    def _op():
        begin_write()
        cart = _require_cart(buyer_id)
        item = cart.find_item(product_id)
        if item is not None:
            cart.items.remove(item)
            cart.updated_at = utcnow()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def set_quantity(buyer_id: int, product_id: int, quantity: int) -> Cart:
    _validate_quantity(quantity)

    def _op():
        begin_write()
        product = require_available_product(product_id)
        _check_stock(product, quantity)

        cart = _require_cart(buyer_id)
        item = cart.find_item(product_id)
        if item is None:
            raise CartItemNotFound(details={"product_id": product_id})

        item.quantity = quantity
        cart.updated_at = utcnow()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def clear_cart(buyer_id: int) -> Cart | None:
    """Empty the buyer's cart (the cart row itself is kept)."""
    def _op():
        begin_write()
        cart = _find_cart(buyer_id)
        if cart is None:
            return None
        cart.items.clear()
        cart.updated_at = utcnow()
        db.session.commit()
        return cart

    return run_with_retry(_op)


def _empty_view(cart_id: int | None = None) -> dict:
    return {
        "id": cart_id,
        "items": [],
        "total_cents": 0,
        "original_total_cents": 0,
        "savings_cents": 0,
        "distinct_products": 0,
        "unit_count": 0,
    }


def materialize(cart_id: int, now: datetime | None = None) -> dict:
    """
    Priced projection of a cart, recomputed on every call.

    Each line resolves its best promotion at `now`; totals are sums of the
    per-line (already cent-rounded) amounts.
    """
    if now is None:
        now = utcnow()

    cart = db.session.query(Cart).filter_by(id=cart_id).first()
    if cart is None:
        raise CartItemNotFound("Cart not found", details={"cart_id": cart_id})

    view = _empty_view(cart.id)
    view["buyer_id"] = cart.buyer_id

    for item in cart.items:
        product = item.product
        unit_price, promotion = price_product(product, now)

        line_total = unit_price * item.quantity
        original_line_total = product.price_cents * item.quantity

        view["items"].append({
            "product": {
                "id": product.id,
                "name": product.name,
                "price_cents": product.price_cents,
                "shop_id": product.shop_id,
                "is_active": product.is_active,
            },
            "quantity": item.quantity,
            "unit_price_cents": unit_price,
            "original_unit_price_cents": product.price_cents,
            "line_total_cents": line_total,
            "original_line_total_cents": original_line_total,
            "savings_cents": original_line_total - line_total,
            "on_promotion": promotion is not None,
            "discount_percent": promotion.discount_percent if promotion else 0,
            "available_stock": product.stock,
        })

        view["total_cents"] += line_total
        view["original_total_cents"] += original_line_total
        view["unit_count"] += item.quantity

    view["savings_cents"] = view["original_total_cents"] - view["total_cents"]
    view["distinct_products"] = len(view["items"])
    return view


def get_cart(buyer_id: int, now: datetime | None = None) -> dict:
    """Materialized view of the buyer's cart, or an empty view if none exists."""
    cart = _find_cart(buyer_id)
    if cart is None:
        view = _empty_view()
        view["buyer_id"] = buyer_id
        return view
    return materialize(cart.id, now)
