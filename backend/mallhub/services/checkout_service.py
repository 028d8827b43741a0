"""
Checkout - turns a buyer's cart into one PENDING order per shop.

WHY: Orders are shop-scoped (each shop fulfils and gets paid for its own
lines), so a cart that spans several shops is split at checkout.

TRANSACTION:
1. Validate every line (product active, stock >= quantity). Any failure
   aborts before a single write: no orders, cart untouched.
2. Group lines by the product's shop, freezing the promotion-adjusted unit
   price captured now.
3. Create one order per group and empty the cart, then commit once.

Checkout reserves nothing; stock is consumed by the payment transaction.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Cart, Order, OrderLine
from ..models.commerce import ORDER_STATUS_PENDING
from ..errors import EmptyCart
from mallhub.time_utils import utcnow
from .inventory_service import reserve
from .promotions_service import price_product
from .concurrency import begin_write, lock_for_update, run_with_retry


def _group_lines_by_shop(cart: Cart, now: datetime) -> dict[int, list[dict]]:
    groups: dict[int, list[dict]] = {}
    for item in cart.items:
        product = reserve(item.product_id, item.quantity, lock=True)
        unit_price, _promotion = price_product(product, now)
        groups.setdefault(product.shop_id, []).append({
            "product_id": product.id,
            "product_name": product.name,
            "quantity": item.quantity,
            "unit_price_cents": unit_price,
            "line_total_cents": unit_price * item.quantity,
        })
    return groups


def checkout(buyer_id: int, now: datetime | None = None) -> dict:
    """
    Split the buyer's cart into per-shop orders.

    Returns:
        {"order_ids": [...], "orders": [...], "order_count": k,
         "grand_total_cents": n}

    Raises:
        EmptyCart, ProductUnavailable, InsufficientStock
    """
    def _op():
        priced_at = now or utcnow()
        begin_write()

        cart = lock_for_update(db.session.query(Cart).filter_by(buyer_id=buyer_id)).first()
        if cart is None or not cart.items:
            raise EmptyCart(details={"buyer_id": buyer_id})

        groups = _group_lines_by_shop(cart, priced_at)

        orders = []
        for shop_id, lines in groups.items():
            order = Order(
                buyer_id=buyer_id,
                shop_id=shop_id,
                status=ORDER_STATUS_PENDING,
                total_cents=sum(line["line_total_cents"] for line in lines),
            )
            order.lines = [OrderLine(**line) for line in lines]
            db.session.add(order)
            orders.append(order)

        cart.items.clear()
        cart.updated_at = priced_at

        db.session.commit()

        current_app.logger.info(
            "Checkout buyer_id=%s created orders %s", buyer_id, [o.id for o in orders]
        )

        return {
            "order_ids": [o.id for o in orders],
            "orders": [
                {
                    "id": o.id,
                    "shop_id": o.shop_id,
                    "total_cents": o.total_cents,
                    "status": o.status,
                }
                for o in orders
            ],
            "order_count": len(orders),
            "grand_total_cents": sum(o.total_cents for o in orders),
        }

    return run_with_retry(_op)
