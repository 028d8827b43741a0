# Overview: Service-layer operations for orders; payment transaction, cancellation and read models.

"""
Order Service

PAYMENT (the only moment stock is consumed):
- Order must belong to the buyer and be PENDING.
- Every line is re-validated against current stock (it may have drifted
  since checkout). Any failure aborts with no side effects.
- On success, in one transaction: decrement stock per line, mark PAID,
  attach the payment sub-record.
- Two buyers racing for the same limited stock: first committer wins, the
  loser gets InsufficientStock and may retry or cancel.

CANCELLATION:
- Allowed from PENDING or PAID. Cancelling a PAID order does not restock or
  refund; that is a separate admin workflow.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLine
from ..models.commerce import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PAID,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUSES,
)
from ..errors import OrderNotFound, OrderNotPayable, OrderNotCancellable, ValidationError
from mallhub.time_utils import utcnow, to_utc_z
from .inventory_service import reserve, decrement
from .concurrency import begin_write, lock_for_update, run_with_retry


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_CARD = "CARD"
PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_TRANSFER = "TRANSFER"
PAYMENT_METHOD_MOBILE = "MOBILE"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_TRANSFER,
    PAYMENT_METHOD_MOBILE,
]

CANCELLABLE_STATUSES = [ORDER_STATUS_PENDING, ORDER_STATUS_PAID]
DEFAULT_CANCEL_REASON = "Cancelled by buyer"

STATUS_INFO = {
    ORDER_STATUS_PENDING: {
        "label": "Awaiting payment",
        "description": "Order recorded, waiting for payment confirmation",
    },
    ORDER_STATUS_PAID: {
        "label": "Paid",
        "description": "Payment confirmed, order being prepared",
    },
    ORDER_STATUS_DELIVERED: {
        "label": "Delivered",
        "description": "Order delivered",
    },
    ORDER_STATUS_CANCELLED: {
        "label": "Cancelled",
        "description": "Order cancelled",
    },
}


def status_info(status: str) -> dict:
    return STATUS_INFO.get(status, {"label": status, "description": "Unknown status"})


def _load_buyer_order(order_id: int, buyer_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id, buyer_id=buyer_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFound(details={"order_id": order_id})
    return order


# =============================================================================
# PAYMENT TRANSACTION
# =============================================================================

def pay(order_id: int, buyer_id: int, payment_method: str | None = None) -> Order:
    """
    Pay a PENDING order and consume its stock.

    Raises:
        OrderNotFound: unknown order or not owned by buyer
        OrderNotPayable: order is not PENDING
        ProductUnavailable / InsufficientStock: a line can no longer be satisfied
    """
    method = (payment_method or PAYMENT_METHOD_CARD).upper()
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}",
            details={"valid_methods": VALID_PAYMENT_METHODS},
        )

    def _op():
        begin_write()
        order = _load_buyer_order(order_id, buyer_id, lock=True)
        if order.status != ORDER_STATUS_PENDING:
            raise OrderNotPayable(
                f"Cannot pay order with status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        # Aggregate per product so two lines on one product are checked together
        required: dict[int, int] = defaultdict(int)
        for line in order.lines:
            required[line.product_id] += line.quantity

        products = {pid: reserve(pid, qty, lock=True) for pid, qty in required.items()}

        for pid, qty in required.items():
            decrement(products[pid], qty)

        order.status = ORDER_STATUS_PAID
        order.payment_method = method
        order.paid_at = utcnow()
        order.paid_amount_cents = order.total_cents

        db.session.commit()

        current_app.logger.info(
            "Order %s paid by buyer_id=%s method=%s amount_cents=%s",
            order.id, buyer_id, method, order.total_cents,
        )
        return order

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def cancel(order_id: int, buyer_id: int, reason: str | None = None) -> Order:
    """Cancel a PENDING or PAID order, recording reason, time and prior status."""
    def _op():
        order = _load_buyer_order(order_id, buyer_id, lock=True)
        if order.status not in CANCELLABLE_STATUSES:
            raise OrderNotCancellable(
                f"Cannot cancel order with status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        previous = order.status
        order.status = ORDER_STATUS_CANCELLED
        order.cancel_reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
        order.cancelled_at = utcnow()
        order.cancelled_from_status = previous

        db.session.commit()

        current_app.logger.info(
            "Order %s cancelled by buyer_id=%s (was %s)", order.id, buyer_id, previous
        )
        return order

    return run_with_retry(_op)


# =============================================================================
# READ MODELS
# =============================================================================

def _paginate(query, page: int | None, per_page: int | None) -> tuple[list, dict]:
    per_page = min(per_page or 10, 100)
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return rows, {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def _buyer_stats(buyer_id: int) -> dict:
    rows = (
        db.session.query(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_cents), 0))
        .filter(Order.buyer_id == buyer_id)
        .group_by(Order.status)
        .all()
    )
    by_status = {status: 0 for status in ORDER_STATUSES}
    count = 0
    spent = 0
    for status, n, total in rows:
        by_status[status] = int(n)
        count += int(n)
        spent += int(total)

    return {
        "order_count": count,
        "total_spent_cents": spent,
        "average_basket_cents": (spent + count // 2) // count if count else 0,
        "by_status": by_status,
    }


def list_orders(
    buyer_id: int,
    status: str | list[str] | None = None,
    shop_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Buyer's orders, newest first, with filters, pagination and spend stats."""
    query = db.session.query(Order).filter(Order.buyer_id == buyer_id)

    if status:
        statuses = status.split(",") if isinstance(status, str) else list(status)
        query = query.filter(Order.status.in_(statuses))
    if shop_id is not None:
        query = query.filter(Order.shop_id == shop_id)

    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    orders, pagination = _paginate(query, page, per_page)

    items = []
    for order in orders:
        items.append({
            "id": order.id,
            "reference": order.reference,
            "shop_id": order.shop_id,
            "shop_name": order.shop.name if order.shop else None,
            "total_cents": order.total_cents,
            "status": order.status,
            "status_info": status_info(order.status),
            "unit_count": sum(line.quantity for line in order.lines),
            "can_pay": order.status == ORDER_STATUS_PENDING,
            "can_cancel": order.status in CANCELLABLE_STATUSES,
            "created_at": to_utc_z(order.created_at),
        })

    return {
        "items": items,
        "count": len(items),
        "pagination": pagination,
        "stats": _buyer_stats(buyer_id),
    }


def get_order_detail(order_id: int, buyer_id: int) -> dict:
    """
    Receipt-style view. Savings compare the frozen unit price against the
    product's *current* list price.
    """
    order = _load_buyer_order(order_id, buyer_id)

    lines = []
    original_total = 0
    for line in order.lines:
        current_price = line.product.price_cents if line.product else line.unit_price_cents
        original_total += current_price * line.quantity
        lines.append({
            **line.to_dict(),
            "current_price_cents": current_price,
            "savings_cents": max(0, (current_price - line.unit_price_cents) * line.quantity),
        })

    data = order.to_dict()
    data["lines"] = lines
    data["status_info"] = status_info(order.status)
    data["original_total_cents"] = original_total
    data["savings_cents"] = max(0, original_total - order.total_cents)
    data["actions"] = {
        "can_pay": order.status == ORDER_STATUS_PENDING,
        "can_cancel": order.status in CANCELLABLE_STATUSES,
    }
    return data


def list_shop_orders(
    shop_id: int,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Order).filter(Order.shop_id == shop_id)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())

    orders, pagination = _paginate(query, page, per_page)
    return {
        "items": [o.to_dict() for o in orders],
        "count": len(orders),
        "pagination": pagination,
    }


def shop_revenue(shop_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Revenue from PAID orders, optionally bounded by creation date (inclusive)."""
    query = db.session.query(Order).filter(
        Order.shop_id == shop_id,
        Order.status == ORDER_STATUS_PAID,
    )
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at <= end)

    orders = query.order_by(Order.created_at.asc()).all()

    total = sum(o.total_cents for o in orders)
    daily: dict[str, int] = {}
    for o in orders:
        day = o.created_at.date().isoformat()
        daily[day] = daily.get(day, 0) + o.total_cents

    count = len(orders)
    return {
        "shop_id": shop_id,
        "revenue_cents": total,
        "order_count": count,
        "average_basket_cents": (total + count // 2) // count if count else 0,
        "daily": daily,
    }


def _paid_total_since(shop_id: int, since: datetime) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Order.total_cents), 0))
        .filter(
            Order.shop_id == shop_id,
            Order.status == ORDER_STATUS_PAID,
            Order.created_at >= since,
        )
        .scalar()
    )
    return int(total)


def shop_statistics(shop_id: int, now: datetime | None = None) -> dict:
    """
    Shop dashboard: month-to-date and year-to-date PAID revenue, the five
    best-selling products among PAID orders, and order counts per status.
    """
    if now is None:
        now = utcnow()

    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    year_start = month_start.replace(month=1)

    quantity_sold = func.sum(OrderLine.quantity)
    top_rows = (
        db.session.query(
            OrderLine.product_id,
            func.max(OrderLine.product_name),
            quantity_sold,
            func.sum(OrderLine.line_total_cents),
        )
        .join(Order, OrderLine.order_id == Order.id)
        .filter(Order.shop_id == shop_id, Order.status == ORDER_STATUS_PAID)
        .group_by(OrderLine.product_id)
        .order_by(quantity_sold.desc(), OrderLine.product_id.asc())
        .limit(5)
        .all()
    )

    status_rows = (
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.shop_id == shop_id)
        .group_by(Order.status)
        .all()
    )
    by_status = {status: 0 for status in ORDER_STATUSES}
    for status, count in status_rows:
        by_status[status] = int(count)

    return {
        "shop_id": shop_id,
        "revenue_cents": {
            "month": _paid_total_since(shop_id, month_start),
            "year": _paid_total_since(shop_id, year_start),
        },
        "top_products": [
            {
                "product_id": product_id,
                "name": name,
                "quantity": int(quantity),
                "amount_cents": int(amount),
            }
            for product_id, name, quantity, amount in top_rows
        ],
        "orders_by_status": by_status,
        "generated_at": to_utc_z(now),
    }
