# backend/mallhub/services/lease_service.py
"""
Lease payment ledger and expiry alerts.

Payments are immutable ledger entries (amount, paid_at, period). The lease
status of a shop is never stored: it is computed on read from the payment
with the latest period_end.

ALERT STATES:
- EXPIRED: period_end already passed (days_until_end < 0)
- EXPIRING_SOON: 0 <= days_until_end <= LEASE_ALERT_WINDOW_DAYS
- CURRENT: otherwise
- NO_PAYMENT: shop has no payment at all (situation only)
"""
from __future__ import annotations

from datetime import datetime, time, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import LeasePayment, Shop
from ..models.leases import PERIOD_MONTHS
from ..errors import PaymentNotFound, ShopNotFound, ShopHasNoBox, ValidationError
from mallhub.time_utils import utcnow, normalize_datetime, add_months, ceil_days, to_utc_z
from .concurrency import run_with_retry


ALERT_CURRENT = "CURRENT"
ALERT_EXPIRING_SOON = "EXPIRING_SOON"
ALERT_EXPIRED = "EXPIRED"
ALERT_NO_PAYMENT = "NO_PAYMENT"

VALID_PERIODS = list(PERIOD_MONTHS)
PAYMENT_ALERT_STATUSES = [ALERT_CURRENT, ALERT_EXPIRING_SOON, ALERT_EXPIRED]

PAYMENT_SORTS = {
    "period_end_asc": (LeasePayment.period_end.asc(), LeasePayment.id.asc()),
    "period_end_desc": (LeasePayment.period_end.desc(), LeasePayment.id.desc()),
    "paid_at_asc": (LeasePayment.paid_at.asc(), LeasePayment.id.asc()),
    "paid_at_desc": (LeasePayment.paid_at.desc(), LeasePayment.id.desc()),
    "amount_asc": (LeasePayment.amount_cents.asc(), LeasePayment.id.asc()),
    "amount_desc": (LeasePayment.amount_cents.desc(), LeasePayment.id.desc()),
}
DEFAULT_PAYMENT_SORT = "period_end_asc"


def _alert_window() -> int:
    return current_app.config.get("LEASE_ALERT_WINDOW_DAYS", 7)


def _validate_period(period: str) -> str:
    if period not in PERIOD_MONTHS:
        raise ValidationError(f"Invalid period: {period}", details={"valid_periods": VALID_PERIODS})
    return period


def _validate_amount(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
        raise ValidationError("amount_cents must be a non-negative integer", details={"amount_cents": amount_cents})
    return amount_cents


def _paid_at(value) -> datetime:
    try:
        dt = normalize_datetime(value)
    except ValueError:
        raise ValidationError("paid_at must be an ISO-8601 datetime", details={"paid_at": value})
    return dt or utcnow()


def period_end_for(paid_at: datetime, period: str) -> datetime:
    return add_months(paid_at, PERIOD_MONTHS[_validate_period(period)])


# =============================================================================
# LEDGER
# =============================================================================

def record_payment(shop_id: int, period: str, amount_cents: int | None = None, paid_at=None) -> LeasePayment:
    """
    Append a rent payment for a shop.

    amount_cents defaults to the rent of the shop's current box.

    Raises:
        ShopNotFound, ShopHasNoBox (no amount and no box), ValidationError
    """
    _validate_period(period)
    if amount_cents is not None:
        _validate_amount(amount_cents)

    def _op():
        shop = db.session.query(Shop).filter_by(id=shop_id).first()
        if not shop:
            raise ShopNotFound(details={"shop_id": shop_id})

        amount = amount_cents
        if amount is None:
            if shop.box is None:
                raise ShopHasNoBox(
                    "Shop has no box; an explicit amount is required",
                    details={"shop_id": shop_id},
                )
            amount = shop.box.rent_cents

        paid = _paid_at(paid_at)
        payment = LeasePayment(
            shop_id=shop.id,
            amount_cents=amount,
            period=period,
            paid_at=paid,
            period_end=period_end_for(paid, period),
        )
        db.session.add(payment)
        db.session.commit()

        current_app.logger.info(
            "Lease payment %s recorded for shop %s: %s cents (%s) until %s",
            payment.id, shop.id, amount, period, to_utc_z(payment.period_end),
        )
        return payment

    return run_with_retry(_op)


def _get_payment(payment_id: int) -> LeasePayment:
    payment = db.session.query(LeasePayment).filter_by(id=payment_id).first()
    if not payment:
        raise PaymentNotFound(details={"payment_id": payment_id})
    return payment


def update_payment(
    payment_id: int,
    amount_cents: int | None = None,
    paid_at=None,
    period: str | None = None,
) -> LeasePayment:
    """Correct a ledger entry; period_end follows paid_at and period."""
    if amount_cents is not None:
        _validate_amount(amount_cents)
    if period is not None:
        _validate_period(period)

    def _op():
        payment = _get_payment(payment_id)

        if amount_cents is not None:
            payment.amount_cents = amount_cents
        if paid_at is not None:
            payment.paid_at = _paid_at(paid_at)
        if period is not None:
            payment.period = period
        if paid_at is not None or period is not None:
            payment.period_end = period_end_for(payment.paid_at, payment.period)

        db.session.commit()
        return payment

    return run_with_retry(_op)


def delete_payment(payment_id: int) -> None:
    def _op():
        payment = _get_payment(payment_id)
        db.session.delete(payment)
        db.session.commit()

    return run_with_retry(_op)


def _with_alert(payment: LeasePayment, now: datetime) -> dict:
    data = payment.to_dict()
    data["alert"] = payment_alert(payment, now)
    return data


def get_payment(payment_id: int, now: datetime | None = None) -> dict:
    payment = _get_payment(payment_id)
    data = _with_alert(payment, now or utcnow())
    data["shop"] = {"id": payment.shop.id, "name": payment.shop.name, "box_id": payment.shop.box_id}
    return data


def list_shop_payments(shop_id: int, now: datetime | None = None) -> list[dict]:
    """Payment history of one shop, latest period first, each with its alert."""
    if now is None:
        now = utcnow()

    payments = (
        db.session.query(LeasePayment)
        .filter_by(shop_id=shop_id)
        .order_by(LeasePayment.period_end.desc(), LeasePayment.id.desc())
        .all()
    )
    return [_with_alert(p, now) for p in payments]


def _range_bound(value, name: str) -> datetime | None:
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", details={name: value})


def list_payments(
    shop_id: int | None = None,
    period: str | None = None,
    start=None,
    end=None,
    status: str | None = None,
    sort: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Ledger view across shops.

    start/end bound paid_at inclusively; an end at midnight covers that
    whole day. status filters on the computed alert, so it is applied
    before pagination rather than in SQL.
    """
    if now is None:
        now = utcnow()
    if period is not None:
        _validate_period(period)
    if status is not None and status not in PAYMENT_ALERT_STATUSES:
        raise ValidationError(f"Invalid alert status: {status}", details={"valid_statuses": PAYMENT_ALERT_STATUSES})
    sort = sort or DEFAULT_PAYMENT_SORT
    if sort not in PAYMENT_SORTS:
        raise ValidationError(f"Invalid sort: {sort}", details={"valid_sorts": list(PAYMENT_SORTS)})

    query = db.session.query(LeasePayment)
    if shop_id is not None:
        query = query.filter(LeasePayment.shop_id == shop_id)
    if period is not None:
        query = query.filter(LeasePayment.period == period)

    start_dt = _range_bound(start, "start")
    end_dt = _range_bound(end, "end")
    if start_dt is not None:
        query = query.filter(LeasePayment.paid_at >= start_dt)
    if end_dt is not None:
        if end_dt.time() == time(0):
            query = query.filter(LeasePayment.paid_at < end_dt + timedelta(days=1))
        else:
            query = query.filter(LeasePayment.paid_at <= end_dt)

    rows = [_with_alert(p, now) for p in query.order_by(*PAYMENT_SORTS[sort]).all()]
    if status is not None:
        rows = [r for r in rows if r["alert"]["status"] == status]

    per_page = min(per_page or 20, 100)
    page = max(page or 1, 1)
    total = len(rows)
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    return {
        "items": rows[(page - 1) * per_page:page * per_page],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# ALERTS (computed on read)
# =============================================================================

def alert_for(period_end: datetime, now: datetime | None = None, paid_at: datetime | None = None) -> dict:
    """
    Classify a payment by its period end.

    Pure function of (period_end, now): days_until_end is the ceiling of
    the remaining time in days.
    """
    if now is None:
        now = utcnow()

    days = ceil_days(now, period_end)
    window = _alert_window()

    if days < 0:
        status = ALERT_EXPIRED
        message = f"Lease expired {abs(days)} day(s) ago"
    elif days <= window:
        status = ALERT_EXPIRING_SOON
        message = f"Lease expires in {days} day(s)"
    else:
        status = ALERT_CURRENT
        message = f"Lease current, {days} day(s) remaining"

    return {
        "status": status,
        "message": message,
        "days_until_end": days,
        "days_remaining": max(days, 0),
        "days_overdue": abs(days) if days < 0 else 0,
        "days_elapsed": ceil_days(paid_at, now) if paid_at is not None else None,
        "period_end": to_utc_z(period_end),
    }


def payment_alert(payment: LeasePayment, now: datetime | None = None) -> dict:
    return alert_for(payment.period_end, now, paid_at=payment.paid_at)


def _latest_payment(shop_id: int) -> LeasePayment | None:
    return (
        db.session.query(LeasePayment)
        .filter_by(shop_id=shop_id)
        .order_by(LeasePayment.period_end.desc(), LeasePayment.id.desc())
        .first()
    )


def _recommended_actions(status: str) -> list[str]:
    if status == ALERT_NO_PAYMENT:
        return ["Record a first lease payment"]
    if status == ALERT_EXPIRED:
        return ["Contact the shop about the overdue rent", "Record the payment once received"]
    if status == ALERT_EXPIRING_SOON:
        return ["Send a renewal reminder"]
    return []


def shop_situation(shop_id: int, now: datetime | None = None) -> dict:
    """Alert of the payment with the latest period_end, or NO_PAYMENT."""
    if now is None:
        now = utcnow()

    shop = db.session.query(Shop).filter_by(id=shop_id).first()
    if not shop:
        raise ShopNotFound(details={"shop_id": shop_id})

    latest = _latest_payment(shop.id)
    if latest is None:
        alert = {
            "status": ALERT_NO_PAYMENT,
            "message": "No lease payment recorded",
            "days_until_end": None,
            "days_remaining": 0,
            "days_overdue": 0,
            "days_elapsed": None,
            "period_end": None,
        }
    else:
        alert = payment_alert(latest, now)

    return {
        "shop": {"id": shop.id, "name": shop.name, "box_id": shop.box_id},
        "last_payment": latest.to_dict() if latest else None,
        "alert": alert,
        "recommended_actions": _recommended_actions(alert["status"]),
    }


def lease_dashboard(now: datetime | None = None) -> dict:
    """
    Alert summary across all shops that have paid at least once.

    critical lists EXPIRED first (most overdue first), then EXPIRING_SOON
    (soonest first).
    """
    if now is None:
        now = utcnow()

    totals = (
        db.session.query(
            LeasePayment.shop_id,
            func.count(LeasePayment.id),
            func.coalesce(func.sum(LeasePayment.amount_cents), 0),
        )
        .group_by(LeasePayment.shop_id)
        .all()
    )

    counts = {ALERT_CURRENT: 0, ALERT_EXPIRING_SOON: 0, ALERT_EXPIRED: 0}
    shops = []
    critical = []
    total_amount = 0

    for shop_id, payment_count, paid_total in totals:
        latest = _latest_payment(shop_id)
        alert = payment_alert(latest, now)
        counts[alert["status"]] += 1
        total_amount += int(paid_total)

        entry = {
            "shop_id": shop_id,
            "shop_name": latest.shop.name if latest.shop else None,
            "last_payment_at": to_utc_z(latest.paid_at),
            "next_due_at": to_utc_z(latest.period_end),
            "total_paid_cents": int(paid_total),
            "payment_count": int(payment_count),
            "alert": alert,
        }
        shops.append(entry)
        if alert["status"] != ALERT_CURRENT:
            critical.append(entry)

    critical.sort(key=lambda e: (0 if e["alert"]["status"] == ALERT_EXPIRED else 1, e["alert"]["days_until_end"]))
    shops.sort(key=lambda e: e["shop_id"])

    return {
        "counts": counts,
        "total_amount_cents": total_amount,
        "critical": critical,
        "shops": shops,
    }
