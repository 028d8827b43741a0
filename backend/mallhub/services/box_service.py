# backend/mallhub/services/box_service.py
"""
Box registry and occupancy transactions.

WHY: Physical boxes are rented to shops. Occupancy lives in three places
that must move together: Box.is_free, Shop.box_id and the open BoxHistory
row. Every transition below validates first and then writes all three in a
single transaction.

LIFECYCLE:
1. create: box starts free, no history
2. assign: free box -> shop without a box (opens history)
3. transfer: occupied box -> another shop without a box (closes + opens history)
4. release: occupied box -> free (closes history)
5. delete: only never-assigned boxes (no history rows)
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Box, BoxHistory, Shop
from ..errors import (
    BoxNotFound,
    ShopNotFound,
    NewShopNotFound,
    BoxOccupied,
    BoxHasHistory,
    BoxAlreadyFree,
    BoxFree,
    ShopAlreadyHasBox,
    NewShopAlreadyHasBox,
    NoShopFound,
    NoOpenHistory,
    DuplicateBoxNumber,
    ValidationError,
)
from mallhub.time_utils import utcnow, normalize_datetime, ceil_days, to_utc_z
from .concurrency import begin_write, lock_for_update, run_with_retry


BOX_SORTS = {
    "numero_asc": Box.numero.asc(),
    "numero_desc": Box.numero.desc(),
    "surface_asc": Box.surface.asc(),
    "surface_desc": Box.surface.desc(),
    "rent_asc": Box.rent_cents.asc(),
    "rent_desc": Box.rent_cents.desc(),
}


# =============================================================================
# HELPERS
# =============================================================================

def _get_box(box_id: int, *, lock: bool = False) -> Box:
    query = db.session.query(Box).filter_by(id=box_id)
    if lock:
        query = lock_for_update(query)
    box = query.first()
    if not box:
        raise BoxNotFound(details={"box_id": box_id})
    return box


def _get_shop(shop_id: int, *, lock: bool = False, error=ShopNotFound) -> Shop:
    query = db.session.query(Shop).filter_by(id=shop_id)
    if lock:
        query = lock_for_update(query)
    shop = query.first()
    if not shop:
        raise error(details={"shop_id": shop_id})
    return shop


def _occupant(box_id: int) -> Shop | None:
    return lock_for_update(db.session.query(Shop).filter_by(box_id=box_id)).first()


def _open_history(box_id: int, shop_id: int) -> BoxHistory | None:
    return (
        db.session.query(BoxHistory)
        .filter_by(box_id=box_id, shop_id=shop_id, end_at=None)
        .order_by(BoxHistory.start_at.desc(), BoxHistory.id.desc())
        .first()
    )


def _event_time(value) -> datetime:
    try:
        dt = normalize_datetime(value)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 datetime", details={"date": value})
    return dt or utcnow()


def _validate_box_fields(surface=None, rent_cents=None) -> None:
    if surface is not None:
        if isinstance(surface, bool) or not isinstance(surface, (int, float)) or surface <= 0:
            raise ValidationError("surface must be a positive number", details={"surface": surface})
    if rent_cents is not None:
        if isinstance(rent_cents, bool) or not isinstance(rent_cents, int) or rent_cents < 0:
            raise ValidationError("rent_cents must be a non-negative integer", details={"rent_cents": rent_cents})


def _numero_taken(numero: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Box.id).filter(Box.numero == numero)
    if exclude_id is not None:
        q = q.filter(Box.id != exclude_id)
    return q.first() is not None


# =============================================================================
# REGISTRY
# =============================================================================

def create_box(numero: str, surface: float, rent_cents: int) -> Box:
    """Register a new box; it starts free."""
    numero = str(numero or "").strip()
    if not numero:
        raise ValidationError("numero required")
    if surface is None or rent_cents is None:
        raise ValidationError("numero, surface and rent_cents are required")
    _validate_box_fields(surface, rent_cents)

    def _op():
        if _numero_taken(numero):
            raise DuplicateBoxNumber(details={"numero": numero})

        box = Box(numero=numero, surface=float(surface), rent_cents=rent_cents, is_free=True)
        db.session.add(box)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateBoxNumber(details={"numero": numero})
        return box

    return run_with_retry(_op)


def update_box(box_id: int, numero: str | None = None, surface: float | None = None, rent_cents: int | None = None) -> Box:
    _validate_box_fields(surface, rent_cents)

    def _op():
        box = _get_box(box_id, lock=True)

        if numero is not None:
            new_numero = str(numero).strip()
            if not new_numero:
                raise ValidationError("numero cannot be empty")
            if new_numero != box.numero and _numero_taken(new_numero, exclude_id=box.id):
                raise DuplicateBoxNumber(details={"numero": new_numero})
            box.numero = new_numero
        if surface is not None:
            box.surface = float(surface)
        if rent_cents is not None:
            box.rent_cents = rent_cents

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateBoxNumber(details={"numero": numero})
        return box

    return run_with_retry(_op)


def delete_box(box_id: int) -> None:
    """Delete a box that is free and has never been assigned."""
    def _op():
        box = _get_box(box_id, lock=True)
        if not box.is_free:
            raise BoxOccupied("Cannot delete an occupied box", details={"box_id": box_id})

        has_history = db.session.query(BoxHistory.id).filter_by(box_id=box_id).first() is not None
        if has_history:
            raise BoxHasHistory(details={"box_id": box_id})

        db.session.delete(box)
        db.session.commit()

    return run_with_retry(_op)


# =============================================================================
# OCCUPANCY TRANSACTIONS
# =============================================================================

def assign_box(box_id: int, shop_id: int, start_date=None) -> BoxHistory:
    """
    Assign a free box to a shop that has no box.

    Opens BoxHistory{start=start_date or now}, marks the box occupied and
    links the shop, atomically.
    """
    def _op():
        start = _event_time(start_date)
        begin_write()

        box = _get_box(box_id, lock=True)
        if not box.is_free:
            raise BoxOccupied(details={"box_id": box_id})

        shop = _get_shop(shop_id, lock=True)
        if shop.box_id is not None:
            raise ShopAlreadyHasBox(details={"shop_id": shop_id, "box_id": shop.box_id})

        history = BoxHistory(box_id=box.id, shop_id=shop.id, start_at=start, end_at=None)
        db.session.add(history)
        box.is_free = False
        shop.box_id = box.id

        db.session.commit()

        current_app.logger.info("Box %s (%s) assigned to shop %s", box.id, box.numero, shop.id)
        return history

    return run_with_retry(_op)


def release_box(box_id: int, end_date=None) -> dict:
    """
    Free an occupied box: close the open history row, mark the box free and
    unlink the shop, atomically.

    Raises NoShopFound / NoOpenHistory when the stored links disagree; those
    are integrity violations, not user errors.
    """
    def _op():
        end = _event_time(end_date)
        begin_write()

        box = _get_box(box_id, lock=True)
        if box.is_free:
            raise BoxAlreadyFree(details={"box_id": box_id})

        shop = _occupant(box.id)
        if shop is None:
            raise NoShopFound(details={"box_id": box_id})

        history = _open_history(box.id, shop.id)
        if history is None:
            raise NoOpenHistory(details={"box_id": box_id, "shop_id": shop.id})

        history.end_at = end
        box.is_free = True
        shop.box_id = None

        db.session.commit()

        current_app.logger.info("Box %s (%s) released by shop %s", box.id, box.numero, shop.id)
        return {
            "box": box.to_dict(),
            "shop": {"id": shop.id, "name": shop.name},
            "history_id": history.id,
            "start_at": to_utc_z(history.start_at),
            "end_at": to_utc_z(history.end_at),
            "duration_days": ceil_days(history.start_at, history.end_at),
        }

    return run_with_retry(_op)


def transfer_box(box_id: int, new_shop_id: int, date=None) -> BoxHistory:
    """
    Move an occupied box to another shop.

    Closes the current occupant's open history row if there is one (a
    missing row is logged, not fatal: the new row is authoritative from
    here on), opens a row for the new shop and swaps the shop links. The box
    stays occupied throughout.
    """
    def _op():
        when = _event_time(date)
        begin_write()

        box = _get_box(box_id, lock=True)
        if box.is_free:
            raise BoxFree(details={"box_id": box_id})

        old_shop = _occupant(box.id)
        if old_shop is None:
            raise NoShopFound(details={"box_id": box_id})

        new_shop = _get_shop(new_shop_id, lock=True, error=NewShopNotFound)
        if new_shop.box_id is not None:
            raise NewShopAlreadyHasBox(details={"shop_id": new_shop_id, "box_id": new_shop.box_id})

        old_history = _open_history(box.id, old_shop.id)
        if old_history is not None:
            old_history.end_at = when
        else:
            current_app.logger.warning(
                "Transfer of box %s: no open history for shop %s, nothing to close",
                box.id, old_shop.id,
            )

        new_history = BoxHistory(box_id=box.id, shop_id=new_shop.id, start_at=when, end_at=None)
        db.session.add(new_history)

        old_shop.box_id = None
        # Flush the unlink first so no intermediate state shows two shops on one box
        db.session.flush()
        new_shop.box_id = box.id

        db.session.commit()

        current_app.logger.info(
            "Box %s (%s) transferred from shop %s to shop %s",
            box.id, box.numero, old_shop.id, new_shop.id,
        )
        return new_history

    return run_with_retry(_op)


# =============================================================================
# READ MODELS
# =============================================================================

def _box_stats() -> dict:
    row = db.session.query(
        func.count(Box.id),
        func.coalesce(func.sum(case((Box.is_free.is_(True), 1), else_=0)), 0),
        func.avg(Box.rent_cents),
        func.avg(Box.surface),
    ).one()
    total, free, avg_rent, avg_surface = row
    total = int(total or 0)
    free = int(free or 0)
    return {
        "total": total,
        "free": free,
        "occupied": total - free,
        "average_rent_cents": int(round(avg_rent)) if avg_rent is not None else 0,
        "average_surface": round(float(avg_surface), 2) if avg_surface is not None else 0,
    }


def list_boxes(
    free: bool | None = None,
    search: str | None = None,
    sort: str = "numero_asc",
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Boxes with their current occupant, plus registry-wide statistics."""
    query = db.session.query(Box)
    if free is not None:
        query = query.filter(Box.is_free.is_(bool(free)))
    if search:
        query = query.filter(Box.numero.ilike(f"%{search}%"))

    query = query.order_by(BOX_SORTS.get(sort, Box.numero.asc()), Box.id.asc())

    per_page = min(per_page or 20, 100)
    page = max(page or 1, 1)
    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    boxes = query.offset((page - 1) * per_page).limit(per_page).all()

    items = []
    for box in boxes:
        data = box.to_dict()
        if not box.is_free:
            shop = db.session.query(Shop).filter_by(box_id=box.id).first()
            history = (
                db.session.query(BoxHistory)
                .filter_by(box_id=box.id, end_at=None)
                .order_by(BoxHistory.start_at.desc())
                .first()
            )
            data["occupied_by"] = {"id": shop.id, "name": shop.name} if shop else None
            data["occupied_since"] = to_utc_z(history.start_at) if history else None
        items.append(data)

    return {
        "items": items,
        "count": len(items),
        "stats": _box_stats(),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_box_detail(box_id: int, now: datetime | None = None) -> dict:
    """Box with current occupation, full history (newest first) and occupation stats."""
    if now is None:
        now = utcnow()
    box = _get_box(box_id)

    history = (
        db.session.query(BoxHistory)
        .filter_by(box_id=box.id)
        .order_by(BoxHistory.start_at.desc(), BoxHistory.id.desc())
        .all()
    )

    current = None
    if not box.is_free:
        shop = db.session.query(Shop).filter_by(box_id=box.id).first()
        open_row = next((h for h in history if h.end_at is None), None)
        current = {
            "shop": shop.to_dict() if shop else None,
            "since": to_utc_z(open_row.start_at) if open_row else None,
            "duration_days": ceil_days(open_row.start_at, now) if open_row else 0,
        }

    closed_days = sum(ceil_days(h.start_at, h.end_at) for h in history if h.end_at is not None)

    data = box.to_dict()
    data["current_occupation"] = current
    return {
        "box": data,
        "history": [h.to_dict() for h in history],
        "stats": {
            "occupation_count": len(history),
            "total_closed_days": closed_days,
            "first_occupation": to_utc_z(history[-1].start_at) if history else None,
            "last_occupation": to_utc_z(history[0].start_at) if history else None,
        },
    }


def box_history(box_id: int, page: int | None = None, per_page: int | None = None, now: datetime | None = None) -> dict:
    """Paged occupation history; open rows measure their duration up to now."""
    if now is None:
        now = utcnow()
    _get_box(box_id)

    query = (
        db.session.query(BoxHistory)
        .filter_by(box_id=box_id)
        .order_by(BoxHistory.start_at.desc(), BoxHistory.id.desc())
    )

    per_page = min(per_page or 20, 100)
    page = max(page or 1, 1)
    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    items = []
    for h in rows:
        data = h.to_dict()
        data["duration_days"] = ceil_days(h.start_at, h.end_at or now)
        items.append(data)

    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": (total + per_page - 1) // per_page if total > 0 else 1,
        },
    }


def shops_without_box() -> list[dict]:
    shops = (
        db.session.query(Shop)
        .filter(Shop.box_id.is_(None), Shop.is_active.is_(True))
        .order_by(Shop.name.asc())
        .all()
    )
    return [s.to_dict() for s in shops]
