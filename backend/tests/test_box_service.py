# Overview: Pytest coverage for the box registry and occupancy transactions.

"""
Box Lifecycle Tests

Every transition must keep three records consistent:
Box.is_free, Shop.box_id and the open BoxHistory row.
"""

import logging
from datetime import datetime, timedelta

import pytest

from mallhub.errors import (
    BoxAlreadyFree,
    BoxFree,
    BoxHasHistory,
    BoxNotFound,
    BoxOccupied,
    DataIntegrityError,
    DuplicateBoxNumber,
    NewShopAlreadyHasBox,
    NewShopNotFound,
    NoOpenHistory,
    NoShopFound,
    ShopAlreadyHasBox,
    ShopNotFound,
    ValidationError,
)
from mallhub.models import Box, BoxHistory
from mallhub.services import box_service


T0 = datetime(2024, 1, 1, 9, 0, 0)


def history_rows(session, box_id):
    return session.query(BoxHistory).filter_by(box_id=box_id).order_by(BoxHistory.id).all()


class TestBoxRegistry:
    def test_create_starts_free(self, db_session):
        box = box_service.create_box("C-07", 18.0, 60000)
        assert box.is_free is True
        assert box.numero == "C-07"

    def test_duplicate_numero(self, db_session, box_1):
        with pytest.raises(DuplicateBoxNumber):
            box_service.create_box("A-01", 10.0, 1000)

    def test_invalid_surface(self, db_session):
        with pytest.raises(ValidationError):
            box_service.create_box("C-08", -3, 1000)

    def test_update_keeps_numero_unique(self, db_session, box_1, box_2):
        with pytest.raises(DuplicateBoxNumber):
            box_service.update_box(box_2.id, numero="A-01")

        box = box_service.update_box(box_2.id, numero="A-03", rent_cents=80000)
        assert box.numero == "A-03"
        assert box.rent_cents == 80000

    def test_delete_fresh_box(self, db_session, box_1):
        box_service.delete_box(box_1.id)
        assert db_session.query(Box).count() == 0

    def test_delete_occupied_box(self, db_session, box_1, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        with pytest.raises(BoxOccupied):
            box_service.delete_box(box_1.id)

    def test_delete_box_with_history(self, db_session, box_1, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        box_service.release_box(box_1.id, T0 + timedelta(days=30))
        with pytest.raises(BoxHasHistory):
            box_service.delete_box(box_1.id)


class TestAssign:
    def test_assign_links_all_three_records(self, db_session, box_1, shop_a):
        history = box_service.assign_box(box_1.id, shop_a.id, T0)

        db_session.refresh(box_1)
        db_session.refresh(shop_a)
        assert box_1.is_free is False
        assert shop_a.box_id == box_1.id
        assert history.shop_id == shop_a.id
        assert history.start_at == T0
        assert history.end_at is None

    def test_unknown_box_or_shop(self, db_session, box_1, shop_a):
        with pytest.raises(BoxNotFound):
            box_service.assign_box(99999, shop_a.id)
        with pytest.raises(ShopNotFound):
            box_service.assign_box(box_1.id, 99999)

    def test_box_already_occupied(self, db_session, box_1, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        with pytest.raises(BoxOccupied):
            box_service.assign_box(box_1.id, shop_b.id)

    def test_shop_already_has_box(self, db_session, box_1, box_2, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        with pytest.raises(ShopAlreadyHasBox):
            box_service.assign_box(box_2.id, shop_a.id)

        db_session.refresh(box_2)
        assert box_2.is_free is True
        assert history_rows(db_session, box_2.id) == []


class TestRelease:
    def test_release_closes_history(self, db_session, box_1, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)

        result = box_service.release_box(box_1.id, T0 + timedelta(days=10, hours=1))

        assert result["duration_days"] == 11
        db_session.refresh(box_1)
        db_session.refresh(shop_a)
        assert box_1.is_free is True
        assert shop_a.box_id is None
        (row,) = history_rows(db_session, box_1.id)
        assert row.end_at == T0 + timedelta(days=10, hours=1)

    def test_release_free_box(self, db_session, box_1):
        with pytest.raises(BoxAlreadyFree):
            box_service.release_box(box_1.id)

    def test_assign_release_assign_leaves_two_closed_rows(self, db_session, box_1, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        box_service.release_box(box_1.id, T0 + timedelta(days=5))
        box_service.assign_box(box_1.id, shop_b.id, T0 + timedelta(days=6))
        box_service.release_box(box_1.id, T0 + timedelta(days=9))

        rows = history_rows(db_session, box_1.id)
        assert len(rows) == 2
        assert all(r.end_at is not None for r in rows)
        assert [r.shop_id for r in rows] == [shop_a.id, shop_b.id]
        db_session.refresh(box_1)
        assert box_1.is_free is True

    def test_occupied_box_without_shop_is_integrity_error(self, db_session, box_1):
        box_1.is_free = False
        db_session.commit()

        with pytest.raises(NoShopFound) as exc:
            box_service.release_box(box_1.id)
        assert isinstance(exc.value, DataIntegrityError)

    def test_missing_open_history_is_integrity_error(self, db_session, box_1, shop_a):
        box_1.is_free = False
        shop_a.box_id = box_1.id
        db_session.commit()

        with pytest.raises(NoOpenHistory):
            box_service.release_box(box_1.id)

        db_session.refresh(box_1)
        assert box_1.is_free is False


class TestTransfer:
    def test_transfer_swaps_occupant(self, db_session, box_1, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        at = T0 + timedelta(days=20)

        new_row = box_service.transfer_box(box_1.id, shop_b.id, at)

        old_row, open_row = history_rows(db_session, box_1.id)
        assert old_row.shop_id == shop_a.id
        assert old_row.end_at == at
        assert open_row.id == new_row.id
        assert open_row.shop_id == shop_b.id
        assert open_row.start_at == at
        assert open_row.end_at is None

        db_session.refresh(box_1)
        db_session.refresh(shop_a)
        db_session.refresh(shop_b)
        assert box_1.is_free is False
        assert shop_a.box_id is None
        assert shop_b.box_id == box_1.id

    def test_transfer_free_box(self, db_session, box_1, shop_a):
        with pytest.raises(BoxFree):
            box_service.transfer_box(box_1.id, shop_a.id)

    def test_transfer_to_unknown_shop(self, db_session, box_1, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        with pytest.raises(NewShopNotFound):
            box_service.transfer_box(box_1.id, 99999)

    def test_transfer_to_shop_with_box(self, db_session, box_1, box_2, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        box_service.assign_box(box_2.id, shop_b.id, T0)

        with pytest.raises(NewShopAlreadyHasBox):
            box_service.transfer_box(box_1.id, shop_b.id)

        db_session.refresh(shop_a)
        assert shop_a.box_id == box_1.id

    def test_transfer_without_open_history_warns_and_proceeds(self, db_session, box_1, shop_a, shop_b, caplog):
        box_1.is_free = False
        shop_a.box_id = box_1.id
        db_session.commit()

        with caplog.at_level(logging.WARNING):
            box_service.transfer_box(box_1.id, shop_b.id, T0)

        assert "no open history" in caplog.text
        (row,) = history_rows(db_session, box_1.id)
        assert row.shop_id == shop_b.id
        db_session.refresh(shop_b)
        assert shop_b.box_id == box_1.id


class TestBoxReadModels:
    def test_list_boxes_with_stats(self, db_session, box_1, box_2, shop_a):
        box_service.assign_box(box_1.id, shop_a.id, T0)

        result = box_service.list_boxes()
        assert result["stats"]["total"] == 2
        assert result["stats"]["free"] == 1
        assert result["stats"]["occupied"] == 1
        assert result["stats"]["average_rent_cents"] == 57500

        occupied = next(b for b in result["items"] if b["id"] == box_1.id)
        assert occupied["occupied_by"] == {"id": shop_a.id, "name": shop_a.name}

        free_only = box_service.list_boxes(free=True)
        assert [b["id"] for b in free_only["items"]] == [box_2.id]

    def test_detail_and_history(self, db_session, box_1, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        box_service.transfer_box(box_1.id, shop_b.id, T0 + timedelta(days=3))
        now = T0 + timedelta(days=4, hours=12)

        detail = box_service.get_box_detail(box_1.id, now=now)
        assert detail["stats"]["occupation_count"] == 2
        assert detail["stats"]["total_closed_days"] == 3
        assert detail["box"]["current_occupation"]["shop"]["id"] == shop_b.id
        assert detail["box"]["current_occupation"]["duration_days"] == 2
        assert detail["history"][0]["shop_id"] == shop_b.id

        history = box_service.box_history(box_1.id, now=now)
        assert [h["duration_days"] for h in history["items"]] == [2, 3]

    def test_shops_without_box(self, db_session, box_1, shop_a, shop_b):
        box_service.assign_box(box_1.id, shop_a.id, T0)
        assert [s["id"] for s in box_service.shops_without_box()] == [shop_b.id]
