# Overview: Pytest coverage for the inventory ledger.

import pytest

from mallhub.errors import InsufficientStock, ProductUnavailable, ProductNotFound, ValidationError
from mallhub.services import inventory_service
from mallhub.services.inventory_service import (
    STOCK_STATUS_RUPTURE,
    STOCK_STATUS_FAIBLE,
    STOCK_STATUS_NORMAL,
)


class TestReserve:
    def test_reserve_returns_product_without_writing(self, db_session, product_a):
        product = inventory_service.reserve(product_a.id, 4)
        assert product.id == product_a.id
        assert product.stock == 10

    def test_reserve_exact_stock_passes(self, db_session, product_a):
        inventory_service.reserve(product_a.id, 10)

    def test_reserve_too_much_raises_with_details(self, db_session, product_a):
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve(product_a.id, 11)
        assert exc.value.details == {"product_id": product_a.id, "requested": 11, "available": 10}

    def test_reserve_inactive_product(self, db_session, make_product, shop_a):
        product = make_product(shop_a, is_active=False)
        with pytest.raises(ProductUnavailable):
            inventory_service.reserve(product.id, 1)

    def test_reserve_missing_product(self, db_session):
        with pytest.raises(ProductUnavailable):
            inventory_service.reserve(99999, 1)

    def test_reserve_rejects_zero_quantity(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.reserve(product_a.id, 0)


class TestAdjustStock:
    def test_set(self, db_session, product_a):
        product = inventory_service.adjust_stock(product_a.id, 3, "SET")
        assert product.stock == 3

    def test_add(self, db_session, product_a):
        product = inventory_service.adjust_stock(product_a.id, 5, "ADD")
        assert product.stock == 15

    def test_subtract_clamps_at_zero(self, db_session, product_a):
        product = inventory_service.adjust_stock(product_a.id, 25, "SUBTRACT")
        assert product.stock == 0

    def test_unknown_operation(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_a.id, 1, "MULTIPLY")

    def test_negative_quantity(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_a.id, -1, "ADD")

    def test_foreign_shop_cannot_adjust(self, db_session, product_a, shop_b):
        with pytest.raises(ProductNotFound):
            inventory_service.adjust_stock(product_a.id, 1, "ADD", shop_id=shop_b.id)


class TestStockSituation:
    @pytest.mark.parametrize("stock,expected", [
        (0, STOCK_STATUS_RUPTURE),
        (1, STOCK_STATUS_FAIBLE),
        (5, STOCK_STATUS_FAIBLE),
        (6, STOCK_STATUS_NORMAL),
    ])
    def test_classification(self, db_session, make_product, shop_a, stock, expected):
        product = make_product(shop_a, stock=stock)
        situation = inventory_service.stock_situation(product.id)
        assert situation["status"] == expected
        assert situation["threshold"] == 5
        assert situation["low_stock"] is (stock <= 5)

    def test_decrement_never_goes_negative(self, db_session, product_a):
        with pytest.raises(InsufficientStock):
            inventory_service.decrement(product_a, 11)
        assert product_a.stock == 10

    def test_increment_returns_stock(self, db_session, product_a):
        inventory_service.increment(product_a, 4)
        assert product_a.stock == 14

        with pytest.raises(ValidationError):
            inventory_service.increment(product_a, -1)
        assert product_a.stock == 14
