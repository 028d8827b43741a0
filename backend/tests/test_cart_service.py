# Overview: Pytest coverage for the cart aggregate and its priced view.

from datetime import datetime, timedelta

import pytest

from mallhub.errors import CartItemNotFound, InsufficientStock, ProductUnavailable, ValidationError
from mallhub.services import cart_service, promotions_service


NOW = datetime(2024, 3, 15, 12, 0, 0)
BUYER = 501


class TestAddItem:
    def test_creates_cart_on_first_use(self, db_session, product_a):
        cart = cart_service.add_item(BUYER, product_a.id, 2)
        assert cart.buyer_id == BUYER
        assert [(i.product_id, i.quantity) for i in cart.items] == [(product_a.id, 2)]

    def test_same_product_accumulates(self, db_session, product_a):
        cart_service.add_item(BUYER, product_a.id, 2)
        cart = cart_service.add_item(BUYER, product_a.id, 3)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5

    def test_accumulated_quantity_checked_against_stock(self, db_session, product_a):
        cart_service.add_item(BUYER, product_a.id, 8)
        with pytest.raises(InsufficientStock) as exc:
            cart_service.add_item(BUYER, product_a.id, 3)
        assert exc.value.details["requested"] == 11
        assert exc.value.details["available"] == 10
        assert exc.value.details["in_cart"] == 8

        view = cart_service.get_cart(BUYER, NOW)
        assert view["items"][0]["quantity"] == 8

    def test_inactive_product_rejected(self, db_session, make_product, shop_a):
        product = make_product(shop_a, is_active=False)
        with pytest.raises(ProductUnavailable):
            cart_service.add_item(BUYER, product.id, 1)

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_quantity_must_be_positive(self, db_session, product_a, quantity):
        with pytest.raises(ValidationError):
            cart_service.add_item(BUYER, product_a.id, quantity)


class TestCartMutations:
    def test_remove_item(self, db_session, product_a, product_b):
        cart_service.add_item(BUYER, product_a.id, 1)
        cart_service.add_item(BUYER, product_b.id, 1)

        cart = cart_service.remove_item(BUYER, product_a.id)
        assert [i.product_id for i in cart.items] == [product_b.id]

    def test_remove_absent_item_is_noop(self, db_session, product_a, product_b):
        cart_service.add_item(BUYER, product_a.id, 1)
        cart = cart_service.remove_item(BUYER, product_b.id)
        assert len(cart.items) == 1

    def test_remove_without_cart(self, db_session, product_a):
        with pytest.raises(CartItemNotFound):
            cart_service.remove_item(BUYER, product_a.id)

    def test_set_quantity(self, db_session, product_a):
        cart_service.add_item(BUYER, product_a.id, 1)
        cart = cart_service.set_quantity(BUYER, product_a.id, 7)
        assert cart.items[0].quantity == 7

    def test_set_quantity_over_stock(self, db_session, product_a):
        cart_service.add_item(BUYER, product_a.id, 1)
        with pytest.raises(InsufficientStock):
            cart_service.set_quantity(BUYER, product_a.id, 11)

    def test_set_quantity_for_missing_line(self, db_session, product_a, product_b):
        cart_service.add_item(BUYER, product_a.id, 1)
        with pytest.raises(CartItemNotFound):
            cart_service.set_quantity(BUYER, product_b.id, 1)

    def test_clear_keeps_cart(self, db_session, product_a):
        created = cart_service.add_item(BUYER, product_a.id, 1)
        cart = cart_service.clear_cart(BUYER)
        assert cart.id == created.id
        assert cart.items == []


class TestMaterialize:
    def test_empty_view_when_no_cart(self, db_session):
        view = cart_service.get_cart(BUYER, NOW)
        assert view["items"] == []
        assert view["total_cents"] == 0
        assert view["distinct_products"] == 0

    def test_priced_view_with_promotion(self, db_session, shop_a, product_a, product_b):
        promotions_service.create_promotion(shop_a.id, [product_a.id], 20, NOW - timedelta(days=1), NOW + timedelta(days=1))
        cart_service.add_item(BUYER, product_a.id, 3)
        cart_service.add_item(BUYER, product_b.id, 2)

        view = cart_service.get_cart(BUYER, NOW)

        line_a, line_b = view["items"]
        assert line_a["unit_price_cents"] == 800
        assert line_a["line_total_cents"] == 2400
        assert line_a["original_line_total_cents"] == 3000
        assert line_a["savings_cents"] == 600
        assert line_a["on_promotion"] is True
        assert line_a["discount_percent"] == 20

        assert line_b["unit_price_cents"] == 2500
        assert line_b["on_promotion"] is False
        assert line_b["savings_cents"] == 0

        assert view["total_cents"] == 2400 + 5000
        assert view["original_total_cents"] == 3000 + 5000
        assert view["savings_cents"] == 600
        assert view["distinct_products"] == 2
        assert view["unit_count"] == 5

    def test_view_follows_promotion_window(self, db_session, shop_a, product_a):
        promotions_service.create_promotion(shop_a.id, [product_a.id], 50, NOW, NOW + timedelta(days=1))
        cart = cart_service.add_item(BUYER, product_a.id, 1)

        assert cart_service.materialize(cart.id, NOW)["total_cents"] == 500
        assert cart_service.materialize(cart.id, NOW + timedelta(days=2))["total_cents"] == 1000
