# Overview: Pytest coverage for the lease payment ledger and alert engine.

from datetime import datetime, timedelta

import pytest

from mallhub.errors import PaymentNotFound, ShopHasNoBox, ShopNotFound, ValidationError
from mallhub.services import box_service, lease_service
from mallhub.services.lease_service import (
    ALERT_CURRENT,
    ALERT_EXPIRED,
    ALERT_EXPIRING_SOON,
    ALERT_NO_PAYMENT,
)


NOW = datetime(2024, 3, 15, 12, 0, 0)


class TestAlertFor:
    def test_ten_days_left_is_current(self, app):
        alert = lease_service.alert_for(NOW + timedelta(days=10), NOW)
        assert alert["status"] == ALERT_CURRENT
        assert alert["days_remaining"] == 10

    def test_three_days_left_is_expiring_soon(self, app):
        alert = lease_service.alert_for(NOW + timedelta(days=3), NOW)
        assert alert["status"] == ALERT_EXPIRING_SOON

    def test_five_days_past_is_expired(self, app):
        alert = lease_service.alert_for(NOW - timedelta(days=5), NOW)
        assert alert["status"] == ALERT_EXPIRED
        assert alert["days_overdue"] == 5
        assert alert["days_remaining"] == 0
        assert "5 day" in alert["message"]

    @pytest.mark.parametrize("offset,expected", [
        (timedelta(0), ALERT_EXPIRING_SOON),
        (timedelta(days=7), ALERT_EXPIRING_SOON),
        (timedelta(days=7, seconds=1), ALERT_CURRENT),
        (timedelta(seconds=-1), ALERT_EXPIRING_SOON),
        (timedelta(days=-1), ALERT_EXPIRED),
    ])
    def test_window_boundaries(self, app, offset, expected):
        assert lease_service.alert_for(NOW + offset, NOW)["status"] == expected

    def test_days_elapsed_from_payment(self, app):
        alert = lease_service.alert_for(NOW + timedelta(days=20), NOW, paid_at=NOW - timedelta(days=10))
        assert alert["days_elapsed"] == 10


class TestRecordPayment:
    @pytest.mark.parametrize("period,expected_end", [
        ("monthly", datetime(2024, 2, 29, 10, 0)),
        ("quarterly", datetime(2024, 4, 30, 10, 0)),
        ("yearly", datetime(2025, 1, 31, 10, 0)),
    ])
    def test_period_end(self, db_session, shop_a, period, expected_end):
        payment = lease_service.record_payment(
            shop_a.id, period, amount_cents=45000, paid_at=datetime(2024, 1, 31, 10, 0)
        )
        assert payment.period_end == expected_end

    def test_amount_defaults_to_box_rent(self, db_session, shop_a, box_1):
        box_service.assign_box(box_1.id, shop_a.id)
        payment = lease_service.record_payment(shop_a.id, "monthly")
        assert payment.amount_cents == 45000

    def test_no_amount_and_no_box(self, db_session, shop_a):
        with pytest.raises(ShopHasNoBox):
            lease_service.record_payment(shop_a.id, "monthly")

    def test_unknown_period(self, db_session, shop_a):
        with pytest.raises(ValidationError):
            lease_service.record_payment(shop_a.id, "weekly", amount_cents=100)

    def test_unknown_shop(self, db_session):
        with pytest.raises(ShopNotFound):
            lease_service.record_payment(99999, "monthly", amount_cents=100)

    def test_update_recomputes_period_end(self, db_session, shop_a):
        payment = lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=NOW)
        updated = lease_service.update_payment(payment.id, period="quarterly")
        assert updated.period_end == datetime(2024, 6, 15, 12, 0)

    def test_delete(self, db_session, shop_a):
        payment = lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=NOW)
        lease_service.delete_payment(payment.id)
        with pytest.raises(PaymentNotFound):
            lease_service.delete_payment(payment.id)


class TestSituation:
    def test_no_payment(self, db_session, shop_a):
        situation = lease_service.shop_situation(shop_a.id, NOW)
        assert situation["alert"]["status"] == ALERT_NO_PAYMENT
        assert situation["last_payment"] is None
        assert situation["recommended_actions"]

    def test_latest_period_end_wins(self, db_session, shop_a):
        lease_service.record_payment(shop_a.id, "yearly", amount_cents=500000, paid_at=NOW - timedelta(days=30))
        lease_service.record_payment(shop_a.id, "monthly", amount_cents=45000, paid_at=NOW - timedelta(days=2))

        situation = lease_service.shop_situation(shop_a.id, NOW)
        assert situation["last_payment"]["period"] == "yearly"
        assert situation["alert"]["status"] == ALERT_CURRENT

    def test_dashboard_orders_critical_alerts(self, db_session, shop_a, shop_b, shop_c):
        # shop_a expiring in 3 days, shop_b expired, shop_c current
        lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=datetime(2024, 2, 18, 12, 0))
        lease_service.record_payment(shop_b.id, "monthly", amount_cents=200, paid_at=datetime(2024, 1, 10, 12, 0))
        lease_service.record_payment(shop_c.id, "yearly", amount_cents=300, paid_at=datetime(2024, 3, 1, 12, 0))

        dashboard = lease_service.lease_dashboard(NOW)

        assert dashboard["counts"] == {ALERT_CURRENT: 1, ALERT_EXPIRING_SOON: 1, ALERT_EXPIRED: 1}
        assert dashboard["total_amount_cents"] == 600
        assert [e["shop_id"] for e in dashboard["critical"]] == [shop_b.id, shop_a.id]
        assert len(dashboard["shops"]) == 3


class TestPaymentListing:
    @pytest.fixture
    def ledger(self, db_session, shop_a, shop_b, shop_c):
        # expiring in 3 days, expired, current
        return [
            lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=datetime(2024, 2, 18, 12, 0)),
            lease_service.record_payment(shop_b.id, "monthly", amount_cents=300, paid_at=datetime(2024, 1, 10, 12, 0)),
            lease_service.record_payment(shop_c.id, "yearly", amount_cents=200, paid_at=datetime(2024, 3, 1, 12, 0)),
        ]

    def test_every_row_carries_its_alert(self, ledger):
        result = lease_service.list_payments(now=NOW)
        statuses = {row["id"]: row["alert"]["status"] for row in result["items"]}
        assert statuses == {
            ledger[0].id: ALERT_EXPIRING_SOON,
            ledger[1].id: ALERT_EXPIRED,
            ledger[2].id: ALERT_CURRENT,
        }
        assert result["pagination"]["total"] == 3

    def test_status_filter(self, ledger):
        result = lease_service.list_payments(status=ALERT_EXPIRED, now=NOW)
        assert [row["id"] for row in result["items"]] == [ledger[1].id]
        assert result["pagination"]["total"] == 1

    def test_unknown_status(self, ledger):
        with pytest.raises(ValidationError):
            lease_service.list_payments(status="LATE", now=NOW)

    def test_default_sort_is_period_end_ascending(self, ledger):
        result = lease_service.list_payments(now=NOW)
        assert [row["id"] for row in result["items"]] == [ledger[1].id, ledger[0].id, ledger[2].id]

    def test_amount_desc_sort(self, ledger):
        result = lease_service.list_payments(sort="amount_desc", now=NOW)
        assert [row["amount_cents"] for row in result["items"]] == [300, 200, 100]

    def test_unknown_sort(self, ledger):
        with pytest.raises(ValidationError):
            lease_service.list_payments(sort="random", now=NOW)

    def test_shop_period_and_paid_range_filters(self, ledger, shop_a):
        assert [r["id"] for r in lease_service.list_payments(shop_id=shop_a.id, now=NOW)["items"]] == [ledger[0].id]
        assert [r["id"] for r in lease_service.list_payments(period="yearly", now=NOW)["items"]] == [ledger[2].id]

        # a midnight end bound covers the whole day
        ranged = lease_service.list_payments(start=datetime(2024, 2, 1), end=datetime(2024, 3, 1), now=NOW)
        assert sorted(r["id"] for r in ranged["items"]) == [ledger[0].id, ledger[2].id]

    def test_pagination(self, ledger):
        first = lease_service.list_payments(page=1, per_page=2, now=NOW)
        second = lease_service.list_payments(page=2, per_page=2, now=NOW)
        assert len(first["items"]) == 2
        assert first["pagination"]["has_next"] is True
        assert [r["id"] for r in second["items"]] == [ledger[2].id]
        assert second["pagination"]["has_prev"] is True

    def test_shop_history_carries_alerts(self, db_session, shop_a):
        lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=datetime(2024, 1, 10, 12, 0))
        lease_service.record_payment(shop_a.id, "monthly", amount_cents=100, paid_at=datetime(2024, 3, 10, 12, 0))

        history = lease_service.list_shop_payments(shop_a.id, NOW)
        assert [row["alert"]["status"] for row in history] == [ALERT_CURRENT, ALERT_EXPIRED]

    def test_get_payment(self, ledger, shop_b):
        payment = lease_service.get_payment(ledger[1].id, NOW)
        assert payment["alert"]["status"] == ALERT_EXPIRED
        assert payment["shop"]["id"] == shop_b.id

        with pytest.raises(PaymentNotFound):
            lease_service.get_payment(99999, NOW)
