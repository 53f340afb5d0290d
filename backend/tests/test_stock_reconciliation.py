"""
Stock reconciliation tests.

These functions are pure: rows are stand-in objects carrying the model
attribute names, and every call passes an explicit `now`.
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from tienda.services.stock_reconciliation import (
    EXPIRY_EXPIRED,
    EXPIRY_NEAR,
    EXPIRY_NORMAL,
    classify_expiry,
    days_until_expiry,
    reconcile_line_item,
    reconcile_product,
    remaining_for_line,
    remaining_for_lot,
    summarize_line_items,
    summarize_products,
    total_purchased,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)


def make_lot(lot_id, number, quantity, expires_at=None, status="ACTIVE"):
    return SimpleNamespace(
        id=lot_id,
        lot_number=number,
        initial_quantity=quantity,
        expires_at=expires_at,
        status=status,
    )


def make_movement(quantity, lot_id=None, movement_type="INTAKE"):
    return SimpleNamespace(total_quantity=quantity, lot_id=lot_id, movement_type=movement_type)


def make_line(line_id=1, product_id=1, bulk=0, per_bulk=0, individual=0, lots=(), movements=()):
    return SimpleNamespace(
        id=line_id,
        product_id=product_id,
        bulk_quantity=bulk,
        units_per_bulk=per_bulk,
        individual_quantity=individual,
        lots=list(lots),
        movements=list(movements),
    )


def make_product(product_id=1, name="Product X", current_stock=0, reorder_threshold=0):
    return SimpleNamespace(
        id=product_id,
        name=name,
        current_stock=current_stock,
        reorder_threshold=reorder_threshold,
    )


# =============================================================================
# Quantities
# =============================================================================

class TestQuantities:

    def test_bulk_total_is_packs_times_units(self):
        assert total_purchased(make_line(bulk=10, per_bulk=10)) == 100

    def test_individual_total(self):
        assert total_purchased(make_line(individual=50)) == 50

    def test_line_remaining_after_movements(self):
        """10 packs of 10, two lots, 85 moved out of L1 and L2 -> 15 left."""
        l1 = make_lot(1, "L1", 60)
        l2 = make_lot(2, "L2", 40)
        movements = [make_movement(60, lot_id=1), make_movement(25, lot_id=2)]
        line = make_line(bulk=10, per_bulk=10, lots=[l1, l2], movements=movements)

        assert remaining_for_line(line) == 15
        assert remaining_for_lot(l1, movements) == 0
        assert remaining_for_lot(l2, movements) == 15

    def test_movements_of_every_type_consume_the_line(self):
        movements = [make_movement(30, movement_type="INTAKE"), make_movement(5, movement_type="EGRESS")]
        line = make_line(individual=50, movements=movements)
        assert remaining_for_line(line) == 15

    def test_remaining_packages_and_units(self):
        line = make_line(bulk=10, per_bulk=12, lots=[make_lot(1, "L1", 120)], movements=[make_movement(25, lot_id=1)])
        stock = reconcile_line_item(line, NOW)

        assert stock.remaining == 95
        assert stock.remaining_packages == 7
        assert stock.remaining_units == 11
        assert [lot.remaining for lot in stock.active_lots] == [95]

    def test_individual_line_counts_packages_of_one(self):
        line = make_line(individual=7, lots=[make_lot(1, "L1", 7)])
        stock = reconcile_line_item(line, NOW)
        assert stock.remaining_packages == 7
        assert stock.remaining_units == 0


# =============================================================================
# Expiry classification
# =============================================================================

class TestExpiryClassification:

    @pytest.mark.parametrize("expires_at,expected", [
        (NOW + timedelta(days=30), EXPIRY_NEAR),
        (NOW + timedelta(days=31), EXPIRY_NORMAL),
        (NOW + timedelta(days=30, seconds=1), EXPIRY_NORMAL),
        (NOW + timedelta(seconds=1), EXPIRY_NEAR),
        (NOW, EXPIRY_EXPIRED),
        (NOW - timedelta(days=1), EXPIRY_EXPIRED),
        (None, EXPIRY_NORMAL),
    ])
    def test_buckets(self, expires_at, expected):
        assert classify_expiry(expires_at, NOW, 30) == expected

    def test_partial_day_rounds_up(self):
        assert days_until_expiry(NOW + timedelta(hours=1), NOW) == 1
        assert days_until_expiry(NOW + timedelta(days=2, hours=1), NOW) == 3

    def test_no_expiry_has_no_day_count(self):
        assert days_until_expiry(None, NOW) is None

    @pytest.mark.parametrize("now", [
        datetime(1999, 1, 1),
        NOW,
        datetime(2100, 12, 31, 23, 59, 59),
    ])
    def test_lot_without_expiry_never_alerts(self, now):
        line = make_line(individual=200, lots=[make_lot(1, "FOREVER", 200)])
        stock = reconcile_product(make_product(), [line], now)

        assert stock.lots[0].remaining == 200
        assert stock.lots[0].expiry_status == EXPIRY_NORMAL
        assert stock.expiring_lots == ()
        assert stock.count_lots(EXPIRY_NEAR) == 0
        assert stock.count_lots(EXPIRY_EXPIRED) == 0

    def test_warning_window_is_configurable(self):
        assert classify_expiry(NOW + timedelta(days=10), NOW, 7) == EXPIRY_NORMAL
        assert classify_expiry(NOW + timedelta(days=7), NOW, 7) == EXPIRY_NEAR


# =============================================================================
# Product reconciliation
# =============================================================================

class TestReconcileProduct:

    def test_product_without_purchases(self):
        stock = reconcile_product(make_product(reorder_threshold=0), [], NOW)

        assert stock.total_in == 0
        assert stock.total_out == 0
        assert stock.warehouse_stock == 0
        assert stock.lots == ()
        assert stock.below_reorder_point is False
        assert stock.expiring_lots == ()

    def test_reorder_alert_compares_warehouse_stock(self):
        """100 in, 85 out, threshold 20 -> below reorder point by 5."""
        line = make_line(
            bulk=10,
            per_bulk=10,
            lots=[make_lot(1, "L1", 60), make_lot(2, "L2", 40)],
            movements=[make_movement(60, lot_id=1), make_movement(25, lot_id=2)],
        )
        stock = reconcile_product(make_product(current_stock=85, reorder_threshold=20), [line], NOW)

        assert stock.total_in == 100
        assert stock.total_out == 85
        assert stock.warehouse_stock == 15
        assert stock.below_reorder_point is True
        assert stock.shortfall == 5

    def test_at_threshold_is_not_below(self):
        line = make_line(individual=20, lots=[make_lot(1, "L1", 20)])
        stock = reconcile_product(make_product(reorder_threshold=20), [line], NOW)
        assert stock.below_reorder_point is False
        assert stock.shortfall == 0

    def test_expiry_alerts_skip_exhausted_lots(self):
        expired_empty = make_lot(1, "OLD", 10, expires_at=NOW - timedelta(days=3))
        near = make_lot(2, "SOON", 10, expires_at=NOW + timedelta(days=5))
        line = make_line(
            individual=20,
            lots=[expired_empty, near],
            movements=[make_movement(10, lot_id=1)],
        )
        stock = reconcile_product(make_product(), [line], NOW)

        assert [lot.lot_number for lot in stock.expiring_lots] == ["SOON"]
        assert stock.count_lots(EXPIRY_NEAR) == 1
        assert stock.count_lots(EXPIRY_EXPIRED) == 0

    def test_lots_span_line_items(self):
        first = make_line(line_id=1, individual=10, lots=[make_lot(1, "A", 10)])
        second = make_line(line_id=2, individual=5, lots=[make_lot(2, "B", 5)])
        stock = reconcile_product(make_product(), [first, second], NOW)

        assert stock.total_in == 15
        assert [lot.lot_number for lot in stock.lots] == ["A", "B"]

    def test_same_inputs_same_result(self):
        line = make_line(
            bulk=2,
            per_bulk=6,
            lots=[make_lot(1, "L1", 12, expires_at=NOW + timedelta(days=12))],
            movements=[make_movement(4, lot_id=1)],
        )
        product = make_product(current_stock=4, reorder_threshold=10)

        assert reconcile_product(product, [line], NOW) == reconcile_product(product, [line], NOW)
        assert reconcile_product(product, [line], NOW).to_dict() == reconcile_product(product, [line], NOW).to_dict()


# =============================================================================
# Summaries
# =============================================================================

class TestSummaries:

    def test_product_summary(self):
        low = reconcile_product(
            make_product(1, "Low", reorder_threshold=50),
            [make_line(individual=10, lots=[make_lot(1, "A", 10, expires_at=NOW + timedelta(days=3))])],
            NOW,
        )
        empty = reconcile_product(make_product(2, "Empty"), [], NOW)

        summary = summarize_products([low, empty])

        assert summary == {
            "total_products": 2,
            "below_reorder_point": 1,
            "with_expiry_alerts": 1,
            "without_stock": 1,
            "near_expiry_lots": 1,
            "expired_lots": 0,
        }

    def test_line_item_summary(self):
        moved = reconcile_line_item(
            make_line(line_id=1, individual=10, lots=[make_lot(1, "A", 10)], movements=[make_movement(10, lot_id=1)]),
            NOW,
        )
        untouched = reconcile_line_item(
            make_line(line_id=2, product_id=2, individual=4, lots=[make_lot(2, "B", 4, expires_at=NOW)]),
            NOW,
        )

        summary = summarize_line_items([moved, untouched])

        assert summary["total_products"] == 2
        assert summary["total_ingress"] == 14
        assert summary["total_egress"] == 10
        assert summary["line_items_with_movements"] == 1
        assert summary["line_items_without_stock"] == 1
        assert summary["expired_lots"] == 1

    def test_empty_summaries(self):
        assert summarize_products([])["total_products"] == 0
        assert summarize_line_items([])["total_ingress"] == 0
