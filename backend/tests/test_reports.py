"""
Report tests: warehouse state with reorder and expiry alerts, the movement
report, lot detail and sales analytics.
"""
from datetime import timedelta

import pytest

from tienda.services import reporting_service
from tienda.services.products_service import apply_stock_operation, update_product
from tienda.services.sales_service import create_sale
from tienda.services.warehouse_service import create_movement
from tienda.time_utils import utcnow
from tienda.validation import ValidationError, NotFoundError


@pytest.fixture
def ledger(db_session, make_purchase):
    """
    Product X: 100 units bought as three lots, 30 moved out of the undated lot.

    SOON expires in 10 days, GONE expired 2 days ago, NODATE never expires.
    """
    now = utcnow()
    purchase = make_purchase(
        lots=[
            {"lot_number": "SOON", "quantity": 30, "expires_at": now + timedelta(days=10)},
            {"lot_number": "GONE", "quantity": 20, "expires_at": now - timedelta(days=2)},
            {"lot_number": "NODATE", "quantity": 50},
        ],
        individual_quantity=100,
    )
    line = purchase.lines[0]
    nodate = next(lot for lot in line.lots if lot.lot_number == "NODATE")
    create_movement(purchase_line_item_id=line.id, quantity=30, lot_id=nodate.id)
    return line


def product_row(report, name):
    return next(p for p in report["products"] if p["name"] == name)


# =============================================================================
# Warehouse state
# =============================================================================

class TestWarehouseState:

    def test_stock_and_alerts(self, db_session, ledger, other_product):
        report = reporting_service.warehouse_state_report()
        row = product_row(report, "Product X")

        assert row["stock"]["total_in"] == 100
        assert row["stock"]["total_out"] == 30
        assert row["stock"]["warehouse_stock"] == 70
        assert row["reorder_threshold"] == 10
        assert row["below_reorder_point"] is False
        assert row["alerts"]["near_expiry_lots"] == 1
        assert row["alerts"]["expired_lots"] == 1
        assert sorted(lot["lot_number"] for lot in row["alerts"]["expiring"]) == ["GONE", "SOON"]

        assert report["summary"]["total_products"] == 2
        assert report["summary"]["without_stock"] == 1
        assert report["summary"]["with_expiry_alerts"] == 1

    def test_undated_lot_never_alerts(self, db_session, ledger):
        for days in (0, 365, 3650):
            report = reporting_service.warehouse_state_report(now=utcnow() + timedelta(days=days))
            expiring = product_row(report, "Product X")["alerts"]["expiring"]
            assert "NODATE" not in [lot["lot_number"] for lot in expiring]

    def test_below_reorder_point(self, db_session, ledger, product):
        update_product(product.id, {"reorder_threshold": 80})

        row = product_row(reporting_service.warehouse_state_report(), "Product X")
        assert row["below_reorder_point"] is True
        assert row["alerts"]["shortfall"] == 10

    def test_counter_is_reported_separately(self, db_session, ledger, product):
        apply_stock_operation(product.id, "increment", 7)

        row = product_row(reporting_service.warehouse_state_report(), "Product X")
        assert row["stock"]["current_stock"] == 7
        assert row["stock"]["warehouse_stock"] == 70

    def test_no_purchases(self, db_session, product):
        row = product_row(reporting_service.warehouse_state_report(), "Product X")
        assert row["stock"]["warehouse_stock"] == 0
        assert row["alerts"]["expiring"] == []


# =============================================================================
# Movement report and history
# =============================================================================

class TestMovementReport:

    def test_default_range_includes_recent_purchases(self, db_session, ledger):
        report = reporting_service.warehouse_movement_report()

        assert len(report["line_items"]) == 1
        row = report["line_items"][0]
        assert row["product"] == "Product X"
        assert row["ingress"]["total"] == 100
        assert [m["lot_number"] for m in row["egress"]] == ["NODATE"]
        assert row["remaining"]["total"] == 70
        assert {lot["lot_number"] for lot in row["remaining"]["lots"]} == {"SOON", "GONE", "NODATE"}
        assert report["summary"]["total_ingress"] == 100
        assert report["summary"]["total_egress"] == 30
        assert report["summary"]["expired_lots"] == 1

    def test_range_without_purchases(self, db_session, ledger):
        report = reporting_service.warehouse_movement_report(start="2020-01-01", end="2020-12-31")
        assert report["line_items"] == []
        assert report["summary"]["total_ingress"] == 0

    @pytest.mark.parametrize("start,end", [
        ("2026-02-01", "2026-01-01"),
        ("last week", None),
    ])
    def test_invalid_range(self, db_session, start, end):
        with pytest.raises(ValidationError):
            reporting_service.warehouse_movement_report(start=start, end=end)

    def test_history(self, db_session, ledger):
        history = reporting_service.warehouse_history()
        assert history["count"] == 1
        item = history["items"][0]
        assert (item["ingress"], item["egress"], item["remaining"]) == (100, 30, 70)


class TestProductLotDetail:

    def test_lots_sorted_by_expiry(self, db_session, ledger, product):
        detail = reporting_service.product_lot_detail(product.id)

        assert [lot["lot_number"] for lot in detail["lots"]] == ["GONE", "SOON", "NODATE"]
        nodate = detail["lots"][-1]
        assert nodate["remaining_quantity"] == 20
        assert nodate["expiry_status"] == "normal"
        assert nodate["days_until_expiry"] is None

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            reporting_service.product_lot_detail(9999)


# =============================================================================
# Sales analytics
# =============================================================================

@pytest.fixture
def sales(db_session, product, other_product, anonymous_customer, admin_user, employee_user):
    apply_stock_operation(product.id, "increment", 10)
    apply_stock_operation(other_product.id, "increment", 10)
    create_sale(sale={}, lines=[{"product_id": product.id, "quantity": 3}], user_id=admin_user.id)
    create_sale(sale={}, lines=[{"product_id": other_product.id, "quantity": 2}], user_id=employee_user.id)


class TestSalesReports:

    def test_sales_by_product(self, db_session, sales):
        report = reporting_service.sales_by_product()

        assert report["total_revenue_cents"] == 6100
        assert report["total_quantity"] == 5
        first, second = report["items"]
        assert first["name"] == "Product X"
        assert first["quantity_sold"] == 3
        assert first["average_price_cents"] == 1500
        assert first["share_percent"] == 73.77
        assert second["share_percent"] == 26.23
        assert len(first["monthly"]) == 1
        assert first["monthly"][0]["quantity"] == 3

    def test_sales_by_employee(self, db_session, sales, admin_user):
        report = reporting_service.sales_by_employee()

        assert [item["name"] for item in report["items"]] == ["Ana Tester", "Carlos Tester"]
        assert report["items"][0]["user_id"] == admin_user.id
        assert report["items"][0]["revenue_cents"] == 4500
        assert report["items"][0]["sales_count"] == 1

    def test_empty_range(self, db_session, sales):
        report = reporting_service.sales_by_product(start="2020-01-01", end="2020-01-31")
        assert report["items"] == []
        assert report["total_revenue_cents"] == 0


# =============================================================================
# HTTP
# =============================================================================

class TestReportRoutes:

    @pytest.mark.parametrize("url", [
        '/api/reports/warehouse-state',
        '/api/reports/warehouse-movements',
        '/api/reports/warehouse-history',
        '/api/reports/sales-by-product',
        '/api/reports/sales-by-employee',
    ])
    def test_reports_respond(self, client, auth_headers, ledger, url):
        response = client.get(url, headers=auth_headers)
        assert response.status_code == 200

    def test_bad_range_is_400(self, client, auth_headers):
        response = client.get('/api/reports/warehouse-movements?start=soon', headers=auth_headers)
        assert response.status_code == 400

    def test_lot_detail_route(self, client, auth_headers, ledger, product):
        response = client.get(f'/api/reports/products/{product.id}/lots', headers=auth_headers)
        assert response.status_code == 200
        assert len(response.get_json()["lots"]) == 3

        assert client.get('/api/reports/products/9999/lots', headers=auth_headers).status_code == 404
