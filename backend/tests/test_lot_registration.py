"""
Batch registration tests: a purchase line item is split into named lots,
atomically with the purchase that carries it.
"""
from datetime import datetime

import pytest

from tienda.models import Lot, Purchase, PurchaseLineItem
from tienda.services.lot_service import normalize_expiry, list_lots_for_product, set_lot_status
from tienda.services.purchase_service import create_purchase
from tienda.validation import ValidationError, ConflictError, NotFoundError


# =============================================================================
# Service
# =============================================================================

class TestRegisterLots:

    def test_bulk_line_split_into_two_lots(self, db_session, make_purchase):
        purchase = make_purchase(
            lots=[
                {"lot_number": "L1", "quantity": 60, "expires_at": "2027-01-01"},
                {"lot_number": "L2", "quantity": 40},
            ],
            bulk_quantity=10,
            units_per_bulk=10,
        )

        line = purchase.lines[0]
        assert [lot.lot_number for lot in line.lots] == ["L1", "L2"]
        assert sum(lot.initial_quantity for lot in line.lots) == 100
        assert line.lots[0].expires_at == datetime(2027, 1, 1)
        assert line.lots[1].expires_at is None
        assert all(lot.status == "ACTIVE" for lot in line.lots)
        assert all(lot.product_id == line.product_id for lot in line.lots)

    def test_individual_line_with_single_lot(self, db_session, make_purchase):
        purchase = make_purchase(lots=[{"lot_number": "U-1", "quantity": 50}], individual_quantity=50)
        assert purchase.lines[0].lots[0].initial_quantity == 50

    def test_quantity_mismatch_rolls_back_everything(self, db_session, make_purchase):
        with pytest.raises(ValidationError) as exc:
            make_purchase(
                lots=[
                    {"lot_number": "L1", "quantity": 60},
                    {"lot_number": "L2", "quantity": 30},
                ],
                bulk_quantity=10,
                units_per_bulk=10,
            )

        assert "90" in str(exc.value)
        assert "100" in str(exc.value)
        assert db_session.query(Purchase).count() == 0
        assert db_session.query(PurchaseLineItem).count() == 0
        assert db_session.query(Lot).count() == 0

    def test_second_line_failure_rolls_back_first_line(self, db_session, product, other_product):
        with pytest.raises(ValidationError):
            create_purchase(
                header={},
                lines=[
                    {"product_id": product.id, "individual_quantity": 5, "lots": [{"lot_number": "A", "quantity": 5}]},
                    {"product_id": other_product.id, "individual_quantity": 5, "lots": []},
                ],
            )

        assert db_session.query(Purchase).count() == 0
        assert db_session.query(Lot).count() == 0

    def test_lots_are_required(self, db_session, make_purchase):
        with pytest.raises(ValidationError, match="At least one lot"):
            make_purchase(lots=[], individual_quantity=10)

    def test_lot_number_reused_for_same_product(self, db_session, make_purchase):
        make_purchase(lots=[{"lot_number": "A1", "quantity": 10}], individual_quantity=10)

        with pytest.raises(ConflictError) as exc:
            make_purchase(lots=[{"lot_number": "A1", "quantity": 5}], individual_quantity=5)

        assert "A1" in str(exc.value)
        assert "Product X" in str(exc.value)
        assert db_session.query(Purchase).count() == 1

    def test_lot_number_repeated_within_line(self, db_session, make_purchase):
        with pytest.raises(ConflictError, match="B7"):
            make_purchase(
                lots=[{"lot_number": "B7", "quantity": 5}, {"lot_number": "B7", "quantity": 5}],
                individual_quantity=10,
            )

    def test_same_lot_number_allowed_on_other_product(self, db_session, make_purchase, other_product):
        make_purchase(lots=[{"lot_number": "A1", "quantity": 10}], individual_quantity=10)
        purchase = make_purchase(
            lots=[{"lot_number": "A1", "quantity": 3}],
            individual_quantity=3,
            product_id=other_product.id,
        )
        assert purchase.lines[0].lots[0].lot_number == "A1"

    @pytest.mark.parametrize("entry,message", [
        ({"quantity": 10}, "lot_number is required"),
        ({"lot_number": "  ", "quantity": 10}, "lot_number is required"),
        ({"lot_number": "L1"}, "quantity is required"),
        ({"lot_number": "L1", "quantity": 0}, "must be > 0"),
        ({"lot_number": "L1", "quantity": "ten"}, "must be an integer"),
        ({"lot_number": "L1", "quantity": "2.5"}, "no decimals"),
        ({"lot_number": "L1", "quantity": "1e1"}, "scientific notation"),
        ({"lot_number": "L" * 65, "quantity": 10}, "max length"),
    ])
    def test_invalid_lot_entries(self, db_session, make_purchase, entry, message):
        with pytest.raises(ValidationError, match=message):
            make_purchase(lots=[entry], individual_quantity=10)


class TestPurchaseLineValidation:

    def test_bulk_and_individual_are_exclusive(self, db_session, make_purchase):
        with pytest.raises(ValidationError, match="mutually exclusive"):
            make_purchase(
                lots=[{"lot_number": "L1", "quantity": 10}],
                bulk_quantity=1,
                units_per_bulk=10,
                individual_quantity=10,
            )

    def test_bulk_requires_units_per_bulk(self, db_session, make_purchase):
        with pytest.raises(ValidationError, match="units_per_bulk"):
            make_purchase(lots=[{"lot_number": "L1", "quantity": 10}], bulk_quantity=1)

    def test_quantity_required(self, db_session, make_purchase):
        with pytest.raises(ValidationError, match="purchased quantity is required"):
            make_purchase(lots=[{"lot_number": "L1", "quantity": 10}])

    def test_unknown_product(self, db_session, make_purchase):
        with pytest.raises(NotFoundError):
            make_purchase(lots=[{"lot_number": "L1", "quantity": 1}], individual_quantity=1, product_id=9999)


# =============================================================================
# Expiry dates
# =============================================================================

class TestExpiryNormalization:

    @pytest.mark.parametrize("value,expected", [
        (None, None),
        ("", None),
        ("2027-03-15", datetime(2027, 3, 15)),
        ("2027-03-15T10:30:00Z", datetime(2027, 3, 15, 10, 30)),
        ("2027-03-15T10:30:00-04:00", datetime(2027, 3, 15, 14, 30)),
        (1805760000000, datetime(2027, 3, 23)),
    ])
    def test_accepted_values(self, value, expected):
        assert normalize_expiry(value) == expected

    @pytest.mark.parametrize("value", ["1970-01-01T00:00:00Z", 0, "not-a-date", ["2027-01-01"]])
    def test_lenient_mode_stores_no_expiry(self, value):
        assert normalize_expiry(value, strict=False) is None

    @pytest.mark.parametrize("value", ["1970-01-01T00:00:00Z", 0, "not-a-date"])
    def test_strict_mode_rejects(self, value):
        with pytest.raises(ValidationError, match="Invalid expiry date"):
            normalize_expiry(value, strict=True)

    def test_strict_mode_from_config(self, app, db_session, make_purchase):
        app.config["STRICT_EXPIRY_DATES"] = True

        with pytest.raises(ValidationError):
            make_purchase(lots=[{"lot_number": "L1", "quantity": 5, "expires_at": "31/12/2027"}], individual_quantity=5)
        assert db_session.query(Lot).count() == 0

    def test_lenient_mode_keeps_the_purchase(self, db_session, make_purchase):
        purchase = make_purchase(
            lots=[{"lot_number": "L1", "quantity": 5, "expires_at": "1970-01-01T00:00:00.000Z"}],
            individual_quantity=5,
        )
        assert purchase.lines[0].lots[0].expires_at is None


# =============================================================================
# Lot administration
# =============================================================================

class TestLotAdministration:

    def test_lots_listed_by_expiry(self, db_session, make_purchase, product):
        make_purchase(
            lots=[
                {"lot_number": "NONE", "quantity": 4},
                {"lot_number": "LATE", "quantity": 3, "expires_at": "2027-12-01"},
                {"lot_number": "EARLY", "quantity": 3, "expires_at": "2027-02-01"},
            ],
            individual_quantity=10,
        )

        lots = list_lots_for_product(product.id)
        assert [lot.lot_number for lot in lots] == ["EARLY", "LATE", "NONE"]

    def test_set_status(self, db_session, make_purchase):
        purchase = make_purchase(lots=[{"lot_number": "L1", "quantity": 5}], individual_quantity=5)
        lot = purchase.lines[0].lots[0]

        assert set_lot_status(lot.id, "INACTIVE").status == "INACTIVE"
        with pytest.raises(ValidationError):
            set_lot_status(lot.id, "DEPLETED")
        with pytest.raises(NotFoundError):
            set_lot_status(9999, "ACTIVE")


# =============================================================================
# HTTP
# =============================================================================

class TestPurchaseRoutes:

    def _payload(self, product_id, lots, **quantities):
        line = {"product_id": product_id, "lots": lots}
        line.update(quantities)
        return {"subtotal_cents": 10000, "discount_cents": 0, "total_cents": 10000, "lines": [line]}

    def test_create_purchase(self, client, auth_headers, product):
        response = client.post('/api/purchases', headers=auth_headers, json=self._payload(
            product.id,
            [{"lot_number": "L1", "quantity": 60, "expires_at": "2027-01-01"}, {"lot_number": "L2", "quantity": 40}],
            bulk_quantity=10,
            units_per_bulk=10,
        ))

        assert response.status_code == 201
        data = response.get_json()
        assert data["total_cents"] == 10000
        line = data["lines"][0]
        assert line["total_quantity"] == 100
        assert line["status"] == "PENDING"
        assert [lot["lot_number"] for lot in line["lots"]] == ["L1", "L2"]
        assert line["lots"][0]["expires_at"] == "2027-01-01T00:00:00Z"

    def test_mismatch_is_400(self, client, auth_headers, product, db_session):
        response = client.post('/api/purchases', headers=auth_headers, json=self._payload(
            product.id, [{"lot_number": "L1", "quantity": 3}], individual_quantity=5,
        ))
        assert response.status_code == 400
        assert db_session.query(Purchase).count() == 0

    def test_duplicate_lot_is_409(self, client, auth_headers, product):
        body = self._payload(product.id, [{"lot_number": "A1", "quantity": 5}], individual_quantity=5)
        assert client.post('/api/purchases', headers=auth_headers, json=body).status_code == 201

        response = client.post('/api/purchases', headers=auth_headers, json=body)
        assert response.status_code == 409
        assert "A1" in response.get_json()["error"]

    def test_missing_lines_is_400(self, client, auth_headers, product):
        response = client.post('/api/purchases', headers=auth_headers, json={"total_cents": 100})
        assert response.status_code == 400

    def test_unknown_product_is_404(self, client, auth_headers, product):
        response = client.post('/api/purchases', headers=auth_headers, json=self._payload(
            9999, [{"lot_number": "L1", "quantity": 1}], individual_quantity=1,
        ))
        assert response.status_code == 404

    def test_history_and_pending_list(self, client, auth_headers, product):
        client.post('/api/purchases', headers=auth_headers, json=self._payload(
            product.id, [{"lot_number": "L1", "quantity": 5}], individual_quantity=5,
        ))

        history = client.get('/api/purchases', headers=auth_headers)
        assert history.status_code == 200
        assert history.get_json()["count"] == 1

        pending = client.get('/api/purchases/line-items/pending', headers=auth_headers)
        assert pending.get_json()["count"] == 1

        bad_range = client.get('/api/purchases?start=yesterday', headers=auth_headers)
        assert bad_range.status_code == 400

    def test_lot_status_route(self, client, auth_headers, make_purchase):
        purchase = make_purchase(lots=[{"lot_number": "L1", "quantity": 5}], individual_quantity=5)
        lot_id = purchase.lines[0].lots[0].id

        response = client.patch(f'/api/lots/{lot_id}', headers=auth_headers, json={"status": "INACTIVE"})
        assert response.status_code == 200
        assert response.get_json()["status"] == "INACTIVE"

    def test_line_item_status_route(self, client, auth_headers, make_purchase):
        purchase = make_purchase(lots=[{"lot_number": "L1", "quantity": 5}], individual_quantity=5)
        line_id = purchase.lines[0].id

        response = client.patch(f'/api/purchases/line-items/{line_id}', headers=auth_headers, json={"status": "RECEIVED"})
        assert response.status_code == 200
        assert response.get_json()["status"] == "RECEIVED"

    def test_status_changes_require_admin(self, client, employee_headers, make_purchase):
        purchase = make_purchase(lots=[{"lot_number": "L1", "quantity": 5}], individual_quantity=5)
        line = purchase.lines[0]

        lot_response = client.patch(f'/api/lots/{line.lots[0].id}', headers=employee_headers, json={"status": "INACTIVE"})
        line_response = client.patch(
            f'/api/purchases/line-items/{line.id}', headers=employee_headers, json={"status": "RECEIVED"},
        )

        assert lot_response.status_code == 403
        assert line_response.status_code == 403
        assert line.lots[0].status == "ACTIVE"
