"""
Catalog tests: products, lookup tables, the health endpoint and the
bootstrap CLI.
"""

import pytest
from sqlalchemy import text

from tienda.models import Customer, UnitOfMeasure, User


# =============================================================================
# Products
# =============================================================================

class TestProducts:

    def test_create_product(self, client, auth_headers, unit, category):
        resp = client.post('/api/products', headers=auth_headers, json={
            "name": "Jugo de naranja",
            "sale_price_cents": 900,
            "reorder_threshold": 12,
            "unit_of_measure_id": unit.id,
            "category_id": category.id,
        })

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["current_stock"] == 0
        assert data["reorder_threshold"] == 12
        assert data["unit_of_measure"] == "Unidad"
        assert data["category"] == "Bebidas"

    def test_duplicate_name_ignores_case(self, client, auth_headers, product):
        resp = client.post('/api/products', headers=auth_headers, json={"name": "PRODUCT x"})
        assert resp.status_code == 409

    @pytest.mark.parametrize("body,status", [
        ({}, 400),
        ({"name": "Neg", "sale_price_cents": -1}, 400),
        ({"name": "Dec", "sale_price_cents": 9.5}, 400),
        ({"name": "Thr", "reorder_threshold": -3}, 400),
        ({"name": "Stock", "current_stock": 10}, 400),
        ({"name": "Ref", "category_id": 9999}, 404),
    ])
    def test_invalid_product(self, client, auth_headers, unit, body, status):
        resp = client.post('/api/products', headers=auth_headers, json=body)
        assert resp.status_code == status

    def test_update_product(self, client, auth_headers, product, other_product):
        resp = client.put(f'/api/products/{product.id}', headers=auth_headers, json={"sale_price_cents": 1750})
        assert resp.status_code == 200
        assert resp.get_json()["sale_price_cents"] == 1750

        clash = client.put(f'/api/products/{product.id}', headers=auth_headers, json={"name": "Product Y"})
        assert clash.status_code == 409

    def test_name_check(self, client, auth_headers, product):
        taken = client.get('/api/products/check?name=product%20x', headers=auth_headers)
        assert taken.get_json()["exists"] is True

        own = client.get(f'/api/products/check?name=Product%20X&exclude_id={product.id}', headers=auth_headers)
        assert own.get_json()["exists"] is False

        assert client.get('/api/products/check', headers=auth_headers).status_code == 400

    def test_pagination(self, client, auth_headers, product, other_product):
        resp = client.get('/api/products?page=1&per_page=1', headers=auth_headers)
        data = resp.get_json()

        assert data["count"] == 1
        assert data["items"][0]["name"] == "Product X"
        assert data["pagination"]["total"] == 2
        assert data["pagination"]["has_next"] is True

    def test_search(self, client, auth_headers, product, other_product):
        data = client.get('/api/products?q=y', headers=auth_headers).get_json()
        assert [p["name"] for p in data["items"]] == ["Product Y"]

    def test_get_unknown(self, client, auth_headers):
        assert client.get('/api/products/9999', headers=auth_headers).status_code == 404

    def test_product_lots(self, client, auth_headers, make_purchase, product):
        make_purchase(lots=[{"lot_number": "L1", "quantity": 4}], individual_quantity=4)

        resp = client.get(f'/api/products/{product.id}/lots', headers=auth_headers)
        assert resp.get_json()["count"] == 1
        assert client.get('/api/products/9999/lots', headers=auth_headers).status_code == 404


# =============================================================================
# Lookup tables
# =============================================================================

class TestLookups:

    @pytest.mark.parametrize("kind,name", [
        ("categories", "Limpieza"),
        ("suppliers", "Mayorista Norte"),
        ("units", "Bolsa"),
    ])
    def test_create_and_list(self, client, auth_headers, kind, name):
        resp = client.post(f'/api/{kind}', headers=auth_headers, json={"name": name})
        assert resp.status_code == 201

        listing = client.get(f'/api/{kind}', headers=auth_headers).get_json()
        assert name in [row["name"] for row in listing["items"]]

    def test_duplicate_is_409(self, client, auth_headers, category):
        resp = client.post('/api/categories', headers=auth_headers, json={"name": "bebidas"})
        assert resp.status_code == 409

    def test_name_required(self, client, auth_headers):
        resp = client.post('/api/suppliers', headers=auth_headers, json={"phone": "555"})
        assert resp.status_code == 400


# =============================================================================
# Health
# =============================================================================

class TestHealth:

    def test_healthy(self, client, unit, anonymous_customer):
        resp = client.get('/api/health')
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_degraded_without_seed_data(self, client, db_session):
        resp = client.get('/api/health')
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "degraded"
        assert "anonymous customer" in data["checks"]["seed_data"]["warning"]


# =============================================================================
# CLI
# =============================================================================

class TestCommands:

    def test_system_init_is_idempotent(self, app, db_session):
        # Earlier tests advanced the AUTOINCREMENT counters; start from an empty database
        db_session.execute(text("DELETE FROM sqlite_sequence"))
        db_session.commit()
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init"])
        assert first.exit_code == 0, first.output
        assert "DONE" in first.output

        second = runner.invoke(args=["system", "init"])
        assert second.exit_code == 0
        assert "already exists" in second.output

        assert db_session.query(UnitOfMeasure).filter_by(name="Unidad").one().id == 2
        assert db_session.query(Customer).filter_by(name="Cliente anonimo").one().id == 2
        assert db_session.query(User).filter_by(email="admin@tienda.local").count() == 1

    def test_users_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        created = runner.invoke(args=[
            "users", "create",
            "--first-name", "Rosa",
            "--last-name", "Diaz",
            "--email", "rosa@tienda.test",
            "--password", "Secret123",
            "--role", "admin",
        ])
        assert created.exit_code == 0, created.output

        listed = runner.invoke(args=["users", "list"])
        assert "rosa@tienda.test" in listed.output

    def test_users_create_rejects_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--first-name", "Rosa",
            "--last-name", "Diaz",
            "--email", "rosa@tienda.test",
            "--password", "weak",
        ])
        assert result.exit_code == 1
        assert "FAIL" in result.output
