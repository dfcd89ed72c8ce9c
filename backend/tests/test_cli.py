"""
CLI command tests (flask test runner).
"""

import json

from stockrun.extensions import db
from stockrun.models import Order, User


def _write(tmp_path, name, rows):
    path = tmp_path / name
    path.write_text(json.dumps(rows), encoding="utf-8")
    return str(path)


def test_system_init_with_demo_users(app):
    result = app.test_cli_runner().invoke(args=["system", "init", "--with-demo-users"])
    assert result.exit_code == 0, result.output
    assert "PASS Created ADMIN" in result.output
    assert db.session.query(User).count() == 5

    again = app.test_cli_runner().invoke(args=["system", "init"])
    assert "SKIP admin@stockrun.local already exists" in again.output


def test_orders_import_skips_bad_rows(app, products, tmp_path):
    p1, _, _ = products
    path = _write(tmp_path, "orders.json", {"items": [
        {"id": "legacy-1", "status": "pending", "expectedDeliveryDate": "2024-05-01T00:00:00Z",
         "orderItems": json.dumps([{"productId": p1.id, "quantity": 3}])},
        {"id": "legacy-2", "orderItems": "[]"},
        "not a row",
    ]})

    result = app.test_cli_runner().invoke(args=["orders", "import", path])
    assert result.exit_code == 0, result.output
    assert "DONE Imported 1 of 3 row(s)" in result.output
    assert "SKIP row 2" in result.output
    order = db.session.query(Order).one()
    assert order.expected_delivery_date.isoformat() == "2024-05-01"


def test_deliveries_aggregate(app, products, make_order, d1):
    p1, p2, _ = products
    make_order([(p1, 5), (p2, 8)], delivery=d1)
    make_order([(p1, 7)], delivery=d1)

    result = app.test_cli_runner().invoke(args=["deliveries", "aggregate", "--date", d1.isoformat()])
    assert result.exit_code == 0, result.output
    assert f"product {p1.id:<6} x 12" in result.output
    assert f"product {p2.id:<6} x 8" in result.output


def test_deliveries_aggregate_rejects_bad_date(app):
    result = app.test_cli_runner().invoke(args=["deliveries", "aggregate", "--date", "someday"])
    assert result.exit_code != 0


def test_allocations_audit(app, tmp_path):
    path = _write(tmp_path, "allocations.json", [
        {"id": 1, "driverId": 7, "driverName": "Driver One", "date": "2024-05-01",
         "allocatedItems": '[{"productId": 1, "quantity": 12, "sold": 4}]'},
        {"id": 2, "driverId": 7, "date": "2024-05-09", "allocatedItems": [{"productId": 1, "quantity": 50}]},
        {"id": 3, "driverId": 8, "date": "2024-05-01", "status": "reconciled",
         "allocatedItems": [{"productId": 2, "quantity": 5}]},
    ])

    result = app.test_cli_runner().invoke(args=["allocations", "audit", path, "--as-of", "2024-05-02"])
    assert result.exit_code == 0, result.output
    assert "Driver 7 Driver One" in result.output
    assert "product 1      x 8" in result.output
    assert "(nothing to sell)" in result.output


def test_location_audit(app, tmp_path):
    path = _write(tmp_path, "users.json", [
        {"id": 3, "name": "Rep One", "role": "sales", "locationSharing": True,
         "currentLocation": {"latitude": 9.39, "longitude": 80.41, "timestamp": "2024-05-01T12:00:00Z"}},
        {"id": 4, "name": "Secretary", "role": "SECRETARY", "locationSharing": True},
        {"id": 5, "name": "Driver One", "role": "driver", "locationSharing": False},
    ])

    result = app.test_cli_runner().invoke(args=["location", "audit", path])
    assert result.exit_code == 0, result.output
    assert "Rep One" in result.output
    assert "Driver One" not in result.output
    assert "Secretary" not in result.output


def test_location_seed_and_clear(app, sales_rep, driver):
    runner = app.test_cli_runner()
    assert "for 2 field user(s)" in runner.invoke(args=["location", "seed-demo"]).output
    assert "for 2 field user(s)" in runner.invoke(args=["location", "clear"]).output


def test_perms_list_for_role(app):
    result = app.test_cli_runner().invoke(args=["perms", "list", "--role", "driver"])
    assert result.exit_code == 0, result.output
    assert "RECORD_DRIVER_SALE" in result.output
    assert "ALLOCATE_DELIVERIES" not in result.output
    assert "Total: 6 permissions" in result.output


def test_perms_check(app):
    runner = app.test_cli_runner()
    assert "PASS Role 'SECRETARY' HAS" in runner.invoke(args=["perms", "check", "SECRETARY", "allocate_deliveries"]).output
    assert "FAIL Role 'SALES_REP'" in runner.invoke(args=["perms", "check", "SALES_REP", "ALLOCATE_DELIVERIES"]).output
    assert runner.invoke(args=["perms", "check", "ADMIN", "FLY_PLANES"]).exit_code != 0


def test_cleanup_sessions_keeps_live_sessions(app, client, secretary):
    client.post("/api/auth/login", json={"email": secretary.email, "password": "Password123!"})
    result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-sessions"])
    assert result.exit_code == 0, result.output
    assert "Deleted 0 expired or revoked session(s)." in result.output
