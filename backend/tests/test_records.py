"""
Row parsing tests: legacy column aliases, JSON-encoded lists and defaults.
"""

from datetime import date, datetime

import pytest

from stockrun.records import (
    AllocationItemRecord,
    normalize_role,
    parse_allocation_row,
    parse_location,
    parse_order_row,
    parse_user_location_row,
)


class TestOrderRows:
    def test_snake_case_row(self):
        record = parse_order_row({
            "id": 1,
            "status": "pending",
            "order_date": "2024-05-01T10:00:00Z",
            "expected_delivery_date": "2024-05-03",
            "items": [{"product_id": 1, "quantity": 5}],
            "customer_name": "  Corner Shop ",
        })
        assert record.is_pending
        assert record.order_date == date(2024, 5, 1)
        assert record.expected_delivery_date == date(2024, 5, 3)
        assert [(i.product_id, i.quantity) for i in record.items] == [(1, 5)]
        assert record.customer_name == "Corner Shop"

    def test_lowercase_aliases_and_json_items(self):
        record = parse_order_row({
            "id": "o-9",
            "status": "Shipped",
            "date": "2024-05-01 08:30:00+00",
            "expecteddeliverydate": "2024-05-02T00:00:00",
            "orderitems": '[{"productid": "3", "quantity": "7"}, {"quantity": 2}]',
        })
        assert record.status == "SHIPPED"
        assert record.expected_delivery_date == date(2024, 5, 2)
        assert [(i.product_id, i.quantity) for i in record.items] == [(3, 7)]

    def test_malformed_values_default(self):
        record = parse_order_row({"id": 2, "status": "lost", "orderItems": "not json"})
        assert record.is_pending
        assert record.order_date is None
        assert record.expected_delivery_date is None
        assert record.items == ()


class TestAllocationRows:
    def test_camel_case_row(self):
        record = parse_allocation_row({
            "id": 4,
            "driverId": "7",
            "driverName": "Driver One",
            "date": "2024-05-01",
            "status": "allocated",
            "allocatedItems": [{"productId": 1, "quantity": 12, "sold": 4}],
            "salesTotal": "10.50",
        })
        assert record.driver_id == 7
        assert record.allocation_date == date(2024, 5, 1)
        assert record.is_active
        assert record.items == (AllocationItemRecord(product_id=1, quantity=12, sold=4),)
        assert record.returned_items is None
        assert record.sales_total_cents == 1050

    def test_sold_clamped_to_quantity(self):
        record = parse_allocation_row({"id": 1, "items": '[{"product_id": 2, "quantity": 3, "sold": 9}]'})
        assert record.items[0].sold == 3
        assert record.items[0].remaining == 0

    def test_reconciled_with_returns(self):
        record = parse_allocation_row({
            "id": 1,
            "status": "RECONCILED",
            "returned_items": [{"product_id": 2, "quantity": 1}],
        })
        assert not record.is_active
        assert [(r.product_id, r.quantity) for r in record.returned_items] == [(2, 1)]


class TestLocations:
    def test_parse_mapping(self):
        fix = parse_location({"lat": "9.39", "lng": 80.41, "timestamp": "2024-05-01T12:00:00Z", "accuracy": 8})
        assert (fix.latitude, fix.longitude, fix.accuracy_m) == (9.39, 80.41, 8.0)
        assert fix.timestamp == datetime(2024, 5, 1, 12, 0)

    def test_parse_json_string(self):
        fix = parse_location('{"latitude": 1, "longitude": 2, "timestamp": "2024-05-01T12:00:00+02:00"}')
        assert fix.timestamp == datetime(2024, 5, 1, 10, 0)

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "garbage",
            [],
            {"latitude": 1},
            {"latitude": 91, "longitude": 0, "timestamp": "2024-05-01T12:00:00Z"},
            {"latitude": 0, "longitude": 181, "timestamp": "2024-05-01T12:00:00Z"},
            {"latitude": 0, "longitude": 0},
            {"latitude": 0, "longitude": 0, "timestamp": "yesterday"},
            {"latitude": True, "longitude": 0, "timestamp": "2024-05-01T12:00:00Z"},
        ],
    )
    def test_rejects_unusable_fixes(self, value):
        assert parse_location(value) is None

    def test_user_location_row(self):
        state = parse_user_location_row({
            "id": "5",
            "name": "Rep One",
            "role": "sales",
            "locationSharing": 1,
            "currentLocation": '{"latitude": 9.39, "longitude": 80.41, "timestamp": "2024-05-01T12:00:00Z"}',
            "lastLogin": "2024-05-01T08:00:00Z",
        })
        assert state.user_id == 5
        assert state.role == "SALES_REP"
        assert state.location_sharing is True
        assert state.location.latitude == 9.39
        assert state.last_login_at == datetime(2024, 5, 1, 8, 0)

    def test_user_location_row_without_role(self):
        assert parse_user_location_row({"id": 5, "role": "intern"}) is None

    @pytest.mark.parametrize(
        "value,expected",
        [("driver", "DRIVER"), ("Sales Rep", "SALES_REP"), ("sales", "SALES_REP"), ("", None), (None, None)],
    )
    def test_normalize_role(self, value, expected):
        assert normalize_role(value) == expected
