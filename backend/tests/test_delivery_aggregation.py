"""
Delivery aggregation tests.

Verifies:
- Only PENDING orders count; malformed lines are skipped
- Grouping falls back from expected delivery date to order date to 'unspecified'
- Results are independent of input order
- Store-backed dates carry the allocated marker
"""

import random
from datetime import date

import pytest

from stockrun.errors import ValidationError
from stockrun.records import OrderItemRecord, OrderRecord
from stockrun.services import allocation_service, delivery_service
from stockrun.services.delivery_service import (
    aggregate_across_dates,
    aggregate_by_date,
    delivery_date_key,
    pending_delivery_dates,
    per_date_snapshot,
)


D1 = date(2024, 5, 1)
D2 = date(2024, 5, 2)


def _order(order_id, items, *, delivery=None, placed=None, status="PENDING"):
    return OrderRecord(
        id=order_id,
        status=status,
        order_date=placed,
        expected_delivery_date=delivery,
        items=tuple(OrderItemRecord(product_id=p, quantity=q) for p, q in items),
    )


@pytest.fixture
def orders():
    return [
        _order(1, [(1, 5), (2, 3)], delivery=D1),
        _order(2, [(1, 7)], placed=D1),
        _order(3, [(2, 5)], delivery=D2),
        _order(4, [(1, 100)], delivery=D1, status="DELIVERED"),
        _order(5, [(3, 2)]),
    ]


class TestGrouping:
    def test_delivery_date_preferred_over_order_date(self):
        assert delivery_date_key(_order(1, [], delivery=D2, placed=D1)) == "2024-05-02"

    def test_order_date_fallback(self):
        assert delivery_date_key(_order(1, [], placed=D1)) == "2024-05-01"

    def test_unspecified_when_no_dates(self):
        assert delivery_date_key(_order(1, [])) == "unspecified"

    def test_aggregate_by_date_ignores_non_pending(self, orders):
        grouped = aggregate_by_date(orders)
        assert grouped["2024-05-01"] == {1: 12, 2: 3}
        assert grouped["2024-05-02"] == {2: 5}
        assert grouped["unspecified"] == {3: 2}

    def test_lines_without_product_are_skipped(self):
        grouped = aggregate_by_date([_order(1, [(None, 4), (1, 2)], delivery=D1)])
        assert grouped == {"2024-05-01": {1: 2}}

    def test_pending_dates_sorted_with_unspecified_last(self, orders):
        assert pending_delivery_dates(orders) == [
            {"date": "2024-05-01", "order_count": 2},
            {"date": "2024-05-02", "order_count": 1},
            {"date": "unspecified", "order_count": 1},
        ]


class TestAcrossDates:
    def test_combined_demand(self, orders):
        lines = aggregate_across_dates(orders, [D1, D2])
        assert [line.to_dict() for line in lines] == [
            {"product_id": 1, "quantity": 12},
            {"product_id": 2, "quantity": 8},
        ]

    def test_duplicate_dates_count_once(self, orders):
        once = aggregate_across_dates(orders, ["2024-05-01"])
        twice = aggregate_across_dates(orders, ["2024-05-01", D1, "2024-05-01T08:00:00Z"])
        assert once == twice

    def test_empty_selection(self, orders):
        assert aggregate_across_dates(orders, []) == []

    def test_unspecified_can_be_selected(self, orders):
        lines = aggregate_across_dates(orders, ["unspecified"])
        assert [line.to_dict() for line in lines] == [{"product_id": 3, "quantity": 2}]

    def test_per_date_snapshot_includes_empty_dates(self, orders):
        snapshot = per_date_snapshot(orders, [D1, date(2024, 6, 1)])
        assert [line.to_dict() for line in snapshot["2024-05-01"]] == [
            {"product_id": 1, "quantity": 12},
            {"product_id": 2, "quantity": 3},
        ]
        assert snapshot["2024-06-01"] == []

    def test_input_order_does_not_matter(self, orders):
        expected = aggregate_across_dates(orders, [D1, D2])
        rng = random.Random(7)
        for _ in range(20):
            shuffled = list(orders)
            rng.shuffle(shuffled)
            assert aggregate_across_dates(shuffled, [D2, D1]) == expected
            assert pending_delivery_dates(shuffled) == pending_delivery_dates(orders)


class TestDateSelection:
    def test_normalizes_and_dedupes(self):
        assert delivery_service.parse_date_selection(
            ["2024-05-01", "2024-05-01T10:00:00Z", "unspecified"]
        ) == ["2024-05-01", "unspecified"]

    def test_invalid_dates_rejected(self):
        with pytest.raises(ValidationError) as exc:
            delivery_service.parse_date_selection(["2024-05-01", "soon"])
        assert exc.value.details == {"invalid_dates": ["soon"]}


class TestStoreBacked:
    def test_dates_marked_allocated(self, products, driver, make_order, d1, d2):
        p1, p2, _ = products
        make_order([(p1, 5)], delivery=d1)
        make_order([(p2, 4)], delivery=d2)
        allocation_service.allocate([d1], driver.id, [{"product_id": p1.id, "quantity": 5}])

        rows = delivery_service.delivery_dates_for_store()
        assert rows == [
            {"date": d1.isoformat(), "order_count": 1, "allocated": True},
            {"date": d2.isoformat(), "order_count": 1, "allocated": False},
        ]

    def test_aggregate_for_store(self, products, make_order, d1, d2):
        p1, p2, _ = products
        make_order([(p1, 5), (p2, 3)], delivery=d1)
        make_order([(p1, 7)], delivery=d1)
        make_order([(p2, 5)], delivery=d2)
        make_order([(p1, 9)], delivery=d2, status="CANCELLED")

        result = delivery_service.aggregate_for_store([d1, d2])
        assert result["dates"] == [d1.isoformat(), d2.isoformat()]
        assert result["items"] == [
            {"product_id": p1.id, "quantity": 12},
            {"product_id": p2.id, "quantity": 8},
        ]
        assert result["per_date"][d2.isoformat()] == [{"product_id": p2.id, "quantity": 5}]
