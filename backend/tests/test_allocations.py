"""
Allocation lifecycle tests.

Verifies:
- One allocation per selected date, sharing the combined item list and batch key
- Dates held by any driver are skipped; all-held raises AllAlreadyAllocated
- A unique violation at insert time is re-read and retried
- Unallocate deletes only active allocations without sales
- Reconciliation defaults, explicit returns, shortfall and immutability
"""

from datetime import timedelta

import pytest

from stockrun.errors import (
    AllAlreadyAllocatedError,
    AllocationHasSalesError,
    AllocationNotFoundError,
    NoProductsToAllocateError,
    ValidationError,
)
from stockrun.extensions import db
from stockrun.models import DriverAllocation
from stockrun.services import allocation_service, delivery_service, driver_sales_service


def _items(p1, p2, q1=12, q2=8):
    return [{"product_id": p1.id, "quantity": q1}, {"product_id": p2.id, "quantity": q2}]


class TestAllocate:
    def test_creates_one_allocation_per_date(self, products, driver, d1, d2):
        p1, p2, _ = products
        result = allocation_service.allocate([d1, d2], driver.id, _items(p1, p2))

        assert [a.allocation_date for a in result.created] == [d1, d2]
        assert result.skipped_dates == []
        assert len({a.batch_key for a in result.created}) == 1
        for allocation in result.created:
            assert allocation.driver_name == "Driver One"
            assert allocation.status == "ALLOCATED"
            assert [(i.product_id, i.quantity, i.sold) for i in allocation.items] == [
                (p1.id, 12, 0),
                (p2.id, 8, 0),
            ]

    def test_items_are_merged_and_non_positive_dropped(self, products, driver, d1):
        p1, p2, p3 = products
        result = allocation_service.allocate(
            [d1],
            driver.id,
            [
                {"product_id": p1.id, "quantity": 5},
                {"product_id": p1.id, "quantity": 7},
                {"product_id": p2.id, "quantity": 0},
                {"product_id": p3.id, "quantity": -2},
                {"quantity": 4},
            ],
        )
        assert [(i.product_id, i.quantity) for i in result.created[0].items] == [(p1.id, 12)]

    def test_allocated_dates_are_skipped(self, products, driver, driver2, d1, d2):
        p1, p2, _ = products
        allocation_service.allocate([d1], driver2.id, _items(p1, p2))

        result = allocation_service.allocate([d1, d2], driver.id, _items(p1, p2))
        assert [a.allocation_date for a in result.created] == [d2]
        assert result.skipped_dates == [d1.isoformat()]

    def test_all_already_allocated(self, products, driver, d1):
        p1, p2, _ = products
        allocation_service.allocate([d1], driver.id, _items(p1, p2))

        with pytest.raises(AllAlreadyAllocatedError) as exc:
            allocation_service.allocate([d1.isoformat() + "T09:30:00Z"], driver.id, _items(p1, p2))
        assert exc.value.skipped_dates == [d1.isoformat()]
        assert db.session.query(DriverAllocation).count() == 1

    def test_empty_items_rejected(self, products, driver, d1):
        with pytest.raises(NoProductsToAllocateError):
            allocation_service.allocate([d1], driver.id, [])

    def test_no_dates_rejected(self, products, driver):
        p1, p2, _ = products
        with pytest.raises(ValidationError):
            allocation_service.allocate([], driver.id, _items(p1, p2))

    def test_unspecified_date_rejected(self, products, driver):
        p1, p2, _ = products
        with pytest.raises(ValidationError) as exc:
            allocation_service.allocate(["unspecified"], driver.id, _items(p1, p2))
        assert exc.value.details == {"invalid_dates": ["unspecified"]}

    def test_non_driver_rejected(self, products, sales_rep, d1):
        p1, p2, _ = products
        with pytest.raises(ValidationError):
            allocation_service.allocate([d1], sales_rep.id, _items(p1, p2))

    def test_unknown_product_rejected(self, products, driver, d1):
        with pytest.raises(ValidationError) as exc:
            allocation_service.allocate([d1], driver.id, [{"product_id": 999, "quantity": 1}])
        assert exc.value.details == {"product_ids": [999]}

    def test_reconciled_allocation_frees_the_date(self, products, driver, d1):
        p1, p2, _ = products
        first = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        allocation_service.reconcile(first.id)

        again = allocation_service.allocate([d1], driver.id, _items(p1, p2))
        assert len(again.created) == 1


class TestInsertRace:
    """The advisory pre-check misses a concurrent insert; the unique index catches it."""

    def _blind_precheck(self, monkeypatch, blind_calls):
        real = delivery_service.allocated_dates
        calls = {"n": 0}

        def fake(driver_id=None):
            calls["n"] += 1
            if calls["n"] <= blind_calls:
                return set()
            return real(driver_id)

        monkeypatch.setattr(allocation_service, "allocated_dates", fake)

    def test_conflicting_date_skipped_on_retry(self, monkeypatch, products, driver, d1, d2):
        p1, p2, _ = products
        allocation_service.allocate([d1], driver.id, _items(p1, p2))
        self._blind_precheck(monkeypatch, blind_calls=2)

        result = allocation_service.allocate([d1, d2], driver.id, _items(p1, p2))
        assert [a.allocation_date for a in result.created] == [d2]
        assert result.skipped_dates == [d1.isoformat()]
        assert db.session.query(DriverAllocation).filter_by(allocation_date=d1).count() == 1

    def test_single_conflicting_date_surfaces_all_allocated(self, monkeypatch, products, driver, d1):
        p1, p2, _ = products
        allocation_service.allocate([d1], driver.id, _items(p1, p2))
        self._blind_precheck(monkeypatch, blind_calls=2)

        with pytest.raises(AllAlreadyAllocatedError):
            allocation_service.allocate([d1], driver.id, _items(p1, p2))


class TestUnallocate:
    def test_deletes_allocation(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]

        removed = allocation_service.unallocate(allocation.id)
        assert removed["date"] == d1.isoformat()
        assert db.session.query(DriverAllocation).count() == 0

    def test_unknown_allocation(self, app):
        with pytest.raises(AllocationNotFoundError):
            allocation_service.unallocate(12345)

    def test_refused_when_sales_recorded(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 1}])

        with pytest.raises(AllocationHasSalesError):
            allocation_service.unallocate(allocation.id)
        assert db.session.get(DriverAllocation, allocation.id) is not None

    def test_refused_when_reconciled(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        allocation_service.reconcile(allocation.id)

        with pytest.raises(AllocationNotFoundError):
            allocation_service.unallocate(allocation.id)

    def test_by_date(self, products, driver, d1):
        p1, p2, _ = products
        allocation_service.allocate([d1], driver.id, _items(p1, p2))
        removed = allocation_service.unallocate_for_date(d1.isoformat())
        assert removed["driver_id"] == driver.id

    def test_by_date_ambiguous_needs_driver(self, products, driver, driver2, d1):
        p1, p2, _ = products
        first = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        # Another driver can only hold the date if inserted directly
        db.session.add(DriverAllocation(driver_id=driver2.id, driver_name=driver2.name, allocation_date=d1))
        db.session.commit()

        with pytest.raises(ValidationError):
            allocation_service.unallocate_for_date(d1)
        removed = allocation_service.unallocate_for_date(d1, driver_id=driver.id)
        assert removed["id"] == first.id

    def test_by_date_nothing_active(self, app, d1):
        with pytest.raises(AllocationNotFoundError):
            allocation_service.unallocate_for_date(d1)


class TestReconcile:
    def test_default_returns_everything_unsold(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 4}])

        summary = allocation_service.reconcile(allocation.id)
        assert [line.to_dict() for line in summary.lines] == [
            {"product_id": p1.id, "allocated": 12, "sold": 4, "returned": 8, "shortfall": 0},
            {"product_id": p2.id, "allocated": 8, "sold": 0, "returned": 8, "shortfall": 0},
        ]
        assert summary.sales_total_cents == 4 * p1.price_cents

        reloaded = allocation_service.get_allocation(allocation.id)
        assert reloaded.status == "RECONCILED"
        assert reloaded.reconciled_at is not None
        assert [r.to_dict() for r in reloaded.returned_items] == [
            {"product_id": p1.id, "quantity": 8},
            {"product_id": p2.id, "quantity": 8},
        ]

    def test_explicit_returns_report_shortfall(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]

        summary = allocation_service.reconcile(
            allocation.id, [{"product_id": p1.id, "quantity": 10}]
        )
        by_product = {line.product_id: line for line in summary.lines}
        assert by_product[p1.id].shortfall == 2
        assert by_product[p2.id].returned == 0
        assert by_product[p2.id].shortfall == 8
        assert summary.total_shortfall == 10

    def test_returns_exceeding_unsold_rejected(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 5}])

        with pytest.raises(ValidationError):
            allocation_service.reconcile(allocation.id, [{"product_id": p1.id, "quantity": 8}])
        assert allocation_service.get_allocation(allocation.id).status == "ALLOCATED"

    def test_returns_for_products_not_allocated_rejected(self, products, driver, d1):
        p1, p2, p3 = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        with pytest.raises(ValidationError):
            allocation_service.reconcile(allocation.id, [{"product_id": p3.id, "quantity": 1}])

    def test_reconcile_twice_rejected(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        allocation_service.reconcile(allocation.id)
        with pytest.raises(AllocationNotFoundError):
            allocation_service.reconcile(allocation.id)

    def test_reconciled_excluded_from_current_views(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        allocation_service.reconcile(allocation.id)

        assert allocation_service.list_allocations() == []
        assert [a.id for a in allocation_service.list_allocations(include_reconciled=True)] == [allocation.id]
        assert delivery_service.allocated_dates() == set()


class TestQueries:
    def test_filters(self, products, driver, driver2, d1, d2):
        p1, p2, _ = products
        allocation_service.allocate([d1, d2], driver.id, _items(p1, p2))
        allocation_service.allocate([d2 + timedelta(days=1)], driver2.id, _items(p1, p2))

        assert len(allocation_service.list_allocations(driver_id=driver.id)) == 2
        assert [a.allocation_date for a in allocation_service.list_allocations(date_from=d2)] == [
            d2,
            d2 + timedelta(days=1),
        ]
        assert [a.allocation_date for a in allocation_service.list_allocations(date_to=d1)] == [d1]

    def test_detail_includes_stock_summary(self, products, driver, d1):
        p1, p2, _ = products
        allocation = allocation_service.allocate([d1], driver.id, _items(p1, p2)).created[0]
        sale = driver_sales_service.record_sale(driver.id, [{"product_id": p2.id, "quantity": 3}])

        detail = allocation_service.allocation_detail(allocation.id)
        assert detail["stock_summary"] == [
            {"product_id": p1.id, "allocated": 12, "sold": 0, "remaining": 12},
            {"product_id": p2.id, "allocated": 8, "sold": 3, "remaining": 5},
        ]
        assert detail["sale_ids"] == [sale.id]
