"""
Driver stock and driver sale tests.

Verifies:
- Visible stock covers active allocations dated today or earlier only
- Sales draw oldest allocation first and never oversell
- Payment derivation (paid, credit, method)
- Warehouse stock and allocation sales totals follow the sale
"""

import random
from datetime import date, timedelta

import pytest

from stockrun.errors import NotFoundError, OversellError, ValidationError
from stockrun.extensions import db
from stockrun.models import DriverAllocationItem, DriverSale, Product
from stockrun.records import AllocationItemRecord, AllocationRecord
from stockrun.services import allocation_service, driver_sales_service, driver_stock_service
from stockrun.services.driver_sales_service import derive_payment
from stockrun.time_utils import today

from conftest import days_ago


def _allocate(driver, day, *pairs):
    items = [{"product_id": p.id, "quantity": q} for p, q in pairs]
    return allocation_service.allocate([day], driver.id, items).created[0]


class TestVisibleStockProjection:
    TODAY = date(2024, 5, 2)

    def _record(self, allocation_id, driver_id, day, items, status="ALLOCATED"):
        return AllocationRecord(
            id=allocation_id,
            driver_id=driver_id,
            allocation_date=day,
            status=status,
            items=tuple(AllocationItemRecord(product_id=p, quantity=q, sold=s) for p, q, s in items),
        )

    def test_sums_remaining_over_due_active_allocations(self):
        allocations = [
            self._record(1, 7, date(2024, 5, 1), [(1, 12, 4), (2, 8, 8)]),
            self._record(2, 7, self.TODAY, [(1, 3, 0)]),
            self._record(3, 7, date(2024, 5, 3), [(1, 50, 0)]),
            self._record(4, 7, date(2024, 4, 30), [(2, 9, 0)], status="RECONCILED"),
            self._record(5, 8, date(2024, 5, 1), [(1, 10, 0)]),
        ]
        assert driver_stock_service.visible_stock(allocations, 7, self.TODAY) == {1: 11}

    def test_nothing_allocated(self):
        assert driver_stock_service.visible_stock([], 7, self.TODAY) == {}


class TestDriverStock:
    def test_future_allocations_not_visible(self, products, driver):
        p1, p2, _ = products
        _allocate(driver, today(), (p1, 12))
        _allocate(driver, today() + timedelta(days=1), (p2, 8))

        assert driver_stock_service.visible_stock_for_driver(driver.id) == {p1.id: 12}

    def test_driver_products_replace_warehouse_stock(self, products, driver):
        p1, p2, p3 = products
        _allocate(driver, today(), (p1, 12), (p2, 8))

        listing = driver_stock_service.driver_products(driver.id)
        assert [(p["id"], p["stock"]) for p in listing] == [(p2.id, 8), (p1.id, 12)]
        assert p3.id not in {p["id"] for p in listing}


class TestRecordSale:
    def test_scenario_sell_reduces_visible_stock(self, products, driver):
        p1, p2, _ = products
        allocation = _allocate(driver, today(), (p1, 12), (p2, 8))

        sale = driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 4}])

        assert sale.allocation_id == allocation.id
        assert sale.total_cents == 4 * 250
        assert driver_stock_service.visible_stock_for_driver(driver.id) == {p1.id: 8, p2.id: 8}
        assert db.session.get(Product, p1.id).stock == 96
        assert allocation_service.get_allocation(allocation.id).sales_total_cents == 1000

    def test_oldest_allocation_drawn_first(self, products, driver):
        p1, _, _ = products
        older = _allocate(driver, days_ago(2), (p1, 3))
        newer = _allocate(driver, today(), (p1, 10))

        sale = driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 5}])

        sold = {
            item.allocation_id: item.sold
            for item in db.session.query(DriverAllocationItem).all()
        }
        assert sold == {older.id: 3, newer.id: 2}
        assert sale.allocation_id == newer.id

    def test_sale_attributed_to_allocation_it_drew_from(self, products, driver):
        p1, p2, _ = products
        older = _allocate(driver, days_ago(1), (p1, 5))
        newer = _allocate(driver, today(), (p2, 5))

        sale = driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 1}])

        assert sale.allocation_id == older.id
        removed = allocation_service.unallocate(newer.id)
        assert removed["id"] == newer.id
        assert driver_stock_service.visible_stock_for_driver(driver.id) == {p1.id: 4}

    def test_reconciled_allocation_rejects_increment(self, products, driver):
        p1, _, _ = products
        allocation = _allocate(driver, today(), (p1, 5))
        item_id = allocation.items[0].id
        allocation_service.reconcile(allocation.id)

        assert driver_sales_service._increment_sold(item_id, 1) is False
        assert db.session.get(DriverAllocationItem, item_id).sold == 0

    def test_zero_priced_sale(self, products, driver):
        p1, _, _ = products
        allocation = _allocate(driver, today(), (p1, 5))

        sale = driver_sales_service.record_sale(
            driver.id, [{"product_id": p1.id, "quantity": 2, "unit_price_cents": 0}]
        )

        assert (sale.total_cents, sale.allocation_id) == (0, allocation.id)
        assert allocation_service.get_allocation(allocation.id).items[0].sold == 2

    def test_oversell_rejected_without_changes(self, products, driver):
        p1, p2, _ = products
        allocation = _allocate(driver, today(), (p1, 12), (p2, 8))

        with pytest.raises(OversellError) as exc:
            driver_sales_service.record_sale(
                driver.id,
                [{"product_id": p1.id, "quantity": 2}, {"product_id": p2.id, "quantity": 9}],
            )
        assert exc.value.details == {"items": [{"product_id": p2.id, "requested": 9, "available": 8}]}
        assert [i.sold for i in allocation_service.get_allocation(allocation.id).items] == [0, 0]
        assert db.session.query(DriverSale).count() == 0

    def test_no_allocation_means_nothing_to_sell(self, products, driver):
        p1, _, _ = products
        with pytest.raises(OversellError):
            driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 1}])

    def test_future_allocation_cannot_be_sold(self, products, driver):
        p1, _, _ = products
        _allocate(driver, today() + timedelta(days=1), (p1, 5))
        with pytest.raises(OversellError):
            driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 1}])

    def test_unknown_product(self, products, driver):
        p1, _, _ = products
        _allocate(driver, today(), (p1, 5))
        with pytest.raises(NotFoundError):
            driver_sales_service.record_sale(driver.id, [{"product_id": 999, "quantity": 1}])

    @pytest.mark.parametrize("lines", [[], [{"product_id": 1, "quantity": 0}], [{"quantity": 2}], ["x"]])
    def test_malformed_lines(self, products, driver, lines):
        with pytest.raises(ValidationError):
            driver_sales_service.record_sale(driver.id, lines)

    def test_random_sales_never_oversell(self, products, driver):
        p1, p2, _ = products
        _allocate(driver, days_ago(1), (p1, 6), (p2, 4))
        _allocate(driver, today(), (p1, 6), (p2, 4))
        rng = random.Random(42)

        for _ in range(40):
            product = rng.choice([p1, p2])
            qty = rng.randint(1, 5)
            before = driver_stock_service.visible_stock_for_driver(driver.id).get(product.id, 0)
            try:
                driver_sales_service.record_sale(driver.id, [{"product_id": product.id, "quantity": qty}])
            except OversellError:
                assert qty > before
                continue
            after = driver_stock_service.visible_stock_for_driver(driver.id).get(product.id, 0)
            assert after == before - qty

        for item in db.session.query(DriverAllocationItem).all():
            assert 0 <= item.sold <= item.quantity

    def test_list_sales_filters(self, products, driver, driver2):
        p1, _, _ = products
        _allocate(driver, today(), (p1, 5))
        _allocate(driver2, days_ago(1), (p1, 5))
        mine = driver_sales_service.record_sale(driver.id, [{"product_id": p1.id, "quantity": 1}])
        driver_sales_service.record_sale(driver2.id, [{"product_id": p1.id, "quantity": 1}])

        assert [s.id for s in driver_sales_service.list_sales(driver_id=driver.id)] == [mine.id]
        assert len(driver_sales_service.list_sales(date_from=today(), date_to=today())) == 2


class TestPayment:
    @pytest.mark.parametrize(
        "total,paid,chosen,expected",
        [
            (1000, None, "CASH", (1000, 0, "CASH")),
            (1000, 1000, "bank", (1000, 0, "BANK")),
            (1000, 400, "CHEQUE", (400, 600, "MIXED")),
            (1000, 0, "CASH", (0, 1000, "CREDIT")),
            (0, None, "CASH", (0, 0, "CASH")),
        ],
    )
    def test_derive_payment(self, total, paid, chosen, expected):
        assert derive_payment(total, paid, chosen) == expected

    @pytest.mark.parametrize("paid,chosen", [(-1, "CASH"), (1001, "CASH"), (100, "CREDIT"), (100, "CARD")])
    def test_invalid_payment(self, paid, chosen):
        with pytest.raises(ValidationError):
            derive_payment(1000, paid, chosen)

    def test_sale_records_credit(self, products, driver):
        p1, _, _ = products
        _allocate(driver, today(), (p1, 5))
        sale = driver_sales_service.record_sale(
            driver.id,
            [{"product_id": p1.id, "quantity": 2, "unit_price_cents": 300}],
            amount_paid_cents=200,
            payment_method="CASH",
        )
        assert (sale.total_cents, sale.amount_paid_cents, sale.credit_cents, sale.payment_method) == (
            600, 200, 400, "MIXED"
        )
