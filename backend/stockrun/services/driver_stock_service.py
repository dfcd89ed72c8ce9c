# Overview: Driver-facing stock projection derived from active allocations.

"""
Driver Stock Service

A driver never sees warehouse stock. What they can sell is whatever is still
unsold on their active allocations dated today or earlier:

    visible[product] = sum(max(0, quantity - sold)) over those allocations

Allocations for future dates are not visible yet; reconciled allocations
are never visible. Products with nothing left are omitted entirely.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable

from ..extensions import db
from ..models import DriverAllocation, Product
from ..models.allocations import ALLOCATION_STATUS_ALLOCATED
from ..records import AllocationRecord, allocation_from_model
from ..time_utils import today as utc_today


def visible_stock(
    allocations: Iterable[AllocationRecord],
    driver_id: int,
    today: date,
) -> dict[int, int]:
    """Pure projection: {product_id: remaining} for one driver as of `today`."""
    totals: dict[int, int] = defaultdict(int)
    for allocation in allocations:
        if allocation.driver_id != driver_id or not allocation.is_active:
            continue
        if allocation.allocation_date is None or allocation.allocation_date > today:
            continue
        for item in allocation.items:
            totals[item.product_id] += item.remaining
    return {product_id: qty for product_id, qty in totals.items() if qty > 0}


def active_allocations_query(driver_id: int, as_of: date | None = None):
    """Driver's ALLOCATED rows, oldest first; optionally only those due by `as_of`."""
    query = db.session.query(DriverAllocation).filter(
        DriverAllocation.driver_id == driver_id,
        DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED,
    )
    if as_of is not None:
        query = query.filter(DriverAllocation.allocation_date <= as_of)
    return query.order_by(DriverAllocation.allocation_date.asc(), DriverAllocation.id.asc())


def active_allocations_for_driver(driver_id: int, as_of: date | None = None) -> list[DriverAllocation]:
    return active_allocations_query(driver_id, as_of).all()


def visible_stock_for_driver(driver_id: int, today: date | None = None) -> dict[int, int]:
    as_of = today or utc_today()
    records = [allocation_from_model(a) for a in active_allocations_for_driver(driver_id, as_of)]
    return visible_stock(records, driver_id, as_of)


def driver_products(driver_id: int, today: date | None = None) -> list[dict]:
    """
    Product list as the driver sees it: `stock` replaced by visible stock,
    products without any remaining allocation omitted.
    """
    stock = visible_stock_for_driver(driver_id, today)
    if not stock:
        return []
    products = (
        db.session.query(Product)
        .filter(Product.id.in_(stock.keys()))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    return [p.to_dict(stock_override=stock[p.id]) for p in products]


def stock_summary(allocation: AllocationRecord | DriverAllocation) -> list[dict]:
    """
    Allocated / sold / remaining per product on one allocation.

    Items repeating a product are merged. Ordered by product id.
    """
    if isinstance(allocation, DriverAllocation):
        allocation = allocation_from_model(allocation)
    allocated: dict[int, int] = defaultdict(int)
    sold: dict[int, int] = defaultdict(int)
    for item in allocation.items:
        allocated[item.product_id] += item.quantity
        sold[item.product_id] += item.sold
    return [
        {
            "product_id": product_id,
            "allocated": allocated[product_id],
            "sold": sold[product_id],
            "remaining": max(0, allocated[product_id] - sold[product_id]),
        }
        for product_id in sorted(allocated)
    ]
