# Overview: Delivery-date grouping and aggregation of pending order demand.

"""
Delivery Aggregation Service

Pending orders are grouped by the calendar date they are due for delivery,
and their line quantities are summed per product. The office staff selects
one or more dates, sees the combined demand, and hands it to a driver as an
allocation (see allocation_service).

PURITY: Everything except the *_for_store() helpers is a pure function of its
input records. Results never depend on the order in which orders are given.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from ..errors import ValidationError
from ..extensions import db
from ..models import DriverAllocation, Order
from ..models.allocations import ALLOCATION_STATUS_ALLOCATED
from ..models.orders import ORDER_STATUS_PENDING
from ..records import AggregatedLine, OrderRecord, order_from_model
from ..time_utils import UNSPECIFIED_DATE, date_key, to_calendar_date


def delivery_date_key(order: OrderRecord) -> str:
    """
    Grouping key for an order: expected delivery date, else the calendar
    date the order was placed, else 'unspecified'.
    """
    if order.expected_delivery_date is not None:
        return date_key(order.expected_delivery_date)
    if order.order_date is not None:
        return date_key(order.order_date)
    return UNSPECIFIED_DATE


def aggregate_by_date(orders: Iterable[OrderRecord]) -> dict[str, dict[int, int]]:
    """Pending demand as {date_key: {product_id: quantity}}."""
    grouped: dict[str, dict[int, int]] = defaultdict(lambda: defaultdict(int))
    for order in orders:
        if not order.is_pending:
            continue
        bucket = grouped[delivery_date_key(order)]
        for item in order.items:
            if item.product_id is None:
                continue
            bucket[item.product_id] += item.quantity
    return {key: dict(products) for key, products in grouped.items()}


def _normalize_keys(dates: Iterable) -> list[str]:
    keys: list[str] = []
    for value in dates:
        key = value if value == UNSPECIFIED_DATE else date_key(value)
        if key not in keys:
            keys.append(key)
    return keys


def _to_lines(totals: dict[int, int]) -> list[AggregatedLine]:
    return [
        AggregatedLine(product_id=product_id, quantity=quantity)
        for product_id, quantity in sorted(totals.items())
    ]


def aggregate_across_dates(orders: Iterable[OrderRecord], dates: Iterable) -> list[AggregatedLine]:
    """
    Combined pending demand for the selected dates, one line per product,
    ordered by product id. Duplicate dates in the selection count once.
    """
    by_date = aggregate_by_date(orders)
    totals: dict[int, int] = defaultdict(int)
    for key in _normalize_keys(dates):
        for product_id, quantity in by_date.get(key, {}).items():
            totals[product_id] += quantity
    return _to_lines(totals)


def per_date_snapshot(orders: Iterable[OrderRecord], dates: Iterable) -> dict[str, list[AggregatedLine]]:
    """Per-date breakdown for the selected dates (empty list for dates with no demand)."""
    by_date = aggregate_by_date(orders)
    return {key: _to_lines(by_date.get(key, {})) for key in _normalize_keys(dates)}


def pending_delivery_dates(orders: Iterable[OrderRecord]) -> list[dict]:
    """
    Dates that have pending orders, with the order count per date.

    Real dates are sorted ascending; 'unspecified' always sorts last.
    """
    counts: dict[str, int] = defaultdict(int)
    for order in orders:
        if order.is_pending:
            counts[delivery_date_key(order)] += 1
    keys = sorted(k for k in counts if k != UNSPECIFIED_DATE)
    if UNSPECIFIED_DATE in counts:
        keys.append(UNSPECIFIED_DATE)
    return [{"date": key, "order_count": counts[key]} for key in keys]


# =============================================================================
# STORE-BACKED HELPERS
# =============================================================================

def load_pending_orders() -> list[OrderRecord]:
    orders = (
        db.session.query(Order)
        .filter(Order.status == ORDER_STATUS_PENDING)
        .order_by(Order.id.asc())
        .all()
    )
    return [order_from_model(o) for o in orders]


def allocated_dates(driver_id: int | None = None) -> set[str]:
    """Date keys that already have an active allocation (any driver unless given)."""
    query = db.session.query(DriverAllocation.allocation_date).filter(
        DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED
    )
    if driver_id is not None:
        query = query.filter(DriverAllocation.driver_id == driver_id)
    return {d.isoformat() for (d,) in query.all() if d is not None}


def delivery_dates_for_store() -> list[dict]:
    """pending_delivery_dates() over the store, with an `allocated` marker per date."""
    taken = allocated_dates()
    rows = pending_delivery_dates(load_pending_orders())
    for row in rows:
        row["allocated"] = row["date"] in taken
    return rows


def aggregate_for_store(dates: Iterable) -> dict:
    orders = load_pending_orders()
    keys = _normalize_keys(dates)
    return {
        "dates": keys,
        "items": [line.to_dict() for line in aggregate_across_dates(orders, keys)],
        "per_date": {
            key: [line.to_dict() for line in lines]
            for key, lines in per_date_snapshot(orders, keys).items()
        },
    }


def parse_date_selection(raw: Iterable) -> list[str]:
    """
    Normalize a caller-supplied list of dates to date keys.

    'unspecified' is kept as-is; anything else must read as a calendar date.
    """
    keys: list[str] = []
    invalid: list = []
    for value in raw:
        if value == UNSPECIFIED_DATE:
            key = UNSPECIFIED_DATE
        else:
            parsed = to_calendar_date(value)
            if parsed is None:
                invalid.append(value)
                continue
            key = parsed.isoformat()
        if key not in keys:
            keys.append(key)
    if invalid:
        raise ValidationError("Invalid date(s)", details={"invalid_dates": invalid})
    return keys
