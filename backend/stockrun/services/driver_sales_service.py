# Overview: Driver point-of-sale: record sales against allocated stock without overselling.

"""
Driver Sales Service

A sale is drawn from the driver's active allocations dated today or earlier,
oldest first: each product's quantity is taken from the earliest allocation
that still has some left, then the next, and so on.

NO-OVERSELL:
- The whole sale is checked against visible stock first; if any product is
  short the sale is rejected (nothing is clamped)
- Each `sold` increment is a conditional UPDATE
  (sold = sold + q WHERE sold + q <= quantity); a zero rowcount means another
  sale got there first and the whole sale is rolled back
- Touching sales_total_cents bumps the allocation's version_id, so concurrent
  writers on the same allocation conflict and are retried by run_with_retry
- Increments only match items of allocations still ALLOCATED, so a sale
  racing a reconcile fails even when its lines are zero-priced

PAYMENT:
- paid defaults to the full total
- credit = total - paid
- method: MIXED if credit > 0 and paid > 0, CREDIT if credit > 0 and
  paid == 0, otherwise the chosen method (CASH, BANK, CHEQUE)

Warehouse product stock is decremented too (never below zero).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable

from ..errors import NotFoundError, OversellError, StockRunError, ValidationError
from ..extensions import db
from ..models import DriverAllocation, DriverAllocationItem, DriverSale, DriverSaleLine, Product, User
from ..models.allocations import (
    ALLOCATION_STATUS_ALLOCATED,
    PAYMENT_BANK,
    PAYMENT_CASH,
    PAYMENT_CHEQUE,
    PAYMENT_CREDIT,
    PAYMENT_MIXED,
)
from ..time_utils import today as utc_today, utcnow
from .concurrency import lock_for_update, run_with_retry
from .driver_stock_service import active_allocations_query


logger = logging.getLogger(__name__)

CHOSEN_PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_BANK, PAYMENT_CHEQUE)


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


def parse_sale_lines(raw_lines: Iterable[Any]) -> list[SaleLineRequest]:
    lines: list[SaleLineRequest] = []
    invalid: list = []
    for raw in raw_lines or []:
        if not isinstance(raw, dict):
            invalid.append(raw)
            continue
        try:
            product_id = int(raw.get("product_id"))
            quantity = int(raw.get("quantity"))
            price = raw.get("unit_price_cents")
            price = int(price) if price is not None else None
        except (TypeError, ValueError):
            invalid.append(raw)
            continue
        if quantity <= 0 or (price is not None and price < 0):
            invalid.append(raw)
            continue
        lines.append(SaleLineRequest(product_id=product_id, quantity=quantity, unit_price_cents=price))
    if invalid:
        raise ValidationError("Invalid sale lines", details={"lines": invalid})
    if not lines:
        raise ValidationError("A sale needs at least one line")
    return lines


def derive_payment(total_cents: int, amount_paid_cents: int | None, chosen_method: str) -> tuple[int, int, str]:
    """Returns (paid, credit, method)."""
    chosen = (chosen_method or PAYMENT_CASH).upper()
    if chosen not in CHOSEN_PAYMENT_METHODS:
        raise ValidationError(
            "payment_method must be one of CASH, BANK, CHEQUE",
            details={"payment_method": chosen_method},
        )
    paid = total_cents if amount_paid_cents is None else int(amount_paid_cents)
    if paid < 0 or paid > total_cents:
        raise ValidationError(
            "amount_paid_cents must be between 0 and the sale total",
            details={"amount_paid_cents": paid, "total_cents": total_cents},
        )
    credit = total_cents - paid
    if credit > 0 and paid > 0:
        method = PAYMENT_MIXED
    elif credit > 0:
        method = PAYMENT_CREDIT
    else:
        method = chosen
    return paid, credit, method


def _increment_sold(item_id: int, quantity: int) -> bool:
    still_allocated = db.session.query(DriverAllocation.id).filter(
        DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED
    )
    updated = (
        db.session.query(DriverAllocationItem)
        .filter(
            DriverAllocationItem.id == item_id,
            DriverAllocationItem.sold + quantity <= DriverAllocationItem.quantity,
            DriverAllocationItem.allocation_id.in_(still_allocated.scalar_subquery()),
        )
        .update(
            {DriverAllocationItem.sold: DriverAllocationItem.sold + quantity},
            synchronize_session=False,
        )
    )
    return updated == 1


def record_sale(
    driver_id: int,
    lines: Iterable[Any],
    *,
    amount_paid_cents: int | None = None,
    payment_method: str = PAYMENT_CASH,
    payment_reference: str | None = None,
    customer_ref: str | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
    sold_at: datetime | None = None,
    today: date | None = None,
) -> DriverSale:
    """
    Record a driver sale and draw its quantities from active allocations.

    Raises:
        NotFoundError: unknown driver or product
        ValidationError: malformed lines or payment
        OversellError: requested more than visible stock (details.items lists shortfalls)
    """
    lines = list(lines or [])
    if lines and all(isinstance(line, SaleLineRequest) for line in lines):
        requested = lines
    else:
        requested = parse_sale_lines(lines)

    driver = db.session.get(User, driver_id)
    if driver is None:
        raise NotFoundError("Driver not found", details={"driver_id": driver_id})

    as_of = today or utc_today()

    def _record():
        allocations = lock_for_update(active_allocations_query(driver_id, as_of)).all()

        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(Product.id.in_({line.product_id for line in requested}))
            ).all()
        }
        unknown = sorted({line.product_id for line in requested} - set(products))
        if unknown:
            raise NotFoundError("Unknown product(s)", details={"product_ids": unknown})

        remaining_by_item: dict[int, int] = {}
        available: dict[int, int] = {}
        for allocation in allocations:
            for item in allocation.items:
                remaining_by_item[item.id] = item.remaining
                available[item.product_id] = available.get(item.product_id, 0) + item.remaining

        wanted: dict[int, int] = {}
        for line in requested:
            wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity
        short = [
            {"product_id": pid, "requested": qty, "available": available.get(pid, 0)}
            for pid, qty in sorted(wanted.items())
            if qty > available.get(pid, 0)
        ]
        if short:
            raise OversellError("Insufficient allocated stock", details={"items": short})

        sale_lines: list[DriverSaleLine] = []
        total = 0
        drawn_from = None
        for line in requested:
            unit_price = line.unit_price_cents
            if unit_price is None:
                unit_price = products[line.product_id].price_cents or 0
            need = line.quantity
            for allocation in allocations:
                for item in allocation.items:
                    if need == 0:
                        break
                    if item.product_id != line.product_id:
                        continue
                    take = min(remaining_by_item[item.id], need)
                    if take <= 0:
                        continue
                    if not _increment_sold(item.id, take):
                        raise OversellError(
                            "Allocated stock changed during the sale",
                            details={"items": [{"product_id": line.product_id, "requested": line.quantity}]},
                        )
                    remaining_by_item[item.id] -= take
                    drawn_from = allocation
                    allocation.sales_total_cents = (allocation.sales_total_cents or 0) + take * unit_price
                    need -= take
                if need == 0:
                    break

            line_total = unit_price * line.quantity
            total += line_total
            sale_lines.append(
                DriverSaleLine(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price_cents=unit_price,
                    line_total_cents=line_total,
                )
            )

            product = products[line.product_id]
            product.stock = max(0, (product.stock or 0) - line.quantity)

        paid, credit, method = derive_payment(total, amount_paid_cents, payment_method)

        sale = DriverSale(
            driver_id=driver_id,
            allocation_id=drawn_from.id,
            sold_at=sold_at or utcnow(),
            total_cents=total,
            amount_paid_cents=paid,
            credit_cents=credit,
            payment_method=method,
            payment_reference=payment_reference,
            customer_ref=customer_ref,
            customer_name=customer_name,
            notes=notes,
            lines=sale_lines,
        )
        db.session.add(sale)
        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_record)
    except StockRunError:
        db.session.rollback()
        raise

    logger.info(
        "Driver %s sale %s recorded: %d line(s), total %d cents (%s)",
        driver_id, sale.id, len(sale.lines), sale.total_cents, sale.payment_method,
    )
    return sale


def list_sales(
    *,
    driver_id: int | None = None,
    allocation_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[DriverSale]:
    query = db.session.query(DriverSale)
    if driver_id is not None:
        query = query.filter(DriverSale.driver_id == driver_id)
    if allocation_id is not None:
        query = query.filter(DriverSale.allocation_id == allocation_id)
    if date_from is not None:
        query = query.filter(DriverSale.sold_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to is not None:
        query = query.filter(DriverSale.sold_at < datetime.combine(date_to, datetime.max.time()))
    return query.order_by(DriverSale.sold_at.desc(), DriverSale.id.desc()).all()
