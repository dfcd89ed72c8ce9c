# Overview: Allocation lifecycle: allocate dates to a driver, unallocate, reconcile.

"""
Allocation Service

LIFECYCLE:
1. allocate(): one ALLOCATED row per selected date, each carrying the full
   combined item list of the call (shared batch_key)
2. driver sells against it (driver_sales_service increments `sold`)
3. reconcile(): returned items recorded, status -> RECONCILED (immutable)

An ALLOCATED allocation without sales may instead be unallocated, which
hard-deletes it.

UNIQUENESS: The partial unique index on (driver_id, allocation_date) for
ALLOCATED rows is authoritative. The "any driver" pre-check and the
per-driver re-check only avoid pointless inserts; a unique violation at
commit time is handled by re-reading and retrying the remaining dates.

WAREHOUSE: Reconciliation does not restock products.stock. Returned goods
are recorded on the allocation only.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AllAlreadyAllocatedError,
    AllocationHasSalesError,
    AllocationNotFoundError,
    NoProductsToAllocateError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from ..extensions import db
from ..models import DriverAllocation, DriverAllocationItem, DriverAllocationReturn, Product, User
from ..models.allocations import ALLOCATION_STATUS_ALLOCATED, ALLOCATION_STATUS_RECONCILED
from ..models.auth import ROLE_DRIVER
from ..records import AggregatedLine
from ..time_utils import UNSPECIFIED_DATE, to_calendar_date, to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .delivery_service import allocated_dates, parse_date_selection
from .driver_stock_service import stock_summary


logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    created: list[DriverAllocation] = field(default_factory=list)
    skipped_dates: list[str] = field(default_factory=list)
    batch_key: str | None = None

    def to_dict(self) -> dict:
        return {
            "batch_key": self.batch_key,
            "created": [a.to_dict() for a in self.created],
            "created_dates": [a.allocation_date.isoformat() for a in self.created],
            "skipped_dates": list(self.skipped_dates),
        }


@dataclass
class ReconciliationLine:
    product_id: int
    allocated: int
    sold: int
    returned: int

    @property
    def shortfall(self) -> int:
        return max(0, self.allocated - self.sold - self.returned)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "allocated": self.allocated,
            "sold": self.sold,
            "returned": self.returned,
            "shortfall": self.shortfall,
        }


@dataclass
class ReconciliationSummary:
    allocation_id: int
    lines: list[ReconciliationLine]
    sales_total_cents: int
    reconciled_at: datetime | None = None

    @property
    def total_shortfall(self) -> int:
        return sum(line.shortfall for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "allocation_id": self.allocation_id,
            "lines": [line.to_dict() for line in self.lines],
            "sales_total_cents": self.sales_total_cents,
            "total_shortfall": self.total_shortfall,
            "reconciled_at": to_utc_z(self.reconciled_at),
        }


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items: Iterable[Any]) -> list[AggregatedLine]:
    """
    Merge caller items into one positive quantity per product.

    Accepts AggregatedLine instances or {product_id, quantity} mappings.
    Lines without a product id or with a non-positive quantity are dropped.
    """
    totals: dict[int, int] = {}
    for raw in items or []:
        if isinstance(raw, AggregatedLine):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            product_id, quantity = raw.get("product_id"), raw.get("quantity")
        else:
            continue
        try:
            product_id = int(product_id)
            quantity = int(quantity)
        except (TypeError, ValueError):
            continue
        if quantity <= 0:
            continue
        totals[product_id] = totals.get(product_id, 0) + quantity
    return [AggregatedLine(product_id=pid, quantity=qty) for pid, qty in sorted(totals.items())]


def _require_driver(driver_id: Any) -> User:
    try:
        driver_id = int(driver_id)
    except (TypeError, ValueError):
        raise ValidationError("driver_id is required")
    driver = db.session.get(User, driver_id)
    if driver is None or driver.role != ROLE_DRIVER or not driver.is_active:
        raise ValidationError("driver_id must reference an active driver", details={"driver_id": driver_id})
    return driver


def _require_known_products(lines: list[AggregatedLine]) -> None:
    wanted = {line.product_id for line in lines}
    found = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(wanted)).all()}
    missing = sorted(wanted - found)
    if missing:
        raise ValidationError("Unknown product(s)", details={"product_ids": missing})


# =============================================================================
# ALLOCATE
# =============================================================================

def allocate(
    dates: Iterable[Any],
    driver_id: Any,
    items: Iterable[Any],
    actor_user_id: int | None = None,
) -> AllocationResult:
    """
    Allocate the combined items to `driver_id` once per selected date.

    Raises:
        ValidationError: no dates, bad date, 'unspecified' date, bad driver
        NoProductsToAllocateError: nothing left to allocate after normalization
        AllAlreadyAllocatedError: every date already has an active allocation
        TransientIOError: unique violations kept recurring past the attempt limit
    """
    date_keys = parse_date_selection(dates or [])
    if not date_keys:
        raise ValidationError("Select at least one delivery date")
    if UNSPECIFIED_DATE in date_keys:
        raise ValidationError(
            "Orders without a delivery date cannot be allocated",
            details={"invalid_dates": [UNSPECIFIED_DATE]},
        )

    driver = _require_driver(driver_id)

    lines = _normalize_items(items)
    if not lines:
        raise NoProductsToAllocateError("No products to allocate")
    _require_known_products(lines)

    # Advisory: dates any driver already holds
    taken_any = allocated_dates()
    skipped = [key for key in date_keys if key in taken_any]
    remaining = [key for key in date_keys if key not in taken_any]
    if not remaining:
        raise AllAlreadyAllocatedError(skipped)

    attempts = max(1, int(current_app.config.get("ALLOCATION_INSERT_ATTEMPTS", 3)))
    for attempt in range(attempts):
        # Authoritative for this driver, dates normalized by the Date column
        taken_by_driver = allocated_dates(driver.id)
        lost = [key for key in remaining if key in taken_by_driver]
        if lost:
            skipped.extend(lost)
            remaining = [key for key in remaining if key not in taken_by_driver]
        if not remaining:
            raise AllAlreadyAllocatedError(skipped)

        batch_key = uuid.uuid4().hex
        created = [
            DriverAllocation(
                driver_id=driver.id,
                driver_name=driver.name,
                allocation_date=to_calendar_date(key),
                batch_key=batch_key,
                status=ALLOCATION_STATUS_ALLOCATED,
                sales_total_cents=0,
                created_by_user_id=actor_user_id,
                items=[
                    DriverAllocationItem(product_id=line.product_id, quantity=line.quantity, sold=0)
                    for line in lines
                ],
            )
            for key in remaining
        ]

        def _insert():
            db.session.add_all(created)
            db.session.commit()

        try:
            run_with_retry(_insert)
        except IntegrityError:
            db.session.rollback()
            logger.info(
                "Allocation insert for driver %s hit an existing allocation (attempt %d/%d); re-reading",
                driver.id, attempt + 1, attempts,
            )
            continue

        logger.info(
            "Allocated %d date(s) to driver %s (batch %s, skipped %s)",
            len(created), driver.id, batch_key, skipped or "none",
        )
        return AllocationResult(created=created, skipped_dates=sorted(set(skipped)), batch_key=batch_key)

    raise TransientIOError(
        "Could not allocate after repeated conflicts, please retry",
        details={"pending_dates": remaining, "skipped_dates": sorted(set(skipped))},
    )


# =============================================================================
# UNALLOCATE
# =============================================================================

def _has_sales(allocation: DriverAllocation) -> bool:
    if any((item.sold or 0) > 0 for item in allocation.items):
        return True
    return bool(allocation.sales)


def unallocate(allocation_id: int) -> dict:
    """
    Hard-delete an ALLOCATED allocation that has no recorded sales.

    Returns the deleted allocation's last snapshot.
    """
    def _op():
        allocation = lock_for_update(
            db.session.query(DriverAllocation).filter_by(id=allocation_id)
        ).first()
        if allocation is None or allocation.status != ALLOCATION_STATUS_ALLOCATED:
            raise AllocationNotFoundError(
                "No active allocation found", details={"allocation_id": allocation_id}
            )
        if _has_sales(allocation):
            raise AllocationHasSalesError(
                "Allocation has recorded sales and cannot be unallocated",
                details={"allocation_id": allocation_id},
            )
        snapshot = allocation.to_dict()
        db.session.delete(allocation)
        db.session.commit()
        logger.info("Unallocated allocation %s (%s)", allocation_id, snapshot["date"])
        return snapshot

    return run_with_retry(_op)


def unallocate_for_date(allocation_date: Any, driver_id: int | None = None) -> dict:
    """Resolve the active allocation for a date (optionally per driver) and unallocate it."""
    day = to_calendar_date(allocation_date)
    if day is None:
        raise ValidationError("A valid date is required", details={"date": allocation_date})

    query = db.session.query(DriverAllocation).filter(
        DriverAllocation.allocation_date == day,
        DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED,
    )
    if driver_id is not None:
        query = query.filter(DriverAllocation.driver_id == driver_id)
    matches = query.order_by(DriverAllocation.id.asc()).all()

    if not matches:
        raise AllocationNotFoundError(
            "No active allocation for this date", details={"date": day.isoformat()}
        )
    if len(matches) > 1:
        raise ValidationError(
            "Several drivers hold allocations for this date; specify driver_id",
            details={"date": day.isoformat(), "driver_ids": [a.driver_id for a in matches]},
        )
    return unallocate(matches[0].id)


# =============================================================================
# RECONCILE
# =============================================================================

def _normalize_returns(returned_items: Iterable[Any]) -> dict[int, int]:
    returns: dict[int, int] = {}
    invalid: list = []
    for raw in returned_items:
        if not isinstance(raw, dict):
            invalid.append(raw)
            continue
        try:
            product_id = int(raw.get("product_id"))
            quantity = int(raw.get("quantity", 0))
        except (TypeError, ValueError):
            invalid.append(raw)
            continue
        if quantity < 0:
            invalid.append(raw)
            continue
        returns[product_id] = returns.get(product_id, 0) + quantity
    if invalid:
        raise ValidationError("Invalid returned items", details={"items": invalid})
    return returns


def reconcile(
    allocation_id: int,
    returned_items: Iterable[Any] | None = None,
    actor_user_id: int | None = None,
) -> ReconciliationSummary:
    """
    Close out an active allocation.

    With returned_items=None everything unsold comes back. Explicit returns
    may not exceed what is unsold; any remaining gap is reported as a
    shortfall on the summary.
    """
    explicit = _normalize_returns(returned_items) if returned_items is not None else None

    def _op():
        allocation = lock_for_update(
            db.session.query(DriverAllocation).filter_by(id=allocation_id)
        ).first()
        if allocation is None or allocation.status != ALLOCATION_STATUS_ALLOCATED:
            raise AllocationNotFoundError(
                "No active allocation found", details={"allocation_id": allocation_id}
            )

        summary = stock_summary(allocation)
        by_product = {row["product_id"]: row for row in summary}

        if explicit is not None:
            unknown = sorted(set(explicit) - set(by_product))
            if unknown:
                raise ValidationError(
                    "Returned products are not on this allocation",
                    details={"product_ids": unknown},
                )
            excess = [
                {
                    "product_id": pid,
                    "returned": qty,
                    "sold": by_product[pid]["sold"],
                    "allocated": by_product[pid]["allocated"],
                }
                for pid, qty in sorted(explicit.items())
                if qty + by_product[pid]["sold"] > by_product[pid]["allocated"]
            ]
            if excess:
                raise ValidationError("Returned plus sold exceeds allocated", details={"items": excess})

        lines = [
            ReconciliationLine(
                product_id=row["product_id"],
                allocated=row["allocated"],
                sold=row["sold"],
                returned=row["remaining"] if explicit is None else explicit.get(row["product_id"], 0),
            )
            for row in summary
        ]

        allocation.returned_items = [
            DriverAllocationReturn(product_id=line.product_id, quantity=line.returned)
            for line in lines
        ]
        allocation.status = ALLOCATION_STATUS_RECONCILED
        allocation.reconciled_at = utcnow()
        allocation.reconciled_by_user_id = actor_user_id
        db.session.commit()

        result = ReconciliationSummary(
            allocation_id=allocation.id,
            lines=lines,
            sales_total_cents=allocation.sales_total_cents or 0,
            reconciled_at=allocation.reconciled_at,
        )
        if result.total_shortfall:
            logger.warning(
                "Allocation %s reconciled with shortfall of %d unit(s)",
                allocation.id, result.total_shortfall,
            )
        return result

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_allocations(
    *,
    include_reconciled: bool = False,
    driver_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[DriverAllocation]:
    query = db.session.query(DriverAllocation)
    if not include_reconciled:
        query = query.filter(DriverAllocation.status == ALLOCATION_STATUS_ALLOCATED)
    if driver_id is not None:
        query = query.filter(DriverAllocation.driver_id == driver_id)
    if date_from is not None:
        query = query.filter(DriverAllocation.allocation_date >= date_from)
    if date_to is not None:
        query = query.filter(DriverAllocation.allocation_date <= date_to)
    return query.order_by(DriverAllocation.allocation_date.asc(), DriverAllocation.id.asc()).all()


def get_allocation(allocation_id: int) -> DriverAllocation:
    allocation = db.session.get(DriverAllocation, allocation_id)
    if allocation is None:
        raise NotFoundError("Allocation not found", details={"allocation_id": allocation_id})
    return allocation


def allocation_detail(allocation_id: int) -> dict:
    allocation = get_allocation(allocation_id)
    data = allocation.to_dict()
    data["stock_summary"] = stock_summary(allocation)
    data["sale_ids"] = [sale.id for sale in allocation.sales]
    return data
