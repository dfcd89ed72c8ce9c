# Overview: Typed records and the single parse/validate boundary for loosely-typed rows.

"""
Records

Business logic (aggregation, stock projection, dashboards) works on the frozen
dataclasses below, never on ORM rows or raw dicts. Two ways in:

- *_from_model(): ORM instance -> record (trusted, already typed)
- parse_*_row(): raw mapping -> record (legacy exports, API payloads)

parse_*_row() is where all defensive coercion lives: snake_case / camelCase /
lowercase column aliases, JSON-encoded list columns, dates with trailing
times, missing fields. Malformed values are defaulted or dropped here so the
code downstream can assume well-formed records.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from .models import DriverAllocation, Order, User
from .models.allocations import ALLOCATION_STATUS_ALLOCATED, ALLOCATION_STATUS_RECONCILED
from .models.auth import ALL_ROLES
from .models.orders import ORDER_STATUSES, ORDER_STATUS_PENDING
from .time_utils import parse_iso_datetime, to_calendar_date, to_utc_z


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderItemRecord:
    product_id: int | None
    quantity: int


@dataclass(frozen=True)
class OrderRecord:
    id: Any
    status: str
    order_date: date | None
    expected_delivery_date: date | None = None
    items: tuple[OrderItemRecord, ...] = ()
    customer_ref: str | None = None
    customer_name: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ORDER_STATUS_PENDING


@dataclass(frozen=True)
class AllocationItemRecord:
    product_id: int
    quantity: int
    sold: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.quantity - self.sold)


@dataclass(frozen=True)
class ReturnedItemRecord:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class AllocationRecord:
    id: Any
    driver_id: int | None
    allocation_date: date | None
    status: str = ALLOCATION_STATUS_ALLOCATED
    items: tuple[AllocationItemRecord, ...] = ()
    returned_items: tuple[ReturnedItemRecord, ...] | None = None
    driver_name: str = ""
    sales_total_cents: int = 0

    @property
    def is_active(self) -> bool:
        return self.status != ALLOCATION_STATUS_RECONCILED


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: float | None = None

    def to_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": to_utc_z(self.timestamp),
            "accuracy_m": self.accuracy_m,
        }


@dataclass(frozen=True)
class UserLocationState:
    user_id: int
    name: str
    role: str
    location_sharing: bool
    location: LocationFix | None = None
    last_login_at: datetime | None = None
    email: str | None = None


@dataclass
class AggregatedLine:
    product_id: int
    quantity: int

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity}


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _to_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_cents(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value * 100))
    text = str(value).strip().replace(",", "")
    try:
        return int(round(float(text) * 100))
    except ValueError:
        return 0


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    """First non-None value among column aliases."""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def _json_list(value: Any, field_name: str, row_id: Any) -> list | None:
    """Accept a list or a JSON-encoded list; anything else -> None."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("Unparseable %s on row %s; treating as empty", field_name, row_id)
            return None
    return value if isinstance(value, list) else None


def normalize_status(value: Any, allowed: Iterable[str], default: str) -> str:
    """'Pending' / 'pending' / 'PENDING' -> 'PENDING'; unknown -> default."""
    text = _to_text(value)
    if not text:
        return default
    candidate = text.upper().replace(" ", "_")
    return candidate if candidate in allowed else default


def normalize_role(value: Any) -> str | None:
    text = _to_text(value)
    if not text:
        return None
    candidate = text.upper().replace(" ", "_")
    if candidate == "SALES":
        candidate = "SALES_REP"
    return candidate if candidate in ALL_ROLES else None


# =============================================================================
# ORDERS
# =============================================================================

def order_from_model(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.id,
        status=order.status,
        order_date=to_calendar_date(order.order_date),
        expected_delivery_date=order.expected_delivery_date,
        items=tuple(
            OrderItemRecord(product_id=line.product_id, quantity=line.quantity or 0)
            for line in order.lines
        ),
        customer_ref=order.customer_ref,
        customer_name=order.customer_name,
    )


def parse_order_items(raw_items: Any, row_id: Any = None) -> tuple[OrderItemRecord, ...]:
    items = _json_list(raw_items, "order items", row_id) or []
    parsed: list[OrderItemRecord] = []
    for raw in items:
        if not isinstance(raw, Mapping):
            continue
        product_id = _to_int(_first(raw, "product_id", "productId", "productid"))
        if product_id is None:
            logger.debug("Dropping order item without product id on row %s", row_id)
            continue
        quantity = _to_int(raw.get("quantity")) or 0
        parsed.append(OrderItemRecord(product_id=product_id, quantity=quantity))
    return tuple(parsed)


def parse_order_row(row: Mapping[str, Any]) -> OrderRecord:
    row_id = row.get("id")
    return OrderRecord(
        id=row_id,
        status=normalize_status(row.get("status"), ORDER_STATUSES, ORDER_STATUS_PENDING),
        order_date=to_calendar_date(_first(row, "order_date", "date", "created_at")),
        expected_delivery_date=to_calendar_date(
            _first(row, "expected_delivery_date", "expectedDeliveryDate", "expecteddeliverydate")
        ),
        items=parse_order_items(
            _first(row, "lines", "items", "order_items", "orderItems", "orderitems"), row_id
        ),
        customer_ref=_to_text(_first(row, "customer_ref", "customer_id", "customerId", "customerid")),
        customer_name=_to_text(_first(row, "customer_name", "customerName", "customername")),
    )


# =============================================================================
# ALLOCATIONS
# =============================================================================

def allocation_from_model(allocation: DriverAllocation) -> AllocationRecord:
    returned = None
    if allocation.status == ALLOCATION_STATUS_RECONCILED:
        returned = tuple(
            ReturnedItemRecord(product_id=r.product_id, quantity=r.quantity)
            for r in allocation.returned_items
        )
    return AllocationRecord(
        id=allocation.id,
        driver_id=allocation.driver_id,
        driver_name=allocation.driver_name or "",
        allocation_date=allocation.allocation_date,
        status=allocation.status,
        items=tuple(
            AllocationItemRecord(
                product_id=item.product_id,
                quantity=item.quantity or 0,
                sold=item.sold or 0,
            )
            for item in allocation.items
        ),
        returned_items=returned,
        sales_total_cents=allocation.sales_total_cents or 0,
    )


def parse_allocation_items(raw_items: Any, row_id: Any = None) -> tuple[AllocationItemRecord, ...]:
    items = _json_list(raw_items, "allocated items", row_id) or []
    parsed: list[AllocationItemRecord] = []
    for raw in items:
        if not isinstance(raw, Mapping):
            continue
        product_id = _to_int(_first(raw, "product_id", "productId", "productid"))
        if product_id is None:
            continue
        quantity = max(0, _to_int(raw.get("quantity")) or 0)
        sold = max(0, _to_int(raw.get("sold")) or 0)
        # Legacy rows can carry sold > quantity; clamp so remaining is never negative
        parsed.append(AllocationItemRecord(product_id=product_id, quantity=quantity, sold=min(sold, quantity)))
    return tuple(parsed)


def parse_returned_items(raw_items: Any, row_id: Any = None) -> tuple[ReturnedItemRecord, ...] | None:
    items = _json_list(raw_items, "returned items", row_id)
    if items is None:
        return None
    parsed: list[ReturnedItemRecord] = []
    for raw in items:
        if not isinstance(raw, Mapping):
            continue
        product_id = _to_int(_first(raw, "product_id", "productId", "productid"))
        if product_id is None:
            continue
        parsed.append(ReturnedItemRecord(product_id=product_id, quantity=max(0, _to_int(raw.get("quantity")) or 0)))
    return tuple(parsed)


def parse_allocation_row(row: Mapping[str, Any]) -> AllocationRecord:
    row_id = row.get("id")
    status = normalize_status(
        row.get("status"),
        (ALLOCATION_STATUS_ALLOCATED, ALLOCATION_STATUS_RECONCILED),
        ALLOCATION_STATUS_ALLOCATED,
    )
    sales_total = _first(row, "sales_total_cents")
    return AllocationRecord(
        id=row_id,
        driver_id=_to_int(_first(row, "driver_id", "driverId", "driverid")),
        driver_name=_to_text(_first(row, "driver_name", "driverName", "drivername")) or "",
        allocation_date=to_calendar_date(_first(row, "allocation_date", "date")),
        status=status,
        items=parse_allocation_items(
            _first(row, "items", "allocated_items", "allocatedItems", "allocateditems"), row_id
        ),
        returned_items=parse_returned_items(
            _first(row, "returned_items", "returnedItems", "returneditems"), row_id
        ),
        sales_total_cents=(
            _to_int(sales_total) or 0
            if sales_total is not None
            else _to_cents(_first(row, "sales_total", "salesTotal", "salestotal"))
        ),
    )


# =============================================================================
# LOCATIONS
# =============================================================================

def parse_location(value: Any) -> LocationFix | None:
    """
    Read a {latitude, longitude, timestamp, accuracy} mapping (or its JSON).

    Returns None when coordinates are missing or out of range. A missing or
    unparseable timestamp also yields None: a fix without a time cannot be
    judged fresh or stale.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, Mapping):
        return None

    latitude = _to_float(_first(value, "latitude", "lat"))
    longitude = _to_float(_first(value, "longitude", "lng", "lon"))
    if latitude is None or longitude is None:
        return None
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return None

    raw_ts = _first(value, "timestamp", "recorded_at")
    if isinstance(raw_ts, datetime):
        timestamp = raw_ts
    else:
        try:
            timestamp = parse_iso_datetime(_to_text(raw_ts))
        except ValueError:
            timestamp = None
    if timestamp is None:
        return None

    accuracy = _to_float(_first(value, "accuracy_m", "accuracy"))
    return LocationFix(latitude=latitude, longitude=longitude, timestamp=timestamp, accuracy_m=accuracy)


def location_state_from_model(user: User) -> UserLocationState:
    fix = None
    if (
        user.location_latitude is not None
        and user.location_longitude is not None
        and user.location_recorded_at is not None
    ):
        fix = LocationFix(
            latitude=user.location_latitude,
            longitude=user.location_longitude,
            timestamp=user.location_recorded_at,
            accuracy_m=user.location_accuracy_m,
        )
    return UserLocationState(
        user_id=user.id,
        name=user.name,
        role=user.role,
        location_sharing=bool(user.location_sharing),
        location=fix,
        last_login_at=user.last_login_at,
        email=user.email,
    )


def parse_user_location_row(row: Mapping[str, Any]) -> UserLocationState | None:
    user_id = _to_int(row.get("id"))
    role = normalize_role(row.get("role"))
    if user_id is None or role is None:
        return None
    last_login_raw = _first(row, "last_login_at", "lastLogin", "lastlogin")
    try:
        last_login = (
            last_login_raw if isinstance(last_login_raw, datetime)
            else parse_iso_datetime(_to_text(last_login_raw))
        )
    except ValueError:
        last_login = None
    return UserLocationState(
        user_id=user_id,
        name=_to_text(row.get("name")) or "",
        role=role,
        location_sharing=bool(_first(row, "location_sharing", "locationSharing", "locationsharing")),
        location=parse_location(_first(row, "current_location", "currentLocation", "currentlocation")),
        last_login_at=last_login,
        email=_to_text(row.get("email")),
    )
