# Overview: Minimal order source feeding delivery aggregation.

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderLine, Product
from ..models.orders import ORDER_STATUSES, ORDER_STATUS_PENDING
from ..records import normalize_status, parse_order_row
from ..time_utils import parse_iso_datetime, utcnow


logger = logging.getLogger(__name__)


def create_order(payload: Mapping[str, Any], actor_user_id: int | None = None) -> Order:
    """
    Create an order from a request body or legacy export row.

    Line prices default to the product's current price. Orders without
    lines are rejected; unknown products are rejected.
    """
    record = parse_order_row(payload)
    if not record.items:
        raise ValidationError("An order needs at least one line with a product")

    product_ids = {item.product_id for item in record.items}
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()}
    missing = sorted(product_ids - set(products))
    if missing:
        raise ValidationError("Unknown product(s)", details={"product_ids": missing})

    raw_prices = {}
    for raw in payload.get("lines") or payload.get("items") or []:
        if isinstance(raw, Mapping) and raw.get("unit_price_cents") is not None:
            try:
                raw_prices[int(raw.get("product_id"))] = int(raw["unit_price_cents"])
            except (TypeError, ValueError):
                raise ValidationError("unit_price_cents must be an integer", details={"line": dict(raw)})

    raw_order_date = payload.get("order_date") or payload.get("date")
    try:
        order_date = parse_iso_datetime(raw_order_date) if isinstance(raw_order_date, str) else None
    except ValueError:
        raise ValidationError("order_date must be ISO-8601", details={"order_date": raw_order_date})

    order = Order(
        customer_ref=record.customer_ref,
        customer_name=record.customer_name,
        delivery_address=payload.get("delivery_address"),
        order_date=order_date or utcnow(),
        expected_delivery_date=record.expected_delivery_date,
        status=record.status,
        created_by_user_id=actor_user_id,
    )
    total = 0
    for item in record.items:
        if item.quantity <= 0:
            raise ValidationError("Line quantities must be positive", details={"product_id": item.product_id})
        price = raw_prices.get(item.product_id, products[item.product_id].price_cents or 0)
        total += price * item.quantity
        order.lines.append(OrderLine(product_id=item.product_id, quantity=item.quantity, unit_price_cents=price))
    order.total_cents = total

    db.session.add(order)
    db.session.commit()
    logger.info("Order %s created (%d line(s), %s)", order.id, len(order.lines), order.status)
    return order


def list_orders(status: str | None = None) -> list[Order]:
    query = db.session.query(Order)
    if status:
        normalized = normalize_status(status, ORDER_STATUSES, "")
        if not normalized:
            raise ValidationError("Unknown order status", details={"status": status})
        query = query.filter(Order.status == normalized)
    return query.order_by(Order.order_date.desc(), Order.id.desc()).all()


def update_status(order_id: int, status: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    normalized = normalize_status(status, ORDER_STATUSES, "")
    if not normalized:
        raise ValidationError("Unknown order status", details={"status": status})
    order.status = normalized
    db.session.commit()
    return order
