from __future__ import annotations

from ..extensions import db
from stockrun.time_utils import to_utc_z


ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
)


class Order(db.Model):
    """
    Customer order.

    LIFECYCLE:
    1. PENDING: Awaiting delivery; counted in delivery-date aggregation
    2. SHIPPED / DELIVERED / CANCELLED: Set by the order-entry flow; ignored
       by aggregation

    `expected_delivery_date` is optional; aggregation falls back to the
    calendar date of `order_date`.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_delivery", "status", "expected_delivery_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_ref = db.Column(db.String(64), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    delivery_address = db.Column(db.Text, nullable=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expected_delivery_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_ref": self.customer_ref,
            "customer_name": self.customer_name,
            "delivery_address": self.delivery_address,
            "order_date": to_utc_z(self.order_date),
            "expected_delivery_date": (
                self.expected_delivery_date.isoformat() if self.expected_delivery_date else None
            ),
            "status": self.status,
            "total_cents": self.total_cents,
            "created_by_user_id": self.created_by_user_id,
            "lines": [line.to_dict() for line in self.lines],
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }
