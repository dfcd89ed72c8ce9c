from __future__ import annotations

from ..extensions import db
from stockrun.time_utils import to_utc_z


ALLOCATION_STATUS_ALLOCATED = "ALLOCATED"
ALLOCATION_STATUS_RECONCILED = "RECONCILED"

PAYMENT_CASH = "CASH"
PAYMENT_BANK = "BANK"
PAYMENT_CHEQUE = "CHEQUE"
PAYMENT_MIXED = "MIXED"
PAYMENT_CREDIT = "CREDIT"

PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_BANK, PAYMENT_CHEQUE, PAYMENT_MIXED, PAYMENT_CREDIT)

_ACTIVE_ONLY = db.text("status = 'ALLOCATED'")


class DriverAllocation(db.Model):
    """
    Stock lent to one driver for one delivery date.

    LIFECYCLE:
    1. ALLOCATED: Created from aggregated demand; driver sells against it
    2. RECONCILED: Closed out with returned items; immutable from here on

    An ALLOCATED allocation may also be hard-deleted (unallocated) as long
    as nothing has been sold against it.

    UNIQUENESS: At most one ALLOCATED row per (driver_id, allocation_date).
    The partial unique index below is the authoritative guard; service-level
    pre-checks only save round trips.

    Allocations created by one allocate call share a batch_key, and each
    carries the full combined item list of that call.
    """
    __tablename__ = "driver_allocations"
    __table_args__ = (
        db.Index(
            "uq_driver_allocations_active_driver_date",
            "driver_id",
            "allocation_date",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        db.Index("ix_driver_allocations_status_date", "status", "allocation_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    driver_name = db.Column(db.String(120), nullable=False, default="")

    allocation_date = db.Column(db.Date, nullable=False)
    batch_key = db.Column(db.String(32), nullable=True, index=True)

    # ALLOCATED, RECONCILED
    status = db.Column(db.String(16), nullable=False, default=ALLOCATION_STATUS_ALLOCATED)
    sales_total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reconciled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    driver = db.relationship("User", foreign_keys=[driver_id])
    items = db.relationship(
        "DriverAllocationItem",
        back_populates="allocation",
        cascade="all, delete-orphan",
        order_by="DriverAllocationItem.id",
        lazy=True,
    )
    returned_items = db.relationship(
        "DriverAllocationReturn",
        back_populates="allocation",
        cascade="all, delete-orphan",
        order_by="DriverAllocationReturn.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status != ALLOCATION_STATUS_RECONCILED

    def __repr__(self) -> str:
        return (
            f"<DriverAllocation id={self.id} driver_id={self.driver_id} "
            f"date={self.allocation_date} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "driver_name": self.driver_name,
            "date": self.allocation_date.isoformat() if self.allocation_date else None,
            "batch_key": self.batch_key,
            "status": self.status,
            "allocated_items": [item.to_dict() for item in self.items],
            "returned_items": (
                [r.to_dict() for r in self.returned_items]
                if self.status == ALLOCATION_STATUS_RECONCILED
                else None
            ),
            "sales_total_cents": self.sales_total_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "reconciled_by_user_id": self.reconciled_by_user_id,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "version_id": self.version_id,
        }


class DriverAllocationItem(db.Model):
    """
    One product on an allocation.

    INVARIANT: 0 <= sold <= quantity. Sales increment `sold` with a
    conditional UPDATE; the CHECK constraints are the last line of defence.
    """
    __tablename__ = "driver_allocation_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_allocation_items_quantity_nonneg"),
        db.CheckConstraint("sold >= 0", name="ck_allocation_items_sold_nonneg"),
        db.CheckConstraint("sold <= quantity", name="ck_allocation_items_sold_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    allocation_id = db.Column(
        db.Integer, db.ForeignKey("driver_allocations.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    sold = db.Column(db.Integer, nullable=False, default=0)

    allocation = db.relationship("DriverAllocation", back_populates="items")
    product = db.relationship("Product")

    @property
    def remaining(self) -> int:
        return max(0, (self.quantity or 0) - (self.sold or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "sold": self.sold,
            "remaining": self.remaining,
        }


class DriverAllocationReturn(db.Model):
    """Returned/unsold quantity recorded when an allocation is reconciled."""
    __tablename__ = "driver_allocation_returns"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_allocation_returns_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    allocation_id = db.Column(
        db.Integer, db.ForeignKey("driver_allocations.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    allocation = db.relationship("DriverAllocation", back_populates="returned_items")

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity}


class DriverSale(db.Model):
    """
    Point-of-sale record created by a driver against their allocated stock.

    `allocation_id` points at the driver's latest active allocation at sale
    time. The sold quantities themselves are spread over all of the driver's
    active allocations, oldest first (see driver_sales_service).
    """
    __tablename__ = "driver_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    allocation_id = db.Column(
        db.Integer, db.ForeignKey("driver_allocations.id"), nullable=False, index=True
    )

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)

    # CASH, BANK, CHEQUE, MIXED, CREDIT
    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_CASH)
    payment_reference = db.Column(db.String(128), nullable=True)

    customer_ref = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    driver = db.relationship("User", foreign_keys=[driver_id])
    allocation = db.relationship("DriverAllocation", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "DriverSaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="DriverSaleLine.id",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "driver_id": self.driver_id,
            "allocation_id": self.allocation_id,
            "sold_at": to_utc_z(self.sold_at),
            "sold_items": [line.to_dict() for line in self.lines],
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "credit_cents": self.credit_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "customer_ref": self.customer_ref,
            "customer_name": self.customer_name,
            "notes": self.notes,
        }


class DriverSaleLine(db.Model):
    __tablename__ = "driver_sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("driver_sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("DriverSale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
