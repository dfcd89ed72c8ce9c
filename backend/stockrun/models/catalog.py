from __future__ import annotations

from ..extensions import db
from stockrun.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master with warehouse stock.

    `stock` is the warehouse quantity shown to office roles. Drivers never
    see it; their view is derived from active allocations instead
    (see driver_stock_service).
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True)
    supplier = db.Column(db.String(255), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)

    # Money stored as integer cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=True)
    margin_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self, stock_override: int | None = None) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "supplier": self.supplier,
            "stock": self.stock if stock_override is None else stock_override,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "margin_price_cents": self.margin_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
