# Overview: Flask API routes for the product catalog; drivers see allocated stock.

from flask import Blueprint, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..models import Product
from ..models.auth import ROLE_DRIVER
from ..services import driver_stock_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("VIEW_PRODUCTS")
def list_products_route():
    """
    Product list.

    Drivers get only products they still hold on active allocations, with
    `stock` replaced by their remaining quantity. Everyone else sees the
    active catalog with warehouse stock.
    """
    try:
        user = g.current_user
        if user.role == ROLE_DRIVER:
            items = driver_stock_service.driver_products(user.id)
            return jsonify({"items": items, "count": len(items), "stock_view": "driver"}), 200

        products = (
            db.session.query(Product)
            .filter(Product.is_active.is_(True))
            .order_by(Product.name.asc(), Product.id.asc())
            .all()
        )
        return jsonify({
            "items": [p.to_dict() for p in products],
            "count": len(products),
            "stock_view": "warehouse",
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500
