# Overview: Flask API routes for driver point-of-sale and driver stock views.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import StockRunError, ValidationError
from ..models.auth import ROLE_DRIVER
from ..services import driver_sales_service, driver_stock_service
from ..validation import coerce_int, optional_date, optional_int


driver_sales_bp = Blueprint("driver_sales", __name__, url_prefix="/api/driver-sales")
drivers_bp = Blueprint("drivers", __name__, url_prefix="/api/drivers")


@driver_sales_bp.post("")
@require_auth
@require_permission("RECORD_DRIVER_SALE")
def record_sale_route():
    """
    Record a sale from the driver's allocated stock.

    Body: {lines: [{product_id, quantity, unit_price_cents?}],
           amount_paid_cents?, payment_method?, payment_reference?,
           customer_ref?, customer_name?, notes?, driver_id? (office roles only)}

    Returns 201 with the sale; 409 with details.items when stock is short.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = g.current_user

        if user.role == ROLE_DRIVER:
            driver_id = user.id
        else:
            if data.get("driver_id") is None:
                raise ValidationError("driver_id required")
            driver_id = coerce_int("driver_id", data.get("driver_id"))

        lines = data.get("lines")
        if not isinstance(lines, list):
            raise ValidationError("lines must be a list")

        amount_paid = data.get("amount_paid_cents")
        if amount_paid is not None:
            amount_paid = coerce_int("amount_paid_cents", amount_paid)

        sale = driver_sales_service.record_sale(
            driver_id,
            lines,
            amount_paid_cents=amount_paid,
            payment_method=data.get("payment_method") or "CASH",
            payment_reference=data.get("payment_reference"),
            customer_ref=data.get("customer_ref"),
            customer_name=data.get("customer_name"),
            notes=data.get("notes"),
        )
        return jsonify({
            "sale": sale.to_dict(),
            "visible_stock": [
                {"product_id": product_id, "remaining": qty}
                for product_id, qty in sorted(driver_stock_service.visible_stock_for_driver(driver_id).items())
            ],
        }), 201

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record driver sale")
        return jsonify({"error": "Internal server error"}), 500


@driver_sales_bp.get("")
@require_auth
@require_permission("VIEW_DRIVER_SALES")
def list_sales_route():
    try:
        args = request.args
        driver_id = optional_int(args, "driver_id")
        if g.current_user.role == ROLE_DRIVER:
            driver_id = g.current_user.id

        sales = driver_sales_service.list_sales(
            driver_id=driver_id,
            allocation_id=optional_int(args, "allocation_id"),
            date_from=optional_date(args, "date_from"),
            date_to=optional_date(args, "date_to"),
        )
        return jsonify({
            "items": [s.to_dict() for s in sales],
            "count": len(sales),
            "total_cents": sum(s.total_cents for s in sales),
        }), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list driver sales")
        return jsonify({"error": "Internal server error"}), 500


@drivers_bp.get("/<int:driver_id>/stock")
@require_auth
@require_permission("VIEW_DRIVER_STOCK")
def driver_stock_route(driver_id: int):
    """Visible stock for a driver: remaining quantities on active allocations due by today."""
    try:
        if g.current_user.role == ROLE_DRIVER and g.current_user.id != driver_id:
            return jsonify({"error": "Permission denied"}), 403

        stock = driver_stock_service.visible_stock_for_driver(driver_id)
        return jsonify({
            "driver_id": driver_id,
            "stock": [
                {"product_id": product_id, "remaining": qty}
                for product_id, qty in sorted(stock.items())
            ],
            "products": driver_stock_service.driver_products(driver_id),
        }), 200

    except StockRunError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load driver stock")
        return jsonify({"error": "Internal server error"}), 500
