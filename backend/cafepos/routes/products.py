# Overview: Flask API routes for product stock and the inventory ledger.

from flask import Blueprint, current_app, jsonify

from ..decorators import require_auth, require_role
from ..errors import BillingError
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import stock_service
from ..validation import coerce_int, error_response, json_body


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    try:
        products = stock_service.get_low_stock_products()
        return jsonify({"products": [p.to_dict() for p in products]})
    except Exception:
        current_app.logger.exception("Failed to load low stock products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock")
@require_auth
def product_stock_route(product_id: int):
    """Product with its inventory ledger and reconciliation state."""
    try:
        product = stock_service.get_product(product_id)
        transactions = stock_service.get_product_transactions(product_id)
        mismatches = stock_service.verify_stock_reconciliation(product_id)
        return jsonify({
            "product": product.to_dict(),
            "transactions": [t.to_dict() for t in transactions],
            "reconciled": not mismatches,
        })
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load product stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/stock/receive")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def receive_stock_route(product_id: int):
    """Body: quantity, notes?"""
    try:
        data = json_body()
        product, tx = stock_service.receive_stock(
            product_id,
            coerce_int("quantity", data.get("quantity"), required=True, minimum=1),
            notes=data.get("notes"),
        )
        return jsonify({"product": product.to_dict(), "transaction": tx.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500
