# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import actor_name, require_auth, require_role
from ..errors import BillingError, InvalidRequest
from ..models.auth import ROLES
from ..services import order_service, settlement_service
from ..time_utils import parse_iso_date
from ..validation import coerce_int, error_response, json_body, query_limit


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    List regular orders, newest first.

    Query: status, date (YYYY-MM-DD), limit (default 50)
    """
    try:
        try:
            on_date = parse_iso_date(request.args.get("date"))
        except ValueError:
            raise InvalidRequest("date must be YYYY-MM-DD")

        orders = order_service.list_orders(
            status=request.args.get("status") or None,
            on_date=on_date,
            limit=query_limit(),
        )
        return jsonify({"orders": [o.to_dict() for o in orders]})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict(include_items=True, include_payments=True)})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("")
@require_auth
@require_role(*ROLES)
def create_order_route():
    """
    Create an order.

    Body:
        items: [{"product_id", "quantity", "notes"?}]
        payment_method, customer_id?, table_id?, discount_cents?, notes?, order_type?
    """
    try:
        data = json_body()

        items = data.get("items")
        if isinstance(items, list):
            items = [
                {
                    **item,
                    "product_id": coerce_int("product_id", item.get("product_id")),
                    "quantity": coerce_int("quantity", item.get("quantity")),
                }
                if isinstance(item, dict) else item
                for item in items
            ]

        order = order_service.create_order(
            items=items,
            payment_method=data.get("payment_method"),
            customer_id=coerce_int("customer_id", data.get("customer_id")),
            table_id=coerce_int("table_id", data.get("table_id")),
            discount_cents=coerce_int("discount_cents", data.get("discount_cents")) or 0,
            notes=data.get("notes"),
            order_type=data.get("order_type") or "dine_in",
            cashier_name=actor_name(),
        )
        return jsonify({"order": order.to_dict(include_items=True, include_payments=True)}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_role(*ROLES)
def update_order_status_route(order_id: int):
    try:
        data = json_body()
        status = data.get("status")
        if not status:
            raise InvalidRequest("status is required")

        order = order_service.update_order_status(order_id, status)
        return jsonify({"order": order.to_dict(include_items=True)})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/table/<int:table_id>")
@require_auth
def orders_by_table_route(table_id: int):
    try:
        orders = order_service.get_orders_by_table(table_id)
        return jsonify({"orders": [o.to_dict(include_items=True) for o in orders]})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load table orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/settle-combined")
@require_auth
@require_role(*ROLES)
def settle_combined_route(order_id: int):
    """
    Pay a combined table bill.

    Body: payment_method, amount_paid_cents
    """
    try:
        data = json_body()
        result = settlement_service.settle_combined_order(
            order_id,
            payment_method=data.get("payment_method"),
            amount_paid_cents=coerce_int("amount_paid_cents", data.get("amount_paid_cents"), required=True),
            cashier_name=actor_name(),
        )
        return jsonify(result)
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to settle combined order")
        return jsonify({"error": "Internal server error"}), 500
