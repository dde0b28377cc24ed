# Overview: Flask API routes for the unpaid-orders side ledger.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import actor_name, require_auth, require_role
from ..errors import BillingError
from ..models.auth import ROLES
from ..services import unpaid_service
from ..validation import coerce_int, error_response, json_body, query_limit


unpaid_bp = Blueprint("unpaid", __name__, url_prefix="/api/unpaid")


@unpaid_bp.get("")
@require_auth
def list_unpaid_route():
    """Query: customer_name (substring), table_number, limit"""
    try:
        entries = unpaid_service.list_unpaid(
            customer_name=request.args.get("customer_name") or None,
            table_number=request.args.get("table_number") or None,
            limit=query_limit(),
        )
        return jsonify({"unpaid_orders": [e.to_dict() for e in entries]})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list unpaid orders")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.get("/stats")
@require_auth
def unpaid_stats_route():
    try:
        return jsonify(unpaid_service.get_unpaid_stats())
    except Exception:
        current_app.logger.exception("Failed to load unpaid stats")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.get("/<int:entry_id>")
@require_auth
def get_unpaid_route(entry_id: int):
    try:
        return jsonify({"unpaid_order": unpaid_service.get_unpaid_entry(entry_id).to_dict()})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load unpaid order")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.post("")
@require_auth
@require_role(*ROLES)
def add_unpaid_route():
    """Body: order_id, customer_name, customer_phone?, table_number?, notes?"""
    try:
        data = json_body()
        entry = unpaid_service.add_to_unpaid(
            coerce_int("order_id", data.get("order_id"), required=True),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            table_number=data.get("table_number"),
            notes=data.get("notes"),
        )
        return jsonify({"unpaid_order": entry.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add unpaid order")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.patch("/<int:entry_id>")
@require_auth
@require_role(*ROLES)
def update_unpaid_route(entry_id: int):
    try:
        data = json_body()
        entry = unpaid_service.update_unpaid_entry(
            entry_id,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            table_number=data.get("table_number"),
            notes=data.get("notes"),
        )
        return jsonify({"unpaid_order": entry.to_dict()})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update unpaid order")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.delete("/<int:entry_id>")
@require_auth
@require_role(*ROLES)
def remove_unpaid_route(entry_id: int):
    try:
        order_id = unpaid_service.remove_from_unpaid(entry_id)
        return jsonify({"message": "Order removed from unpaid list", "order_id": order_id})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove unpaid order")
        return jsonify({"error": "Internal server error"}), 500


@unpaid_bp.post("/<int:entry_id>/pay")
@require_auth
@require_role(*ROLES)
def pay_unpaid_route(entry_id: int):
    """Body: payment_method (default "cash"), notes?"""
    try:
        data = json_body()
        result = unpaid_service.mark_as_paid(
            entry_id,
            payment_method=data.get("payment_method") or "cash",
            notes=data.get("notes"),
            cashier_name=actor_name(),
        )
        return jsonify(result)
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark unpaid order as paid")
        return jsonify({"error": "Internal server error"}), 500
