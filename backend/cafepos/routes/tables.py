# Overview: Flask API routes for tables, table bills and table settlement.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import actor_name, require_auth, require_role
from ..errors import BillingError
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLES
from ..services import settlement_service, table_service
from ..validation import coerce_int, error_response, json_body


tables_bp = Blueprint("tables", __name__, url_prefix="/api/tables")


@tables_bp.get("")
@require_auth
def list_tables_route():
    try:
        tables = table_service.list_tables(status=request.args.get("status") or None)
        return jsonify({"tables": [t.to_dict() for t in tables]})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list tables")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_table_route():
    try:
        data = json_body()
        table = table_service.create_table(
            table_number=data.get("table_number"),
            table_name=data.get("table_name"),
            capacity=coerce_int("capacity", data.get("capacity"), minimum=1) or 4,
            location=data.get("location"),
        )
        return jsonify({"table": table.to_dict()}), 201
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create table")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.get("/<int:table_id>")
@require_auth
def get_table_route(table_id: int):
    try:
        return jsonify({"table": table_service.get_table(table_id).to_dict()})
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load table")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.get("/<int:table_id>/bill")
@require_auth
def table_bill_route(table_id: int):
    try:
        return jsonify(table_service.get_table_bill_summary(table_id))
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load table bill")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.get("/<int:table_id>/totals")
@require_auth
def table_totals_route(table_id: int):
    try:
        return jsonify(table_service.get_table_totals(table_id))
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load table totals")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.post("/<int:table_id>/combine")
@require_auth
@require_role(*ROLES)
def combine_table_route(table_id: int):
    """
    Fold the table's open orders into one combined order.

    Body (optional): discount_type ("percentage" | "fixed"), discount_value
    Returns 201 when created, 200 when an existing pending combined order is returned.
    """
    try:
        data = json_body()
        discount_value = data.get("discount_value")
        if data.get("discount_type") == "fixed":
            discount_value = coerce_int("discount_value", discount_value, required=True, minimum=0)

        combined, created = table_service.create_combined_order(
            table_id,
            discount_type=data.get("discount_type"),
            discount_value=discount_value,
            cashier_name=actor_name(),
        )
        return jsonify({
            "combined_order": combined.to_dict(include_items=True),
            "created": created,
        }), 201 if created else 200
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to combine table orders")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.post("/<int:table_id>/pay")
@require_auth
@require_role(*ROLES)
def pay_table_route(table_id: int):
    """
    Settle every open order of the table.

    Body: payment_method, amount_paid_cents, discount_cents?
    """
    try:
        data = json_body()
        result = settlement_service.process_table_payment(
            table_id,
            payment_method=data.get("payment_method"),
            amount_paid_cents=coerce_int("amount_paid_cents", data.get("amount_paid_cents"), required=True),
            discount_cents=coerce_int("discount_cents", data.get("discount_cents")) or 0,
            cashier_name=actor_name(),
        )
        return jsonify(result)
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process table payment")
        return jsonify({"error": "Internal server error"}), 500


@tables_bp.post("/<int:table_id>/reset")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reset_table_route(table_id: int):
    try:
        return jsonify(table_service.reset_table(table_id, cashier_name=actor_name()))
    except BillingError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reset table")
        return jsonify({"error": "Internal server error"}), 500
