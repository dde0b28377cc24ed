# Overview: Payment settlement for tables and combined orders.

"""
Payment Settlement

TABLE PAYMENT (process_table_payment):
    One tender closes every open order of a table. The money actually kept
    (amount_paid - discount) is split over the orders in proportion to their
    final amounts using the largest-remainder rule in integer cents, so the
    Payment rows always sum exactly to amount_paid - discount.

COMBINED ORDER (settle_combined_order):
    Once a table's orders are combined, the combined order is the single
    document that gets paid. One Payment row is written for it; the folded
    source orders are closed without payment rows of their own so revenue is
    counted once.

Both free the table once nothing open remains on it.
"""

from __future__ import annotations

import logging

from ..errors import AlreadyCombined, InsufficientPayment, InvalidRequest, NoOpenOrders, OrderNotFound
from ..extensions import db
from ..models import Order, Payment
from ..models.orders import (
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_COMPLETED,
    PAYMENT_STATUS_COMPLETED,
)
from ..money import allocate_proportionally
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .order_service import (
    get_locked_order,
    get_locked_table,
    open_orders_query,
    pending_combined_order,
    release_table_if_clear,
)


logger = logging.getLogger(__name__)


def _require_amount(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidRequest(f"{name} must be a non-negative integer amount in cents", details={name: value})
    return value


def _require_method(payment_method) -> str:
    if not payment_method or not isinstance(payment_method, str):
        raise InvalidRequest("payment_method is required")
    return payment_method


def process_table_payment(
    table_id: int,
    payment_method: str,
    amount_paid_cents: int,
    discount_cents: int = 0,
    cashier_name: str | None = None,
) -> dict:
    """
    Settle every open order of a table with one tender.

    Args:
        amount_paid_cents: money handed over
        discount_cents: discount granted at payment time, off the whole bill

    Returns:
        {
            "table_id", "orders_paid", "total_bill_cents", "required_cents",
            "amount_paid_cents", "discount_cents", "change_cents",
            "reference_number", "payments": [...]
        }

    Raises:
        InvalidRequest, TableNotFound, NoOpenOrders
        AlreadyCombined: a pending combined bill must be settled instead
        InsufficientPayment: amount_paid < total_bill - discount
    """
    _require_method(payment_method)
    _require_amount("amount_paid_cents", amount_paid_cents)
    _require_amount("discount_cents", discount_cents)

    def _op() -> dict:
        table = get_locked_table(table_id)

        combined = pending_combined_order(table.id)
        if combined is not None:
            raise AlreadyCombined(
                f"Table {table.table_number} has a pending combined order; settle it instead",
                details={"table_id": table.id, "combined_order_id": combined.id},
            )

        orders = (
            lock_for_update(open_orders_query(table.id))
            .order_by(Order.created_at.asc(), Order.id.asc())
            .all()
        )
        if not orders:
            raise NoOpenOrders(
                f"No open orders for table {table.table_number}",
                details={"table_id": table.id},
            )

        total_bill = sum(o.final_amount_cents for o in orders)
        required = max(0, total_bill - discount_cents)
        if amount_paid_cents < required:
            raise InsufficientPayment(
                "Amount paid is less than the bill",
                details={
                    "required": required,
                    "paid": amount_paid_cents,
                    "shortfall": required - amount_paid_cents,
                },
            )

        collected = max(0, amount_paid_cents - discount_cents)
        shares = allocate_proportionally([o.final_amount_cents for o in orders], collected)
        reference = f"TABLE-{table.table_number}-{utcnow().strftime('%Y%m%d%H%M%S%f')}"

        payments = []
        for order, share in zip(orders, shares):
            order.order_status = ORDER_STATUS_COMPLETED
            order.payment_status = PAYMENT_STATUS_COMPLETED
            order.payment_method = payment_method
            payment = Payment(
                order_id=order.id,
                amount_cents=share,
                payment_method=payment_method,
                status="completed",
                reference_number=reference,
                notes=f"Table {table.table_number} payment",
                cashier_name=cashier_name,
            )
            db.session.add(payment)
            payments.append(payment)

        table.release()
        db.session.flush()

        return {
            "table_id": table.id,
            "orders_paid": len(orders),
            "total_bill_cents": total_bill,
            "required_cents": required,
            "amount_paid_cents": amount_paid_cents,
            "discount_cents": discount_cents,
            "change_cents": max(0, amount_paid_cents - required),
            "reference_number": reference,
            "payments": [p.to_dict() for p in payments],
        }

    result = run_in_transaction(_op)
    logger.info(
        "Table %s paid: %s orders, %s cents collected, change %s",
        table_id, result["orders_paid"], result["amount_paid_cents"] - result["discount_cents"],
        result["change_cents"],
    )
    return result


def settle_combined_order(
    combined_order_id: int,
    payment_method: str,
    amount_paid_cents: int,
    cashier_name: str | None = None,
) -> dict:
    """
    Pay a combined order and close the orders folded into it.

    Raises:
        InvalidRequest: bad input, not a combined order, or already settled
        OrderNotFound
        InsufficientPayment: amount_paid < combined final amount
    """
    _require_method(payment_method)
    _require_amount("amount_paid_cents", amount_paid_cents)

    def _op() -> dict:
        order = get_locked_order(combined_order_id)
        if not order.is_combined:
            raise InvalidRequest(
                f"Order {order.order_number} is not a combined order",
                details={"order_id": order.id},
            )
        if order.payment_status == PAYMENT_STATUS_COMPLETED or order.order_status != ORDER_STATUS_ACTIVE:
            raise InvalidRequest(
                f"Combined order {order.order_number} is already settled",
                details={"order_id": order.id, "order_status": order.order_status},
            )

        required = order.final_amount_cents
        if amount_paid_cents < required:
            raise InsufficientPayment(
                "Amount paid is less than the bill",
                details={
                    "required": required,
                    "paid": amount_paid_cents,
                    "shortfall": required - amount_paid_cents,
                },
            )

        table = get_locked_table(order.table_id) if order.table_id is not None else None

        payment = Payment(
            order_id=order.id,
            amount_cents=required,
            payment_method=payment_method,
            status="completed",
            reference_number=order.order_number,
            notes="Combined bill payment",
            cashier_name=cashier_name,
        )
        db.session.add(payment)

        order.order_status = ORDER_STATUS_COMPLETED
        order.payment_status = PAYMENT_STATUS_COMPLETED
        order.payment_method = payment_method

        sources = lock_for_update(
            db.session.query(Order).filter(Order.combined_into_order_id == order.id)
        ).order_by(Order.id.asc()).all()
        for source in sources:
            source.order_status = ORDER_STATUS_COMPLETED
            source.payment_status = PAYMENT_STATUS_COMPLETED
            source.payment_method = payment_method
        db.session.flush()

        release_table_if_clear(table)
        db.session.flush()

        return {
            "combined_order_id": order.id,
            "order_number": order.order_number,
            "orders_closed": len(sources),
            "amount_paid_cents": amount_paid_cents,
            "required_cents": required,
            "change_cents": amount_paid_cents - required,
            "payment": payment.to_dict(),
        }

    result = run_in_transaction(_op)
    logger.info(
        "Combined order %s settled (%s source orders)",
        result["order_number"], result["orders_closed"],
    )
    return result
