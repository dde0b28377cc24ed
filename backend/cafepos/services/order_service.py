# Overview: Order lifecycle; creation with stock decrement, status transitions, refund restock.

"""
Order Lifecycle (authoritative)

Creation is one all-or-nothing unit: order row, item rows with price
snapshots, stock decrements and (for direct-pay orders) the payment row
commit together or not at all.

Status machine (order_status):

    active    -> completed | cancelled | refunded
    completed -> refunded
    cancelled, refunded: terminal

Writing the current status again is a no-op. Entering `refunded`, or
`cancelled` straight from `active`, puts every item back into stock exactly
once; terminal states make a second restock impossible. Combined orders own
no stock: cancelling an unpaid one unfolds its sources, refunding a paid one
refunds and restocks every folded source. Folded orders never change status
on their own, and parked (unpaid-list) orders cannot be cancelled or refunded.
A table is freed once its last open order is cancelled or refunded.

Payment deferral:
- Orders attached to a table are paid later through table settlement.
- payment_method "tab" parks the payment for the unpaid-orders side ledger.
- Everything else is direct-pay: a completed Payment of the final amount is
  written with the order and its payment_status becomes completed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import exists

from ..errors import (
    InsufficientStock,
    InvalidRequest,
    InvalidTransition,
    OrderNotFound,
    ProductNotFound,
    TableNotFound,
)
from ..extensions import db
from ..models import Customer, DiningTable, Order, OrderItem, Payment, UnpaidOrderEntry
from ..models.orders import (
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUSES,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
)
from ..models.tables import TABLE_STATUS_OCCUPIED
from ..money import clamp_discount
from . import stock_service
from .concurrency import lock_for_update, run_in_transaction
from .document_service import next_document_number


logger = logging.getLogger(__name__)

ORDER_TYPES = ("dine_in", "takeaway")
PAYMENT_METHOD_TAB = "tab"

ALLOWED_TRANSITIONS = {
    ORDER_STATUS_ACTIVE: {ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED},
    ORDER_STATUS_COMPLETED: {ORDER_STATUS_REFUNDED},
    ORDER_STATUS_CANCELLED: set(),
    ORDER_STATUS_REFUNDED: set(),
}


# =============================================================================
# Helpers
# =============================================================================

def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise InvalidRequest("Order must contain at least one item")

    normalized = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidRequest("Each item must be an object", details={"index": idx})
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not _is_positive_int(product_id):
            raise InvalidRequest("Item is missing product_id", details={"index": idx})
        if not _is_positive_int(quantity):
            raise InvalidRequest(
                "Item quantity must be a positive integer",
                details={"index": idx, "quantity": quantity},
            )
        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "notes": item.get("notes"),
        })
    return normalized


def get_locked_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def get_locked_table(table_id: int) -> DiningTable:
    table = lock_for_update(db.session.query(DiningTable).filter_by(id=table_id)).first()
    if not table:
        raise TableNotFound(f"Table {table_id} not found", details={"table_id": table_id})
    return table


def open_orders_query(table_id: int):
    """
    Orders of a table still waiting for money.

    Open means: active or completed, not payment-completed, not a combined
    order, not folded into one, and not parked in the unpaid side ledger.
    """
    parked = exists().where(UnpaidOrderEntry.order_id == Order.id)
    return (
        db.session.query(Order)
        .filter(
            Order.table_id == table_id,
            Order.order_status.in_([ORDER_STATUS_ACTIVE, ORDER_STATUS_COMPLETED]),
            Order.payment_status != PAYMENT_STATUS_COMPLETED,
            Order.is_combined.is_(False),
            Order.combined_into_order_id.is_(None),
            ~parked,
        )
    )


def pending_combined_order(table_id: int) -> Order | None:
    return (
        db.session.query(Order)
        .filter(
            Order.table_id == table_id,
            Order.is_combined.is_(True),
            Order.payment_status == PAYMENT_STATUS_PENDING,
            Order.order_status == ORDER_STATUS_ACTIVE,
        )
        .order_by(Order.id.desc())
        .first()
    )


def release_table_if_clear(table) -> bool:
    """Free the table when no open order or pending combined bill is left on it."""
    if table is None:
        return False
    if open_orders_query(table.id).first() is not None:
        return False
    if pending_combined_order(table.id) is not None:
        return False
    table.release()
    return True


# =============================================================================
# Creation
# =============================================================================

def create_order(
    items,
    payment_method: str | None,
    customer_id: int | None = None,
    table_id: int | None = None,
    discount_cents: int = 0,
    notes: str | None = None,
    order_type: str = "dine_in",
    cashier_name: str | None = None,
) -> Order:
    """
    Create an order, decrement stock and (for direct-pay orders) record payment.

    Args:
        items: [{"product_id": int, "quantity": int, "notes": str?}, ...]
        payment_method: free-form label ("cash", "card", "tab", ...)
        discount_cents: flat discount, clamped to the subtotal

    Raises:
        InvalidRequest, ProductNotFound, TableNotFound, InsufficientStock
    """
    lines = _normalize_items(items)
    if not payment_method or not isinstance(payment_method, str):
        raise InvalidRequest("payment_method is required")
    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise InvalidRequest("discount_cents must be a non-negative integer")
    if order_type not in ORDER_TYPES:
        raise InvalidRequest(f"order_type must be one of {', '.join(ORDER_TYPES)}")

    def _op() -> Order:
        if customer_id is not None and not db.session.get(Customer, customer_id):
            raise InvalidRequest("Customer not found", details={"customer_id": customer_id})

        table = get_locked_table(table_id) if table_id is not None else None

        # Lock every product and check total demand before writing anything
        products = {}
        demand: dict[int, int] = {}
        for line in lines:
            pid = line["product_id"]
            if pid not in products:
                product = stock_service.get_locked_product(pid)
                if not product.is_active:
                    raise ProductNotFound(
                        f"Product {pid} is not available",
                        details={"product_id": pid},
                    )
                products[pid] = product
            demand[pid] = demand.get(pid, 0) + line["quantity"]

        for pid, qty in demand.items():
            product = products[pid]
            if product.stock_quantity < qty:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}",
                    details={
                        "product_id": pid,
                        "product_name": product.name,
                        "requested": qty,
                        "available": product.stock_quantity,
                    },
                )

        subtotal = sum(products[line["product_id"]].price_cents * line["quantity"] for line in lines)
        discount = clamp_discount(subtotal, discount_cents)

        order = Order(
            order_number=next_document_number("ORDER", prefix="ORD"),
            customer_id=customer_id,
            table_id=table.id if table else None,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=0,
            final_amount_cents=subtotal - discount,
            payment_method=payment_method,
            payment_status=PAYMENT_STATUS_PENDING,
            order_status=ORDER_STATUS_ACTIVE,
            order_type=order_type,
            is_combined=False,
            cashier_name=cashier_name,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            product = products[line["product_id"]]
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=line["quantity"],
                unit_price_cents=product.price_cents,
                total_price_cents=product.price_cents * line["quantity"],
                notes=line["notes"],
            ))
            stock_service.reserve_and_decrement(
                product.id,
                line["quantity"],
                reference_id=order.id,
                reference_type="order",
                notes=f"Order {order.order_number}",
            )

        if table is not None:
            table.status = TABLE_STATUS_OCCUPIED
            table.current_order_id = order.id
        elif payment_method != PAYMENT_METHOD_TAB:
            db.session.add(Payment(
                order_id=order.id,
                amount_cents=order.final_amount_cents,
                payment_method=payment_method,
                status="completed",
                cashier_name=cashier_name,
            ))
            order.payment_status = PAYMENT_STATUS_COMPLETED

        db.session.flush()
        return order

    order = run_in_transaction(_op)
    logger.info(
        "Order %s created (table=%s, total=%s cents)",
        order.order_number, order.table_id, order.final_amount_cents,
    )
    return order


# =============================================================================
# Status transitions
# =============================================================================

def _restock(order: Order, reason: str) -> None:
    for item in order.items:
        stock_service.restore(
            item.product_id,
            item.quantity,
            reason=reason,
            reference_id=order.id,
            notes=f"{reason.capitalize()} of order {order.order_number}",
        )


def release_folded_orders(combined: Order) -> int:
    """Unfold an abandoned combined bill so its sources are payable individually again."""
    released = 0
    for source in list(combined.folded_orders):
        source.combined_into_order_id = None
        source.append_note(f"RELEASED_FROM:{combined.id}")
        released += 1
    return released


def update_order_status(order_id: int, new_status: str) -> Order:
    """
    Move an order through the status machine.

    Raises:
        InvalidRequest: unknown status
        OrderNotFound
        InvalidTransition: move not allowed from the current status, the
            order is folded into a combined bill, a parked order would be
            cancelled or refunded, or an unpaid combined bill would be refunded
    """
    if new_status not in ORDER_STATUSES:
        raise InvalidRequest(
            f"Invalid status: {new_status}",
            details={"allowed": list(ORDER_STATUSES)},
        )

    def _op() -> Order:
        order = get_locked_order(order_id)
        current = order.order_status

        if current == new_status:
            return order

        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot change order from {current} to {new_status}",
                details={"order_id": order.id, "from": current, "to": new_status},
            )

        # Folded orders follow their combined bill
        if order.combined_into_order_id is not None:
            raise InvalidTransition(
                f"Order is part of combined order {order.combined_into.order_number}",
                details={"order_id": order.id, "combined_order_id": order.combined_into_order_id},
            )

        closing = new_status in (ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED)
        if closing and db.session.query(exists().where(UnpaidOrderEntry.order_id == order.id)).scalar():
            raise InvalidTransition(
                f"Order {order.order_number} is in the unpaid list; remove it first",
                details={"order_id": order.id},
            )

        if not order.is_combined:
            if new_status == ORDER_STATUS_REFUNDED:
                _restock(order, "refund")
            elif new_status == ORDER_STATUS_CANCELLED and current == ORDER_STATUS_ACTIVE:
                _restock(order, "cancellation")
        elif new_status == ORDER_STATUS_CANCELLED:
            release_folded_orders(order)
        elif new_status == ORDER_STATUS_REFUNDED:
            if order.payment_status != PAYMENT_STATUS_COMPLETED:
                raise InvalidTransition(
                    f"Combined order {order.order_number} is unpaid; cancel it instead",
                    details={"order_id": order.id},
                )
            sources = lock_for_update(
                db.session.query(Order).filter(Order.combined_into_order_id == order.id)
            ).order_by(Order.id.asc()).all()
            for source in sources:
                _restock(source, "refund")
                source.order_status = ORDER_STATUS_REFUNDED

        order.order_status = new_status
        db.session.flush()

        if closing and order.table_id is not None:
            release_table_if_clear(order.table)
            db.session.flush()
        return order

    order = run_in_transaction(_op)
    logger.info("Order %s status -> %s", order.order_number, order.order_status)
    return order


# =============================================================================
# Queries
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(status: str | None = None, on_date=None, limit: int = 50) -> list[Order]:
    """Regular orders, newest first. Combined orders are bills, not sales, and are left out."""
    if status is not None and status not in ORDER_STATUSES:
        raise InvalidRequest(f"Invalid status: {status}", details={"allowed": list(ORDER_STATUSES)})
    if limit is None or limit <= 0:
        raise InvalidRequest("limit must be positive")

    query = db.session.query(Order).filter(Order.is_combined.is_(False))
    if status:
        query = query.filter(Order.order_status == status)
    if on_date is not None:
        start = datetime(on_date.year, on_date.month, on_date.day)
        query = query.filter(Order.created_at >= start, Order.created_at < start + timedelta(days=1))

    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def get_orders_by_table(table_id: int) -> list[Order]:
    """Open orders of a table, newest first."""
    if not db.session.get(DiningTable, table_id):
        raise TableNotFound(f"Table {table_id} not found", details={"table_id": table_id})
    return open_orders_query(table_id).order_by(Order.created_at.desc(), Order.id.desc()).all()
