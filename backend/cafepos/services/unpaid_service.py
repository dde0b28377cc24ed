# Overview: Unpaid-orders side ledger for tabs and credit.

"""
Unpaid-Order Side Ledger

WHY: Regulars run a tab. Their orders leave the table's open bill and wait
here, keyed by customer, until they pay.

- One entry per order (unique constraint on order_id).
- The entry snapshots amount, table number and items for display; the Order
  row stays authoritative.
- mark_as_paid closes the loop: order payment_status -> completed, exactly
  one Payment for the snapshotted amount, entry deleted, all in one
  transaction.
- remove_from_unpaid only drops the entry; the order becomes open again.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyCombined, AlreadyUnpaid, InvalidRequest, UnpaidEntryNotFound
from ..extensions import db
from ..models import Order, Payment, UnpaidOrderEntry
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_REFUNDED,
    PAYMENT_STATUS_COMPLETED,
)
from .concurrency import lock_for_update, run_in_transaction
from .order_service import get_locked_order, release_table_if_clear


logger = logging.getLogger(__name__)


def _locked_entry(entry_id: int) -> UnpaidOrderEntry:
    entry = lock_for_update(db.session.query(UnpaidOrderEntry).filter_by(id=entry_id)).first()
    if not entry:
        raise UnpaidEntryNotFound(f"Unpaid order {entry_id} not found", details={"entry_id": entry_id})
    return entry


def _items_summary(order: Order) -> str:
    return json.dumps([
        {
            "product_name": item.product.name if item.product else None,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "total_price_cents": item.total_price_cents,
        }
        for item in order.items
    ])


def get_unpaid_entry(entry_id: int) -> UnpaidOrderEntry:
    entry = db.session.get(UnpaidOrderEntry, entry_id)
    if not entry:
        raise UnpaidEntryNotFound(f"Unpaid order {entry_id} not found", details={"entry_id": entry_id})
    return entry


def list_unpaid(customer_name: str | None = None, table_number: str | None = None, limit: int = 50) -> list[UnpaidOrderEntry]:
    """Entries newest first; customer_name matches as a case-insensitive substring."""
    if limit is None or limit <= 0:
        raise InvalidRequest("limit must be positive")
    query = db.session.query(UnpaidOrderEntry)
    if customer_name:
        query = query.filter(UnpaidOrderEntry.customer_name.ilike(f"%{customer_name}%"))
    if table_number:
        query = query.filter(UnpaidOrderEntry.table_number == str(table_number))
    return (
        query.order_by(UnpaidOrderEntry.created_at.desc(), UnpaidOrderEntry.id.desc())
        .limit(limit)
        .all()
    )


def add_to_unpaid(
    order_id: int,
    customer_name: str | None,
    customer_phone: str | None = None,
    table_number: str | None = None,
    notes: str | None = None,
) -> UnpaidOrderEntry:
    """
    Park an order in the side ledger.

    Raises:
        InvalidRequest: no customer name, or the order cannot run on a tab
            (already paid, cancelled/refunded, or itself a combined bill)
        OrderNotFound
        AlreadyUnpaid: the order already has an entry
        AlreadyCombined: the order is folded into a combined bill
    """
    if not customer_name or not str(customer_name).strip():
        raise InvalidRequest("customer_name is required")

    def _op() -> UnpaidOrderEntry:
        order = get_locked_order(order_id)

        if db.session.query(UnpaidOrderEntry).filter_by(order_id=order.id).first():
            raise AlreadyUnpaid(
                f"Order {order.order_number} is already in the unpaid list",
                details={"order_id": order.id},
            )
        if order.is_combined:
            raise InvalidRequest("Combined bills cannot be moved to the unpaid list", details={"order_id": order.id})
        if order.combined_into_order_id is not None:
            raise AlreadyCombined(
                f"Order {order.order_number} is part of a combined bill",
                details={"order_id": order.id, "combined_order_id": order.combined_into_order_id},
            )
        if order.payment_status == PAYMENT_STATUS_COMPLETED:
            raise InvalidRequest(f"Order {order.order_number} is already paid", details={"order_id": order.id})
        if order.order_status in (ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED):
            raise InvalidRequest(
                f"Order {order.order_number} is {order.order_status}",
                details={"order_id": order.id},
            )

        entry = UnpaidOrderEntry(
            order_id=order.id,
            customer_name=str(customer_name).strip(),
            customer_phone=customer_phone or (order.customer.phone if order.customer else None),
            table_number=str(table_number) if table_number else (order.table.table_number if order.table else None),
            total_amount_cents=order.final_amount_cents,
            items_summary=_items_summary(order),
            notes=notes,
        )
        db.session.add(entry)
        db.session.flush()
        return entry

    try:
        entry = run_in_transaction(_op)
    except IntegrityError as exc:
        raise AlreadyUnpaid("Order is already in the unpaid list", details={"order_id": order_id}) from exc

    logger.info("Order %s moved to unpaid list for %s", order_id, entry.customer_name)
    return entry


def mark_as_paid(
    entry_id: int,
    payment_method: str = "cash",
    notes: str | None = None,
    cashier_name: str | None = None,
) -> dict:
    """
    Collect payment for a parked order and drop its entry.

    Returns {"order": {...}, "payment": {...}, "amount_paid_cents": int, "table_released": bool}

    Raises:
        UnpaidEntryNotFound
        InvalidRequest: the order was paid or closed since it was parked
    """
    if not payment_method or not isinstance(payment_method, str):
        raise InvalidRequest("payment_method is required")

    def _op() -> dict:
        entry = _locked_entry(entry_id)
        order = get_locked_order(entry.order_id)
        if order.payment_status == PAYMENT_STATUS_COMPLETED:
            raise InvalidRequest(f"Order {order.order_number} is already paid", details={"order_id": order.id})
        if order.order_status in (ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED):
            raise InvalidRequest(
                f"Order {order.order_number} is {order.order_status}",
                details={"order_id": order.id},
            )
        amount = entry.total_amount_cents

        order.payment_status = PAYMENT_STATUS_COMPLETED
        order.payment_method = payment_method

        payment = Payment(
            order_id=order.id,
            amount_cents=amount,
            payment_method=payment_method,
            status="completed",
            notes=notes or f"Payment processed from unpaid orders - {entry.customer_name}",
            cashier_name=cashier_name,
        )
        db.session.add(payment)
        db.session.delete(entry)
        db.session.flush()

        released = release_table_if_clear(order.table) if order.table_id is not None else False
        db.session.flush()

        return {
            "order": order.to_dict(),
            "payment": payment.to_dict(),
            "amount_paid_cents": amount,
            "table_released": released,
        }

    result = run_in_transaction(_op)
    logger.info("Unpaid order %s paid (%s cents)", result["order"]["order_number"], result["amount_paid_cents"])
    return result


def remove_from_unpaid(entry_id: int) -> int:
    """Delete an entry without touching its order. Returns the order id."""
    def _op() -> int:
        entry = _locked_entry(entry_id)
        order_id = entry.order_id
        db.session.delete(entry)
        return order_id

    order_id = run_in_transaction(_op)
    logger.info("Order %s removed from unpaid list", order_id)
    return order_id


def update_unpaid_entry(
    entry_id: int,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    table_number: str | None = None,
    notes: str | None = None,
) -> UnpaidOrderEntry:
    """Edit display fields of an entry. Fields left as None keep their value."""
    if customer_name is not None and not str(customer_name).strip():
        raise InvalidRequest("customer_name cannot be empty")

    def _op() -> UnpaidOrderEntry:
        entry = _locked_entry(entry_id)
        if customer_name is not None:
            entry.customer_name = str(customer_name).strip()
        if customer_phone is not None:
            entry.customer_phone = customer_phone
        if table_number is not None:
            entry.table_number = str(table_number)
        if notes is not None:
            entry.notes = notes
        db.session.flush()
        return entry

    return run_in_transaction(_op)


def get_unpaid_stats(top: int = 10) -> dict:
    total_count, total_amount, unique_customers = db.session.query(
        func.count(UnpaidOrderEntry.id),
        func.coalesce(func.sum(UnpaidOrderEntry.total_amount_cents), 0),
        func.count(func.distinct(UnpaidOrderEntry.customer_name)),
    ).one()

    total_col = func.sum(UnpaidOrderEntry.total_amount_cents)
    breakdown = (
        db.session.query(
            UnpaidOrderEntry.customer_name,
            func.count(UnpaidOrderEntry.id),
            total_col,
        )
        .group_by(UnpaidOrderEntry.customer_name)
        .order_by(total_col.desc(), UnpaidOrderEntry.customer_name.asc())
        .limit(top)
        .all()
    )

    return {
        "total_unpaid_orders": int(total_count),
        "total_unpaid_amount_cents": int(total_amount),
        "unique_customers": int(unique_customers),
        "customer_breakdown": [
            {"customer_name": name, "order_count": int(count), "total_amount_cents": int(amount or 0)}
            for name, count, amount in breakdown
        ],
    }
