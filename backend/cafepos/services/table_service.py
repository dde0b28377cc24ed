# Overview: Table bill aggregation, combined orders and table lifecycle.

"""
Table Bill Aggregator

WHY: A table accumulates several orders over a visit (first round, desserts,
...). The bill view sums them; a combined order freezes them into one
payable document so the whole table is settled in one go.

COMBINING:
- Idempotent per table: while a pending combined order exists it is returned
  instead of a new one (double clicks, client retries). The table row is
  locked before the check so two concurrent combines cannot both create one.
- Source orders are linked through combined_into_order_id and get a
  COMBINED_INTO:<id> note appended. A linked order is no longer open and can
  never be folded twice.
- The combined order copies the items but moves no stock: the sources
  already consumed it.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import exists, or_
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyCombined, InvalidRequest, NothingToCombine, TableNotFound
from ..extensions import db
from ..models import DiningTable, Order, OrderItem, Payment, UnpaidOrderEntry
from ..models.orders import (
    COMBINED_ORDER_PREFIX,
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_REFUNDED,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
)
from ..models.tables import TABLE_STATUSES
from ..money import clamp_discount, percentage_of
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .order_service import (
    get_locked_table,
    open_orders_query,
    pending_combined_order,
    release_folded_orders,
)


logger = logging.getLogger(__name__)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"


# =============================================================================
# Tables
# =============================================================================

def get_table(table_id: int) -> DiningTable:
    table = db.session.get(DiningTable, table_id)
    if not table:
        raise TableNotFound(f"Table {table_id} not found", details={"table_id": table_id})
    return table


def list_tables(status: str | None = None) -> list[DiningTable]:
    if status is not None and status not in TABLE_STATUSES:
        raise InvalidRequest(f"Invalid table status: {status}", details={"allowed": list(TABLE_STATUSES)})
    query = db.session.query(DiningTable)
    if status:
        query = query.filter(DiningTable.status == status)
    return query.order_by(DiningTable.table_number.asc()).all()


def create_table(
    table_number: str,
    table_name: str | None = None,
    capacity: int = 4,
    location: str | None = None,
) -> DiningTable:
    if not table_number or not str(table_number).strip():
        raise InvalidRequest("table_number is required")
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise InvalidRequest("capacity must be a positive integer")

    table_number = str(table_number).strip()

    def _op() -> DiningTable:
        if db.session.query(DiningTable).filter_by(table_number=table_number).first():
            raise InvalidRequest(f"Table {table_number} already exists")
        table = DiningTable(
            table_number=table_number,
            table_name=table_name or f"Table {table_number}",
            capacity=capacity,
            location=location,
        )
        db.session.add(table)
        db.session.flush()
        return table

    try:
        return run_in_transaction(_op)
    except IntegrityError as exc:
        raise InvalidRequest(f"Table {table_number} already exists") from exc


# =============================================================================
# Bill view
# =============================================================================

def _merge_items(orders: list[Order]) -> list[dict]:
    """Collapse items of several orders by (product, unit price)."""
    merged: dict[tuple[int, int], dict] = {}
    for order in orders:
        for item in order.items:
            key = (item.product_id, item.unit_price_cents)
            row = merged.get(key)
            if row is None:
                row = merged[key] = {
                    "product_id": item.product_id,
                    "product_name": item.product.name if item.product else None,
                    "unit_price_cents": item.unit_price_cents,
                    "quantity": 0,
                    "total_price_cents": 0,
                }
            row["quantity"] += item.quantity
            row["total_price_cents"] += item.total_price_cents
    return list(merged.values())


def get_table_bill_summary(table_id: int) -> dict:
    """
    Current bill of a table: its open orders and their totals.

    Returns:
        {
            "table": {...},
            "orders": [...],
            "bill_summary": {total_orders, subtotal_cents, total_discount_cents,
                             total_tax_cents, grand_total_cents, items},
            "combined_order": {...} | None
        }
    """
    table = get_table(table_id)
    orders = open_orders_query(table_id).order_by(Order.created_at.asc(), Order.id.asc()).all()
    combined = pending_combined_order(table_id)

    return {
        "table": table.to_dict(),
        "orders": [order.to_dict(include_items=True) for order in orders],
        "bill_summary": {
            "total_orders": len(orders),
            "subtotal_cents": sum(o.subtotal_cents for o in orders),
            "total_discount_cents": sum(o.discount_cents for o in orders),
            "total_tax_cents": 0,
            "grand_total_cents": sum(o.final_amount_cents for o in orders),
            "items": _merge_items(orders),
        },
        "combined_order": combined.to_dict(include_items=True) if combined else None,
    }


def get_table_totals(table_id: int, limit: int = 50) -> dict:
    """
    History of a table: orders already paid or moved to the unpaid ledger.

    Each order carries a settlement label: "completed" or "transferred".
    """
    table = get_table(table_id)
    parked = exists().where(UnpaidOrderEntry.order_id == Order.id)

    orders = (
        db.session.query(Order)
        .filter(
            Order.table_id == table_id,
            Order.is_combined.is_(False),
            Order.order_status.notin_([ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED]),
            or_(Order.payment_status == PAYMENT_STATUS_COMPLETED, parked),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )

    rows = []
    for order in orders:
        data = order.to_dict(include_items=True)
        data["settlement"] = "completed" if order.payment_status == PAYMENT_STATUS_COMPLETED else "transferred"
        rows.append(data)

    return {
        "table": table.to_dict(),
        "orders": rows,
        "total_orders": len(rows),
        "paid_cents": sum(r["final_amount_cents"] for r in rows if r["settlement"] == "completed"),
        "transferred_cents": sum(r["final_amount_cents"] for r in rows if r["settlement"] == "transferred"),
    }


# =============================================================================
# Combining
# =============================================================================

def _extra_discount(subtotal_cents: int, discount_type: str | None, discount_value) -> int:
    if discount_type is None and discount_value in (None, 0):
        return 0
    if discount_type not in (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED):
        raise InvalidRequest(
            "discount_type must be 'percentage' or 'fixed'",
            details={"discount_type": discount_type},
        )
    if discount_value is None or isinstance(discount_value, bool):
        raise InvalidRequest("discount_value is required with discount_type")

    if discount_type == DISCOUNT_PERCENTAGE:
        try:
            percent = Decimal(str(discount_value))
        except InvalidOperation as exc:
            raise InvalidRequest("discount_value must be a number") from exc
        if percent < 0 or percent > 100:
            raise InvalidRequest("Percentage discount must be between 0 and 100")
        return percentage_of(subtotal_cents, percent)

    if not isinstance(discount_value, int) or discount_value < 0:
        raise InvalidRequest("Fixed discount must be a non-negative amount in cents")
    return discount_value


def create_combined_order(
    table_id: int,
    discount_type: str | None = None,
    discount_value=None,
    cashier_name: str | None = None,
) -> tuple[Order, bool]:
    """
    Fold every open order of a table into one combined order.

    Returns (combined_order, created). created is False when a pending
    combined order already existed and was returned unchanged.

    Raises:
        TableNotFound
        NothingToCombine: the table has no open orders
        AlreadyCombined: a source order got folded elsewhere meanwhile
        InvalidRequest: bad discount input
    """
    # Validate discount shape early; the amount is computed on the real subtotal
    _extra_discount(0, discount_type, discount_value)

    def _op() -> tuple[Order, bool]:
        table = get_locked_table(table_id)

        existing = pending_combined_order(table.id)
        if existing is not None:
            return existing, False

        sources = (
            lock_for_update(open_orders_query(table.id))
            .order_by(Order.created_at.asc(), Order.id.asc())
            .all()
        )
        if not sources:
            raise NothingToCombine(
                f"No orders available to combine for table {table.table_number}",
                details={"table_id": table.id},
            )
        for source in sources:
            if source.combined_into_order_id is not None:
                raise AlreadyCombined(
                    f"Order {source.order_number} is already combined",
                    details={"order_id": source.id, "combined_order_id": source.combined_into_order_id},
                )

        subtotal = sum(o.subtotal_cents for o in sources)
        discount = sum(o.discount_cents for o in sources)
        discount += _extra_discount(subtotal, discount_type, discount_value)
        discount = clamp_discount(subtotal, discount)

        combined = Order(
            order_number=f"{COMBINED_ORDER_PREFIX}{table.id}-{utcnow().strftime('%Y%m%d%H%M%S%f')}",
            table_id=table.id,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=0,
            final_amount_cents=subtotal - discount,
            payment_method=None,
            payment_status=PAYMENT_STATUS_PENDING,
            order_status=ORDER_STATUS_ACTIVE,
            order_type="dine_in",
            is_combined=True,
            cashier_name=cashier_name,
            notes=f"Combined bill for table {table.table_number} - {len(sources)} orders",
        )
        db.session.add(combined)
        db.session.flush()

        for source in sources:
            for item in source.items:
                db.session.add(OrderItem(
                    order_id=combined.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    total_price_cents=item.total_price_cents,
                    notes=item.notes,
                ))
            source.combined_into_order_id = combined.id
            source.append_note(f"COMBINED_INTO:{combined.id}")

        db.session.flush()
        return combined, True

    combined, created = run_in_transaction(_op)
    if created:
        logger.info(
            "Combined order %s created for table %s (%s cents)",
            combined.order_number, table_id, combined.final_amount_cents,
        )
    return combined, created


# =============================================================================
# Reset
# =============================================================================

def reset_table(table_id: int, cashier_name: str | None = None) -> dict:
    """
    Close out a table without taking money through the normal flow.

    Any pending combined order is cancelled and unfolded first; every open
    order is then marked completed/completed with a `table_reset` payment of
    its final amount. The table becomes available.
    """
    def _op() -> dict:
        table = get_locked_table(table_id)

        combined = pending_combined_order(table.id)
        if combined is not None:
            release_folded_orders(combined)
            combined.order_status = ORDER_STATUS_CANCELLED
            db.session.flush()

        orders = lock_for_update(open_orders_query(table.id)).order_by(Order.id.asc()).all()
        reference = f"RESET-{table.table_number}-{utcnow().strftime('%Y%m%d%H%M%S')}"
        for order in orders:
            order.order_status = ORDER_STATUS_COMPLETED
            order.payment_status = PAYMENT_STATUS_COMPLETED
            db.session.add(Payment(
                order_id=order.id,
                amount_cents=order.final_amount_cents,
                payment_method="table_reset",
                status="completed",
                reference_number=reference,
                cashier_name=cashier_name,
            ))

        table.release()
        db.session.flush()
        return {
            "table": table.to_dict(),
            "orders_moved_to_total": len(orders),
            "cancelled_combined_order_id": combined.id if combined else None,
        }

    result = run_in_transaction(_op)
    logger.info("Table %s reset, %s orders closed", table_id, result["orders_moved_to_total"])
    return result
