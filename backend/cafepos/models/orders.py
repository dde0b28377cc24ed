from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


ORDER_STATUS_ACTIVE = "active"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"

ORDER_STATUSES = (
    ORDER_STATUS_ACTIVE,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_REFUNDED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"

COMBINED_ORDER_PREFIX = "TABLE-"


class Order(db.Model):
    """
    Order document.

    order_status and payment_status are orthogonal: order_status tracks the
    order's own disposition, payment_status whether money was collected.

    COMBINED ORDERS:
    A combined order (is_combined=True, number prefixed "TABLE-") aggregates
    the open orders of one table into a single payable bill. Each folded
    source order points at it through combined_into_order_id and becomes
    read-only history; the combined order is the only one that gets paid.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint("final_amount_cents >= 0", name="ck_orders_final_non_negative"),
        db.Index("ix_orders_table_status", "table_id", "order_status", "payment_status"),
        db.Index("ix_orders_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "ORD-000123" or "TABLE-4-20260101120000123456")
    order_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True, index=True)

    # Amounts in cents; tax is always zero
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_cents = db.Column(db.Integer, nullable=False)

    # Free-form label; NULL only while a combined order awaits settlement
    payment_method = db.Column(db.String(32), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    order_status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_ACTIVE, index=True)
    order_type = db.Column(db.String(16), nullable=False, default="dine_in")

    is_combined = db.Column(db.Boolean, nullable=False, default=False, index=True)
    combined_into_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # Display name of the actor who took the order (audit only)
    cashier_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    table = db.relationship("DiningTable", foreign_keys=[table_id], backref=db.backref("orders", lazy=True))
    combined_into = db.relationship(
        "Order",
        remote_side=[id],
        backref=db.backref("folded_orders", lazy=True),
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.order_status}/{self.payment_status}>"

    def append_note(self, note: str) -> None:
        """Append to notes without overwriting earlier annotations."""
        self.notes = f"{self.notes} | {note}" if self.notes else note

    def to_dict(self, include_items: bool = False, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "customer_phone": self.customer.phone if self.customer else None,
            "table_id": self.table_id,
            "table_number": self.table.table_number if self.table else None,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "final_amount_cents": self.final_amount_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "order_type": self.order_type,
            "is_combined": self.is_combined,
            "combined_into_order_id": self.combined_into_order_id,
            "cashier_name": self.cashier_name,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_payments:
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class OrderItem(db.Model):
    """Line on an order. unit_price_cents is a snapshot; rows are never mutated."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("items", lazy=True, order_by="OrderItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Money collected against an order.

    One order may have several payments (proportional shares of a table
    settlement). Payments are only ever inserted, never edited.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="completed")

    # Groups the rows of one settlement (e.g. "TABLE-4-20260101120000")
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    cashier_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship(
        "Order",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
        }


class UnpaidOrderEntry(db.Model):
    """
    Side-ledger entry parking an order for deferred payment (tab/credit).

    Amount, table number and items are snapshots for display; the Order row
    stays authoritative. Removing an entry never deletes the order.
    """
    __tablename__ = "unpaid_orders"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_unpaid_orders_order"),
        db.Index("ix_unpaid_orders_customer", "customer_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)
    table_number = db.Column(db.String(32), nullable=True, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    # JSON list of {product_name, quantity, unit_price_cents, total_price_cents}
    items_summary = db.Column(db.Text, nullable=False, default="[]")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("unpaid_entry", uselist=False, lazy=True))

    def items(self) -> list:
        try:
            return json.loads(self.items_summary or "[]")
        except ValueError:
            return []

    def to_dict(self) -> dict:
        order = self.order
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": order.order_number if order else None,
            "order_status": order.order_status if order else None,
            "payment_status": order.payment_status if order else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "table_number": self.table_number,
            "total_amount_cents": self.total_amount_cents,
            "items": self.items(),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
