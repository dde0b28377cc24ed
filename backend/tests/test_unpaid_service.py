"""Unpaid-order side ledger: parking, editing, paying and removing entries."""

import pytest

from cafepos.errors import (
    AlreadyCombined,
    AlreadyUnpaid,
    InvalidRequest,
    InvalidTransition,
    OrderNotFound,
    UnpaidEntryNotFound,
)
from cafepos.extensions import db
from cafepos.models import Order, Payment, UnpaidOrderEntry
from cafepos.services import order_service, settlement_service, table_service, unpaid_service


def _table_order(products, table, name="coffee", qty=1):
    return order_service.create_order(
        [{"product_id": products[name].id, "quantity": qty}],
        "cash",
        table_id=table.id,
    )


def test_add_to_unpaid_snapshots_the_order(products, table):
    order = _table_order(products, table, "cake", 2)

    entry = unpaid_service.add_to_unpaid(order.id, "  Regular Ravi ", customer_phone="555-0101")

    assert entry.customer_name == "Regular Ravi"
    assert entry.table_number == "1"
    assert entry.total_amount_cents == 900
    assert entry.items() == [
        {"product_name": "Cake", "quantity": 2, "unit_price_cents": 450, "total_price_cents": 900},
    ]
    # Parked orders leave the open bill
    assert order_service.get_orders_by_table(table.id) == []


def test_add_to_unpaid_twice_fails(products, table):
    order = _table_order(products, table)
    unpaid_service.add_to_unpaid(order.id, "Ravi")

    with pytest.raises(AlreadyUnpaid):
        unpaid_service.add_to_unpaid(order.id, "Someone Else")
    assert db.session.query(UnpaidOrderEntry).count() == 1


def test_add_to_unpaid_rejections(products, table):
    with pytest.raises(InvalidRequest):
        unpaid_service.add_to_unpaid(1, "  ")
    with pytest.raises(OrderNotFound):
        unpaid_service.add_to_unpaid(4040, "Ravi")

    paid = order_service.create_order([{"product_id": products["coffee"].id, "quantity": 1}], "cash")
    with pytest.raises(InvalidRequest):
        unpaid_service.add_to_unpaid(paid.id, "Ravi")

    cancelled = _table_order(products, table)
    order_service.update_order_status(cancelled.id, "cancelled")
    with pytest.raises(InvalidRequest):
        unpaid_service.add_to_unpaid(cancelled.id, "Ravi")

    folded = _table_order(products, table)
    combined, _ = table_service.create_combined_order(table.id)
    with pytest.raises(AlreadyCombined):
        unpaid_service.add_to_unpaid(folded.id, "Ravi")
    with pytest.raises(InvalidRequest):
        unpaid_service.add_to_unpaid(combined.id, "Ravi")


def test_tab_order_can_be_parked_and_paid(products):
    order = order_service.create_order([{"product_id": products["sandwich"].id, "quantity": 1}], "tab")
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")

    result = unpaid_service.mark_as_paid(entry.id, payment_method="card", cashier_name="Cal")

    assert result["amount_paid_cents"] == 800
    assert result["table_released"] is False
    assert db.session.query(UnpaidOrderEntry).count() == 0
    payments = db.session.query(Payment).filter_by(order_id=order.id).all()
    assert [(p.amount_cents, p.payment_method) for p in payments] == [(800, "card")]
    order = order_service.get_order(order.id)
    assert (order.payment_status, order.payment_method) == ("completed", "card")


def test_mark_as_paid_frees_the_table(products, table):
    order = _table_order(products, table)
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")

    result = unpaid_service.mark_as_paid(entry.id)

    assert result["table_released"] is True
    assert table_service.get_table(table.id).status == "available"


def test_mark_as_paid_keeps_table_with_other_open_orders(products, table):
    parked = _table_order(products, table)
    _table_order(products, table, "cake")
    entry = unpaid_service.add_to_unpaid(parked.id, "Ravi")

    result = unpaid_service.mark_as_paid(entry.id)

    assert result["table_released"] is False
    assert table_service.get_table(table.id).status == "occupied"


def test_mark_as_paid_unknown_entry(db_session):
    with pytest.raises(UnpaidEntryNotFound):
        unpaid_service.mark_as_paid(77)
    assert db.session.query(Payment).count() == 0


def test_remove_from_unpaid_reopens_the_order(products, table):
    order = _table_order(products, table)
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")

    assert unpaid_service.remove_from_unpaid(entry.id) == order.id

    assert order_service.get_order(order.id).payment_status == "pending"
    assert [o.id for o in order_service.get_orders_by_table(table.id)] == [order.id]
    result = settlement_service.process_table_payment(table.id, "cash", 300)
    assert result["orders_paid"] == 1


def test_update_and_list_entries(products, table, other_table):
    first = unpaid_service.add_to_unpaid(_table_order(products, table).id, "Ravi Kumar")
    unpaid_service.add_to_unpaid(_table_order(products, other_table, "cake").id, "Nora")

    unpaid_service.update_unpaid_entry(first.id, customer_phone="555-0199", notes="pays Fridays")
    with pytest.raises(InvalidRequest):
        unpaid_service.update_unpaid_entry(first.id, customer_name="")

    entries = unpaid_service.list_unpaid(customer_name="ravi")
    assert [e.id for e in entries] == [first.id]
    assert entries[0].customer_phone == "555-0199"
    assert entries[0].notes == "pays Fridays"
    assert [e.customer_name for e in unpaid_service.list_unpaid(table_number="2")] == ["Nora"]
    assert len(unpaid_service.list_unpaid()) == 2


def test_unpaid_stats(products, table, other_table):
    unpaid_service.add_to_unpaid(_table_order(products, table, "sandwich").id, "Ravi")
    unpaid_service.add_to_unpaid(_table_order(products, table, "coffee").id, "Ravi")
    unpaid_service.add_to_unpaid(_table_order(products, other_table, "cake").id, "Nora")

    stats = unpaid_service.get_unpaid_stats()

    assert stats["total_unpaid_orders"] == 3
    assert stats["total_unpaid_amount_cents"] == 1550
    assert stats["unique_customers"] == 2
    assert stats["customer_breakdown"] == [
        {"customer_name": "Ravi", "order_count": 2, "total_amount_cents": 1100},
        {"customer_name": "Nora", "order_count": 1, "total_amount_cents": 450},
    ]


def test_parked_order_cannot_be_cancelled_or_refunded(products, table):
    order = _table_order(products, table, "coffee", 2)
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")

    for status in ("cancelled", "refunded"):
        with pytest.raises(InvalidTransition):
            order_service.update_order_status(order.id, status)

    assert order_service.get_order(order.id).order_status == "active"
    assert products["coffee"].stock_quantity == 18

    # Dropping the entry first makes the cancellation legal again
    unpaid_service.remove_from_unpaid(entry.id)
    order_service.update_order_status(order.id, "cancelled")
    assert products["coffee"].stock_quantity == 20


def test_mark_as_paid_rejects_order_closed_since_parking(products, table):
    order = _table_order(products, table, "coffee", 2)
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")
    db.session.query(Order).filter_by(id=order.id).update({"order_status": "cancelled"})
    db.session.commit()

    with pytest.raises(InvalidRequest):
        unpaid_service.mark_as_paid(entry.id)

    assert db.session.query(Payment).filter_by(order_id=order.id).count() == 0
    assert order_service.get_order(order.id).payment_status == "pending"
    assert unpaid_service.get_unpaid_entry(entry.id).order_id == order.id


def test_mark_as_paid_rejects_order_paid_since_parking(products, table):
    order = _table_order(products, table)
    entry = unpaid_service.add_to_unpaid(order.id, "Ravi")
    db.session.query(Order).filter_by(id=order.id).update({"payment_status": "completed"})
    db.session.commit()

    with pytest.raises(InvalidRequest):
        unpaid_service.mark_as_paid(entry.id)
    assert db.session.query(Payment).count() == 0
