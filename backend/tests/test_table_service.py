"""Table bill aggregation, combined orders and table reset."""

import pytest

from cafepos.errors import InvalidRequest, InvalidTransition, NothingToCombine, TableNotFound
from cafepos.extensions import db
from cafepos.models import InventoryTransaction, Order, Payment
from cafepos.services import order_service, settlement_service, stock_service, table_service, unpaid_service


def _table_order(products, table, *lines, discount=0):
    return order_service.create_order(
        [{"product_id": products[name].id, "quantity": qty} for name, qty in lines],
        "cash",
        table_id=table.id,
        discount_cents=discount,
    )


def test_create_and_list_tables(db_session):
    table_service.create_table("10", location="Terrace")
    table_service.create_table("11")

    assert [t.table_number for t in table_service.list_tables()] == ["10", "11"]
    assert table_service.list_tables(status="occupied") == []
    with pytest.raises(InvalidRequest):
        table_service.create_table("10")
    with pytest.raises(InvalidRequest):
        table_service.list_tables(status="dirty")
    with pytest.raises(TableNotFound):
        table_service.get_table(404)


def test_bill_summary_merges_items_across_orders(products, table):
    _table_order(products, table, ("coffee", 2), ("cake", 1))
    _table_order(products, table, ("coffee", 1), discount=100)

    bill = table_service.get_table_bill_summary(table.id)
    summary = bill["bill_summary"]

    assert bill["table"]["status"] == "occupied"
    assert summary["total_orders"] == 2
    assert summary["subtotal_cents"] == 900 + 450
    assert summary["total_discount_cents"] == 100
    assert summary["total_tax_cents"] == 0
    assert summary["grand_total_cents"] == 1250
    merged = {row["product_name"]: row for row in summary["items"]}
    assert merged["Coffee"]["quantity"] == 3
    assert merged["Coffee"]["total_price_cents"] == 900
    assert merged["Cake"]["quantity"] == 1
    assert bill["combined_order"] is None


def test_combine_is_idempotent(products, table):
    first = _table_order(products, table, ("coffee", 1))
    second = _table_order(products, table, ("cake", 2))

    combined, created = table_service.create_combined_order(table.id, cashier_name="Cal")
    again, created_again = table_service.create_combined_order(table.id)

    assert created is True
    assert created_again is False
    assert again.id == combined.id
    assert combined.is_combined
    assert combined.order_number.startswith(f"TABLE-{table.id}-")
    assert combined.payment_method is None
    assert combined.payment_status == "pending"
    assert combined.subtotal_cents == 300 + 900
    assert combined.final_amount_cents == 1200
    assert len(combined.items) == 2

    for source_id in (first.id, second.id):
        source = order_service.get_order(source_id)
        assert source.combined_into_order_id == combined.id
        assert source.notes.count(f"COMBINED_INTO:{combined.id}") == 1

    assert db.session.query(Order).filter_by(is_combined=True).count() == 1


def test_combine_moves_no_stock(products, table):
    _table_order(products, table, ("coffee", 2))
    before = db.session.query(InventoryTransaction).count()

    table_service.create_combined_order(table.id)

    assert db.session.query(InventoryTransaction).count() == before
    assert products["coffee"].stock_quantity == 18


def test_combined_order_shows_in_bill_and_sources_leave_it(products, table):
    _table_order(products, table, ("coffee", 1))
    combined, _ = table_service.create_combined_order(table.id)

    bill = table_service.get_table_bill_summary(table.id)
    assert bill["orders"] == []
    assert bill["combined_order"]["id"] == combined.id


def test_nothing_to_combine(table):
    with pytest.raises(NothingToCombine):
        table_service.create_combined_order(table.id)


def test_combine_unknown_table(db_session):
    with pytest.raises(TableNotFound):
        table_service.create_combined_order(31337)


def test_combine_with_percentage_discount(products, table):
    _table_order(products, table, ("sandwich", 1), discount=50)
    _table_order(products, table, ("coffee", 1))

    combined, _ = table_service.create_combined_order(table.id, discount_type="percentage", discount_value=10)

    # subtotal 1100, source discount 50, extra 10% of subtotal = 110
    assert combined.subtotal_cents == 1100
    assert combined.discount_cents == 160
    assert combined.final_amount_cents == 940


def test_combine_fixed_discount_never_goes_negative(products, table):
    _table_order(products, table, ("coffee", 1))

    combined, _ = table_service.create_combined_order(table.id, discount_type="fixed", discount_value=5000)

    assert combined.discount_cents == 300
    assert combined.final_amount_cents == 0


@pytest.mark.parametrize(
    "discount_type,discount_value",
    [("bogus", 5), ("percentage", 150), ("percentage", -1), ("fixed", -10), ("fixed", 2.5), (None, 10)],
)
def test_combine_rejects_bad_discounts(products, table, discount_type, discount_value):
    _table_order(products, table, ("coffee", 1))
    with pytest.raises(InvalidRequest):
        table_service.create_combined_order(table.id, discount_type=discount_type, discount_value=discount_value)
    assert db.session.query(Order).filter_by(is_combined=True).count() == 0


def test_folded_order_cannot_be_cancelled_while_bill_pending(products, table):
    source = _table_order(products, table, ("coffee", 1))
    table_service.create_combined_order(table.id)

    with pytest.raises(InvalidTransition):
        order_service.update_order_status(source.id, "cancelled")


def test_cancelling_combined_order_releases_sources(products, table):
    source = _table_order(products, table, ("coffee", 1))
    combined, _ = table_service.create_combined_order(table.id)

    order_service.update_order_status(combined.id, "cancelled")

    source = order_service.get_order(source.id)
    assert source.combined_into_order_id is None
    assert f"RELEASED_FROM:{combined.id}" in source.notes
    assert [o.id for o in order_service.get_orders_by_table(table.id)] == [source.id]
    # Combined orders never restock
    assert products["coffee"].stock_quantity == 19

    recombined, created = table_service.create_combined_order(table.id)
    assert created and recombined.id != combined.id


def test_reset_table_closes_open_orders(products, table):
    first = _table_order(products, table, ("coffee", 1))
    second = _table_order(products, table, ("cake", 1))

    result = table_service.reset_table(table.id, cashier_name="Mia")

    assert result["orders_moved_to_total"] == 2
    assert result["table"]["status"] == "available"
    assert result["table"]["current_order_id"] is None
    for order_id, amount in ((first.id, 300), (second.id, 450)):
        order = order_service.get_order(order_id)
        assert (order.order_status, order.payment_status) == ("completed", "completed")
        assert [(p.payment_method, p.amount_cents) for p in order.payments] == [("table_reset", amount)]


def test_reset_table_unfolds_pending_combined_order(products, table):
    source = _table_order(products, table, ("coffee", 1))
    combined, _ = table_service.create_combined_order(table.id)

    result = table_service.reset_table(table.id)

    assert result["cancelled_combined_order_id"] == combined.id
    assert order_service.get_order(combined.id).order_status == "cancelled"
    assert order_service.get_order(source.id).payment_status == "completed"
    assert db.session.query(Payment).filter_by(order_id=combined.id).count() == 0


def test_table_totals_lists_paid_and_transferred_orders(products, table):
    paid = _table_order(products, table, ("coffee", 1))
    parked = _table_order(products, table, ("cake", 1))
    still_open = _table_order(products, table, ("sandwich", 1))

    unpaid_service.add_to_unpaid(parked.id, "Regular Ravi")
    db.session.query(Order).filter_by(id=paid.id).update({"payment_status": "completed"})
    db.session.commit()

    totals = table_service.get_table_totals(table.id)
    by_id = {row["id"]: row["settlement"] for row in totals["orders"]}

    assert by_id == {paid.id: "completed", parked.id: "transferred"}
    assert still_open.id not in by_id
    assert totals["paid_cents"] == 300
    assert totals["transferred_cents"] == 450


def test_refunding_settled_combined_order_restocks_sources(products, table):
    first = _table_order(products, table, ("coffee", 3))
    second = _table_order(products, table, ("cake", 2))
    combined, _ = table_service.create_combined_order(table.id)
    settlement_service.settle_combined_order(combined.id, "cash", 1800)

    # Folded orders stay read-only after settlement too
    with pytest.raises(InvalidTransition):
        order_service.update_order_status(first.id, "refunded")
    assert products["coffee"].stock_quantity == 17

    order_service.update_order_status(combined.id, "refunded")

    assert products["coffee"].stock_quantity == 20
    assert products["cake"].stock_quantity == 5
    for source_id in (first.id, second.id):
        assert order_service.get_order(source_id).order_status == "refunded"
    assert stock_service.verify_stock_reconciliation() == []

    # Terminal: a second refund moves nothing
    order_service.update_order_status(combined.id, "refunded")
    assert products["coffee"].stock_quantity == 20
    refunds = db.session.query(InventoryTransaction).filter_by(reference_type="refund").count()
    assert refunds == 2


def test_unpaid_combined_order_cannot_be_refunded(products, table):
    _table_order(products, table, ("coffee", 1))
    combined, _ = table_service.create_combined_order(table.id)

    with pytest.raises(InvalidTransition):
        order_service.update_order_status(combined.id, "refunded")
    assert order_service.get_order(combined.id).order_status == "active"
    assert products["coffee"].stock_quantity == 19
