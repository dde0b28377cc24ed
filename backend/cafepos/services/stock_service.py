# Overview: Stock ledger; the only code that writes Product.stock_quantity.

"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity is a cached counter; InventoryTransaction rows are
  the ledger. Every write to the counter appends exactly one transaction whose
  quantity_delta equals the change, in the same DB transaction.
- Therefore, per product: stock_quantity == SUM(quantity_delta).
- stock_quantity never goes negative: the check happens on the locked row,
  and the schema carries a CHECK constraint as a backstop.
- Ledger rows are append-only.

Functions taking part in an order (reserve_and_decrement, restore) never
commit; they run inside the caller's transaction scope.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import InsufficientStock, InvalidRequest, ProductNotFound
from ..extensions import db
from ..models import InventoryTransaction, Product
from .concurrency import lock_for_update, run_in_transaction


logger = logging.getLogger(__name__)

TX_SALE = "sale"
TX_PURCHASE = "purchase"
TX_ADJUSTMENT = "adjustment"


def _require_positive(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def get_locked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _append(product: Product, delta: int, transaction_type: str, reference_type: str | None,
            reference_id: int | None, notes: str | None) -> InventoryTransaction:
    product.stock_quantity = product.stock_quantity + delta
    tx = InventoryTransaction(
        product_id=product.id,
        transaction_type=transaction_type,
        quantity_delta=delta,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
    )
    db.session.add(tx)
    return tx


# =============================================================================
# Order-time movements (caller owns the transaction)
# =============================================================================

def reserve_and_decrement(
    product_id: int,
    quantity: int,
    reference_id: int | None = None,
    reference_type: str = "order",
    notes: str | None = None,
) -> InventoryTransaction:
    """
    Check and decrement stock for one sale line.

    The product row is locked first so the availability check and the
    decrement see the same value.

    Raises:
        ProductNotFound: no such product
        InsufficientStock: stock_quantity < quantity
    """
    _require_positive(quantity)
    product = get_locked_product(product_id)

    if product.stock_quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock for {product.name}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "requested": quantity,
                "available": product.stock_quantity,
            },
        )

    tx = _append(product, -quantity, TX_SALE, reference_type, reference_id, notes)
    logger.debug("Stock -%s for product %s (now %s)", quantity, product.id, product.stock_quantity)
    return tx


def restore(
    product_id: int,
    quantity: int,
    reason: str,
    reference_id: int | None = None,
    notes: str | None = None,
) -> InventoryTransaction:
    """Put stock back after a refund or cancellation (positive adjustment)."""
    _require_positive(quantity)
    product = get_locked_product(product_id)
    tx = _append(product, quantity, TX_ADJUSTMENT, reason, reference_id, notes)
    logger.debug("Stock +%s for product %s (%s)", quantity, product.id, reason)
    return tx


# =============================================================================
# Receiving and product registration
# =============================================================================

def receive_stock(product_id: int, quantity: int, notes: str | None = None) -> tuple[Product, InventoryTransaction]:
    """Add delivered stock to a product. Commits."""
    _require_positive(quantity)

    def _op():
        product = get_locked_product(product_id)
        tx = _append(product, quantity, TX_PURCHASE, "manual", None, notes or "Stock received")
        db.session.flush()
        return product, tx

    product, tx = run_in_transaction(_op)
    logger.info("Received %s units of product %s", quantity, product_id)
    return product, tx


def create_product(
    name: str,
    price_cents: int,
    initial_stock: int = 0,
    sku: str | None = None,
    min_stock_level: int = 5,
    description: str | None = None,
) -> Product:
    """
    Register a product, booking any opening stock through the ledger.

    Used by seeding and tests; catalog management lives outside the engine.
    """
    if not name:
        raise InvalidRequest("name is required")
    if price_cents is None or price_cents < 0:
        raise InvalidRequest("price_cents must be >= 0")
    if initial_stock < 0:
        raise InvalidRequest("initial_stock must be >= 0")

    def _op():
        product = Product(
            name=name,
            sku=sku,
            description=description,
            price_cents=price_cents,
            stock_quantity=0,
            min_stock_level=min_stock_level,
            is_active=True,
        )
        db.session.add(product)
        db.session.flush()
        if initial_stock:
            _append(product, initial_stock, TX_PURCHASE, "manual", None, "Opening stock")
        db.session.flush()
        return product

    return run_in_transaction(_op)


# =============================================================================
# Queries
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def get_product_transactions(product_id: int, limit: int | None = None) -> list[InventoryTransaction]:
    """Ledger rows for a product, oldest first."""
    get_product(product_id)
    query = (
        db.session.query(InventoryTransaction)
        .filter_by(product_id=product_id)
        .order_by(InventoryTransaction.id.asc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def verify_stock_reconciliation(product_id: int | None = None) -> list[dict]:
    """
    Products whose counter disagrees with their ledger.

    An empty list means the ledger invariant holds.
    """
    ledger_sum = (
        db.session.query(
            InventoryTransaction.product_id.label("product_id"),
            func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0).label("total"),
        )
        .group_by(InventoryTransaction.product_id)
        .subquery()
    )

    query = (
        db.session.query(Product, func.coalesce(ledger_sum.c.total, 0))
        .outerjoin(ledger_sum, ledger_sum.c.product_id == Product.id)
        .order_by(Product.id.asc())
    )
    if product_id is not None:
        query = query.filter(Product.id == product_id)

    mismatches = []
    for product, total in query.all():
        if product.stock_quantity != int(total):
            mismatches.append({
                "product_id": product.id,
                "product_name": product.name,
                "stock_quantity": product.stock_quantity,
                "ledger_quantity": int(total),
                "difference": product.stock_quantity - int(total),
            })
    return mismatches


def get_low_stock_products() -> list[Product]:
    """Active products at or below their minimum stock level, scarcest first."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.min_stock_level,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
