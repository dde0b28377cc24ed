from .inventory import Product, InventoryTransaction
from .customers import Customer
from .tables import DiningTable
from .orders import Order, OrderItem, Payment, UnpaidOrderEntry
from .documents import DocumentSequence
from .auth import User, SessionToken

__all__ = [
    'Product', 'InventoryTransaction',
    'Customer',
    'DiningTable',
    'Order', 'OrderItem', 'Payment', 'UnpaidOrderEntry',
    'DocumentSequence',
    'User', 'SessionToken',
]
