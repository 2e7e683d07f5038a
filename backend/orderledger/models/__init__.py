from .catalog import Product, ProductVariant
from .inventory import InventoryLog
from .orders import Order, OrderItem, OrderStatusHistory, OrderNumberSequence
from .payments import PaymentTransaction, Refund

__all__ = [
    'Product', 'ProductVariant',
    'InventoryLog',
    'Order', 'OrderItem', 'OrderStatusHistory', 'OrderNumberSequence',
    'PaymentTransaction', 'Refund',
]
