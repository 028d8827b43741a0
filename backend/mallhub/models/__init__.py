from .catalog import Shop, Product, Promotion, promotion_products
from .commerce import Cart, CartItem, Order, OrderLine
from .boxes import Box, BoxHistory
from .leases import LeasePayment

__all__ = [
    'Shop', 'Product', 'Promotion', 'promotion_products',
    'Cart', 'CartItem', 'Order', 'OrderLine',
    'Box', 'BoxHistory',
    'LeasePayment',
]
