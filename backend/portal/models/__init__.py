from .auth import User, SessionToken
from .security import SecurityEvent
from .partners import Partner, PartnerUser, PartnerPrice
from .catalog import Product
from .quotes import Quote, QuoteItem
from .orders import Order, OrderItem, OrderStatusHistory

__all__ = [
    'User', 'SessionToken', 'SecurityEvent',
    'Partner', 'PartnerUser', 'PartnerPrice',
    'Product',
    'Quote', 'QuoteItem',
    'Order', 'OrderItem', 'OrderStatusHistory',
]
