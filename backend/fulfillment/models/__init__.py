from .enums import OrderStatus, PaymentStatus, StockTxType, EvidenceOutcome, DeliveryType, PaymentMethod
from .catalog import Branch, Product, ProductVariant, Ingredient, RecipeLine
from .orders import Order, OrderLineItem, OrderStatusEvent, OrderNumberSequence, DeliverySlotBooking
from .inventory import StockTransaction
from .payments import PaymentEvidence

__all__ = [
    'OrderStatus', 'PaymentStatus', 'StockTxType', 'EvidenceOutcome', 'DeliveryType', 'PaymentMethod',
    'Branch', 'Product', 'ProductVariant', 'Ingredient', 'RecipeLine',
    'Order', 'OrderLineItem', 'OrderStatusEvent', 'OrderNumberSequence', 'DeliverySlotBooking',
    'StockTransaction',
    'PaymentEvidence',
]
