from .batches import VariantBatch, VariantBatchAllocation
from .commerce import (
    Order, OrderLineItem, Payment,
    ProductVariant, InventoryItem, VariantInventoryItem,
    StockLocation, InventoryLevel,
    PriceList, PriceListRule, Price,
    StoreSetting,
)

__all__ = [
    'VariantBatch', 'VariantBatchAllocation',
    'Order', 'OrderLineItem', 'Payment',
    'ProductVariant', 'InventoryItem', 'VariantInventoryItem',
    'StockLocation', 'InventoryLevel',
    'PriceList', 'PriceListRule', 'Price',
    'StoreSetting',
]
