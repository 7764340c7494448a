from .departments import Department
from .inventory import Product, ProductVariant, Ingredient, StockMovement
from .pricing import PricingConfig
from .sales import Sale, SaleItem
from .documents import DocumentSequence

__all__ = [
    'Department',
    'Product', 'ProductVariant', 'Ingredient', 'StockMovement',
    'PricingConfig',
    'Sale', 'SaleItem',
    'DocumentSequence',
]
