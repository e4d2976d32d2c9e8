from .tenancy import Store
from .inventory import Product, StockMovement
from .customers import Customer
from .sales import Sale, SaleLine
from .documents import DocumentSequence, ActivityLog

__all__ = [
    'Store',
    'Product', 'StockMovement',
    'Customer',
    'Sale', 'SaleLine',
    'DocumentSequence', 'ActivityLog',
]
