from .catalog import Product, PRODUCT_STATUSES
from .sales import SaleTransaction
from .ledger import StockMovement, LedgerImmutableError, MOVEMENT_TYPES, MOVEMENT_SOURCES
from .cash import CashMovement, CASH_MOVEMENT_TYPES

__all__ = [
    'Product', 'PRODUCT_STATUSES',
    'SaleTransaction',
    'StockMovement', 'LedgerImmutableError', 'MOVEMENT_TYPES', 'MOVEMENT_SOURCES',
    'CashMovement', 'CASH_MOVEMENT_TYPES',
]
