# app/models/__init__.py
"""
Modèles persistants de la synchronisation
"""

from .product import Product
from .sale import Sale
from .stock_movement import StockMovement
from .sync_conflict import SyncConflict
from .sync_log import SyncLog

__all__ = [
    'Product',
    'Sale',
    'StockMovement',
    'SyncConflict',
    'SyncLog',
]
