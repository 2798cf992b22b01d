"""
Step 3: Inventory Deduction
Maps extracted order lines to category-group stock pools and applies
unit-aware deductions with movements and threshold alerts.
"""

from .uom_converter import UoMConverter
from .inventory_store import InMemoryInventoryStore, SQLiteInventoryStore
from .alerts import calculate_severity, evaluate_threshold
from .deduction_engine import InventoryService
from .order_processor import InventoryOrderProcessor
from .batch_tracker import BatchTracker

__all__ = [
    'UoMConverter',
    'InMemoryInventoryStore',
    'SQLiteInventoryStore',
    'calculate_severity',
    'evaluate_threshold',
    'InventoryService',
    'InventoryOrderProcessor',
    'BatchTracker',
]
