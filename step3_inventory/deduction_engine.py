#!/usr/bin/env python3
"""
Inventory Deduction Engine
Applies per-item category-group deductions and accumulates deductions,
warnings and errors; one bad item never stops the rest of the batch.
"""

import logging
from typing import Dict, List, Optional

from step1_extract.errors import InventoryStoreError
from step1_extract.models import (
    CategoryGroup,
    InventoryDeductionItem,
    InventoryDeductionResult,
    InventoryMovement,
)
from .alerts import evaluate_threshold
from .uom_converter import UoMConverter

logger = logging.getLogger(__name__)

ADJUSTMENT_REASONS = (
    'stock_received',
    'stock_damaged',
    'stock_expired',
    'stock_returned',
    'stock_counted',
    'stock_transferred',
    'stock_lost',
    'correction',
    'other',
)

ADJUSTMENT_TYPES = ('increase', 'decrease', 'set')


def format_quantity(value: float) -> str:
    """200.0 -> '200', 1.25 -> '1.25'"""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{round(value, 3)}"


class InventoryService:
    """Category-group inventory operations over an injected store"""

    def __init__(self, store, uom_converter: Optional[UoMConverter] = None, evaluate_alerts: bool = True):
        """
        Args:
            store: Inventory store (see step3_inventory.inventory_store)
            uom_converter: Unit converter (built-in kg/g/pcs table by default)
            evaluate_alerts: Raise/resolve threshold alerts after each change
        """
        self.store = store
        self.uom_converter = uom_converter or UoMConverter()
        self.evaluate_alerts = evaluate_alerts

    def _validate_item(self, item: InventoryDeductionItem, group: Optional[CategoryGroup],
                       result: InventoryDeductionResult) -> Optional[float]:
        """
        Resolve an item against its group

        Returns:
            Quantity in the group's unit, or None after recording an error
        """
        group_id = (item.category_group_id or '').strip()
        if not group_id:
            result.add_error('', 'Missing category group mapping', item.quantity,
                             'Product SKU must be mapped to a category group before inventory deduction')
            return None

        if group is None:
            result.add_error(group_id, 'Category group not found', item.quantity,
                             'The specified category group does not exist in the system')
            return None

        try:
            quantity = float(item.quantity)
        except (TypeError, ValueError):
            quantity = None
        if quantity is None or quantity <= 0:
            result.add_error(group_id, 'Invalid deduction quantity', item.quantity,
                             'Deduction quantity must be greater than zero')
            return None

        if not self.uom_converter.are_compatible(item.unit, group.inventory_unit):
            result.add_error(group_id, 'Unit mismatch', item.quantity,
                             f"Order item unit ({item.unit}) does not match category group unit "
                             f"({group.inventory_unit})")
            return None

        return self.uom_converter.convert(quantity, item.unit, group.inventory_unit)

    def _check_shortfall(self, group: CategoryGroup, quantity: float, available: float,
                         result: InventoryDeductionResult) -> None:
        if quantity > available:
            unit = group.inventory_unit
            result.add_warning(
                group.id,
                f"Insufficient inventory: requested {format_quantity(quantity)}{unit}, "
                f"available {format_quantity(available)}{unit}",
                quantity,
                available,
            )

    def _evaluate_alerts(self, group: CategoryGroup, new_level: float) -> None:
        if not self.evaluate_alerts:
            return
        try:
            evaluate_threshold(self.store, group, new_level)
        except Exception as e:
            logger.warning(f"Alert evaluation failed for group {group.id}: {e}", exc_info=True)

    def deduct_inventory_from_order(self, items: List[InventoryDeductionItem], reason: Optional[str] = None,
                                    notes: Optional[str] = None) -> InventoryDeductionResult:
        """
        Deduct each item from its category group

        Insufficient stock is still deducted (levels may go negative) and
        reported as a warning; unresolvable items are reported as errors.

        Args:
            items: Deduction requests
            reason: Movement reason recorded on every movement
            notes: Movement notes recorded on every movement

        Returns:
            InventoryDeductionResult with one deduction or one error per item
        """
        result = InventoryDeductionResult()

        for item in items:
            group_id = (item.category_group_id or '').strip()
            try:
                group = self.store.get_category_group(group_id) if group_id else None
                quantity = self._validate_item(item, group, result)
                if quantity is None:
                    continue

                movement = self.store.update_inventory(
                    group_id,
                    -quantity,
                    'deduction',
                    group.inventory_unit,
                    transaction_reference=item.transaction_reference,
                    order_reference=item.order_reference,
                    product_sku=item.product_sku,
                    platform=item.platform,
                    reason=reason,
                    notes=notes,
                )
            except Exception as e:
                logger.error(f"Deduction failed for {item.product_sku or group_id}: {e}", exc_info=True)
                result.add_error(group_id, 'Inventory update failed', item.quantity, str(e))
                continue

            self._check_shortfall(group, quantity, movement.previous_inventory, result)
            result.add_deduction(group_id, quantity, quantity, movement.new_inventory, movement.id)
            self._evaluate_alerts(group, movement.new_inventory)

        logger.info(
            f"Deducted {len(result.deductions)}/{len(items)} items "
            f"({len(result.warnings)} warnings, {len(result.errors)} errors)"
        )
        return result

    def preview_deductions(self, items: List[InventoryDeductionItem]) -> InventoryDeductionResult:
        """
        Same resolution and arithmetic as deduct_inventory_from_order without persisting

        Projected levels carry over between items of the same group.
        """
        result = InventoryDeductionResult()
        projected: Dict[str, float] = {}

        for item in items:
            group_id = (item.category_group_id or '').strip()
            try:
                group = self.store.get_category_group(group_id) if group_id else None
            except Exception as e:
                logger.warning(f"Inventory lookup failed for {group_id}: {e}")
                result.add_error(group_id, 'Inventory lookup failed', item.quantity, str(e))
                continue

            quantity = self._validate_item(item, group, result)
            if quantity is None:
                continue

            available = projected.get(group_id, group.current_inventory)
            new_level = available - quantity
            projected[group_id] = new_level
            self._check_shortfall(group, quantity, available, result)
            result.add_deduction(group_id, quantity, quantity, new_level, None)

        return result

    def adjust_inventory_manually(self, category_group_id: str, adjustment_type: str, quantity: float,
                                  reason: str, notes: Optional[str] = None,
                                  adjusted_by: Optional[str] = None) -> InventoryMovement:
        """
        Increase, decrease or set a group's level with a reason code

        Args:
            category_group_id: Group to adjust
            adjustment_type: 'increase', 'decrease' or 'set'
            quantity: Amount (or new level for 'set'), in the group's unit
            reason: One of ADJUSTMENT_REASONS
            notes: Free-form notes
            adjusted_by: User id

        Returns:
            The movement recorded

        Raises:
            ValueError: for an unknown type/reason or a negative quantity
            InventoryStoreError: when the group does not exist
        """
        if adjustment_type not in ADJUSTMENT_TYPES:
            raise ValueError(f"Unknown adjustment type: {adjustment_type}")
        if reason not in ADJUSTMENT_REASONS:
            raise ValueError(f"Unknown adjustment reason: {reason}")
        if quantity is None or float(quantity) < 0:
            raise ValueError("Adjustment quantity must not be negative")

        group = self.store.get_category_group(category_group_id)
        if group is None:
            raise InventoryStoreError(f"Category group not found: {category_group_id}")

        quantity = float(quantity)
        references = {'reason': reason, 'notes': notes, 'adjusted_by': adjusted_by}
        if adjustment_type == 'increase':
            movement = self.store.update_inventory(category_group_id, quantity, 'addition',
                                                   group.inventory_unit, **references)
        elif adjustment_type == 'decrease':
            movement = self.store.update_inventory(category_group_id, -quantity, 'adjustment',
                                                   group.inventory_unit, **references)
        else:
            movement = self.store.update_inventory(category_group_id, 0, 'adjustment',
                                                   group.inventory_unit, set_level=quantity, **references)

        logger.info(f"Manual {adjustment_type} on {category_group_id}: "
                    f"{movement.previous_inventory} -> {movement.new_inventory} ({reason})")
        self._evaluate_alerts(group, movement.new_inventory)
        return movement

    def get_movements(self, category_group_id: Optional[str] = None, movement_type: Optional[str] = None,
                      order_reference: Optional[str] = None, platform: Optional[str] = None) -> List[InventoryMovement]:
        return self.store.get_movements(
            category_group_id=category_group_id,
            movement_type=movement_type,
            order_reference=order_reference,
            platform=platform,
        )

    def get_active_alerts(self, category_group_id: Optional[str] = None):
        return self.store.get_active_alerts(category_group_id)
