#!/usr/bin/env python3
"""
Order Processor - Turn extracted order lines into category-group deductions
Deduction amount = ordered quantity x the category's per-unit deduction quantity
"""

import logging
from typing import Dict, Any, List, Optional

from step1_extract.models import (
    Catalog,
    Category,
    InventoryDeductionItem,
    InventoryDeductionPreview,
    InventoryDeductionResult,
    ProductSummary,
)
from .deduction_engine import InventoryService

logger = logging.getLogger(__name__)

BUNDLE_MODES = ('primary_only', 'split_all')


class InventoryOrderProcessor:
    """Build deduction items from ProductSummary records and run them"""

    def __init__(self, catalog: Catalog, inventory_service: InventoryService,
                 bundle_mode: str = 'primary_only', enable_cascade: bool = False):
        """
        Args:
            catalog: Product/category/category-group catalog
            inventory_service: Engine applying the deductions
            bundle_mode: 'primary_only' deducts a bundle's first SKU,
                         'split_all' deducts every bundled SKU
            enable_cascade: Also deduct from categories linked to the ordered category
        """
        if bundle_mode not in BUNDLE_MODES:
            raise ValueError(f"Unknown bundle mode: {bundle_mode}")
        self.catalog = catalog
        self.inventory_service = inventory_service
        self.bundle_mode = bundle_mode
        self.enable_cascade = enable_cascade

    @staticmethod
    def _per_unit_quantity(category: Optional[Category]) -> float:
        if category is None or category.inventory_deduction_quantity is None:
            return 1.0
        return float(category.inventory_deduction_quantity)

    def _skus_for(self, summary: ProductSummary) -> List[str]:
        if self.bundle_mode == 'split_all':
            return summary.skus or ['']
        return [summary.primary_sku]

    def _item(self, summary: ProductSummary, sku: str, group_id: str, quantity: float,
              unit: Optional[str]) -> InventoryDeductionItem:
        return InventoryDeductionItem(
            category_group_id=group_id,
            quantity=quantity,
            unit=unit or 'pcs',
            product_sku=sku,
            order_reference=summary.order_id,
            transaction_reference=summary.batch_info.batch_id if summary.batch_info else None,
            platform=summary.type,
        )

    def _cascade_items(self, summary: ProductSummary, sku: str, category: Category,
                       ordered: int) -> List[InventoryDeductionItem]:
        items = []
        for linked_id in category.linked_category_ids:
            linked = self.catalog.category(linked_id)
            if linked is None or not linked.category_group_id:
                logger.debug(f"Skipping linked category {linked_id} without a category group")
                continue
            per_unit = float(linked.inventory_deduction_quantity or 0)
            if per_unit <= 0:
                continue
            items.append(self._item(summary, sku, linked.category_group_id, ordered * per_unit,
                                    linked.inventory_unit))
        return items

    def build_deduction_items(self, summaries: List[ProductSummary]) -> List[InventoryDeductionItem]:
        """
        Map order lines to deduction items

        Lines without a SKU or without a category group become items with an
        empty group so the engine reports them as errors. Mapped lines with a
        zero quantity, or whose category deducts zero per unit, are skipped.
        """
        items: List[InventoryDeductionItem] = []
        for summary in summaries:
            ordered = summary.quantity_as_int()
            for sku in self._skus_for(summary):
                product = self.catalog.product_for_sku(sku)
                group_id = self.catalog.group_for_product(product) or ''
                if not group_id:
                    items.append(self._item(summary, sku, '', float(ordered), 'pcs'))
                    continue

                category = self.catalog.category(product.category_id)
                per_unit = self._per_unit_quantity(category)
                if ordered <= 0 or per_unit <= 0:
                    logger.debug(f"No deduction for {sku}: quantity {ordered} x {per_unit}")
                    continue

                items.append(self._item(summary, sku, group_id, ordered * per_unit,
                                        category.inventory_unit if category else None))
                if self.enable_cascade and category is not None:
                    items.extend(self._cascade_items(summary, sku, category, ordered))
        return items

    @staticmethod
    def _movement_context(items: List[InventoryDeductionItem]) -> Dict[str, str]:
        skus = sorted({item.product_sku for item in items if item.product_sku})
        return {
            'reason': f"Order processing deduction for {len(items)} item(s)",
            'notes': f"SKUs: {', '.join(skus)}",
        }

    def process_order_with_category_deduction(self, summaries: List[ProductSummary]) -> InventoryDeductionResult:
        """
        Deduct inventory for all extracted order lines

        Returns:
            InventoryDeductionResult from the engine
        """
        items = self.build_deduction_items(summaries)
        if not items:
            logger.info("No deduction items for this batch")
            return InventoryDeductionResult()
        return self.inventory_service.deduct_inventory_from_order(items, **self._movement_context(items))

    def preview_category_deductions(self, summaries: List[ProductSummary]) -> InventoryDeductionPreview:
        """
        Dry run: what process_order_with_category_deduction would deduct

        Returns:
            InventoryDeductionPreview with per-item rows, per-group totals and messages
        """
        items = self.build_deduction_items(summaries)
        result = self.inventory_service.preview_deductions(items)
        preview = InventoryDeductionPreview(result=result)

        for item in items:
            group = self.catalog.category_group(item.category_group_id)
            preview.items.append({
                'productSku': item.product_sku,
                'categoryGroupId': item.category_group_id,
                'categoryGroupName': group.name if group else None,
                'quantity': item.quantity,
                'unit': item.unit,
                'orderReference': item.order_reference,
                'platform': item.platform,
            })

        for deduction in result.deductions:
            group_id = deduction['categoryGroupId']
            total = preview.total_deductions.get(group_id)
            if total is None:
                group = self.inventory_service.store.get_category_group(group_id)
                total = preview.total_deductions[group_id] = {
                    'categoryGroupName': group.name if group else None,
                    'totalQuantity': 0.0,
                    'unit': group.inventory_unit if group else None,
                    'currentInventory': group.current_inventory if group else None,
                }
            total['totalQuantity'] += deduction['deductedQuantity']
            total['projectedInventory'] = deduction['newInventoryLevel']

        preview.warnings = [warning['warning'] for warning in result.warnings]
        preview.errors = [f"{error['error']}: {error['reason']}" for error in result.errors]
        return preview
