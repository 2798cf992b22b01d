#!/usr/bin/env python3
"""
Data model shared by all pipeline stages
Records serialise with camelCase keys (to_dict) to match the order manifest format
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

BUNDLE_JOIN_MARKER = ' && '


@dataclass
class TextFragment:
    """One positioned text run; y is PDF user space (grows upwards)"""
    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0


@dataclass
class BatchInfo:
    batch_id: str
    platform: str
    file_name: str
    order_count: int = 0
    uploaded_at: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'batchId': self.batch_id,
            'uploadedAt': self.uploaded_at,
            'fileName': self.file_name,
            'description': self.description,
            'platform': self.platform,
            'orderCount': self.order_count,
            'metadata': dict(self.metadata),
        }


@dataclass
class ProductSummary:
    """One extracted order line (one printed label)"""
    name: str
    quantity: str
    type: str
    sku: str = ''
    order_id: Optional[str] = None
    category_id: Optional[str] = None
    category_group_id: Optional[str] = None
    category: Optional[str] = None
    batch_info: Optional[BatchInfo] = None
    barcode_id: Optional[str] = None

    @property
    def skus(self) -> List[str]:
        """SKUs of a bundle label, in label order"""
        return [part.strip() for part in self.sku.split(BUNDLE_JOIN_MARKER.strip()) if part.strip()]

    @property
    def primary_sku(self) -> str:
        skus = self.skus
        return skus[0] if skus else ''

    @property
    def is_bundle(self) -> bool:
        return len(self.skus) > 1

    def quantity_as_int(self, default: int = 0) -> int:
        """Vendors emit quantity as text; unparseable values fall back to default"""
        try:
            return int(float(str(self.quantity).strip()))
        except (TypeError, ValueError):
            return default

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'quantity': self.quantity,
            'SKU': self.sku,
            'type': self.type,
            'orderId': self.order_id,
            'categoryId': self.category_id,
            'categoryGroupId': self.category_group_id,
            'category': self.category,
            'barcodeId': self.barcode_id,
        }
        if self.batch_info:
            data['batchInfo'] = self.batch_info.to_dict()
        return data


@dataclass
class Product:
    sku: str
    name: str = ''
    category_id: Optional[str] = None
    category_group_id: Optional[str] = None


@dataclass
class Category:
    id: str
    name: str
    category_group_id: Optional[str] = None
    inventory_deduction_quantity: Optional[float] = None
    inventory_unit: Optional[str] = None
    linked_category_ids: List[str] = field(default_factory=list)


@dataclass
class CategoryGroup:
    """A stock pool shared by one or more categories"""
    id: str
    name: str
    current_inventory: float = 0.0
    inventory_unit: str = 'pcs'
    inventory_type: str = 'qty'
    minimum_threshold: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'currentInventory': self.current_inventory,
            'inventoryUnit': self.inventory_unit,
            'inventoryType': self.inventory_type,
            'minimumThreshold': self.minimum_threshold,
        }


@dataclass
class InventoryDeductionItem:
    category_group_id: str
    quantity: float
    unit: str = 'pcs'
    product_sku: str = ''
    order_reference: Optional[str] = None
    transaction_reference: Optional[str] = None
    platform: Optional[str] = None


@dataclass
class InventoryMovement:
    """Append-only audit row for one stock change"""
    category_group_id: str
    movement_type: str
    quantity: float
    unit: str
    previous_inventory: float
    new_inventory: float
    id: Optional[str] = None
    transaction_reference: Optional[str] = None
    order_reference: Optional[str] = None
    product_sku: Optional[str] = None
    platform: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    adjusted_by: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'categoryGroupId': self.category_group_id,
            'movementType': self.movement_type,
            'quantity': self.quantity,
            'unit': self.unit,
            'previousInventory': self.previous_inventory,
            'newInventory': self.new_inventory,
            'transactionReference': self.transaction_reference,
            'orderReference': self.order_reference,
            'productSku': self.product_sku,
            'platform': self.platform,
            'reason': self.reason,
            'notes': self.notes,
            'adjustedBy': self.adjusted_by,
            'createdAt': self.created_at,
        }


@dataclass
class InventoryAlert:
    category_group_id: str
    alert_type: str
    current_level: float
    threshold_level: float
    unit: str
    severity: str
    is_active: bool = True
    id: Optional[str] = None
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None
    acknowledged_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'categoryGroupId': self.category_group_id,
            'alertType': self.alert_type,
            'currentLevel': self.current_level,
            'thresholdLevel': self.threshold_level,
            'unit': self.unit,
            'severity': self.severity,
            'isActive': self.is_active,
            'createdAt': self.created_at,
            'resolvedAt': self.resolved_at,
            'acknowledgedBy': self.acknowledged_by,
        }


@dataclass
class InventoryDeductionResult:
    """
    Accumulated outcome of a deduction batch

    Each input item lands in exactly one of deductions or errors; an
    insufficient-stock item is in deductions AND has a matching warning.
    """
    deductions: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add_deduction(self, category_group_id: str, requested: float, deducted: float,
                      new_level: float, movement_id: Optional[str]) -> None:
        self.deductions.append({
            'categoryGroupId': category_group_id,
            'requestedQuantity': requested,
            'deductedQuantity': deducted,
            'newInventoryLevel': new_level,
            'movementId': movement_id,
        })

    def add_warning(self, category_group_id: str, warning: str, requested: float, available: float) -> None:
        self.warnings.append({
            'categoryGroupId': category_group_id,
            'warning': warning,
            'requestedQuantity': requested,
            'availableQuantity': available,
        })

    def add_error(self, category_group_id: str, error: str, requested: float, reason: str) -> None:
        self.errors.append({
            'categoryGroupId': category_group_id,
            'error': error,
            'requestedQuantity': requested,
            'reason': reason,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deductions': list(self.deductions),
            'warnings': list(self.warnings),
            'errors': list(self.errors),
        }


@dataclass
class InventoryDeductionPreview:
    """Dry-run view of what a batch would deduct"""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total_deductions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    result: InventoryDeductionResult = field(default_factory=InventoryDeductionResult)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': list(self.items),
            'totalDeductions': dict(self.total_deductions),
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'result': self.result.to_dict(),
        }


@dataclass
class BarcodeResult:
    barcode_id: str
    qr_code_data_url: str
    qr_code_content: str
    generated_at: str
    image_png: bytes = b''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'barcodeId': self.barcode_id,
            'qrCodeDataUrl': self.qr_code_data_url,
            'qrCodeContent': self.qr_code_content,
            'generatedAt': self.generated_at,
        }


class Catalog:
    """Read-only product/category/category-group lookups"""

    def __init__(self, products: Optional[List[Product]] = None,
                 categories: Optional[List[Category]] = None,
                 category_groups: Optional[List[CategoryGroup]] = None):
        self.products = list(products or [])
        self.categories = list(categories or [])
        self.category_groups = list(category_groups or [])
        self._products_by_sku = {p.sku: p for p in self.products}
        self._categories_by_id = {c.id: c for c in self.categories}
        self._groups_by_id = {g.id: g for g in self.category_groups}
        self._category_rank = {c.id: index for index, c in enumerate(self.categories)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Catalog':
        """Build from the catalog YAML/JSON layout (camelCase keys)"""
        products = [
            Product(
                sku=str(p['sku']),
                name=p.get('name', ''),
                category_id=p.get('categoryId'),
                category_group_id=p.get('categoryGroupId'),
            )
            for p in data.get('products', []) or []
        ]
        categories = [
            Category(
                id=str(c['id']),
                name=c.get('name', ''),
                category_group_id=c.get('categoryGroupId'),
                inventory_deduction_quantity=c.get('inventoryDeductionQuantity'),
                inventory_unit=c.get('inventoryUnit'),
                linked_category_ids=list(c.get('linkedCategoryIds', []) or []),
            )
            for c in data.get('categories', []) or []
        ]
        groups = [
            CategoryGroup(
                id=str(g['id']),
                name=g.get('name', ''),
                current_inventory=float(g.get('currentInventory', 0) or 0),
                inventory_unit=g.get('inventoryUnit', 'pcs'),
                inventory_type=g.get('inventoryType', 'qty'),
                minimum_threshold=float(g.get('minimumThreshold', 0) or 0),
            )
            for g in data.get('categoryGroups', []) or []
        ]
        return cls(products, categories, groups)

    def product_for_sku(self, sku: Optional[str]) -> Optional[Product]:
        if not sku:
            return None
        return self._products_by_sku.get(sku)

    def category(self, category_id: Optional[str]) -> Optional[Category]:
        if not category_id:
            return None
        return self._categories_by_id.get(category_id)

    def category_group(self, group_id: Optional[str]) -> Optional[CategoryGroup]:
        if not group_id:
            return None
        return self._groups_by_id.get(group_id)

    def category_rank(self, category_id: Optional[str]) -> int:
        """Position of a category in the catalog; unknown ids sort last"""
        return self._category_rank.get(category_id, len(self._category_rank))

    def group_for_product(self, product: Optional[Product]) -> Optional[str]:
        """Category group of a product: the category's group wins over the product's own"""
        if product is None:
            return None
        category = self.category(product.category_id)
        if category and category.category_group_id:
            return category.category_group_id
        return product.category_group_id
