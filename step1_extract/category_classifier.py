"""
Category Resolver
Attaches category and category-group identifiers to extracted order lines
by exact SKU lookup in the product catalog.
"""

import logging
from dataclasses import replace
from typing import List, Optional

from .models import Catalog, Product, ProductSummary

logger = logging.getLogger(__name__)


class CategoryResolver:
    """
    Catalog-backed category lookup for ProductSummary records.
    Bundles are not split: only the primary (first) SKU is looked up.
    """

    def __init__(self, catalog: Catalog):
        """
        Initialize resolver with a catalog.

        Args:
            catalog: Catalog of products, categories and category groups
        """
        self.catalog = catalog

    def product_for(self, summary: ProductSummary) -> Optional[Product]:
        return self.catalog.product_for_sku(summary.primary_sku)

    def resolve(self, summary: ProductSummary) -> ProductSummary:
        """
        Return a copy of the summary with category fields attached.

        Unmatched SKUs keep empty category fields; the summary still flows
        through sequencing but cannot be deducted.
        """
        product = self.product_for(summary)
        if product is None:
            if summary.sku:
                logger.debug(f"No catalog product for SKU {summary.primary_sku}")
            return replace(summary, category_id=None, category_group_id=None, category=None)

        category = self.catalog.category(product.category_id)
        return replace(
            summary,
            category_id=product.category_id,
            category_group_id=self.catalog.group_for_product(product),
            category=category.name if category else None,
        )

    def resolve_all(self, summaries: List[ProductSummary]) -> List[ProductSummary]:
        resolved = [self.resolve(summary) for summary in summaries]
        matched = sum(1 for summary in resolved if summary.category_id)
        logger.info(f"Resolved categories for {matched}/{len(resolved)} order lines")
        return resolved
