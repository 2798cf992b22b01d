#!/usr/bin/env python3
"""
Page Sequencer - Order label pages by category and copy them into the output PDF
Each selected label page is cropped per platform layout and annotated with a footer
"""

import logging
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Dict, Any, List, Optional

import fitz  # PyMuPDF

from step1_extract.category_classifier import CategoryResolver
from step1_extract.errors import PDFLoadError
from step1_extract.models import ProductSummary

logger = logging.getLogger(__name__)

SORT_FIELDS = ('sku', 'name', 'quantity', 'category')


@dataclass
class SortConfig:
    primary_sort: str = 'category'
    secondary_sort: str = 'sku'
    sort_order: str = 'asc'
    group_by_category: bool = True
    prioritize_active_categories: bool = False
    sort_categories_alphabetically: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SortConfig':
        """Build from the camelCase sort configuration object; unknown keys are ignored"""
        data = data or {}
        defaults = cls()
        return cls(
            primary_sort=data.get('primarySort', defaults.primary_sort),
            secondary_sort=data.get('secondarySort', defaults.secondary_sort),
            sort_order=data.get('sortOrder', defaults.sort_order),
            group_by_category=bool(data.get('groupByCategory', defaults.group_by_category)),
            prioritize_active_categories=bool(
                data.get('prioritizeActiveCategories', defaults.prioritize_active_categories)),
            sort_categories_alphabetically=bool(
                data.get('sortCategoriesAlphabetically', defaults.sort_categories_alphabetically)),
        )


@dataclass
class SequencedPage:
    """A label page of the source document and the order line parsed for it"""
    label_page_index: int
    data_page_index: int
    summary: ProductSummary


def open_document(pdf_bytes: bytes) -> fitz.Document:
    """
    Open PDF bytes with PyMuPDF

    Raises:
        PDFLoadError: when the bytes are empty or not a readable PDF
    """
    if not pdf_bytes:
        raise PDFLoadError("Empty PDF byte buffer")
    try:
        return fitz.open(stream=pdf_bytes, filetype='pdf')
    except Exception as e:
        raise PDFLoadError(f"Could not open PDF: {e}") from e


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


class PageSequencer:
    """Sort parsed label pages and assemble the relabelled output pages"""

    def __init__(self, resolver: CategoryResolver, sort_config: Optional[SortConfig] = None,
                 rule_loader=None):
        """
        Args:
            resolver: CategoryResolver used for catalog product names and category ranks
            sort_config: Ordering options (defaults to SortConfig())
            rule_loader: Optional RuleLoader for shared footer settings
        """
        self.resolver = resolver
        self.sort_config = sort_config or SortConfig()
        footer = rule_loader.get_shared_section('footer') if rule_loader else {}
        self.fontname = footer.get('fontname', 'helv')
        self.footer_template = footer.get('template', '{quantity} X [{label}]')
        self.uncategorized_label = footer.get('uncategorized_label', 'Uncategorized')

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def _field_value(self, summary: ProductSummary, field_name: str):
        if field_name == 'quantity':
            return summary.quantity_as_int()
        if field_name == 'name':
            return (summary.name or '').casefold()
        if field_name == 'category':
            return (summary.category or '').casefold()
        return summary.sku or ''

    def _compare_fields(self, a: ProductSummary, b: ProductSummary, fields: List[str]) -> int:
        direction = -1 if self.sort_config.sort_order == 'desc' else 1
        for field_name in fields:
            result = _cmp(self._field_value(a, field_name), self._field_value(b, field_name))
            if result:
                return direction * result
        return 0

    def _compare_categories(self, a: ProductSummary, b: ProductSummary) -> int:
        if a.category == b.category:
            return 0
        # Uncategorized always last
        if not a.category:
            return 1
        if not b.category:
            return -1
        if self.sort_config.prioritize_active_categories:
            active = _cmp(bool(b.category_group_id), bool(a.category_group_id))
            if active:
                return active
        if self.sort_config.sort_categories_alphabetically:
            return _cmp(a.category.casefold(), b.category.casefold()) or _cmp(a.category, b.category)
        catalog = self.resolver.catalog
        return _cmp(catalog.category_rank(a.category_id), catalog.category_rank(b.category_id))

    def compare(self, a: SequencedPage, b: SequencedPage) -> int:
        """Comparator over sequenced pages following the sort configuration"""
        config = self.sort_config
        if config.group_by_category:
            result = self._compare_categories(a.summary, b.summary)
            if result:
                return result
            tie_break = config.secondary_sort if config.secondary_sort != 'category' else 'sku'
            return self._compare_fields(a.summary, b.summary, [tie_break])

        primary = config.primary_sort if config.primary_sort in SORT_FIELDS and config.primary_sort != 'category' else 'sku'
        fields = [primary]
        if config.secondary_sort in SORT_FIELDS and config.secondary_sort not in fields:
            fields.append(config.secondary_sort)
        return self._compare_fields(a.summary, b.summary, fields)

    def sort_pages(self, pages: List[SequencedPage]) -> List[SequencedPage]:
        """
        Stable sort of parsed pages; a failing comparator keeps the input order

        Args:
            pages: Pages in source order

        Returns:
            New list in output order
        """
        try:
            return sorted(pages, key=cmp_to_key(self.compare))
        except Exception as e:
            logger.warning(f"Page sorting failed, keeping original order: {e}", exc_info=True)
            return list(pages)

    # ------------------------------------------------------------------
    # Page assembly
    # ------------------------------------------------------------------

    def footer_text(self, summary: ProductSummary, page_rules: Dict[str, Any]) -> str:
        """Footer annotation: '{quantity} X [{category or name}]' plus catalog name where configured"""
        label = summary.category or summary.name or self.uncategorized_label
        text = self.footer_template.format(quantity=summary.quantity, label=label)
        if summary.category and page_rules.get('append_product_name'):
            product = self.resolver.product_for(summary)
            product_name = (product.name if product and product.name else summary.name) or ''
            limit = int(page_rules.get('product_name_limit', 80))
            if product_name:
                text = f"{text} {product_name[:limit]}"
        return text

    @staticmethod
    def crop_rect(page_rect: fitz.Rect, crop: Optional[Dict[str, Any]]) -> fitz.Rect:
        """
        Visible area of a label page in PyMuPDF coordinates (origin top-left)

        Crop rules are given in PDF units: a left margin, a bottom edge
        measured up from the page middle and a top margin.
        """
        if not crop:
            return fitz.Rect(page_rect)
        width, height = page_rect.width, page_rect.height
        left = float(crop.get('left', 0))
        top_margin = float(crop.get('top_margin', 0))
        bottom = height / 2 + float(crop.get('bottom_offset_from_middle', 0))
        # PDF (left, bottom, right, top) -> fitz (x0, y0, x1, y1)
        return fitz.Rect(left, top_margin, width, height - bottom)

    def _fit_text(self, text: str, fontsize: float, max_width: float) -> str:
        while text and fitz.get_text_length(text, fontname=self.fontname, fontsize=fontsize) > max_width:
            text = text[:-1]
        return text

    def _draw_footer(self, page: fitz.Page, summary: ProductSummary, page_rules: Dict[str, Any]) -> None:
        fontsize = float(page_rules.get('footer_font_size', 12))
        x = float(page_rules.get('footer_x', 10))
        y = float(page_rules.get('footer_y', 20))
        text = self._fit_text(self.footer_text(summary, page_rules), fontsize, page.rect.width - x)
        page.insert_text(fitz.Point(x, y), text, fontsize=fontsize, fontname=self.fontname, color=(0, 0, 0))

    def render(self, source: fitz.Document, pages: List[SequencedPage],
               page_rules: Dict[str, Any], output: fitz.Document) -> List[SequencedPage]:
        """
        Copy each label page once into the output document and annotate it

        Args:
            source: Opened source document
            pages: Pages in output order
            page_rules: Platform crop/footer rules
            output: Document receiving the pages

        Returns:
            Pages actually emitted, aligned with the output pages added by this call
        """
        processed_pages = set()
        emitted = []
        for entry in pages:
            label_index = entry.label_page_index
            if label_index in processed_pages:
                logger.debug(f"Skipping already emitted label page {label_index}")
                continue
            processed_pages.add(label_index)

            try:
                src_page = source[label_index]
                clip = self.crop_rect(src_page.rect, page_rules.get('crop'))
                new_page = output.new_page(width=clip.width, height=clip.height)
                new_page.show_pdf_page(new_page.rect, source, label_index, clip=clip)
            except Exception as e:
                logger.warning(f"Could not copy label page {label_index}: {e}")
                continue

            try:
                self._draw_footer(new_page, entry.summary, page_rules)
            except Exception as e:
                logger.warning(f"Could not annotate label page {label_index}: {e}")

            emitted.append(entry)

        logger.info(f"Emitted {len(emitted)} label pages")
        return emitted
