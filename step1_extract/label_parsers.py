#!/usr/bin/env python3
"""
Label Parsers - Marketplace-specific heuristics over reconstructed lines
Each parser turns the lines of one data page into a ProductSummary and never
raises for an unrecognised layout; it degrades to empty/default values.
"""

import re
import logging
from typing import Dict, Any, List, Optional, Tuple, Type

from .errors import UnknownPlatformError
from .models import ProductSummary, BUNDLE_JOIN_MARKER

logger = logging.getLogger(__name__)


class LabelParser:
    """
    Common capability of every marketplace parser: (lines) -> ProductSummary

    Layout rules come from the platform's YAML file merged over shared.yaml.
    """

    platform = ''

    def __init__(self, rule_loader=None, layout_rules: Optional[Dict[str, Any]] = None):
        """
        Args:
            rule_loader: RuleLoader instance (layout rules read from it when given)
            layout_rules: Explicit layout rules, mainly for tests
        """
        if layout_rules is None:
            layout_rules = rule_loader.get_layout_rules(self.platform) if rule_loader else {}
        self.layout_rules = layout_rules or {}
        self.join_marker = (self.layout_rules.get('bundle', {}) or {}).get('join_marker', BUNDLE_JOIN_MARKER)

    @property
    def page_rules(self) -> Dict[str, Any]:
        """Crop/footer settings used by the page sequencer"""
        return self.layout_rules.get('page', {}) or {}

    def page_pairs(self, page_count: int) -> List[Tuple[int, int]]:
        """
        Pair each data page with the label page that gets printed

        Returns:
            List of (label_page_index, data_page_index); each label index once
        """
        pairing = self.layout_rules.get('page_pairing', {}) or {}
        if not pairing.get('enabled', False):
            return [(index, index) for index in range(page_count)]

        offset = int(pairing.get('label_offset', -1))
        processed_pages = set()
        pairs = []
        for data_index in range(page_count):
            if data_index % 2 != 1:
                continue
            label_index = data_index + offset
            if label_index in processed_pages or not 0 <= label_index < page_count:
                continue
            pairs.append((label_index, data_index))
            processed_pages.add(label_index)
        return pairs

    def parse(self, lines: List[str]) -> ProductSummary:
        raise NotImplementedError

    def empty_summary(self) -> ProductSummary:
        return ProductSummary(name='', quantity='0', type=self.platform, sku='')


class AmazonLabelParser(LabelParser):
    """
    Amazon invoices: the item block starts at the line beginning with '1 '
    and spans a fixed number of lines; name, price and quantity are split
    by '|' and currency tokens.
    """

    platform = 'amazon'

    def __init__(self, rule_loader=None, layout_rules: Optional[Dict[str, Any]] = None):
        super().__init__(rule_loader, layout_rules)
        rules = self.layout_rules

        item_block = rules.get('item_block', {}) or {}
        self.start_marker = item_block.get('start_marker', '1 ')
        self.block_line_count = int(item_block.get('line_count', 4))
        self.name_delimiter = item_block.get('name_delimiter', '|')

        order_rules = rules.get('order_number', {}) or {}
        self.order_line_marker = order_rules.get('line_marker', 'Order Number')
        self.order_pattern = re.compile(order_rules.get('pattern', r'\b\d{3}-\d{7}-\d{7}\b'))

        sku_rules = rules.get('sku_patterns') or [
            {'name': 'prefix_code', 'pattern': r'SS[a-zA-Z]{2,4}[0-9]{6,7}'},
            {'name': 'dash_code', 'pattern': r'[A-Za-z0-9]{2}-[A-Za-z0-9]{4}-[A-Za-z0-9]{4}'},
        ]
        self.sku_patterns = [re.compile(rule['pattern'], re.IGNORECASE) for rule in sku_rules]

        quantity_rules = rules.get('quantity', {}) or {}
        self.currency_markers = quantity_rules.get('currency_markers', ['₹', 'â‚¹'])
        self.default_quantity = str(quantity_rules.get('default', '1'))
        self.skip_token_pattern = re.compile(quantity_rules.get('skip_token_pattern', r'[()]'))

    def parse(self, lines: List[str]) -> ProductSummary:
        """
        Extract one order line from an Amazon invoice page

        Args:
            lines: Reconstructed lines of the data page

        Returns:
            ProductSummary; empty name/SKU and quantity '0' when no item block exists
        """
        start = next((i for i, line in enumerate(lines) if line.startswith(self.start_marker)), -1)
        if start == -1:
            logger.debug("Amazon item block not found")
            return self.empty_summary()

        product_details = ' '.join(lines[start:start + self.block_line_count])
        name, _, info = product_details.partition(self.name_delimiter)

        return ProductSummary(
            name=self._clean_name(name),
            quantity=self._extract_quantity(info) if self.name_delimiter in product_details else self.default_quantity,
            type=self.platform,
            sku=self.extract_sku(product_details),
            order_id=self.extract_order_number(lines),
        )

    def extract_order_number(self, lines: List[str]) -> Optional[str]:
        """Order number from the 'Order Number' line, else from any line"""
        marked = [line for line in lines if self.order_line_marker in line]
        for line in marked + [line for line in lines if line not in marked]:
            match = self.order_pattern.search(line)
            if match:
                return match.group(0)
        return None

    def extract_sku(self, text: str) -> str:
        for pattern in self.sku_patterns:
            match = pattern.search(text)
            if match:
                return match.group(0)
        return ''

    def _clean_name(self, name: str) -> str:
        for marker in self.currency_markers:
            if marker in name:
                name = name[:name.index(marker)]
        return name.replace(self.start_marker, '', 1).strip()

    def _is_currency(self, token: str) -> bool:
        return any(marker in token for marker in self.currency_markers)

    def recurse_quantity(self, segments: List[str], start_idx: int = -1) -> int:
        """
        Index of the first non-currency token after a currency token

        Returns:
            Token index, or -1 when no currency token precedes a plain token
        """
        for i in range(max(start_idx, 0), len(segments)):
            if self._is_currency(segments[i]):
                return self.recurse_quantity(segments, i + 1)
            if start_idx > -1:
                return i
        return -1

    def _extract_quantity(self, info: str) -> str:
        rest = [token for token in info.split(' ')
                if token and not self.skip_token_pattern.search(token)]
        index = self.recurse_quantity(rest)
        if index > -1:
            return rest[index] or self.default_quantity
        return self.default_quantity


class FlipkartLabelParser(LabelParser):
    """
    Flipkart labels: order id on a fixed line, quantity on the 'Total Qty'
    line, items in a table under a header starting with 'SKU'. Several rows
    under one header form a bundle joined with ' && '.
    """

    platform = 'flipkart'

    def __init__(self, rule_loader=None, layout_rules: Optional[Dict[str, Any]] = None):
        super().__init__(rule_loader, layout_rules)
        rules = self.layout_rules

        order_rules = rules.get('order_id', {}) or {}
        self.order_line_index = int(order_rules.get('line_index', 1))
        self.order_token = order_rules.get('token', 'od').lower()

        quantity_rules = rules.get('quantity', {}) or {}
        self.quantity_marker = quantity_rules.get('line_marker', 'total qty').lower()
        self.quantity_token_index = int(quantity_rules.get('token_index', 2))
        self.default_quantity = str(quantity_rules.get('default', '0'))

        table_rules = rules.get('sku_table', {}) or {}
        self.header_prefix = table_rules.get('header_prefix', 'SKU')
        self.row_pattern = re.compile(table_rules.get('row_pattern', r'^\d {3}'))
        self.column_delimiter = table_rules.get('column_delimiter', '|')

    def parse(self, lines: List[str]) -> ProductSummary:
        """
        Extract one (possibly bundled) order line from a Flipkart page

        Args:
            lines: Reconstructed lines of the page

        Returns:
            ProductSummary; SKU '' and quantity '0' when no SKU row is found
        """
        summary = self.empty_summary()
        summary.order_id = self.extract_order_id(lines)
        quantity = self.extract_quantity(lines)

        for name, sku in self.iter_sku_rows(lines):
            if summary.sku and summary.sku != sku:
                summary.name += self.join_marker + name
                summary.sku += self.join_marker + sku
            else:
                summary.name = name
                summary.sku = sku

        if summary.sku:
            summary.quantity = quantity
        else:
            logger.debug("Flipkart SKU table not found")
        return summary

    def extract_order_id(self, lines: List[str]) -> Optional[str]:
        if len(lines) > self.order_line_index:
            line = lines[self.order_line_index]
            if self.order_token in line.lower():
                return line.split(' ')[0] or None
        return None

    def extract_quantity(self, lines: List[str]) -> str:
        qty_line = next((line for line in lines if self.quantity_marker in line.lower()), None)
        if qty_line is None:
            return self.default_quantity
        tokens = qty_line.split(' ')
        if len(tokens) > self.quantity_token_index and tokens[self.quantity_token_index]:
            return tokens[self.quantity_token_index]
        return self.default_quantity

    def iter_sku_rows(self, lines: List[str]):
        """Yield (name, sku) for each table row directly under a SKU header"""
        k = 0
        while k < len(lines):
            if not lines[k].startswith(self.header_prefix):
                k += 1
                continue
            row = k + 1
            while row < len(lines) and self.row_pattern.search(lines[row]):
                sku_info, _, rest = lines[row].partition(self.column_delimiter)
                sku_tokens = [token for token in sku_info.split(' ') if token]
                sku = sku_tokens[-1].strip() if sku_tokens else ''
                name = ' '.join(token.strip() for token in rest.split(' ') if token.strip())
                yield name, sku
                row += 1
            k = row


PARSERS: Dict[str, Type[LabelParser]] = {
    AmazonLabelParser.platform: AmazonLabelParser,
    FlipkartLabelParser.platform: FlipkartLabelParser,
}


def get_parser(platform: str, rule_loader=None, layout_rules: Optional[Dict[str, Any]] = None) -> LabelParser:
    """
    Build the parser registered for a platform tag

    Raises:
        UnknownPlatformError: when no parser is registered for the tag
    """
    parser_class = PARSERS.get((platform or '').lower())
    if parser_class is None:
        raise UnknownPlatformError(f"No label parser registered for platform: {platform!r}")
    return parser_class(rule_loader, layout_rules)
