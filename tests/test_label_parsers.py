#!/usr/bin/env python3
"""
Label Parser Tests: Amazon invoice and Flipkart label heuristics
"""

import os
import unittest
from pathlib import Path

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step1_extract.errors import UnknownPlatformError
from step1_extract.label_parsers import AmazonLabelParser, FlipkartLabelParser, get_parser
from step1_extract.rule_loader import RuleLoader


class TestAmazonLabelParser(unittest.TestCase):
    """Amazon: item block, order number, SKU patterns, currency-driven quantity"""

    @classmethod
    def setUpClass(cls):
        cls.rule_loader = RuleLoader(PROJECT_ROOT / 'step1_rules')

    def setUp(self):
        self.parser = get_parser('amazon', self.rule_loader)

    def _lines(self, item_line, order_line='Order Number: 404-1234567-1234567'):
        return ['Tax Invoice', order_line, 'Sl. Description', item_line, 'HSN: 0902', 'TOTAL:']

    def test_full_item_block(self):
        """Test a full Amazon item block"""
        summary = self.parser.parse(self._lines('1 Premium Tea Box | SSPH001234 ₹250.00 2 ₹500.00'))

        self.assertEqual(summary.name, 'Premium Tea Box')
        self.assertEqual(summary.sku, 'SSPH001234')
        self.assertEqual(summary.quantity, '2')
        self.assertEqual(summary.order_id, '404-1234567-1234567')
        self.assertEqual(summary.type, 'amazon')

    def test_name_is_cut_before_currency(self):
        """Test that the name stops before the price"""
        summary = self.parser.parse(self._lines('1 Premium Tea Box ₹250.00 | SSPH001234'))
        self.assertEqual(summary.name, 'Premium Tea Box')

    def test_quantity_defaults_to_one_without_currency(self):
        """Test quantity 1 when no price token is present"""
        summary = self.parser.parse(self._lines('1 Premium Tea Box | SSPH001234'))
        self.assertEqual(summary.quantity, '1')

        summary = self.parser.parse(['Order Number: 404-1234567-1234567', '1 Premium Tea Box SSPH001234'])
        self.assertEqual(summary.quantity, '1')

    def test_mojibake_currency_marker(self):
        """Test the mis-decoded rupee sign as a currency marker"""
        summary = self.parser.parse(self._lines('1 Tea | SSPH001234 â‚¹250.00 3 â‚¹750.00'))
        self.assertEqual(summary.quantity, '3')

    def test_parenthesised_tokens_are_skipped(self):
        """Test that parenthesised tokens are ignored"""
        summary = self.parser.parse(self._lines('1 Tea | SSPH001234 (250g) ₹250.00 (IGST) 4'))
        self.assertEqual(summary.quantity, '4')

    def test_recurse_quantity(self):
        """Test quantity token found after the last price"""
        self.assertEqual(self.parser.recurse_quantity(['Product', '₹50', 'Name', '₹100', '3']), 2)
        self.assertEqual(self.parser.recurse_quantity(['₹50', '₹60', '4']), 2)
        self.assertEqual(self.parser.recurse_quantity(['Product', 'Name']), -1)
        self.assertEqual(self.parser.recurse_quantity(['Product', '₹50']), -1)
        self.assertEqual(self.parser.recurse_quantity([]), -1)

    def test_dash_sku_pattern(self):
        """Test the dash SKU pattern"""
        summary = self.parser.parse(self._lines('1 Ceramic Mug | AB-12CD-34EF ₹199 1'))
        self.assertEqual(summary.sku, 'AB-12CD-34EF')

    def test_prefix_sku_wins_over_dash_sku(self):
        """Test that the prefix SKU pattern is tried first"""
        summary = self.parser.parse(self._lines('1 Combo AB-12CD-34EF | SSPH001234 ₹199 1'))
        self.assertEqual(summary.sku, 'SSPH001234')

    def test_order_number_must_match_exact_groups(self):
        """Test order number digit grouping"""
        summary = self.parser.parse(self._lines('1 Tea | SSPH001234', 'Order Number: 404-1234567-12345678'))
        self.assertIsNone(summary.order_id)

        summary = self.parser.parse(self._lines('1 Tea | SSPH001234', 'Order Number: pending'))
        self.assertIsNone(summary.order_id)

    def test_order_number_outside_marker_line(self):
        """Test order number found on any line"""
        lines = ['Invoice', 'Ref 171-7654321-7654321', '1 Tea | SSPH001234']
        self.assertEqual(self.parser.parse(lines).order_id, '171-7654321-7654321')

    def test_missing_item_block_degrades(self):
        """Test defaults for a page without an item block"""
        summary = self.parser.parse(['Tax Invoice', 'Order Number: 404-1234567-1234567', 'Nothing here'])
        self.assertEqual(summary.name, '')
        self.assertEqual(summary.sku, '')
        self.assertEqual(summary.quantity, '0')

        summary = self.parser.parse([])
        self.assertEqual((summary.sku, summary.quantity), ('', '0'))

    def test_page_pairs(self):
        """Test that Amazon pages alternate label and invoice"""
        self.assertEqual(self.parser.page_pairs(4), [(0, 1), (2, 3)])
        self.assertEqual(self.parser.page_pairs(5), [(0, 1), (2, 3)])
        self.assertEqual(self.parser.page_pairs(1), [])
        self.assertEqual(self.parser.page_pairs(0), [])

    def test_page_rules(self):
        """Test Amazon layout rules loaded from YAML"""
        self.assertEqual(self.parser.page_rules['footer_font_size'], 12)
        self.assertIsNone(self.parser.page_rules['crop'])


class TestFlipkartLabelParser(unittest.TestCase):
    """Flipkart: order id, total qty and the SKU table with bundling"""

    @classmethod
    def setUpClass(cls):
        cls.rule_loader = RuleLoader(PROJECT_ROOT / 'step1_rules')

    def setUp(self):
        self.parser = get_parser('flipkart', self.rule_loader)

    def _lines(self, rows, second_line='OD111222333444 Ordered Through Flipkart', qty_line='Total Qty 2'):
        return ['Shipping Label', second_line, 'SKU ID | Description QTY', *rows, qty_line]

    def test_single_row(self):
        """Test a single SKU row"""
        summary = self.parser.parse(self._lines(['1   FKTEA001 | Green Tea 100g']))

        self.assertEqual(summary.sku, 'FKTEA001')
        self.assertEqual(summary.name, 'Green Tea 100g')
        self.assertEqual(summary.quantity, '2')
        self.assertEqual(summary.order_id, 'OD111222333444')
        self.assertEqual(summary.type, 'flipkart')

    def test_two_sku_bundle(self):
        """Test that two SKU rows join into a bundle"""
        summary = self.parser.parse(self._lines(['1   ABC123 | Green Tea', '2   DEF456 | Black  Tea']))

        self.assertEqual(summary.sku, 'ABC123 && DEF456')
        self.assertEqual(summary.name, 'Green Tea && Black Tea')
        self.assertEqual(summary.skus, ['ABC123', 'DEF456'])
        self.assertEqual(summary.primary_sku, 'ABC123')
        self.assertTrue(summary.is_bundle)

    def test_repeated_sku_overwrites(self):
        """Test that a repeated SKU keeps the last row"""
        summary = self.parser.parse(self._lines(['1   ABC123 | Green Tea', '2   ABC123 | Green Tea Refill']))
        self.assertEqual(summary.sku, 'ABC123')
        self.assertEqual(summary.name, 'Green Tea Refill')

    def test_missing_sku_line(self):
        """Test a page without a SKU row"""
        summary = self.parser.parse(['Shipping Label', 'OD111222333444 Ordered Through Flipkart', 'Total Qty 2'])

        self.assertEqual(summary.sku, '')
        self.assertEqual(summary.quantity, '0')
        self.assertEqual(summary.order_id, 'OD111222333444')

    def test_header_without_matching_row(self):
        """Test a header not followed by an item row"""
        summary = self.parser.parse(self._lines(['FKTEA001 | Green Tea']))
        self.assertEqual((summary.sku, summary.quantity), ('', '0'))

    def test_order_id_requires_token(self):
        """Test that the order id needs its marker token"""
        summary = self.parser.parse(self._lines(['1   FKTEA001 | Green Tea'], second_line='Invoice 1234'))
        self.assertIsNone(summary.order_id)

    def test_quantity_default_without_total_line(self):
        """Test quantity default without a total line"""
        summary = self.parser.parse(self._lines(['1   FKTEA001 | Green Tea'], qty_line='Thank you'))
        self.assertEqual(summary.quantity, '0')

    def test_empty_lines(self):
        """Test parsing an empty page"""
        summary = self.parser.parse([])
        self.assertEqual((summary.name, summary.sku, summary.quantity), ('', '', '0'))

    def test_every_page_is_label_and_data(self):
        """Test that Flipkart pages are label and data at once"""
        self.assertEqual(self.parser.page_pairs(3), [(0, 0), (1, 1), (2, 2)])

    def test_page_rules(self):
        """Test Flipkart layout rules loaded from YAML"""
        self.assertEqual(self.parser.page_rules['crop']['left'], 180)
        self.assertEqual(self.parser.page_rules['footer_font_size'], 5)


class TestParserRegistry(unittest.TestCase):
    """Parser lookup by platform tag"""

    def test_lookup_is_case_insensitive(self):
        """Test that platform tags ignore case"""
        self.assertIsInstance(get_parser('AMAZON'), AmazonLabelParser)
        self.assertIsInstance(get_parser('flipkart'), FlipkartLabelParser)

    def test_unknown_platform(self):
        """Test that an unknown platform raises"""
        with self.assertRaises(UnknownPlatformError):
            get_parser('ebay')
        with self.assertRaises(UnknownPlatformError):
            get_parser(None)

    def test_builtin_defaults_without_rules(self):
        """Test built-in defaults without a rule loader"""
        parser = get_parser('amazon')
        summary = parser.parse(['Order Number: 404-1234567-1234567', '1 Tea | SSPH001234 ₹10 5'])
        self.assertEqual((summary.sku, summary.quantity), ('SSPH001234', '5'))


if __name__ == '__main__':
    unittest.main()
