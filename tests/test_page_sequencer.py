#!/usr/bin/env python3
"""
Page Sequencer Tests: category ordering, deduplication, cropping and footers
"""

import os
import unittest
from pathlib import Path
from unittest import mock

import fitz  # PyMuPDF

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from pdf_fixtures import make_pdf, sample_catalog
from step1_extract.category_classifier import CategoryResolver
from step1_extract.models import ProductSummary
from step1_extract.rule_loader import RuleLoader
from step2_sequence.page_sequencer import PageSequencer, SequencedPage, SortConfig, open_document
from step1_extract.errors import PDFLoadError


def page(index, sku, category=None, category_id=None, group=None, quantity='1', name=''):
    return SequencedPage(index, index, ProductSummary(
        name=name or sku, quantity=quantity, type='flipkart', sku=sku,
        category=category, category_id=category_id, category_group_id=group))


class TestSorting(unittest.TestCase):
    """Comparator behaviour for each sort option"""

    def setUp(self):
        self.resolver = CategoryResolver(sample_catalog())

    def _skus(self, pages):
        return [p.summary.sku for p in pages]

    def test_group_by_category_uncategorized_last(self):
        """Test category grouping with uncategorized pages last"""
        sequencer = PageSequencer(self.resolver, SortConfig(group_by_category=True))
        pages = [page(0, 'B', 'Zeta'), page(1, 'A'), page(2, 'C', 'Alpha')]

        ordered = sequencer.sort_pages(pages)

        self.assertEqual([p.summary.category for p in ordered], ['Alpha', 'Zeta', None])
        self.assertEqual(self._skus(pages), ['B', 'A', 'C'], "Input list must not be reordered in place")

    def test_sku_tie_break_within_category(self):
        """Test SKU order within a category"""
        sequencer = PageSequencer(self.resolver, SortConfig())
        pages = [page(0, 'SKU-9', 'Tea'), page(1, 'SKU-1', 'Tea'), page(2, 'Z', None), page(3, 'A', None)]
        self.assertEqual(self._skus(sequencer.sort_pages(pages)), ['SKU-1', 'SKU-9', 'A', 'Z'])

    def test_sku_only_without_grouping(self):
        """Test SKU order when grouping is off"""
        sequencer = PageSequencer(self.resolver, SortConfig(group_by_category=False))
        pages = [page(0, 'C', 'Alpha'), page(1, 'A', 'Zeta'), page(2, 'B')]
        self.assertEqual(self._skus(sequencer.sort_pages(pages)), ['A', 'B', 'C'])

    def test_descending_order(self):
        """Test descending sort"""
        sequencer = PageSequencer(self.resolver, SortConfig(group_by_category=False, sort_order='desc'))
        pages = [page(0, 'A'), page(1, 'C'), page(2, 'B')]
        self.assertEqual(self._skus(sequencer.sort_pages(pages)), ['C', 'B', 'A'])

    def test_catalog_order_when_not_alphabetical(self):
        """Test catalog order for categories"""
        sequencer = PageSequencer(self.resolver, SortConfig(sort_categories_alphabetically=False))
        pages = [page(0, 'X', 'Packaging', 'cat-box'), page(1, 'Y', 'Coffee', 'cat-coffee'),
                 page(2, 'Z', 'Tea', 'cat-tea')]
        self.assertEqual([p.summary.category for p in sequencer.sort_pages(pages)], ['Tea', 'Coffee', 'Packaging'])

    def test_prioritize_active_categories(self):
        """Test active categories sorted first"""
        sequencer = PageSequencer(self.resolver, SortConfig(prioritize_active_categories=True))
        pages = [page(0, 'X', 'Alpha'), page(1, 'Y', 'Beta', group='grp-1')]
        self.assertEqual([p.summary.category for p in sequencer.sort_pages(pages)], ['Beta', 'Alpha'])

    def test_comparator_failure_keeps_original_order(self):
        """Test original order kept when comparison fails"""
        sequencer = PageSequencer(self.resolver, SortConfig())
        pages = [page(0, 'B', 'Zeta'), page(1, 'A'), page(2, 'C', 'Alpha')]
        with mock.patch.object(sequencer, 'compare', side_effect=RuntimeError('bad data')):
            ordered = sequencer.sort_pages(pages)
        self.assertEqual(self._skus(ordered), ['B', 'A', 'C'])

    def test_sort_config_from_dict(self):
        """Test sort config built from camelCase keys"""
        config = SortConfig.from_dict({'groupByCategory': False, 'sortOrder': 'desc', 'unknown': 1})
        self.assertFalse(config.group_by_category)
        self.assertEqual(config.sort_order, 'desc')
        self.assertEqual(config.secondary_sort, 'sku')
        self.assertTrue(config.sort_categories_alphabetically)
        self.assertEqual(SortConfig.from_dict(None), SortConfig())


class TestRender(unittest.TestCase):
    """Copying, cropping and annotating label pages"""

    @classmethod
    def setUpClass(cls):
        cls.rule_loader = RuleLoader(PROJECT_ROOT / 'step1_rules')

    def setUp(self):
        self.sequencer = PageSequencer(CategoryResolver(sample_catalog()), SortConfig(), self.rule_loader)
        self.source = open_document(make_pdf([['label one'], ['label two']]))
        self.output = fitz.open()

    def tearDown(self):
        self.source.close()
        self.output.close()

    def test_each_label_page_emitted_once(self):
        """Test that a label page is emitted once"""
        pages = [page(0, 'A'), page(1, 'B'), page(0, 'A')]
        emitted = self.sequencer.render(self.source, pages, {}, self.output)

        self.assertEqual([p.label_page_index for p in emitted], [0, 1])
        self.assertEqual(self.output.page_count, 2)

    def test_crop_rect(self):
        """Test Flipkart crop rectangle"""
        crop = self.rule_loader.get_layout_rules('flipkart')['page']['crop']
        rect = PageSequencer.crop_rect(fitz.Rect(0, 0, 595, 842), crop)
        self.assertEqual(tuple(rect), (180, 10, 595, 383))
        self.assertEqual(tuple(PageSequencer.crop_rect(fitz.Rect(0, 0, 595, 842), None)), (0, 0, 595, 842))

    def test_flipkart_page_is_cropped_and_annotated(self):
        """Test cropped page size and footer text"""
        rules = self.rule_loader.get_layout_rules('flipkart')['page']
        entry = page(0, 'FKTEA001', 'Tea', 'cat-tea', quantity='2')
        self.sequencer.render(self.source, [entry], rules, self.output)

        out_page = self.output[0]
        self.assertAlmostEqual(out_page.rect.width, 415)
        self.assertAlmostEqual(out_page.rect.height, 373)
        self.assertIn('2 X [Tea]', out_page.get_text())

    def test_footer_text(self):
        """Test footer text for categorized and unknown lines"""
        amazon_rules = self.rule_loader.get_layout_rules('amazon')['page']
        flipkart_rules = self.rule_loader.get_layout_rules('flipkart')['page']
        categorized = ProductSummary(name='Premium Tea Box', quantity='2', type='amazon', sku='SSPH001234',
                                     category='Tea', category_id='cat-tea')
        uncategorized = ProductSummary(name='Mystery Item', quantity='1', type='flipkart', sku='X')

        self.assertEqual(self.sequencer.footer_text(categorized, amazon_rules), '2 X [Tea] Premium Assam Tea 250g')
        self.assertEqual(self.sequencer.footer_text(categorized, flipkart_rules), '2 X [Tea]')
        self.assertEqual(self.sequencer.footer_text(uncategorized, amazon_rules), '1 X [Mystery Item]')

    def test_long_footer_is_truncated_to_page_width(self):
        """Test footer truncation to the page width"""
        entry = page(0, 'A', name='W' * 400)
        self.sequencer.render(self.source, [entry], {'footer_font_size': 12}, self.output)
        footers = [line for line in self.output[0].get_text().splitlines() if line.startswith('1 X [WWW')]
        self.assertEqual(len(footers), 1)
        self.assertLess(len(footers[0]), 400)

    def test_open_document_rejects_garbage(self):
        """Test that non-PDF bytes raise PDFLoadError"""
        with self.assertRaises(PDFLoadError):
            open_document(b'this is not a pdf')
        with self.assertRaises(PDFLoadError):
            open_document(b'')


if __name__ == '__main__':
    unittest.main()
