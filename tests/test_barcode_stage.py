#!/usr/bin/env python3
"""
Barcode Stage Tests: id format, uniqueness per date and page embedding
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

from pdf_fixtures import make_pdf
from step1_extract.errors import BarcodeError
from step1_extract.models import BarcodeResult, ProductSummary
from step2_sequence.barcode_stage import (
    BarcodeStage, LocalBarcodeService, compact_date, parse_compact_date,
    render_barcode_png, validate_barcode_id,
)


def result(barcode_id, image_png=b''):
    return BarcodeResult(barcode_id, '', barcode_id, '2025-01-05T10:00:00', image_png)


class TestBarcodeIds(unittest.TestCase):
    """YYDDD<sequence> ids"""

    def test_compact_date(self):
        """Test YYDDD prefix from an ISO date"""
        self.assertEqual(compact_date('2025-01-05'), '25005')
        self.assertEqual(compact_date('2024-12-31'), '24366')

    def test_parse_compact_date(self):
        """Test YYDDD parsing rejects impossible days"""
        self.assertEqual(parse_compact_date('25005'), '2025-01-05')
        self.assertEqual(parse_compact_date('24366'), '2024-12-31')
        self.assertIsNone(parse_compact_date('25366'))
        self.assertIsNone(parse_compact_date('25400'))
        self.assertIsNone(parse_compact_date('25000'))
        self.assertIsNone(parse_compact_date('2500'))

    def test_validate_barcode_id(self):
        """Test id validation for format, date and sequence"""
        self.assertEqual(validate_barcode_id('250051'), {'isValid': True, 'date': '2025-01-05', 'sequence': 1})
        self.assertEqual(validate_barcode_id('2500512')['sequence'], 12)

        for bad in ('12345', 'abc123', '', '12345678901'):
            validation = validate_barcode_id(bad)
            self.assertFalse(validation['isValid'], bad)
            self.assertIn('Invalid barcode format', validation['error'])

        self.assertEqual(validate_barcode_id('254001')['error'], 'Invalid date format in barcode')
        self.assertEqual(validate_barcode_id('250050')['error'], 'Invalid sequence format in barcode')


class TestLocalBarcodeService(unittest.TestCase):
    """Sequence allocation without image rendering"""

    def setUp(self):
        self.service = LocalBarcodeService(render_images=False)

    def _requests(self, count, date_doc_id='2025-01-05'):
        return [{'dateDocId': date_doc_id, 'orderIndex': i, 'metadata': {'sku': f'SKU{i}'}} for i in range(count)]

    def test_sequential_ids_per_date(self):
        """Test that sequences continue per date and restart on a new date"""
        first = self.service.batch_generate_barcodes(self._requests(3))
        self.assertEqual([b.barcode_id for b in first], ['250051', '250052', '250053'])

        second = self.service.batch_generate_barcodes(self._requests(1))
        self.assertEqual(second[0].barcode_id, '250054')

        other_day = self.service.batch_generate_barcodes(self._requests(1, '2025-01-06'))
        self.assertEqual(other_day[0].barcode_id, '250061')

    def test_ids_are_unique_and_valid(self):
        """Test that a batch yields unique valid ids"""
        barcodes = self.service.batch_generate_barcodes(self._requests(12))
        ids = [b.barcode_id for b in barcodes]
        self.assertEqual(len(set(ids)), 12)
        self.assertTrue(all(validate_barcode_id(i)['isValid'] for i in ids))
        self.assertEqual(ids[-1], '2500512')

    def test_collision_is_skipped(self):
        """Test that an already issued id is skipped"""
        self.service._issued['2025-01-05'] = {'250052': {'barcodeId': '250052'}}
        self.assertEqual(self.service.generate_unique_barcode_id('2025-01-05'), '250053')

    def test_retries_exhausted(self):
        """Test that exhausting retries raises BarcodeError"""
        service = LocalBarcodeService(max_retries=1, render_images=False)
        service._issued['2025-01-05'] = {'250052': {'barcodeId': '250052'}}
        with self.assertRaises(BarcodeError):
            service.generate_unique_barcode_id('2025-01-05')

    def test_lookup(self):
        """Test lookup of issued and unknown ids"""
        barcode = self.service.generate_barcode_for_order('2025-01-05', 0, {'sku': 'A'}, order_id='OD1')
        record = self.service.lookup_barcode(barcode.barcode_id)
        self.assertEqual(record['orderId'], 'OD1')
        self.assertEqual(record['metadata'], {'sku': 'A'})
        self.assertIsNone(self.service.lookup_barcode('250059'))
        self.assertIsNone(self.service.lookup_barcode('bogus'))

    def test_rendered_image(self):
        """Test that rendered barcodes carry a PNG image"""
        barcode = LocalBarcodeService().generate_barcode_for_order('2025-01-05', 0, {})
        self.assertTrue(barcode.image_png.startswith(b'\x89PNG'))
        self.assertTrue(barcode.qr_code_data_url.startswith('data:image/png;base64,'))
        self.assertEqual(barcode.qr_code_content, barcode.barcode_id)


class TestBarcodeStage(unittest.TestCase):
    """Batch generation and embedding into output pages"""

    def _summaries(self):
        return [
            ProductSummary(name='Tea', quantity='2', type='flipkart', sku='FKTEA001', order_id='OD1'),
            ProductSummary(name='', quantity='0', type='amazon', sku=''),
        ]

    def test_build_requests(self):
        """Test request payloads built from summaries"""
        requests = BarcodeStage.build_requests(self._summaries(), '2025-01-05')

        self.assertEqual(requests[0]['dateDocId'], '2025-01-05')
        self.assertEqual(requests[0]['orderId'], 'OD1')
        self.assertEqual(requests[0]['metadata'],
                         {'productName': 'Tea', 'sku': 'FKTEA001', 'quantity': 2, 'platform': 'flipkart'})
        self.assertEqual(requests[1]['orderIndex'], 1)
        self.assertEqual(requests[1]['metadata']['quantity'], 1)

    def test_single_batch_call(self):
        """Test that all barcodes come from one batch call"""
        service = mock.Mock()
        service.batch_generate_barcodes.return_value = [result('250051'), result('250052')]

        barcodes = BarcodeStage(service).generate(self._summaries(), '2025-01-05')

        self.assertEqual(len(barcodes), 2)
        service.batch_generate_barcodes.assert_called_once()

    def test_failed_batch_yields_no_barcodes(self):
        """Test that a failing service yields an empty barcode list"""
        service = mock.Mock()
        service.batch_generate_barcodes.side_effect = RuntimeError('service down')
        self.assertEqual(BarcodeStage(service).generate(self._summaries(), '2025-01-05'), [])

    def test_no_summaries_no_call(self):
        """Test that no summaries means no service call"""
        service = mock.Mock()
        self.assertEqual(BarcodeStage(service).generate([], '2025-01-05'), [])
        service.batch_generate_barcodes.assert_not_called()

    def test_embed_skips_failing_pages(self):
        """Test that a broken image skips only its own page"""
        document = fitz.open(stream=make_pdf([['one'], ['two'], ['three']]), filetype='pdf')
        good = result('250051', render_barcode_png('250051'))
        broken = result('250052', b'not an image')
        also_good = result('250053', render_barcode_png('250053'))

        embedded = BarcodeStage(LocalBarcodeService()).embed(document, [good, broken, also_good])

        self.assertEqual(embedded, 2)
        self.assertEqual(len(document[0].get_images()), 1)
        self.assertEqual(len(document[1].get_images()), 0)
        self.assertEqual(len(document[2].get_images()), 1)
        document.close()

    def test_embed_more_barcodes_than_pages(self):
        """Test that surplus barcodes are ignored"""
        document = fitz.open(stream=make_pdf([['only page']]), filetype='pdf')
        barcodes = [result('250051', render_barcode_png('250051')), result('250052')]
        self.assertEqual(BarcodeStage(LocalBarcodeService()).embed(document, barcodes), 1)
        document.close()


if __name__ == '__main__':
    unittest.main()
