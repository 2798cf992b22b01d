#!/usr/bin/env python3
"""
Barcode Stage - One barcode per output page, generated in a single batch call
Ids use the compact YYDDD<sequence> format; images are Code128 drawings
rendered with reportlab and rasterised with PyMuPDF for embedding.
"""

import base64
import logging
import re
import threading
from datetime import date, datetime, timedelta
from typing import Dict, Any, List, Optional

import fitz  # PyMuPDF
from reportlab.graphics import renderPDF
from reportlab.graphics.barcode import createBarcodeDrawing

from step1_extract.errors import BarcodeError
from step1_extract.models import BarcodeResult, ProductSummary

logger = logging.getLogger(__name__)

BARCODE_ID_PATTERN = re.compile(r'^[0-9]{6,10}$')
MAX_RETRY_ATTEMPTS = 5


def compact_date(date_doc_id: str) -> str:
    """'2025-01-05' -> '25005' (2-digit year + 3-digit day of year)"""
    day = datetime.strptime(date_doc_id, '%Y-%m-%d').date()
    return f"{day.year % 100:02d}{day.timetuple().tm_yday:03d}"


def parse_compact_date(compact: str) -> Optional[str]:
    """'25005' -> '2025-01-05'; None when the day does not exist in that year"""
    if len(compact) != 5 or not compact.isdigit():
        return None
    year = 2000 + int(compact[:2])
    day_of_year = int(compact[2:])
    if day_of_year < 1:
        return None
    day = date(year, 1, 1) + timedelta(days=day_of_year - 1)
    if day.year != year:
        return None
    return day.isoformat()


def validate_barcode_id(barcode_id: str) -> Dict[str, Any]:
    """
    Check a barcode id and split it into date and sequence

    Returns:
        {'isValid': bool, 'date': str, 'sequence': int} or {'isValid': False, 'error': str}
    """
    if not barcode_id or not isinstance(barcode_id, str) or not BARCODE_ID_PATTERN.match(barcode_id):
        return {'isValid': False, 'error': 'Invalid barcode format. Expected: YYDDDN (6-10 digits)'}

    full_date = parse_compact_date(barcode_id[:5])
    if not full_date:
        return {'isValid': False, 'error': 'Invalid date format in barcode'}

    sequence = int(barcode_id[5:])
    if sequence < 1:
        return {'isValid': False, 'error': 'Invalid sequence format in barcode'}

    return {'isValid': True, 'date': full_date, 'sequence': sequence}


def render_barcode_png(barcode_id: str, bar_height: float = 30, dpi: int = 200) -> bytes:
    """
    Code128 image of a barcode id as PNG bytes

    Raises:
        BarcodeError: when the drawing cannot be produced
    """
    try:
        drawing = createBarcodeDrawing('Code128', value=barcode_id, barHeight=bar_height, humanReadable=False)
        pdf_bytes = renderPDF.drawToString(drawing)
        with fitz.open(stream=pdf_bytes, filetype='pdf') as doc:
            return doc[0].get_pixmap(dpi=dpi).tobytes('png')
    except Exception as e:
        raise BarcodeError(f"Failed to generate barcode for {barcode_id}: {e}") from e


class LocalBarcodeService:
    """
    In-process barcode generator keeping the ids issued per date

    Implements batch_generate_barcodes(requests) -> List[BarcodeResult].
    """

    def __init__(self, max_retries: int = MAX_RETRY_ATTEMPTS, render_images: bool = True):
        self.max_retries = max_retries
        self.render_images = render_images
        self._issued: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def generate_unique_barcode_id(self, date_doc_id: str) -> str:
        """
        Next free id for a date: sequence starts after the ids already issued

        Raises:
            BarcodeError: when no free id is found within max_retries
        """
        issued = self._issued.setdefault(date_doc_id, {})
        prefix = compact_date(date_doc_id)
        start_sequence = len(issued) + 1
        for attempt in range(self.max_retries):
            barcode_id = f"{prefix}{start_sequence + attempt}"
            if barcode_id not in issued:
                if not BARCODE_ID_PATTERN.match(barcode_id):
                    raise BarcodeError(f"Generated barcode id out of range: {barcode_id}")
                return barcode_id
        raise BarcodeError(
            f"Failed to generate unique barcode ID after {self.max_retries} attempts for date {date_doc_id}")

    def generate_barcode_for_order(self, date_doc_id: str, order_index: int,
                                   metadata: Dict[str, Any], order_id: Optional[str] = None) -> BarcodeResult:
        with self._lock:
            barcode_id = self.generate_unique_barcode_id(date_doc_id)
            generated_at = datetime.now().isoformat()
            self._issued[date_doc_id][barcode_id] = {
                'barcodeId': barcode_id,
                'dateDocId': date_doc_id,
                'orderIndex': order_index,
                'orderId': order_id,
                'metadata': dict(metadata),
                'generatedAt': generated_at,
            }

        image_png = render_barcode_png(barcode_id) if self.render_images else b''
        data_url = f"data:image/png;base64,{base64.b64encode(image_png).decode('ascii')}" if image_png else ''
        return BarcodeResult(
            barcode_id=barcode_id,
            qr_code_data_url=data_url,
            qr_code_content=barcode_id,
            generated_at=generated_at,
            image_png=image_png,
        )

    def batch_generate_barcodes(self, requests: List[Dict[str, Any]]) -> List[BarcodeResult]:
        """Generate one barcode per request, in request order"""
        return [
            self.generate_barcode_for_order(
                request['dateDocId'],
                request.get('orderIndex', index),
                request.get('metadata', {}),
                request.get('orderId'),
            )
            for index, request in enumerate(requests)
        ]

    def lookup_barcode(self, barcode_id: str) -> Optional[Dict[str, Any]]:
        validation = validate_barcode_id(barcode_id)
        if not validation['isValid']:
            return None
        return self._issued.get(validation['date'], {}).get(barcode_id)


class BarcodeStage:
    """Batch barcode generation and per-page embedding"""

    def __init__(self, service, rule_loader=None, barcode_height: Optional[float] = None):
        """
        Args:
            service: Object exposing batch_generate_barcodes(requests)
            rule_loader: Optional RuleLoader for shared barcode settings
            barcode_height: Embedded image height in points
        """
        self.service = service
        rules = rule_loader.get_shared_section('barcode') if rule_loader else {}
        self.barcode_height = float(barcode_height if barcode_height is not None else rules.get('height', 15))

    @staticmethod
    def build_requests(summaries: List[ProductSummary], date_doc_id: str) -> List[Dict[str, Any]]:
        return [
            {
                'dateDocId': date_doc_id,
                'orderIndex': index,
                'metadata': {
                    'productName': summary.name,
                    'sku': summary.sku,
                    'quantity': summary.quantity_as_int(default=1) or 1,
                    'platform': summary.type,
                },
                'orderId': summary.order_id,
            }
            for index, summary in enumerate(summaries)
        ]

    def generate(self, summaries: List[ProductSummary], date_doc_id: Optional[str] = None) -> List[BarcodeResult]:
        """
        One batched call for all pages; a failed batch yields no barcodes

        Args:
            summaries: Order lines in output page order
            date_doc_id: Date key 'YYYY-MM-DD' (today when omitted)

        Returns:
            Barcode results aligned with summaries, or [] on failure
        """
        if not summaries:
            return []
        date_doc_id = date_doc_id or date.today().isoformat()
        requests = self.build_requests(summaries, date_doc_id)
        try:
            barcodes = list(self.service.batch_generate_barcodes(requests))
        except Exception as e:
            logger.error(f"Barcode batch generation failed, continuing without barcodes: {e}")
            return []
        logger.info(f"Generated {len(barcodes)} barcodes for {date_doc_id}")
        return barcodes

    def embed(self, document: fitz.Document, barcodes: List[BarcodeResult], first_page: int = 0) -> int:
        """
        Place each barcode image at the top-right corner of its page

        Args:
            document: Output document
            barcodes: Results aligned with pages starting at first_page
            first_page: Index of the page matching barcodes[0]

        Returns:
            Number of barcodes embedded
        """
        embedded = 0
        for offset, barcode in enumerate(barcodes):
            page_number = first_page + offset
            try:
                if page_number >= document.page_count:
                    raise BarcodeError(f"No output page {page_number}")
                image_png = barcode.image_png or render_barcode_png(barcode.barcode_id)
                page = document[page_number]
                pixmap = fitz.Pixmap(image_png)
                width = min(self.barcode_height * pixmap.width / pixmap.height, page.rect.width)
                rect = fitz.Rect(page.rect.width - width, 0, page.rect.width, self.barcode_height)
                page.insert_image(rect, stream=image_png, keep_proportion=False)
                embedded += 1
            except Exception as e:
                logger.error(f"Failed to embed barcode {barcode.barcode_id} on page {page_number + 1}: {e}")
        return embedded
