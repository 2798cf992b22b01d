#!/usr/bin/env python3
"""
Text Extractor - Rebuild reading-order lines from positioned PDF text
Label PDFs carry no structure, so lines are reconstructed from word boxes
"""

import io
import logging
from typing import Any, Dict, List, Optional

import pdfplumber

from ..errors import PDFLoadError
from ..models import TextFragment

logger = logging.getLogger(__name__)


def open_pdf(pdf_bytes: bytes):
    """
    Open PDF bytes with pdfplumber

    Raises:
        PDFLoadError: when the bytes are empty or not a readable PDF
    """
    if not pdf_bytes:
        raise PDFLoadError("Empty PDF byte buffer")
    try:
        return pdfplumber.open(io.BytesIO(pdf_bytes))
    except Exception as e:
        raise PDFLoadError(f"Could not open PDF: {e}") from e


def extract_fragments(page) -> List[TextFragment]:
    """
    Extract positioned text fragments from a pdfplumber page

    pdfplumber measures from the top of the page; fragments are converted
    to PDF user space so y grows upwards like the label templates expect.
    """
    fragments = []
    for word in page.extract_words(keep_blank_chars=True, use_text_flow=False):
        text = word.get('text', '')
        if text is None:
            continue
        fragments.append(TextFragment(
            text=text,
            x=float(word['x0']),
            y=float(page.height) - float(word['bottom']),
            width=float(word['x1']) - float(word['x0']),
            height=float(word['bottom']) - float(word['top']),
        ))
    return fragments


class TextExtractor:
    """Turn positioned fragments into ordered text lines"""

    def __init__(self, rule_loader=None, line_tolerance: Optional[float] = None,
                 default_line_height: Optional[float] = None):
        """
        Initialize text extractor

        Args:
            rule_loader: Optional RuleLoader; reads shared.yaml line_reconstruction
            line_tolerance: Multiple of line height within which fragments share a line
            default_line_height: Used for fragments that report no height
        """
        rules: Dict[str, Any] = {}
        if rule_loader is not None:
            rules = rule_loader.get_shared_section('line_reconstruction')
        self.line_tolerance = float(line_tolerance if line_tolerance is not None
                                    else rules.get('line_tolerance', 1.0))
        self.default_line_height = float(default_line_height if default_line_height is not None
                                         else rules.get('default_line_height', 10.0))
        self.joiner = rules.get('joiner', ' ')

    def reconstruct_lines(self, fragments: List[TextFragment]) -> List[str]:
        """
        Join fragments into lines, top of page first

        Fragments are sorted by descending y then ascending x; a fragment
        joins the current line while its distance from the line's first
        fragment stays within one line height.

        Args:
            fragments: Positioned fragments of one page

        Returns:
            Lines in reading order
        """
        if not fragments:
            return []

        ordered = sorted(fragments, key=lambda f: (-f.y, f.x))

        lines: List[List[TextFragment]] = []
        anchor: Optional[TextFragment] = None
        for fragment in ordered:
            if anchor is not None:
                line_height = anchor.height or self.default_line_height
                if abs(anchor.y - fragment.y) < line_height * self.line_tolerance:
                    lines[-1].append(fragment)
                    continue
            anchor = fragment
            lines.append([fragment])

        result = []
        for line in lines:
            line.sort(key=lambda f: f.x)
            result.append(self.joiner.join(f.text for f in line))
        return result

    def extract_page_lines(self, pdf_bytes: bytes) -> List[List[str]]:
        """
        Reconstruct lines for every page of a PDF

        Args:
            pdf_bytes: Raw PDF bytes

        Returns:
            One list of lines per page, in page order

        Raises:
            PDFLoadError: when the PDF cannot be opened
        """
        pages = []
        with open_pdf(pdf_bytes) as pdf:
            for page_number, page in enumerate(pdf.pages):
                try:
                    fragments = extract_fragments(page)
                except Exception as e:
                    logger.warning(f"Text extraction failed on page {page_number}: {e}")
                    fragments = []
                pages.append(self.reconstruct_lines(fragments))
        logger.debug(f"Reconstructed lines for {len(pages)} pages")
        return pages
