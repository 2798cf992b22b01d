#!/usr/bin/env python3
"""
PDF Merger - Combine per-marketplace output documents into one printable PDF
"""

import logging
from typing import List, Optional

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


def merge_documents(documents: List[Optional[fitz.Document]]) -> fitz.Document:
    """
    Append the pages of each document in order

    Args:
        documents: Output documents (None entries are skipped)

    Returns:
        New document holding all pages
    """
    merged = fitz.open()
    for document in documents:
        if document is None or document.page_count == 0:
            continue
        merged.insert_pdf(document)
    logger.info(f"Merged {len(merged)} pages from {len([d for d in documents if d is not None])} documents")
    return merged


def document_to_bytes(document: fitz.Document) -> bytes:
    """
    Serialise a document; a document without pages gets one blank page

    PDF writers cannot save a document with zero pages, so an empty run
    still produces a valid, openable file.
    """
    if document.page_count == 0:
        document.new_page()
    return document.tobytes(garbage=3, deflate=True)
