"""
Step 2: Sequence and Relabel Pages
Sorts parsed label pages by category, copies them into the output PDF with a
footer annotation, embeds barcodes and merges the marketplace documents.
"""

from .page_sequencer import PageSequencer, SequencedPage, SortConfig, open_document
from .barcode_stage import BarcodeStage, LocalBarcodeService, validate_barcode_id
from .pdf_merger import merge_documents, document_to_bytes

__all__ = [
    'PageSequencer',
    'SequencedPage',
    'SortConfig',
    'open_document',
    'BarcodeStage',
    'LocalBarcodeService',
    'validate_barcode_id',
    'merge_documents',
    'document_to_bytes',
]
