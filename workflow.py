#!/usr/bin/env python3
"""
Main Workflow Script - Shipping Label Pipeline
        Step 1: Extract order lines from marketplace label PDFs
        Step 2: Sort, relabel and barcode the pages, merge into one PDF
        Step 3: Deduct category-group inventory (optional)
"""

import sys
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import fitz  # PyMuPDF

import config
from step1_extract.category_classifier import CategoryResolver
from step1_extract.errors import LabelPipelineError
from step1_extract.label_parsers import get_parser
from step1_extract.logger import setup_logger
from step1_extract.models import (
    BarcodeResult,
    BatchInfo,
    Catalog,
    InventoryDeductionPreview,
    InventoryDeductionResult,
    ProductSummary,
)
from step1_extract.rule_loader import RuleLoader
from step1_extract.utils.text_extractor import TextExtractor
from step1_extract.vendor_detector import PlatformDetector
from step2_sequence.barcode_stage import BarcodeStage, LocalBarcodeService
from step2_sequence.page_sequencer import PageSequencer, SequencedPage, SortConfig, open_document
from step2_sequence.pdf_merger import document_to_bytes, merge_documents
from step3_inventory.batch_tracker import BatchTracker
from step3_inventory.deduction_engine import InventoryService
from step3_inventory.inventory_store import InMemoryInventoryStore, SQLiteInventoryStore
from step3_inventory.order_processor import InventoryOrderProcessor
from step3_inventory.uom_converter import UoMConverter

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    document_bytes: bytes
    page_count: int
    summaries: List[ProductSummary] = field(default_factory=list)
    inventory_result: Optional[InventoryDeductionResult] = None
    batch: Optional[BatchInfo] = None
    barcodes: List[BarcodeResult] = field(default_factory=list)
    preview: Optional[InventoryDeductionPreview] = None

    def to_manifest(self) -> Dict[str, Any]:
        """JSON-serialisable order manifest"""
        return {
            'pageCount': self.page_count,
            'summaries': [summary.to_dict() for summary in self.summaries],
            'inventoryResult': self.inventory_result.to_dict() if self.inventory_result else None,
            'preview': self.preview.to_dict() if self.preview else None,
            'batch': self.batch.to_dict() if self.batch else None,
            'barcodes': [barcode.to_dict() for barcode in self.barcodes],
        }


class LabelWorkflow:
    """Shipping label pipeline with injected catalog, store and barcode service"""

    def __init__(self, catalog: Catalog, inventory_store=None, barcode_service=None,
                 rule_loader: Optional[RuleLoader] = None, sort_config: Optional[SortConfig] = None,
                 bundle_mode: Optional[str] = None, enable_barcodes: Optional[bool] = None,
                 enable_cascade: Optional[bool] = None, batch_tracker: Optional[BatchTracker] = None):
        """
        Initialize workflow

        Args:
            catalog: Product/category/category-group catalog
            inventory_store: Inventory store (in-memory store seeded from the catalog by default)
            barcode_service: Object exposing batch_generate_barcodes (LocalBarcodeService by default)
            rule_loader: RuleLoader over step1_rules (config.RULES_DIR by default)
            sort_config: Page ordering (config.DEFAULT_SORT_CONFIG by default)
            bundle_mode: 'primary_only' or 'split_all' (config.BUNDLE_MODE by default)
            enable_barcodes: Generate and embed barcodes (config + shared.yaml flag by default)
            enable_cascade: Deduct linked categories (config + shared.yaml flag by default)
            batch_tracker: Batch registry
        """
        self.catalog = catalog
        self.rule_loader = rule_loader or RuleLoader(config.RULES_DIR, enable_hot_reload=config.HOT_RELOAD_RULES)

        if enable_barcodes is None:
            enable_barcodes = config.ENABLE_BARCODES and self.rule_loader.get_flag('enable_barcodes', True)
        if enable_cascade is None:
            enable_cascade = config.ENABLE_CASCADE_DEDUCTIONS or self.rule_loader.get_flag('enable_cascade_deductions')
        if bundle_mode is None:
            bundle_mode = config.BUNDLE_MODE
        self.enable_barcodes = enable_barcodes

        self.text_extractor = TextExtractor(self.rule_loader)
        self.resolver = CategoryResolver(catalog)
        self.sequencer = PageSequencer(
            self.resolver,
            sort_config or SortConfig.from_dict(config.DEFAULT_SORT_CONFIG),
            self.rule_loader,
        )
        self.barcode_stage = BarcodeStage(barcode_service or LocalBarcodeService(), self.rule_loader)

        self.inventory_store = inventory_store or InMemoryInventoryStore(catalog.category_groups)
        self.inventory_service = InventoryService(self.inventory_store, UoMConverter(self.rule_loader))
        self.order_processor = InventoryOrderProcessor(
            catalog, self.inventory_service, bundle_mode=bundle_mode, enable_cascade=enable_cascade)
        self.batch_tracker = batch_tracker or BatchTracker(config.DEFAULT_USER_ID)

    def process_document(self, pdf_bytes: bytes, platform: str,
                         date_doc_id: Optional[str] = None) -> Tuple[fitz.Document, List[ProductSummary], List[BarcodeResult]]:
        """
        Extract, sort and relabel one marketplace document

        Args:
            pdf_bytes: Raw PDF bytes
            platform: 'amazon' or 'flipkart'
            date_doc_id: Barcode date key (today by default)

        Returns:
            Tuple of (output document, order lines in output order, barcodes)

        Raises:
            PDFLoadError: when the PDF cannot be opened
            UnknownPlatformError: when no parser exists for the platform
        """
        parser = get_parser(platform, self.rule_loader)
        page_lines = self.text_extractor.extract_page_lines(pdf_bytes)
        source = open_document(pdf_bytes)
        try:
            pairs = parser.page_pairs(min(len(page_lines), source.page_count))
            pages = [
                SequencedPage(label, data, self.resolver.resolve(parser.parse(page_lines[data])))
                for label, data in pairs
            ]
            logger.info(f"Parsed {len(pages)} {platform} order lines from {source.page_count} pages")

            ordered = self.sequencer.sort_pages(pages)
            output = fitz.open()
            emitted = self.sequencer.render(source, ordered, parser.page_rules, output)
        finally:
            source.close()

        barcodes: List[BarcodeResult] = []
        barcode_ids: Dict[int, str] = {}
        if self.enable_barcodes and emitted:
            barcodes = self.barcode_stage.generate([entry.summary for entry in emitted], date_doc_id)
            self.barcode_stage.embed(output, barcodes)
            barcode_ids = {entry.label_page_index: barcode.barcode_id for entry, barcode in zip(emitted, barcodes)}

        summaries = []
        seen = set()
        for entry in ordered:
            if entry.label_page_index in seen:
                continue
            seen.add(entry.label_page_index)
            summaries.append(replace(entry.summary, barcode_id=barcode_ids.get(entry.label_page_index)))
        return output, summaries, barcodes

    def _deduct(self, summaries: List[ProductSummary]) -> InventoryDeductionResult:
        try:
            return self.order_processor.process_order_with_category_deduction(summaries)
        except Exception as e:
            # document assembly already succeeded; report the failure as data
            logger.error(f"Inventory deduction failed: {e}", exc_info=True)
            result = InventoryDeductionResult()
            result.add_error('', 'Inventory deduction failed', 0, str(e))
            return result

    def run(self, amazon_bytes: Optional[bytes] = None, flipkart_bytes: Optional[bytes] = None,
            sources: Optional[List[Tuple[str, bytes]]] = None, deduct: bool = False, preview: bool = False,
            file_name: Optional[str] = None, selected_date: Optional[str] = None) -> WorkflowResult:
        """
        Run the full pipeline

        Args:
            amazon_bytes: Amazon label PDF
            flipkart_bytes: Flipkart label PDF
            sources: Additional (platform, bytes) documents, processed after the two above
            deduct: Apply inventory deductions
            preview: Compute a dry-run deduction preview
            file_name: Name recorded on the batch
            selected_date: 'YYYY-MM-DD' used for barcodes and batch metadata

        Returns:
            WorkflowResult with the merged PDF, order manifest and inventory outcome
        """
        documents = []
        if amazon_bytes:
            documents.append(('amazon', amazon_bytes))
        if flipkart_bytes:
            documents.append(('flipkart', flipkart_bytes))
        documents.extend((platform, data) for platform, data in (sources or []) if data)

        outputs = []
        summaries: List[ProductSummary] = []
        barcodes: List[BarcodeResult] = []
        for platform, pdf_bytes in documents:
            output, document_summaries, document_barcodes = self.process_document(pdf_bytes, platform, selected_date)
            outputs.append(output)
            summaries.extend(document_summaries)
            barcodes.extend(document_barcodes)

        merged = merge_documents(outputs)
        page_count = merged.page_count
        document_bytes = document_to_bytes(merged)
        merged.close()
        for output in outputs:
            output.close()

        batch = self.batch_tracker.create_batch(
            summaries, file_name or '+'.join(platform for platform, _ in documents) or 'labels.pdf', selected_date)
        summaries = self.batch_tracker.attach(summaries, batch)

        preview_result = self.order_processor.preview_category_deductions(summaries) if preview else None

        inventory_result = None
        if deduct:
            inventory_result = self._deduct(summaries)
            if batch is not None:
                self.batch_tracker.update_order_count(batch.batch_id, len(summaries))

        logger.info(f"Workflow complete: {page_count} pages, {len(summaries)} order lines")
        return WorkflowResult(
            document_bytes=document_bytes,
            page_count=page_count,
            summaries=summaries,
            inventory_result=inventory_result,
            batch=batch,
            barcodes=barcodes,
            preview=preview_result,
        )


def load_catalog(rule_loader: RuleLoader, catalog_path: Optional[str]) -> Catalog:
    if not catalog_path:
        logger.warning("No catalog given; every order line will be uncategorized")
        return Catalog()
    return Catalog.from_dict(rule_loader.load_catalog_file(Path(catalog_path)))


def build_inventory_store(catalog: Catalog, db_path: Optional[str] = None, dsn: Optional[str] = None):
    """Open the configured store and register catalog groups it does not know yet"""
    if dsn:
        from step3_inventory.postgres_store import PostgresInventoryStore
        store = PostgresInventoryStore.from_dsn(dsn)
    elif db_path:
        store = SQLiteInventoryStore(db_path)
    else:
        return InMemoryInventoryStore(catalog.category_groups)

    for group in catalog.category_groups:
        if store.get_category_group(group.id) is None:
            store.add_category_group(group)
    return store


def detect_sources(paths: List[str], rule_loader: RuleLoader) -> List[Tuple[str, bytes]]:
    """Read PDFs whose platform is detected from the file name or first page"""
    detector = PlatformDetector(rule_loader)
    extractor = TextExtractor(rule_loader)
    sources = []
    for path in paths:
        pdf_bytes = Path(path).read_bytes()
        platform = detector.detect_platform(Path(path))
        if platform is None:
            pages = extractor.extract_page_lines(pdf_bytes)
            platform = detector.detect_platform(Path(path), pages[0] if pages else None)
        if platform is None:
            logger.error(f"Skipping {path}: platform not recognised")
            continue
        sources.append((platform, pdf_bytes))
    return sources


def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description='Shipping Label Workflow')
    parser.add_argument('--amazon', type=str, help='Amazon label PDF')
    parser.add_argument('--flipkart', type=str, help='Flipkart label PDF')
    parser.add_argument('--input', type=str, action='append', default=[],
                        help='Label PDF with auto-detected platform (repeatable)')
    parser.add_argument('--catalog', type=str, help='Catalog YAML (products, categories, categoryGroups)')
    parser.add_argument('--output', type=str, help='Merged PDF path (manifest is written next to it)')
    parser.add_argument('--deduct', action='store_true', help='Deduct category-group inventory')
    parser.add_argument('--preview', action='store_true', help='Include a dry-run deduction preview')
    parser.add_argument('--no-barcodes', action='store_true', help='Do not generate barcodes')
    parser.add_argument('--cascade', action='store_true', help='Deduct linked categories too')
    parser.add_argument('--bundle-mode', type=str, choices=['primary_only', 'split_all'],
                        default=config.BUNDLE_MODE)
    parser.add_argument('--inventory-db', type=str, default=config.INVENTORY_DB, help='SQLite inventory database')
    parser.add_argument('--inventory-dsn', type=str, default=config.INVENTORY_DSN, help='PostgreSQL DSN')
    parser.add_argument('--date', type=str, help='Processing date YYYY-MM-DD (default: today)')
    parser.add_argument('--log-level', type=str, default=config.LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])

    args = parser.parse_args()

    setup_logger(args.log_level, config.LOG_DIR)

    if not (args.amazon or args.flipkart or args.input):
        parser.error('at least one of --amazon, --flipkart or --input is required')

    rule_loader = RuleLoader(config.RULES_DIR, enable_hot_reload=config.HOT_RELOAD_RULES)
    catalog = load_catalog(rule_loader, args.catalog)

    try:
        store = build_inventory_store(catalog, args.inventory_db, args.inventory_dsn)
        workflow = LabelWorkflow(
            catalog,
            inventory_store=store,
            rule_loader=rule_loader,
            bundle_mode=args.bundle_mode,
            enable_barcodes=False if args.no_barcodes else None,
            enable_cascade=True if args.cascade else None,
        )
        result = workflow.run(
            amazon_bytes=Path(args.amazon).read_bytes() if args.amazon else None,
            flipkart_bytes=Path(args.flipkart).read_bytes() if args.flipkart else None,
            sources=detect_sources(args.input, rule_loader),
            deduct=args.deduct,
            preview=args.preview,
            file_name=', '.join(Path(p).name for p in [args.amazon, args.flipkart, *args.input] if p),
            selected_date=args.date or date.today().isoformat(),
        )
    except (LabelPipelineError, OSError) as e:
        logger.error(f"Workflow failed: {e}")
        return 1

    output_path = Path(args.output) if args.output else \
        config.OUTPUT_DIR / f"labels_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.document_bytes)

    manifest_path = output_path.with_suffix('.json')
    with open(manifest_path, 'w', encoding='utf-8') as f:
        json.dump(result.to_manifest(), f, indent=2, ensure_ascii=False)

    logger.info(f"Wrote {output_path} ({result.page_count} pages) and {manifest_path}")
    if result.inventory_result:
        logger.info(f"Inventory: {len(result.inventory_result.deductions)} deductions, "
                    f"{len(result.inventory_result.warnings)} warnings, "
                    f"{len(result.inventory_result.errors)} errors")
    return 0


if __name__ == '__main__':
    sys.exit(main())
