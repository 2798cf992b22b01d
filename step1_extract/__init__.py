"""
Step 1: Extract Order Lines from Shipping Labels
Reconstructs text lines from positioned PDF text, parses them with
marketplace-specific rules and attaches catalog categories.
"""

from .rule_loader import RuleLoader
from .vendor_detector import PlatformDetector
from .label_parsers import AmazonLabelParser, FlipkartLabelParser, LabelParser, get_parser
from .category_classifier import CategoryResolver
from .models import ProductSummary, BatchInfo, Catalog
from .utils.text_extractor import TextExtractor
from .errors import LabelPipelineError, PDFLoadError, UnknownPlatformError

__all__ = [
    'RuleLoader',
    'PlatformDetector',
    'AmazonLabelParser',
    'FlipkartLabelParser',
    'LabelParser',
    'get_parser',
    'CategoryResolver',
    'ProductSummary',
    'BatchInfo',
    'Catalog',
    'TextExtractor',
    'LabelPipelineError',
    'PDFLoadError',
    'UnknownPlatformError',
]
