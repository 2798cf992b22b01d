"""
Step 1 Utilities Module

Contains the positional text reconstruction helpers.
"""

from .text_extractor import TextExtractor, extract_fragments, open_pdf

__all__ = ['TextExtractor', 'extract_fragments', 'open_pdf']
