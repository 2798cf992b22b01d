#!/usr/bin/env python3
"""
Configuration file for the Label Pipeline project
Edit these values or override them with LABELS_* environment variables
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

# .env values never override variables already set in the environment
load_dotenv(BASE_DIR / '.env')


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Rule files (platform detection, label layouts, unit conversion)
# See step1_rules/*.yaml
RULES_DIR = Path(os.getenv('LABELS_RULES_DIR', BASE_DIR / 'step1_rules'))

# Output: merged PDF + JSON manifest
OUTPUT_DIR = Path(os.getenv('LABELS_OUTPUT_DIR', BASE_DIR / 'output'))
LOG_DIR = Path(os.getenv('LABELS_LOG_DIR', BASE_DIR / 'logs'))
LOG_LEVEL = os.getenv('LABELS_LOG_LEVEL', 'INFO')

# Inventory persistence: PostgreSQL DSN wins over a SQLite file;
# neither set means an in-memory store seeded from the catalog
INVENTORY_DB = os.getenv('LABELS_INVENTORY_DB')
INVENTORY_DSN = os.getenv('LABELS_INVENTORY_DSN')

# Page ordering defaults (keys follow the sort configuration object)
DEFAULT_SORT_CONFIG = {
    'primarySort': 'category',
    'secondarySort': 'sku',
    'sortOrder': 'asc',
    'groupByCategory': True,
    'prioritizeActiveCategories': False,
    'sortCategoriesAlphabetically': True,
}

# Multi-SKU labels: 'primary_only' deducts the first SKU of a bundle,
# 'split_all' deducts every bundled SKU
BUNDLE_MODE = os.getenv('LABELS_BUNDLE_MODE', 'primary_only')

ENABLE_BARCODES = _env_bool('LABELS_ENABLE_BARCODES', True)
ENABLE_CASCADE_DEDUCTIONS = _env_bool('LABELS_ENABLE_CASCADE_DEDUCTIONS', False)
HOT_RELOAD_RULES = _env_bool('LABELS_HOT_RELOAD', False)

# Batch metadata
DEFAULT_USER_ID = os.getenv('LABELS_USER_ID', 'system')
