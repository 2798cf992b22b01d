#!/usr/bin/env python3
"""
Rule Loader - Load YAML rules from step1_rules directory
Supports merging shared.yaml with platform layout rules
"""

import os
import yaml
import logging
import hashlib
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


class RuleLoader:
    """Load and parse YAML rules, merging shared.yaml with platform-specific rules"""

    LAYOUT_FILES = {
        'amazon': '20_amazon_label.yaml',
        'flipkart': '21_flipkart_label.yaml',
    }

    def __init__(self, rules_dir: Path, enable_hot_reload: Optional[bool] = None):
        """
        Initialize rule loader with rules directory

        Args:
            rules_dir: Path to step1_rules directory
            enable_hot_reload: Enable checksum-based hot-reload. When None, reads
                              LABELS_HOT_RELOAD from the environment (default: off)
        """
        if enable_hot_reload is None:
            enable_hot_reload = os.environ.get('LABELS_HOT_RELOAD', '0') == '1'

        self.rules_dir = Path(rules_dir)
        self._rules_cache = {}
        self._file_checksums = {} if enable_hot_reload else None  # Only track when enabled
        self._enable_hot_reload = enable_hot_reload
        self._shared_rules = None
        self._file_read_count = 0

    def _calculate_file_checksum(self, file_path: Path) -> str:
        """Calculate MD5 checksum for a file"""
        try:
            with open(file_path, 'rb') as f:
                return hashlib.md5(f.read()).hexdigest()
        except OSError as e:
            logger.warning(f"Error calculating checksum for {file_path}: {e}")
            return ''

    def _should_reload_file(self, filename: str, rule_file: Path) -> bool:
        """Check if a rule file should be reloaded based on checksum"""
        # Fast path: when hot-reload is disabled, only check cache
        if not self._enable_hot_reload:
            return filename not in self._rules_cache

        if not rule_file.exists():
            return False

        current_checksum = self._calculate_file_checksum(rule_file)
        cached_checksum = self._file_checksums.get(filename)

        if current_checksum != cached_checksum:
            if cached_checksum:
                logger.debug(f"Rule file {filename} modified, reloading...")
            return True

        return False

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """Load a YAML file directly"""
        self._file_read_count += 1
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading YAML file {file_path}: {e}")
            return {}

    def _load_shared_rules(self) -> Dict[str, Any]:
        """Load shared.yaml rules"""
        shared_file = self.rules_dir / 'shared.yaml'
        if self._shared_rules is None or (
            self._enable_hot_reload and self._should_reload_file('shared.yaml', shared_file)
        ):
            if shared_file.exists():
                self._shared_rules = self._load_yaml_file(shared_file)
                self._rules_cache['shared.yaml'] = self._shared_rules
                if self._enable_hot_reload:
                    self._file_checksums['shared.yaml'] = self._calculate_file_checksum(shared_file)
                logger.debug("Loaded shared.yaml")
            else:
                self._shared_rules = {}
                logger.warning("shared.yaml not found")
        return self._shared_rules

    def get_file_read_count(self) -> int:
        """Number of YAML files read from disk since creation or last reset"""
        return self._file_read_count

    def reset_file_read_count(self) -> None:
        self._file_read_count = 0

    def _merge_rules(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep merge two dictionaries
        override takes precedence over base
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_rules(result[key], value)
            else:
                result[key] = value

        return result

    def load_rule_file_by_name(self, filename: str) -> Dict[str, Any]:
        """
        Load a specific rule file by filename (e.g., '10_platform_detection.yaml')

        Args:
            filename: Rule file name

        Returns:
            Rule dictionary or empty dict if not found
        """
        rule_file = self.rules_dir / filename

        if not rule_file.exists():
            logger.warning(f"Rule file not found: {rule_file}")
            return {}

        if self._should_reload_file(filename, rule_file):
            rules = self._load_yaml_file(rule_file)
            self._rules_cache[filename] = rules or {}
            if self._enable_hot_reload:
                self._file_checksums[filename] = self._calculate_file_checksum(rule_file)
            logger.debug(f"Loaded rule file: {filename}")

        return self._rules_cache.get(filename, {})

    def get_flag(self, name: str, default: bool = False) -> bool:
        """Read a boolean feature flag from shared.yaml"""
        flags = self._load_shared_rules().get('flags', {})
        return bool(flags.get(name, default))

    def get_shared_section(self, section: str) -> Dict[str, Any]:
        """Get one top-level section of shared.yaml (e.g. 'footer', 'bundle')"""
        return self._load_shared_rules().get(section, {}) or {}

    def get_platform_detection_rules(self) -> Dict[str, Any]:
        """Get platform detection rules from 10_platform_detection.yaml"""
        rules = self.load_rule_file_by_name('10_platform_detection.yaml')
        return rules.get('platform_detection', {})

    def get_layout_rules(self, platform: str) -> Dict[str, Any]:
        """
        Get label layout rules for a platform, merged over shared.yaml

        Args:
            platform: Platform tag ('amazon' or 'flipkart')

        Returns:
            Layout rules dictionary (empty if the platform has no layout file)
        """
        layout_file = self.LAYOUT_FILES.get((platform or '').lower())
        if not layout_file:
            logger.warning(f"No layout file registered for platform: {platform}")
            return {}

        rules = self.load_rule_file_by_name(layout_file)
        layout = {}
        # The layout lives under the first top-level key that's not 'meta'
        for key, value in rules.items():
            if key != 'meta' and not key.startswith('_') and isinstance(value, dict):
                layout = value
                break

        return self._merge_rules(self._load_shared_rules(), layout)

    def get_uom_conversion_rules(self) -> Dict[str, Any]:
        """Get unit conversion rules from 30_uom_conversion.yaml"""
        rules = self.load_rule_file_by_name('30_uom_conversion.yaml')
        return rules.get('uom_conversion', {})

    def load_catalog_file(self, catalog_path: Path) -> Dict[str, Any]:
        """
        Load a product/category catalog YAML file (outside the rules directory)

        Args:
            catalog_path: Path to catalog YAML with products/categories/categoryGroups

        Returns:
            Raw catalog dictionary
        """
        catalog_path = Path(catalog_path)
        if not catalog_path.exists():
            logger.warning(f"Catalog file not found: {catalog_path}")
            return {}
        return self._load_yaml_file(catalog_path)

    def clear_cache(self):
        """Clear the rules cache"""
        logger.debug("Clearing rules cache")
        self._rules_cache.clear()
        if self._file_checksums is not None:
            self._file_checksums.clear()
        self._shared_rules = None
