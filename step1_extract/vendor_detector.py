#!/usr/bin/env python3
"""
Platform Detection - Apply detection rules from 10_platform_detection.yaml
Detects the marketplace from the file name and first-page label text
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)


class PlatformDetector:
    """Detect marketplace platform using rules from 10_platform_detection.yaml"""

    def __init__(self, rule_loader):
        """
        Initialize platform detector

        Args:
            rule_loader: RuleLoader instance
        """
        self.rule_loader = rule_loader
        self.detection_rules = rule_loader.get_platform_detection_rules()

    def detect_platform(self, file_path: Optional[Path] = None,
                        first_page_lines: Optional[List[str]] = None) -> Optional[str]:
        """
        Detect platform tag from file path and reconstructed page text

        Args:
            file_path: Path of the uploaded label PDF
            first_page_lines: Reconstructed lines of the first page

        Returns:
            'amazon', 'flipkart', or the configured fallback (None by default)
        """
        detection_order = self.detection_rules.get('detection_order', ['filename_path', 'page_content'])

        for method in detection_order:
            if method == 'filename_path' and file_path is not None:
                platform = self._detect_from_filename(Path(file_path))
                if platform:
                    logger.debug(f"Detected platform from filename: {platform}")
                    return platform
            elif method == 'page_content' and first_page_lines:
                platform, confidence = self._detect_from_content(first_page_lines)
                if platform:
                    logger.debug(f"Detected platform from page content: {platform} ({confidence:.2f})")
                    return platform

        fallback = self.detection_rules.get('fallback', {}) or {}
        default_platform = fallback.get('default_platform')
        name = Path(file_path).name if file_path is not None else '<bytes>'
        logger.warning(f"Could not detect platform for {name}, using fallback: {default_platform}")
        return default_platform

    def _detect_from_filename(self, file_path: Path) -> Optional[str]:
        """Detect platform from patterns in the file name; parent directories are ignored"""
        path_lower = file_path.name.lower()
        for platform, config in (self.detection_rules.get('filename_patterns', {}) or {}).items():
            for pattern in config.get('patterns', []):
                if pattern.lower() in path_lower:
                    return platform
        return None

    def _detect_from_content(self, lines: List[str]) -> Tuple[Optional[str], float]:
        """
        Score each platform by the share of its keywords present in the text

        Returns:
            Tuple of (platform, confidence); platform is None when nothing matched
        """
        text_lower = '\n'.join(lines).lower()
        best: Tuple[Optional[str], float] = (None, 0.0)

        keyword_rules: Dict[str, Any] = self.detection_rules.get('content_keywords', {}) or {}
        for platform, config in keyword_rules.items():
            keywords = config.get('keywords', [])
            if not keywords:
                continue
            hits = sum(1 for keyword in keywords if keyword.lower() in text_lower)
            if not hits:
                continue
            confidence = config.get('confidence', 1.0) * hits / len(keywords)
            if confidence > best[1]:
                best = (platform, confidence)

        return best
