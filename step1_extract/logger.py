#!/usr/bin/env python3
"""
Logger setup for the label pipeline
"""

import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logger(log_level: str = 'INFO', log_dir: Optional[Path] = None,
                 log_file: str = 'label_pipeline.log') -> logging.Logger:
    """
    Setup logging configuration

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (defaults to 'logs/')
        log_file: Log file name inside log_dir

    Returns:
        Configured logger instance
    """
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_dir = Path(log_dir or 'logs')

    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        handlers=[
            logging.FileHandler(log_dir / log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)
