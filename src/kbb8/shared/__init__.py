"""Shared modules for kbb8.

This module provides functionality used by every subsystem:
- Logging configuration
- Work directory layout
"""

from .logging import configure_logging, get_logger
from .paths import (
    DEFAULT_WORK_DIR,
    KUBERNETES_SUBSYSTEM,
    PROVIDER_SUBSYSTEM,
    ensure_dir,
    log_file,
    open_log,
    service_dir,
)

__all__ = [
    # Paths
    "DEFAULT_WORK_DIR",
    "KUBERNETES_SUBSYSTEM",
    "PROVIDER_SUBSYSTEM",
    "ensure_dir",
    "log_file",
    "open_log",
    "service_dir",
    # Logging
    "configure_logging",
    "get_logger",
]
