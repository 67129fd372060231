"""Utility modules for the data updater."""

from geo_updater.utils.cancellation import CancellationToken, install_signal_handlers
from geo_updater.utils.geo import approximate_utc_offset, ensure_multipolygon
from geo_updater.utils.http import HTTPError, download_file, fetch
from geo_updater.utils.logging import setup_logging
from geo_updater.utils.text import (
    clean_latin,
    contains_latin,
    normalize_identifier,
)

__all__ = [
    # HTTP utilities
    "fetch",
    "download_file",
    "HTTPError",
    # Logging
    "setup_logging",
    # Cancellation
    "CancellationToken",
    "install_signal_handlers",
    # Geographic utilities
    "ensure_multipolygon",
    "approximate_utc_offset",
    # Text utilities
    "normalize_identifier",
    "contains_latin",
    "clean_latin",
]
