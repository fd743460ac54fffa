"""
fusion_export.utils - Utility functions and helpers.

This module contains shared utilities for:
- Logging configuration
- Retrying service calls
- Size classification
- Tables file parsing
"""

from fusion_export.utils.logging import (
    setup_logging,
    get_logger,
    TableLogAdapter,
    mask_sensitive_data,
)
from fusion_export.utils.retry import RetryPolicy, retry_async
from fusion_export.utils.sizing import (
    byte_size_mb,
    is_large,
    round_down_to_power_of_two,
)
from fusion_export.utils.tables_file import extract_table_id, parse_tables_file

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "TableLogAdapter",
    "mask_sensitive_data",
    # Retry
    "RetryPolicy",
    "retry_async",
    # Sizing
    "byte_size_mb",
    "is_large",
    "round_down_to_power_of_two",
    # Tables file
    "extract_table_id",
    "parse_tables_file",
]
