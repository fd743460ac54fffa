"""Size classification helpers for exported tables."""

from __future__ import annotations

import math

# Tables above this size (in MB) are flagged as large
LARGE_TABLE_THRESHOLD_MB = 20
BYTES_PER_MB = 1024 * 1024


def byte_size_mb(data: bytes) -> float:
    """Return the size of ``data`` in megabytes."""
    return len(data) / BYTES_PER_MB


def is_large(size_mb: float) -> bool:
    """Return True when a table of ``size_mb`` megabytes is considered large.

    The boundary is exclusive: exactly 20 MB is not large.
    """
    return size_mb > LARGE_TABLE_THRESHOLD_MB


def round_down_to_power_of_two(size_mb: float) -> float:
    """Bucket a size down to the nearest lower power of two.

    Used for analytics only, the result is deliberately lossy.

    Examples:
        >>> round_down_to_power_of_two(9)
        8.0
        >>> round_down_to_power_of_two(16)
        16.0
        >>> round_down_to_power_of_two(0.3)
        0.25
    """
    if size_mb <= 0:
        return 0.0
    return float(2 ** math.floor(math.log2(size_mb)))
