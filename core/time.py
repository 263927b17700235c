# PATH: core/time.py
"""
Time utilities for flashloop.

Off-chain code uses float timestamps; route and ledger timestamps are
whole unix seconds.
"""

import time


def now_timestamp() -> float:
    """Get current Unix timestamp."""
    return time.time()


def now_seconds() -> int:
    """Get current Unix timestamp in whole seconds (route timestamps)."""
    return int(time.time())
