"""
SFT Ledger Validator Rules Module

Rules shared by every time-stamped batch operation: the creation window,
replay deduplication and memo size.
"""

from .temporal import CreationWindowRule, check_created_at
from .deduplication import (
    DedupEntry,
    DedupState,
    DeduplicationIndex,
    DeduplicationRule,
    request_fingerprint
)
from .memo import MemoSizeRule

__all__ = [
    "CreationWindowRule",
    "check_created_at",
    "DedupEntry",
    "DedupState",
    "DeduplicationIndex",
    "DeduplicationRule",
    "request_fingerprint",
    "MemoSizeRule"
]
