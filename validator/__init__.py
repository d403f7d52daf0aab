"""
SFT Ledger Validator Module

This module provides the validation and apply pipeline for ledger batch
operations: the error taxonomy, the shared rule pipeline (creation window,
deduplication, memo size) and the request models it validates.
"""

from .errors import (
    LedgerError,
    FatalLedgerError,
    ArchiveError,
    GenericBatchError,
    AtomicBatchError,
    ItemError,
    ItemResult
)

from .core import (
    ValidationEngine,
    ValidationContext,
    ValidationRule,
    ValidationResult,
    ValidationStage
)

__all__ = [
    "LedgerError",
    "FatalLedgerError",
    "ArchiveError",
    "GenericBatchError",
    "AtomicBatchError",
    "ItemError",
    "ItemResult",
    "ValidationEngine",
    "ValidationContext",
    "ValidationRule",
    "ValidationResult",
    "ValidationStage"
]
