"""
Deduplication Rule

Requests carrying a ``created_at_time`` are fingerprinted over
(operation, caller, payload, created_at_time). A fingerprint seen within the
transaction window is rejected as a duplicate of the block that committed it.
Requests without a timestamp never participate.
"""

import hashlib
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from registry.schema import Account
from registry.storage import canonical_json
from validator.core import ValidationContext, ValidationRule


logger = logging.getLogger(__name__)


class DedupEntry(BaseModel):
    block_index: int = Field(..., ge=0)
    created_at_time: int = Field(..., ge=0)


class DedupState(BaseModel):
    """Serializable deduplication snapshot."""

    entries: Dict[str, DedupEntry] = Field(default_factory=dict)


def request_fingerprint(
    operation: str, caller: Account, payload: Dict[str, Any], created_at_time: int
) -> str:
    body = canonical_json({
        "op": operation,
        "caller": caller.key(),
        "payload": payload,
        "created_at_time": created_at_time,
    })
    return hashlib.sha256(body).hexdigest()


class DeduplicationIndex:
    """Fingerprint → committing block, pruned once outside the window."""

    def __init__(self, state: Optional[DedupState] = None):
        self._entries: Dict[str, DedupEntry] = dict(state.entries) if state else {}

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, fingerprint: str, now: int, horizon_ns: int) -> Optional[DedupEntry]:
        """Return the live entry for a fingerprint; stale entries are dropped."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if entry.created_at_time < now - horizon_ns:
            del self._entries[fingerprint]
            return None
        return entry

    def record(self, fingerprint: str, block_index: int, created_at_time: int) -> None:
        self._entries[fingerprint] = DedupEntry(block_index=block_index, created_at_time=created_at_time)

    def prune(self, now: int, horizon_ns: int) -> int:
        """Drop every entry older than ``now - horizon_ns``; returns the count removed."""
        cutoff = now - horizon_ns
        stale = [fp for fp, e in self._entries.items() if e.created_at_time < cutoff]
        for fp in stale:
            del self._entries[fp]
        if stale:
            logger.debug(f"Pruned {len(stale)} deduplication entries")
        return len(stale)

    def to_state(self) -> DedupState:
        return DedupState(entries=dict(self._entries))


class DeduplicationRule(ValidationRule):
    """
    Validation rule rejecting replays within the transaction window.

    The index is looked up through a provider so the rule always sees the
    ledger's current index, including after a state restore.
    """

    def __init__(self, index_provider):
        super().__init__(
            name="deduplication",
            description="Rejects identical requests committed within the window",
        )
        self._index_provider = index_provider

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled and context.created_at_time is not None

    def validate(self, context: ValidationContext) -> None:
        context.fingerprint = request_fingerprint(
            context.operation, context.caller, context.payload, context.created_at_time
        )
        horizon = context.settings.tx_window_ns + context.settings.permitted_drift_ns
        entry = self._index_provider().lookup(context.fingerprint, context.now, horizon)
        if entry is not None:
            self.logger.info(
                f"Duplicate {context.operation} from {context.caller}, "
                f"committed in block {entry.block_index}"
            )
            raise context.fail("DUPLICATE", duplicate_of=entry.block_index)
