"""
SFT Ledger - State Bundle

Groups every mutable ledger component so the whole state can be captured as
a snapshot for persistence and restored in place. A failed call is rolled
back from a lighter checkpoint that marks the block log instead of copying it.
"""

from typing import NamedTuple, Optional

from pydantic import BaseModel, Field

from registry.approvals import ApprovalState, ApprovalStore
from registry.challenges import ChallengeRegistry, ChallengeState
from registry.ownership import OwnershipIndex, OwnershipState
from registry.schema import Collection
from registry.settings import ConfigStore
from registry.token_classes import TokenClassRegistry, TokenClassState
from validator.rules.deduplication import DedupState, DeduplicationIndex
from .block_log import BlockLog, BlockLogState, LogMark


class LedgerSnapshot(BaseModel):
    """Complete serializable ledger state."""

    collection: Collection
    classes: TokenClassState = Field(default_factory=TokenClassState)
    ownership: OwnershipState = Field(default_factory=OwnershipState)
    approvals: ApprovalState = Field(default_factory=ApprovalState)
    challenges: ChallengeState
    dedup: DedupState = Field(default_factory=DedupState)
    block_log: BlockLogState = Field(default_factory=BlockLogState)


class Checkpoint(NamedTuple):
    snapshot: LedgerSnapshot
    log: LogMark


class LedgerState:
    """Live ledger components built from (and reducible to) a snapshot."""

    def __init__(self, collection: Collection, snapshot: Optional[LedgerSnapshot] = None):
        if snapshot is None:
            snapshot = LedgerSnapshot(
                collection=collection,
                challenges=ChallengeRegistry(collection.settings.challenge_ttl).to_state(),
            )
        self.restore(snapshot)

    @classmethod
    def from_snapshot(cls, snapshot: LedgerSnapshot) -> "LedgerState":
        return cls(snapshot.collection, snapshot)

    def restore(self, snapshot: LedgerSnapshot) -> None:
        """Replace every component with the state captured in ``snapshot``."""
        self.config = ConfigStore(snapshot.collection)
        self.challenges = ChallengeRegistry(snapshot.collection.settings.challenge_ttl, snapshot.challenges)
        self.classes = TokenClassRegistry(self.challenges, snapshot.classes)
        self.ownership = OwnershipIndex(snapshot.ownership)
        self.approvals = ApprovalStore(snapshot.approvals)
        self.dedup = DeduplicationIndex(snapshot.dedup)
        self.block_log = BlockLog(snapshot.block_log)

    def snapshot(self, include_log: bool = True) -> LedgerSnapshot:
        return LedgerSnapshot(
            collection=self.config.collection,
            classes=self.classes.to_state(),
            ownership=self.ownership.to_state(),
            approvals=self.approvals.to_state(),
            challenges=self.challenges.to_state(),
            dedup=self.dedup.to_state(),
            block_log=self.block_log.to_state() if include_log else BlockLogState(),
        )

    def checkpoint(self) -> Checkpoint:
        """Rollback point for a single call; the block log is marked, not copied."""
        return Checkpoint(self.snapshot(include_log=False), self.block_log.mark())

    def rollback(self, checkpoint: Checkpoint) -> None:
        log = self.block_log
        self.restore(checkpoint.snapshot)
        log.rollback(checkpoint.log)
        self.block_log = log

    def sync_settings(self) -> None:
        """Propagate settings that components cache locally."""
        self.challenges.ttl_seconds = self.config.settings.challenge_ttl
