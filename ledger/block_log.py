"""
SFT Ledger - Block Log

Append-only, hash-chained transaction log. The oldest blocks may be handed
off to an archive; the log remembers where every archived range went and the
digest that precedes its first retained block, so the local chain can still
be verified after archiving.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .blocks import GENESIS_DIGEST, BlockEntry, BlockType, TipCertificate, verify_chain


logger = logging.getLogger(__name__)


class ArchivePointer(BaseModel):
    """An inclusive range of block indices held by an archive."""

    archive_id: str = Field(..., min_length=1)
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @property
    def length(self) -> int:
        return self.end - self.start + 1


class BlockLogState(BaseModel):
    """Serializable block log snapshot."""

    blocks: List[BlockEntry] = Field(default_factory=list)
    first_index: int = Field(default=0, ge=0)
    archived_tip: str = Field(default=GENESIS_DIGEST.hex(), description="Digest preceding the first retained block")
    last_digest: str = Field(default=GENESIS_DIGEST.hex())
    archives: List[ArchivePointer] = Field(default_factory=list)


@dataclass
class LogMark:
    """Rollback point of a block log; holds the live block list instead of a copy."""
    blocks: List[BlockEntry]
    retained: int
    first_index: int
    archived_tip: bytes
    last_digest: bytes
    archives: List[ArchivePointer]


@dataclass
class ArchivedRange:
    """Part of a requested range that must be fetched from an archive."""
    archive_id: str
    start: int
    length: int


@dataclass
class BlockRange:
    """Result of a range read: local blocks plus archive callbacks."""
    log_length: int
    blocks: List[BlockEntry] = field(default_factory=list)
    archived: List[ArchivedRange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_length": self.log_length,
            "blocks": [b.model_dump(mode='json') for b in self.blocks],
            "archived_blocks": [
                {"archive_id": a.archive_id, "start": a.start, "length": a.length}
                for a in self.archived
            ],
        }


class BlockLog:
    """Hash-chained block log with tip certification."""

    def __init__(self, state: Optional[BlockLogState] = None):
        state = state or BlockLogState()
        self._blocks: List[BlockEntry] = list(state.blocks)
        self._first_index = state.first_index
        self._archived_tip = bytes.fromhex(state.archived_tip)
        self._last_digest = bytes.fromhex(state.last_digest)
        self._archives: List[ArchivePointer] = list(state.archives)
        self._certificate: Optional[TipCertificate] = None
        if self.length > 0:
            self._certificate = TipCertificate.for_tip(self.length - 1, self._last_digest)

    def __len__(self) -> int:
        """Number of locally retained blocks."""
        return len(self._blocks)

    @property
    def length(self) -> int:
        """Total number of blocks ever appended, archived ones included."""
        return self._first_index + len(self._blocks)

    @property
    def first_index(self) -> int:
        return self._first_index

    @property
    def last_digest(self) -> bytes:
        return self._last_digest

    @property
    def archives(self) -> List[ArchivePointer]:
        return list(self._archives)

    def append(self, btype: BlockType, tx: Dict[str, Any], ts: int) -> int:
        """Append a block and refresh the tip certificate; returns its index."""
        index = self.length
        entry = BlockEntry.create(index, btype, ts, tx, self._last_digest)
        self._blocks.append(entry)
        self._last_digest = bytes.fromhex(entry.digest)
        self._certificate = TipCertificate.for_tip(index, self._last_digest)
        logger.debug(f"Appended block {index} ({btype.value})")
        return index

    def get(self, index: int) -> Optional[BlockEntry]:
        offset = index - self._first_index
        if 0 <= offset < len(self._blocks):
            return self._blocks[offset]
        return None

    def get_range(self, start: int, length: int) -> BlockRange:
        """
        Read ``length`` blocks from ``start``.

        Indices below the first retained block are reported as archived
        ranges, split along archive boundaries; indices past the tip are
        silently dropped.
        """
        result = BlockRange(log_length=self.length)
        end = min(start + max(length, 0), self.length)
        if start >= end:
            return result

        if start < self._first_index:
            for pointer in self._archives:
                lo = max(start, pointer.start)
                hi = min(end - 1, pointer.end)
                if lo <= hi:
                    result.archived.append(ArchivedRange(pointer.archive_id, lo, hi - lo + 1))

        local_start = max(start, self._first_index) - self._first_index
        local_end = end - self._first_index
        if local_end > local_start:
            result.blocks = self._blocks[local_start:local_end]
        return result

    def tip_certificate(self) -> Optional[TipCertificate]:
        return self._certificate

    def verify(self) -> bool:
        """Recompute the locally retained chain against the stored tip."""
        if not self._blocks:
            return self._archived_tip == self._last_digest
        if self._blocks[0].index != self._first_index:
            return False
        final = verify_chain(self._blocks, self._archived_tip)
        return final is not None and final == self._last_digest

    def oldest(self, count: int) -> List[BlockEntry]:
        return self._blocks[:count]

    def commit_archive(self, pointer: ArchivePointer) -> None:
        """
        Record an acknowledged hand-off and drop the archived blocks.

        The pointer must start exactly at the first retained index.
        """
        if pointer.start != self._first_index or pointer.length > len(self._blocks):
            raise ValueError(
                f"archive range {pointer.start}-{pointer.end} does not match retained blocks "
                f"starting at {self._first_index}"
            )
        dropped = self._blocks[:pointer.length]
        self._blocks = self._blocks[pointer.length:]
        self._first_index += pointer.length
        self._archived_tip = bytes.fromhex(dropped[-1].digest)

        last = self._archives[-1] if self._archives else None
        if last is not None and last.archive_id == pointer.archive_id and last.end + 1 == pointer.start:
            self._archives[-1] = ArchivePointer(archive_id=last.archive_id, start=last.start, end=pointer.end)
        else:
            self._archives.append(pointer)
        logger.info(f"Archived blocks {pointer.start}-{pointer.end} to {pointer.archive_id}")

    def archive_ranges(self, from_id: Optional[str] = None) -> List[Tuple[str, int, int]]:
        """(archive_id, start, end) per archive, ordered by id, after ``from_id``."""
        merged: Dict[str, List[int]] = {}
        for pointer in self._archives:
            span = merged.setdefault(pointer.archive_id, [pointer.start, pointer.end])
            span[0] = min(span[0], pointer.start)
            span[1] = max(span[1], pointer.end)
        return [
            (archive_id, span[0], span[1])
            for archive_id, span in sorted(merged.items())
            if from_id is None or archive_id > from_id
        ]

    def mark(self) -> LogMark:
        """
        Rollback point for ``rollback``.

        Appends only extend the block list and an archive commit swaps in a
        new list, so keeping the current list and its length is enough to
        undo either without copying the retained blocks.
        """
        return LogMark(
            blocks=self._blocks,
            retained=len(self._blocks),
            first_index=self._first_index,
            archived_tip=self._archived_tip,
            last_digest=self._last_digest,
            archives=list(self._archives),
        )

    def rollback(self, mark: LogMark) -> None:
        """Return to ``mark``, dropping every block appended since."""
        del mark.blocks[mark.retained:]
        self._blocks = mark.blocks
        self._first_index = mark.first_index
        self._archived_tip = mark.archived_tip
        self._last_digest = mark.last_digest
        self._archives = list(mark.archives)
        self._certificate = None
        if self.length > 0:
            self._certificate = TipCertificate.for_tip(self.length - 1, self._last_digest)

    def to_state(self) -> BlockLogState:
        return BlockLogState(
            blocks=list(self._blocks),
            first_index=self._first_index,
            archived_tip=self._archived_tip.hex(),
            last_digest=self._last_digest.hex(),
            archives=list(self._archives),
        )
