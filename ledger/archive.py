"""
SFT Ledger - Archive Hand-off

Archives receive the oldest blocks once the local log grows past the
configured threshold. The hand-off happens in three steps: the blocks are
copied while the ledger lock is held, sent to the archive without the lock,
and only after the archive acknowledges them is the pointer recorded and the
local copy dropped. A failed hand-off leaves the local log untouched.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future
from pathlib import Path
from threading import RLock
from typing import Callable, Dict, List, Optional, Tuple, Union

from registry.storage import FileLock
from validator.errors import ArchiveError, LedgerError
from .block_log import ArchivePointer, BlockLog
from .blocks import BlockEntry, verify_chain


logger = logging.getLogger(__name__)


class ArchiveClient(ABC):
    """Destination for archived blocks."""

    def __init__(self, archive_id: str):
        self.archive_id = archive_id

    @abstractmethod
    def append_blocks(self, blocks: List[BlockEntry]) -> None:
        """
        Store blocks contiguous with what the archive already holds.

        Raises:
            ArchiveError: The archive refused or failed to store the blocks
        """
        pass

    @abstractmethod
    def get_blocks(self, start: int, length: int) -> List[BlockEntry]:
        pass

    @abstractmethod
    def next_index(self) -> Optional[int]:
        """Index the next appended block must carry, or None when empty."""
        pass

    def _check_contiguous(self, blocks: List[BlockEntry]) -> None:
        if not blocks:
            raise ArchiveError("refusing to archive an empty block batch")
        expected = self.next_index()
        if expected is not None and blocks[0].index != expected:
            raise ArchiveError(
                f"archive {self.archive_id} expected block {expected}, got {blocks[0].index}"
            )
        if verify_chain(blocks, bytes.fromhex(blocks[0].phash)) is None:
            raise ArchiveError("archived blocks do not form a valid chain")


class InMemoryArchive(ArchiveClient):
    """Archive that keeps blocks in memory; useful for tests and single-process runs."""

    def __init__(self, archive_id: str = "archive-0", capacity: Optional[int] = None):
        super().__init__(archive_id)
        self.capacity = capacity
        self._blocks: List[BlockEntry] = []

    def append_blocks(self, blocks: List[BlockEntry]) -> None:
        self._check_contiguous(blocks)
        if self.capacity is not None and len(self._blocks) + len(blocks) > self.capacity:
            raise ArchiveError(f"archive {self.archive_id} is full")
        self._blocks.extend(blocks)

    def get_blocks(self, start: int, length: int) -> List[BlockEntry]:
        if not self._blocks:
            return []
        offset = start - self._blocks[0].index
        if offset < 0:
            length += offset
            offset = 0
        return self._blocks[offset:offset + max(length, 0)]

    def next_index(self) -> Optional[int]:
        return self._blocks[-1].index + 1 if self._blocks else None


class JSONFileArchive(ArchiveClient):
    """
    Archive backed by a JSON Lines file, one block per line.

    Appends are guarded by a file lock and fsynced before they are
    acknowledged.
    """

    def __init__(self, file_path: Union[str, Path], archive_id: Optional[str] = None):
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(archive_id or self.file_path.stem)
        self._lock = FileLock(self.file_path)

    def _read_all(self) -> List[BlockEntry]:
        if not self.file_path.exists():
            return []
        blocks = []
        with open(self.file_path, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    blocks.append(BlockEntry.model_validate_json(line))
                except ValueError as e:
                    raise ArchiveError(f"corrupt archive line {line_no} in {self.file_path}: {e}")
        return blocks

    def append_blocks(self, blocks: List[BlockEntry]) -> None:
        try:
            with self._lock:
                self._check_contiguous(blocks)
                with open(self.file_path, 'a', encoding='utf-8') as f:
                    for block in blocks:
                        f.write(json.dumps(block.model_dump(mode='json'), sort_keys=True) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            raise ArchiveError(f"failed to write archive {self.file_path}: {e}")

    def get_blocks(self, start: int, length: int) -> List[BlockEntry]:
        end = start + max(length, 0)
        return [b for b in self._read_all() if start <= b.index < end]

    def next_index(self) -> Optional[int]:
        blocks = self._read_all()
        return blocks[-1].index + 1 if blocks else None


class ArchiveManager:
    """
    Decides when to archive and drives the hand-off.

    Args:
        archive: Destination archive
        lock: The ledger lock; held while copying and committing, released
            while the archive is being written
        log_provider: Returns the current block log
        commit: Runs a callable as a ledger transaction (persisting on success)
        executor: Runs scheduled hand-offs in the background when given;
            otherwise a due run is left pending until ``archive_oldest`` is called
    """

    def __init__(
        self,
        archive: ArchiveClient,
        lock: RLock,
        log_provider: Callable[[], BlockLog],
        commit: Optional[Callable[[Callable[[], None]], None]] = None,
        executor: Optional[Executor] = None,
    ):
        self.archive = archive
        self._archives: Dict[str, ArchiveClient] = {archive.archive_id: archive}
        self._lock = lock
        self._log_provider = log_provider
        self._commit = commit or (lambda fn: fn())
        self.executor = executor
        self.pending = False
        self._future: Optional[Future] = None

    def archive_for(self, archive_id: str) -> Optional[ArchiveClient]:
        return self._archives.get(archive_id)

    def register_archive(self, archive: ArchiveClient) -> None:
        """Make an earlier archive readable for ``get_blocks`` callbacks."""
        self._archives[archive.archive_id] = archive

    @staticmethod
    def should_archive(retained: int, threshold: int) -> bool:
        return retained > threshold

    def maybe_schedule(self, threshold: int, num_blocks: int) -> bool:
        """Schedule a hand-off if the retained log exceeds ``threshold``."""
        with self._lock:
            if not self.should_archive(len(self._log_provider()), threshold):
                return False
            if self._future is not None and not self._future.done():
                return False
            if self.executor is None:
                self.pending = True
                return True
            self._future = self.executor.submit(self._run_in_background, num_blocks)
            return True

    def _run_in_background(self, num_blocks: int) -> Optional[ArchivePointer]:
        try:
            return self.archive_oldest(num_blocks)
        except LedgerError as e:
            logger.warning(f"Background archiving failed, blocks kept locally: {e}")
            return None

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until an in-flight background hand-off finishes."""
        future = self._future
        if future is not None:
            future.result(timeout=timeout)

    def archive_oldest(self, count: int) -> Optional[ArchivePointer]:
        """
        Hand the ``count`` oldest retained blocks to the archive.

        Blocks the archive already holds from an earlier hand-off that was
        acknowledged but never recorded locally are checked by digest and
        not sent again, so a failed commit can simply be retried.

        Returns:
            The recorded pointer, or None when there was nothing to archive or
            another hand-off already moved the same blocks

        Raises:
            ArchiveError: The archive did not acknowledge the blocks, or holds
                different blocks at the same indexes
        """
        blocks, first = self._prepare(count)
        if not blocks:
            return None

        try:
            unsent = self._unsent(blocks)
            if unsent:
                self.archive.append_blocks(unsent)
        except ArchiveError:
            raise
        except Exception as e:
            raise ArchiveError(f"archive {self.archive.archive_id} failed: {e}") from e

        pointer = ArchivePointer(
            archive_id=self.archive.archive_id, start=first, end=blocks[-1].index
        )
        committed = []

        def record():
            log = self._log_provider()
            if log.first_index != first:
                logger.warning(
                    f"Retained log moved from {first} to {log.first_index} during hand-off; "
                    f"not recording archive range {pointer.start}-{pointer.end}"
                )
                return
            log.commit_archive(pointer)
            committed.append(pointer)

        with self._lock:
            self._commit(record)
            self.pending = False
        return committed[0] if committed else None

    def _prepare(self, count: int) -> Tuple[List[BlockEntry], int]:
        with self._lock:
            log = self._log_provider()
            return log.oldest(count), log.first_index

    def _unsent(self, blocks: List[BlockEntry]) -> List[BlockEntry]:
        """Blocks of ``blocks`` the archive does not hold yet."""
        first = blocks[0].index
        held = self.archive.next_index()
        if held is None or held <= first:
            return blocks

        expected = blocks[:held - first]
        stored = self.archive.get_blocks(first, len(expected))
        if [b.digest for b in stored] != [b.digest for b in expected]:
            raise ArchiveError(
                f"archive {self.archive.archive_id} holds blocks {first}-{held - 1} "
                f"that differ from the local log"
            )
        logger.info(
            f"Archive {self.archive.archive_id} already holds blocks "
            f"{first}-{expected[-1].index}; recording them without resending"
        )
        return blocks[len(expected):]
