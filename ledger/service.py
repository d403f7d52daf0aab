"""
SFT Ledger - Ledger Service

The Ledger is the single entry point for every boundary operation. It owns
the ledger state and the lock that serializes calls, runs every mutating call
as a transaction (checkpoint, run, persist, or roll back on failure) and
schedules archiving once a call has committed.
"""

import logging
import time
from concurrent.futures import Executor
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from registry.schema import (
    Account, Approval, Collection, CollectionPatch, CreateClassArgs,
    MetadataValue, UpdateClassArgs
)
from registry.storage import LedgerStorage, StorageError
from validator.audit_logger import AuditLogger
from validator.engine import TransferEngine
from validator.errors import (
    ArchiveError, ChallengeError, ChallengeErrorKind, ClassError, ClassErrorKind,
    FatalLedgerError, GenericBatchError, ItemResult, LedgerError
)
from validator.requests import (
    ApproveCollectionArg, ApproveTokenArg, IsApprovedArg, MintArg,
    RevokeCollectionApprovalArg, RevokeTokenApprovalArg, TransferArg, TransferFromArg
)
from .archive import ArchiveClient, ArchiveManager, InMemoryArchive
from .block_log import ArchivedRange, ArchivePointer, BlockRange
from .blocks import BlockEntry, TipCertificate, supported_block_types
from .state import LedgerSnapshot, LedgerState


logger = logging.getLogger(__name__)


class Ledger:
    """
    SFT ledger with transactional mutation and snapshot persistence.

    Args:
        collection: Initial collection; ignored when ``storage`` already holds
            a snapshot
        storage: Snapshot store; every committed call is persisted to it
        archive: Archive receiving the oldest blocks (in-memory by default)
        executor: Runs archive hand-offs in the background; without one, a
            due hand-off stays pending until ``run_archiving`` is called
        clock: Returns the ledger time in nanoseconds
        audit_logger: Audit trail for items and management operations
    """

    def __init__(
        self,
        collection: Optional[Collection] = None,
        storage: Optional[LedgerStorage] = None,
        archive: Optional[ArchiveClient] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], int] = time.time_ns,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.storage = storage
        self._clock = clock
        self._lock = RLock()
        self.audit_logger = audit_logger

        data = storage.load() if storage is not None else None
        if data is not None:
            try:
                snapshot = LedgerSnapshot.model_validate(data)
            except ValidationError as e:
                raise FatalLedgerError(f"Stored ledger snapshot is invalid: {e}") from e
            self.state = LedgerState.from_snapshot(snapshot)
            logger.info(
                f"Loaded ledger {snapshot.collection.symbol} with {self.state.block_log.length} blocks"
            )
        elif collection is not None:
            now = self.now()
            if not collection.created_at:
                collection = collection.model_copy(update={"created_at": now, "updated_at": now})
            self.state = LedgerState(collection)
            self._persist()
            logger.info(f"Initialized ledger {collection.symbol}")
        else:
            raise LedgerError("A collection is required to initialize an empty ledger")

        self.engine = TransferEngine(self.state, audit_logger)
        self.archiver = ArchiveManager(
            archive or InMemoryArchive(),
            self._lock,
            lambda: self.state.block_log,
            commit=self._commit_archive,
            executor=executor,
        )

    def now(self) -> int:
        return self._clock()

    # Transactions

    def _persist(self) -> None:
        if self.storage is None:
            return
        self.storage.save(self.state.snapshot().model_dump(mode='json'))

    @contextmanager
    def _transaction(self):
        """Checkpoint, run, persist; any failure restores the checkpoint."""
        with self._lock:
            checkpoint = self.state.checkpoint()
            try:
                yield
            except Exception:
                self.state.rollback(checkpoint)
                raise
            try:
                self._persist()
            except StorageError as e:
                self.state.rollback(checkpoint)
                logger.error(f"Failed to persist ledger snapshot, call rolled back: {e}")
                raise FatalLedgerError(f"Failed to persist ledger state: {e}") from e

    def _after_commit(self) -> None:
        settings = self.state.config.settings
        self.archiver.maybe_schedule(settings.archive_trigger_threshold, settings.archive_num_blocks)

    def _commit_archive(self, record: Callable[[], None]) -> None:
        with self._transaction():
            first = self.state.block_log.first_index
            record()
            moved_to = self.state.block_log.first_index
        if self.audit_logger is not None and moved_to != first:
            self.audit_logger.log_archive(self.archiver.archive.archive_id, first, moved_to - 1, self.now())

    def _managed(self, operation: str, caller: str, fn: Callable[[int], Any], **metadata) -> Any:
        now = self.now()
        try:
            with self._transaction():
                result = fn(now)
        except LedgerError as e:
            if self.audit_logger is not None:
                self.audit_logger.log_management(operation, caller, now, error=e, **metadata)
            raise
        if self.audit_logger is not None:
            self.audit_logger.log_management(operation, caller, now, **metadata)
        return result

    def _batch(self, fn: Callable[..., List[ItemResult]], caller: str, args: Sequence) -> List[ItemResult]:
        with self._transaction():
            results = fn(caller, list(args), self.now())
        self._after_commit()
        return results

    def _check_query(self, items: Sequence) -> None:
        limit = self.state.config.settings.max_query_batch_size
        if len(items) > limit:
            raise GenericBatchError(
                GenericBatchError.BATCH_TOO_LARGE, f"query of {len(items)} exceeds the limit of {limit}"
            )

    # Collection management

    def update_collection(self, caller: str, patch: CollectionPatch) -> None:
        def run(now):
            self.state.config.update(caller, patch, now)
            self.state.sync_settings()
        self._managed("update_collection", caller, run)

    def set_minters(self, caller: str, minters: Iterable[str]) -> None:
        minters = list(minters)
        self._managed(
            "set_minters", caller,
            lambda now: self.state.config.set_minters(caller, minters, now),
            minters=minters,
        )

    def set_managers(self, caller: str, managers: Iterable[str]) -> None:
        managers = list(managers)
        self._managed(
            "set_managers", caller,
            lambda now: self.state.config.set_managers(caller, managers, now),
            managers=managers,
        )

    # Token classes and challenges

    def issue_challenge(self, caller: str, asset_hash: str, author: str) -> str:
        """Issue the challenge an author presents to create a class for ``asset_hash``."""
        def run(now):
            if not self.state.config.is_manager(caller):
                raise ChallengeError(ChallengeErrorKind.UNAUTHORIZED, "caller is not a manager")
            return self.state.challenges.issue(asset_hash, author, now)
        return self._managed("issue_challenge", caller, run, author=author)

    def create_class(self, caller: str, args: CreateClassArgs) -> int:
        """Create a class as a manager; a presented challenge is verified and consumed."""
        def run(now):
            config = self.state.config
            if not (config.is_manager(caller) or config.is_controller(caller)):
                raise ClassError(ClassErrorKind.UNAUTHORIZED, "caller is not a manager")
            return self.state.classes.create_class(args, now, collection_cap=config.collection.supply_cap)
        return self._managed("create_class", caller, run, name=args.name)

    def create_class_by_challenge(self, caller: str, args: CreateClassArgs) -> int:
        """Create a class as its author, presenting a challenge issued by a manager."""
        def run(now):
            if caller != args.author:
                raise ClassError(ClassErrorKind.UNAUTHORIZED, "caller is not the author")
            return self.state.classes.create_class(
                args, now, collection_cap=self.state.config.collection.supply_cap, require_challenge=True
            )
        return self._managed("create_class_by_challenge", caller, run, name=args.name)

    def update_class(self, caller: str, args: UpdateClassArgs) -> None:
        def run(now):
            is_manager = self.state.config.is_manager(caller)
            self.state.classes.update_class(caller, args, is_manager, now)
        self._managed("update_class", caller, run, class_id=args.id)

    # Batch operations

    def mint(self, caller: str, arg: MintArg) -> List[int]:
        with self._transaction():
            ids = self.engine.mint(caller, arg, self.now())
        self._after_commit()
        return ids

    def transfer(self, caller: str, args: Sequence[TransferArg]) -> List[ItemResult]:
        return self._batch(self.engine.transfer, caller, args)

    def transfer_from(self, caller: str, args: Sequence[TransferFromArg]) -> List[ItemResult]:
        return self._batch(self.engine.transfer_from, caller, args)

    def approve_tokens(self, caller: str, args: Sequence[ApproveTokenArg]) -> List[ItemResult]:
        return self._batch(self.engine.approve_tokens, caller, args)

    def approve_collection(self, caller: str, args: Sequence[ApproveCollectionArg]) -> List[ItemResult]:
        return self._batch(self.engine.approve_collection, caller, args)

    def revoke_token_approvals(self, caller: str, args: Sequence[RevokeTokenApprovalArg]) -> List[ItemResult]:
        return self._batch(self.engine.revoke_token_approvals, caller, args)

    def revoke_collection_approvals(
        self, caller: str, args: Sequence[RevokeCollectionApprovalArg]
    ) -> List[ItemResult]:
        return self._batch(self.engine.revoke_collection_approvals, caller, args)

    # Block log

    def get_blocks(self, ranges: Sequence[Tuple[int, int]]) -> BlockRange:
        """
        Read several (start, length) ranges.

        Returns:
            Local blocks for all ranges, in request order, plus the archived
            ranges the caller must fetch from the named archives
        """
        self._check_query(ranges)
        with self._lock:
            log = self.state.block_log
            result = BlockRange(log_length=log.length)
            for start, length in ranges:
                part = log.get_range(start, length)
                result.blocks.extend(part.blocks)
                result.archived.extend(part.archived)
            return result

    def fetch_archived(self, archived: ArchivedRange) -> List[BlockEntry]:
        """Resolve an archived range through the archive that holds it."""
        archive = self.archiver.archive_for(archived.archive_id)
        if archive is None:
            raise ArchiveError(f"unknown archive {archived.archive_id}")
        return archive.get_blocks(archived.start, archived.length)

    def get_tip_certificate(self) -> Optional[TipCertificate]:
        with self._lock:
            return self.state.block_log.tip_certificate()

    def get_archives(self, from_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"archive_id": archive_id, "start": start, "end": end}
                for archive_id, start, end in self.state.block_log.archive_ranges(from_id)
            ]

    def verify_log(self) -> bool:
        with self._lock:
            return self.state.block_log.verify()

    def supported_block_types(self) -> List[Dict[str, str]]:
        return supported_block_types()

    def run_archiving(self, force: bool = False) -> Optional[ArchivePointer]:
        """
        Perform a due archive hand-off now.

        Raises:
            ArchiveError: The archive did not acknowledge the blocks; the
                local log is left as it was
        """
        settings = self.state.config.settings
        with self._lock:
            retained = len(self.state.block_log)
        if not force and not self.archiver.should_archive(retained, settings.archive_trigger_threshold):
            return None
        return self.archiver.archive_oldest(settings.archive_num_blocks)

    # Queries

    def collection_metadata(self) -> Dict[str, MetadataValue]:
        with self._lock:
            return self.state.config.metadata(self.state.classes.total_instances())

    @property
    def collection(self) -> Collection:
        return self.state.config.collection

    def class_metadata(self, class_ids: Sequence[int]) -> List[Optional[Dict[str, MetadataValue]]]:
        self._check_query(class_ids)
        with self._lock:
            return [self.state.classes.metadata(class_id) for class_id in class_ids]

    def token_metadata(self, token_ids: Sequence[int]) -> List[Optional[Dict[str, MetadataValue]]]:
        """Metadata of each instance, i.e. its class metadata; None for unknown ids."""
        self._check_query(token_ids)
        with self._lock:
            res = []
            for token_id in token_ids:
                token_class = self.state.classes.class_of(token_id)
                res.append(token_class.token_metadata() if token_class else None)
            return res

    def owner_of(self, token_ids: Sequence[int]) -> List[Optional[Account]]:
        self._check_query(token_ids)
        with self._lock:
            return [self.state.ownership.owner_of(token_id) for token_id in token_ids]

    def balance_of(self, accounts: Sequence[Account]) -> List[int]:
        self._check_query(accounts)
        with self._lock:
            return [self.state.ownership.balance_of(account) for account in accounts]

    def classes(self, prev: Optional[int] = None, take: Optional[int] = None) -> List[int]:
        with self._lock:
            return self.state.classes.list_ids(prev, self.state.config.take_value(take))

    def tokens_in(self, class_id: int, prev: Optional[int] = None, take: Optional[int] = None) -> List[int]:
        with self._lock:
            return self.state.classes.instance_ids(class_id, prev, self.state.config.take_value(take))

    def tokens_of(self, account: Account, prev: Optional[int] = None, take: Optional[int] = None) -> List[int]:
        with self._lock:
            return self.state.ownership.instances_of(account, prev, self.state.config.take_value(take))

    def is_approved(self, caller: str, args: Sequence[IsApprovedArg]) -> List[bool]:
        self._check_query(args)
        now = self.now()
        with self._lock:
            res = []
            for arg in args:
                grantor = Account(owner=caller, subaccount=arg.from_subaccount)
                owner = self.state.ownership.owner_of(arg.token_id)
                res.append(
                    owner == grantor and self.state.approvals.is_active(grantor, arg.spender, arg.token_id, now)
                )
            return res

    def get_token_approvals(
        self, token_id: int, prev: Optional[Account] = None, take: Optional[int] = None
    ) -> List[Approval]:
        """Active token approvals granted by the instance's current owner."""
        now = self.now()
        with self._lock:
            owner = self.state.ownership.owner_of(token_id)
            if owner is None:
                return []
            return self.state.approvals.token_approvals(
                owner, token_id, prev, self.state.config.take_value(take), now
            )

    def get_collection_approvals(
        self, owner: Account, prev: Optional[Account] = None, take: Optional[int] = None
    ) -> List[Approval]:
        now = self.now()
        with self._lock:
            return self.state.approvals.collection_approvals(
                owner, prev, self.state.config.take_value(take), now
            )
