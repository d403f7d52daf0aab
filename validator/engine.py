"""
SFT Ledger Transfer Engine

Validates and applies batched mint, transfer, transfer_from, approve and
revoke requests against the ledger state, appending one block per applied
item.

Each item is evaluated in two passes. The first pass runs the shared
preflight rules, then the operation's own checks, then the payload rules,
and produces a plan without touching state. The second pass applies the
plan. Items are handled strictly in input order, so item i+1 observes the
effects of item i. With ``atomic_batch_transfers`` enabled a checkpoint is
taken before the batch and restored if any item failed, and the batch is
rejected as a whole.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Type

from pydantic import ValidationError

from ledger.blocks import BlockType, build_tx
from registry.schema import Account
from .audit_logger import AuditLogger
from .core import ValidationContext, ValidationEngine, ValidationStage
from .errors import (
    ApproveCollectionError, ApproveTokenError, AtomicBatchError, ClassError,
    GenericBatchError, ItemError, ItemResult, MintError,
    RevokeCollectionApprovalError, RevokeTokenApprovalError,
    TransferError, TransferFromError
)
from .requests import (
    ApproveCollectionArg, ApproveTokenArg, MintArg, RevokeCollectionApprovalArg,
    RevokeTokenApprovalArg, TransferArg, TransferFromArg
)
from .rules import CreationWindowRule, DeduplicationRule, MemoSizeRule
from .rules.memo import MEMO_TOO_LARGE


logger = logging.getLogger(__name__)

# GenericError codes reported by the engine, alongside MEMO_TOO_LARGE
EXPIRY_TOO_SOON = 2
INVALID_ACCOUNT = 3
INVALID_HOLDER = 4


@dataclass
class _Plan:
    """Validated effect of one batch item, applied in the second pass."""
    btype: BlockType
    tx: dict
    apply: Callable[[], Any]


class TransferEngine:
    """
    Batch orchestrator over the ledger state.

    Args:
        state: Ledger state bundle; components are looked up on every call so
            that a restored state is picked up transparently
        audit_logger: Optional audit trail receiving one event per item
        rules: Rule pipeline; defaults to creation window, deduplication and
            memo size
    """

    def __init__(self, state, audit_logger: Optional[AuditLogger] = None,
                 rules: Optional[ValidationEngine] = None):
        self.state = state
        self.audit_logger = audit_logger
        self.rules = rules or ValidationEngine([
            CreationWindowRule(),
            DeduplicationRule(lambda: self.state.dedup),
            MemoSizeRule(),
        ])

    # Batch driver

    def _check_batch(self, items: Sequence, limit: int, limit_code: int = GenericBatchError.BATCH_TOO_LARGE):
        if not items:
            raise GenericBatchError(GenericBatchError.EMPTY_BATCH, "batch is empty")
        if len(items) > limit:
            raise GenericBatchError(limit_code, f"batch of {len(items)} exceeds the limit of {limit}")

    def _account(self, caller: str, subaccount: Optional[str], error_type: Type[ItemError]) -> Account:
        try:
            return Account(owner=caller, subaccount=subaccount)
        except ValidationError as e:
            raise error_type.of(
                "GENERIC_ERROR", error_code=INVALID_ACCOUNT, message=f"invalid account: {e.errors()[0]['msg']}"
            )

    def _run_batch(
        self,
        operation: str,
        caller: str,
        items: Sequence,
        now: int,
        error_type: Type[ItemError],
        planner: Callable[[ValidationContext, Any], _Plan],
    ) -> List[ItemResult]:
        settings = self.state.config.settings
        self.state.dedup.prune(now, settings.tx_window_ns + settings.permitted_drift_ns)

        atomic = settings.atomic_batch_transfers
        checkpoint = self.state.checkpoint() if atomic else None
        caller_account = Account(owner=caller)

        results: List[ItemResult] = []
        for item in items:
            context = ValidationContext(
                operation=operation,
                caller=caller_account,
                now=now,
                settings=settings,
                error_type=error_type,
                payload=item.fingerprint_payload(),
                created_at_time=item.created_at_time,
                memo=item.memo,
            )
            try:
                self.rules.run(context, ValidationStage.PREFLIGHT)
                plan = planner(context, item)
                self.rules.run(context, ValidationStage.PAYLOAD)
            except ItemError as e:
                results.append(ItemResult.failure(e))
                continue

            plan.apply()
            block_index = self.state.block_log.append(plan.btype, plan.tx, now)
            if context.fingerprint is not None:
                self.state.dedup.record(context.fingerprint, block_index, context.created_at_time)
            results.append(ItemResult.success(block_index))

        if atomic and not all(r.ok for r in results):
            self.state.rollback(checkpoint)
            logger.info(f"Atomic {operation} batch from {caller} rejected, state restored")
            rejection = AtomicBatchError(results)
            self._audit_batch(operation, caller, now, results, rolled_back=rejection)
            raise rejection
        self._audit_batch(operation, caller, now, results)
        return results

    def _audit_batch(self, operation: str, caller: str, now: int, results: List[ItemResult],
                     rolled_back: Optional[AtomicBatchError] = None):
        """Audit every item once the batch outcome is final; rolled-back items count as rejected."""
        for result in results:
            if not result.ok:
                self._audit(operation, caller, now, error=result.error)
            elif rolled_back is not None:
                self._audit(operation, caller, now, error=rolled_back)
            else:
                self._audit(operation, caller, now, block_index=result.value)

    def _audit(self, operation: str, caller: str, now: int,
               block_index: Optional[int] = None, error: Optional[Exception] = None):
        if self.audit_logger is not None:
            self.audit_logger.log_item(operation, caller, now, block_index=block_index, error=error)

    def _check_expiry(self, expires_at: Optional[int], now: int, error_type: Type[ItemError]) -> None:
        drift = self.state.config.settings.permitted_drift_ns
        if expires_at is not None and expires_at <= now + drift:
            raise error_type.of(
                "GENERIC_ERROR",
                error_code=EXPIRY_TOO_SOON,
                message="approval expiry must be later than the permitted drift",
            )

    def _change_owner(self, instance_id: int, to: Account) -> None:
        self.state.ownership.set_owner(instance_id, to)
        self.state.approvals.clear_token_approvals(instance_id)

    # Mint

    def mint(self, caller: str, arg: MintArg, now: int) -> List[int]:
        """
        Mint one instance per holder.

        Returns:
            New instance ids in holder order

        Raises:
            MintError: Unauthorized, NonExistingTokenId, SupplyCapReached or
                GenericError (anonymous holder, memo too large)
            GenericBatchError: No holders, or more than ``max_update_batch_size``
        """
        config = self.state.config
        try:
            if not (config.is_minter(caller) or config.is_controller(caller)):
                raise MintError.of("UNAUTHORIZED")
            self._check_batch(arg.holders, config.settings.max_update_batch_size)

            if self.state.classes.get(arg.token_class_id) is None:
                raise MintError.of("NON_EXISTING_TOKEN_ID")
            for holder in arg.holders:
                if holder.is_anonymous():
                    raise MintError.of("GENERIC_ERROR", error_code=INVALID_HOLDER, message="anonymous holder")
            if arg.memo is not None and len(arg.memo) > config.settings.max_memo_size:
                raise MintError.of(
                    "GENERIC_ERROR", error_code=MEMO_TOO_LARGE, message=f"memo exceeds {config.settings.max_memo_size} bytes"
                )
            try:
                ids = self.state.classes.mint_instances(arg.token_class_id, len(arg.holders), now)
            except ClassError as e:
                raise MintError.of("SUPPLY_CAP_REACHED", message=e.message)
        except (MintError, GenericBatchError) as e:
            if self.audit_logger is not None:
                self.audit_logger.log_item("mint", caller, now, error=e)
            raise

        for instance_id, holder in zip(ids, arg.holders):
            self.state.ownership.set_owner(instance_id, holder)
            block_index = self.state.block_log.append(
                BlockType.MINT, build_tx(tid=instance_id, to=holder, memo=arg.memo), now
            )
            self._audit("mint", caller, now, block_index=block_index)

        logger.info(f"Minted {len(ids)} instances of class {arg.token_class_id} for {caller}")
        return ids

    # Transfers

    def transfer(self, caller: str, args: Sequence[TransferArg], now: int) -> List[ItemResult]:
        self._check_batch(args, self.state.config.settings.max_update_batch_size)

        def plan(context: ValidationContext, arg: TransferArg) -> _Plan:
            owner = self.state.ownership.owner_of(arg.token_id)
            if owner is None:
                raise TransferError.of("NON_EXISTING_TOKEN_ID")
            sender = self._account(caller, arg.from_subaccount, TransferError)
            if owner != sender:
                raise TransferError.of("UNAUTHORIZED")
            if arg.to == sender or arg.to.is_anonymous():
                raise TransferError.of("INVALID_RECIPIENT")
            return _Plan(
                btype=BlockType.TRANSFER,
                tx=build_tx(tid=arg.token_id, from_=sender, to=arg.to,
                            memo=arg.memo, created_at_time=arg.created_at_time),
                apply=lambda: self._change_owner(arg.token_id, arg.to),
            )

        return self._run_batch("transfer", caller, args, now, TransferError, plan)

    def transfer_from(self, caller: str, args: Sequence[TransferFromArg], now: int) -> List[ItemResult]:
        self._check_batch(args, self.state.config.settings.max_update_batch_size)

        def plan(context: ValidationContext, arg: TransferFromArg) -> _Plan:
            owner = self.state.ownership.owner_of(arg.token_id)
            if owner is None:
                raise TransferFromError.of("NON_EXISTING_TOKEN_ID")
            if owner != arg.from_:
                raise TransferFromError.of("UNAUTHORIZED")
            spender = self._account(caller, arg.spender_subaccount, TransferFromError)
            if spender != arg.from_ and not self.state.approvals.is_active(
                arg.from_, spender, arg.token_id, now
            ):
                raise TransferFromError.of("UNAUTHORIZED")
            if arg.to == arg.from_ or arg.to.is_anonymous():
                raise TransferFromError.of("INVALID_RECIPIENT")
            return _Plan(
                btype=BlockType.TRANSFER_FROM,
                tx=build_tx(tid=arg.token_id, from_=arg.from_, to=arg.to, spender=spender,
                            memo=arg.memo, created_at_time=arg.created_at_time),
                apply=lambda: self._change_owner(arg.token_id, arg.to),
            )

        return self._run_batch("transfer_from", caller, args, now, TransferFromError, plan)

    # Approvals

    def approve_tokens(self, caller: str, args: Sequence[ApproveTokenArg], now: int) -> List[ItemResult]:
        settings = self.state.config.settings
        self._check_batch(args, settings.max_update_batch_size)

        def plan(context: ValidationContext, arg: ApproveTokenArg) -> _Plan:
            info = arg.approval_info
            owner = self.state.ownership.owner_of(arg.token_id)
            if owner is None:
                raise ApproveTokenError.of("NON_EXISTING_TOKEN_ID")
            grantor = self._account(caller, info.from_subaccount, ApproveTokenError)
            if owner != grantor:
                raise ApproveTokenError.of("UNAUTHORIZED")
            self._check_expiry(info.expires_at, now, ApproveTokenError)
            limit = settings.max_approvals_per_token_or_collection
            self.state.approvals.check_approve(grantor, info.spender, arg.token_id, now, limit)
            return _Plan(
                btype=BlockType.APPROVE,
                tx=build_tx(tid=arg.token_id, from_=grantor, spender=info.spender, exp=info.expires_at,
                            memo=info.memo, created_at_time=info.created_at_time),
                apply=lambda: self.state.approvals.approve(
                    grantor, info.spender, arg.token_id, now, limit,
                    expires_at=info.expires_at, memo=info.memo, created_at=info.created_at_time,
                ),
            )

        return self._run_batch("approve_tokens", caller, args, now, ApproveTokenError, plan)

    def approve_collection(self, caller: str, args: Sequence[ApproveCollectionArg], now: int) -> List[ItemResult]:
        settings = self.state.config.settings
        self._check_batch(args, settings.max_update_batch_size)

        def plan(context: ValidationContext, arg: ApproveCollectionArg) -> _Plan:
            info = arg.approval_info
            grantor = self._account(caller, info.from_subaccount, ApproveCollectionError)
            self._check_expiry(info.expires_at, now, ApproveCollectionError)
            limit = settings.max_approvals_per_token_or_collection
            self.state.approvals.check_approve(grantor, info.spender, None, now, limit)
            return _Plan(
                btype=BlockType.APPROVE_COLLECTION,
                tx=build_tx(from_=grantor, spender=info.spender, exp=info.expires_at,
                            memo=info.memo, created_at_time=info.created_at_time),
                apply=lambda: self.state.approvals.approve(
                    grantor, info.spender, None, now, limit,
                    expires_at=info.expires_at, memo=info.memo, created_at=info.created_at_time,
                ),
            )

        return self._run_batch("approve_collection", caller, args, now, ApproveCollectionError, plan)

    # Revocations

    def _revoke_batch(self, operation: str, caller: str, args: Sequence, now: int,
                      error_type: Type[ItemError], btype: BlockType, token_scoped: bool) -> List[ItemResult]:
        settings = self.state.config.settings
        self._check_batch(args, settings.max_update_batch_size)
        self._check_batch(args, settings.max_revoke_approvals, GenericBatchError.TOO_MANY_REVOCATIONS)
        budget = [settings.max_revoke_approvals]

        def plan(context: ValidationContext, arg) -> _Plan:
            instance_id = None
            grantor = self._account(caller, arg.from_subaccount, error_type)
            if token_scoped:
                instance_id = arg.token_id
                owner = self.state.ownership.owner_of(instance_id)
                if owner is None:
                    raise error_type.of("NON_EXISTING_TOKEN_ID")
                if owner != grantor:
                    raise error_type.of("UNAUTHORIZED")
            targets = self.state.approvals.check_revoke(grantor, arg.spender, instance_id, now, budget[0])

            def apply():
                self.state.approvals.revoke(grantor, arg.spender, instance_id, now, budget[0])
                budget[0] -= len(targets)

            return _Plan(
                btype=btype,
                tx=build_tx(tid=instance_id, from_=grantor, spender=arg.spender,
                            memo=arg.memo, created_at_time=arg.created_at_time),
                apply=apply,
            )

        return self._run_batch(operation, caller, args, now, error_type, plan)

    def revoke_token_approvals(self, caller: str, args: Sequence[RevokeTokenApprovalArg],
                               now: int) -> List[ItemResult]:
        return self._revoke_batch(
            "revoke_token_approvals", caller, args, now,
            RevokeTokenApprovalError, BlockType.REVOKE, token_scoped=True,
        )

    def revoke_collection_approvals(self, caller: str, args: Sequence[RevokeCollectionApprovalArg],
                                    now: int) -> List[ItemResult]:
        return self._revoke_batch(
            "revoke_collection_approvals", caller, args, now,
            RevokeCollectionApprovalError, BlockType.REVOKE_COLLECTION, token_scoped=False,
        )
