"""
SFT Ledger - Approval Store

Token-level and collection-level spending approvals. At most one active
approval exists per (grantor, spender, scope); a new approval for the same
tuple replaces the old one. Expiry is checked at read time and expired
entries are removed lazily when their scope is next touched; nothing sweeps
them in the background.
"""

import logging
from typing import Dict, List, Optional, Type

from pydantic import BaseModel, Field

from validator.errors import (
    ApproveCollectionError, ApproveTokenError, ItemError,
    RevokeCollectionApprovalError, RevokeTokenApprovalError
)
from .schema import Account, Approval


logger = logging.getLogger(__name__)


class ApprovalState(BaseModel):
    """Serializable approval snapshot."""

    approvals: List[Approval] = Field(default_factory=list)
    next_approval_id: int = Field(default=1, ge=1)


class ApprovalStore:
    """Holds token and collection approvals keyed by scope and spender."""

    def __init__(self, state: Optional[ApprovalState] = None):
        self._token: Dict[int, Dict[Account, Approval]] = {}
        self._collection: Dict[Account, Dict[Account, Approval]] = {}
        self._next_id = 1
        if state is not None:
            self._next_id = state.next_approval_id
            for approval in state.approvals:
                self._scope(approval.grantor, approval.instance_id)[approval.spender] = approval

    def _scope(self, grantor: Account, instance_id: Optional[int]) -> Dict[Account, Approval]:
        if instance_id is None:
            return self._collection.setdefault(grantor, {})
        return self._token.setdefault(instance_id, {})

    def _active_in_scope(
        self, grantor: Account, instance_id: Optional[int], now: int
    ) -> Dict[Account, Approval]:
        """Prune expired approvals in a scope and return the grantor's active ones."""
        if instance_id is None:
            scope = self._collection.get(grantor)
        else:
            scope = self._token.get(instance_id)
        if not scope:
            return {}

        for spender in [s for s, a in scope.items() if not a.is_active(now)]:
            del scope[spender]
        if not scope:
            if instance_id is None:
                del self._collection[grantor]
            else:
                del self._token[instance_id]
            return {}

        return {s: a for s, a in scope.items() if a.grantor == grantor}

    @staticmethod
    def _approve_error(instance_id: Optional[int]) -> Type[ItemError]:
        return ApproveCollectionError if instance_id is None else ApproveTokenError

    @staticmethod
    def _revoke_error(instance_id: Optional[int]) -> Type[ItemError]:
        return RevokeCollectionApprovalError if instance_id is None else RevokeTokenApprovalError

    def check_approve(
        self,
        grantor: Account,
        spender: Account,
        instance_id: Optional[int],
        now: int,
        max_approvals: int,
    ) -> None:
        """
        Validate an approval without recording it.

        Raises:
            ApproveTokenError / ApproveCollectionError: InvalidSpender or
                ExceedsApprovalLimit
        """
        error = self._approve_error(instance_id)
        if spender == grantor or spender.is_anonymous():
            raise error.of("INVALID_SPENDER")

        active = self._active_in_scope(grantor, instance_id, now)
        if spender not in active and len(active) >= max_approvals:
            raise error.of(
                "EXCEEDS_APPROVAL_LIMIT",
                message=f"grantor already holds {len(active)} active approvals",
            )

    def approve(
        self,
        grantor: Account,
        spender: Account,
        instance_id: Optional[int],
        now: int,
        max_approvals: int,
        expires_at: Optional[int] = None,
        memo: Optional[bytes] = None,
        created_at: Optional[int] = None,
    ) -> Approval:
        """Record an approval, replacing any existing one for the same tuple."""
        self.check_approve(grantor, spender, instance_id, now, max_approvals)

        approval = Approval(
            approval_id=self._next_id,
            grantor=grantor,
            spender=spender,
            instance_id=instance_id,
            expires_at=expires_at,
            memo=memo.hex() if memo else None,
            created_at=created_at if created_at is not None else now,
        )
        self._next_id += 1
        self._scope(grantor, instance_id)[spender] = approval
        logger.debug(
            f"Approval {approval.approval_id}: {grantor} -> {spender} "
            f"({'collection' if instance_id is None else instance_id})"
        )
        return approval

    def check_revoke(
        self,
        grantor: Account,
        spender: Optional[Account],
        instance_id: Optional[int],
        now: int,
        budget: int,
    ) -> List[Approval]:
        """
        Resolve which approvals a revocation would remove, without removing them.

        Args:
            grantor: Account that granted the approvals
            spender: Specific spender, or None to revoke every approval in scope
            instance_id: Target instance, or None for collection scope
            now: Ledger time (ns)
            budget: Revocations still allowed in the current call

        Raises:
            RevokeTokenApprovalError / RevokeCollectionApprovalError:
                ApprovalDoesNotExist or TooManyRevocations
        """
        error = self._revoke_error(instance_id)
        active = self._active_in_scope(grantor, instance_id, now)

        if spender is not None:
            approval = active.get(spender)
            if approval is None:
                raise error.of("APPROVAL_DOES_NOT_EXIST")
            targets = [approval]
        else:
            targets = sorted(active.values(), key=lambda a: a.spender.key())
            if not targets:
                raise error.of("APPROVAL_DOES_NOT_EXIST")

        if len(targets) > budget:
            raise error.of(
                "TOO_MANY_REVOCATIONS",
                message=f"{len(targets)} approvals exceed the remaining revocation budget {budget}",
            )
        return targets

    def revoke(
        self,
        grantor: Account,
        spender: Optional[Account],
        instance_id: Optional[int],
        now: int,
        budget: int,
    ) -> List[Approval]:
        """Remove approvals in scope; returns the revoked approvals."""
        targets = self.check_revoke(grantor, spender, instance_id, now, budget)
        scope = self._scope(grantor, instance_id)
        for approval in targets:
            del scope[approval.spender]
        if not scope:
            if instance_id is None:
                del self._collection[grantor]
            else:
                del self._token[instance_id]
        return targets

    def is_active(self, grantor: Account, spender: Account, instance_id: int, now: int) -> bool:
        """Token-level approval first, collection-level approval as fallback."""
        if spender in self._active_in_scope(grantor, instance_id, now):
            return True
        return spender in self._active_in_scope(grantor, None, now)

    def clear_token_approvals(self, instance_id: int) -> int:
        """Drop every token-level approval on an instance (ownership changed)."""
        removed = self._token.pop(instance_id, {})
        return len(removed)

    def token_approvals(
        self, grantor: Account, instance_id: int, cursor: Optional[Account], take: int, now: int
    ) -> List[Approval]:
        approvals = sorted(
            self._active_in_scope(grantor, instance_id, now).values(),
            key=lambda a: a.spender.key(),
        )
        if cursor is not None:
            approvals = [a for a in approvals if a.spender.key() > cursor.key()]
        return approvals[:take]

    def collection_approvals(
        self, grantor: Account, cursor: Optional[Account], take: int, now: int
    ) -> List[Approval]:
        approvals = sorted(
            self._active_in_scope(grantor, None, now).values(),
            key=lambda a: a.spender.key(),
        )
        if cursor is not None:
            approvals = [a for a in approvals if a.spender.key() > cursor.key()]
        return approvals[:take]

    def to_state(self) -> ApprovalState:
        approvals = [a for scope in self._token.values() for a in scope.values()]
        approvals += [a for scope in self._collection.values() for a in scope.values()]
        approvals.sort(key=lambda a: a.approval_id)
        return ApprovalState(approvals=approvals, next_approval_id=self._next_id)
