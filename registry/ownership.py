"""
SFT Ledger - Ownership Index

Maps every minted instance id to its owning account and keeps a per-account
sorted index for balance and pagination queries. Authorization is not checked
here; callers (the transfer engine) are responsible for it.
"""

from bisect import bisect_right, insort
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .schema import Account


class OwnershipState(BaseModel):
    """Serializable ownership snapshot."""

    owners: Dict[int, Account] = Field(default_factory=dict)


class OwnershipIndex:
    """Single source of truth for who owns which instance."""

    def __init__(self, state: Optional[OwnershipState] = None):
        self._owners: Dict[int, Account] = {}
        self._by_account: Dict[Account, List[int]] = {}
        if state is not None:
            for instance_id, account in sorted(state.owners.items()):
                self.set_owner(instance_id, account)

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, instance_id: int) -> bool:
        return instance_id in self._owners

    def owner_of(self, instance_id: int) -> Optional[Account]:
        return self._owners.get(instance_id)

    def set_owner(self, instance_id: int, account: Account) -> Optional[Account]:
        """Assign an instance to an account, returning the previous owner."""
        previous = self._owners.get(instance_id)
        if previous == account:
            return previous

        if previous is not None:
            ids = self._by_account[previous]
            ids.pop(bisect_right(ids, instance_id) - 1)
            if not ids:
                del self._by_account[previous]

        self._owners[instance_id] = account
        insort(self._by_account.setdefault(account, []), instance_id)
        return previous

    def balance_of(self, account: Account) -> int:
        return len(self._by_account.get(account, ()))

    def instances_of(self, account: Account, cursor: Optional[int], limit: int) -> List[int]:
        """
        Page through an account's instances in ascending id order.

        Args:
            account: Owning account
            cursor: Last id seen by the caller (exclusive start), or None
            limit: Page size, already clamped by the caller

        Returns:
            Up to ``limit`` instance ids greater than ``cursor``
        """
        ids = self._by_account.get(account, [])
        start = 0 if cursor is None else bisect_right(ids, cursor)
        return ids[start:start + limit]

    def to_state(self) -> OwnershipState:
        return OwnershipState(owners=dict(self._owners))
