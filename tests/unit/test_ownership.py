"""
Unit tests for the ownership index.
"""

from registry.ownership import OwnershipIndex, OwnershipState
from registry.schema import Account


ALICE = Account(owner="alice")
BOB = Account(owner="bob")


class TestOwnershipIndex:

    def test_set_owner_and_balance(self):
        index = OwnershipIndex()
        assert index.set_owner(5, ALICE) is None
        index.set_owner(3, ALICE)

        assert index.owner_of(5) == ALICE
        assert index.balance_of(ALICE) == 2
        assert index.balance_of(BOB) == 0
        assert 3 in index
        assert len(index) == 2

    def test_reassign_moves_instance(self):
        index = OwnershipIndex()
        index.set_owner(1, ALICE)

        previous = index.set_owner(1, BOB)

        assert previous == ALICE
        assert index.balance_of(ALICE) == 0
        assert index.balance_of(BOB) == 1
        assert index.instances_of(ALICE, None, 10) == []

    def test_unknown_instance(self):
        assert OwnershipIndex().owner_of(42) is None

    def test_pagination_is_ascending_and_exclusive(self):
        index = OwnershipIndex()
        for instance_id in (9, 2, 5, 7):
            index.set_owner(instance_id, ALICE)

        assert index.instances_of(ALICE, None, 2) == [2, 5]
        assert index.instances_of(ALICE, 5, 10) == [7, 9]
        assert index.instances_of(ALICE, 9, 10) == []

    def test_subaccounts_are_distinct_owners(self):
        index = OwnershipIndex()
        sub = Account(owner="alice", subaccount="01" * 32)
        index.set_owner(1, sub)

        assert index.balance_of(ALICE) == 0
        assert index.balance_of(sub) == 1

    def test_state_round_trip(self):
        index = OwnershipIndex()
        index.set_owner(1, ALICE)
        index.set_owner(2, BOB)

        restored = OwnershipIndex(OwnershipState.model_validate(index.to_state().model_dump(mode='json')))

        assert restored.owner_of(1) == ALICE
        assert restored.owner_of(2) == BOB
        assert restored.balance_of(BOB) == 1
