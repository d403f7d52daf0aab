"""
Pytest configuration and fixtures for SFT ledger tests.
"""

import tempfile

import pytest

from ledger.service import Ledger
from registry.schema import SECOND, Account, Collection, CollectionSettings, CreateClassArgs
from registry.storage import LedgerStorage
from validator.audit_logger import AuditLogger
from validator.requests import MintArg


START_TIME = 1_700_000_000 * SECOND


class FakeClock:
    """Controllable ledger clock in nanoseconds."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> int:
        self.now += int(seconds * SECOND)
        return self.now


def class_args(name="Gold", content=b"gold-asset", supply_cap=None, author="manager", **kwargs):
    """Build class creation arguments with sensible defaults."""
    return CreateClassArgs(
        name=name,
        asset_name=f"{name.lower()}.png",
        asset_content_type="image/png",
        asset_content=content,
        supply_cap=supply_cap,
        author=author,
        **kwargs
    )


@pytest.fixture
def temp_dir():
    """Create temporary test data directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return CollectionSettings()


@pytest.fixture
def collection():
    """Collection with one principal per role."""
    return Collection(
        symbol="SFT",
        name="Test Collection",
        controllers={"controller"},
        managers={"manager"},
        minters={"minter"},
    )


@pytest.fixture
def audit_logger():
    return AuditLogger({"max_memory_events": 1000})


@pytest.fixture
def ledger(collection, clock, audit_logger):
    """In-memory ledger driven by the fake clock."""
    return Ledger(collection=collection, clock=clock, audit_logger=audit_logger)


@pytest.fixture
def storage(temp_dir):
    return LedgerStorage(storage_dir=temp_dir, backup_count=2)


@pytest.fixture
def alice():
    return Account(owner="alice")


@pytest.fixture
def bob():
    return Account(owner="bob")


@pytest.fixture
def carol():
    return Account(owner="carol")


@pytest.fixture
def minted(ledger, alice, bob):
    """
    One uncapped class with two instances owned by alice and one by bob.

    Returns:
        (class_id, [alice_id_1, alice_id_2, bob_id])
    """
    class_id = ledger.create_class("manager", class_args())
    ids = ledger.mint("minter", MintArg(token_class_id=class_id, holders=[alice, alice, bob]))
    return class_id, ids
