"""
SFT Ledger - Block Model and Hash Chain

Blocks are encoded canonically (JSON, sorted keys, compact separators) and
chained with SHA-256: each digest covers the previous digest followed by the
canonical encoding of the block body.
"""

import hashlib
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from registry.schema import Account
from registry.storage import canonical_json


GENESIS_DIGEST = bytes(32)

ICRC7_URL = "https://github.com/dfinity/ICRC/blob/main/ICRCs/ICRC-7/ICRC-7.md"
ICRC37_URL = "https://github.com/dfinity/ICRC/blob/main/ICRCs/ICRC-37/ICRC-37.md"


class BlockType(str, Enum):
    """Block types recorded by the ledger."""
    MINT = "7mint"
    TRANSFER = "7xfer"
    APPROVE = "37approve"
    APPROVE_COLLECTION = "37approve_coll"
    REVOKE = "37revoke"
    REVOKE_COLLECTION = "37revoke_coll"
    TRANSFER_FROM = "37xfer"


def supported_block_types() -> List[Dict[str, str]]:
    """Block types with the URL of the standard that defines them."""
    return [
        {"block_type": bt.value, "url": ICRC7_URL if bt.value.startswith("7") else ICRC37_URL}
        for bt in BlockType
    ]


def encode_account(account: Account) -> List[str]:
    """Block encoding of an account: ``[owner]`` or ``[owner, subaccount]``."""
    if account.subaccount is None:
        return [account.owner]
    return [account.owner, account.subaccount]


def decode_account(value: List[str]) -> Account:
    return Account(owner=value[0], subaccount=value[1] if len(value) > 1 else None)


def build_tx(
    tid: Optional[int] = None,
    from_: Optional[Account] = None,
    to: Optional[Account] = None,
    spender: Optional[Account] = None,
    exp: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
    memo: Optional[bytes] = None,
    created_at_time: Optional[int] = None,
) -> Dict[str, Any]:
    """Assemble a block payload, omitting absent fields."""
    tx: Dict[str, Any] = {}
    if tid is not None:
        tx["tid"] = tid
    if from_ is not None:
        tx["from"] = encode_account(from_)
    if to is not None:
        tx["to"] = encode_account(to)
    if spender is not None:
        tx["spender"] = encode_account(spender)
    if exp is not None:
        tx["exp"] = exp
    if meta:
        tx["meta"] = meta
    if memo:
        tx["memo"] = memo.hex()
    if created_at_time is not None:
        tx["ts"] = created_at_time
    return tx


def block_body(index: int, btype: str, ts: int, tx: Dict[str, Any]) -> bytes:
    """Canonical encoding of the hashed portion of a block."""
    return canonical_json({"index": index, "btype": btype, "ts": ts, "tx": tx})


def chain_digest(prev_digest: bytes, body: bytes) -> bytes:
    return hashlib.sha256(prev_digest + body).digest()


class BlockEntry(BaseModel):
    """One committed block."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    btype: BlockType
    ts: int = Field(..., ge=0, description="Ledger time at commit (ns)")
    tx: Dict[str, Any] = Field(default_factory=dict)
    phash: str = Field(..., description="Digest of the previous block (hex)")
    digest: str = Field(..., description="Digest of this block (hex)")

    @field_validator('phash', 'digest')
    @classmethod
    def validate_digest(cls, v):
        if len(v) != 64:
            raise ValueError('Digest must be 64-character hex string (32 bytes)')
        bytes.fromhex(v)
        return v.lower()

    @classmethod
    def create(cls, index: int, btype: BlockType, ts: int, tx: Dict[str, Any], prev_digest: bytes) -> "BlockEntry":
        digest = chain_digest(prev_digest, block_body(index, btype.value, ts, tx))
        return cls(index=index, btype=btype, ts=ts, tx=tx, phash=prev_digest.hex(), digest=digest.hex())

    def body(self) -> bytes:
        return block_body(self.index, self.btype.value, self.ts, self.tx)

    def recompute(self, prev_digest: bytes) -> bytes:
        return chain_digest(prev_digest, self.body())


def verify_chain(entries: Iterable[BlockEntry], start_digest: bytes = GENESIS_DIGEST) -> Optional[bytes]:
    """
    Recompute a contiguous run of blocks.

    Args:
        entries: Blocks in index order
        start_digest: Digest preceding the first entry (genesis by default)

    Returns:
        The final digest, or None if any link or digest does not match
    """
    prev = start_digest
    expected_index = None
    for entry in entries:
        if expected_index is not None and entry.index != expected_index:
            return None
        if entry.phash != prev.hex():
            return None
        digest = entry.recompute(prev)
        if digest.hex() != entry.digest:
            return None
        prev = digest
        expected_index = entry.index + 1
    return prev


class TipCertificate(BaseModel):
    """Certified summary of the chain tip."""

    last_block_index: int = Field(..., ge=0)
    last_block_hash: str
    hash_tree: str = Field(..., description="Canonical encoding of the certified fields (hex)")

    @classmethod
    def for_tip(cls, index: int, digest: bytes) -> "TipCertificate":
        tree = canonical_json({"last_block_hash": digest.hex(), "last_block_index": index})
        return cls(last_block_index=index, last_block_hash=digest.hex(), hash_tree=tree.hex())

    def certified_digest(self) -> str:
        """SHA-256 over the hash tree; what an external certifier would sign."""
        return hashlib.sha256(bytes.fromhex(self.hash_tree)).hexdigest()
