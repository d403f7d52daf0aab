"""
SFT Ledger - Registry Schema Models

This module defines the Pydantic models for accounts, token classes, approvals,
challenge commitments and collection settings tracked by the ledger registry.
"""

import re
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SECOND = 1_000_000_000  # ledger timestamps are nanoseconds since the epoch

ANONYMOUS = "2vxsx-fae"
DEFAULT_SUBACCOUNT = "0" * 64

INSTANCE_SERIAL_BITS = 32
INSTANCE_SERIAL_MASK = (1 << INSTANCE_SERIAL_BITS) - 1

MetadataValue = Union[bool, int, float, str]

_HEX_32 = re.compile(r'^[a-fA-F0-9]{64}$')


def make_instance_id(class_id: int, serial: int) -> int:
    """Build the global instance id from a class id and a 1-based serial."""
    return (class_id << INSTANCE_SERIAL_BITS) | serial


def split_instance_id(instance_id: int) -> tuple:
    """Split an instance id into (class_id, serial)."""
    return instance_id >> INSTANCE_SERIAL_BITS, instance_id & INSTANCE_SERIAL_MASK


def _normalize_hash(v: str, label: str) -> str:
    if v.startswith('0x'):
        v = v[2:]
    if not _HEX_32.match(v):
        raise ValueError(f'{label} must be 64-character hex string (32 bytes)')
    return v.lower()


def normalize_asset_hash(v: str) -> str:
    """Lower-case hex asset hash without a 0x prefix; raises ValueError otherwise."""
    return _normalize_hash(v, 'Asset hash')


def fold_subaccount(v: Optional[str]) -> Optional[str]:
    """Normalize a subaccount; the default subaccount folds to None."""
    if v is None:
        return v
    v = _normalize_hash(v, 'Subaccount')
    if v == DEFAULT_SUBACCOUNT:
        return None
    return v


class Account(BaseModel):
    """
    Ledger account: an owner principal plus an optional subaccount.

    The all-zero subaccount is the default subaccount and is stored as None,
    so an account given without a subaccount compares equal to one given the
    default subaccount explicitly.
    """

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1, max_length=63, description="Owner principal (text)")
    subaccount: Optional[str] = Field(None, description="32-byte subaccount (hex)")

    @field_validator('owner')
    @classmethod
    def validate_owner(cls, v):
        """Validate principal text format."""
        if not re.match(r'^[a-z0-9-]+$', v):
            raise ValueError('Owner must be a lowercase principal text')
        return v

    @field_validator('subaccount')
    @classmethod
    def validate_subaccount(cls, v):
        """Validate subaccount format and fold the default subaccount."""
        return fold_subaccount(v)

    def is_anonymous(self) -> bool:
        return self.owner == ANONYMOUS

    def key(self) -> str:
        """Stable text key used for indexes and fingerprints."""
        if self.subaccount is None:
            return self.owner
        return f"{self.owner}.{self.subaccount}"

    @classmethod
    def from_key(cls, key: str) -> "Account":
        owner, _, subaccount = key.partition('.')
        return cls(owner=owner, subaccount=subaccount or None)

    def __str__(self) -> str:
        return self.key()


class TokenClass(BaseModel):
    """A token class: shared metadata for a set of minted instances."""

    id: int = Field(..., ge=1, description="Class identifier (1-based)")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    asset_name: str = Field(..., min_length=1, max_length=256)
    asset_content_type: str = Field(..., min_length=1, max_length=128)
    asset_hash: str = Field(..., description="SHA3-256 of the asset content (hex)")
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)
    author: str = Field(..., min_length=1)
    supply_cap: Optional[int] = Field(None, gt=0, le=INSTANCE_SERIAL_MASK)
    total_supply: int = Field(default=0, ge=0, description="Instances minted so far")
    created_at: int = Field(default=0, ge=0)
    updated_at: int = Field(default=0, ge=0)

    @field_validator('asset_hash')
    @classmethod
    def validate_asset_hash(cls, v):
        return normalize_asset_hash(v)

    @field_validator('metadata')
    @classmethod
    def validate_metadata(cls, v):
        """Metadata keys must be short non-empty identifiers."""
        for key in v:
            if not key or len(key) > 64:
                raise ValueError(f'Invalid metadata key: {key!r}')
        return v

    @model_validator(mode='after')
    def validate_supply(self):
        if self.supply_cap is not None and self.total_supply > self.supply_cap:
            raise ValueError('Total supply exceeds supply cap')
        return self

    def remaining_supply(self) -> Optional[int]:
        """Instances that may still be minted, or None when uncapped."""
        if self.supply_cap is None:
            return None
        return self.supply_cap - self.total_supply

    def instance_ids(self) -> List[int]:
        return [make_instance_id(self.id, s) for s in range(1, self.total_supply + 1)]

    def token_metadata(self) -> Dict[str, MetadataValue]:
        """Class metadata merged with the standard icrc7 keys."""
        res: Dict[str, MetadataValue] = dict(self.metadata)
        res["icrc7:name"] = self.name
        if self.description is not None:
            res["icrc7:description"] = self.description
        res["asset_name"] = self.asset_name
        res["asset_content_type"] = self.asset_content_type
        res["asset_hash"] = self.asset_hash
        return res


class Approval(BaseModel):
    """A spending delegation from a grantor to a spender."""

    approval_id: int = Field(..., ge=1)
    grantor: Account
    spender: Account
    instance_id: Optional[int] = Field(None, description="Target instance; None for collection-wide")
    expires_at: Optional[int] = Field(None, ge=0)
    memo: Optional[str] = Field(None, description="Memo bytes (hex)")
    created_at: int = Field(..., ge=0)

    def is_collection_wide(self) -> bool:
        return self.instance_id is None

    def is_active(self, now: int) -> bool:
        return self.expires_at is None or self.expires_at > now


class ChallengeCommitment(BaseModel):
    """One-time commitment binding asset content to an author."""

    token: str = Field(..., description="Opaque challenge token (hex)")
    asset_hash: str
    author: str = Field(..., min_length=1)
    generation: int = Field(default=0, ge=0)
    issued_at: int = Field(..., ge=0)

    @field_validator('asset_hash')
    @classmethod
    def validate_asset_hash(cls, v):
        return normalize_asset_hash(v)


class CollectionSettings(BaseModel):
    """Collection-wide tunable limits."""

    max_query_batch_size: int = Field(default=100, gt=0, le=65535)
    max_update_batch_size: int = Field(default=20, gt=0, le=65535)
    default_take_value: int = Field(default=10, gt=0, le=65535)
    max_take_value: int = Field(default=100, gt=0, le=65535)
    max_memo_size: int = Field(default=32, ge=0, le=65535)
    atomic_batch_transfers: bool = Field(default=False)
    tx_window: int = Field(default=3600, ge=0, description="Deduplication window (seconds)")
    permitted_drift: int = Field(default=120, ge=0, description="Permitted clock drift (seconds)")
    max_approvals_per_token_or_collection: int = Field(default=10, gt=0, le=65535)
    max_revoke_approvals: int = Field(default=10, gt=0, le=65535)
    archive_trigger_threshold: int = Field(default=2000, gt=0)
    archive_num_blocks: int = Field(default=1000, gt=0)
    challenge_ttl: int = Field(default=600, gt=0, description="Challenge lifetime (seconds)")

    @model_validator(mode='after')
    def validate_limits(self):
        if self.default_take_value > self.max_take_value:
            raise ValueError('Default take value cannot exceed max take value')
        if self.archive_num_blocks > self.archive_trigger_threshold:
            raise ValueError('Archive batch cannot exceed the archive trigger threshold')
        return self

    @property
    def tx_window_ns(self) -> int:
        return self.tx_window * SECOND

    @property
    def permitted_drift_ns(self) -> int:
        return self.permitted_drift * SECOND


class Collection(BaseModel):
    """Collection metadata, role sets and settings."""

    symbol: str = Field(..., min_length=1, max_length=16)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    logo: Optional[str] = None
    assets_origin: Optional[str] = None
    supply_cap: Optional[int] = Field(None, gt=0, description="Maximum number of token classes")
    controllers: Set[str] = Field(default_factory=set)
    managers: Set[str] = Field(default_factory=set)
    minters: Set[str] = Field(default_factory=set)
    settings: CollectionSettings = Field(default_factory=CollectionSettings)
    created_at: int = Field(default=0, ge=0)
    updated_at: int = Field(default=0, ge=0)


class CollectionPatch(BaseModel):
    """Partial update of collection metadata and settings."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    logo: Optional[str] = None
    assets_origin: Optional[str] = None
    supply_cap: Optional[int] = Field(None, gt=0)
    max_query_batch_size: Optional[int] = Field(None, gt=0, le=65535)
    max_update_batch_size: Optional[int] = Field(None, gt=0, le=65535)
    default_take_value: Optional[int] = Field(None, gt=0, le=65535)
    max_take_value: Optional[int] = Field(None, gt=0, le=65535)
    max_memo_size: Optional[int] = Field(None, ge=0, le=65535)
    atomic_batch_transfers: Optional[bool] = None
    tx_window: Optional[int] = Field(None, ge=0)
    permitted_drift: Optional[int] = Field(None, ge=0)
    max_approvals_per_token_or_collection: Optional[int] = Field(None, gt=0, le=65535)
    max_revoke_approvals: Optional[int] = Field(None, gt=0, le=65535)
    archive_trigger_threshold: Optional[int] = Field(None, gt=0)
    archive_num_blocks: Optional[int] = Field(None, gt=0)
    challenge_ttl: Optional[int] = Field(None, gt=0)


class CreateClassArgs(BaseModel):
    """Arguments for creating a token class."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    asset_name: str = Field(..., min_length=1, max_length=256)
    asset_content_type: str = Field(..., min_length=1, max_length=128)
    asset_content: bytes = Field(..., min_length=1)
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)
    supply_cap: Optional[int] = Field(None, gt=0, le=INSTANCE_SERIAL_MASK)
    author: str = Field(..., min_length=1)
    challenge: Optional[str] = Field(None, description="Challenge token (hex)")


class UpdateClassArgs(BaseModel):
    """
    Partial update of a token class.

    Only fields explicitly set are applied; an explicit ``supply_cap=None``
    is a request to remove the cap.
    """

    id: int = Field(..., ge=1)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    asset_name: Optional[str] = Field(None, min_length=1, max_length=256)
    asset_content_type: Optional[str] = Field(None, min_length=1, max_length=128)
    asset_content: Optional[bytes] = Field(None, min_length=1)
    metadata: Optional[Dict[str, MetadataValue]] = None
    supply_cap: Optional[int] = Field(None, gt=0, le=INSTANCE_SERIAL_MASK)
    author: Optional[str] = Field(None, min_length=1)
