"""
SFT Ledger - Batch Request Models

Pydantic models for the items of each batch operation. Each model knows how
to describe itself for fingerprinting: ``fingerprint_payload`` returns the
request contents minus the timestamp, in a JSON-compatible form.

Subaccount fields are folded the way ``Account`` folds them, so every
spelling of the same account fingerprints alike. A malformed subaccount is
left as given and rejected per item by the engine.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from registry.schema import Account, fold_subaccount


def _fold_if_valid(v: Optional[str]) -> Optional[str]:
    try:
        return fold_subaccount(v)
    except ValueError:
        return v


class _Request(BaseModel):
    memo: Optional[bytes] = None
    created_at_time: Optional[int] = Field(None, ge=0)

    @field_validator('from_subaccount', 'spender_subaccount', check_fields=False)
    @classmethod
    def fold_subaccounts(cls, v):
        return _fold_if_valid(v)

    def fingerprint_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode='json', exclude={'created_at_time', 'memo'}, exclude_none=True)
        if self.memo is not None:
            data['memo'] = self.memo.hex()
        return data


class TransferArg(_Request):
    """Move an instance owned by the caller's account to ``to``."""

    from_subaccount: Optional[str] = None
    to: Account
    token_id: int = Field(..., ge=0)


class TransferFromArg(_Request):
    """Move an instance owned by ``from_`` on behalf of its owner."""

    spender_subaccount: Optional[str] = None
    from_: Account = Field(..., alias='from')
    to: Account
    token_id: int = Field(..., ge=0)

    model_config = ConfigDict(populate_by_name=True)


class ApprovalInfo(BaseModel):
    spender: Account
    from_subaccount: Optional[str] = None
    expires_at: Optional[int] = Field(None, ge=0)
    memo: Optional[bytes] = None
    created_at_time: Optional[int] = Field(None, ge=0)

    @field_validator('from_subaccount')
    @classmethod
    def fold_from_subaccount(cls, v):
        return _fold_if_valid(v)


class ApproveTokenArg(BaseModel):
    token_id: int = Field(..., ge=0)
    approval_info: ApprovalInfo

    @property
    def memo(self) -> Optional[bytes]:
        return self.approval_info.memo

    @property
    def created_at_time(self) -> Optional[int]:
        return self.approval_info.created_at_time

    def fingerprint_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode='json', exclude={'approval_info': {'created_at_time', 'memo'}}, exclude_none=True)
        if self.memo is not None:
            data['approval_info']['memo'] = self.memo.hex()
        return data


class ApproveCollectionArg(BaseModel):
    approval_info: ApprovalInfo

    @property
    def memo(self) -> Optional[bytes]:
        return self.approval_info.memo

    @property
    def created_at_time(self) -> Optional[int]:
        return self.approval_info.created_at_time

    def fingerprint_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode='json', exclude={'approval_info': {'created_at_time', 'memo'}}, exclude_none=True)
        if self.memo is not None:
            data['approval_info']['memo'] = self.memo.hex()
        return data


class RevokeTokenApprovalArg(_Request):
    """Revoke one spender's approval on an instance, or all of them when ``spender`` is None."""

    spender: Optional[Account] = None
    from_subaccount: Optional[str] = None
    token_id: int = Field(..., ge=0)


class RevokeCollectionApprovalArg(_Request):
    spender: Optional[Account] = None
    from_subaccount: Optional[str] = None


class IsApprovedArg(BaseModel):
    spender: Account
    from_subaccount: Optional[str] = None
    token_id: int = Field(..., ge=0)

    @field_validator('from_subaccount')
    @classmethod
    def fold_from_subaccount(cls, v):
        return _fold_if_valid(v)


class MintArg(BaseModel):
    """Mint one instance of a class for each holder, in holder order."""

    token_class_id: int = Field(..., ge=1)
    holders: List[Account] = Field(default_factory=list)
    memo: Optional[bytes] = None
