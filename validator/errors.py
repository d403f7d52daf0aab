"""
SFT Ledger Error Taxonomy

Per-item errors are grouped into closed families, one per operation family.
Each family carries its own ``Kind`` enumeration so that a transfer can never
report an approval-only condition and vice versa. Batch-level and fatal
conditions are raised as exceptions that abort the whole call.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Type


class LedgerError(Exception):
    """Base exception for all ledger errors."""
    pass


class FatalLedgerError(LedgerError):
    """Raised when the persistent store rejects a write; the call is rolled back."""
    pass


class ArchiveError(LedgerError):
    """Raised when an archive refuses or fails a block hand-off."""
    pass


class GenericBatchError(LedgerError):
    """Batch-level precondition failure; no item of the batch was processed."""

    EMPTY_BATCH = 1
    BATCH_TOO_LARGE = 2
    TOO_MANY_REVOCATIONS = 3
    ATOMIC_BATCH_REJECTED = 4

    def __init__(self, error_code: int, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"GenericBatchError": {"error_code": self.error_code, "message": self.message}}


class AtomicBatchError(GenericBatchError):
    """An atomic batch was rejected because at least one item failed."""

    def __init__(self, results: List["ItemResult"]):
        failed = [i for i, r in enumerate(results) if not r.ok]
        super().__init__(
            self.ATOMIC_BATCH_REJECTED,
            f"atomic batch rejected, failing items: {failed}",
        )
        self.results = results


class ItemError(LedgerError):
    """
    A per-item failure.

    Subclasses bind ``Kind`` to their family enumeration; constructing an
    error with a kind from another family is a programming error.
    """

    Kind: Type[Enum] = Enum

    def __init__(
        self,
        kind: Enum,
        message: str = "",
        ledger_time: Optional[int] = None,
        duplicate_of: Optional[int] = None,
        error_code: Optional[int] = None,
    ):
        if not isinstance(kind, self.Kind):
            raise TypeError(f"{kind!r} is not a {type(self).__name__} kind")
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message
        self.ledger_time = ledger_time
        self.duplicate_of = duplicate_of
        self.error_code = error_code

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((type(self), self.kind, self.duplicate_of, self.ledger_time))

    def __repr__(self):
        return f"{type(self).__name__}({self.kind.value})"

    @classmethod
    def of(cls, kind_name: str, **kwargs) -> "ItemError":
        """Build an error from a kind member name shared across families."""
        return cls(cls.Kind[kind_name], **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        if self.kind.name == "CREATED_IN_FUTURE":
            return {self.kind.value: {"ledger_time": self.ledger_time}}
        if self.kind.name == "DUPLICATE":
            return {self.kind.value: {"duplicate_of": self.duplicate_of}}
        if self.kind.name in ("GENERIC_ERROR", "GENERIC_BATCH_ERROR"):
            return {self.kind.value: {"error_code": self.error_code or 0, "message": self.message}}
        return {self.kind.value: None}


class TransferErrorKind(str, Enum):
    NON_EXISTING_TOKEN_ID = "NonExistingTokenId"
    INVALID_RECIPIENT = "InvalidRecipient"
    UNAUTHORIZED = "Unauthorized"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class TransferFromErrorKind(str, Enum):
    NON_EXISTING_TOKEN_ID = "NonExistingTokenId"
    INVALID_RECIPIENT = "InvalidRecipient"
    UNAUTHORIZED = "Unauthorized"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class ApproveTokenErrorKind(str, Enum):
    INVALID_SPENDER = "InvalidSpender"
    UNAUTHORIZED = "Unauthorized"
    NON_EXISTING_TOKEN_ID = "NonExistingTokenId"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    EXCEEDS_APPROVAL_LIMIT = "ExceedsApprovalLimit"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class ApproveCollectionErrorKind(str, Enum):
    INVALID_SPENDER = "InvalidSpender"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    EXCEEDS_APPROVAL_LIMIT = "ExceedsApprovalLimit"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class RevokeTokenApprovalErrorKind(str, Enum):
    APPROVAL_DOES_NOT_EXIST = "ApprovalDoesNotExist"
    UNAUTHORIZED = "Unauthorized"
    NON_EXISTING_TOKEN_ID = "NonExistingTokenId"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    TOO_MANY_REVOCATIONS = "TooManyRevocations"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class RevokeCollectionApprovalErrorKind(str, Enum):
    APPROVAL_DOES_NOT_EXIST = "ApprovalDoesNotExist"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    TOO_MANY_REVOCATIONS = "TooManyRevocations"
    GENERIC_ERROR = "GenericError"
    GENERIC_BATCH_ERROR = "GenericBatchError"


class MintErrorKind(str, Enum):
    UNAUTHORIZED = "Unauthorized"
    NON_EXISTING_TOKEN_ID = "NonExistingTokenId"
    SUPPLY_CAP_REACHED = "SupplyCapReached"
    GENERIC_ERROR = "GenericError"


class ClassErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    INVALID_ARGUMENT = "InvalidArgument"
    DUPLICATE_ASSET = "DuplicateAsset"
    SUPPLY_CAP_REACHED = "SupplyCapReached"
    INVALID_CHALLENGE = "InvalidChallenge"


class ChallengeErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    ALREADY_CONSUMED = "AlreadyConsumed"
    EXPIRED = "Expired"
    UNAUTHORIZED = "Unauthorized"
    INVALID_ARGUMENT = "InvalidArgument"


class ConfigErrorKind(str, Enum):
    UNAUTHORIZED = "Unauthorized"
    INVALID_ARGUMENT = "InvalidArgument"


class TransferError(ItemError):
    Kind = TransferErrorKind


class TransferFromError(ItemError):
    Kind = TransferFromErrorKind


class ApproveTokenError(ItemError):
    Kind = ApproveTokenErrorKind


class ApproveCollectionError(ItemError):
    Kind = ApproveCollectionErrorKind


class RevokeTokenApprovalError(ItemError):
    Kind = RevokeTokenApprovalErrorKind


class RevokeCollectionApprovalError(ItemError):
    Kind = RevokeCollectionApprovalErrorKind


class MintError(ItemError):
    Kind = MintErrorKind


class ClassError(ItemError):
    Kind = ClassErrorKind


class ChallengeError(ItemError):
    Kind = ChallengeErrorKind


class ConfigError(ItemError):
    Kind = ConfigErrorKind


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one batch item: a block index on success, or an error."""

    value: Optional[int] = None
    error: Optional[ItemError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: int) -> "ItemResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ItemError) -> "ItemResult":
        return cls(error=error)

    def unwrap(self) -> int:
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"Err": self.error.to_dict()}
        return {"Ok": self.value}
