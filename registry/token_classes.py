"""
SFT Ledger - Token Class Registry

This module provides the token class registry with class creation, partial
updates, supply-capped instance allocation and paginated queries.
"""

import hashlib
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from validator.errors import ChallengeError, ClassError, ClassErrorKind
from .challenges import ChallengeRegistry
from .schema import (
    CreateClassArgs, MetadataValue, TokenClass, UpdateClassArgs,
    make_instance_id, split_instance_id
)


logger = logging.getLogger(__name__)


def compute_asset_hash(content: bytes) -> str:
    """SHA3-256 of asset content (hex)."""
    return hashlib.sha3_256(content).hexdigest()


class TokenClassState(BaseModel):
    """Serializable token class snapshot."""

    classes: List[TokenClass] = Field(default_factory=list)


class TokenClassRegistry:
    """Registry of token classes and the instances minted under them."""

    def __init__(self, challenges: ChallengeRegistry, state: Optional[TokenClassState] = None):
        self.challenges = challenges
        self._classes: List[TokenClass] = []
        self._by_asset: Dict[str, int] = {}
        if state is not None:
            for token_class in state.classes:
                self._classes.append(token_class)
                self._by_asset[token_class.asset_hash] = token_class.id

    def __len__(self) -> int:
        return len(self._classes)

    def get(self, class_id: int) -> Optional[TokenClass]:
        if 1 <= class_id <= len(self._classes):
            return self._classes[class_id - 1]
        return None

    def _require(self, class_id: int) -> TokenClass:
        token_class = self.get(class_id)
        if token_class is None:
            raise ClassError(ClassErrorKind.NOT_FOUND, f"token class {class_id} not found")
        return token_class

    def total_instances(self) -> int:
        return sum(c.total_supply for c in self._classes)

    def create_class(
        self,
        args: CreateClassArgs,
        now: int,
        collection_cap: Optional[int] = None,
        require_challenge: bool = False,
    ) -> int:
        """
        Create a new token class.

        Args:
            args: Class definition, optionally carrying a challenge token
            now: Ledger time (ns)
            collection_cap: Maximum number of classes in the collection
            require_challenge: Reject the request when no challenge is presented

        Returns:
            The new class id

        Raises:
            ClassError: DuplicateAsset, SupplyCapReached, InvalidChallenge
                or InvalidArgument
        """
        if collection_cap is not None and len(self._classes) >= collection_cap:
            raise ClassError(ClassErrorKind.SUPPLY_CAP_REACHED, "collection supply cap reached")

        asset_hash = compute_asset_hash(args.asset_content)
        if asset_hash in self._by_asset:
            raise ClassError(ClassErrorKind.DUPLICATE_ASSET, "asset already exists")

        if args.challenge is not None:
            self._consume_challenge(args.challenge, asset_hash, args.author, now)
        elif require_challenge:
            raise ClassError(ClassErrorKind.INVALID_CHALLENGE, "challenge is required")
        elif self.challenges.pending_for(asset_hash, args.author, now) is not None:
            raise ClassError(
                ClassErrorKind.DUPLICATE_ASSET,
                "asset is committed by an outstanding challenge",
            )

        class_id = len(self._classes) + 1
        try:
            token_class = TokenClass(
                id=class_id,
                name=args.name,
                description=args.description,
                asset_name=args.asset_name,
                asset_content_type=args.asset_content_type,
                asset_hash=asset_hash,
                metadata=args.metadata,
                author=args.author,
                supply_cap=args.supply_cap,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise ClassError(ClassErrorKind.INVALID_ARGUMENT, str(e.errors()[0]['msg']))

        self._classes.append(token_class)
        self._by_asset[asset_hash] = class_id
        logger.info(f"Created token class {class_id} ({args.name}) for author {args.author}")
        return class_id

    def _consume_challenge(self, token: str, asset_hash: str, author: str, now: int) -> None:
        commitment = self.challenges.peek(token)
        if commitment is not None and (
            commitment.asset_hash != asset_hash or commitment.author != author
        ):
            raise ClassError(ClassErrorKind.INVALID_CHALLENGE, "challenge does not match asset and author")
        try:
            self.challenges.consume(token, now)
        except ChallengeError as e:
            raise ClassError(ClassErrorKind.INVALID_CHALLENGE, f"challenge rejected: {e.kind.value}")

    def update_class(self, caller: str, args: UpdateClassArgs, is_manager: bool, now: int) -> None:
        """
        Apply a partial update to a class.

        The supply cap may only be tightened, never raised, removed, or set
        below the number of instances already minted.
        """
        token_class = self._require(args.id)
        if not is_manager and caller != token_class.author:
            raise ClassError(ClassErrorKind.UNAUTHORIZED, "caller is not a manager or the author")

        changes = args.model_dump(exclude_unset=True, exclude={"id", "asset_content"})

        if "supply_cap" in changes:
            new_cap = changes["supply_cap"]
            old_cap = token_class.supply_cap
            if new_cap is None and old_cap is not None:
                raise ClassError(ClassErrorKind.INVALID_ARGUMENT, "supply cap can not be removed")
            if new_cap is not None:
                if old_cap is not None and new_cap > old_cap:
                    raise ClassError(ClassErrorKind.INVALID_ARGUMENT, "supply cap can not be increased")
                if new_cap < token_class.total_supply:
                    raise ClassError(
                        ClassErrorKind.INVALID_ARGUMENT,
                        f"supply cap {new_cap} is below minted supply {token_class.total_supply}",
                    )

        for field in ("name", "asset_name", "asset_content_type", "metadata", "author"):
            if field in changes and changes[field] is None:
                raise ClassError(ClassErrorKind.INVALID_ARGUMENT, f"{field} can not be unset")

        new_hash = None
        if args.asset_content is not None:
            new_hash = compute_asset_hash(args.asset_content)
            owner = self._by_asset.get(new_hash)
            if owner is not None and owner != token_class.id:
                raise ClassError(ClassErrorKind.DUPLICATE_ASSET, "asset already exists")
            changes["asset_hash"] = new_hash

        try:
            updated = TokenClass.model_validate(
                {**token_class.model_dump(), **changes, "updated_at": now}
            )
        except ValidationError as e:
            raise ClassError(ClassErrorKind.INVALID_ARGUMENT, str(e.errors()[0]['msg']))

        if new_hash is not None:
            del self._by_asset[token_class.asset_hash]
            self._by_asset[new_hash] = token_class.id
        self._classes[token_class.id - 1] = updated
        logger.info(f"Updated token class {token_class.id}: {sorted(changes)}")

    def check_mint(self, class_id: int, count: int) -> TokenClass:
        """Validate that ``count`` instances may be minted; raises ClassError."""
        token_class = self._require(class_id)
        remaining = token_class.remaining_supply()
        if remaining is not None and count > remaining:
            raise ClassError(
                ClassErrorKind.SUPPLY_CAP_REACHED,
                f"mint of {count} exceeds remaining supply {remaining}",
            )
        return token_class

    def mint_instances(self, class_id: int, count: int, now: int) -> List[int]:
        """Allocate ``count`` fresh instance ids under a class, in order."""
        token_class = self.check_mint(class_id, count)
        first = token_class.total_supply + 1
        ids = [make_instance_id(class_id, s) for s in range(first, first + count)]
        self._classes[class_id - 1] = token_class.model_copy(
            update={"total_supply": token_class.total_supply + count, "updated_at": now}
        )
        return ids

    def class_of(self, instance_id: int) -> Optional[TokenClass]:
        """Return the class an instance id was minted under, if it was minted."""
        class_id, serial = split_instance_id(instance_id)
        token_class = self.get(class_id)
        if token_class is None or not 1 <= serial <= token_class.total_supply:
            return None
        return token_class

    def list_ids(self, cursor: Optional[int], take: int) -> List[int]:
        """Class ids in ascending order after ``cursor``."""
        start = 1 if cursor is None else max(cursor + 1, 1)
        end = min(len(self._classes), start + take - 1)
        return list(range(start, end + 1))

    def instance_ids(self, class_id: int, cursor: Optional[int], take: int) -> List[int]:
        """Instance ids of a class in ascending order after ``cursor``."""
        token_class = self.get(class_id)
        if token_class is None:
            return []
        first = 1
        if cursor is not None:
            cursor_class, cursor_serial = split_instance_id(cursor)
            if cursor_class > class_id:
                return []
            if cursor_class == class_id:
                first = cursor_serial + 1
        last = min(token_class.total_supply, first + take - 1)
        return [make_instance_id(class_id, s) for s in range(first, last + 1)]

    def metadata(self, class_id: int) -> Optional[Dict[str, MetadataValue]]:
        token_class = self.get(class_id)
        return token_class.token_metadata() if token_class else None

    def to_state(self) -> TokenClassState:
        return TokenClassState(classes=list(self._classes))
