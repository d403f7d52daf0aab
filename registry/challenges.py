"""
SFT Ledger - Challenge Registry

One-time commitments that bind an asset content hash to an author before the
content is accepted as a token class. Tokens are HMAC-SHA3-256 digests over
(asset_hash, author, generation) keyed with a process-wide salt, so issuing
twice for the same pair yields the same token until it is consumed.
"""

import hashlib
import hmac
import json
import logging
import secrets
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from validator.errors import ChallengeError, ChallengeErrorKind
from .schema import SECOND, ChallengeCommitment, normalize_asset_hash


logger = logging.getLogger(__name__)

CHALLENGE_TOKEN_BYTES = 16


class ChallengeState(BaseModel):
    """Serializable challenge registry snapshot."""

    salt: str = Field(..., description="Anti-replay salt (hex)")
    pending: List[ChallengeCommitment] = Field(default_factory=list)
    consumed: List[str] = Field(default_factory=list)
    generations: Dict[str, int] = Field(default_factory=dict)


def _pair_key(asset_hash: str, author: str) -> str:
    return f"{asset_hash}:{author}"


def _asset_hash(asset_hash: str) -> str:
    try:
        return normalize_asset_hash(asset_hash)
    except ValueError as e:
        raise ChallengeError(ChallengeErrorKind.INVALID_ARGUMENT, f"invalid asset hash: {e}") from e


class ChallengeRegistry:
    """Issues and consumes asset commitments."""

    def __init__(self, ttl_seconds: int = 600, state: Optional[ChallengeState] = None):
        self.ttl_seconds = ttl_seconds
        if state is None:
            state = ChallengeState(salt=secrets.token_hex(32))
        self._salt = bytes.fromhex(state.salt)
        self._pending: Dict[str, ChallengeCommitment] = {c.token: c for c in state.pending}
        self._by_pair: Dict[str, str] = {
            _pair_key(c.asset_hash, c.author): c.token for c in state.pending
        }
        self._consumed: Set[str] = set(state.consumed)
        self._generations: Dict[str, int] = dict(state.generations)

    def _make_token(self, asset_hash: str, author: str, generation: int) -> str:
        message = json.dumps([asset_hash, author, generation], separators=(',', ':'))
        mac = hmac.new(self._salt, message.encode('utf-8'), hashlib.sha3_256).digest()
        return mac[:CHALLENGE_TOKEN_BYTES].hex()

    def _is_expired(self, commitment: ChallengeCommitment, now: int) -> bool:
        return now - commitment.issued_at > self.ttl_seconds * SECOND

    def _drop(self, commitment: ChallengeCommitment, consumed: bool) -> None:
        key = _pair_key(commitment.asset_hash, commitment.author)
        del self._pending[commitment.token]
        self._by_pair.pop(key, None)
        self._generations[key] = commitment.generation + 1
        if consumed:
            self._consumed.add(commitment.token)

    def issue(self, asset_hash: str, author: str, now: int) -> str:
        """
        Issue (or re-issue) the challenge token for an asset and author.

        Returns:
            Hex challenge token; identical for repeated calls while the
            commitment is outstanding

        Raises:
            ChallengeError: InvalidArgument when the asset hash is not 32-byte hex
        """
        asset_hash = _asset_hash(asset_hash)
        existing = self.pending_for(asset_hash, author, now)
        if existing is not None:
            return existing.token

        key = _pair_key(asset_hash, author)
        generation = self._generations.get(key, 0)
        token = self._make_token(asset_hash, author, generation)
        commitment = ChallengeCommitment(
            token=token,
            asset_hash=asset_hash,
            author=author,
            generation=generation,
            issued_at=now,
        )
        self._pending[token] = commitment
        self._by_pair[key] = token
        logger.debug(f"Issued challenge for author {author}, generation {generation}")
        return token

    def pending_for(self, asset_hash: str, author: str, now: int) -> Optional[ChallengeCommitment]:
        """Outstanding, unexpired commitment for a pair; expired ones are dropped."""
        asset_hash = _asset_hash(asset_hash)
        token = self._by_pair.get(_pair_key(asset_hash, author))
        if token is None:
            return None
        commitment = self._pending[token]
        if self._is_expired(commitment, now):
            self._drop(commitment, consumed=False)
            return None
        return commitment

    def peek(self, token: str) -> Optional[ChallengeCommitment]:
        return self._pending.get(token.lower())

    def consume(self, token: str, now: int) -> Tuple[str, str]:
        """
        Consume a challenge token exactly once.

        Returns:
            (asset_hash, author) the token was issued for

        Raises:
            ChallengeError: NotFound, AlreadyConsumed or Expired
        """
        token = token.lower()
        if token in self._consumed:
            raise ChallengeError(ChallengeErrorKind.ALREADY_CONSUMED)
        commitment = self._pending.get(token)
        if commitment is None:
            raise ChallengeError(ChallengeErrorKind.NOT_FOUND)
        if self._is_expired(commitment, now):
            self._drop(commitment, consumed=False)
            raise ChallengeError(ChallengeErrorKind.EXPIRED)

        self._drop(commitment, consumed=True)
        logger.info(f"Consumed challenge for author {commitment.author}")
        return commitment.asset_hash, commitment.author

    def to_state(self) -> ChallengeState:
        return ChallengeState(
            salt=self._salt.hex(),
            pending=list(self._pending.values()),
            consumed=sorted(self._consumed),
            generations=dict(self._generations),
        )
