"""
Unit tests for the token class registry and challenge registry.
"""

import pytest

from registry.challenges import ChallengeRegistry, ChallengeState
from registry.schema import SECOND, UpdateClassArgs, make_instance_id
from registry.token_classes import TokenClassRegistry, TokenClassState, compute_asset_hash
from validator.errors import ChallengeError, ChallengeErrorKind, ClassError, ClassErrorKind
from conftest import START_TIME, class_args


NOW = START_TIME


@pytest.fixture
def challenges():
    return ChallengeRegistry(ttl_seconds=60)


@pytest.fixture
def registry(challenges):
    return TokenClassRegistry(challenges)


class TestChallengeRegistry:
    """Test challenge issue and consume."""

    def test_issue_is_idempotent_while_pending(self, challenges):
        first = challenges.issue("a" * 64, "bob", NOW)
        second = challenges.issue("a" * 64, "bob", NOW + SECOND)
        assert first == second

    def test_tokens_differ_per_author(self, challenges):
        assert challenges.issue("a" * 64, "bob", NOW) != challenges.issue("a" * 64, "carol", NOW)

    def test_consume_once(self, challenges):
        token = challenges.issue("a" * 64, "bob", NOW)

        assert challenges.consume(token, NOW) == ("a" * 64, "bob")
        with pytest.raises(ChallengeError) as exc_info:
            challenges.consume(token, NOW)
        assert exc_info.value.kind == ChallengeErrorKind.ALREADY_CONSUMED

    def test_reissue_after_consume_gives_new_token(self, challenges):
        token = challenges.issue("a" * 64, "bob", NOW)
        challenges.consume(token, NOW)
        assert challenges.issue("a" * 64, "bob", NOW) != token

    def test_unknown_token(self, challenges):
        with pytest.raises(ChallengeError) as exc_info:
            challenges.consume("00" * 16, NOW)
        assert exc_info.value.kind == ChallengeErrorKind.NOT_FOUND

    def test_expired_token(self, challenges):
        token = challenges.issue("a" * 64, "bob", NOW)
        with pytest.raises(ChallengeError) as exc_info:
            challenges.consume(token, NOW + 61 * SECOND)
        assert exc_info.value.kind == ChallengeErrorKind.EXPIRED
        assert challenges.pending_for("a" * 64, "bob", NOW + 61 * SECOND) is None

    def test_state_round_trip_keeps_salt(self, challenges):
        token = challenges.issue("a" * 64, "bob", NOW)
        state = ChallengeState.model_validate(challenges.to_state().model_dump(mode='json'))
        restored = ChallengeRegistry(60, state)

        assert restored.issue("a" * 64, "bob", NOW) == token
        assert restored.consume(token, NOW) == ("a" * 64, "bob")

    def test_hash_spellings_share_one_commitment(self, challenges):
        token = challenges.issue("0x" + "AB" * 32, "bob", NOW)
        assert challenges.issue("ab" * 32, "bob", NOW) == token
        assert challenges.pending_for("0x" + "ab" * 32, "bob", NOW).token == token

        assert challenges.consume(token, NOW) == ("ab" * 32, "bob")
        assert challenges.pending_for("0x" + "ab" * 32, "bob", NOW) is None
        assert challenges.issue("0x" + "ab" * 32, "bob", NOW) != token

    @pytest.mark.parametrize("asset_hash", ["xyz", "ab" * 31, ""])
    def test_malformed_hash(self, challenges, asset_hash):
        with pytest.raises(ChallengeError) as exc_info:
            challenges.issue(asset_hash, "bob", NOW)
        assert exc_info.value.kind == ChallengeErrorKind.INVALID_ARGUMENT
        assert challenges.to_state().pending == []


class TestCreateClass:
    """Test class creation."""

    def test_ids_are_sequential(self, registry):
        assert registry.create_class(class_args("Gold", b"gold"), NOW) == 1
        assert registry.create_class(class_args("Silver", b"silver"), NOW) == 2
        assert len(registry) == 2

    def test_asset_hash_is_sha3(self, registry):
        class_id = registry.create_class(class_args(content=b"gold"), NOW)
        assert registry.get(class_id).asset_hash == compute_asset_hash(b"gold")

    def test_duplicate_asset_rejected(self, registry):
        registry.create_class(class_args("Gold", b"same"), NOW)
        with pytest.raises(ClassError) as exc_info:
            registry.create_class(class_args("Other", b"same"), NOW)
        assert exc_info.value.kind == ClassErrorKind.DUPLICATE_ASSET

    def test_collection_cap(self, registry):
        registry.create_class(class_args("Gold", b"gold"), NOW, collection_cap=1)
        with pytest.raises(ClassError) as exc_info:
            registry.create_class(class_args("Silver", b"silver"), NOW, collection_cap=1)
        assert exc_info.value.kind == ClassErrorKind.SUPPLY_CAP_REACHED

    def test_challenge_required(self, registry):
        with pytest.raises(ClassError) as exc_info:
            registry.create_class(class_args(author="bob"), NOW, require_challenge=True)
        assert exc_info.value.kind == ClassErrorKind.INVALID_CHALLENGE

    def test_create_with_challenge(self, registry, challenges):
        token = challenges.issue(compute_asset_hash(b"art"), "bob", NOW)
        class_id = registry.create_class(
            class_args(content=b"art", author="bob", challenge=token), NOW, require_challenge=True
        )
        assert registry.get(class_id).author == "bob"

    def test_challenge_for_other_asset_rejected(self, registry, challenges):
        token = challenges.issue(compute_asset_hash(b"other"), "bob", NOW)
        with pytest.raises(ClassError) as exc_info:
            registry.create_class(class_args(content=b"art", author="bob", challenge=token), NOW)
        assert exc_info.value.kind == ClassErrorKind.INVALID_CHALLENGE
        assert challenges.peek(token) is not None

    def test_outstanding_challenge_reserves_asset(self, registry, challenges):
        challenges.issue(compute_asset_hash(b"art"), "manager", NOW)
        with pytest.raises(ClassError) as exc_info:
            registry.create_class(class_args(content=b"art", author="manager"), NOW)
        assert exc_info.value.kind == ClassErrorKind.DUPLICATE_ASSET


class TestMintAndUpdate:
    """Test supply accounting and class updates."""

    def test_mint_instances(self, registry):
        class_id = registry.create_class(class_args(supply_cap=3), NOW)
        ids = registry.mint_instances(class_id, 2, NOW)

        assert ids == [make_instance_id(class_id, 1), make_instance_id(class_id, 2)]
        assert registry.get(class_id).total_supply == 2
        assert registry.total_instances() == 2

    def test_mint_beyond_cap(self, registry):
        class_id = registry.create_class(class_args(supply_cap=2), NOW)
        registry.mint_instances(class_id, 2, NOW)
        with pytest.raises(ClassError) as exc_info:
            registry.mint_instances(class_id, 1, NOW)
        assert exc_info.value.kind == ClassErrorKind.SUPPLY_CAP_REACHED
        assert registry.get(class_id).total_supply == 2

    def test_mint_unknown_class(self, registry):
        with pytest.raises(ClassError) as exc_info:
            registry.check_mint(99, 1)
        assert exc_info.value.kind == ClassErrorKind.NOT_FOUND

    def test_class_of(self, registry):
        class_id = registry.create_class(class_args(), NOW)
        (instance_id,) = registry.mint_instances(class_id, 1, NOW)

        assert registry.class_of(instance_id).id == class_id
        assert registry.class_of(make_instance_id(class_id, 2)) is None

    def test_pagination(self, registry):
        for i in range(3):
            registry.create_class(class_args(f"C{i}", f"c{i}".encode()), NOW)
        assert registry.list_ids(None, 2) == [1, 2]
        assert registry.list_ids(2, 10) == [3]

        registry.mint_instances(1, 3, NOW)
        first, second, third = registry.instance_ids(1, None, 10)
        assert registry.instance_ids(1, first, 1) == [second]
        assert registry.instance_ids(1, third, 10) == []

    def test_update_by_author(self, registry):
        class_id = registry.create_class(class_args(author="bob"), NOW)
        registry.update_class("bob", UpdateClassArgs(id=class_id, name="Renamed"), False, NOW + 1)

        updated = registry.get(class_id)
        assert updated.name == "Renamed"
        assert updated.updated_at == NOW + 1

    def test_update_by_stranger_rejected(self, registry):
        class_id = registry.create_class(class_args(author="bob"), NOW)
        with pytest.raises(ClassError) as exc_info:
            registry.update_class("carol", UpdateClassArgs(id=class_id, name="X"), False, NOW)
        assert exc_info.value.kind == ClassErrorKind.UNAUTHORIZED

    def test_supply_cap_only_tightens(self, registry):
        class_id = registry.create_class(class_args(supply_cap=5), NOW)
        registry.mint_instances(class_id, 3, NOW)

        registry.update_class("manager", UpdateClassArgs(id=class_id, supply_cap=4), True, NOW)
        assert registry.get(class_id).supply_cap == 4

        for cap in (6, 2):
            with pytest.raises(ClassError):
                registry.update_class("manager", UpdateClassArgs(id=class_id, supply_cap=cap), True, NOW)
        with pytest.raises(ClassError):
            registry.update_class("manager", UpdateClassArgs(id=class_id, supply_cap=None), True, NOW)

    def test_update_asset_content(self, registry):
        class_id = registry.create_class(class_args(content=b"v1"), NOW)
        registry.update_class("manager", UpdateClassArgs(id=class_id, asset_content=b"v2"), True, NOW)

        assert registry.get(class_id).asset_hash == compute_asset_hash(b"v2")
        # the old content is free again
        assert registry.create_class(class_args("Other", b"v1"), NOW) == 2

    def test_state_round_trip(self, registry, challenges):
        class_id = registry.create_class(class_args(), NOW)
        registry.mint_instances(class_id, 2, NOW)

        state = TokenClassState.model_validate(registry.to_state().model_dump(mode='json'))
        restored = TokenClassRegistry(challenges, state)

        assert restored.get(class_id).total_supply == 2
        with pytest.raises(ClassError):
            restored.create_class(class_args("Again"), NOW)
