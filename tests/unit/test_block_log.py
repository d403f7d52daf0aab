"""
Unit tests for block encoding, the hash-chained block log and tip certificates.
"""

import hashlib

import pytest

from ledger.block_log import ArchivePointer, BlockLog, BlockLogState
from ledger.blocks import (
    GENESIS_DIGEST, BlockEntry, BlockType, TipCertificate, block_body, build_tx,
    decode_account, encode_account, supported_block_types, verify_chain
)
from registry.schema import Account
from registry.storage import canonical_json


ALICE = Account(owner="alice")
BOB = Account(owner="bob", subaccount="01" * 32)


def _filled_log(count: int) -> BlockLog:
    log = BlockLog()
    for i in range(count):
        log.append(BlockType.MINT, build_tx(tid=i + 1, to=ALICE), 1_000 + i)
    return log


class TestBlockEncoding:

    def test_account_encoding(self):
        assert encode_account(ALICE) == ["alice"]
        assert encode_account(BOB) == ["bob", "01" * 32]
        assert decode_account(encode_account(BOB)) == BOB

    def test_build_tx_omits_absent_fields(self):
        tx = build_tx(tid=5, from_=ALICE, to=BOB, memo=b"\xff", created_at_time=42)
        assert tx == {"tid": 5, "from": ["alice"], "to": ["bob", "01" * 32], "memo": "ff", "ts": 42}

    def test_block_body_is_canonical(self):
        body = block_body(0, "7mint", 10, {"tid": 1, "to": ["alice"]})
        assert body == canonical_json({"index": 0, "btype": "7mint", "ts": 10, "tx": {"tid": 1, "to": ["alice"]}})

    def test_first_block_chains_from_genesis(self):
        entry = BlockEntry.create(0, BlockType.MINT, 10, {"tid": 1}, GENESIS_DIGEST)
        expected = hashlib.sha256(GENESIS_DIGEST + entry.body()).hexdigest()

        assert entry.phash == "00" * 32
        assert entry.digest == expected

    def test_supported_block_types(self):
        names = {t["block_type"] for t in supported_block_types()}
        assert names == {b.value for b in BlockType}


class TestBlockLog:

    def test_append_assigns_dense_indices(self):
        log = _filled_log(3)
        assert len(log) == 3
        assert log.length == 3
        assert [log.get(i).index for i in range(3)] == [0, 1, 2]
        assert log.get(3) is None

    def test_chain_links(self):
        log = _filled_log(3)
        for i in (1, 2):
            assert log.get(i).phash == log.get(i - 1).digest
        assert log.last_digest.hex() == log.get(2).digest
        assert log.verify()

    def test_tampering_detected(self):
        log = _filled_log(3)
        state = log.to_state()
        tampered = state.blocks[1].model_copy(update={"ts": 9_999})
        state.blocks[1] = tampered

        assert not BlockLog(state).verify()
        assert verify_chain(state.blocks) is None

    def test_tip_certificate(self):
        log = BlockLog()
        assert log.tip_certificate() is None

        log = _filled_log(2)
        certificate = log.tip_certificate()

        assert certificate.last_block_index == 1
        assert certificate.last_block_hash == log.get(1).digest
        assert bytes.fromhex(certificate.hash_tree) == canonical_json(
            {"last_block_hash": log.get(1).digest, "last_block_index": 1}
        )
        assert certificate == TipCertificate.for_tip(1, log.last_digest)

    def test_get_range_clamps_past_tip(self):
        log = _filled_log(3)
        result = log.get_range(1, 10)

        assert result.log_length == 3
        assert [b.index for b in result.blocks] == [1, 2]
        assert result.archived == []
        assert log.get_range(5, 2).blocks == []

    def test_state_round_trip(self):
        log = _filled_log(3)
        restored = BlockLog(BlockLogState.model_validate(log.to_state().model_dump(mode='json')))

        assert restored.length == 3
        assert restored.last_digest == log.last_digest
        assert restored.tip_certificate() == log.tip_certificate()
        assert restored.verify()


class TestArchiveCommit:

    def test_commit_drops_blocks_and_keeps_indices(self):
        log = _filled_log(5)
        log.commit_archive(ArchivePointer(archive_id="a", start=0, end=1))

        assert len(log) == 3
        assert log.length == 5
        assert log.first_index == 2
        assert log.get(1) is None
        assert log.get(2).index == 2
        assert log.verify()

        next_index = log.append(BlockType.MINT, build_tx(tid=99, to=ALICE), 2_000)
        assert next_index == 5

    def test_range_reports_archived_parts(self):
        log = _filled_log(6)
        log.commit_archive(ArchivePointer(archive_id="a", start=0, end=1))
        log.commit_archive(ArchivePointer(archive_id="b", start=2, end=3))

        result = log.get_range(1, 4)

        assert [(a.archive_id, a.start, a.length) for a in result.archived] == [("a", 1, 1), ("b", 2, 2)]
        assert [b.index for b in result.blocks] == [4]

    def test_contiguous_pointers_merge(self):
        log = _filled_log(6)
        log.commit_archive(ArchivePointer(archive_id="a", start=0, end=1))
        log.commit_archive(ArchivePointer(archive_id="a", start=2, end=4))

        assert log.archives == [ArchivePointer(archive_id="a", start=0, end=4)]
        assert log.archive_ranges() == [("a", 0, 4)]
        assert log.archive_ranges(from_id="a") == []

    def test_commit_must_start_at_first_retained(self):
        log = _filled_log(3)
        with pytest.raises(ValueError):
            log.commit_archive(ArchivePointer(archive_id="a", start=1, end=2))


class TestRollback:

    def test_rollback_drops_appended_blocks(self):
        log = _filled_log(3)
        before = log.to_state()
        mark = log.mark()

        log.append(BlockType.TRANSFER, build_tx(tid=1, from_=ALICE, to=BOB), 2_000)
        log.append(BlockType.TRANSFER, build_tx(tid=1, from_=BOB, to=ALICE), 2_001)
        log.rollback(mark)

        assert log.to_state() == before
        assert log.tip_certificate().last_block_index == 2
        assert log.append(BlockType.MINT, build_tx(tid=9, to=ALICE), 3_000) == 3
        assert log.verify()

    def test_rollback_undoes_archive_commit(self):
        log = _filled_log(4)
        before = log.to_state()
        mark = log.mark()

        log.commit_archive(ArchivePointer(archive_id="arch", start=0, end=1))
        log.append(BlockType.MINT, build_tx(tid=5, to=ALICE), 2_000)
        log.rollback(mark)

        assert log.to_state() == before
        assert log.archives == []
        assert [log.get(i).index for i in range(4)] == [0, 1, 2, 3]

    def test_nested_marks(self):
        log = _filled_log(1)
        outer = log.mark()
        log.append(BlockType.MINT, build_tx(tid=2, to=ALICE), 2_000)
        inner = log.mark()
        log.append(BlockType.MINT, build_tx(tid=3, to=ALICE), 2_001)

        log.rollback(inner)
        assert log.length == 2
        log.rollback(outer)
        assert log.length == 1
        assert log.verify()
