"""
Unit tests for the validation pipeline and the shared batch rules.
"""

import pytest

from registry.schema import SECOND, Account, CollectionSettings
from validator.core import ValidationContext, ValidationEngine, ValidationRule, ValidationStage
from validator.errors import ApproveTokenError, TransferError
from validator.rules import (
    CreationWindowRule, DeduplicationIndex, DeduplicationRule, MemoSizeRule,
    check_created_at, request_fingerprint
)


NOW = 1_700_000_000 * SECOND
DRIFT = 120 * SECOND
WINDOW = 3600 * SECOND


def _context(created_at_time=None, memo=None, payload=None, settings=None, error_type=TransferError):
    return ValidationContext(
        operation="transfer",
        caller=Account(owner="alice"),
        now=NOW,
        settings=settings or CollectionSettings(),
        error_type=error_type,
        payload=payload or {"token_id": 1},
        created_at_time=created_at_time,
        memo=memo,
    )


class TestCreationWindow:
    """Boundaries of the creation window are inclusive."""

    @pytest.mark.parametrize("created_at", [NOW, NOW + DRIFT, NOW - DRIFT - WINDOW])
    def test_accepted(self, created_at):
        check_created_at(created_at, NOW, DRIFT, WINDOW, TransferError)

    def test_future(self):
        with pytest.raises(TransferError) as exc_info:
            check_created_at(NOW + DRIFT + 1, NOW, DRIFT, WINDOW, TransferError)
        assert exc_info.value.kind.name == "CREATED_IN_FUTURE"
        assert exc_info.value.to_dict() == {"CreatedInFuture": {"ledger_time": NOW}}

    def test_too_old(self):
        with pytest.raises(TransferError) as exc_info:
            check_created_at(NOW - DRIFT - WINDOW - 1, NOW, DRIFT, WINDOW, TransferError)
        assert exc_info.value.kind.name == "TOO_OLD"

    def test_untimed_requests_skip_the_rule(self):
        rule = CreationWindowRule()
        assert not rule.is_applicable(_context())
        assert rule.is_applicable(_context(created_at_time=NOW))

    def test_rule_counts_rejections(self):
        rule = CreationWindowRule()
        with pytest.raises(TransferError):
            rule.validate(_context(created_at_time=NOW + DRIFT + 1))
        assert rule.stats["rejected_future"] == 1

    def test_error_family_follows_context(self):
        with pytest.raises(ApproveTokenError):
            CreationWindowRule().validate(_context(created_at_time=0, error_type=ApproveTokenError))


class TestDeduplication:

    def test_fingerprint_depends_on_every_part(self):
        alice = Account(owner="alice")
        base = request_fingerprint("transfer", alice, {"token_id": 1}, NOW)

        assert base == request_fingerprint("transfer", alice, {"token_id": 1}, NOW)
        assert base != request_fingerprint("transfer", alice, {"token_id": 1}, NOW + 1)
        assert base != request_fingerprint("transfer", alice, {"token_id": 2}, NOW)
        assert base != request_fingerprint("approve_tokens", alice, {"token_id": 1}, NOW)
        assert base != request_fingerprint("transfer", Account(owner="bob"), {"token_id": 1}, NOW)

    def test_duplicate_reports_committing_block(self):
        index = DeduplicationIndex()
        rule = DeduplicationRule(lambda: index)

        first = _context(created_at_time=NOW)
        rule.validate(first)
        index.record(first.fingerprint, 7, NOW)

        with pytest.raises(TransferError) as exc_info:
            rule.validate(_context(created_at_time=NOW))
        assert exc_info.value.to_dict() == {"Duplicate": {"duplicate_of": 7}}

    def test_entries_expire_after_horizon(self):
        index = DeduplicationIndex()
        index.record("fp", 1, NOW)
        horizon = WINDOW + DRIFT

        assert index.lookup("fp", NOW + horizon, horizon) is not None
        assert index.lookup("fp", NOW + horizon + 1, horizon) is None
        assert len(index) == 0

    def test_prune(self):
        index = DeduplicationIndex()
        index.record("old", 1, NOW - 10)
        index.record("new", 2, NOW)

        assert index.prune(NOW + 5, 10) == 1
        assert index.lookup("new", NOW, 10).block_index == 2


class TestMemoSize:

    def test_payload_stage(self):
        assert MemoSizeRule.stage == ValidationStage.PAYLOAD

    def test_memo_limit(self):
        rule = MemoSizeRule()
        settings = CollectionSettings(max_memo_size=4)
        rule.validate(_context(memo=b"1234", settings=settings))

        with pytest.raises(TransferError) as exc_info:
            rule.validate(_context(memo=b"12345", settings=settings))
        assert exc_info.value.to_dict()["GenericError"]["error_code"] == 1


class TestValidationEngine:

    class _Reject(ValidationRule):
        def __init__(self):
            super().__init__(name="reject", description="always rejects")

        def validate(self, context):
            raise context.fail("UNAUTHORIZED")

    def test_runs_rules_of_requested_stage_only(self):
        engine = ValidationEngine([CreationWindowRule(), MemoSizeRule()])
        context = _context(created_at_time=NOW, memo=b"x" * 100)

        engine.run(context, ValidationStage.PREFLIGHT)
        assert context.rule_results == {"creation_window": True}

        with pytest.raises(TransferError):
            engine.run(context, ValidationStage.PAYLOAD)
        assert context.rule_results["memo_size"] is False
        assert context.get_summary()["validation_result"] == "rejected"

    def test_first_failure_stops_pipeline(self):
        engine = ValidationEngine([self._Reject(), CreationWindowRule()])
        context = _context(created_at_time=NOW)

        with pytest.raises(TransferError):
            engine.run(context, ValidationStage.PREFLIGHT)
        assert "creation_window" not in context.rule_results
        assert engine.get_statistics()["rejected_validations"] == 1

    def test_register_and_unregister(self):
        engine = ValidationEngine()
        engine.register_rule(MemoSizeRule())
        engine.register_rule(MemoSizeRule())

        assert len(engine.rules) == 1
        assert engine.unregister_rule("memo_size")
        assert not engine.unregister_rule("memo_size")
        assert engine.get_rule("memo_size") is None

    def test_disabled_rule_is_skipped(self):
        rule = self._Reject()
        rule.enabled = False
        ValidationEngine([rule]).run(_context(), ValidationStage.PREFLIGHT)
