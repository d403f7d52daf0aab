"""
Memo Size Rule
"""

from validator.core import ValidationContext, ValidationRule, ValidationStage


MEMO_TOO_LARGE = 1


class MemoSizeRule(ValidationRule):
    """Rejects memos longer than the collection's ``max_memo_size``."""

    stage = ValidationStage.PAYLOAD

    def __init__(self):
        super().__init__(name="memo_size", description="Limits memo length")

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled and context.memo is not None

    def validate(self, context: ValidationContext) -> None:
        limit = context.settings.max_memo_size
        if len(context.memo) > limit:
            raise context.fail(
                "GENERIC_ERROR",
                error_code=MEMO_TOO_LARGE,
                message=f"memo exceeds {limit} bytes",
            )
