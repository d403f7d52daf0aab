"""
Creation Window Rule

Rejects time-stamped requests created too far in the future or too long ago
to still be covered by the deduplication window.
"""

from typing import Optional

from validator.core import ValidationContext, ValidationRule
from validator.errors import ItemError


def check_created_at(
    created_at_time: Optional[int],
    now: int,
    drift_ns: int,
    window_ns: int,
    error_type,
) -> None:
    """
    Apply the creation window to a request timestamp.

    Both boundaries are inclusive: ``now + drift`` and ``now - drift - window``
    are accepted.

    Raises:
        ItemError: CreatedInFuture (carrying the ledger time) or TooOld
    """
    if created_at_time is None:
        return
    if created_at_time > now + drift_ns:
        raise error_type.of("CREATED_IN_FUTURE", ledger_time=now)
    if created_at_time < now - drift_ns - window_ns:
        raise error_type.of("TOO_OLD")


class CreationWindowRule(ValidationRule):
    """Validation rule enforcing the transaction creation window."""

    def __init__(self):
        super().__init__(
            name="creation_window",
            description="Rejects requests created in the future or outside the dedup window",
        )
        self.stats = {
            "rejected_future": 0,
            "rejected_too_old": 0,
        }

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled and context.created_at_time is not None

    def validate(self, context: ValidationContext) -> None:
        settings = context.settings
        try:
            check_created_at(
                context.created_at_time,
                context.now,
                settings.permitted_drift_ns,
                settings.tx_window_ns,
                context.error_type,
            )
        except ItemError as e:
            if e.kind.name == "CREATED_IN_FUTURE":
                self.stats["rejected_future"] += 1
            else:
                self.stats["rejected_too_old"] += 1
            raise
