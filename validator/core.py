"""
SFT Ledger Validator Core

This module provides the rule pipeline shared by every time-stamped batch
operation. Each item of a batch is described by a ValidationContext and run
through the registered rules in order; the first failing rule raises the
item error of the operation's family and stops the pipeline.

Rules run in two stages:
- ``preflight``: checks that depend only on the request and ledger time
  (creation window, deduplication)
- ``payload``: checks on the request contents after ownership and
  authorization were established (memo size)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from registry.schema import Account, CollectionSettings
from .errors import ItemError


class ValidationStage(str, Enum):
    """Pipeline stage a rule belongs to."""
    PREFLIGHT = "preflight"
    PAYLOAD = "payload"


class ValidationResult(Enum):
    """Validation result codes."""
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ValidationContext:
    """
    Context object passed between validation rules.

    Describes a single batch item: who submitted it, what it asks for and
    the ledger time it is evaluated at.
    """
    operation: str
    caller: Account
    now: int
    settings: CollectionSettings
    error_type: Type[ItemError]
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at_time: Optional[int] = None
    memo: Optional[bytes] = None

    # Filled in by rules
    fingerprint: Optional[str] = None
    rule_results: Dict[str, bool] = field(default_factory=dict)

    def fail(self, kind_name: str, **kwargs) -> ItemError:
        """Build the item error of this context's family."""
        return self.error_type.of(kind_name, **kwargs)

    def mark_rule_passed(self, rule_name: str):
        self.rule_results[rule_name] = True

    def mark_rule_failed(self, rule_name: str):
        self.rule_results[rule_name] = False

    def get_summary(self) -> Dict[str, Any]:
        failed = [name for name, passed in self.rule_results.items() if not passed]
        return {
            "operation": self.operation,
            "caller": str(self.caller),
            "created_at_time": self.created_at_time,
            "rules_passed": sum(1 for passed in self.rule_results.values() if passed),
            "rules_total": len(self.rule_results),
            "validation_result": (
                ValidationResult.REJECTED.value if failed else ValidationResult.APPROVED.value
            ),
        }


class ValidationRule(ABC):
    """
    Abstract base class for validation rules.

    A rule either returns normally or raises the context's item error.
    """

    stage = ValidationStage.PREFLIGHT

    def __init__(self, name: str, description: str, enabled: bool = True):
        self.name = name
        self.description = description
        self.enabled = enabled
        self.logger = logging.getLogger(f"validator.rules.{name}")

    @abstractmethod
    def validate(self, context: ValidationContext) -> None:
        """
        Validate one batch item.

        Raises:
            ItemError: of ``context.error_type`` when the item is rejected
        """
        pass

    def is_applicable(self, context: ValidationContext) -> bool:
        return self.enabled


class ValidationEngine:
    """Ordered collection of rules applied to each batch item."""

    def __init__(self, rules: Optional[List[ValidationRule]] = None):
        self.logger = logging.getLogger("validator.engine")
        self.rules: List[ValidationRule] = []
        self.rule_registry: Dict[str, ValidationRule] = {}
        self.validation_stats = {
            "total_validations": 0,
            "approved_validations": 0,
            "rejected_validations": 0,
        }
        for rule in rules or []:
            self.register_rule(rule)

    def register_rule(self, rule: ValidationRule):
        if rule.name in self.rule_registry:
            self.logger.warning(f"Rule {rule.name} already registered, replacing")
            self.rules.remove(self.rule_registry[rule.name])
        self.rules.append(rule)
        self.rule_registry[rule.name] = rule
        self.logger.debug(f"Registered validation rule: {rule.name}")

    def unregister_rule(self, rule_name: str) -> bool:
        rule = self.rule_registry.pop(rule_name, None)
        if rule is None:
            return False
        self.rules.remove(rule)
        return True

    def get_rule(self, rule_name: str) -> Optional[ValidationRule]:
        return self.rule_registry.get(rule_name)

    def run(self, context: ValidationContext, stage: ValidationStage) -> None:
        """
        Apply every applicable rule of ``stage``, stopping at the first failure.

        Raises:
            ItemError: from the first rule that rejects the item
        """
        if stage == ValidationStage.PREFLIGHT:
            self.validation_stats["total_validations"] += 1

        for rule in self.rules:
            if rule.stage != stage or not rule.is_applicable(context):
                continue
            try:
                rule.validate(context)
            except ItemError as e:
                context.mark_rule_failed(rule.name)
                self.validation_stats["rejected_validations"] += 1
                self.logger.debug(f"Rule {rule.name} rejected {context.operation}: {e.kind.value}")
                raise
            context.mark_rule_passed(rule.name)

        if stage == ValidationStage.PAYLOAD:
            self.validation_stats["approved_validations"] += 1

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self.validation_stats,
            "registered_rules": len(self.rules),
        }
