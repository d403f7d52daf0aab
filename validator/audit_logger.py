"""
Audit Logging for SFT Ledger Operations

This module records one audit event per committed or rejected batch item and
per management operation (class creation, collection updates, archiving).
Events are kept in a bounded in-memory buffer, mirrored to the standard
logging system and optionally appended to a JSON Lines audit file.
"""

import json
import logging
import threading
import time
import uuid
from collections import Counter, defaultdict, deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional


class AuditEventType(Enum):
    """Audit event type categories."""
    BATCH_ITEM = "batch_item"
    MANAGEMENT = "management"
    ARCHIVE = "archive"


class AuditResult(Enum):
    """Audit event result types."""
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class AuditEvent:
    """One audited operation outcome."""
    event_type: AuditEventType
    operation: str
    caller: str
    result: AuditResult
    event_id: str = ""
    timestamp: float = 0.0
    ledger_time: Optional[int] = None
    block_index: Optional[int] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.event_id:
            self.event_id = f"audit_{uuid.uuid4().hex[:12]}"
        if not self.timestamp:
            self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["result"] = self.result.value
        return data


class AuditLogger:
    """
    Bounded audit trail of ledger operations.

    Config keys:
        max_memory_events: Size of the in-memory buffer (default 10000)
        log_file: Optional JSON Lines file to append every event to
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.events: Deque[AuditEvent] = deque(maxlen=self.config.get("max_memory_events", 10000))
        self.log_file: Optional[Path] = None
        if self.config.get("log_file"):
            self.log_file = Path(self.config["log_file"])
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

        self.stats = {
            "events_logged": 0,
            "write_errors": 0,
            "start_time": time.time(),
        }
        self.operation_counts: Counter = Counter()
        self.error_counts: Counter = Counter()
        self.event_handlers: Dict[AuditEventType, List[Callable[[AuditEvent], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def log_event(self, event: AuditEvent) -> str:
        with self._lock:
            self.events.append(event)
            self.stats["events_logged"] += 1
            self.operation_counts[(event.operation, event.result.value)] += 1
            if event.error_kind:
                self.error_counts[event.error_kind] += 1
            self._write_event(event)

        if event.result == AuditResult.APPROVED:
            self.logger.info(
                f"{event.operation} by {event.caller} approved"
                + (f" (block {event.block_index})" if event.block_index is not None else "")
            )
        else:
            self.logger.info(f"{event.operation} by {event.caller} {event.result.value}: {event.error_kind}")

        for handler in self.event_handlers[event.event_type]:
            handler(event)
        return event.event_id

    def log_item(
        self,
        operation: str,
        caller: str,
        ledger_time: int,
        block_index: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> str:
        """Record the outcome of one batch item."""
        return self.log_event(AuditEvent(
            event_type=AuditEventType.BATCH_ITEM,
            operation=operation,
            caller=caller,
            result=AuditResult.REJECTED if error is not None else AuditResult.APPROVED,
            ledger_time=ledger_time,
            block_index=block_index,
            error_kind=getattr(getattr(error, "kind", None), "value", type(error).__name__) if error is not None else None,
            error_message=str(error) if error is not None else None,
        ))

    def log_management(
        self,
        operation: str,
        caller: str,
        ledger_time: int,
        error: Optional[Exception] = None,
        **metadata,
    ) -> str:
        """Record a management operation such as a class creation or collection update."""
        return self.log_event(AuditEvent(
            event_type=AuditEventType.MANAGEMENT,
            operation=operation,
            caller=caller,
            result=AuditResult.REJECTED if error is not None else AuditResult.APPROVED,
            ledger_time=ledger_time,
            error_kind=getattr(getattr(error, "kind", None), "value", type(error).__name__) if error is not None else None,
            error_message=str(error) if error is not None else None,
            metadata=metadata,
        ))

    def log_archive(self, archive_id: str, start: int, end: int, ledger_time: int) -> str:
        return self.log_event(AuditEvent(
            event_type=AuditEventType.ARCHIVE,
            operation="archive",
            caller="ledger",
            result=AuditResult.APPROVED,
            ledger_time=ledger_time,
            metadata={"archive_id": archive_id, "start": start, "end": end},
        ))

    def add_event_handler(self, event_type: AuditEventType, handler: Callable[[AuditEvent], None]) -> None:
        self.event_handlers[event_type].append(handler)

    def get_events(
        self,
        operation: Optional[str] = None,
        result: Optional[AuditResult] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """Buffered events, oldest first, optionally filtered."""
        with self._lock:
            events = list(self.events)
        if operation is not None:
            events = [e for e in events if e.operation == operation]
        if result is not None:
            events = [e for e in events if e.result == result]
        if limit is not None:
            events = events[-limit:]
        return events

    def get_statistics(self) -> Dict[str, Any]:
        uptime = time.time() - self.stats["start_time"]
        by_operation: Dict[str, Dict[str, int]] = defaultdict(dict)
        for (operation, result), count in self.operation_counts.items():
            by_operation[operation][result] = count
        return {
            **self.stats,
            "uptime_seconds": uptime,
            "stored_events": len(self.events),
            "operations": dict(by_operation),
            "errors": dict(self.error_counts),
        }

    def export_audit_log(self, output_path: str, since: Optional[float] = None) -> int:
        """Write buffered events to a JSON file; returns the number exported."""
        events = [e for e in self.get_events() if since is None or e.timestamp >= since]
        with open(output_path, 'w') as f:
            json.dump([e.to_dict() for e in events], f, indent=2)
        return len(events)

    def _write_event(self, event: AuditEvent) -> None:
        if self.log_file is None:
            return
        try:
            with open(self.log_file, 'a') as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        except OSError as e:
            self.stats["write_errors"] += 1
            self.logger.error(f"Failed to write audit event {event.event_id}: {e}")
