"""PHI-free audit log of engine invocations.

Each tool call is recorded with:

* ``input_hash``: SHA-256 of canonical JSON (no raw patient data in logs).
* ``duration_ms``: wall-clock time of the computation.
* ``status`` / ``error_type``: outcome, exception class name on failure.

Events go to the ``healthtwin.audit`` logger; the engine keeps no state of
its own, so retention is whatever the host's logging configuration does.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

AUDIT_LOGGER_NAME = "healthtwin.audit"


def hash_payload(data: Any) -> str:
    """SHA-256 hash of canonical JSON.

    Args:
        data: JSON-serializable value. Non-JSON leaves (dates, tuples of
            dates...) are stringified so hashing never fails silently.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'engine_call'
    tool_name: str = ""
    input_hash: str = ""
    snapshot_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'rejected' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Writes audit events as single-line JSON records.

    Usage::

        audit = AuditLogger()
        event_id = audit.log_tool_call(
            tool_name="assess_health_risks",
            tool_input={"profile": {...}},
            duration_ms=3.2,
        )
    """

    def __init__(self, sink: logging.Logger | None = None) -> None:
        self._sink = sink or logging.getLogger(AUDIT_LOGGER_NAME)

    def log_event(self, event: AuditEvent) -> str:
        """Emit an audit event and return its UUID."""
        event_id = str(uuid.uuid4())
        record = {
            "id": event_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": event.action,
            "tool_name": event.tool_name or None,
            "input_hash": event.input_hash or None,
            "snapshot_id": event.snapshot_id,
            "duration_ms": (
                round(event.duration_ms, 3) if event.duration_ms is not None else None
            ),
            "status": event.status,
            "error_type": event.error_type,
            "metadata": event.metadata or None,
        }
        level = logging.INFO if event.status == "success" else logging.WARNING
        self._sink.log(level, json.dumps(record, separators=(",", ":"), default=str))
        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        snapshot_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging a tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never logged raw).
            snapshot_id: Feature snapshot the call was computed from.
            duration_ms: Execution duration in milliseconds.
            status: 'success', 'rejected' (invalid input) or 'failure'.
            error_type: Exception class name on rejection/failure.
            metadata: Additional non-PHI metadata.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            input_hash=hash_payload(tool_input) if tool_input else "",
            snapshot_id=snapshot_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))
