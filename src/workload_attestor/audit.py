"""AttestationAuditLogger — JSONL audit trail for attestation outcomes.

Every attestation decision worth reviewing later (selectors issued,
credential rejected, ambiguous identity) is appended as one JSON line to
the configured log file. Ambiguous matches in particular are security
events: two pods claiming the same workload identity.

If no file path is configured the logger keeps events in an in-memory
buffer that can be drained via :meth:`AttestationAuditLogger.drain_buffer`.
Bearer tokens are never written.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class AuditEvent:
    """A single auditable attestation event.

    Parameters
    ----------
    event_type:
        Short snake_case string identifying the event (e.g. "ambiguous_identity").
    subject:
        What was being attested: ``"pid:<n>"``, ``"pod:<ns>/<name>"`` or
        ``"credential"``.
    details:
        Arbitrary key-value metadata about the event.
    timestamp:
        UTC datetime of the event. Defaults to now.
    """

    event_type: str
    subject: str
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a plain dictionary suitable for JSON encoding."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "subject": self.subject,
            "details": self.details,
        }


class AttestationAuditLogger:
    """Append-only JSONL audit logger. Thread-safe.

    Parameters
    ----------
    log_path:
        Path to the JSONL log file; parent directories are created. If
        None, events are buffered in memory only.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._buffer: list[str] = []
        self._lock = threading.Lock()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def log(self, event: AuditEvent) -> None:
        """Append *event* to the log."""
        line = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is not None:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            else:
                self._buffer.append(line)

    def log_event(self, event_type: str, subject: str, **details: object) -> None:
        """Log a simple event without constructing :class:`AuditEvent`."""
        self.log(AuditEvent(event_type=event_type, subject=subject, details=dict(details)))

    # ------------------------------------------------------------------
    # Convenience event loggers
    # ------------------------------------------------------------------

    def log_attested(self, subject: str, workload: str, selector_count: int, attempts: int) -> None:
        """Log a workload_attested event."""
        self.log_event(
            "workload_attested",
            subject=subject,
            workload=workload,
            selector_count=selector_count,
            attempts=attempts,
        )

    def log_ambiguous(self, subject: str, candidates: list[str], attempt: int) -> None:
        """Log an ambiguous_identity security event."""
        self.log_event(
            "ambiguous_identity",
            subject=subject,
            candidates=list(candidates),
            attempt=attempt,
        )

    def log_rejected(self, subject: str, kind: str, reason: str) -> None:
        """Log an attestation_rejected event for a fatal, non-retryable failure."""
        self.log_event("attestation_rejected", subject=subject, kind=kind, reason=reason)

    # ------------------------------------------------------------------
    # Buffer access
    # ------------------------------------------------------------------

    def drain_buffer(self) -> list[str]:
        """Return and clear the in-memory buffer (oldest first)."""
        with self._lock:
            events = list(self._buffer)
            self._buffer.clear()
        return events

    def read_log(self, tail: int | None = None) -> list[dict[str, object]]:
        """Read parsed events from the log file (or the buffer when unset).

        Parameters
        ----------
        tail:
            If provided, return only the last *tail* events.
        """
        if self._log_path is None or not self._log_path.exists():
            with self._lock:
                lines = list(self._buffer)
        else:
            with self._lock:
                lines = self._log_path.read_text(encoding="utf-8").splitlines()

        parsed: list[dict[str, object]] = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                continue
            try:
                parsed.append(json.loads(stripped))
            except json.JSONDecodeError:
                continue

        if tail is not None:
            return parsed[-tail:]
        return parsed
