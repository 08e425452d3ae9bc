"""Append-only audit trail for access decisions.

Every :class:`~careguard.access.guard.AccessGuard` decision is written to
an :class:`AuditSink` before the guarded operation may proceed.  Each
record carries a UTC ISO-8601 timestamp, a session identifier, and the
decision fields supplied by the guard (principal, requirement, outcome,
reason).

:class:`AuditLogger` persists records as newline-delimited JSON and
flushes (and by default fsyncs) each record before returning, so a
returned ``log`` call means the record is durable.
:class:`InMemoryAuditLog` keeps records in a list for embedding and tests.

Both are thread-safe.

Example
-------
>>> from pathlib import Path
>>> audit = AuditLogger(Path("/tmp/careguard_audit.jsonl"))
>>> audit.log({"event": "access_decision", "principal_id": "u1", "outcome": "allowed"})
>>> audit.count()
1
"""
from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for audit records.

    ``log`` must not return until the record is durable.  Failures must be
    raised, never swallowed.
    """

    @abstractmethod
    def log(self, entry: dict[str, object]) -> None:
        """Append ``entry`` to the audit trail."""

    @abstractmethod
    def read_all(self) -> list[dict[str, object]]:
        """Return every record in chronological order."""

    def query(self, filters: dict[str, object]) -> list[dict[str, object]]:
        """Return records matching all supplied filter key/value pairs.

        Parameters
        ----------
        filters:
            Dict of ``{field: expected_value}`` pairs.  A record matches
            when every field equals the expected value (AND semantics).
            Top-level keys only.
        """
        return [r for r in self.read_all() if all(r.get(k) == v for k, v in filters.items())]

    def count(self) -> int:
        """Return the total number of audit records."""
        return len(self.read_all())

    def last_n(self, n: int) -> list[dict[str, object]]:
        """Return the ``n`` most recent audit records."""
        all_records = self.read_all()
        return all_records[-n:] if n < len(all_records) else all_records


def _stamp(entry: dict[str, object], session_id: str) -> dict[str, object]:
    record: dict[str, object] = {
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        "session_id": session_id,
    }
    record.update(entry)
    return record


class AuditLogger(AuditSink):
    """Append-only JSONL audit logger.

    Parameters
    ----------
    log_path:
        Path to the ``.jsonl`` audit file.  Parent directories are created
        automatically on first write.
    session_id:
        Optional session identifier stamped on every record.  A random UUID
        is generated if not supplied.
    fsync:
        When ``True`` (default) every write is followed by ``os.fsync``.
    """

    def __init__(
        self,
        log_path: Path,
        session_id: str | None = None,
        fsync: bool = True,
    ) -> None:
        self._log_path = Path(log_path)
        self._session_id: str = session_id or str(uuid.uuid4())
        self._fsync = fsync
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def log(self, entry: dict[str, object]) -> None:
        """Append an audit record.

        ``timestamp`` and ``session_id`` are filled in automatically
        unless the entry already supplies them.

        Parameters
        ----------
        entry:
            Arbitrary event dictionary.  Must be JSON-serialisable
            (non-serialisable values are stringified).
        """
        self._write(_stamp(entry, self._session_id))

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def read_all(self) -> list[dict[str, object]]:
        """Return all audit records from the log file.

        Returns
        -------
        list[dict[str, object]]
            Parsed records in chronological order.  Returns an empty list
            when the log file does not exist.
        """
        return list(self._iter_records())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, record: dict[str, object]) -> None:
        """Write a single record to the JSONL file under the lock."""
        line = json.dumps(record, default=str) + "\n"
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)
                fh.flush()
                if self._fsync:
                    os.fsync(fh.fileno())

    def _iter_records(self) -> Iterator[dict[str, object]]:
        """Yield parsed records from the log file one at a time."""
        if not self._log_path.exists():
            return
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        for number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit line %d in %s", number, self._log_path)

    @property
    def log_path(self) -> Path:
        """The filesystem path of the audit log file."""
        return self._log_path

    @property
    def session_id(self) -> str:
        """The session identifier stamped on every record."""
        return self._session_id


class InMemoryAuditLog(AuditSink):
    """Thread-safe in-memory audit sink."""

    def __init__(self, session_id: str | None = None) -> None:
        self._session_id = session_id or str(uuid.uuid4())
        self._records: list[dict[str, object]] = []
        self._lock = threading.Lock()

    def log(self, entry: dict[str, object]) -> None:
        record = _stamp(entry, self._session_id)
        with self._lock:
            self._records.append(record)

    def read_all(self) -> list[dict[str, object]]:
        with self._lock:
            return list(self._records)

    @property
    def session_id(self) -> str:
        return self._session_id
