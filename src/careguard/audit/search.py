"""Audit trail search utilities.

AuditSearch wraps an :class:`~careguard.audit.logger.AuditSink` and
provides filters over access-decision records by principal, outcome,
denial reason and date range.

Example
-------
>>> from pathlib import Path
>>> from careguard.audit.logger import AuditLogger
>>> from careguard.audit.search import AuditSearch
>>> search = AuditSearch(AuditLogger(Path("/tmp/careguard_audit.jsonl")))
>>> denied = search.by_outcome("denied")
"""
from __future__ import annotations

from datetime import datetime, timezone

from careguard.audit.logger import AuditSink


def parse_timestamp(raw: object) -> datetime | None:
    """Parse an ISO-8601 timestamp string into an aware datetime."""
    if not isinstance(raw, str):
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class AuditSearch:
    """Search and filtering over an :class:`AuditSink`.

    Parameters
    ----------
    sink:
        The audit sink whose records will be searched.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    # ------------------------------------------------------------------
    # Public search methods
    # ------------------------------------------------------------------

    def by_date_range(self, start: datetime, end: datetime) -> list[dict[str, object]]:
        """Return records whose timestamps fall within [start, end].

        Parameters
        ----------
        start:
            Inclusive lower bound (timezone-aware).
        end:
            Inclusive upper bound (timezone-aware).

        Returns
        -------
        list[dict[str, object]]
            Matching records in chronological order.
        """
        return self.multi_filter(start=start, end=end)

    def by_principal(self, principal_id: str) -> list[dict[str, object]]:
        return [r for r in self._sink.read_all() if r.get("principal_id") == principal_id]

    def by_outcome(self, outcome: str) -> list[dict[str, object]]:
        """Return records with ``outcome`` equal to ``"allowed"`` or ``"denied"``."""
        return [r for r in self._sink.read_all() if r.get("outcome") == outcome]

    def by_reason(self, reason: str) -> list[dict[str, object]]:
        """Return denials with a specific reason (e.g. ``"insufficient_role"``)."""
        return [r for r in self._sink.read_all() if r.get("reason") == reason]

    def by_event(self, event_type: str) -> list[dict[str, object]]:
        return [r for r in self._sink.read_all() if r.get("event") == event_type]

    def multi_filter(
        self,
        principal_id: str | None = None,
        outcome: str | None = None,
        reason: str | None = None,
        event_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, object]]:
        """Apply multiple filters simultaneously (AND semantics).

        Parameters
        ----------
        principal_id:
            Optional exact principal filter.
        outcome:
            Optional ``"allowed"`` / ``"denied"`` filter.
        reason:
            Optional exact denial-reason filter.
        event_type:
            Optional exact ``event`` filter.
        start:
            Optional inclusive start datetime.
        end:
            Optional inclusive end datetime.

        Returns
        -------
        list[dict[str, object]]
            Records matching all supplied filters.
        """
        exact = {
            "principal_id": principal_id,
            "outcome": outcome,
            "reason": reason,
            "event": event_type,
        }
        wanted = {k: v for k, v in exact.items() if v is not None}

        results: list[dict[str, object]] = []
        for record in self._sink.read_all():
            if any(record.get(k) != v for k, v in wanted.items()):
                continue
            if start is not None or end is not None:
                ts = parse_timestamp(record.get("timestamp"))
                if ts is None:
                    continue
                if start is not None and ts < start:
                    continue
                if end is not None and ts > end:
                    continue
            results.append(record)
        return results
