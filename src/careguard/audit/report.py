"""Access audit reports and suspicious-activity detection.

AuditReportGenerator summarises access-decision records over a period and
flags patterns worth a human look.  Detection looks at the seven days
before ``now``:

- ``multiple_failed_attempts``: more than 5 denials (high above 10, else medium)
- ``off_hours_access``: more than 3 decisions before 06:00 or after 22:59 UTC (medium)
- ``bulk_data_access``: more than 3 export requests (high)

Generating a report is itself an auditable action and is written to the
audit trail.

Example
-------
>>> generator = AuditReportGenerator(audit_log)
>>> report = generator.generate(start, end)
>>> report.summary.denied
3
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from careguard.audit.logger import AuditSink
from careguard.audit.search import AuditSearch, parse_timestamp

logger = logging.getLogger(__name__)

DETECTION_WINDOW = timedelta(days=7)
FAILED_ATTEMPTS_THRESHOLD = 5
FAILED_ATTEMPTS_HIGH_THRESHOLD = 10
OFF_HOURS_THRESHOLD = 3
BULK_EXPORT_THRESHOLD = 3
BUSINESS_HOURS_START = 6
BUSINESS_HOURS_END = 22


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class SuspiciousActivity:
    """One detected pattern."""

    type: str
    description: str
    severity: Severity
    detected_at: datetime
    count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "description": self.description,
            "severity": self.severity.value,
            "detected_at": self.detected_at.isoformat(),
            "count": self.count,
        }


@dataclass(frozen=True)
class AuditSummary:
    """Headline numbers for a set of access-decision records."""

    total: int
    allowed: int
    denied: int
    unique_principals: int
    most_requested: str | None
    denial_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class AuditReport:
    """A full audit report for one period."""

    period_start: datetime
    period_end: datetime
    generated_at: datetime
    summary: AuditSummary
    suspicious_activity: list[SuspiciousActivity]

    def to_dict(self) -> dict[str, object]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "summary": self.summary.to_dict(),
            "suspicious_activity": [a.to_dict() for a in self.suspicious_activity],
        }


def _decisions(records: list[dict[str, object]]) -> list[dict[str, object]]:
    return [r for r in records if r.get("event", "access_decision") == "access_decision"]


def _is_off_hours(ts: datetime) -> bool:
    hour = ts.astimezone(timezone.utc).hour
    return hour < BUSINESS_HOURS_START or hour > BUSINESS_HOURS_END


def _is_export(record: dict[str, object]) -> bool:
    required = record.get("required_permissions")
    return isinstance(required, list) and "export_data" in required


class AuditReportGenerator:
    """Builds :class:`AuditReport` objects from an :class:`AuditSink`.

    Parameters
    ----------
    sink:
        Source of records, and destination of the report-generated record.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink
        self._search = AuditSearch(sink)

    def summary(self, records: list[dict[str, object]]) -> AuditSummary:
        """Summarise access-decision records.  Other events are ignored."""
        decisions = _decisions(records)
        allowed = sum(1 for r in decisions if r.get("outcome") == "allowed")
        requested = Counter(str(r["requirement"]) for r in decisions if r.get("requirement"))
        reasons = Counter(str(r["reason"]) for r in decisions if r.get("reason"))
        principals = {r.get("principal_id") for r in decisions if r.get("principal_id")}
        return AuditSummary(
            total=len(decisions),
            allowed=allowed,
            denied=len(decisions) - allowed,
            unique_principals=len(principals),
            most_requested=requested.most_common(1)[0][0] if requested else None,
            denial_reasons=dict(reasons),
        )

    def detect_suspicious_activity(
        self,
        records: list[dict[str, object]],
        now: datetime | None = None,
    ) -> list[SuspiciousActivity]:
        """Flag suspicious patterns among records from the seven days before ``now``."""
        moment = now or datetime.now(tz=timezone.utc)
        window_start = moment - DETECTION_WINDOW

        recent: list[tuple[datetime, dict[str, object]]] = []
        for record in _decisions(records):
            ts = parse_timestamp(record.get("timestamp"))
            if ts is not None and window_start <= ts <= moment:
                recent.append((ts, record))

        found: list[SuspiciousActivity] = []

        denied = sum(1 for _, r in recent if r.get("outcome") == "denied")
        if denied > FAILED_ATTEMPTS_THRESHOLD:
            found.append(
                SuspiciousActivity(
                    type="multiple_failed_attempts",
                    description=f"{denied} denied access attempts in the last 7 days",
                    severity=(
                        Severity.HIGH if denied > FAILED_ATTEMPTS_HIGH_THRESHOLD else Severity.MEDIUM
                    ),
                    detected_at=moment,
                    count=denied,
                )
            )

        off_hours = sum(1 for ts, _ in recent if _is_off_hours(ts))
        if off_hours > OFF_HOURS_THRESHOLD:
            found.append(
                SuspiciousActivity(
                    type="off_hours_access",
                    description=f"{off_hours} access attempts outside normal hours",
                    severity=Severity.MEDIUM,
                    detected_at=moment,
                    count=off_hours,
                )
            )

        exports = sum(1 for _, r in recent if _is_export(r))
        if exports > BULK_EXPORT_THRESHOLD:
            found.append(
                SuspiciousActivity(
                    type="bulk_data_access",
                    description=f"{exports} data export attempts detected",
                    severity=Severity.HIGH,
                    detected_at=moment,
                    count=exports,
                )
            )

        if found:
            logger.warning(
                "Suspicious activity detected: %s", ", ".join(a.type for a in found)
            )
        return found

    def generate(
        self,
        start: datetime,
        end: datetime,
        now: datetime | None = None,
        generated_by: str = "system",
    ) -> AuditReport:
        """Build a report for [start, end] and record its generation.

        Raises
        ------
        ValueError
            When ``end`` is before ``start``.
        """
        if end < start:
            raise ValueError("Report end must not be before its start.")
        moment = now or datetime.now(tz=timezone.utc)
        records = self._search.by_date_range(start, end)
        report = AuditReport(
            period_start=start,
            period_end=end,
            generated_at=moment,
            summary=self.summary(records),
            suspicious_activity=self.detect_suspicious_activity(records, now=min(moment, end)),
        )
        self._sink.log(
            {
                "event": "audit_report_generated",
                "principal_id": generated_by,
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "record_count": report.summary.total,
            }
        )
        logger.info(
            "Generated audit report for %s to %s (%d decisions)",
            start.isoformat(),
            end.isoformat(),
            report.summary.total,
        )
        return report
