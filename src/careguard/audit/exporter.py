"""Audit trail exporter.

Writes access decisions to CSV or JSON for compliance evidence packages
and long-term archival.  CSV exports use a fixed column order so that
files from different periods can be concatenated and diffed:

    timestamp, principal_id, requirement, outcome, reason, scope,
    mode, required_permissions, event, extra

``required_permissions`` is written as a ``;``-separated list.  Keys
outside the fixed columns (``session_id``, report metadata and so on) are
folded into ``extra`` as a compact JSON object.

Example
-------
>>> from pathlib import Path
>>> from careguard.audit.logger import AuditLogger
>>> from careguard.audit.exporter import AuditExporter
>>> exporter = AuditExporter(AuditLogger(Path("/tmp/careguard_audit.jsonl")))
>>> exporter.to_csv(Path("/tmp/audit_export.csv"), decisions_only=True)
>>> exporter.to_json(Path("/tmp/audit_export.json"))
"""
from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

from careguard.audit.logger import AuditSink

logger = logging.getLogger(__name__)

DECISION_COLUMNS: tuple[str, ...] = (
    "timestamp",
    "principal_id",
    "requirement",
    "outcome",
    "reason",
    "scope",
    "mode",
    "required_permissions",
    "event",
)
CSV_COLUMNS: tuple[str, ...] = DECISION_COLUMNS + ("extra",)


def _csv_row(record: dict[str, object]) -> dict[str, str]:
    row: dict[str, str] = {}
    for column in DECISION_COLUMNS:
        value = record.get(column)
        if value is None:
            row[column] = ""
        elif column == "required_permissions" and isinstance(value, (list, tuple, set, frozenset)):
            row[column] = ";".join(sorted(str(v) for v in value))
        else:
            row[column] = str(value)
    extra = {k: v for k, v in record.items() if k not in DECISION_COLUMNS}
    row["extra"] = json.dumps(extra, sort_keys=True, default=str) if extra else ""
    return row


class AuditExporter:
    """Exports audit records to structured file formats.

    Parameters
    ----------
    sink:
        The :class:`AuditSink` to export from.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    def _select(
        self, records: list[dict[str, object]] | None, decisions_only: bool
    ) -> list[dict[str, object]]:
        data = records if records is not None else self._sink.read_all()
        if decisions_only:
            return [r for r in data if r.get("event") == "access_decision"]
        return data

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_csv(
        self,
        output_path: Path,
        records: list[dict[str, object]] | None = None,
        decisions_only: bool = False,
    ) -> int:
        """Export audit records to a CSV file with the fixed column order.

        A header row is always written, even when there is nothing to
        export.

        Parameters
        ----------
        output_path:
            Destination path for the CSV file.
        records:
            Optional pre-filtered record list.  When omitted, all records
            from the sink are exported.
        decisions_only:
            Skip records whose ``event`` is not ``access_decision``.

        Returns
        -------
        int
            Number of records written.
        """
        data = self._select(records, decisions_only)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=list(CSV_COLUMNS))
            writer.writeheader()
            for record in data:
                writer.writerow(_csv_row(record))

        logger.info("Exported %d audit records to %s", len(data), output_path)
        return len(data)

    def to_json(
        self,
        output_path: Path,
        records: list[dict[str, object]] | None = None,
        indent: int = 2,
        decisions_only: bool = False,
    ) -> int:
        """Export audit records to a JSON array file.  Returns the record count."""
        data = self._select(records, decisions_only)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, default=str)
        logger.info("Exported %d audit records to %s", len(data), output_path)
        return len(data)
