"""Audit trail package for careguard.

Provides append-only JSONL logging, search, export, and access report
generation with suspicious-activity detection.
"""
from __future__ import annotations

from careguard.audit.exporter import AuditExporter
from careguard.audit.logger import AuditLogger, AuditSink, InMemoryAuditLog
from careguard.audit.report import (
    AuditReport,
    AuditReportGenerator,
    AuditSummary,
    Severity,
    SuspiciousActivity,
)
from careguard.audit.search import AuditSearch

__all__ = [
    "AuditExporter",
    "AuditLogger",
    "AuditReport",
    "AuditReportGenerator",
    "AuditSearch",
    "AuditSink",
    "AuditSummary",
    "InMemoryAuditLog",
    "Severity",
    "SuspiciousActivity",
]
