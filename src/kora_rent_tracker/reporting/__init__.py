"""Reporting - Reclaim report storage and plain-text summaries."""

from kora_rent_tracker.reporting.formatter import (
    format_registry_summary,
    format_report_summary,
    format_sol,
    truncate_address,
)
from kora_rent_tracker.reporting.store import ReportAnalytics, ReportStore

__all__ = [
    "ReportAnalytics",
    "ReportStore",
    "format_registry_summary",
    "format_report_summary",
    "format_sol",
    "truncate_address",
]
