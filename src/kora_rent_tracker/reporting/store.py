"""Per-run reclaim report files and history analytics.

Reports are written once per run and read back only for reporting; they
never feed the registry.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from kora_rent_tracker.reclaim.models import ReclaimReport
from kora_rent_tracker.storage.files import atomic_write_text

logger = logging.getLogger(__name__)

CSV_HEADERS = (
    "run_id",
    "timestamp",
    "dry_run",
    "accounts_analyzed",
    "accounts_validated",
    "accounts_reclaimed",
    "accounts_failed",
    "accounts_skipped",
    "total_lamports_reclaimed",
)


@dataclass(frozen=True)
class ReportAnalytics:
    """Aggregate view over stored reclaim runs."""

    total_runs: int
    live_runs: int
    total_attempted: int
    total_reclaimed: int
    total_lamports_reclaimed: int
    success_rate: float
    most_recent_run_id: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "total_runs": self.total_runs,
            "live_runs": self.live_runs,
            "total_attempted": self.total_attempted,
            "total_reclaimed": self.total_reclaimed,
            "total_lamports_reclaimed": self.total_lamports_reclaimed,
            "success_rate": self.success_rate,
            "most_recent_run_id": self.most_recent_run_id,
        }


def _report_time(data: dict[str, Any]) -> datetime:
    return datetime.fromisoformat(str(data["timestamp"]))


class ReportStore:
    """Directory of ``<run_id>.json`` reclaim reports."""

    def __init__(self, reports_dir: Path) -> None:
        self._dir = reports_dir

    @property
    def reports_dir(self) -> Path:
        return self._dir

    def save(self, report: ReclaimReport) -> Path:
        """Write the report atomically and return its path."""
        path = self._dir / f"{report.run_id}.json"
        atomic_write_text(path, json.dumps(report.to_dict(), indent=2))
        logger.info("Saved reclaim report %s", path)
        return path

    def list_reports(self) -> list[dict[str, Any]]:
        """All readable reports, newest first. Unreadable files are skipped."""
        if not self._dir.exists():
            return []

        reports: list[dict[str, Any]] = []
        for path in self._dir.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                _report_time(data)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Skipping unreadable report %s: %s", path, e)
                continue
            reports.append(data)

        reports.sort(key=_report_time, reverse=True)
        return reports

    def analytics(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        include_dry_runs: bool = False,
    ) -> ReportAnalytics:
        """Summarize stored runs, optionally within a time range."""
        reports = [
            r
            for r in self.list_reports()
            if (since is None or _report_time(r) >= since)
            and (until is None or _report_time(r) <= until)
        ]
        counted = [r for r in reports if include_dry_runs or not r.get("dry_run", True)]

        attempted = sum(
            int(r.get("accounts_reclaimed", 0)) + int(r.get("accounts_failed", 0)) for r in counted
        )
        reclaimed = sum(int(r.get("accounts_reclaimed", 0)) for r in counted)
        return ReportAnalytics(
            total_runs=len(reports),
            live_runs=sum(1 for r in reports if not r.get("dry_run", True)),
            total_attempted=attempted,
            total_reclaimed=reclaimed,
            total_lamports_reclaimed=sum(
                int(r.get("total_lamports_reclaimed", 0)) for r in counted
            ),
            success_rate=(reclaimed / attempted * 100) if attempted else 0.0,
            most_recent_run_id=reports[0]["run_id"] if reports else None,
        )

    def export_csv(self) -> str:
        """One CSV row per stored run, newest first."""
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(CSV_HEADERS)
        for report in self.list_reports():
            writer.writerow([report.get(h, "") for h in CSV_HEADERS])
        return buf.getvalue()

    def prune(self, days_to_keep: int, *, now: datetime | None = None) -> int:
        """Delete reports older than ``days_to_keep`` days. Returns the count removed."""
        if days_to_keep < 0:
            raise ValueError("days_to_keep must be >= 0")
        if not self._dir.exists():
            return 0

        cutoff = (now or datetime.now(UTC)) - timedelta(days=days_to_keep)
        removed = 0
        for path in self._dir.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                stamp = _report_time(data)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Not pruning unreadable report %s: %s", path, e)
                continue
            if stamp < cutoff:
                path.unlink(missing_ok=True)
                removed += 1

        if removed:
            logger.info("Pruned %d reclaim reports older than %d days", removed, days_to_keep)
        return removed
