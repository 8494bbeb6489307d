"""Tests for reclaim report storage and analytics."""

import csv
import io
import json
from datetime import UTC, datetime, timedelta

import pytest

from kora_rent_tracker.reclaim.models import ReclaimReport
from kora_rent_tracker.reporting.store import CSV_HEADERS, ReportStore


def _report(*, dry_run: bool, reclaimed: int, failed: int = 0, days_ago: float = 0) -> ReclaimReport:
    return ReclaimReport(
        operator="OP1",
        treasury="OP1",
        dry_run=dry_run,
        timestamp=datetime.now(UTC) - timedelta(days=days_ago),
        accounts_analyzed=reclaimed + failed,
        accounts_reclaimed=reclaimed,
        accounts_failed=failed,
        total_lamports_reclaimed=reclaimed * 2_039_280,
    )


@pytest.fixture
def store(tmp_path) -> ReportStore:
    return ReportStore(tmp_path / "reports")


class TestReportStore:
    """Tests for ReportStore."""

    def test_save_writes_run_file(self, store) -> None:
        report = _report(dry_run=True, reclaimed=1)

        path = store.save(report)

        assert path.name == f"{report.run_id}.json"
        assert json.loads(path.read_text(encoding="utf-8"))["accounts_reclaimed"] == 1

    def test_list_newest_first_and_skips_garbage(self, store) -> None:
        older = _report(dry_run=False, reclaimed=1, days_ago=2)
        newer = _report(dry_run=False, reclaimed=2)
        store.save(older)
        store.save(newer)
        (store.reports_dir / "broken.json").write_text("{", encoding="utf-8")

        reports = store.list_reports()

        assert [r["run_id"] for r in reports] == [newer.run_id, older.run_id]

    def test_empty_directory(self, store) -> None:
        assert store.list_reports() == []
        assert store.analytics().total_runs == 0
        assert store.analytics().success_rate == 0.0

    def test_analytics_excludes_dry_runs(self, store) -> None:
        store.save(_report(dry_run=False, reclaimed=3, failed=1))
        store.save(_report(dry_run=True, reclaimed=10))

        analytics = store.analytics()

        assert analytics.total_runs == 2
        assert analytics.live_runs == 1
        assert analytics.total_attempted == 4
        assert analytics.total_reclaimed == 3
        assert analytics.total_lamports_reclaimed == 3 * 2_039_280
        assert analytics.success_rate == pytest.approx(75.0)

    def test_analytics_with_dry_runs_and_range(self, store) -> None:
        store.save(_report(dry_run=True, reclaimed=2, days_ago=10))
        recent = _report(dry_run=True, reclaimed=1)
        store.save(recent)

        analytics = store.analytics(
            since=datetime.now(UTC) - timedelta(days=1), include_dry_runs=True
        )

        assert analytics.total_runs == 1
        assert analytics.total_reclaimed == 1
        assert analytics.most_recent_run_id == recent.run_id

    def test_export_csv(self, store) -> None:
        report = _report(dry_run=False, reclaimed=1)
        store.save(report)

        rows = list(csv.reader(io.StringIO(store.export_csv())))

        assert tuple(rows[0]) == CSV_HEADERS
        assert rows[1][0] == report.run_id
        assert rows[1][2] == "False"

    def test_prune(self, store) -> None:
        store.save(_report(dry_run=True, reclaimed=1, days_ago=40))
        keep = _report(dry_run=True, reclaimed=1, days_ago=1)
        store.save(keep)

        assert store.prune(30) == 1
        assert [r["run_id"] for r in store.list_reports()] == [keep.run_id]

    def test_prune_rejects_negative(self, store) -> None:
        with pytest.raises(ValueError):
            store.prune(-1)
