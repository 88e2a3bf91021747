"""Tests for recovery report rendering."""

import json
from datetime import datetime

from payment_sync.reconciliation import (
    OrderFailure,
    RecoveryResult,
    ReportGenerator,
    SweepSummary,
)


def make_result(**overrides):
    values = dict(
        window_hours=24,
        summary=SweepSummary(payos_total=20, database_total=18, missing_count=2, mismatch_count=1),
        recovered=2,
        updated=1,
        started_at=datetime(2026, 10, 19, 2, 0, 0),
        completed_at=datetime(2026, 10, 19, 2, 0, 5),
    )
    values.update(overrides)
    return RecoveryResult(**values)


class TestReportGenerator:
    """Tests for ReportGenerator."""

    def test_to_json(self):
        data = json.loads(ReportGenerator(make_result()).to_json())

        assert data["summary"]["payosTotal"] == 20
        assert data["total"] == 3
        assert data["miss_rate"] == 0.15
        assert data["started_at"] == "2026-10-19T02:00:00"
        assert data["window_hours"] == 24

    def test_summary_text(self):
        result = make_result(
            failed=[OrderFailure(order_code="A", reason="database is locked")],
            unresolved=["B"],
            partial=True,
        )

        text = ReportGenerator(result).to_summary_text()

        assert "PAYMENT RECOVERY SUMMARY" in text
        assert "Gateway listing: partial" in text
        assert "Miss Rate: 15.00%" in text
        assert "Total Fixed: 3" in text
        assert "A: database is locked" in text
        assert "Unresolved Orders" in text

    def test_summary_text_without_completion(self):
        text = ReportGenerator(make_result(completed_at=None)).to_summary_text()

        assert "Completed At: N/A" in text
        assert "Failed Orders" not in text
