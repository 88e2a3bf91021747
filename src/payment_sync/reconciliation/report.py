"""Report generation for recovery sweep results."""

import json
from datetime import datetime

from .models import RecoveryResult


class ReportGenerator:
    """Renders a recovery result for humans or machines."""

    def __init__(self, result: RecoveryResult):
        """Initialize the report generator.

        Args:
            result: The recovery result to render.
        """
        self.result = result

    def to_dict(self) -> dict:
        data = self.result.to_response_dict()
        data["window_hours"] = self.result.window_hours
        data["miss_rate"] = round(self.result.summary.miss_rate, 4)
        data["started_at"] = self.result.started_at
        data["completed_at"] = self.result.completed_at
        return data

    def to_json(self, indent: int = 2) -> str:
        """Generate JSON representation of the result.

        Args:
            indent: JSON indentation level.

        Returns:
            JSON string.
        """
        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(self.to_dict(), indent=indent, default=json_serializer)

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the result."""
        summary = self.result.summary
        completed = self.result.completed_at.isoformat() if self.result.completed_at else "N/A"

        lines = [
            "=" * 60,
            "PAYMENT RECOVERY SUMMARY",
            "=" * 60,
            f"Window: last {self.result.window_hours} hours",
            f"Gateway listing: {'partial' if self.result.partial else 'complete'}",
            "",
            "Comparison:",
            f"  PayOS Transactions: {summary.payos_total}",
            f"  Ledger Payments: {summary.database_total}",
            f"  Missing In Ledger: {summary.missing_count}",
            f"  Status Mismatches: {summary.mismatch_count}",
            f"  Miss Rate: {summary.miss_rate * 100:.2f}%",
            "",
            "Actions:",
            f"  Recovered (inserted): {self.result.recovered}",
            f"  Updated (completed): {self.result.updated}",
            f"  Total Fixed: {self.result.total}",
            f"  Failed: {len(self.result.failed)}",
            f"  Unresolved: {len(self.result.unresolved)}",
            "",
            f"Started At: {self.result.started_at.isoformat()}",
            f"Completed At: {completed}",
        ]

        if self.result.failed:
            lines.extend(["", "Failed Orders:"])
            for failure in self.result.failed:
                lines.append(f"  {failure.order_code}: {failure.reason}")

        if self.result.unresolved:
            lines.extend(["", "Unresolved Orders (manual review):"])
            for order_code in self.result.unresolved:
                lines.append(f"  {order_code}")

        lines.append("=" * 60)
        return "\n".join(lines)
