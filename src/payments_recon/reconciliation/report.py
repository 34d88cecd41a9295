"""Report generation for reconciliation run results."""

import json
import csv
import io
import enum
from datetime import datetime
from typing import Iterable, List

from .models import AlertSeverity, ReconciliationAlert, ReconciliationResult

CSV_COLUMNS = [
    "id", "type", "severity", "resource_type", "resource_id",
    "organization_id", "title", "created_at", "resolved",
]


def _json_serializer(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def alerts_to_csv(alerts: Iterable[ReconciliationAlert]) -> str:
    """Render alerts as CSV with a header row."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for alert in alerts:
        writer.writerow([
            alert.id,
            alert.type.value,
            alert.severity.value,
            alert.resource_type.value,
            alert.resource_id,
            alert.organization_id or "",
            alert.title,
            alert.created_at.isoformat(),
            alert.resolved,
        ])
    return output.getvalue()


def alerts_to_json(alerts: Iterable[ReconciliationAlert], indent: int = 2) -> str:
    return json.dumps(
        [a.model_dump() for a in alerts], indent=indent, default=_json_serializer
    )


class ReportGenerator:
    """Generator for reconciliation run reports in various formats."""

    def __init__(self, result: ReconciliationResult):
        """Initialize the report generator.

        Args:
            result: The reconciliation run result to render.
        """
        self.result = result

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the run.

        Args:
            include_details: If True, include every alert. If False, only summary.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the run.
        """
        if include_details:
            data = self.result.to_full_dict()
        else:
            data = self.result.to_summary_dict()
        return json.dumps(data, indent=indent, default=_json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one row per emitted alert."""
        return alerts_to_csv(self.result.alerts)

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the run."""
        stats = self.result.stats
        lines = [
            "=" * 60,
            "RECONCILIATION RUN SUMMARY",
            "=" * 60,
            f"Started At: {self.result.started_at.isoformat()}",
            f"Completed At: {self.result.completed_at.isoformat() if self.result.completed_at else 'N/A'}",
            "",
            "Issues:",
            f"  Orphaned Transactions: {stats.orphaned_transactions}",
            f"  Missing Payment Links: {stats.missing_payment_links}",
            f"  Webhook Delivery Delays: {stats.webhook_delay_alerts}",
            f"  Total Issues: {stats.total_issues}",
            "",
            f"Next Run At: {stats.next_run_at.isoformat()}",
        ]

        if self.result.failures:
            lines.extend(["", f"Failures ({len(self.result.failures)}):"])
            for failure in self.result.failures:
                lines.append(f"  [{failure.stage}] {failure.source}: {failure.error}")

        lines.append("=" * 60)
        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Generate the summary followed by alerts grouped by severity."""
        lines = [self.to_summary_text(), ""]

        for severity in (AlertSeverity.HIGH, AlertSeverity.MEDIUM, AlertSeverity.LOW):
            group: List[ReconciliationAlert] = [
                a for a in self.result.alerts if a.severity == severity
            ]
            if not group:
                continue
            lines.extend([f"{severity.value.upper()} SEVERITY ({len(group)})", "-" * 40])
            for alert in group:
                lines.append(
                    f"  {alert.type.value} | {alert.resource_type.value} {alert.resource_id}"
                )
                lines.append(f"    {alert.description}")
            lines.append("")

        return "\n".join(lines)
