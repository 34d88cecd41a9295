#!/usr/bin/env python3
"""Command-line interface for reconciliation tools.

This CLI runs reconciliation passes and manages the resulting alerts
against the database named by DATABASE_URL.

Usage:
    python -m payments_recon.reconciliation.cli run --format text
    python -m payments_recon.reconciliation.cli alerts --organization org_123 --limit 20
    python -m payments_recon.reconciliation.cli resolve orphaned_transaction_txn_1 --reason "Linked manually"
    python -m payments_recon.reconciliation.cli stats --organization org_123
    python -m payments_recon.reconciliation.cli cleanup
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from ..config import ReconciliationPolicy
from ..database import DatabaseManager
from .report import ReportGenerator, alerts_to_csv, alerts_to_json
from .service import ReconciliationService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ISSUES_FOUND = 1
EXIT_DETECTOR_FAILED = 2


def _write_output(output: str, output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, "w") as f:
            f.write(output)
        logger.info(f"Report written to {output_file}")
    else:
        print(output)


async def run_command_async(args: argparse.Namespace, service: ReconciliationService) -> int:
    """Dispatch one parsed command against a service.

    Returns:
        Exit code (0 for success, non-zero for issues or failure).
    """
    if args.command == "run":
        result = await service.run_reconciliation(organization_id=args.organization)
        generator = ReportGenerator(result)
        if args.format == "json":
            output = generator.to_json(include_details=not args.summary_only)
        elif args.format == "csv":
            output = generator.to_csv()
        elif args.format == "detailed_text":
            output = generator.to_detailed_text()
        else:
            output = generator.to_summary_text()
        _write_output(output, args.output)

        if any(f.stage == "detection" for f in result.failures):
            logger.error(f"Reconciliation ran with {len(result.failures)} failures")
            return EXIT_DETECTOR_FAILED
        if result.alerts:
            logger.warning(f"Reconciliation completed with {len(result.alerts)} open issues")
            return EXIT_ISSUES_FOUND
        return EXIT_OK

    if args.command == "alerts":
        alerts = await service.get_active_alerts(args.organization, args.limit)
        output = alerts_to_csv(alerts) if args.format == "csv" else alerts_to_json(alerts)
        _write_output(output, args.output)
        return EXIT_OK

    if args.command == "resolve":
        if await service.resolve_alert(args.alert_id, args.reason):
            print(f"Resolved {args.alert_id}")
            return EXIT_OK
        logger.error(f"Could not resolve alert {args.alert_id}")
        return EXIT_ISSUES_FOUND

    if args.command == "stats":
        stats = await service.get_reconciliation_stats(args.organization)
        print(json.dumps(stats.model_dump(mode="json"), indent=2))
        return EXIT_OK

    if args.command == "cleanup":
        count = await service.cleanup_stale_alerts()
        print(f"Auto-resolved {count} stale alerts")
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


async def main_async(args: argparse.Namespace) -> int:
    db = DatabaseManager()
    await db.initialize()
    try:
        service = ReconciliationService.from_session_factory(
            db.session_factory,
            policy=ReconciliationPolicy.from_env(),
        )
        return await run_command_async(args, service)
    finally:
        await db.shutdown()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="payments-recon",
        description="Detect lost or stuck payment events and manage reconciliation alerts.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run a reconciliation pass")
    run_parser.add_argument("--organization", help="Restrict the run to one organization")
    run_parser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text", "detailed_text"],
        default="text",
        help="Output format (default: text)",
    )
    run_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    run_parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Only include summary statistics in JSON output",
    )

    alerts_parser = subparsers.add_parser("alerts", help="List active alerts")
    alerts_parser.add_argument("--organization", help="Organization to list alerts for")
    alerts_parser.add_argument("--limit", "-n", type=int, default=50, help="Maximum alerts (default: 50)")
    alerts_parser.add_argument("--format", "-f", choices=["json", "csv"], default="json")
    alerts_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve an alert")
    resolve_parser.add_argument("alert_id", help="Alert id, e.g. orphaned_transaction_<id>")
    resolve_parser.add_argument("--reason", "-r", help="Resolution note")

    stats_parser = subparsers.add_parser("stats", help="Show unresolved alert statistics")
    stats_parser.add_argument("--organization", help="Organization to report on")

    subparsers.add_parser("cleanup", help="Auto-resolve alerts past the retention window")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(main_async(parsed_args))
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
