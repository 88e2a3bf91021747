#!/usr/bin/env python3
"""Command-line interface for payment reconciliation.

Usage:
    payment-sync daily-recovery --base-url https://clinic.example.com
    payment-sync recover --hours 24 --format text
    payment-sync check-status 1750004006508
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

import httpx

from ..alerts import AlertSink, LoggingAlertSink
from ..config import get_settings
from ..database import PaymentRepository, close_db, get_db_context, init_db
from ..errors import GatewayError, OrderNotFound, PaymentSyncError
from .gateway import get_payment_gateway
from .reconciler import StatusReconciler
from .report import ReportGenerator
from .service import DEFAULT_WINDOW_HOURS, RecoverySweep

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_ALERT_THRESHOLD = 0.05

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_FAILED = 2


def run_daily_recovery(
    base_url: str,
    token: Optional[str],
    hours: int = DEFAULT_WINDOW_HOURS,
    threshold: float = DEFAULT_ALERT_THRESHOLD,
    alert_sink: Optional[AlertSink] = None,
    timeout: float = 120.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> int:
    """Call the recovery endpoint once and raise alerts on what it reports.

    The runner never touches the ledger itself; all writes happen behind
    the endpoint.

    Args:
        base_url: Base URL of the payment sync service.
        token: Bearer token for the recovery endpoint (SYNC_JOB_TOKEN).
        hours: Window to recover.
        threshold: Miss-rate above which an alert is raised.
        alert_sink: Where alerts go. Defaults to the log.
        timeout: HTTP timeout for the whole sweep call, in seconds.
        transport: Optional httpx transport, used by tests.

    Returns:
        Exit code: 0 when the sweep ran, non-zero when it could not be run.
    """
    alert_sink = alert_sink or LoggingAlertSink()

    if not token:
        logger.error("SYNC_JOB_TOKEN is not set; cannot call the recovery endpoint")
        alert_sink.notify("Daily payment recovery could not run: SYNC_JOB_TOKEN is not configured")
        return EXIT_FAILED

    url = f"{base_url.rstrip('/')}/payment/recovery"
    logger.info(f"Running daily payment recovery for the last {hours}h via {url}")

    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(
                url,
                params={"action": "recover", "hours": hours},
                headers={"Authorization": f"Bearer {token}"},
            )
    except httpx.HTTPError as e:
        logger.error(f"Daily payment recovery request failed: {type(e).__name__}: {e}")
        alert_sink.notify(f"Daily payment recovery failed: {type(e).__name__}")
        return EXIT_FAILED

    if response.status_code != 200:
        logger.error(f"Daily payment recovery returned HTTP {response.status_code}")
        alert_sink.notify(f"Daily payment recovery failed with HTTP {response.status_code}")
        return EXIT_FAILED

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("success") is False:
        alert_sink.notify(f"Daily payment recovery reported failure: {body.get('error')}")
        return EXIT_FAILED

    try:
        data = body["data"]
        summary = data["summary"]
        total = int(data.get("total", 0))
        payos_total = int(summary.get("payosTotal", 0))
        misses = int(summary.get("missingCount", 0)) + int(summary.get("mismatchCount", 0))
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Daily payment recovery returned an unreadable body: {e}")
        alert_sink.notify("Daily payment recovery returned an unreadable response")
        return EXIT_FAILED

    miss_rate = misses / payos_total if payos_total else 0.0

    logger.info(
        f"Daily payment recovery: {payos_total} gateway transactions, "
        f"{misses} missed, {data.get('recovered', 0)} recovered, "
        f"{data.get('updated', 0)} updated"
    )
    if data.get("partial"):
        logger.warning("Gateway listing was partial; counts cover only part of the window")
    if data.get("failed"):
        logger.warning(f"{len(data['failed'])} orders could not be fixed this run")

    if total > 0:
        alert_sink.notify(
            f"Found and fixed {total} missing/incorrect payments in the last {hours}h "
            f"(recovered={data.get('recovered', 0)}, updated={data.get('updated', 0)})"
        )
    if miss_rate > threshold:
        alert_sink.notify(
            f"Payment miss rate {miss_rate * 100:.2f}% exceeds {threshold * 100:.2f}% "
            f"({misses}/{payos_total} in the last {hours}h)"
        )

    return EXIT_OK


async def run_recovery_async(
    hours: int = DEFAULT_WINDOW_HOURS,
    output_format: str = "json",
    output_file: Optional[str] = None,
) -> int:
    """Run a recovery sweep in process against the configured database.

    Args:
        hours: Window to recover.
        output_format: 'json' or 'text'.
        output_file: Optional output file path.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    settings = get_settings()
    await init_db(settings.database_url)

    try:
        async with get_db_context() as session:
            sweep = RecoverySweep(PaymentRepository(session), get_payment_gateway("payos", settings))
            try:
                result = await sweep.recover(hours)
            except GatewayError as e:
                logger.error(f"Recovery sweep aborted, gateway unavailable: {e}")
                return EXIT_FAILED

        generator = ReportGenerator(result)
        output = generator.to_json() if output_format == "json" else generator.to_summary_text()

        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        return EXIT_FAILED if result.failed else EXIT_OK

    finally:
        await close_db()


async def check_status_async(order_code: str) -> int:
    """Reconcile a single order in process and print the result."""
    settings = get_settings()
    await init_db(settings.database_url)

    try:
        async with get_db_context() as session:
            reconciler = StatusReconciler(
                PaymentRepository(session),
                get_payment_gateway("payos", settings),
            )
            try:
                result = await reconciler.reconcile(order_code)
            except OrderNotFound:
                logger.error(f"Payment {order_code} not found in database")
                return EXIT_NOT_FOUND

        print(json.dumps(result.to_response_dict(), indent=2))
        return EXIT_OK

    finally:
        await close_db()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="payment-sync",
        description="Reconcile the payments ledger with the PayOS gateway.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    daily_parser = subparsers.add_parser(
        "daily-recovery",
        help="Call the recovery endpoint and alert on findings (for cron)",
    )
    daily_parser.add_argument(
        "--base-url",
        default=os.getenv("PAYMENT_SYNC_BASE_URL", DEFAULT_BASE_URL),
        help="Base URL of the payment sync service",
    )
    daily_parser.add_argument(
        "--hours",
        type=int,
        default=DEFAULT_WINDOW_HOURS,
        help="Window to recover in hours (default: 24)",
    )
    daily_parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Miss-rate alert threshold as a fraction (default: RECOVERY_ALERT_THRESHOLD or 0.05)",
    )

    recover_parser = subparsers.add_parser(
        "recover",
        help="Run a recovery sweep directly against the database",
    )
    recover_parser.add_argument(
        "--hours",
        type=int,
        default=DEFAULT_WINDOW_HOURS,
        help="Window to recover in hours (default: 24)",
    )
    recover_parser.add_argument(
        "--format", "-f",
        choices=["json", "text"],
        default="json",
        help="Output format (default: json)",
    )
    recover_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )

    status_parser = subparsers.add_parser(
        "check-status",
        help="Reconcile one order and print its record",
    )
    status_parser.add_argument("order_code", help="Order code to check")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=getattr(logging, parsed_args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not parsed_args.command:
        parser.print_help()
        return EXIT_NOT_FOUND

    try:
        if parsed_args.command == "daily-recovery":
            settings = get_settings()
            threshold = parsed_args.threshold
            if threshold is None:
                threshold = settings.recovery_alert_threshold
            return run_daily_recovery(
                base_url=parsed_args.base_url,
                token=settings.sync_job_token,
                hours=parsed_args.hours,
                threshold=threshold,
            )
        if parsed_args.command == "recover":
            return asyncio.run(run_recovery_async(
                hours=parsed_args.hours,
                output_format=parsed_args.format,
                output_file=parsed_args.output,
            ))
        if parsed_args.command == "check-status":
            return asyncio.run(check_status_async(parsed_args.order_code))
    except PaymentSyncError as e:
        logger.error(str(e))
        return EXIT_FAILED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
