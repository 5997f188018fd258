"""Billing Command Line Interface.

Provides operational tools for:
- Scheduled recurring billing runs
- Payroll version history
- Schema creation and reference data seeding
- Health checks

Usage:
    python -m payroll_billing.cli generate-recurring --month 2025-03-01 [--dry-run]
    python -m payroll_billing.cli version-history --payroll-id X
    python -m payroll_billing.cli init-db
    python -m payroll_billing.cli health
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select, text

from payroll_billing.calculators.proration import validate_billing_month
from payroll_billing.calculators.schedule import CYCLES, DATE_TYPES
from payroll_billing.config import configure_logging
from payroll_billing.database import dispose_db, get_session, init_db
from payroll_billing.exceptions import InvalidBillingMonthError
from payroll_billing.models import Base, PayrollCycle, PayrollDateType, RecurringService
from payroll_billing.models.base import utcnow
from payroll_billing.services.eligibility import (
    STANDARD_SERVICES,
    StandardEligibilityPolicy,
    load_service_catalog,
)
from payroll_billing.services.recurring_billing import (
    RecurringBillingGenerator,
    RecurringBillingResult,
)
from payroll_billing.services.versioning import PayrollVersionManager

logger = logging.getLogger(__name__)


def parse_month(s: str) -> date:
    """Parse a YYYY-MM-DD billing month."""
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {s!r} (expected YYYY-MM-01)")


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def result_to_dict(result: RecurringBillingResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "billingMonth": result.billing_month.isoformat(),
        "itemsCreated": result.items_created,
        "totalAmount": float(result.total_amount),
        "clientsProcessed": result.clients_processed,
        "errors": result.errors,
        "warnings": result.warnings,
        "cancelled": result.cancelled,
        "items": [
            {
                "clientId": str(item.client_id),
                "clientName": item.client_name,
                "serviceCode": item.service_code,
                "amount": float(item.amount),
                "prorated": item.prorated,
            }
            for item in result.items
        ],
    }


class BillingCli:
    """Billing Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payroll_billing.cli",
            description="Payroll billing operational tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Override LOG_LEVEL for this invocation",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # generate-recurring command
        generate = subparsers.add_parser(
            "generate-recurring",
            help="Generate monthly recurring billing items",
        )
        generate.add_argument(
            "--month",
            type=parse_month,
            required=True,
            help="Billing month, first day (YYYY-MM-01)",
        )
        generate.add_argument(
            "--client-id",
            type=parse_uuid,
            action="append",
            dest="client_ids",
            help="Restrict to this client (repeatable)",
        )
        generate.add_argument(
            "--service-code",
            type=str,
            help="Restrict to one service code",
        )
        generate.add_argument(
            "--dry-run",
            action="store_true",
            help="Compute items without writing anything",
        )
        generate.add_argument(
            "--timeout-seconds",
            type=float,
            help="Stop before the next client once this many seconds have passed",
        )
        generate.add_argument(
            "--json",
            action="store_true",
            help="Print the result as JSON",
        )

        # version-history command
        history = subparsers.add_parser(
            "version-history",
            help="Show every version of a payroll",
        )
        history.add_argument(
            "--payroll-id",
            type=parse_uuid,
            required=True,
            help="Any version ID in the payroll chain",
        )

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create tables and seed cycles, date types, and the service catalog",
        )

        # health command
        subparsers.add_parser("health", help="Check database connectivity")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level)

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "generate-recurring": self._cmd_generate_recurring,
            "version-history": self._cmd_version_history,
            "init-db": self._cmd_init_db,
            "health": self._cmd_health,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _run_async(self, coro: Any) -> Any:
        async def runner() -> Any:
            try:
                return await coro
            finally:
                await dispose_db()

        return asyncio.run(runner())

    def _cmd_generate_recurring(self, args: argparse.Namespace) -> int:
        """Run recurring billing for a month."""
        try:
            validate_billing_month(args.month)
        except InvalidBillingMonthError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

        deadline = None
        if args.timeout_seconds:
            deadline = utcnow() + timedelta(seconds=args.timeout_seconds)

        async def generate() -> RecurringBillingResult:
            async with get_session() as session:
                catalog = await load_service_catalog(session)
                generator = RecurringBillingGenerator(
                    session, policy=StandardEligibilityPolicy(catalog)
                )
                result = await generator.generate(
                    args.month,
                    client_ids=args.client_ids,
                    service_code=args.service_code,
                    dry_run=args.dry_run,
                    deadline=deadline,
                )
                if args.dry_run:
                    await session.rollback()
                return result

        result = self._run_async(generate())

        if args.json:
            print(json.dumps(result_to_dict(result), indent=2))
        else:
            prefix = "[DRY RUN] " if args.dry_run else ""
            print(f"{prefix}Recurring billing for {result.billing_month:%B %Y}")
            print("=" * 60)
            for item in result.items:
                flag = " (pro-rated)" if item.prorated else ""
                print(
                    f"  {item.client_name:<30} {item.service_code:<24} "
                    f"{item.amount:>10,.2f}{flag}"
                )
            print("-" * 60)
            print(f"  Clients processed: {result.clients_processed}")
            print(f"  Items created:     {result.items_created}")
            print(f"  Total amount:      {result.total_amount:,.2f}")
            for warning in result.warnings:
                print(f"  WARNING: {warning}")
            for error in result.errors:
                print(f"  ERROR: {error}")
            if result.cancelled:
                print("  Run stopped at deadline; re-run to finish.")

        if result.errors or result.cancelled:
            return 1
        return 0

    def _cmd_version_history(self, args: argparse.Namespace) -> int:
        """Print a payroll's version chain."""

        async def history() -> list[dict[str, Any]]:
            async with get_session() as session:
                versions = await PayrollVersionManager(session).get_version_history(
                    args.payroll_id
                )
                return [
                    {
                        "id": v.id,
                        "version": v.version_number,
                        "go_live": v.go_live_date,
                        "superseded": v.superseded_date,
                        "reason": v.version_reason,
                        "status": v.status,
                    }
                    for v in versions
                ]

        versions = self._run_async(history())
        if not versions:
            print(f"Payroll not found: {args.payroll_id}", file=sys.stderr)
            return 1

        print(f"Version history for payroll {args.payroll_id}")
        print("=" * 60)
        for v in versions:
            marker = "*" if v["superseded"] is None else " "
            print(
                f"{marker} v{v['version']:<3} {v['id']}  go-live {v['go_live']}  "
                f"superseded {v['superseded'] or '-'}  {v['reason'] or ''} [{v['status']}]"
            )
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create schema and seed reference data."""

        async def init() -> tuple[int, int]:
            engine, _ = init_db()
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            async with get_session() as session:
                added = 0
                for model, names in ((PayrollCycle, CYCLES), (PayrollDateType, DATE_TYPES)):
                    existing = set(
                        (await session.execute(select(model.name))).scalars().all()
                    )
                    for name in names:
                        if name not in existing:
                            session.add(model(name=name))
                            added += 1

                existing_codes = set(
                    (await session.execute(select(RecurringService.service_code)))
                    .scalars()
                    .all()
                )
                services = 0
                for config in STANDARD_SERVICES.values():
                    if config.service_code in existing_codes:
                        continue
                    session.add(
                        RecurringService(
                            service_code=config.service_code,
                            service_name=config.service_name,
                            base_rate=config.base_rate,
                            new_client_proration=config.new_client_proration,
                            termination_proration=config.termination_proration,
                            minimum_charge=config.minimum_charge,
                            auto_approval=config.auto_approval,
                            description=config.description,
                        )
                    )
                    services += 1
                return added, services

        try:
            reference_rows, services = self._run_async(init())
        except Exception as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

        print("Schema created.")
        print(f"  Reference rows added: {reference_rows}")
        print(f"  Services added:       {services}")
        return 0

    def _cmd_health(self, args: argparse.Namespace) -> int:
        """Check database connectivity."""
        print("Billing Health Check")
        print("=" * 40)

        async def check() -> None:
            async with get_session() as session:
                await session.execute(text("SELECT 1"))

        try:
            self._run_async(check())
        except Exception as e:
            print(f"\ndb: FAIL\n  error: {e}")
            print("\n" + "=" * 40)
            print("Overall: UNHEALTHY")
            return 1

        print("\ndb: OK")
        print("\n" + "=" * 40)
        print("Overall: HEALTHY")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = BillingCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
