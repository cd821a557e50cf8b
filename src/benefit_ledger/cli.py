"""Benefit ledger command line interface.

Provides operational tools for:
- Yearly balance initialization
- Recalculation from approved claims
- Low-balance alert reports
- Ledger audits
- Schema creation

Usage:
    benefit-ledger init-db
    benefit-ledger initialize --year 2025
    benefit-ledger recalculate --year 2025 --employee-id X
    benefit-ledger alerts --year 2025 --threshold 20 --format json
    benefit-ledger audit --year 2025
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from decimal import Decimal
from typing import Any, AsyncContextManager, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.config import configure_logging
from benefit_ledger.database import create_schema, get_session
from benefit_ledger.services.alerts import AlertEngine
from benefit_ledger.services.balance_initializer import BalanceInitializer
from benefit_ledger.services.errors import LedgerError
from benefit_ledger.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class BenefitLedgerCli:
    """Benefit ledger command line interface."""

    def __init__(
        self,
        session_scope: SessionScope = get_session,
        schema_creator: Callable[[], Any] = create_schema,
    ) -> None:
        self.session_scope = session_scope
        self.schema_creator = schema_creator
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="benefit-ledger",
            description="Benefit balance ledger operational tools",
        )
        parser.add_argument(
            "--log-level",
            default=None,
            help="Logging level (default: LOG_LEVEL or INFO)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # initialize command
        initialize = subparsers.add_parser(
            "initialize",
            help="Create missing balances for a year at their allocation",
        )
        initialize.add_argument("--year", type=int, required=True, help="Budget year")
        initialize.add_argument(
            "--employee-id",
            type=parse_uuid,
            action="append",
            dest="employee_ids",
            help="Restrict to this employee (repeatable)",
        )

        # recalculate command
        recalculate = subparsers.add_parser(
            "recalculate",
            help="Recalculate balances from approved claims",
        )
        recalculate.add_argument("--year", type=int, required=True, help="Budget year")
        recalculate.add_argument(
            "--employee-id",
            type=parse_uuid,
            action="append",
            dest="employee_ids",
            help="Restrict to this employee (repeatable)",
        )
        recalculate.add_argument(
            "--benefit-type-id",
            type=parse_uuid,
            action="append",
            dest="benefit_type_ids",
            help="Restrict to this benefit type (repeatable)",
        )

        # alerts command
        alerts = subparsers.add_parser(
            "alerts",
            help="List low and overdrawn balances",
        )
        alerts.add_argument("--year", type=int, required=True, help="Budget year")
        alerts.add_argument(
            "--threshold",
            type=float,
            default=20.0,
            help="Remaining-percentage threshold (default: 20)",
        )
        alerts.add_argument(
            "--format",
            choices=["text", "json"],
            default="text",
            help="Output format (default: text)",
        )

        # audit command
        audit = subparsers.add_parser(
            "audit",
            help="Check stored balances against their transaction history",
        )
        audit.add_argument("--year", type=int, required=True, help="Budget year")
        audit.add_argument(
            "--employee-id",
            type=parse_uuid,
            action="append",
            dest="employee_ids",
            help="Restrict to this employee (repeatable)",
        )

        # init-db command
        subparsers.add_parser("init-db", help="Create missing ledger tables")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level)

        # Dispatch to command handler
        handlers: dict[str, Callable[..., Any]] = {
            "initialize": self._cmd_initialize,
            "recalculate": self._cmd_recalculate,
            "alerts": self._cmd_alerts,
            "audit": self._cmd_audit,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(handler(parsed))
        except LedgerError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    async def _cmd_initialize(self, args: argparse.Namespace) -> int:
        """Initialize balances."""
        async with self.session_scope() as session:
            result = await BalanceInitializer(session).initialize(args.year, args.employee_ids)

        print(f"Initialized {result.initialized_count} balances for {result.year}")
        return 0

    async def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        """Recalculate balances from claims."""
        async with self.session_scope() as session:
            result = await ReconciliationEngine(session).recalculate(
                args.year,
                employee_ids=args.employee_ids,
                benefit_type_ids=args.benefit_type_ids,
            )

        print(f"Recalculation for {result.year}")
        print("=" * 40)
        print(f"  Employees:     {result.recalculated_employees}")
        print(f"  Balances:      {result.recalculated_balances}")
        print(f"  Discrepancies: {result.discrepancies_found}")
        for d in result.discrepancies:
            print(
                f"    - {d.employee_id} / {d.benefit_type_id}: "
                f"{d.old_balance:,.2f} -> {d.calculated_balance:,.2f} ({d.difference:+,.2f})"
            )
        return 0

    async def _cmd_alerts(self, args: argparse.Namespace) -> int:
        """Print low-balance alerts."""
        async with self.session_scope() as session:
            report = await AlertEngine(session).get_low_balance_alerts(args.threshold, args.year)

        if args.format == "json":
            payload = asdict(report)
            payload["total_alerts"] = report.total_alerts
            print(json.dumps(payload, default=_json_default, indent=2))
            return 0

        print(f"Low balance alerts for {report.year} (threshold {report.threshold_percentage:g}%)")
        print("=" * 40)
        for alert in report.alerts:
            print(
                f"  [{alert.alert_level}] {alert.employee.nik} {alert.employee.name} "
                f"{alert.benefit_type.name}: {alert.current_balance:,.2f} of "
                f"{alert.initial_balance:,.2f} ({alert.remaining_percentage}% left)"
            )
        print(f"\nTotal: {report.total_alerts}")
        return 0

    async def _cmd_audit(self, args: argparse.Namespace) -> int:
        """Audit stored balances against the ledger."""
        async with self.session_scope() as session:
            drifts = await ReconciliationEngine(session).audit(args.year, args.employee_ids)

        if not drifts:
            print(f"Ledger consistent for {args.year}")
            return 0

        print(f"Ledger drift for {args.year}: {len(drifts)} balances")
        for drift in drifts:
            print(
                f"  - balance {drift.balance_id}: stored {drift.stored_balance:,.2f}, "
                f"ledger {drift.ledger_balance:,.2f} ({drift.difference:+,.2f})"
            )
        print("\nRun recalculate to correct: benefit-ledger recalculate --year", args.year)
        return 1

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""
        await self.schema_creator()
        print("Schema created")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = BenefitLedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
