"""Estate payroll command line interface.

Usage:
    python -m estate_payroll.cli init-db
    python -m estate_payroll.cli seed-rates --effective-from 2025-01-01
    python -m estate_payroll.cli active-rates --as-of 2026-01-01 --nationality local
    python -m estate_payroll.cli recalculate-month 2025-12
    python -m estate_payroll.cli recalculate-all
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date
from typing import Callable

from estate_payroll.calculators.types import NationalityClass, validate_month_key
from estate_payroll.config import configure_logging
from estate_payroll.database import create_schema, get_session
from estate_payroll.errors import PayrollError
from estate_payroll.registry import RateRegistry
from estate_payroll.seeds import DEFAULT_EFFECTIVE_FROM, seed_rates
from estate_payroll.services.recalculation_service import (
    RecalculationService,
    RecalculationSummary,
)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {s!r}, expected YYYY-MM-DD")


def parse_month(s: str) -> str:
    """Parse a YYYY-MM month key."""
    try:
        return validate_month_key(s)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


class EstatePayrollCli:
    """Operational commands for the payroll engine."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m estate_payroll.cli",
            description="Estate payroll maintenance tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        seed = subparsers.add_parser("seed-rates", help="Create default EPF/SOCSO/SIP entries")
        seed.add_argument(
            "--effective-from",
            type=parse_date,
            default=DEFAULT_EFFECTIVE_FROM,
            help=f"First day the rates apply (default: {DEFAULT_EFFECTIVE_FROM})",
        )

        rates = subparsers.add_parser("active-rates", help="List rates in force on a date")
        rates.add_argument(
            "--as-of",
            type=parse_date,
            default=None,
            help="Date to query (default: today)",
        )
        rates.add_argument(
            "--nationality",
            choices=[n.value for n in NationalityClass],
            help="Only rates applying to this nationality class",
        )

        month = subparsers.add_parser(
            "recalculate-month",
            help="Recalculate every pay detail of one month",
        )
        month.add_argument("month", type=parse_month, help="Month key (YYYY-MM)")
        month.add_argument(
            "--keep-gross",
            action="store_true",
            help="Keep stored gross salaries instead of re-summing work orders",
        )

        everything = subparsers.add_parser(
            "recalculate-all",
            help="Recalculate every month with a pay aggregate",
        )
        everything.add_argument(
            "--keep-gross",
            action="store_true",
            help="Keep stored gross salaries instead of re-summing work orders",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging()

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "init-db": self._cmd_init_db,
            "seed-rates": self._cmd_seed_rates,
            "active-rates": self._cmd_active_rates,
            "recalculate-month": self._cmd_recalculate_month,
            "recalculate-all": self._cmd_recalculate_all,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except PayrollError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        asyncio.run(create_schema())
        print("Database tables created")
        return 0

    def _cmd_seed_rates(self, args: argparse.Namespace) -> int:
        async def seed() -> None:
            async with get_session() as session:
                summary = await seed_rates(session, args.effective_from)
            print(f"Seeded {summary.created} deduction entries")

        asyncio.run(seed())
        return 0

    def _cmd_active_rates(self, args: argparse.Namespace) -> int:
        as_of = args.as_of or date.today()

        async def show() -> None:
            async with get_session() as session:
                registry = RateRegistry(session)
                if args.nationality:
                    entries = await registry.applicable_on(as_of, args.nationality)
                else:
                    entries = await registry.active_on(as_of)

            print(f"Rates in force on {as_of}:")
            if not entries:
                print("  (none)")
            for entry in entries:
                if entry.calculation_kind == "wage_range":
                    rates = f"{len(entry.wage_ranges)} wage ranges"
                else:
                    rates = f"employee {entry.employee_rate}, employer {entry.employer_rate}"
                print(
                    f"  {entry.code:<10} {entry.calculation_kind:<11} {rates} "
                    f"[{entry.applies_to}] from {entry.effective_from}"
                )

        asyncio.run(show())
        return 0

    def _cmd_recalculate_month(self, args: argparse.Namespace) -> int:
        async def recalculate() -> RecalculationSummary:
            async with get_session() as session:
                return await RecalculationService(session).recalculate_month(
                    args.month, refresh_gross=not args.keep_gross
                )

        self._print_summary(asyncio.run(recalculate()))
        return 0

    def _cmd_recalculate_all(self, args: argparse.Namespace) -> int:
        async def recalculate() -> RecalculationSummary:
            async with get_session() as session:
                return await RecalculationService(session).recalculate_all(
                    refresh_gross=not args.keep_gross
                )

        self._print_summary(asyncio.run(recalculate()))
        return 0

    @staticmethod
    def _print_summary(summary: RecalculationSummary) -> None:
        print(f"Months: {', '.join(summary.months) or '(none)'}")
        print(f"Details updated: {summary.details_updated}")
        print(f"Details removed: {summary.details_removed}")


def main() -> int:
    """CLI entry point."""
    cli = EstatePayrollCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
