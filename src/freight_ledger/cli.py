"""Freight ledger command line interface.

Operational jobs that run outside the API:
- Bulk settlement generation
- Overdue invoice sweep
- Receivables aging report
- Document counter recovery

Usage:
    python -m freight_ledger.cli settle-all --tenant-id X --start 2025-01-01 --end 2025-01-07
    python -m freight_ledger.cli refresh-invoices --tenant-id X
    python -m freight_ledger.cli aging --tenant-id X --as-of 2025-03-31 --json
    python -m freight_ledger.cli sync-counter --tenant-id X --counter-type invoice --year 2025
    python -m freight_ledger.cli init-db
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import date
from typing import Callable
from uuid import UUID

from freight_ledger.config import configure_logging, get_settings
from freight_ledger.context import ActorContext
from freight_ledger.core import LedgerCore
from freight_ledger.database import create_schema, init_db
from freight_ledger.errors import FreightLedgerError
from freight_ledger.services.sequence_service import CounterType

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class LedgerCli:
    """Freight ledger command line interface."""

    def __init__(self, core: LedgerCore | None = None) -> None:
        self.parser = self._build_parser()
        self._core = core

    @property
    def core(self) -> LedgerCore:
        if self._core is None:
            _, factory = init_db()
            self._core = LedgerCore(factory, get_settings().ledger_config())
        return self._core

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m freight_ledger.cli",
            description="Freight ledger operational tools",
        )
        parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        def tenant_args(command: argparse.ArgumentParser) -> None:
            command.add_argument(
                "--tenant-id",
                type=parse_uuid,
                required=True,
                help="Tenant to operate on",
            )
            command.add_argument(
                "--actor-id",
                default="cli",
                help="Actor recorded in the audit log (default: cli)",
            )
            command.add_argument(
                "--role",
                default="admin",
                help="Actor role (default: admin)",
            )

        # settle-all command
        settle = subparsers.add_parser(
            "settle-all",
            help="Generate settlements for every payee with unsettled work",
        )
        tenant_args(settle)
        settle.add_argument("--start", type=parse_date, required=True, help="Period start (YYYY-MM-DD)")
        settle.add_argument("--end", type=parse_date, required=True, help="Period end (YYYY-MM-DD)")
        settle.add_argument(
            "--payee-id",
            type=parse_uuid,
            action="append",
            dest="payee_ids",
            help="Limit to this payee (repeatable)",
        )

        # refresh-invoices command
        refresh = subparsers.add_parser(
            "refresh-invoices",
            help="Re-derive open invoice statuses (marks overdue)",
        )
        tenant_args(refresh)
        refresh.add_argument("--as-of", type=parse_date, help="Evaluation date (default: today)")

        # aging command
        aging = subparsers.add_parser(
            "aging",
            help="Show receivables aging buckets",
        )
        tenant_args(aging)
        aging.add_argument("--as-of", type=parse_date, help="Evaluation date (default: today)")
        aging.add_argument("--json", action="store_true", help="Output as JSON")

        # sync-counter command
        sync = subparsers.add_parser(
            "sync-counter",
            help="Raise a document counter to the highest number already issued",
        )
        tenant_args(sync)
        sync.add_argument(
            "--counter-type",
            choices=[counter_type.value for counter_type in CounterType],
            required=True,
        )
        sync.add_argument("--year", type=int, help="Counter year (default: current year)")

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create tables (development databases only)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)
        configure_logging(parsed.log_level or get_settings().log_level)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "settle-all": self._cmd_settle_all,
            "refresh-invoices": self._cmd_refresh_invoices,
            "aging": self._cmd_aging,
            "sync-counter": self._cmd_sync_counter,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        try:
            return handler(parsed)
        except FreightLedgerError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    @staticmethod
    def _actor(args: argparse.Namespace) -> ActorContext:
        return ActorContext(tenant_id=args.tenant_id, actor_id=args.actor_id, role=args.role)

    def _cmd_settle_all(self, args: argparse.Namespace) -> int:
        """Bulk settlement; Ctrl-C stops after the current payee."""
        cancel = threading.Event()
        previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
        try:
            result = self.core.settle_all(
                self._actor(args),
                args.start,
                args.end,
                payee_ids=args.payee_ids,
                cancel_event=cancel,
            )
        finally:
            signal.signal(signal.SIGINT, previous)

        for payee_id, number in result.created.items():
            print(f"  created {number} for payee {payee_id}")
        for payee_id, reason in result.failed.items():
            print(f"  FAILED payee {payee_id}: {reason}")
        print(
            f"Created: {len(result.created)}  Skipped: {len(result.skipped)}  "
            f"Failed: {len(result.failed)}"
        )
        if result.cancelled:
            print("Cancelled before all payees were processed")
        return 1 if result.failed or result.cancelled else 0

    def _cmd_refresh_invoices(self, args: argparse.Namespace) -> int:
        changed = self.core.refresh_invoices(self._actor(args), args.as_of)
        print(f"Invoice statuses changed: {changed}")
        return 0

    def _cmd_aging(self, args: argparse.Namespace) -> int:
        """Print outstanding balances by days past due."""
        as_of = args.as_of or date.today()
        summary = self.core.aging_report(self._actor(args), as_of)
        if args.json:
            print(json.dumps({"as_of": as_of.isoformat(), **summary.to_dict()}, indent=2))
            return 0

        print(f"Receivables aging as of {as_of}")
        print("-" * 40)
        for bucket, amount in summary.buckets.items():
            print(f"  {bucket.value:>8}: {amount:>12}  ({summary.counts[bucket]} invoices)")
        print("-" * 40)
        print(f"  {'total':>8}: {summary.total_outstanding:>12}")
        return 0

    def _cmd_sync_counter(self, args: argparse.Namespace) -> int:
        value = self.core.sync_counter(self._actor(args), args.counter_type, args.year)
        print(f"{args.counter_type} counter is at {value}")
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        engine, _ = init_db()
        create_schema(engine)
        print("Schema created")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = LedgerCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
