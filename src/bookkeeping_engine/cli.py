"""Bookkeeping engine command line interface.

Operational tools for:
- Schema creation
- Seeding a company's chart of accounts and default posting rules
- Running the outbox dispatcher
- Outbox backlog inspection and manual requeue
- Trial balance

Usage:
    bookkeeping-engine init-db
    bookkeeping-engine install-templates --company-id X
    bookkeeping-engine dispatch [--once]
    bookkeeping-engine outbox-status [--company-id X]
    bookkeeping-engine requeue --event-id Y
    bookkeeping-engine trial-balance --company-id X [--as-of 2026-12-31]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from uuid import UUID

from bookkeeping_engine.config import get_settings
from bookkeeping_engine.database import create_schema, dispose_db, get_session, init_db
from bookkeeping_engine.errors import BookkeepingError
from bookkeeping_engine.outbox.dispatcher import OutboxDispatcher
from bookkeeping_engine.outbox.service import OutboxService
from bookkeeping_engine.posting.rule_engine import PostingRuleService
from bookkeeping_engine.services.chart_of_accounts import ChartOfAccountsService
from bookkeeping_engine.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class BookkeepingCli:
    """Bookkeeping engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="bookkeeping-engine",
            description="Bookkeeping engine operational tools",
        )
        parser.add_argument("--log-level", help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables (development only)")

        install = subparsers.add_parser(
            "install-templates",
            help="Seed the Swiss SME chart and the default posting rules",
        )
        install.add_argument("--company-id", type=parse_uuid, required=True)

        dispatch = subparsers.add_parser("dispatch", help="Run the outbox dispatcher")
        dispatch.add_argument(
            "--once",
            action="store_true",
            help="Process a single batch and exit",
        )

        status = subparsers.add_parser("outbox-status", help="Show the outbox backlog")
        status.add_argument("--company-id", type=parse_uuid, help="Restrict to one company")
        status.add_argument(
            "--failed",
            action="store_true",
            help="Also list events that exhausted their retries",
        )

        requeue = subparsers.add_parser("requeue", help="Send a failed event back to pending")
        requeue.add_argument("--event-id", type=parse_uuid, required=True)

        trial = subparsers.add_parser("trial-balance", help="Print per-account totals")
        trial.add_argument("--company-id", type=parse_uuid, required=True)
        trial.add_argument("--as-of", type=date.fromisoformat, help="Cut-off date (YYYY-MM-DD)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level)

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "install-templates": self._cmd_install_templates,
            "dispatch": self._cmd_dispatch,
            "outbox-status": self._cmd_outbox_status,
            "requeue": self._cmd_requeue,
            "trial-balance": self._cmd_trial_balance,
        }
        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        return asyncio.run(self._run_handler(handler, parsed))

    async def _run_handler(
        self,
        handler: Callable[[argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        try:
            return await handler(args)
        except BookkeepingError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        finally:
            await dispose_db()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        engine, _ = init_db()
        await create_schema(engine)
        print("Schema created.")
        return 0

    async def _cmd_install_templates(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            accounts = await ChartOfAccountsService(session).install_template(args.company_id)
            rules = await PostingRuleService(session).install_default_rules(args.company_id)
        print(f"Company {args.company_id}:")
        print(f"  Accounts created: {len(accounts)}")
        print(f"  Posting rules created: {len(rules)}")
        return 0

    async def _cmd_dispatch(self, args: argparse.Namespace) -> int:
        _, session_factory = init_db()
        dispatcher = OutboxDispatcher(session_factory, config=get_settings().outbox)

        if args.once:
            report = await dispatcher.run_once()
            print(
                f"Claimed {report.claimed}: done={report.done} retried={report.retried} "
                f"failed={report.failed} lost={report.lost}"
            )
            return 0

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
        await dispatcher.run_forever(stop_event)
        return 0

    async def _cmd_outbox_status(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            service = OutboxService(session)
            stats = await service.stats(args.company_id)
            failed = await service.list_failed(args.company_id) if args.failed else []

        print("Outbox status")
        print("=" * 40)
        print(f"  Pending:     {stats.pending:>8}")
        print(f"  Processing:  {stats.processing:>8}")
        print(f"  Done:        {stats.done:>8}")
        print(f"  Failed:      {stats.failed:>8}")
        print(f"  Unprocessed: {stats.unprocessed:>8}")
        print(f"  Oldest pending: {stats.oldest_pending_age_seconds():.0f}s")
        for event in failed:
            print(f"  - {event.id} {event.event_type} ({event.retry_count} tries): {event.error_message}")
        return 1 if stats.failed else 0

    async def _cmd_requeue(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            event = await OutboxService(session).requeue_failed(args.event_id)
        print(f"Event {event.id} requeued ({event.event_type}).")
        return 0

    async def _cmd_trial_balance(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            report = await LedgerService(session).trial_balance(args.company_id, as_of=args.as_of)

        print(f"{'Account':<10} {'Debit':>15} {'Credit':>15} {'Balance':>15}")
        for row in report.rows:
            print(
                f"{row.account_code:<10} {row.debit_total:>15,.2f} "
                f"{row.credit_total:>15,.2f} {row.balance:>15,.2f}"
            )
        print(f"{'Total':<10} {report.total_debit:>15,.2f} {report.total_credit:>15,.2f}")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = BookkeepingCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
