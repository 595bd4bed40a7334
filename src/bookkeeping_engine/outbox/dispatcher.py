"""Outbox dispatcher - turns pending domain events into ledger postings.

State machine per event:
    pending -> processing -> done
                          -> pending (retry_count + 1, next_run_at pushed back)
                          -> failed  (retry_count reached max_retry_count)

Work is claimed with a conditional UPDATE (status = 'pending' AND
next_run_at <= now) so one event is processed by at most one worker at a
time; on PostgreSQL the candidate SELECT also uses FOR UPDATE SKIP LOCKED
so parallel workers do not contend for the same rows. Each event is posted
in its own transaction with a deterministic ledger idempotency key, so a
crash between posting and marking done replays as a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookkeeping_engine.config import OutboxConfig
from bookkeeping_engine.database import is_postgres
from bookkeeping_engine.event_types import EventType
from bookkeeping_engine.metrics import REGISTRY, MetricsRegistry
from bookkeeping_engine.models import OutboxEvent, OutboxStatus, utcnow
from bookkeeping_engine.posting.rule_engine import PostingRuleEngine
from bookkeeping_engine.services.ledger_service import LedgerService, PostResult
from bookkeeping_engine.services.payrun_service import record_payrun_posting

logger = logging.getLogger(__name__)

PostingHook = Callable[[AsyncSession, OutboxEvent, PostResult], Awaitable[None]]

MAX_ERROR_LENGTH = 2000


def compute_backoff(retry_count: int, config: OutboxConfig) -> timedelta:
    """Exponential backoff: base * 2**retry_count, capped."""
    seconds = min(config.backoff_base_seconds * 2**retry_count, config.backoff_cap_seconds)
    return timedelta(seconds=seconds)


def next_run_after_failure(
    previous: datetime | None, now: datetime, retry_count: int, config: OutboxConfig
) -> datetime:
    """Schedule the next attempt strictly after both now and the previous schedule."""
    start = now if previous is None else max(now, previous)
    return start + compute_backoff(retry_count, config)


def posting_key(event: OutboxEvent) -> str:
    """Ledger idempotency key derived from the event's source."""
    return f"{event.source_type}:{event.source_id}:{event.event_type}"


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class DispatchReport:
    """Outcome of one dispatcher pass."""

    claimed: int = 0
    done: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0
    event_ids: list[UUID] = field(default_factory=list)


class OutboxDispatcher:
    """Claims due outbox events and posts them to the ledger.

    Usage:
        dispatcher = OutboxDispatcher(session_factory, settings.outbox)
        report = await dispatcher.run_once()

        stop = asyncio.Event()
        await dispatcher.run_forever(stop)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: OutboxConfig | None = None,
        worker_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        metrics: MetricsRegistry = REGISTRY,
    ):
        self.session_factory = session_factory
        self.config = config or OutboxConfig()
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock
        self.metrics = metrics
        self._hooks: list[tuple[str, PostingHook]] = []
        self.register_hook(EventType.PAYRUN_APPROVED.value, record_payrun_posting)
        self.register_hook(EventType.PAYRUN_PAID.value, record_payrun_posting)

    def register_hook(self, event_type: str, hook: PostingHook) -> None:
        """Run hook after a successful posting of event_type or any of its suffixed types."""
        self._hooks.append((event_type, hook))

    def hooks_for(self, event_type: str) -> list[PostingHook]:
        return [
            hook
            for prefix, hook in self._hooks
            if event_type == prefix or event_type.startswith(prefix + ".")
        ]

    async def claim_batch(self) -> list[UUID]:
        """Atomically move up to batch_size due events to processing."""
        now = self.clock()
        stale_before = now - timedelta(seconds=self.config.claim_timeout_seconds)
        claimable = or_(
            and_(
                OutboxEvent.status == OutboxStatus.PENDING.value,
                OutboxEvent.processed_at.is_(None),
                OutboxEvent.next_run_at <= now,
            ),
            # Abandoned by a crashed worker
            and_(
                OutboxEvent.status == OutboxStatus.PROCESSING.value,
                OutboxEvent.claimed_at < stale_before,
            ),
        )

        async with self.session_factory() as session:
            query = (
                select(OutboxEvent.id)
                .where(claimable)
                .order_by(OutboxEvent.next_run_at, OutboxEvent.created_at)
                .limit(self.config.batch_size)
            )
            if is_postgres(session):
                query = query.with_for_update(skip_locked=True)
            candidates = (await session.execute(query)).scalars().all()

            claimed: list[UUID] = []
            for event_id in candidates:
                result = await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id == event_id, claimable)
                    .values(
                        status=OutboxStatus.PROCESSING.value,
                        claimed_by=self.worker_id,
                        claimed_at=now,
                        last_attempt_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(event_id)
            await session.commit()

        if claimed:
            logger.info("Worker %s claimed %d outbox events", self.worker_id, len(claimed))
        return claimed

    async def process_event(self, event_id: UUID) -> str:
        """Post one claimed event. Returns done, retried, failed or lost."""
        async with self.session_factory() as session:
            try:
                event = await session.get(OutboxEvent, event_id)
                if (
                    event is None
                    or event.status != OutboxStatus.PROCESSING.value
                    or event.claimed_by != self.worker_id
                ):
                    return "lost"

                result = await self._post(session, event)
                for hook in self.hooks_for(event.event_type):
                    await hook(session, event, result)

                marked = await session.execute(
                    update(OutboxEvent)
                    .where(
                        OutboxEvent.id == event_id,
                        OutboxEvent.status == OutboxStatus.PROCESSING.value,
                        OutboxEvent.claimed_by == self.worker_id,
                    )
                    .values(
                        status=OutboxStatus.DONE.value,
                        processed_at=self.clock(),
                        ledger_entry_id=result.entry_id,
                        error_message=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if marked.rowcount == 0:
                    # Reclaimed by another worker; its posting replays onto the same entry
                    await session.rollback()
                    return "lost"
                await session.commit()
            except Exception as exc:
                await session.rollback()
                return await self._record_failure(event_id, exc)

        self.metrics.inc(
            "ledger_entries_posted_total" if result.is_new else "ledger_entries_replayed_total",
            help_text="Ledger entries created from outbox events",
        )
        logger.info(
            "Outbox event %s posted as entry %s%s",
            event_id,
            result.entry_id,
            "" if result.is_new else " (replay)",
        )
        return "done"

    async def _post(self, session: AsyncSession, event: OutboxEvent) -> PostResult:
        """Post the event, or return the entry an earlier attempt already posted.

        Rules are only resolved when no entry exists for the posting key, so
        a retry after a crash is a no-op even if the tenant's rules changed.
        """
        ledger = LedgerService(session)
        key = posting_key(event)
        existing = await ledger.find_by_key(event.company_id, key)
        if existing is not None:
            return PostResult(entry_id=existing, is_new=False)

        lines = await PostingRuleEngine(session).resolve(
            event.company_id, event.event_type, event.payload or {}
        )
        return await ledger.create_entry(
            event.company_id,
            [line.to_line_input() for line in lines],
            idempotency_key=key,
            entry_date=self._entry_date(event),
            description=f"{event.event_type} {event.source_type}:{event.source_id}",
            source_type=event.source_type,
            source_id=event.source_id,
            auto_generated=True,
            created_by=event.user_id,
        )

    async def _record_failure(self, event_id: UUID, exc: Exception) -> str:
        """Reschedule the event with backoff, or mark it failed after max retries."""
        message = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_LENGTH]
        now = self.clock()
        async with self.session_factory() as session:
            event = await session.get(OutboxEvent, event_id)
            if event is None or event.claimed_by != self.worker_id:
                return "lost"

            retry_count = event.retry_count + 1
            next_run_at = next_run_after_failure(event.next_run_at, now, event.retry_count, self.config)
            values: dict = {
                "retry_count": retry_count,
                "next_run_at": next_run_at,
                "error_message": message,
                "claimed_by": None,
                "claimed_at": None,
            }
            if retry_count >= self.config.max_retry_count:
                values.update(status=OutboxStatus.FAILED.value, failed_at=now)
                outcome = "failed"
            else:
                values["status"] = OutboxStatus.PENDING.value
                outcome = "retried"

            result = await session.execute(
                update(OutboxEvent)
                .where(
                    OutboxEvent.id == event_id,
                    OutboxEvent.status == OutboxStatus.PROCESSING.value,
                    OutboxEvent.claimed_by == self.worker_id,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return "lost"
            await session.commit()

        if outcome == "failed":
            logger.error(
                "Outbox event %s failed permanently after %d attempts: %s",
                event_id,
                retry_count,
                message,
            )
        else:
            logger.warning(
                "Outbox event %s attempt %d failed, retry at %s: %s",
                event_id,
                retry_count,
                next_run_at.isoformat(),
                message,
            )
        return outcome

    @staticmethod
    def _entry_date(event: OutboxEvent) -> date:
        raw = (event.payload or {}).get("entry_date")
        if raw:
            return date.fromisoformat(str(raw)[:10])
        return event.created_at.date()

    async def run_once(self) -> DispatchReport:
        """Claim one batch and process it."""
        report = DispatchReport()
        for event_id in await self.claim_batch():
            report.claimed += 1
            report.event_ids.append(event_id)
            outcome = await self.process_event(event_id)
            setattr(report, outcome, getattr(report, outcome) + 1)
            self.metrics.inc(
                "outbox_events_processed_total",
                help_text="Outbox event outcomes",
                result=outcome,
            )
        return report

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set; sleeps only when a pass found nothing to do."""
        logger.info("Outbox dispatcher %s started", self.worker_id)
        while not stop_event.is_set():
            report = await self.run_once()
            if report.claimed:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox dispatcher %s stopped", self.worker_id)
