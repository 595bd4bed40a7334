"""Tests for the event outbox and its dispatcher."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from bookkeeping_engine.config import OutboxConfig
from bookkeeping_engine.errors import NotFoundError, ValidationError
from bookkeeping_engine.metrics import MetricsRegistry
from bookkeeping_engine.models import LedgerEntry, OutboxEvent, OutboxStatus, utcnow
from bookkeeping_engine.outbox.dispatcher import (
    OutboxDispatcher,
    compute_backoff,
    next_run_after_failure,
    posting_key,
)
from bookkeeping_engine.outbox.service import OutboxService
from bookkeeping_engine.posting.rule_engine import PostingRuleService
from bookkeeping_engine.services.ledger_service import LedgerService, LineInput


class Clock:
    """Controllable clock for the dispatcher."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow() + timedelta(seconds=1)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def _reload(session_factory, event_id) -> OutboxEvent:
    async with session_factory() as fresh:
        return await fresh.get(OutboxEvent, event_id)


def _dispatcher(session_factory, clock=None, worker_id="worker-1", **config):
    return OutboxDispatcher(
        session_factory,
        OutboxConfig(**config),
        worker_id=worker_id,
        clock=clock or Clock(),
        metrics=MetricsRegistry(),
    )


async def _invoice_paid(session, company, amount="1200.00", **kwargs):
    return await OutboxService(session).enqueue_invoice_paid(
        company.id,
        uuid4(),
        kwargs.pop("payment_id", uuid4()),
        kwargs.pop("method", "qr"),
        amount_total=Decimal(amount),
        vat_rate=Decimal("0.077"),
        paid_at=datetime(2025, 3, 14, 9, 30),
        **kwargs,
    )


class TestBackoff:
    """Retry scheduling."""

    @pytest.mark.parametrize("retry_count, seconds", [(0, 30), (1, 60), (3, 240), (10, 3600)])
    def test_exponential_and_capped(self, retry_count, seconds):
        assert compute_backoff(retry_count, OutboxConfig()) == timedelta(seconds=seconds)

    def test_next_run_never_moves_backwards(self):
        now = datetime(2025, 1, 1, 12, 0)
        later = now + timedelta(minutes=10)

        assert next_run_after_failure(later, now, 0, OutboxConfig()) == later + timedelta(seconds=30)
        assert next_run_after_failure(None, now, 1, OutboxConfig()) == now + timedelta(seconds=60)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"batch_size": 0},
            {"max_retry_count": 0},
            {"backoff_base_seconds": 60, "backoff_cap_seconds": 30},
        ],
    )
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ValueError):
            OutboxConfig(**kwargs)


class TestEnqueue:
    """Recording events in the caller's transaction."""

    async def test_enqueue_creates_pending_event(self, session, company):
        result = await OutboxService(session).enqueue(
            company.id, "invoice.created", "invoice", "INV-1", {"amount_total": Decimal("10.50")}
        )
        event = await OutboxService(session).get_event(result.event_id)

        assert result.is_new is True
        assert event.status == OutboxStatus.PENDING.value
        assert event.retry_count == 0
        assert event.processed_at is None
        assert event.payload == {"amount_total": "10.50"}

    async def test_same_idempotency_key_is_deduplicated(self, session, company):
        service = OutboxService(session)
        first = await service.enqueue(
            company.id, "invoice.created", "invoice", "INV-1", {}, idempotency_key="inv-1"
        )
        second = await service.enqueue(
            company.id, "invoice.created", "invoice", "INV-1", {}, idempotency_key="inv-1"
        )

        assert second.event_id == first.event_id
        assert second.is_new is False
        assert (await service.stats(company.id)).pending == 1

    async def test_unknown_event_type_rejected(self, session, company):
        with pytest.raises(ValidationError, match="Unknown event type"):
            await OutboxService(session).enqueue(company.id, "invoice.lost", "invoice", "1", {})

    async def test_domain_event_records_actor(self, session, company, owner):
        result = await OutboxService(session).enqueue_domain_event(
            owner, "session.invoiced", "session", "S-1", {"amount_total": 90}
        )
        event = await OutboxService(session).get_event(result.event_id)
        assert event.user_id == owner.user_id
        assert event.company_id == company.id

    async def test_invoice_paid_uses_payment_as_source(self, session, company):
        payment_id = uuid4()
        result = await _invoice_paid(session, company, payment_id=payment_id, method="card")
        event = await OutboxService(session).get_event(result.event_id)

        assert event.event_type == "invoice.paid.card"
        assert event.source_type == "invoice_payment"
        assert event.source_id == str(payment_id)
        assert event.payload["entry_date"] == "2025-03-14"
        assert posting_key(event) == f"invoice_payment:{payment_id}:invoice.paid.card"

    async def test_get_unknown_event(self, session):
        with pytest.raises(NotFoundError):
            await OutboxService(session).get_event(uuid4())


class TestDispatcher:
    """Claiming and posting events."""

    async def test_posts_invoice_payment(self, session, session_factory, company, posting_rules):
        queued = await _invoice_paid(session, company)
        await session.commit()

        dispatcher = _dispatcher(session_factory)
        report = await dispatcher.run_once()

        assert report.claimed == 1
        assert report.done == 1
        event = await _reload(session_factory, queued.event_id)
        assert event.status == OutboxStatus.DONE.value
        assert event.processed_at is not None
        assert event.claimed_by == "worker-1"

        async with session_factory() as fresh:
            entry = await LedgerService(fresh).get_entry(company.id, event.ledger_entry_id)
        amounts = {(line.account_code, line.debit, line.credit) for line in entry.lines}
        assert amounts == {
            ("1020", Decimal("1200.00"), Decimal("0.00")),
            ("3000", Decimal("0.00"), Decimal("1114.21")),
            ("2200", Decimal("0.00"), Decimal("85.79")),
        }
        assert entry.auto_generated is True
        assert entry.idempotency_key == posting_key(event)
        assert entry.entry_date.isoformat() == "2025-03-14"
        assert dispatcher.metrics.counter_value("ledger_entries_posted_total") == 1
        assert dispatcher.metrics.counter_value("outbox_events_processed_total", result="done") == 1

    async def test_second_event_for_same_source_replays(
        self, session, session_factory, company, posting_rules
    ):
        payment_id = uuid4()
        first = await _invoice_paid(session, company, payment_id=payment_id)
        second = await OutboxService(session).enqueue(
            company.id,
            "invoice.paid.qr",
            "invoice_payment",
            payment_id,
            {"amount_total": "1200.00", "vat_rate": "0.077"},
        )
        await session.commit()

        dispatcher = _dispatcher(session_factory)
        report = await dispatcher.run_once()

        assert report.done == 2
        a = await _reload(session_factory, first.event_id)
        b = await _reload(session_factory, second.event_id)
        assert a.ledger_entry_id == b.ledger_entry_id
        assert dispatcher.metrics.counter_value("ledger_entries_replayed_total") == 1

    async def test_missing_rule_retries_with_backoff(self, session, session_factory, company, chart):
        queued = await _invoice_paid(session, company)
        await session.commit()

        clock = Clock()
        dispatcher = _dispatcher(session_factory, clock=clock)
        report = await dispatcher.run_once()

        assert report.retried == 1
        event = await _reload(session_factory, queued.event_id)
        assert event.status == OutboxStatus.PENDING.value
        assert event.retry_count == 1
        assert event.claimed_by is None
        assert "NoPostingRuleError" in event.error_message
        assert event.next_run_at >= clock.now + timedelta(seconds=30)

        # Not due yet
        assert (await dispatcher.run_once()).claimed == 0

    async def test_marked_failed_after_max_retries(self, session, session_factory, company, chart):
        queued = await _invoice_paid(session, company)
        await session.commit()

        clock = Clock()
        dispatcher = _dispatcher(session_factory, clock=clock, max_retry_count=2)
        assert (await dispatcher.run_once()).retried == 1
        clock.advance(hours=1)
        assert (await dispatcher.run_once()).failed == 1

        event = await _reload(session_factory, queued.event_id)
        assert event.status == OutboxStatus.FAILED.value
        assert event.failed_at == clock.now
        assert event.processed_at is None

        clock.advance(days=1)
        assert (await dispatcher.run_once()).claimed == 0

        async with session_factory() as fresh:
            stats = await OutboxService(fresh).stats(company.id)
            failed = await OutboxService(fresh).list_failed(company.id)
        assert stats.failed == 1
        assert stats.unprocessed == 1
        assert [e.id for e in failed] == [queued.event_id]

    async def test_requeue_failed_event(self, session, session_factory, company, chart):
        queued = await _invoice_paid(session, company)
        await session.commit()
        await _dispatcher(session_factory, max_retry_count=1).run_once()

        async with session_factory() as fresh:
            event = await OutboxService(fresh).requeue_failed(queued.event_id)
            await fresh.commit()

        assert event.status == OutboxStatus.PENDING.value
        assert event.retry_count == 0
        assert event.failed_at is None

    async def test_requeue_rejects_pending_event(self, session, company):
        queued = await _invoice_paid(session, company)
        with pytest.raises(ValidationError, match="not failed"):
            await OutboxService(session).requeue_failed(queued.event_id)

    async def test_stale_claim_is_reclaimed(self, session, session_factory, company, posting_rules):
        queued = await _invoice_paid(session, company)
        await session.commit()

        clock = Clock()
        crashed = _dispatcher(session_factory, clock=clock, worker_id="crashed")
        assert await crashed.claim_batch() == [queued.event_id]

        rescuer = _dispatcher(session_factory, clock=clock, worker_id="rescuer")
        assert (await rescuer.run_once()).claimed == 0

        clock.advance(minutes=10)
        report = await rescuer.run_once()
        assert report.done == 1

        # The original worker's claim is gone
        assert await crashed.process_event(queued.event_id) == "lost"
        event = await _reload(session_factory, queued.event_id)
        assert event.claimed_by == "rescuer"

        async with session_factory() as fresh:
            entries = (
                await fresh.execute(select(LedgerEntry.id).where(LedgerEntry.company_id == company.id))
            ).all()
        assert len(entries) == 1

    async def test_retry_after_crash_skips_changed_rules(
        self, session, session_factory, company, posting_rules
    ):
        """The entry was posted before the crash; the rules are gone by the retry."""
        queued = await _invoice_paid(session, company)
        await session.commit()

        clock = Clock()
        crashed = _dispatcher(session_factory, clock=clock, worker_id="crashed")
        assert await crashed.claim_batch() == [queued.event_id]

        async with session_factory() as fresh:
            event = await fresh.get(OutboxEvent, queued.event_id)
            posted = await LedgerService(fresh).create_entry(
                company.id,
                [
                    LineInput.debit_line("1020", Decimal("1200.00")),
                    LineInput.credit_line("3000", Decimal("1200.00")),
                ],
                idempotency_key=posting_key(event),
            )
            rules = PostingRuleService(fresh)
            for rule in posting_rules:
                await rules.set_active(company.id, rule.id, False)
            await fresh.commit()

        clock.advance(minutes=10)
        rescuer = _dispatcher(session_factory, clock=clock, worker_id="rescuer")
        report = await rescuer.run_once()

        assert report.done == 1
        event = await _reload(session_factory, queued.event_id)
        assert event.status == OutboxStatus.DONE.value
        assert event.ledger_entry_id == posted.entry_id
        assert rescuer.metrics.counter_value("ledger_entries_replayed_total") == 1

    async def test_parallel_workers_never_share_an_event(
        self, session, session_factory, company, posting_rules
    ):
        for _ in range(5):
            await _invoice_paid(session, company, amount="10.00")
        await session.commit()

        clock = Clock()
        first = _dispatcher(session_factory, clock=clock, worker_id="worker-a")
        second = _dispatcher(session_factory, clock=clock, worker_id="worker-b")
        a, b = await asyncio.gather(first.run_once(), second.run_once())

        assert set(a.event_ids).isdisjoint(b.event_ids)
        assert a.claimed + b.claimed == 5
        assert a.done + b.done == 5

        async with session_factory() as fresh:
            entries = (
                await fresh.execute(select(LedgerEntry.id).where(LedgerEntry.company_id == company.id))
            ).all()
        assert len(entries) == 5

    async def test_batch_size_limits_claim(self, session, session_factory, company, posting_rules):
        for _ in range(3):
            await _invoice_paid(session, company, amount="10.00")
        await session.commit()

        report = await _dispatcher(session_factory, batch_size=2).run_once()
        assert report.claimed == 2

    def test_hooks_match_suffixed_event_types(self, session_factory):
        dispatcher = _dispatcher(session_factory)

        async def hook(session, event, result):
            return None

        dispatcher.register_hook("invoice.paid", hook)

        assert hook in dispatcher.hooks_for("invoice.paid.qr")
        assert hook not in dispatcher.hooks_for("invoice.paidx")
        assert len(dispatcher.hooks_for("payrun.approved")) == 1
