"""Tests for payrun lifecycle, audited edits and ledger linkage."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from bookkeeping_engine.calculators.types import LppStatus, PayPeriod
from bookkeeping_engine.config import OutboxConfig
from bookkeeping_engine.errors import (
    ApprovalGateError,
    InvalidTransitionError,
    MissingRateTableError,
    NotFoundError,
    ValidationError,
)
from bookkeeping_engine.metrics import MetricsRegistry
from bookkeeping_engine.models import (
    Company,
    EmployeeReplacement,
    LedgerEntry,
    OutboxEvent,
    PayrollRates,
)
from bookkeeping_engine.outbox.dispatcher import OutboxDispatcher
from bookkeeping_engine.services.ledger_service import LedgerService
from bookkeeping_engine.services.payroll_service import PayrollService
from bookkeeping_engine.services.payrun_service import PayrunService, event_source_id

TEST_YEAR = 2025
JANUARY = PayPeriod(TEST_YEAR, 1)


async def _events(session, company_id, event_type=None):
    query = select(OutboxEvent).where(OutboxEvent.company_id == company_id)
    if event_type is not None:
        query = query.where(OutboxEvent.event_type == event_type)
    result = await session.execute(query.order_by(OutboxEvent.created_at))
    return list(result.scalars().all())


@pytest.fixture
async def draft(session, company, employee):
    return await PayrollService(session).compute_payrun(company.id, employee.id, JANUARY, "monthly")


@pytest.fixture
async def payrun(session, hr, draft):
    return await PayrunService(session).create_payrun(hr, draft)


@pytest.fixture
async def approved(session, payrun, hr, owner):
    service = PayrunService(session)
    await service.submit_payrun(payrun.id, hr)
    return await service.approve_payrun(payrun.id, owner)


class TestPayrollService:
    """Parameter loading and draft computation."""

    async def test_compute_from_stored_tables(self, draft):
        assert draft.gross == Decimal("6000.00")
        assert draft.net == Decimal("5325.91")
        assert draft.employer_cost == Decimal("6758.10")
        assert draft.lpp_status == LppStatus.OK

    async def test_company_rates_override_global(self, session, company, employee):
        session.add(
            PayrollRates(
                company_id=company.id,
                year=TEST_YEAR,
                avs_ai_apg_employee=Decimal("0.06"),
                avs_ai_apg_employer=Decimal("0.06"),
                ac_employee=Decimal("0.011"),
                ac_employer=Decimal("0.011"),
                ac_ceiling_year=Decimal("148200"),
                af_employer=Decimal("0.02"),
            )
        )
        await session.flush()

        params = await PayrollService(session).load_parameters(company.id, TEST_YEAR, employee)
        assert params.rates.avs_ai_apg_employee == Decimal("0.06")
        assert params.lpp_plan is not None

    async def test_missing_rates_for_year(self, session, company, employee):
        with pytest.raises(MissingRateTableError) as exc_info:
            await PayrollService(session).load_parameters(company.id, TEST_YEAR + 1, employee)
        assert exc_info.value.table == "payroll_rates"

    async def test_unknown_employee(self, session, company, payroll_tables):
        with pytest.raises(NotFoundError):
            await PayrollService(session).compute_payrun(company.id, uuid4(), JANUARY, "monthly")

    async def test_event_mode_uses_stored_replacement(self, session, company, employee):
        session.add(
            EmployeeReplacement(
                employee_id=employee.id,
                start_date=date(TEST_YEAR, 1, 10),
                indemnity_rate=Decimal("180"),
            )
        )
        await session.flush()

        draft = await PayrollService(session).compute_payrun(
            company.id, employee.id, JANUARY, "event", hours=Decimal("3")
        )
        assert draft.base_gross == Decimal("540.00")


class TestPayrunLifecycle:
    """Status transitions and role gates."""

    async def test_create_persists_draft(self, payrun, employee):
        assert payrun.status == "draft"
        assert payrun.revision == 0
        assert payrun.employee_id == employee.id
        assert payrun.net == Decimal("5325.91")
        assert payrun.lpp_line.employer_amount == Decimal("212.10")
        assert payrun.engine_version

    async def test_duplicate_rejected(self, session, hr, draft, payrun):
        with pytest.raises(ValidationError, match="already exists"):
            await PayrunService(session).create_payrun(hr, draft)

    async def test_recreate_after_cancel(self, session, hr, draft, payrun):
        service = PayrunService(session)
        await service.cancel_payrun(payrun.id, hr, reason="wrong hours")
        again = await service.create_payrun(hr, draft)
        assert again.id != payrun.id

    async def test_approve_requires_submission(self, session, payrun, owner):
        with pytest.raises(InvalidTransitionError, match="submitted first"):
            await PayrunService(session).approve_payrun(payrun.id, owner)

    async def test_hr_cannot_approve(self, session, payrun, hr):
        service = PayrunService(session)
        await service.submit_payrun(payrun.id, hr)
        with pytest.raises(ApprovalGateError):
            await service.approve_payrun(payrun.id, hr)

    async def test_viewer_cannot_submit(self, session, payrun, viewer):
        with pytest.raises(ApprovalGateError):
            await PayrunService(session).submit_payrun(payrun.id, viewer)

    async def test_approval_raises_event(self, session, company, approved, owner):
        assert approved.status == "approved"
        assert approved.approved_by == owner.user_id

        events = await _events(session, company.id, "payrun.approved")
        assert len(events) == 1
        assert events[0].source_type == "payrun"
        assert events[0].source_id == str(approved.id)
        assert events[0].payload["net"] == "5325.91"
        assert events[0].payload["employer_contributions"] == "758.10"
        assert events[0].payload["entry_date"] == "2025-01-31"

    async def test_pay_raises_event(self, session, company, approved, owner):
        paid = await PayrunService(session).pay_payrun(approved.id, owner)

        assert paid.status == "paid"
        assert paid.paid_at is not None
        assert len(await _events(session, company.id, "payrun.paid")) == 1

    async def test_approved_payrun_cannot_be_canceled(self, session, approved, owner):
        with pytest.raises(InvalidTransitionError):
            await PayrunService(session).cancel_payrun(approved.id, owner)

    async def test_other_tenant_cannot_see_payrun(self, session, payrun, other_company):
        with pytest.raises(NotFoundError):
            await PayrunService(session).get_payrun(other_company.id, payrun.id)

    async def test_list_filters(self, session, company, payrun):
        service = PayrunService(session)
        assert len(await service.list_payruns(company.id, period_year=TEST_YEAR)) == 1
        assert await service.list_payruns(company.id, status="approved") == []


class TestModifyPayrun:
    """Audited edits and the re-approval policy."""

    async def test_draft_edit_writes_audits(self, session, payrun, hr):
        edited = await PayrunService(session).modify_payrun(
            payrun.id, {"base_gross": "6100"}, hr
        )

        assert edited.revision == 0
        assert edited.gross == Decimal("6100.00")
        assert edited.net == Decimal("5425.91")
        assert edited.employer_cost == Decimal("6858.10")
        fields = {audit.field_name: audit for audit in edited.audits}
        assert set(fields) == {"base_gross", "gross", "net", "employer_cost"}
        assert fields["base_gross"].old_value == "6000.00"
        assert fields["base_gross"].new_value == "6100.00"
        assert fields["base_gross"].status_at_change == "draft"

    async def test_unchanged_values_write_nothing(self, session, payrun, hr):
        edited = await PayrunService(session).modify_payrun(
            payrun.id, {"base_gross": "6000.00"}, hr
        )
        assert edited.audits == []

    @pytest.mark.parametrize(
        "changes, message",
        [
            ({"net": "1"}, "derived"),
            ({"status": "paid"}, "cannot be modified"),
            ({"avs_ai_apg_emp": "-1"}, "negative"),
        ],
    )
    async def test_invalid_changes(self, session, payrun, hr, changes, message):
        with pytest.raises(ValidationError, match=message):
            await PayrunService(session).modify_payrun(payrun.id, changes, hr)

    async def test_edit_after_approval_needs_reason(self, session, approved, owner):
        with pytest.raises(ApprovalGateError, match="reason"):
            await PayrunService(session).modify_payrun(approved.id, {"notes": "x"}, owner)

    async def test_hr_cannot_edit_approved(self, session, approved, hr):
        with pytest.raises(ApprovalGateError):
            await PayrunService(session).modify_payrun(
                approved.id, {"notes": "x"}, hr, reason="fix"
            )

    async def test_can_modify(self, session, approved, owner, hr):
        service = PayrunService(session)
        assert await service.can_modify_payrun(approved.id, owner) is True
        assert await service.can_modify_payrun(approved.id, hr) is False

    async def test_edit_reopens_when_reapproval_required(self, session, company, approved, owner):
        service = PayrunService(session)
        edited = await service.modify_payrun(
            approved.id, {"aap_er": "40.00"}, owner, reason="insurer correction"
        )

        assert edited.status == "submitted"
        assert edited.revision == 1
        assert edited.approved_by is None
        assert all(audit.approved_at is None for audit in edited.audits)
        assert all(audit.status_at_change == "approved" for audit in edited.audits)

        reapproved = await service.approve_payrun(edited.id, owner)
        assert all(audit.approved_by == owner.user_id for audit in reapproved.audits)

        events = await _events(session, company.id, "payrun.approved")
        assert [event.source_id for event in events] == [str(edited.id), f"{edited.id}:r1"]

    async def test_edit_without_reapproval_posts_new_revision(
        self, session, company, approved, owner
    ):
        company.edit_requires_reapproval = False
        await session.flush()

        edited = await PayrunService(session).modify_payrun(
            approved.id, {"aap_er": "40.00"}, owner, reason="insurer correction"
        )

        assert edited.status == "approved"
        assert edited.revision == 1
        assert all(audit.approved_by == owner.user_id for audit in edited.audits)
        events = await _events(session, company.id, "payrun.approved")
        assert events[-1].source_id == event_source_id(edited) == f"{edited.id}:r1"
        assert events[-1].payload["aap_er"] == "40.00"


class TestLedgerLinkage:
    """The posting hook links and supersedes payrun entries."""

    @staticmethod
    async def _dispatch(session_factory):
        dispatcher = OutboxDispatcher(
            session_factory, OutboxConfig(), worker_id="test", metrics=MetricsRegistry()
        )
        return await dispatcher.run_once()

    async def test_approval_posts_and_links_entry(
        self, session, session_factory, company, posting_rules, approved
    ):
        await session.commit()

        report = await self._dispatch(session_factory)
        assert report.done == 1

        async with session_factory() as fresh:
            payrun = await PayrunService(fresh).get_payrun(company.id, approved.id)
            entry = await LedgerService(fresh).get_entry(company.id, payrun.ledger_entry_id)
        assert entry.source_type == "payrun"
        assert sum(line.debit for line in entry.lines) == Decimal("6758.10")
        assert sum(line.credit for line in entry.lines) == Decimal("6758.10")
        assert any(a.field_name == "ledger_entry_id" for a in payrun.audits)

    async def test_payment_links_payment_entry(
        self, session, session_factory, company, posting_rules, approved, owner
    ):
        await PayrunService(session).pay_payrun(approved.id, owner)
        await session.commit()

        report = await self._dispatch(session_factory)
        assert report.done == 2

        async with session_factory() as fresh:
            payrun = await PayrunService(fresh).get_payrun(company.id, approved.id)
            balance = await LedgerService(fresh).account_balance(company.id, "2279")
        assert payrun.ledger_entry_id is not None
        assert payrun.payment_entry_id is not None
        assert balance.balance == Decimal("0")

    async def test_new_revision_reverses_superseded_entry(
        self, session, session_factory, company, posting_rules, approved, owner
    ):
        await session.commit()
        await self._dispatch(session_factory)

        async with session_factory() as editing:
            company_row = await editing.get(Company, company.id)
            company_row.edit_requires_reapproval = False
            await PayrunService(editing).modify_payrun(
                approved.id, {"aap_er": "40.00"}, owner, reason="insurer correction"
            )
            await editing.commit()

        report = await self._dispatch(session_factory)
        assert report.done == 1

        async with session_factory() as fresh:
            payrun = await PayrunService(fresh).get_payrun(company.id, approved.id)
            entries = (
                await fresh.execute(
                    select(LedgerEntry).where(LedgerEntry.company_id == company.id)
                )
            ).scalars().all()
            social = await LedgerService(fresh).account_balance(company.id, "5700")

        assert len(entries) == 3
        reversals = [entry for entry in entries if entry.reversed_of is not None]
        assert len(reversals) == 1
        assert reversals[0].reversed_of != payrun.ledger_entry_id
        # 758.10 - 2.00 from the corrected AAP premium
        assert social.balance == Decimal("756.10")
