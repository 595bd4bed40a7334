"""Ledger Service - Append-mostly double-entry posting.

Provides idempotent, transactional posting of ledger entries with:
- Balanced lines (sum of debits == sum of credits, compared in integer cents)
- Idempotency via (company_id, idempotency_key) uniqueness enforced by the database
- Reversal-based corrections (lines are never updated)
- Balance and trial balance reporting
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookkeeping_engine.database import dialect_insert
from bookkeeping_engine.errors import (
    AccountNotFoundError,
    AlreadyReversedError,
    InactiveAccountError,
    InvariantViolation,
    NotFoundError,
    UnbalancedEntryError,
    ValidationError,
)
from bookkeeping_engine.models import Account, LedgerEntry, LedgerLine, utcnow
from bookkeeping_engine.money import ZERO, from_cents, round_to_cents, to_cents, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineInput:
    """A ledger line before posting. Exactly one of debit/credit is non-zero."""

    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    vat_code: str | None = None
    vat_rate: Decimal | None = None
    vat_amount: Decimal | None = None
    amount_net: Decimal | None = None
    description: str | None = None

    @classmethod
    def debit_line(cls, account_code: str, amount: Decimal, **kwargs) -> LineInput:
        return cls(account_code=account_code, debit=amount, **kwargs)

    @classmethod
    def credit_line(cls, account_code: str, amount: Decimal, **kwargs) -> LineInput:
        return cls(account_code=account_code, credit=amount, **kwargs)

    @classmethod
    def from_model(cls, line: LedgerLine) -> LineInput:
        return cls(
            account_code=line.account_code,
            debit=line.debit,
            credit=line.credit,
            vat_code=line.vat_code,
            vat_rate=line.vat_rate,
            vat_amount=line.vat_amount,
            amount_net=line.amount_net,
            description=line.description,
        )

    def swapped(self) -> LineInput:
        """Mirror image of this line (debit and credit exchanged)."""
        return LineInput(
            account_code=self.account_code,
            debit=self.credit,
            credit=self.debit,
            vat_code=self.vat_code,
            vat_rate=self.vat_rate,
            vat_amount=self.vat_amount,
            amount_net=self.amount_net,
            description=self.description,
        )


@dataclass(frozen=True)
class PostResult:
    """Result of a ledger posting operation.

    If `is_new=False` the request was an idempotent replay and entry_id is
    the entry that already existed for the key. Downstream side effects
    should only run for new entries.
    """

    entry_id: UUID
    is_new: bool

    @property
    def was_duplicate(self) -> bool:
        return not self.is_new


@dataclass(frozen=True)
class AccountBalance:
    """Debit and credit totals for one account."""

    account_code: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        """Debit minus credit."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class TrialBalance:
    """Per-account totals whose grand totals must match."""

    rows: list[AccountBalance]
    total_debit: Decimal
    total_credit: Decimal


@dataclass(frozen=True)
class _ValidatedLine:
    line: LineInput
    debit: Decimal
    credit: Decimal


async def account_has_entries(session: AsyncSession, company_id: UUID, account_code: str) -> bool:
    """Whether any ledger line references the account."""
    result = await session.execute(
        select(LedgerLine.id)
        .where(LedgerLine.company_id == company_id, LedgerLine.account_code == account_code)
        .limit(1)
    )
    return result.first() is not None


class LedgerService:
    """Double-entry ledger posting service.

    Notes:
    - Lines are never mutated; corrections are reversals.
    - idempotency_key is unique per company; the loser of a concurrent
      insert race gets the winner's entry back.
    - The service flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def validate_lines(lines: Sequence[LineInput]) -> list[_ValidatedLine]:
        """Check structure and balance of lines without touching the database."""
        if len(lines) < 2:
            raise ValidationError("An entry needs at least 2 lines")

        validated: list[_ValidatedLine] = []
        debit_cents = 0
        credit_cents = 0
        for idx, line in enumerate(lines, start=1):
            if not line.account_code:
                raise ValidationError(f"Line {idx}: account_code is required")
            debit = to_decimal(line.debit, f"line {idx} debit")
            credit = to_decimal(line.credit, f"line {idx} credit")
            if debit < 0 or credit < 0:
                raise ValidationError(f"Line {idx}: amounts must not be negative")
            if debit != 0 and credit != 0:
                raise InvariantViolation(f"Line {idx}: both debit and credit are set")
            if debit == 0 and credit == 0:
                raise ValidationError(f"Line {idx}: debit or credit must be greater than zero")
            debit_cents += to_cents(debit, f"line {idx} debit")
            credit_cents += to_cents(credit, f"line {idx} credit")
            validated.append(_ValidatedLine(line=line, debit=debit, credit=credit))

        if debit_cents != credit_cents:
            raise UnbalancedEntryError(from_cents(debit_cents), from_cents(credit_cents))
        return validated

    async def create_entry(
        self,
        company_id: UUID,
        lines: Sequence[LineInput],
        *,
        idempotency_key: str | None = None,
        entry_date: date | None = None,
        description: str | None = None,
        source_type: str | None = None,
        source_id: str | None = None,
        auto_generated: bool = False,
        created_by: UUID | None = None,
        reversed_of: UUID | None = None,
        allow_inactive_accounts: bool = False,
    ) -> PostResult:
        """Post a balanced entry with its lines.

        Args:
            company_id: Tenant identifier
            lines: At least two balanced lines
            idempotency_key: Optional key; a replay returns the existing entry
                without validating the replayed lines
            entry_date: Accounting date (defaults to today)
            description: Free text
            source_type: Type of the originating document or event
            source_id: ID of the originating document or event
            auto_generated: True for postings made by the outbox dispatcher
            created_by: Optional user who created the entry
            reversed_of: Entry this one reverses
            allow_inactive_accounts: Reversals may target disabled accounts

        Returns:
            PostResult with entry_id and whether it was newly created
        """
        if idempotency_key is not None:
            existing = await self.find_by_key(company_id, idempotency_key)
            if existing is not None:
                logger.info(
                    "Idempotent replay for key %s (company %s) -> entry %s",
                    idempotency_key,
                    company_id,
                    existing,
                )
                return PostResult(entry_id=existing, is_new=False)

        validated = self.validate_lines(lines)
        accounts = await self._load_accounts(company_id, {v.line.account_code for v in validated})
        for v in validated:
            account = accounts.get(v.line.account_code)
            if account is None:
                raise AccountNotFoundError(company_id, v.line.account_code)
            if not account.is_active and not allow_inactive_accounts:
                raise InactiveAccountError(company_id, v.line.account_code)

        entry_id = uuid4()
        now = utcnow()
        table = LedgerEntry.__table__
        stmt = dialect_insert(self.session, table).values(
            id=entry_id,
            company_id=company_id,
            entry_date=entry_date or date.today(),
            description=description,
            source_type=source_type,
            source_id=source_id,
            idempotency_key=idempotency_key,
            posted_at=now,
            reversed_of=reversed_of,
            auto_generated=auto_generated,
            created_by=created_by,
            created_at=now,
        )
        if idempotency_key is not None:
            stmt = stmt.on_conflict_do_nothing(index_elements=["company_id", "idempotency_key"])
        row = (await self.session.execute(stmt.returning(table.c.id))).first()

        if row is None:
            # Lost the race on (company_id, idempotency_key) - fetch the winner
            assert idempotency_key is not None
            existing = await self.find_by_key(company_id, idempotency_key)
            if existing is None:
                raise RuntimeError("Ledger post failed unexpectedly - no entry created or found")
            logger.info(
                "Concurrent insert lost for key %s (company %s) -> entry %s",
                idempotency_key,
                company_id,
                existing,
            )
            return PostResult(entry_id=existing, is_new=False)

        self.session.add_all(
            [
                LedgerLine(
                    entry_id=entry_id,
                    company_id=company_id,
                    line_no=line_no,
                    account_code=v.line.account_code,
                    account_name=accounts[v.line.account_code].name,
                    debit=round_to_cents(v.debit),
                    credit=round_to_cents(v.credit),
                    vat_code=v.line.vat_code,
                    vat_rate=v.line.vat_rate,
                    vat_amount=v.line.vat_amount,
                    amount_net=v.line.amount_net,
                    description=v.line.description,
                )
                for line_no, v in enumerate(validated, start=1)
            ]
        )
        await self.session.flush()

        logger.info(
            "Posted entry %s (company %s, %d lines, source %s:%s)",
            entry_id,
            company_id,
            len(validated),
            source_type,
            source_id,
        )
        return PostResult(entry_id=entry_id, is_new=True)

    async def reverse_entry(
        self,
        company_id: UUID,
        entry_id: UUID,
        *,
        reason: str | None = None,
        entry_date: date | None = None,
        created_by: UUID | None = None,
    ) -> PostResult:
        """Create the mirror entry of entry_id (debit and credit swapped).

        Raises AlreadyReversedError if a reversal already exists.
        """
        original = await self.get_entry(company_id, entry_id)

        existing = await self.session.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.company_id == company_id, LedgerEntry.reversed_of == entry_id
            )
        )
        reversal_id = existing.scalar_one_or_none()
        if reversal_id is not None:
            raise AlreadyReversedError(entry_id, reversal_id)

        lines = [LineInput.from_model(line).swapped() for line in original.lines]
        description = f"Reversal of entry {entry_id}"
        if reason:
            description += f": {reason}"

        try:
            result = await self.create_entry(
                company_id,
                lines,
                idempotency_key=f"reversal:{entry_id}",
                entry_date=entry_date,
                description=description,
                source_type=original.source_type,
                source_id=original.source_id,
                auto_generated=original.auto_generated,
                created_by=created_by,
                reversed_of=entry_id,
                allow_inactive_accounts=True,
            )
        except IntegrityError as exc:
            raise AlreadyReversedError(entry_id) from exc

        if not result.is_new:
            raise AlreadyReversedError(entry_id, result.entry_id)

        logger.info("Reversed entry %s with %s (company %s)", entry_id, result.entry_id, company_id)
        return result

    async def account_has_entries(self, company_id: UUID, account_code: str) -> bool:
        """Whether any ledger line references the account."""
        return await account_has_entries(self.session, company_id, account_code)

    async def get_entry(self, company_id: UUID, entry_id: UUID) -> LedgerEntry:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.company_id == company_id, LedgerEntry.id == entry_id)
            .options(selectinload(LedgerEntry.lines))
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError("Ledger entry", entry_id)
        return entry

    async def find_by_source(
        self, company_id: UUID, source_type: str, source_id: str
    ) -> list[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.company_id == company_id,
                LedgerEntry.source_type == source_type,
                LedgerEntry.source_id == source_id,
            )
            .options(selectinload(LedgerEntry.lines))
            .order_by(LedgerEntry.created_at)
        )
        return list(result.scalars().all())

    async def account_balance(
        self, company_id: UUID, account_code: str, as_of: date | None = None
    ) -> AccountBalance:
        """Totals of posted lines for one account."""
        query = (
            select(
                func.coalesce(func.sum(LedgerLine.debit), 0),
                func.coalesce(func.sum(LedgerLine.credit), 0),
            )
            .join(LedgerEntry, LedgerEntry.id == LedgerLine.entry_id)
            .where(
                LedgerLine.company_id == company_id,
                LedgerLine.account_code == account_code,
                LedgerEntry.posted_at.is_not(None),
            )
        )
        if as_of is not None:
            query = query.where(LedgerEntry.entry_date <= as_of)
        debit, credit = (await self.session.execute(query)).one()
        return AccountBalance(
            account_code=account_code,
            debit_total=round_to_cents(Decimal(str(debit))),
            credit_total=round_to_cents(Decimal(str(credit))),
        )

    async def trial_balance(self, company_id: UUID, as_of: date | None = None) -> TrialBalance:
        """Per-account totals over posted entries; raises if the ledger is unbalanced."""
        query = (
            select(
                LedgerLine.account_code,
                func.coalesce(func.sum(LedgerLine.debit), 0),
                func.coalesce(func.sum(LedgerLine.credit), 0),
            )
            .join(LedgerEntry, LedgerEntry.id == LedgerLine.entry_id)
            .where(LedgerLine.company_id == company_id, LedgerEntry.posted_at.is_not(None))
            .group_by(LedgerLine.account_code)
            .order_by(LedgerLine.account_code)
        )
        if as_of is not None:
            query = query.where(LedgerEntry.entry_date <= as_of)

        rows = [
            AccountBalance(
                account_code=code,
                debit_total=round_to_cents(Decimal(str(debit))),
                credit_total=round_to_cents(Decimal(str(credit))),
            )
            for code, debit, credit in (await self.session.execute(query)).all()
        ]
        total_debit = sum((r.debit_total for r in rows), ZERO)
        total_credit = sum((r.credit_total for r in rows), ZERO)
        if to_cents(total_debit) != to_cents(total_credit):
            raise UnbalancedEntryError(total_debit, total_credit, context="trial balance")
        return TrialBalance(rows=rows, total_debit=total_debit, total_credit=total_credit)

    async def find_by_key(self, company_id: UUID, idempotency_key: str) -> UUID | None:
        result = await self.session.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.company_id == company_id,
                LedgerEntry.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    async def _load_accounts(self, company_id: UUID, codes: set[str]) -> dict[str, Account]:
        result = await self.session.execute(
            select(Account).where(Account.company_id == company_id, Account.code.in_(codes))
        )
        return {a.code: a for a in result.scalars().all()}
