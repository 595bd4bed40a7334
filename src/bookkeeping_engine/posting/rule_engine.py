"""Posting rule engine.

Resolves a domain event into ledger lines using the tenant's active posting
rules. Each rule contributes at most one line; zero amounts are skipped.
The resolved lines must balance on their own: no balancing line is ever
synthesised, an unbalanced rule set fails the whole resolution.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.errors import (
    AccountNotFoundError,
    FormulaError,
    InactiveAccountError,
    InvariantViolation,
    NoPostingRuleError,
    NotFoundError,
    UnbalancedEntryError,
    ValidationError,
)
from bookkeeping_engine.event_types import EventType, allowed_fields, event_family
from bookkeeping_engine.models import Account, PostingRule
from bookkeeping_engine.money import ZERO, from_cents, round_to_cents, to_cents
from bookkeeping_engine.posting.formula import (
    evaluate,
    parse_formula,
    parse_number,
    referenced_fields,
)
from bookkeeping_engine.services.ledger_service import LineInput

logger = logging.getLogger(__name__)

SIDES = ("debit", "credit")


@dataclass(frozen=True)
class ResolvedLine:
    """One ledger line produced by one posting rule."""

    rule_id: UUID
    line_type: str
    side: str
    account_code: str
    account_name: str | None
    amount: Decimal
    vat_code: str | None = None
    vat_rate: Decimal | None = None

    def to_line_input(self, description: str | None = None) -> LineInput:
        return LineInput(
            account_code=self.account_code,
            debit=self.amount if self.side == "debit" else ZERO,
            credit=self.amount if self.side == "credit" else ZERO,
            vat_code=self.vat_code,
            vat_rate=self.vat_rate,
            description=description or self.line_type,
        )


def _f(name: str, default: str | None = None) -> dict[str, Any]:
    node: dict[str, Any] = {"field": name}
    if default is not None:
        node["default"] = default
    return node


def _op(op: str, *args: dict[str, Any]) -> dict[str, Any]:
    return {"op": op, "args": list(args)}


_NET_OF_VAT = _op("round", _op("div", _f("amount_total"), _op("add", {"const": "1"}, _f("vat_rate", "0"))))

# (event_type, line_type, side, account_code, vat_code_default, vat_rate_field, formula)
DEFAULT_RULES: list[tuple[str, str, str, str, str | None, str | None, dict[str, Any]]] = [
    (
        EventType.INVOICE_PAID.value, "bank", "debit", "1020", None, None,
        _op("round", _op("sub", _f("amount_total"), _f("fee_amount", "0"))),
    ),
    (
        EventType.INVOICE_PAID.value, "bank_fee", "debit", "6940", None, None,
        _op("round", _f("fee_amount", "0")),
    ),
    (
        EventType.INVOICE_PAID.value, "revenue", "credit", "3000", "VAT_STD", "vat_rate",
        _NET_OF_VAT,
    ),
    (
        EventType.INVOICE_PAID.value, "vat", "credit", "2200", "VAT_STD", "vat_rate",
        _op("sub", _op("round", _f("amount_total")), _NET_OF_VAT),
    ),
    (EventType.PAYRUN_APPROVED.value, "wages", "debit", "5000", None, None, _f("gross")),
    (
        EventType.PAYRUN_APPROVED.value, "benefits", "debit", "5800", None, None,
        _f("benefits_amount", "0"),
    ),
    (
        EventType.PAYRUN_APPROVED.value, "social_charges", "debit", "5700", None, None,
        _f("employer_contributions"),
    ),
    (
        EventType.PAYRUN_APPROVED.value, "social_payable", "credit", "2270", None, None,
        _op("add", _f("employee_deductions"), _f("employer_contributions")),
    ),
    (EventType.PAYRUN_APPROVED.value, "net_payable", "credit", "2279", None, None, _f("net")),
    (EventType.PAYRUN_PAID.value, "net_payable", "debit", "2279", None, None, _f("net")),
    (EventType.PAYRUN_PAID.value, "bank", "credit", "1020", None, None, _f("net")),
]


class PostingRuleEngine:
    """Maps (event_type, payload) to balanced ledger lines."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def rules_for(self, company_id: UUID, event_type: str) -> list[PostingRule]:
        """Active rules for the exact event type, else for the nearest parent type."""
        candidate = event_type
        while candidate:
            result = await self.session.execute(
                select(PostingRule)
                .where(
                    PostingRule.company_id == company_id,
                    PostingRule.event_type == candidate,
                    PostingRule.is_active.is_(True),
                )
                .order_by(PostingRule.sort_order, PostingRule.line_type)
            )
            rules = list(result.scalars().all())
            if rules or "." not in candidate:
                return rules
            candidate = candidate.rsplit(".", 1)[0]
        return []

    async def resolve(
        self, company_id: UUID, event_type: str, payload: Mapping[str, Any]
    ) -> list[ResolvedLine]:
        """Resolve an event into lines.

        Raises:
            NoPostingRuleError: no active rule matches the event type
            FormulaError: a formula cannot be evaluated against the payload
            UnbalancedEntryError: the produced lines do not balance
        """
        rules = await self.rules_for(company_id, event_type)
        if not rules:
            raise NoPostingRuleError(company_id, event_type)
        return self.apply_rules(rules, event_type, payload)

    @staticmethod
    def apply_rules(
        rules: Sequence[PostingRule], event_type: str, payload: Mapping[str, Any]
    ) -> list[ResolvedLine]:
        """Evaluate rules against a payload (no database access)."""
        allowed = allowed_fields(event_type)
        lines: list[ResolvedLine] = []
        debit_cents = 0
        credit_cents = 0

        for rule in rules:
            node = parse_formula(rule.formula)
            try:
                amount = round_to_cents(evaluate(node, payload, allowed))
            except FormulaError as exc:
                raise FormulaError(f"Rule {rule.event_type}/{rule.line_type}: {exc}") from exc

            if amount == 0:
                continue
            if amount < 0:
                raise InvariantViolation(
                    f"Rule {rule.event_type}/{rule.line_type} produced a negative amount {amount}"
                )

            vat_rate = None
            if rule.vat_rate_field and payload.get(rule.vat_rate_field) is not None:
                vat_rate = parse_number(
                    payload[rule.vat_rate_field],
                    f"Rule {rule.event_type}/{rule.line_type} field {rule.vat_rate_field!r}",
                )

            lines.append(
                ResolvedLine(
                    rule_id=rule.id,
                    line_type=rule.line_type,
                    side=rule.side,
                    account_code=rule.account_code,
                    account_name=rule.account_name,
                    amount=amount,
                    vat_code=rule.vat_code_default,
                    vat_rate=vat_rate,
                )
            )
            if rule.side == "debit":
                debit_cents += to_cents(amount)
            else:
                credit_cents += to_cents(amount)

        if not lines:
            raise InvariantViolation(f"Posting rules for {event_type} produced no non-zero lines")
        if debit_cents != credit_cents:
            raise UnbalancedEntryError(
                from_cents(debit_cents),
                from_cents(credit_cents),
                context=f"posting rules for {event_type}",
            )
        return lines


class PostingRuleService:
    """Tenant configuration of posting rules."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_rules(self, company_id: UUID, event_type: str | None = None) -> list[PostingRule]:
        query = select(PostingRule).where(PostingRule.company_id == company_id)
        if event_type is not None:
            query = query.where(PostingRule.event_type == event_type)
        result = await self.session.execute(
            query.order_by(PostingRule.event_type, PostingRule.sort_order, PostingRule.line_type)
        )
        return list(result.scalars().all())

    async def create_rule(
        self,
        company_id: UUID,
        *,
        event_type: str,
        line_type: str,
        side: str,
        account_code: str,
        formula: dict[str, Any],
        account_name: str | None = None,
        vat_code_default: str | None = None,
        vat_rate_field: str | None = None,
        description: str | None = None,
        sort_order: int = 0,
    ) -> PostingRule:
        """Validate and store a rule."""
        if event_family(event_type) is None:
            raise ValidationError(f"Unknown event type {event_type!r}")
        if side not in SIDES:
            raise ValidationError(f"side must be one of {SIDES}, got {side!r}")

        try:
            node = parse_formula(formula)
        except FormulaError as exc:
            raise ValidationError(f"Invalid formula: {exc}") from exc
        allowed = allowed_fields(event_type)
        unknown = referenced_fields(node) - allowed
        if unknown:
            raise ValidationError(
                f"Formula references fields not allowed for {event_type}: {sorted(unknown)}"
            )
        if vat_rate_field is not None and vat_rate_field not in allowed:
            raise ValidationError(f"vat_rate_field {vat_rate_field!r} not allowed for {event_type}")

        result = await self.session.execute(
            select(Account).where(Account.company_id == company_id, Account.code == account_code)
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(company_id, account_code)
        if not account.is_active:
            raise InactiveAccountError(company_id, account_code)

        rule = PostingRule(
            company_id=company_id,
            event_type=event_type,
            line_type=line_type,
            side=side,
            account_code=account_code,
            account_name=account_name or account.name,
            vat_code_default=vat_code_default,
            vat_rate_field=vat_rate_field,
            formula=formula,
            description=description,
            is_active=True,
            sort_order=sort_order,
        )
        self.session.add(rule)
        await self.session.flush()
        logger.info(
            "Created posting rule %s/%s -> %s %s (company %s)",
            event_type,
            line_type,
            side,
            account_code,
            company_id,
        )
        return rule

    async def set_active(self, company_id: UUID, rule_id: UUID, is_active: bool) -> PostingRule:
        result = await self.session.execute(
            select(PostingRule).where(PostingRule.company_id == company_id, PostingRule.id == rule_id)
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("Posting rule", rule_id)
        rule.is_active = is_active
        await self.session.flush()
        return rule

    async def install_default_rules(self, company_id: UUID) -> list[PostingRule]:
        """Seed cash-basis rules for invoice payments and payroll.

        Requires the Swiss SME chart. Rules already present for the same
        (event_type, line_type) are left untouched.
        """
        existing = {(r.event_type, r.line_type) for r in await self.list_rules(company_id)}
        created: list[PostingRule] = []
        for order, (event_type, line_type, side, code, vat_code, vat_field, formula) in enumerate(
            DEFAULT_RULES
        ):
            if (event_type, line_type) in existing:
                continue
            created.append(
                await self.create_rule(
                    company_id,
                    event_type=event_type,
                    line_type=line_type,
                    side=side,
                    account_code=code,
                    formula=formula,
                    vat_code_default=vat_code,
                    vat_rate_field=vat_field,
                    sort_order=order,
                )
            )
        logger.info("Installed %d default posting rules for company %s", len(created), company_id)
        return created
