"""Payrun line builder.

Sign conventions:
- EARNING, BENEFIT: positive, added to net
- EMPLOYEE_DEDUCTION: positive amount, subtracted from net
- EMPLOYER_CONTRIBUTION: positive amount, added to employer cost only

Rounding: every line is rounded half up to cents when it is built, so
totals are sums of already-rounded amounts and reconcile exactly.
"""

from __future__ import annotations

from decimal import Decimal

from bookkeeping_engine.calculators.types import LineKind, PayrunLine
from bookkeeping_engine.money import ZERO, round_to_cents


class PayrunLineBuilder:
    """Builds explained payrun lines."""

    @staticmethod
    def earning(code: str, amount: Decimal, explanation: str | None = None) -> PayrunLine:
        return PayrunLine(
            kind=LineKind.EARNING,
            code=code,
            amount=round_to_cents(abs(amount)),
            explanation=explanation,
        )

    @staticmethod
    def benefit(code: str, amount: Decimal, explanation: str | None = None) -> PayrunLine:
        return PayrunLine(
            kind=LineKind.BENEFIT,
            code=code,
            amount=round_to_cents(abs(amount)),
            explanation=explanation,
        )

    @staticmethod
    def contribution(
        kind: LineKind,
        code: str,
        basis: Decimal,
        rate: Decimal,
        explanation: str | None = None,
    ) -> PayrunLine:
        """rate x basis, rounded to cents."""
        if rate < 0:
            raise ValueError(f"{code}: rate must not be negative")
        return PayrunLine(
            kind=kind,
            code=code,
            amount=round_to_cents(basis * rate),
            basis=round_to_cents(basis),
            rate=rate,
            explanation=explanation,
        )

    @staticmethod
    def split(
        code: str,
        basis: Decimal,
        rate: Decimal,
        employee_share: Decimal,
        explanation: str | None = None,
    ) -> tuple[PayrunLine, PayrunLine]:
        """Split one premium between employee and employer.

        The employer part is the remainder so both parts add up to the
        rounded total premium.
        """
        if not ZERO <= employee_share <= 1:
            raise ValueError(f"{code}: employee share must be between 0 and 1")
        total = round_to_cents(basis * rate)
        employee_amount = round_to_cents(total * employee_share)
        employer_amount = total - employee_amount
        return (
            PayrunLine(
                kind=LineKind.EMPLOYEE_DEDUCTION,
                code=f"{code}_emp",
                amount=employee_amount,
                basis=round_to_cents(basis),
                rate=rate * employee_share,
                explanation=explanation,
            ),
            PayrunLine(
                kind=LineKind.EMPLOYER_CONTRIBUTION,
                code=f"{code}_er",
                amount=employer_amount,
                basis=round_to_cents(basis),
                rate=rate * (1 - employee_share),
                explanation=explanation,
            ),
        )

    @staticmethod
    def total(lines: list[PayrunLine], kind: LineKind) -> Decimal:
        return sum((line.amount for line in lines if line.kind == kind), ZERO)
