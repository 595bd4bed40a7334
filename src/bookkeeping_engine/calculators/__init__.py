"""Payroll calculation engine."""

from bookkeeping_engine.calculators.line_builder import PayrunLineBuilder
from bookkeeping_engine.calculators.lpp import compute_lpp
from bookkeeping_engine.calculators.payroll_calculator import PayrollCalculator, compute_payrun
from bookkeeping_engine.calculators.types import (
    LppStatus,
    PayPeriod,
    PayrollParameters,
    PayrunDraft,
)

__all__ = [
    "PayrollCalculator",
    "PayrunDraft",
    "PayrunLineBuilder",
    "PayPeriod",
    "PayrollParameters",
    "LppStatus",
    "compute_lpp",
    "compute_payrun",
]
