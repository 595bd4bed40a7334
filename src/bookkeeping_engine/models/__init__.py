"""ORM models."""

from bookkeeping_engine.models.accounts import Account, AccountNature
from bookkeeping_engine.models.base import Base, TimestampMixin, utcnow
from bookkeeping_engine.models.company import Company
from bookkeeping_engine.models.ledger import LedgerEntry, LedgerLine
from bookkeeping_engine.models.outbox import OutboxEvent, OutboxStatus
from bookkeeping_engine.models.payroll import (
    AllowancesProfile,
    Employee,
    EmployeeReplacement,
    InsuranceConfig,
    LppAgeRate,
    LppPlan,
    PayrollLppLine,
    PayrollRates,
    Payrun,
    PayrunAudit,
    PayrunMode,
)
from bookkeeping_engine.models.posting import PostingRule

__all__ = [
    "Account",
    "AccountNature",
    "AllowancesProfile",
    "Base",
    "Company",
    "Employee",
    "EmployeeReplacement",
    "InsuranceConfig",
    "LedgerEntry",
    "LedgerLine",
    "LppAgeRate",
    "LppPlan",
    "OutboxEvent",
    "OutboxStatus",
    "PayrollLppLine",
    "PayrollRates",
    "Payrun",
    "PayrunAudit",
    "PayrunMode",
    "PostingRule",
    "TimestampMixin",
    "utcnow",
]
