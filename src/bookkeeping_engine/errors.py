"""Error taxonomy for the bookkeeping engine.

Hierarchy:
    BookkeepingError
    ├── ValidationError          malformed input, rejected before any write
    │   ├── NotFoundError
    │   ├── AccountNotFoundError
    │   └── InactiveAccountError
    ├── InvariantViolation       accounting invariant broken, never auto-corrected
    │   ├── UnbalancedEntryError
    │   ├── AlreadyReversedError
    │   ├── AccountInUseError
    │   └── AccountCycleError
    ├── ConflictError            idempotent replay, resolved transparently
    ├── ConfigurationError       tenant configuration must be fixed by an operator
    │   ├── NoPostingRuleError
    │   ├── FormulaError
    │   └── MissingRateTableError
    ├── ApprovalGateError        payrun mutation forbidden by status or role
    ├── InvalidTransitionError   payrun state machine violation
    └── ConcurrentModificationError
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class BookkeepingError(Exception):
    """Base class for all engine errors."""


class ValidationError(BookkeepingError):
    """Malformed input."""


class NotFoundError(ValidationError):
    """Referenced entity does not exist for the tenant."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class AccountNotFoundError(ValidationError):
    """Account code does not exist in the tenant's chart."""

    def __init__(self, company_id: UUID, account_code: str):
        self.company_id = company_id
        self.account_code = account_code
        super().__init__(f"Account {account_code} not found for company {company_id}")


class InactiveAccountError(ValidationError):
    """Account exists but has been disabled."""

    def __init__(self, company_id: UUID, account_code: str):
        self.company_id = company_id
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive for company {company_id}")


class InvariantViolation(BookkeepingError):
    """An accounting invariant would be broken."""


class UnbalancedEntryError(InvariantViolation):
    """Debits and credits do not sum to the same amount."""

    def __init__(self, total_debit: Decimal, total_credit: Decimal, context: str | None = None):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.context = context
        msg = f"Unbalanced lines: debit {total_debit} != credit {total_credit}"
        if context:
            msg += f" ({context})"
        super().__init__(msg)


class AlreadyReversedError(InvariantViolation):
    """The entry already has a reversal."""

    def __init__(self, entry_id: UUID, reversal_id: UUID | None = None):
        self.entry_id = entry_id
        self.reversal_id = reversal_id
        super().__init__(f"Entry {entry_id} has already been reversed")


class AccountInUseError(InvariantViolation):
    """The account is referenced by ledger lines and cannot be restructured."""

    def __init__(self, account_code: str, operation: str):
        self.account_code = account_code
        self.operation = operation
        super().__init__(f"Account {account_code} has entries; cannot {operation}")


class AccountCycleError(InvariantViolation):
    """Parent assignment would create a cycle in the account hierarchy."""

    def __init__(self, account_code: str, parent_code: str):
        self.account_code = account_code
        self.parent_code = parent_code
        super().__init__(
            f"Setting parent of {account_code} to {parent_code} would create a cycle"
        )


class ConflictError(BookkeepingError):
    """A write lost a uniqueness race; the existing row is authoritative."""

    def __init__(self, key: str, existing_id: UUID | None = None):
        self.key = key
        self.existing_id = existing_id
        super().__init__(f"Conflict on key {key!r}")


class ConfigurationError(BookkeepingError):
    """Tenant configuration is missing or invalid."""


class NoPostingRuleError(ConfigurationError):
    """No active posting rule matches the event type."""

    def __init__(self, company_id: UUID, event_type: str):
        self.company_id = company_id
        self.event_type = event_type
        super().__init__(f"No active posting rule for event '{event_type}' (company {company_id})")


class FormulaError(ConfigurationError):
    """A posting rule formula is malformed or cannot be evaluated."""


class MissingRateTableError(ConfigurationError):
    """A payroll parameter table is missing for the requested year."""

    def __init__(self, table: str, company_id: UUID, year: int):
        self.table = table
        self.company_id = company_id
        self.year = year
        super().__init__(f"No {table} configured for company {company_id}, year {year}")


class ApprovalGateError(BookkeepingError):
    """Mutation attempted on a payrun whose status or the caller's role forbids it."""

    def __init__(self, payrun_id: UUID, status: str, reason: str):
        self.payrun_id = payrun_id
        self.status = status
        self.reason = reason
        super().__init__(f"Payrun {payrun_id} ({status}): {reason}")


class InvalidTransitionError(BookkeepingError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrentModificationError(BookkeepingError):
    """A conditional update matched no row because another writer got there first."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} was modified concurrently")
