"""Bookkeeping engine: double-entry ledger, posting rules, event outbox and Swiss payroll."""

__version__ = "0.1.0"
