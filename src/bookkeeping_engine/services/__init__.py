"""Bookkeeping engine services.

Modules are imported directly (bookkeeping_engine.services.ledger_service,
...) to keep the outbox and payrun services free of import cycles.
"""
