"""API routes."""

from bookkeeping_engine.api.routes.accounts import router as accounts_router
from bookkeeping_engine.api.routes.health import router as health_router
from bookkeeping_engine.api.routes.ledger import router as ledger_router
from bookkeeping_engine.api.routes.outbox import router as outbox_router
from bookkeeping_engine.api.routes.payruns import router as payruns_router
from bookkeeping_engine.api.routes.posting_rules import router as posting_rules_router

__all__ = [
    "accounts_router",
    "health_router",
    "ledger_router",
    "outbox_router",
    "payruns_router",
    "posting_rules_router",
]
