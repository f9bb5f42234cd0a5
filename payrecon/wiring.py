from __future__ import annotations

from payrecon.config import settings
from payrecon.providers.factory import get_adapters
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.repositories.pg_store import PgStore
from payrecon.services.inventory import InventoryService
from payrecon.services.reconciliation import ReconciliationEngine
from payrecon.services.validation import AmountValidationGuard
from payrecon.services.verification import VerificationService
from payrecon.services.webhook_dispatcher import WebhookDispatcher

# PostgreSQL when configured, otherwise process-local state
_store: InMemoryStore | PgStore = PgStore() if settings.db_enabled else InMemoryStore()
_adapters = get_adapters(settings)
_engine = ReconciliationEngine(
    _store,
    AmountValidationGuard(_store),
    InventoryService(_store),
    default_currency=settings.default_currency,
)
_dispatcher = WebhookDispatcher(_adapters, _engine, _store, settings)
_verification = VerificationService(_adapters, settings)


def get_dispatcher() -> WebhookDispatcher:
    return _dispatcher


def get_verification_service() -> VerificationService:
    return _verification
