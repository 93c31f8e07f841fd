"""
Dependency injection for FastAPI endpoints.
"""

from fastapi import Depends

from alert_engine.alerts.dispatcher import DirectDispatcher, Dispatcher
from alert_engine.alerts.registry import AdapterRegistry, create_default_registry
from alert_engine.alerts.repository import PostgresAlertStore
from alert_engine.alerts.store import AlertStore
from alert_engine.alerts.trigger_queue import TriggerQueue, create_trigger_queue
from alert_engine.config.settings import get_settings
from alert_engine.storage.database import Database

# Global instances (initialized on first request)
_database: Database | None = None
_store: AlertStore | None = None
_registry: AdapterRegistry | None = None
_queue: TriggerQueue | None = None


async def get_database() -> Database:
    """Get the shared database, connecting on first use."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def get_store(db: Database = Depends(get_database)) -> AlertStore:
    """Get the Postgres-backed alert store."""
    global _store

    if _store is None:
        _store = PostgresAlertStore(db)

    return _store


async def get_registry() -> AdapterRegistry:
    """Get the adapter registry with the built-in providers."""
    global _registry

    if _registry is None:
        _registry = create_default_registry(get_settings())

    return _registry


async def get_queue() -> TriggerQueue:
    """Get the trigger queue (health reporting only)."""
    global _queue

    if _queue is None:
        queue = create_trigger_queue(get_settings())
        await queue.connect()
        _queue = queue

    return _queue


async def get_dispatcher(
    store: AlertStore = Depends(get_store),
    registry: AdapterRegistry = Depends(get_registry),
) -> Dispatcher:
    """Direct fan-out dispatcher used by the trigger-batch endpoint."""
    return DirectDispatcher(
        store,
        registry,
        dashboard_base_url=get_settings().dashboard_base_url,
    )


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _database, _store, _registry, _queue

    if _queue is not None:
        await _queue.close()
        _queue = None

    if _database is not None:
        await _database.close()
        _database = None

    _store = None
    _registry = None
