"""Storage layer: asyncpg connection pool and alerting schema."""

from alert_engine.storage.database import Database

__all__ = ["Database"]
