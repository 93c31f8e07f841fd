"""PostgreSQL alert store.

Implements ``AlertStore`` with asyncpg through the shared ``Database``
wrapper. Metrics are computed from the ``spans``/``traces`` tables:
error rate as the percentage of spans at level ERROR, latency percentiles
with PERCENTILE_CONT over span duration in milliseconds.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from alert_engine.alerts.schemas import (
    Alert,
    AlertHistoryEntry,
    AlertSeverity,
    AlertState,
    AlertType,
    MetricSnapshot,
    NotificationChannel,
    StateMetadata,
)
from alert_engine.alerts.store import AlertStore
from alert_engine.storage.database import Database

logger = logging.getLogger(__name__)

_PERCENTILES: dict[AlertType, float] = {
    AlertType.LATENCY_P50: 0.50,
    AlertType.LATENCY_P95: 0.95,
    AlertType.LATENCY_P99: 0.99,
}

_ALERT_COLUMNS = """
    a.id, a.project_id, a.project_name, a.name, a.type, a.threshold,
    a.operator, a.severity, a.window_mins, a.pending_mins, a.cooldown_mins,
    a.state, a.state_changed_at, a.last_evaluated_at, a.last_triggered_at,
    a.last_value, a.enabled,
    COALESCE(
        ARRAY_AGG(l.channel_id ORDER BY l.channel_id)
            FILTER (WHERE l.channel_id IS NOT NULL),
        '{}'
    ) AS channel_ids
"""


class PostgresAlertStore(AlertStore):
    """Alert store backed by the ``alerts`` family of tables.

    Each state update is a single-row UPDATE, which is all the atomicity
    a single evaluator process needs.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get_eligible_alerts(
        self,
        severity: AlertSeverity | None = None,
    ) -> list[Alert]:
        """Get enabled alerts with their linked channel ids.

        Args:
            severity: Only return alerts of this severity.

        Returns:
            Alerts ordered by id for stable evaluation order.
        """
        params: list[Any] = []
        where_clause = "WHERE a.enabled = TRUE"
        if severity is not None:
            where_clause += " AND a.severity = $1"
            params.append(AlertSeverity(severity).value)

        sql = f"""
            SELECT {_ALERT_COLUMNS}
            FROM alerts a
            LEFT JOIN alert_channel_links l ON l.alert_id = a.id
            {where_clause}
            GROUP BY a.id
            ORDER BY a.id
        """
        rows = await self._db.fetch(sql, *params)
        return [_row_to_alert(row) for row in rows]

    async def get_metric(
        self,
        project_id: str,
        alert_type: AlertType,
        window_minutes: int,
    ) -> MetricSnapshot:
        """Compute a metric over the trailing window.

        Args:
            project_id: Project whose spans are measured.
            alert_type: Signal to compute.
            window_minutes: Window length ending now.

        Returns:
            MetricSnapshot; ``sample_count`` is the number of spans seen.
        """
        alert_type = AlertType(alert_type)
        window_end = datetime.now(timezone.utc)
        window_start = window_end - timedelta(minutes=window_minutes)

        if alert_type == AlertType.ERROR_RATE:
            sql = """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE s.level = 'ERROR') AS errors
                FROM spans s
                INNER JOIN traces t ON s.trace_id = t.id
                WHERE t.project_id = $1
                  AND s.start_time >= $2
                  AND s.start_time < $3
            """
            row = await self._db.fetchrow(sql, project_id, window_start, window_end)
            total = int(row["total"]) if row else 0
            errors = int(row["errors"]) if row else 0
            value = (errors / total) * 100 if total > 0 else 0.0
            return MetricSnapshot(
                value=value,
                sample_count=total,
                window_start=window_start,
                window_end=window_end,
            )

        sql = """
            SELECT
                PERCENTILE_CONT($4::float8) WITHIN GROUP (
                    ORDER BY EXTRACT(EPOCH FROM (s.end_time - s.start_time)) * 1000
                ) AS percentile_value,
                COUNT(*) AS sample_count
            FROM spans s
            INNER JOIN traces t ON s.trace_id = t.id
            WHERE t.project_id = $1
              AND s.start_time >= $2
              AND s.start_time < $3
              AND s.end_time IS NOT NULL
        """
        row = await self._db.fetchrow(
            sql, project_id, window_start, window_end, _PERCENTILES[alert_type],
        )
        percentile_value = row["percentile_value"] if row else None
        sample_count = int(row["sample_count"]) if row else 0
        return MetricSnapshot(
            value=float(percentile_value) if percentile_value is not None else 0.0,
            sample_count=sample_count,
            window_start=window_start,
            window_end=window_end,
        )

    async def update_alert_state(
        self,
        alert_id: str,
        state: AlertState,
        meta: StateMetadata,
    ) -> None:
        """Write state and evaluation bookkeeping in one UPDATE.

        ``state_changed_at`` and ``last_triggered_at`` keep their stored
        value unless the matching metadata flag is set.
        """
        sql = """
            UPDATE alerts SET
                state = $2,
                last_evaluated_at = $3,
                last_value = $4,
                state_changed_at = CASE WHEN $5 THEN $3 ELSE state_changed_at END,
                last_triggered_at = CASE WHEN $6 THEN $3 ELSE last_triggered_at END,
                updated_at = NOW()
            WHERE id = $1
        """
        result = await self._db.execute(
            sql,
            alert_id,
            AlertState(state).value,
            meta.evaluated_at,
            meta.value,
            meta.state_changed,
            meta.triggered,
        )
        if result == "UPDATE 0":
            logger.warning("State update for unknown alert %s", alert_id)

    async def record_history(self, entry: AlertHistoryEntry) -> None:
        sql = """
            INSERT INTO alert_history (
                alert_id, triggered_at, value, threshold, state, previous_state,
                resolved, resolved_at, notified_via, sample_count, evaluation_ms
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
        """
        await self._db.execute(
            sql,
            entry.alert_id,
            entry.triggered_at,
            entry.value,
            entry.threshold,
            entry.state.value,
            entry.previous_state.value,
            entry.resolved,
            entry.resolved_at,
            list(entry.notified_via),
            entry.sample_count,
            entry.evaluation_ms,
        )

    async def get_channels(self, channel_ids: list[str]) -> list[NotificationChannel]:
        """Fetch channels in one query. Missing ids are simply absent."""
        if not channel_ids:
            return []
        sql = """
            SELECT id, name, provider, config, verified
            FROM notification_channels
            WHERE id = ANY($1::text[])
        """
        rows = await self._db.fetch(sql, list(dict.fromkeys(channel_ids)))
        return [_row_to_channel(row) for row in rows]

    async def mark_triggered(self, alert_id: str, at: datetime) -> None:
        sql = """
            UPDATE alerts SET last_triggered_at = $2, updated_at = NOW()
            WHERE id = $1
        """
        await self._db.execute(sql, alert_id, at)

    async def health_check(self) -> bool:
        return await self._db.health_check()


def _row_to_alert(row: Any) -> Alert:
    """Convert an asyncpg Record to an Alert."""
    return Alert(
        alert_id=row["id"],
        project_id=row["project_id"],
        project_name=row["project_name"] or "",
        name=row["name"],
        type=row["type"],
        threshold=float(row["threshold"]),
        operator=row["operator"],
        severity=row["severity"],
        window_minutes=row["window_mins"],
        pending_minutes=row["pending_mins"],
        cooldown_minutes=row["cooldown_mins"],
        state=row["state"],
        state_changed_at=row["state_changed_at"],
        last_evaluated_at=row["last_evaluated_at"],
        last_triggered_at=row["last_triggered_at"],
        last_value=row["last_value"],
        channel_ids=list(row["channel_ids"] or []),
        enabled=row["enabled"],
    )


def _row_to_channel(row: Any) -> NotificationChannel:
    config = row["config"]
    if isinstance(config, str):
        config = json.loads(config)
    return NotificationChannel(
        channel_id=row["id"],
        name=row["name"],
        provider=row["provider"],
        config=config or {},
        verified=row.get("verified", False),
    )
