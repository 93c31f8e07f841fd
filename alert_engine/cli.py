"""
Command-line interface for the alert engine.

Provides commands to run the evaluator, drive single ticks by hand,
serve the delivery API, and check channel configs.

Usage:
    alert-engine run                         # Evaluate and flush on schedule
    alert-engine evaluate-once               # One evaluation tick
    alert-engine flush --severity CRITICAL   # One flush of a partition
    alert-engine serve                       # Delivery API
    alert-engine test-channel --provider SLACK --config '{"webhookUrl": "..."}'
    alert-engine init-db                     # Apply schema.sql
"""

import asyncio
import json
import signal
import sys
from contextlib import asynccontextmanager
from typing import Any

import click
import structlog

from alert_engine.alerts.config import AlertConfig, NotificationConfig
from alert_engine.alerts.dispatcher import create_dispatcher
from alert_engine.alerts.evaluator import AlertEvaluator
from alert_engine.alerts.exceptions import AdapterNotRegisteredError
from alert_engine.alerts.registry import create_default_registry
from alert_engine.alerts.repository import PostgresAlertStore
from alert_engine.alerts.scheduler import IntervalScheduler
from alert_engine.alerts.schemas import SEVERITY_ORDER, AlertSeverity
from alert_engine.alerts.trigger_queue import create_trigger_queue
from alert_engine.config.settings import get_settings
from alert_engine.observability.logging import setup_logging
from alert_engine.observability.metrics import get_metrics
from alert_engine.storage.database import Database

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _engine():
    """Wire database, store, queue, registry, dispatcher and evaluator."""
    settings = get_settings()
    notification_config = NotificationConfig()

    db = Database()
    await db.connect()
    queue = create_trigger_queue(settings)
    try:
        await queue.connect()
        store = PostgresAlertStore(db)
        registry = create_default_registry(
            settings, timeout=notification_config.http_timeout_seconds,
        )
        dispatcher = create_dispatcher(settings, store, registry, notification_config)
        evaluator = AlertEvaluator(
            store, queue, dispatcher, IntervalScheduler(), config=AlertConfig(),
        )
        yield evaluator
    finally:
        await queue.close()
        await db.close()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Alert Engine - threshold alert evaluation and notification dispatch."""
    setup_logging(level="DEBUG" if debug else None)


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(metrics: bool, metrics_port: int | None) -> None:
    """Run evaluation and per-severity flushing until interrupted."""

    async def run_engine():
        async with _engine() as evaluator:
            if metrics:
                get_metrics().start_server(port=metrics_port)

            stopped = asyncio.Event()

            async def shutdown():
                logger.info("Shutdown signal received")
                await evaluator.stop()
                stopped.set()

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda: asyncio.create_task(shutdown()))

            evaluator.start()
            await stopped.wait()

    asyncio.run(run_engine())


@main.command("evaluate-once")
def evaluate_once() -> None:
    """Run a single evaluation tick and print the summary."""

    async def run_tick():
        async with _engine() as evaluator:
            summary = await evaluator.evaluate_all()

        click.echo("\nEvaluation Summary:")
        click.echo("-" * 40)
        for key, value in summary.to_dict().items():
            click.echo(f"  {key}: {value}")

    asyncio.run(run_tick())


@main.command()
@click.option(
    "--severity",
    required=True,
    type=click.Choice([s.value for s in SEVERITY_ORDER], case_sensitive=False),
    help="Partition to flush",
)
@click.option("--max-count", default=None, type=int, help="Items to dequeue (default: batch size)")
def flush(severity: str, max_count: int | None) -> None:
    """Flush one trigger queue partition through the dispatcher."""

    async def run_flush():
        async with _engine() as evaluator:
            result = await evaluator.flush(AlertSeverity(severity.upper()), max_count)

        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.success:
            sys.exit(1)

    asyncio.run(run_flush())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the delivery API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    click.echo(f"Starting delivery API on {host}:{port}")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "alert_engine.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("test-channel")
@click.option("--provider", required=True, help="Channel provider, e.g. SLACK")
@click.option("--config", "config_json", required=True, help="Provider config as JSON")
def test_channel(provider: str, config_json: str) -> None:
    """Send a sample notification through one provider."""
    try:
        config: Any = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--config") from e

    registry = create_default_registry(get_settings())
    try:
        adapter = registry.get(provider.upper())
    except AdapterNotRegisteredError as e:
        raise click.BadParameter(str(e), param_hint="--provider") from e

    result = asyncio.run(adapter.send_test(config))
    if result.success:
        click.echo(click.style(f"✓ {adapter.provider.value} test notification sent", fg="green"))
        if result.message_id:
            click.echo(f"  message id: {result.message_id}")
    else:
        click.echo(click.style(f"✗ {adapter.provider.value}: {result.error}", fg="red"))
        sys.exit(1)


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""

    async def run_init():
        db = Database()
        await db.connect()
        try:
            await db.apply_schema()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run_init())


if __name__ == "__main__":
    main()
