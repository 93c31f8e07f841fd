"""Shared fixtures for delivery API tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from alert_engine.alerts.dispatcher import DirectDispatcher
from alert_engine.alerts.registry import AdapterRegistry
from alert_engine.alerts.schemas import ChannelProvider, SendResult
from alert_engine.alerts.store import InMemoryAlertStore
from alert_engine.alerts.trigger_queue import MemoryTriggerQueue
from alert_engine.api.app import create_app
from alert_engine.api.dependencies import (
    get_dispatcher,
    get_queue,
    get_registry,
    get_store,
)

SECRET_HEADERS = {"X-Internal-Secret": "test-secret"}


@pytest.fixture
def mock_slack_adapter():
    """Slack adapter stub that accepts every send."""
    adapter = MagicMock()
    adapter.provider = ChannelProvider.SLACK
    adapter.send = AsyncMock(
        return_value=SendResult(success=True, provider=ChannelProvider.SLACK)
    )
    return adapter


@pytest.fixture
def registry(mock_slack_adapter):
    return AdapterRegistry([mock_slack_adapter])


@pytest.fixture
def alert_store(slack_channel):
    return InMemoryAlertStore(channels=[slack_channel])


@pytest.fixture
def trigger_queue():
    return MemoryTriggerQueue()


@pytest.fixture
def client(test_settings, alert_store, trigger_queue, registry):
    """FastAPI TestClient with dependency overrides."""
    app = create_app()

    dispatcher = DirectDispatcher(alert_store, registry)
    app.dependency_overrides[get_store] = lambda: alert_store
    app.dependency_overrides[get_queue] = lambda: trigger_queue
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with patch("alert_engine.api.auth.get_settings", return_value=test_settings):
        with TestClient(app) as c:
            yield c

    app.dependency_overrides.clear()
