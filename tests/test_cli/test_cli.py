"""Tests for the alert-engine CLI."""

import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from alert_engine.alerts.evaluator import EvaluationSummary
from alert_engine.alerts.registry import AdapterRegistry
from alert_engine.alerts.schemas import ChannelProvider, DispatchResult, SendResult
from alert_engine.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def mock_setup_logging():
    with patch("alert_engine.cli.setup_logging") as mock:
        yield mock


@pytest.fixture
def mock_evaluator():
    evaluator = MagicMock()
    evaluator.evaluate_all = AsyncMock(
        return_value=EvaluationSummary(evaluated=3, transitions=1, enqueued=1)
    )
    evaluator.flush = AsyncMock(return_value=DispatchResult.empty())
    return evaluator


@pytest.fixture
def patched_engine(mock_evaluator):
    @asynccontextmanager
    async def fake_engine():
        yield mock_evaluator

    with patch("alert_engine.cli._engine", fake_engine):
        yield mock_evaluator


def _registry_with(provider: ChannelProvider, result: SendResult) -> AdapterRegistry:
    adapter = MagicMock()
    adapter.provider = provider
    adapter.send_test = AsyncMock(return_value=result)
    return AdapterRegistry([adapter])


class TestMain:
    def test_debug_flag_sets_log_level(self, runner, patched_engine, mock_setup_logging):
        result = runner.invoke(main, ["--debug", "evaluate-once"])
        assert result.exit_code == 0, result.output
        mock_setup_logging.assert_called_once_with(level="DEBUG")

    def test_default_log_level(self, runner, patched_engine, mock_setup_logging):
        runner.invoke(main, ["evaluate-once"])
        mock_setup_logging.assert_called_once_with(level=None)


class TestEvaluateOnce:
    def test_prints_summary(self, runner, patched_engine):
        result = runner.invoke(main, ["evaluate-once"])

        assert result.exit_code == 0, result.output
        assert "Evaluation Summary" in result.output
        assert "evaluated: 3" in result.output
        patched_engine.evaluate_all.assert_awaited_once()


class TestFlush:
    def test_success(self, runner, patched_engine):
        result = runner.invoke(main, ["flush", "--severity", "critical", "--max-count", "5"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["success"] is True
        severity, max_count = patched_engine.flush.call_args.args
        assert severity.value == "CRITICAL"
        assert max_count == 5

    def test_failure_exit_code(self, runner, patched_engine):
        patched_engine.flush.return_value = DispatchResult(
            success=False, sent=0, failed=1, errors=["a1: HTTP 500"],
        )
        result = runner.invoke(main, ["flush", "--severity", "LOW"])

        assert result.exit_code == 1
        assert "HTTP 500" in result.output

    def test_rejects_unknown_severity(self, runner, patched_engine):
        result = runner.invoke(main, ["flush", "--severity", "URGENT"])
        assert result.exit_code == 2
        patched_engine.flush.assert_not_called()


class TestTestChannel:
    def test_success(self, runner):
        registry = _registry_with(
            ChannelProvider.SLACK,
            SendResult(success=True, provider=ChannelProvider.SLACK, message_id="m-1"),
        )
        with patch("alert_engine.cli.create_default_registry", return_value=registry):
            result = runner.invoke(
                main, ["test-channel", "--provider", "slack", "--config", '{"webhookUrl": "x"}'],
            )

        assert result.exit_code == 0, result.output
        assert "SLACK test notification sent" in result.output
        assert "m-1" in result.output

    def test_failure(self, runner):
        registry = _registry_with(
            ChannelProvider.SLACK,
            SendResult(success=False, provider=ChannelProvider.SLACK, error="SLACK request timed out"),
        )
        with patch("alert_engine.cli.create_default_registry", return_value=registry):
            result = runner.invoke(
                main, ["test-channel", "--provider", "SLACK", "--config", "{}"],
            )

        assert result.exit_code == 1
        assert "timed out" in result.output

    def test_invalid_json(self, runner):
        result = runner.invoke(main, ["test-channel", "--provider", "SLACK", "--config", "{"])
        assert result.exit_code == 2
        assert "invalid JSON" in result.output

    def test_unregistered_provider(self, runner):
        with patch("alert_engine.cli.create_default_registry", return_value=AdapterRegistry()):
            result = runner.invoke(
                main, ["test-channel", "--provider", "GMAIL", "--config", "{}"],
            )
        assert result.exit_code == 2
        assert "No adapter registered" in result.output


class TestInitDb:
    def test_applies_schema(self, runner):
        mock_db = AsyncMock()
        with patch("alert_engine.cli.Database", return_value=mock_db):
            result = runner.invoke(main, ["init-db"])

        assert result.exit_code == 0, result.output
        mock_db.apply_schema.assert_awaited_once()
        mock_db.close.assert_awaited_once()
