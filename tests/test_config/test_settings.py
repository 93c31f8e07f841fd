"""Tests for application settings and alert engine configuration."""

import pytest
from pydantic import ValidationError

from alert_engine.alerts.config import (
    SEVERITY_DEFAULTS,
    AlertConfig,
    NotificationConfig,
)
from alert_engine.alerts.schemas import AlertSeverity
from alert_engine.config.settings import Settings
from tests.conftest import make_alert


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("INTERNAL_API_SECRET", raising=False)
        settings = Settings(_env_file=None)
        assert settings.trigger_queue_backend == "memory"
        assert settings.dispatcher_strategy == "direct"
        assert settings.internal_api_secret is None
        assert settings.api_port == 8001
        assert not settings.smtp_configured

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TRIGGER_QUEUE_BACKEND", "redis")
        monkeypatch.setenv("DISPATCHER_STRATEGY", "rate_limited")
        monkeypatch.setenv("ENVIRONMENT", "production")
        settings = Settings(_env_file=None)
        assert settings.trigger_queue_backend == "redis"
        assert settings.dispatcher_strategy == "rate_limited"
        assert settings.is_production

    def test_rejects_unknown_strategy(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, dispatcher_strategy="carrier_pigeon")

    def test_smtp_configured(self, test_settings):
        settings = test_settings.model_copy(update={"smtp_user": "u", "smtp_password": "p"})
        assert settings.smtp_configured


class TestAlertConfig:
    def test_defaults(self):
        config = AlertConfig()
        assert config.evaluation_interval_ms == 60_000
        assert config.evaluation_concurrency == 1
        assert config.notify_on_resolve is False
        assert config.flush_batch_size == 50

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ALERTS_EVALUATION_INTERVAL_MS", "15000")
        monkeypatch.setenv("ALERTS_NOTIFY_ON_RESOLVE", "true")
        config = AlertConfig()
        assert config.evaluation_interval_ms == 15_000
        assert config.notify_on_resolve is True

    def test_interval_floor(self):
        with pytest.raises(ValidationError):
            AlertConfig(evaluation_interval_ms=500)

    def test_flush_intervals(self):
        config = AlertConfig(flush_interval_low_ms=1_000)
        assert config.flush_interval_ms(AlertSeverity.CRITICAL) == 10_000
        assert config.flush_interval_ms("HIGH") == 30_000
        assert config.flush_interval_ms(AlertSeverity.LOW) == 1_000

    def test_pending_and_cooldown_from_severity(self):
        config = AlertConfig()
        alert = make_alert(severity=AlertSeverity.CRITICAL)
        assert config.pending_ms(alert) == 60_000
        assert config.cooldown_ms(alert) == 5 * 60_000

    def test_pending_and_cooldown_from_alert(self):
        config = AlertConfig()
        alert = make_alert(pending_minutes=0, cooldown_minutes=7)
        assert config.pending_ms(alert) == 0
        assert config.cooldown_ms(alert) == 7 * 60_000

    def test_every_severity_has_defaults(self):
        assert set(SEVERITY_DEFAULTS) == set(AlertSeverity)


class TestNotificationConfig:
    def test_defaults(self):
        config = NotificationConfig()
        assert config.retry_max_attempts == 3
        assert config.circuit_breaker_threshold == 5

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATIONS_HTTP_TIMEOUT_SECONDS", "2.5")
        assert NotificationConfig().http_timeout_seconds == 2.5

    def test_retry_bounds(self):
        with pytest.raises(ValidationError):
            NotificationConfig(retry_max_attempts=0)
