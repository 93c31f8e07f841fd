"""Tests for channel adapters, the adapter registry and the circuit breaker."""

import json
import smtplib
from unittest.mock import patch

import httpx
import pytest
import respx

from alert_engine.alerts.channels import (
    PAGERDUTY_EVENTS_URL,
    SIGNATURE_HEADER,
    CircuitBreaker,
    CircuitState,
    DiscordAdapter,
    EmailAdapter,
    PagerDutyAdapter,
    SlackAdapter,
    WebhookAdapter,
    sign_body,
)
from alert_engine.alerts.exceptions import AdapterNotRegisteredError, ChannelConfigError
from alert_engine.alerts.registry import AdapterRegistry, create_default_registry
from alert_engine.alerts.schemas import (
    AlertPayload,
    AlertSeverity,
    AlertState,
    AlertType,
    ChannelProvider,
)
from tests.conftest import make_item

DISCORD_URL = "https://discord.com/api/webhooks/123/abc"
SLACK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"
HOOK_URL = "https://example.com/alerts"


# ── Fixtures ────────────────────────────────────────────


@pytest.fixture
def payload() -> AlertPayload:
    return AlertPayload.from_item(
        make_item(alert_id="alert-42"), "https://app.example.com",
    )


@pytest.fixture
def resolved_payload() -> AlertPayload:
    return AlertPayload.from_item(
        make_item(
            alert_id="alert-42",
            previous_state=AlertState.FIRING,
            new_state=AlertState.RESOLVED,
            actual_value=1.2,
        )
    )


def _sent_json(route) -> dict:
    return json.loads(route.calls.last.request.content)


# ── Discord ─────────────────────────────────────────────


class TestDiscordAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_embed(self, payload):
        route = respx.post(DISCORD_URL).mock(return_value=httpx.Response(204))

        result = await DiscordAdapter().send({"webhookUrl": DISCORD_URL}, payload)

        assert result.success
        assert result.provider == ChannelProvider.DISCORD
        [embed] = _sent_json(route)["embeds"]
        assert embed["title"] == "🚨 Alert: High error rate"
        assert embed["color"] == DiscordAdapter.COLOR_ERROR_RATE
        assert embed["fields"][0]["value"] == "**7.50%**"
        assert embed["url"] == "https://app.example.com/projects/proj-1/alerts"

    def test_resolved_embed(self, resolved_payload):
        embed = DiscordAdapter().build_embed(resolved_payload)
        assert embed["title"].startswith("✅ Resolved")
        assert embed["color"] == DiscordAdapter.COLOR_RESOLVED
        assert "url" not in embed

    def test_latency_color(self):
        payload = AlertPayload.from_item(make_item(metric_type=AlertType.LATENCY_P95))
        assert DiscordAdapter().build_embed(payload)["color"] == DiscordAdapter.COLOR_LATENCY

    @pytest.mark.asyncio
    async def test_rejects_non_discord_url(self, payload):
        result = await DiscordAdapter().send({"webhookUrl": SLACK_URL}, payload)
        assert not result.success
        assert "Invalid DISCORD config" in result.error

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_error(self, payload):
        respx.post(DISCORD_URL).mock(return_value=httpx.Response(429, text="rate limited"))

        result = await DiscordAdapter().send({"webhookUrl": DISCORD_URL}, payload)

        assert result.error == "DISCORD API error: 429 - rate limited"


# ── Slack ───────────────────────────────────────────────


class TestSlackAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_posts_blocks(self, payload):
        route = respx.post(SLACK_URL).mock(return_value=httpx.Response(200, text="ok"))

        result = await SlackAdapter().send(
            {"webhookUrl": SLACK_URL, "channel": "#oncall"}, payload,
        )

        assert result.success
        body = _sent_json(route)
        assert body["channel"] == "#oncall"
        assert body["text"] == "Alert: High error rate (Checkout)"
        header = body["blocks"][0]["text"]["text"]
        assert header.startswith(SlackAdapter.SEVERITY_EMOJI[AlertSeverity.HIGH])
        assert body["blocks"][-1]["type"] == "actions"

    def test_resolved_message(self, resolved_payload):
        message = SlackAdapter().format_message(resolved_payload)
        assert message["text"].startswith("Resolved:")
        assert all(block["type"] != "actions" for block in message["blocks"])

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout(self, payload):
        respx.post(SLACK_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        result = await SlackAdapter(timeout=0.1).send({"webhookUrl": SLACK_URL}, payload)

        assert not result.success
        assert result.error == "SLACK request timed out"

    @pytest.mark.asyncio
    async def test_missing_webhook_url(self, payload):
        result = await SlackAdapter().send({}, payload)
        assert not result.success
        assert result.error.startswith("Invalid SLACK config")


# ── Webhook ─────────────────────────────────────────────


class TestWebhookAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_signed_body(self, payload):
        route = respx.post(HOOK_URL).mock(return_value=httpx.Response(202))

        result = await WebhookAdapter().send({"url": HOOK_URL, "secret": "s3cret"}, payload)

        assert result.success
        request = route.calls.last.request
        assert request.headers[SIGNATURE_HEADER] == sign_body("s3cret", request.content)
        body = json.loads(request.content)
        assert body["event"] == "alert.triggered"
        assert body["alert"]["alertId"] == "alert-42"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unsigned_without_secret(self, resolved_payload):
        route = respx.post(HOOK_URL).mock(return_value=httpx.Response(200))

        await WebhookAdapter().send({"url": HOOK_URL}, resolved_payload)

        request = route.calls.last.request
        assert SIGNATURE_HEADER not in request.headers
        assert json.loads(request.content)["event"] == "alert.resolved"

    def test_signature_format(self):
        signature = sign_body("key", b"{}")
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64
        assert sign_body("other", b"{}") != signature

    @pytest.mark.asyncio
    async def test_invalid_url(self, payload):
        result = await WebhookAdapter().send({"url": "ftp://example.com"}, payload)
        assert not result.success

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error(self, payload):
        respx.post(HOOK_URL).mock(side_effect=httpx.ConnectError("refused"))

        result = await WebhookAdapter().send({"url": HOOK_URL}, payload)

        assert result.error == "refused"


# ── PagerDuty ───────────────────────────────────────────


class TestPagerDutyAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_trigger_event(self, payload):
        route = respx.post(PAGERDUTY_EVENTS_URL).mock(return_value=httpx.Response(
            202, json={"status": "success", "dedup_key": "alert-42"},
        ))

        result = await PagerDutyAdapter().send({"routingKey": "rk"}, payload)

        assert result.success
        assert result.message_id == "alert-42"
        body = _sent_json(route)
        assert body["event_action"] == "trigger"
        assert body["dedup_key"] == "alert-42"
        assert body["routing_key"] == "rk"
        assert body["payload"]["severity"] == "error"
        assert body["links"][0]["href"].endswith("/projects/proj-1/alerts")

    @pytest.mark.asyncio
    @respx.mock
    async def test_resolve_event(self, resolved_payload):
        route = respx.post("https://pd.test/enqueue").mock(return_value=httpx.Response(202))

        adapter = PagerDutyAdapter(events_url="https://pd.test/enqueue")
        result = await adapter.send({"routingKey": "rk"}, resolved_payload)

        assert result.success
        assert result.message_id is None
        assert _sent_json(route) == {
            "routing_key": "rk", "event_action": "resolve", "dedup_key": "alert-42",
        }

    @pytest.mark.asyncio
    async def test_empty_routing_key(self, payload):
        result = await PagerDutyAdapter().send({"routingKey": ""}, payload)
        assert not result.success


# ── Email ───────────────────────────────────────────────


@pytest.fixture
def email_adapter():
    return EmailAdapter(
        host="smtp.test", port=587, user="bot@example.com", password="pw",
    )


class TestEmailAdapter:
    @pytest.mark.asyncio
    async def test_sends_over_smtp(self, email_adapter, payload):
        with patch("alert_engine.alerts.channels.smtplib.SMTP") as mock_smtp:
            result = await email_adapter.send({"email": "oncall@example.com"}, payload)

        assert result.success
        assert result.provider == ChannelProvider.GMAIL
        assert result.message_id.startswith("<alert-42.")
        server = mock_smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot@example.com", "pw")
        sender, recipients, _ = server.sendmail.call_args.args
        assert sender == "bot@example.com"
        assert recipients == ["oncall@example.com"]

    @pytest.mark.asyncio
    async def test_smtp_failure(self, email_adapter, payload):
        with patch("alert_engine.alerts.channels.smtplib.SMTP") as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
            result = await email_adapter.send({"email": "oncall@example.com"}, payload)

        assert not result.success
        assert result.error.startswith("SMTP error:")

    @pytest.mark.asyncio
    async def test_invalid_address(self, email_adapter, payload):
        with patch("alert_engine.alerts.channels.smtplib.SMTP") as mock_smtp:
            result = await email_adapter.send({"email": "not-an-address"}, payload)
        assert not result.success
        mock_smtp.assert_not_called()

    def test_message_content(self, email_adapter, resolved_payload):
        msg = email_adapter.build_message("oncall@example.com", resolved_payload)
        assert msg["Subject"] == "[RESOLVED] High error rate - Checkout"
        assert msg["To"] == "oncall@example.com"
        assert "ALERT RESOLVED" in msg.get_payload()[0].get_payload()


class TestConfigValidation:
    def test_raises_channel_config_error(self):
        with pytest.raises(ChannelConfigError, match="Invalid SLACK config"):
            SlackAdapter().validate_config({"webhookUrl": "https://example.com"})

    def test_accepts_camel_or_snake_case(self):
        config = SlackAdapter().validate_config({"webhook_url": SLACK_URL})
        assert config.webhook_url == SLACK_URL


# ── Registry ────────────────────────────────────────────


class TestAdapterRegistry:
    def test_lookup_by_enum_or_string(self):
        slack = SlackAdapter()
        registry = AdapterRegistry([slack])
        assert registry.get(ChannelProvider.SLACK) is slack
        assert registry.get("SLACK") is slack
        assert registry.has("SLACK")
        assert not registry.has("TEAMS")

    def test_missing_provider(self):
        with pytest.raises(AdapterNotRegisteredError, match="DISCORD"):
            AdapterRegistry().get(ChannelProvider.DISCORD)

    def test_register_overwrites(self):
        registry = AdapterRegistry([SlackAdapter()])
        replacement = SlackAdapter(timeout=1.0)
        registry.register(replacement)
        assert registry.get("SLACK") is replacement
        assert registry.providers == [ChannelProvider.SLACK]

    def test_default_registry_without_smtp(self, test_settings):
        registry = create_default_registry(test_settings)
        assert set(registry.providers) == {
            ChannelProvider.DISCORD,
            ChannelProvider.SLACK,
            ChannelProvider.WEBHOOK,
            ChannelProvider.PAGERDUTY,
        }

    def test_default_registry_with_smtp(self, test_settings):
        settings = test_settings.model_copy(
            update={"smtp_user": "bot@example.com", "smtp_password": "pw"}
        )
        assert create_default_registry(settings).has(ChannelProvider.GMAIL)


# ── CircuitBreaker ──────────────────────────────────────


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("ch-1", failure_threshold=3)
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_success_resets_failures(self):
        breaker = CircuitBreaker("ch-1", failure_threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        assert breaker.consecutive_failures == 0
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_probe_after_recovery(self):
        breaker = CircuitBreaker("ch-1", failure_threshold=1, recovery_timeout=30.0)
        with patch("alert_engine.alerts.channels.time.monotonic", return_value=100.0):
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        with patch("alert_engine.alerts.channels.time.monotonic", return_value=110.0):
            assert not breaker.allow_request()
            assert breaker.seconds_until_probe() == pytest.approx(20.0)

        with patch("alert_engine.alerts.channels.time.monotonic", return_value=130.0):
            assert breaker.allow_request()
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_failed_probe_reopens(self):
        breaker = CircuitBreaker("ch-1", failure_threshold=5, recovery_timeout=1.0)
        with patch("alert_engine.alerts.channels.time.monotonic", return_value=0.0):
            for _ in range(5):
                breaker.record_failure()
        with patch("alert_engine.alerts.channels.time.monotonic", return_value=5.0):
            assert breaker.allow_request()
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_closed_has_no_probe_wait(self):
        assert CircuitBreaker("ch-1").seconds_until_probe() == 0.0
