"""Channel adapters for notification delivery.

Each adapter implements one provider behind the same capability:
``send(config, payload) -> SendResult``. Adapters never raise for delivery
problems; invalid config, HTTP errors and timeouts all come back as a
failed ``SendResult`` so one broken channel cannot affect its siblings.

HTTP adapters create a short-lived ``httpx.AsyncClient`` per call. The
email adapter runs smtplib in a worker thread.

Also provides the per-channel ``CircuitBreaker`` used by the
rate-limited dispatcher.
"""

import asyncio
import enum
import hashlib
import hmac
import json
import logging
import re
import smtplib
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from alert_engine.alerts.exceptions import ChannelConfigError
from alert_engine.alerts.schemas import (
    ALERT_TYPE_LABELS,
    AlertOperator,
    AlertPayload,
    AlertSeverity,
    AlertState,
    AlertType,
    ChannelProvider,
    SendResult,
    format_alert_value,
    operator_symbol,
)

logger = logging.getLogger(__name__)

DISCORD_WEBHOOK_PREFIX = "https://discord.com/api/webhooks/"
SLACK_WEBHOOK_PREFIX = "https://hooks.slack.com/"
PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"
SIGNATURE_HEADER = "X-Alert-Signature"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ── Provider configs ──────────────────────────────────────────


class _ProviderConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DiscordConfig(_ProviderConfig):
    webhook_url: str = Field(alias="webhookUrl")

    @field_validator("webhook_url")
    @classmethod
    def _discord_url(cls, v: str) -> str:
        if not v.startswith(DISCORD_WEBHOOK_PREFIX):
            raise ValueError("Must be a Discord webhook URL")
        return v


class SlackConfig(_ProviderConfig):
    webhook_url: str = Field(alias="webhookUrl")
    channel: str | None = None

    @field_validator("webhook_url")
    @classmethod
    def _slack_url(cls, v: str) -> str:
        if not v.startswith(SLACK_WEBHOOK_PREFIX):
            raise ValueError("Must be a Slack webhook URL")
        return v


class WebhookConfig(_ProviderConfig):
    url: str
    secret: str | None = None

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Invalid URL")
        return v


class PagerDutyConfig(_ProviderConfig):
    routing_key: str = Field(alias="routingKey", min_length=1)


class EmailConfig(_ProviderConfig):
    email: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v


def sample_payload() -> AlertPayload:
    """Payload used for test notifications."""
    return AlertPayload(
        alert_id="test-alert-id",
        alert_name="Test Alert",
        project_id="test-project-id",
        project_name="Test Project",
        type=AlertType.ERROR_RATE,
        threshold=5.0,
        actual_value=7.5,
        operator=AlertOperator.GREATER_THAN,
        triggered_at=datetime.now(timezone.utc),
        severity=AlertSeverity.MEDIUM,
        state=AlertState.FIRING,
    )


# ── Adapters ──────────────────────────────────────────────────


class ChannelAdapter(ABC):
    """Abstract base for provider adapters."""

    provider: ClassVar[ChannelProvider]
    config_model: ClassVar[type[_ProviderConfig]]

    def validate_config(self, config: Any) -> Any:
        """Parse provider config.

        Raises:
            ChannelConfigError: If the config is missing fields or invalid.
        """
        if isinstance(config, self.config_model):
            return config
        try:
            return self.config_model.model_validate(config or {})
        except ValidationError as e:
            details = "; ".join(err["msg"] for err in e.errors())
            raise ChannelConfigError(self.provider.value, details) from e

    @abstractmethod
    async def send(self, config: Any, payload: AlertPayload) -> SendResult:
        """Deliver a notification.

        Args:
            config: Provider-specific channel config.
            payload: Notification content.

        Returns:
            SendResult; ``success=False`` with ``error`` set on any failure.
        """

    async def send_test(self, config: Any) -> SendResult:
        """Send a sample notification to verify a channel config."""
        return await self.send(config, sample_payload())

    def _success(self, message_id: str | None = None) -> SendResult:
        return SendResult(success=True, provider=self.provider, message_id=message_id)

    def _error(self, error: str) -> SendResult:
        return SendResult(success=False, provider=self.provider, error=error)


class HttpChannelAdapter(ChannelAdapter):
    """Base for adapters that deliver with a single JSON POST."""

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    @abstractmethod
    def _build_request(self, config: Any, payload: AlertPayload) -> tuple[str, dict]:
        """Return (url, JSON body) for a notification."""

    def _extra_headers(self, config: Any, body: bytes) -> dict[str, str]:
        return {}

    def _message_id(self, response: httpx.Response) -> str | None:
        return None

    async def send(self, config: Any, payload: AlertPayload) -> SendResult:
        try:
            valid = self.validate_config(config)
        except ChannelConfigError as e:
            return self._error(str(e))

        url, body = self._build_request(valid, payload)
        content = json.dumps(body).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            **self._extra_headers(valid, content),
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, content=content, headers=headers)
        except httpx.TimeoutException:
            logger.warning(
                "%s request timed out for alert %s",
                self.provider.value, payload.alert_id,
            )
            return self._error(f"{self.provider.value} request timed out")
        except httpx.HTTPError as e:
            logger.warning(
                "%s request failed for alert %s: %s",
                self.provider.value, payload.alert_id, e,
            )
            return self._error(str(e) or type(e).__name__)

        if not resp.is_success:
            logger.warning(
                "%s returned %d for alert %s",
                self.provider.value, resp.status_code, payload.alert_id,
            )
            return self._error(
                f"{self.provider.value} API error: {resp.status_code} - {resp.text}"
            )
        return self._success(self._message_id(resp))


class DiscordAdapter(HttpChannelAdapter):
    """Posts an embed to a Discord webhook."""

    provider = ChannelProvider.DISCORD
    config_model = DiscordConfig

    COLOR_ERROR_RATE = 0xDC2626
    COLOR_LATENCY = 0xF59E0B
    COLOR_RESOLVED = 0x16A34A

    def _build_request(self, config: DiscordConfig, payload: AlertPayload) -> tuple[str, dict]:
        return config.webhook_url, {"embeds": [self.build_embed(payload)]}

    def build_embed(self, payload: AlertPayload) -> dict:
        value = format_alert_value(payload.type, payload.actual_value)
        threshold = format_alert_value(payload.type, payload.threshold)

        if payload.is_resolved:
            title = f"✅ Resolved: {payload.alert_name}"
            description = f"Alert resolved for **{payload.project_name}**"
            color = self.COLOR_RESOLVED
        else:
            title = f"🚨 Alert: {payload.alert_name}"
            description = f"Alert triggered for **{payload.project_name}**"
            color = (
                self.COLOR_ERROR_RATE
                if payload.type == AlertType.ERROR_RATE
                else self.COLOR_LATENCY
            )

        fields = [
            {"name": ALERT_TYPE_LABELS[payload.type], "value": f"**{value}**", "inline": True},
            {
                "name": "Threshold",
                "value": f"{operator_symbol(payload.operator)} {threshold}",
                "inline": True,
            },
            {"name": "Project", "value": payload.project_name, "inline": True},
        ]
        if payload.severity is not None:
            fields.append(
                {"name": "Severity", "value": payload.severity.value, "inline": True}
            )

        embed: dict = {
            "title": title,
            "description": description,
            "color": color,
            "fields": fields,
            "timestamp": payload.triggered_at.isoformat(),
            "footer": {"text": "alert-engine"},
        }
        if payload.dashboard_url:
            embed["url"] = payload.dashboard_url
        return embed


class SlackAdapter(HttpChannelAdapter):
    """Posts Block Kit messages to a Slack incoming webhook."""

    provider = ChannelProvider.SLACK
    config_model = SlackConfig

    SEVERITY_EMOJI = {
        AlertSeverity.CRITICAL: ":red_circle:",
        AlertSeverity.HIGH: ":large_orange_circle:",
        AlertSeverity.MEDIUM: ":large_yellow_circle:",
        AlertSeverity.LOW: ":large_blue_circle:",
    }

    def _build_request(self, config: SlackConfig, payload: AlertPayload) -> tuple[str, dict]:
        body = self.format_message(payload)
        if config.channel:
            body["channel"] = config.channel
        return config.webhook_url, body

    def format_message(self, payload: AlertPayload) -> dict:
        """Build Slack Block Kit payload."""
        if payload.is_resolved:
            emoji = ":white_check_mark:"
            headline = f"Resolved: {payload.alert_name}"
        else:
            emoji = self.SEVERITY_EMOJI.get(payload.severity, ":rotating_light:")
            headline = f"Alert: {payload.alert_name}"

        value = format_alert_value(payload.type, payload.actual_value)
        threshold = format_alert_value(payload.type, payload.threshold)
        severity = payload.severity.value if payload.severity else "n/a"

        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{emoji} {headline}"},
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": f"*{ALERT_TYPE_LABELS[payload.type]}:*\n{value}",
                    },
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"*Threshold:*\n{operator_symbol(payload.operator)} {threshold}"
                        ),
                    },
                ],
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"*Project:* {payload.project_name} | "
                            f"*Severity:* {severity} | "
                            f"*At:* {payload.triggered_at.isoformat()}"
                        ),
                    },
                ],
            },
        ]
        if payload.dashboard_url:
            blocks.append({
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "View Dashboard"},
                        "url": payload.dashboard_url,
                    },
                ],
            })

        return {"text": f"{headline} ({payload.project_name})", "blocks": blocks}


class WebhookAdapter(HttpChannelAdapter):
    """POSTs the JSON payload to an arbitrary endpoint.

    When the channel config has a ``secret``, the raw body is signed with
    HMAC-SHA256 and sent as ``X-Alert-Signature: sha256=<hex>``.
    """

    provider = ChannelProvider.WEBHOOK
    config_model = WebhookConfig

    def _build_request(self, config: WebhookConfig, payload: AlertPayload) -> tuple[str, dict]:
        event = "alert.resolved" if payload.is_resolved else "alert.triggered"
        return config.url, {"event": event, "alert": payload.to_dict()}

    def _extra_headers(self, config: WebhookConfig, body: bytes) -> dict[str, str]:
        if not config.secret:
            return {}
        return {SIGNATURE_HEADER: sign_body(config.secret, body)}


def sign_body(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a webhook body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class PagerDutyAdapter(HttpChannelAdapter):
    """Sends PagerDuty Events API v2 trigger/resolve events.

    The alert id is the dedup key, so a resolve closes the incident
    opened by the matching trigger.
    """

    provider = ChannelProvider.PAGERDUTY
    config_model = PagerDutyConfig

    SEVERITY_MAP = {
        AlertSeverity.CRITICAL: "critical",
        AlertSeverity.HIGH: "error",
        AlertSeverity.MEDIUM: "warning",
        AlertSeverity.LOW: "info",
    }

    def __init__(self, timeout: float = 10.0, events_url: str = PAGERDUTY_EVENTS_URL) -> None:
        super().__init__(timeout)
        self._events_url = events_url

    def _build_request(self, config: PagerDutyConfig, payload: AlertPayload) -> tuple[str, dict]:
        if payload.is_resolved:
            body = {
                "routing_key": config.routing_key,
                "event_action": "resolve",
                "dedup_key": payload.alert_id,
            }
            return self._events_url, body

        value = format_alert_value(payload.type, payload.actual_value)
        threshold = format_alert_value(payload.type, payload.threshold)
        body = {
            "routing_key": config.routing_key,
            "event_action": "trigger",
            "dedup_key": payload.alert_id,
            "payload": {
                "summary": (
                    f"{payload.alert_name}: {ALERT_TYPE_LABELS[payload.type]} {value} "
                    f"({operator_symbol(payload.operator)} {threshold}) "
                    f"on {payload.project_name}"
                ),
                "source": payload.project_name or payload.project_id,
                "severity": self.SEVERITY_MAP.get(payload.severity, "error"),
                "timestamp": payload.triggered_at.isoformat(),
                "custom_details": payload.to_dict(),
            },
        }
        if payload.dashboard_url:
            body["links"] = [{"href": payload.dashboard_url, "text": "Dashboard"}]
        return self._events_url, body

    def _message_id(self, response: httpx.Response) -> str | None:
        try:
            return response.json().get("dedup_key")
        except ValueError:
            return None


class EmailAdapter(ChannelAdapter):
    """Sends alert emails over SMTP.

    smtplib is blocking, so the send runs in a worker thread.
    """

    provider = ChannelProvider.GMAIL
    config_model = EmailConfig

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_address: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from = from_address or user
        self._use_tls = use_tls
        self._timeout = timeout

    async def send(self, config: Any, payload: AlertPayload) -> SendResult:
        try:
            valid = self.validate_config(config)
        except ChannelConfigError as e:
            return self._error(str(e))

        message = self.build_message(valid.email, payload)
        try:
            await asyncio.to_thread(self._send_sync, valid.email, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "SMTP send failed for alert %s: %s", payload.alert_id, e,
            )
            return self._error(f"SMTP error: {e}")
        return self._success(message["Message-ID"])

    def _send_sync(self, recipient: str, message: MIMEMultipart) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            server.login(self._user, self._password)
            server.sendmail(self._from, [recipient], message.as_string())

    def build_message(self, recipient: str, payload: AlertPayload) -> MIMEMultipart:
        label = ALERT_TYPE_LABELS[payload.type]
        value = format_alert_value(payload.type, payload.actual_value)
        threshold = format_alert_value(payload.type, payload.threshold)
        verb = "RESOLVED" if payload.is_resolved else "TRIGGERED"

        lines = [
            f"ALERT {verb}: {payload.alert_name}",
            "",
            f"{label}: {value}",
            f"Threshold: {operator_symbol(payload.operator)} {threshold}",
            "",
            f"Project: {payload.project_name}",
            f"Triggered At: {payload.triggered_at.isoformat()}",
        ]
        if payload.dashboard_url:
            lines.extend(["", f"View Dashboard: {payload.dashboard_url}"])
        text = "\n".join(lines)

        html = (
            f"<h2>Alert {verb.title()}: {payload.alert_name}</h2>"
            f"<p><strong>{label}:</strong> {value}<br>"
            f"<strong>Threshold:</strong> {operator_symbol(payload.operator)} {threshold}<br>"
            f"<strong>Project:</strong> {payload.project_name}</p>"
        )
        if payload.dashboard_url:
            html += f'<p><a href="{payload.dashboard_url}">View Dashboard</a></p>'

        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[{verb}] {payload.alert_name} - {payload.project_name}"
        msg["From"] = self._from
        msg["To"] = recipient
        msg["Message-ID"] = f"<{payload.alert_id}.{int(time.time() * 1000)}@alert-engine>"
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))
        return msg


# ── Circuit breaker ───────────────────────────────────────────


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-channel circuit breaker.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: Sends pass through. Consecutive failures tracked.
    - OPEN: Sends rejected. After recovery_timeout, moves to HALF_OPEN.
    - HALF_OPEN: One probe allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self.name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def allow_request(self) -> bool:
        """Return True if a send may go through now."""
        if self._state != CircuitState.OPEN:
            return True
        if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info(
                "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)", self.name,
            )
            return True
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info(
                "Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)", self.name,
            )
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)", self.name,
            )
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name, self._consecutive_failures,
            )

    def seconds_until_probe(self) -> float:
        """Seconds until an OPEN circuit allows a probe (0 if not open)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        remaining = self._recovery_timeout - (time.monotonic() - self._last_failure_time)
        return max(0.0, remaining)
