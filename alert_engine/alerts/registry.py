"""Provider-keyed registry of channel adapters."""

import logging

from alert_engine.alerts.channels import (
    ChannelAdapter,
    DiscordAdapter,
    EmailAdapter,
    PagerDutyAdapter,
    SlackAdapter,
    WebhookAdapter,
)
from alert_engine.alerts.exceptions import AdapterNotRegisteredError
from alert_engine.alerts.schemas import ChannelProvider
from alert_engine.config.settings import Settings

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps each provider to the adapter that delivers for it.

    Instances are passed to dispatchers explicitly; there is no global
    registry.
    """

    def __init__(self, adapters: list[ChannelAdapter] | None = None) -> None:
        self._adapters: dict[ChannelProvider, ChannelAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ChannelAdapter) -> None:
        if adapter.provider in self._adapters:
            logger.warning("Overwriting existing adapter for %s", adapter.provider.value)
        self._adapters[adapter.provider] = adapter
        logger.debug("Registered channel adapter %s", adapter.provider.value)

    def get(self, provider: ChannelProvider | str) -> ChannelAdapter:
        """Get the adapter for a provider.

        Raises:
            AdapterNotRegisteredError: If nothing is registered for it.
        """
        try:
            return self._adapters[ChannelProvider(provider)]
        except (KeyError, ValueError):
            raise AdapterNotRegisteredError(str(provider)) from None

    def has(self, provider: ChannelProvider | str) -> bool:
        try:
            return ChannelProvider(provider) in self._adapters
        except ValueError:
            return False

    @property
    def providers(self) -> list[ChannelProvider]:
        return list(self._adapters)


def create_default_registry(
    settings: Settings,
    timeout: float = 10.0,
) -> AdapterRegistry:
    """Register the built-in adapters.

    The email adapter is only registered when SMTP credentials are set.
    """
    registry = AdapterRegistry([
        DiscordAdapter(timeout=timeout),
        SlackAdapter(timeout=timeout),
        WebhookAdapter(timeout=timeout),
        PagerDutyAdapter(timeout=timeout),
    ])

    if settings.smtp_configured:
        registry.register(
            EmailAdapter(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                from_address=settings.smtp_from,
                timeout=timeout,
            )
        )
    else:
        logger.warning(
            "Email adapter not registered: SMTP_USER, SMTP_PASSWORD not configured"
        )

    logger.info(
        "Channel adapters initialized: %s",
        ", ".join(p.value for p in registry.providers),
    )
    return registry
