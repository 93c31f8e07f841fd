"""Exceptions raised by the alerting core."""


class AlertingError(Exception):
    """Base class for alerting errors."""


class AdapterNotRegisteredError(AlertingError):
    """Raised when no channel adapter is registered for a provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No adapter registered for provider {provider}")


class ChannelConfigError(AlertingError):
    """Raised when a channel's provider config fails validation."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"Invalid {provider} config: {message}")


class UnknownSeverityError(AlertingError, ValueError):
    """Raised for severities with no trigger queue partition."""

    def __init__(self, severity: object) -> None:
        self.severity = severity
        super().__init__(f"Unknown severity: {severity!r}")


class DispatchTransportError(AlertingError):
    """Raised when the delivery boundary cannot be reached or rejects a batch."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
