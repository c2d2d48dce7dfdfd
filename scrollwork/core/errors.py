"""
Error taxonomy for the agent.

Configuration and startup errors are fatal; fetch errors are recovered
or reported by the usage worker.
"""


class ScrollworkError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(ScrollworkError, ValueError):
    """Invalid or incomplete configuration. Never retried."""


class UnsupportedModelError(ConfigurationError):
    """Model identifier does not belong to a supported provider family."""

    def __init__(self, model: str):
        super().__init__(
            f"Unsupported model '{model}': only OpenAI and Anthropic models are supported"
        )
        self.model = model


class StartupError(ScrollworkError):
    """The agent could not reach a state where it can serve connections."""


class HealthCheckError(StartupError):
    """A provider client failed its health check."""


class StartupTimeoutError(StartupError):
    """The usage worker did not signal readiness within the startup deadline."""


class ListenerError(StartupError):
    """The unix socket listener could not be bound."""


class UsageFetchError(ScrollworkError):
    """A non-transient failure while fetching usage for one model."""

    def __init__(self, model: str, cause: BaseException):
        super().__init__(f"Failed to fetch usage for {model}: {cause}")
        self.model = model
        self.cause = cause
