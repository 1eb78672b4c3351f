"""Exception hierarchy shared by the orchestration core."""

from __future__ import annotations


class StepwiseError(Exception):
    """Base class for all errors raised by stepwise."""


class ConfigurationError(StepwiseError):
    """Invalid construction-time settings (token budget, provider, config file)."""


class ProviderError(StepwiseError):
    """
    A generation attempt failed at the provider level.

    Covers transport failures, HTTP errors, timeouts, malformed payloads and
    in-band stream errors.  The original exception, when there is one, is
    chained as ``__cause__``.
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ToolExecutionError(StepwiseError):
    """A tool call could not be dispatched (unknown tool, invalid arguments)."""

    def __init__(self, tool_name: str, message: str, error_code: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.error_code = error_code
