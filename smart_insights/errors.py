# smart_insights/errors.py
"""
Exception hierarchy for the insight pipeline.

Everything raised on purpose by the registries, connectors, providers and the
response log derives from InsightError, so the orchestrator can turn any of
them into a failed run with a readable message.
"""

from typing import Optional


class InsightError(Exception):
    """Base class for expected pipeline failures."""


# --- configuration / resolution
class ConfigNotFoundError(InsightError):
    pass


class ConfigExistsError(InsightError):
    pass


class UnsupportedProviderError(InsightError):
    pass


class InvalidConfigError(InsightError):
    pass


class InitializationError(InsightError):
    pass


# --- data sources
class SourceConnectionError(InsightError):
    pass


class QueryExecutionError(InsightError):
    pass


class UnsafeQueryError(InsightError):
    pass


# --- LLM
class LLMError(InsightError):
    """Provider-level failure; `retryable` is informational only."""

    def __init__(self, provider: str, code: str, message: str, retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.code = code
        self.message = message
        self.retryable = retryable

    def __str__(self) -> str:
        return f"{self.provider} {self.code}: {self.message}"


class EmptyCompletionError(InsightError):
    pass


# --- response log
class ResponseNotFoundError(InsightError):
    def __init__(self, response_id: str, message: Optional[str] = None):
        super().__init__(message or f"assistant response '{response_id}' not found")
        self.response_id = response_id


class ResponseClosedError(InsightError):
    pass
