"""
Errors raised by provider clients and the generation invoker.

``retryable`` tells the retry layer whether another attempt could succeed.
HTTP errors decide per status code: 429 and 5xx are transient, every other
4xx is a caller mistake.
"""

from typing import Any


class NoderError(Exception):
    """Base class for engine errors."""

    retryable = True


class NodeValidationError(NoderError):
    """A node cannot be invoked with its current form state or inputs."""

    retryable = False


class AuthenticationError(NoderError):
    """A provider API key is missing."""

    retryable = False


class ProviderHTTPError(NoderError):
    """Non-2xx response from a provider."""

    def __init__(self, message: str, status_code: int, data: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.data = data

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return not (400 <= self.status_code < 500 and self.status_code != 429)


class ProviderRequestError(NoderError):
    """Connection failure or request timeout before a response arrived."""


class PredictionError(NoderError):
    """A prediction reached a state that produces no usable output."""

    retryable = False

    def __init__(self, message: str, prediction_id: str | None = None):
        super().__init__(message)
        self.prediction_id = prediction_id


class PredictionFailedError(PredictionError):
    pass


class PredictionCanceledError(PredictionError):
    pass


class PredictionTimeoutError(PredictionError):
    def __init__(self, message: str, prediction_id: str | None = None, attempts: int = 0):
        super().__init__(message, prediction_id)
        self.attempts = attempts


class UnexpectedOutputError(NoderError):
    retryable = False


class MediaSaveError(NoderError):
    """A downloaded file could not be written to disk."""

    retryable = False


class GraphCycleError(NoderError):
    """The scoped graph contains a cycle."""

    retryable = False

    def __init__(self, cycle: list[str]):
        super().__init__(f"Cyclic dependency detected involving nodes: {', '.join(cycle)}")
        self.cycle = cycle
