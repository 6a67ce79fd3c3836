"""Provider clients: chat completions, polled predictions, routing and retries."""

from noder.providers.errors import (
    AuthenticationError,
    GraphCycleError,
    MediaSaveError,
    NodeValidationError,
    NoderError,
    PredictionCanceledError,
    PredictionFailedError,
    PredictionTimeoutError,
    ProviderHTTPError,
    ProviderRequestError,
    UnexpectedOutputError,
)
from noder.providers.openrouter import ChatCompletion, OpenRouterClient
from noder.providers.replicate import (
    PollProgress,
    Prediction,
    PredictionStatus,
    ReplicateClient,
    resolve_prediction,
)
from noder.providers.retry import is_retryable, with_retry
from noder.providers.router import DEFAULT_CHAT_OWNERS, ProviderKind, route
from noder.providers.schema import ModelSchema, ModelSchemaCache

__all__ = [
    # Errors
    "NoderError",
    "NodeValidationError",
    "AuthenticationError",
    "ProviderHTTPError",
    "ProviderRequestError",
    "PredictionFailedError",
    "PredictionCanceledError",
    "PredictionTimeoutError",
    "UnexpectedOutputError",
    "GraphCycleError",
    "MediaSaveError",
    # Routing and retries
    "ProviderKind",
    "DEFAULT_CHAT_OWNERS",
    "route",
    "with_retry",
    "is_retryable",
    # Clients
    "OpenRouterClient",
    "ChatCompletion",
    "ReplicateClient",
    "Prediction",
    "PredictionStatus",
    "PollProgress",
    "resolve_prediction",
    "ModelSchema",
    "ModelSchemaCache",
]
