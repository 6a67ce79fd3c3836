"""
Replicate prediction client.

Predictions are asynchronous: ``create_prediction`` returns immediately
with a ``starting`` prediction and ``poll_prediction`` fetches it on a
fixed interval until it reaches a terminal status or the attempt budget
runs out.

API Reference: https://replicate.com/docs/reference/http
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx
from pydantic import BaseModel

from noder.providers.errors import (
    AuthenticationError,
    NodeValidationError,
    PredictionCanceledError,
    PredictionFailedError,
    PredictionTimeoutError,
    ProviderHTTPError,
    ProviderRequestError,
)
from noder.providers.retry import with_retry

logger = logging.getLogger(__name__)

REPLICATE_BASE_URL = "https://api.replicate.com/v1"

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_DELAY = 1.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_POLL_ATTEMPTS = 300
PROGRESS_EVERY = 10


class PredictionStatus(StrEnum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset(
    {PredictionStatus.SUCCEEDED, PredictionStatus.FAILED, PredictionStatus.CANCELED}
)


class Prediction(BaseModel):
    """A remote generation job."""

    id: str
    status: PredictionStatus = PredictionStatus.STARTING
    output: Any = None
    error: Any = None
    logs: str | None = None

    model_config = {"extra": "allow"}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class PollProgress:
    """Reported to the progress callback every ``PROGRESS_EVERY`` attempts."""

    attempts: int
    max_attempts: int
    elapsed_seconds: float
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "elapsed_seconds": self.elapsed_seconds,
            "status": self.status,
        }


ProgressCallback = Callable[[PollProgress], Any]


def prediction_target(model: str) -> tuple[str, dict[str, Any]]:
    """
    Endpoint path and body fields for a model reference.

    ``owner/name`` runs the model's latest version through the model
    endpoint; ``owner/name:version`` and bare version ids go through the
    generic predictions endpoint with an explicit version.
    """
    model = model.strip()
    if not model:
        raise NodeValidationError("Model is required")
    if ":" in model:
        version = model.split(":", 1)[1]
        return "/predictions", {"version": version}
    if "/" in model:
        owner, name = model.split("/", 1)
        return f"/models/{owner}/{name}/predictions", {}
    return "/predictions", {"version": model}


class ReplicateClient:
    """Async client for Replicate predictions and model metadata."""

    def __init__(
        self,
        api_token: str | None,
        *,
        base_url: str = REPLICATE_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._http_client = http_client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Decode the body; raise ProviderHTTPError on non-2xx."""
        if not response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = None
            detail = data.get("detail") if isinstance(data, dict) else None
            message = detail or response.text or response.reason_phrase
            raise ProviderHTTPError(
                f"Replicate API error ({response.status_code}): {message}",
                status_code=response.status_code,
                data=data,
            )
        return response.json()

    async def _request(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self._api_token:
            raise AuthenticationError("Replicate API token is not configured")

        url = f"{self._base_url}{path}"
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, headers=self._headers, json=json, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=self._headers, json=json)
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"Replicate request timed out: {e}") from e
        except httpx.RequestError as e:
            raise ProviderRequestError(f"Replicate network error: {e}") from e
        return self._handle_response(response)

    async def _retried(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        operation_name: str,
        metadata: dict[str, Any] | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        return await with_retry(
            lambda: self._request(method, path, json=json),
            max_attempts=max_attempts or self._max_attempts,
            base_delay=self._retry_delay,
            operation_name=operation_name,
            metadata=metadata,
        )

    async def create_prediction(self, model: str, input: dict[str, Any]) -> Prediction:
        """Start a prediction for ``model`` with the given input."""
        path, body = prediction_target(model)
        body["input"] = input
        data = await self._retried(
            "POST",
            path,
            json=body,
            operation_name="replicate.create_prediction",
            metadata={"model": model, "input_keys": sorted(input)},
        )
        prediction = Prediction.model_validate(data)
        logger.info(
            f"Created prediction {prediction.id} for {model}",
            extra={"provider": "replicate", "model": model, "prediction_id": prediction.id},
        )
        return prediction

    async def get_prediction(self, prediction_id: str) -> Prediction:
        data = await self._retried(
            "GET",
            f"/predictions/{prediction_id}",
            operation_name="replicate.get_prediction",
            metadata={"prediction_id": prediction_id},
        )
        return Prediction.model_validate(data)

    async def cancel_prediction(self, prediction_id: str) -> Prediction:
        data = await self._retried(
            "POST",
            f"/predictions/{prediction_id}/cancel",
            operation_name="replicate.cancel_prediction",
            metadata={"prediction_id": prediction_id},
            max_attempts=2,
        )
        return Prediction.model_validate(data)

    async def get_model(self, owner: str, name: str) -> dict[str, Any]:
        """Model metadata, including ``latest_version.openapi_schema``."""
        return await self._retried(
            "GET",
            f"/models/{owner}/{name}",
            operation_name="replicate.get_model",
            metadata={"model": f"{owner}/{name}"},
        )

    async def poll_prediction(
        self,
        prediction: Prediction,
        *,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_progress: ProgressCallback | None = None,
        progress_every: int = PROGRESS_EVERY,
    ) -> Prediction:
        """
        Poll until the prediction is terminal or ``max_attempts`` fetches ran.

        Each attempt sleeps ``interval`` seconds and fetches the prediction.
        The returned prediction may still be non-terminal; see
        ``resolve_prediction``.
        """
        start = time.monotonic()
        attempts = 0
        while not prediction.is_terminal and attempts < max_attempts:
            await asyncio.sleep(interval)
            prediction = await self.get_prediction(prediction.id)
            attempts += 1

            if on_progress is not None and attempts % progress_every == 0:
                progress = PollProgress(
                    attempts=attempts,
                    max_attempts=max_attempts,
                    elapsed_seconds=round(time.monotonic() - start, 1),
                    status=prediction.status.value,
                )
                result = on_progress(progress)
                if asyncio.iscoroutine(result):
                    await result

        logger.debug(
            f"Prediction {prediction.id} is {prediction.status} after {attempts} polls",
            extra={"prediction_id": prediction.id, "attempts": attempts},
        )
        return prediction

    async def run_prediction(
        self,
        model: str,
        input: dict[str, Any],
        *,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_progress: ProgressCallback | None = None,
        progress_every: int = PROGRESS_EVERY,
    ) -> Any:
        """Create, poll and resolve a prediction; returns its raw output."""
        prediction = await self.create_prediction(model, input)
        prediction = await self.poll_prediction(
            prediction,
            max_attempts=max_attempts,
            interval=interval,
            on_progress=on_progress,
            progress_every=progress_every,
        )
        return resolve_prediction(prediction, attempts=max_attempts)


def resolve_prediction(prediction: Prediction, attempts: int = 0) -> Any:
    """
    Output of a succeeded prediction.

    Raises:
        PredictionFailedError: status ``failed``
        PredictionCanceledError: status ``canceled``
        PredictionTimeoutError: still running after the poll budget
    """
    if prediction.status == PredictionStatus.SUCCEEDED:
        return prediction.output
    if prediction.status == PredictionStatus.FAILED:
        raise PredictionFailedError(
            str(prediction.error) if prediction.error else "Prediction failed", prediction.id
        )
    if prediction.status == PredictionStatus.CANCELED:
        raise PredictionCanceledError("Prediction was canceled", prediction.id)
    raise PredictionTimeoutError("Prediction timed out", prediction.id, attempts=attempts)
