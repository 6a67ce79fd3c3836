"""
Generation Invoker - runs one node against its provider.

The invoker turns a node's form state and gathered inputs into a single
NodeOutput:

    validate model → collect inputs (+ chip placeholders) → route (text only)
        → chat path:  one chat-completion call, first choice content
        → poll path:  schema-driven (or fallback) input, create + poll
    → extract result

Non-generation nodes (media, chip, display) produce their value locally;
save-media nodes download their input to disk.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from noder.config import RuntimeConfig
from noder.credentials import CredentialManager
from noder.graph.inputs import (
    ConnectedInputs,
    NodeInputs,
    collect_chip_values,
    iter_inputs,
    replace_chip_placeholders,
)
from noder.graph.node import MediaType, NodeOutput, NodeSpec, NodeType
from noder.providers.errors import (
    AuthenticationError,
    NodeValidationError,
    UnexpectedOutputError,
)
from noder.providers.media import save_media, url_to_data_url
from noder.providers.openrouter import OpenRouterClient
from noder.providers.replicate import PollProgress, ReplicateClient, resolve_prediction
from noder.providers.router import ProviderKind, route
from noder.providers.schema import (
    ModelSchema,
    ModelSchemaCache,
    build_input,
    node_data_value,
    validate_connected_inputs,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PollProgress], Any]

MEDIA_TYPES = frozenset(m.value for m in MediaType)

# file URLs on the prediction API need the account token
REPLICATE_FILE_PREFIX = "https://api.replicate.com/"


def extract_result(output: Any, media_type: MediaType | str) -> Any:
    """
    Turn raw provider output into a node value.

    - list: text nodes join the items, other nodes take the first item
    - str: unchanged
    - other values: JSON text for text nodes, unchanged otherwise

    Raises:
        UnexpectedOutputError: no output, or an empty list for a media node
    """
    is_text = MediaType(media_type) == MediaType.TEXT

    if isinstance(output, list):
        if is_text:
            return "".join("" if item is None else str(item) for item in output)
        if output:
            return output[0]
        raise UnexpectedOutputError("Unexpected output format: empty output list")
    if isinstance(output, str):
        return output
    if output is None:
        raise UnexpectedOutputError("Unexpected output format: prediction returned no output")
    if is_text:
        return json.dumps(output)
    return output


class GenerationInvoker:
    """
    Executes single nodes for the workflow executor.

    Clients are built lazily from the credentials provider so keys added
    while the process runs are picked up; tests inject ready-made clients.
    """

    def __init__(
        self,
        *,
        credentials: CredentialManager | None = None,
        config: RuntimeConfig | None = None,
        chat_client: OpenRouterClient | None = None,
        poll_client: ReplicateClient | None = None,
        schema_cache: ModelSchemaCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            credentials: Source of provider API keys
            config: Polling, timeout and routing settings
            chat_client: Pre-built chat client (skips the key lookup)
            poll_client: Pre-built prediction client (skips the key lookup)
            schema_cache: Shared model schema cache
            http_client: Client for remote images and save-media downloads
        """
        self._credentials = credentials or CredentialManager()
        self._config = config or RuntimeConfig()
        self._chat_client = chat_client
        self._poll_client = poll_client
        self._schema_cache = schema_cache
        self._http_client = http_client

    # === CLIENTS ===

    def _chat(self) -> OpenRouterClient:
        if self._chat_client is not None:
            return self._chat_client
        api_key = self._credentials.get("openrouter")
        if not api_key:
            raise AuthenticationError(self._credentials.missing_message("openrouter"))
        return OpenRouterClient(
            api_key,
            base_url=self._config.openrouter_base_url,
            timeout=self._config.chat_timeout_seconds,
            max_attempts=self._config.chat_max_attempts,
            retry_delay=self._config.retry_base_delay_seconds,
        )

    def _poll(self) -> ReplicateClient:
        if self._poll_client is not None:
            return self._poll_client
        api_token = self._credentials.get("replicate")
        if not api_token:
            raise AuthenticationError(self._credentials.missing_message("replicate"))
        return ReplicateClient(
            api_token,
            base_url=self._config.replicate_base_url,
            timeout=self._config.request_timeout_seconds,
            max_attempts=self._config.poll_max_attempts,
            retry_delay=self._config.retry_base_delay_seconds,
        )

    def _schemas(self, client: ReplicateClient) -> ModelSchemaCache:
        if self._schema_cache is None:
            self._schema_cache = ModelSchemaCache(client)
        return self._schema_cache

    # === ENTRY POINT ===

    async def invoke(
        self,
        node: NodeSpec,
        inputs: NodeInputs,
        *,
        max_attempts: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> NodeOutput:
        """
        Run one node.

        Args:
            node: The node, with its form state in ``node.data``
            inputs: Upstream outputs keyed by target handle
            max_attempts: Poll budget; defaults to the configured budget
            on_progress: Called every 10th poll attempt

        Raises:
            NodeValidationError: missing model, prompt or unsupported inputs
            AuthenticationError: provider key missing
            ProviderHTTPError / ProviderRequestError: after transport retries
            PredictionError: failed, canceled or timed-out prediction
            MediaSaveError: a save-media node could not write its file
        """
        node_type = node.node_type
        if node_type is None:
            logger.warning(f"Unknown node type '{node.type}' on {node.id}; passing input through")
            return self._passthrough(inputs)
        if node_type == NodeType.SAVE_MEDIA:
            return await self._save_media(node, inputs)
        if not node_type.is_generation:
            return self._run_local(node, node_type, inputs)

        model = node.model
        if not model:
            raise NodeValidationError(f"{node.label}: no model selected")

        connected = ConnectedInputs.from_inputs(inputs)
        chip_values = collect_chip_values(inputs, node.data)
        connected.text = [replace_chip_placeholders(str(t), chip_values) for t in connected.text]
        form = self._form_with_chips(node, chip_values)
        self._apply_fallback_media(node_type, node, connected)

        prompt = str(connected.first("text") or form.get("prompt") or "")
        self._check_inputs(node_type, connected, prompt)

        # only text nodes may go to the chat provider; media generation always polls
        if node_type == NodeType.TEXT:
            kind = route(model, self._config.chat_owners)
        else:
            kind = ProviderKind.POLL
        logger.info(
            f"Running {node_type} node {node.id} via {kind}",
            extra={"node_id": node.id, "model": model, "provider": kind.value},
        )

        media_type = node_type.media_type
        if kind == ProviderKind.CHAT:
            value = await self._invoke_chat(model, prompt, form, connected)
            return NodeOutput(
                type=media_type,
                value=value,
                metadata={"model": model, "provider": "openrouter"},
            )

        output, prediction_id = await self._invoke_poll(
            node_type,
            node,
            model,
            prompt,
            form,
            connected,
            max_attempts=max_attempts or self._config.max_poll_attempts,
            on_progress=on_progress,
        )
        return NodeOutput(
            type=media_type,
            value=extract_result(output, media_type),
            metadata={"model": model, "provider": "replicate", "prediction_id": prediction_id},
        )

    # === INPUT PREPARATION ===

    @staticmethod
    def _form_with_chips(node: NodeSpec, chip_values: dict[str, str]) -> dict[str, Any]:
        form = dict(node.data)
        for key in ("prompt", "negative_prompt", "negativePrompt"):
            if isinstance(form.get(key), str):
                form[key] = replace_chip_placeholders(form[key], chip_values)
        return form

    @staticmethod
    def _apply_fallback_media(
        node_type: NodeType, node: NodeSpec, connected: ConnectedInputs
    ) -> None:
        """URLs typed into the node stand in for missing connections."""
        if node_type in (NodeType.UPSCALER, NodeType.VIDEO) and not connected.image:
            image_url = str(node.get("image_url") or "").strip()
            if image_url:
                connected.image = [image_url]
        if node_type == NodeType.VIDEO and not connected.video:
            video_url = str(node.get("video_url") or "").strip()
            if video_url:
                connected.video = [video_url]

    @staticmethod
    def _check_inputs(node_type: NodeType, connected: ConnectedInputs, prompt: str) -> None:
        if node_type == NodeType.TEXT:
            if connected.video or connected.audio:
                raise NodeValidationError(
                    "Text: video/audio inputs are not supported for this node."
                )
            if not prompt.strip():
                raise NodeValidationError("No prompt provided")
        elif node_type == NodeType.AUDIO:
            if connected.has_media:
                raise NodeValidationError(
                    "Audio Generation: only text prompt inputs are supported."
                )
            if not prompt.strip():
                raise NodeValidationError("No prompt provided")
        elif node_type == NodeType.UPSCALER:
            if not connected.image:
                raise NodeValidationError("Upscaler: connect an image or provide an image URL.")
        elif node_type == NodeType.VIDEO:
            if not prompt.strip() and not (connected.image or connected.video):
                raise NodeValidationError("Video: provide a prompt or connect a video/image input")

    # === CHAT PATH ===

    async def _invoke_chat(
        self,
        model: str,
        prompt: str,
        form: dict[str, Any],
        connected: ConnectedInputs,
    ) -> str:
        client = self._chat()
        if not prompt.strip():
            raise NodeValidationError("No prompt provided")

        messages: list[dict[str, Any]] = []
        system_prompt = form.get("system_prompt") or form.get("systemPrompt")
        if isinstance(system_prompt, str) and system_prompt.strip():
            messages.append({"role": "system", "content": system_prompt})

        image = connected.first("image")
        if image:
            image_url = await url_to_data_url(
                str(image),
                http_client=self._http_client,
                timeout=self._config.request_timeout_seconds,
                base_delay=self._config.retry_base_delay_seconds,
            )
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            )
        else:
            messages.append({"role": "user", "content": prompt})

        completion = await client.chat_completion(
            model, messages, timeout=self._config.chat_timeout_seconds
        )
        return completion.first_content()

    # === POLL PATH ===

    async def _fetch_schema(self, client: ReplicateClient, model: str) -> ModelSchema | None:
        try:
            return await self._schemas(client).fetch(model)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Schema fetch failed for {model}, using fallback input: {e}")
            return None

    async def _invoke_poll(
        self,
        node_type: NodeType,
        node: NodeSpec,
        model: str,
        prompt: str,
        form: dict[str, Any],
        connected: ConnectedInputs,
        *,
        max_attempts: int,
        on_progress: ProgressCallback | None,
    ) -> tuple[Any, str]:
        client = self._poll()
        schema = await self._fetch_schema(client, model)

        if schema is not None:
            validate_connected_inputs(schema, connected, node.label)
            request_input = build_input(schema, connected, form)
        else:
            request_input = self._fallback_input(node_type, node, prompt, form, connected)

        logger.debug(f"Prediction input for {model}: {sorted(request_input)}")

        prediction = await client.create_prediction(model, request_input)
        prediction = await client.poll_prediction(
            prediction,
            max_attempts=max_attempts,
            interval=self._config.poll_interval_seconds,
            on_progress=on_progress,
            progress_every=self._config.poll_progress_every,
        )
        return resolve_prediction(prediction, attempts=max_attempts), prediction.id

    @staticmethod
    def _fallback_input(
        node_type: NodeType,
        node: NodeSpec,
        prompt: str,
        form: dict[str, Any],
        connected: ConnectedInputs,
    ) -> dict[str, Any]:
        """Request body from well-known form fields when no schema is available."""

        def setting(key: str) -> Any:
            return node_data_value(form, key)

        body: dict[str, Any] = {}

        if node_type == NodeType.TEXT:
            body["prompt"] = prompt
            if connected.image:
                body["image"] = connected.image[0]
            system_prompt = setting("system_prompt")
            if isinstance(system_prompt, str) and system_prompt.strip():
                body["system_prompt"] = system_prompt
            if setting("temperature") is not None:
                body["temperature"] = setting("temperature")
            if setting("max_tokens"):
                body["max_tokens"] = setting("max_tokens")

        elif node_type == NodeType.IMAGE:
            if connected.video or connected.audio:
                raise NodeValidationError(
                    "Image Generation: video/audio inputs are not supported for this node."
                )
            if not prompt.strip():
                raise NodeValidationError("No prompt provided")
            body["prompt"] = prompt
            if len(connected.image) == 1:
                body["image"] = connected.image[0]
            elif connected.image:
                body["image_input"] = list(connected.image)
            negative_prompt = str(setting("negative_prompt") or "")
            if negative_prompt.strip():
                body["negative_prompt"] = negative_prompt
            for key in ("width", "height", "num_outputs"):
                if setting(key):
                    body[key] = setting(key)

        elif node_type == NodeType.UPSCALER:
            if connected.video or connected.audio:
                raise NodeValidationError(
                    "Upscaler: video/audio inputs are not supported for this node."
                )
            body["image"] = connected.image[0]
            if prompt.strip():
                body["prompt"] = prompt
            if setting("scale"):
                body["scale"] = setting("scale")

        elif node_type == NodeType.VIDEO:
            if connected.audio:
                raise NodeValidationError("Video: audio inputs are not supported for this node.")
            if prompt.strip():
                body["prompt"] = prompt
            if connected.video:
                body["video"] = connected.video[0]
            if connected.image:
                body["image"] = connected.image[0]
            for key in ("duration", "fps"):
                if setting(key):
                    body[key] = setting(key)

        elif node_type == NodeType.AUDIO:
            body["prompt"] = prompt
            if setting("duration"):
                body["duration"] = setting("duration")
            if setting("temperature") is not None:
                body["temperature"] = setting("temperature")

        if not body:
            raise NodeValidationError(f"{node.label}: no valid input for generation")
        return body

    # === LOCAL NODES ===

    def _run_local(self, node: NodeSpec, node_type: NodeType, inputs: NodeInputs) -> NodeOutput:
        if node_type == NodeType.MEDIA:
            media_type = str(node.get("media_type") or MediaType.IMAGE.value).lower()
            replicate_url = node.get("replicate_url")
            media_path = node.get("media_path") or ""
            return NodeOutput(
                type=media_type if media_type in MEDIA_TYPES else MediaType.IMAGE,
                value=replicate_url or media_path,
                metadata={"is_remote_url": bool(replicate_url), "local_path": media_path},
            )

        if node_type == NodeType.CHIP:
            return NodeOutput(
                type=MediaType.TEXT,
                value=str(node.get("content") or ""),
                is_chip=True,
                chip_id=str(node.get("chip_id") or node.id),
            )

        # display-text / markdown: show whatever text arrived
        texts = [str(item.value) for item in iter_inputs(inputs) if item.value is not None]
        return NodeOutput(
            type=MediaType.TEXT, value="\n\n".join(texts), metadata={"received": True}
        )

    async def _save_media(self, node: NodeSpec, inputs: NodeInputs) -> NodeOutput:
        """Download the first non-empty input (or ``data.url``) into the save folder."""
        url = str(node.get("url") or "")
        for item in iter_inputs(inputs):
            if item.value:
                url = str(item.value)
                break
        url = url.strip()
        if not url:
            raise NodeValidationError(
                "No file URL to save. Connect a media output or enter a URL."
            )

        headers = None
        if url.startswith(REPLICATE_FILE_PREFIX):
            api_token = self._credentials.get("replicate")
            if not api_token:
                raise AuthenticationError(self._credentials.missing_message("replicate"))
            headers = {"Authorization": f"Bearer {api_token}"}

        saved = await save_media(
            url,
            base_dir=self._config.save_media_dir,
            destination_folder=node.get("destination_folder"),
            filename=node.get("filename"),
            http_client=self._http_client,
            headers=headers,
            base_delay=self._config.retry_base_delay_seconds,
        )
        return NodeOutput(
            type=MediaType.TEXT,
            value=str(saved),
            metadata={"success": True, "source_url": url},
        )

    @staticmethod
    def _passthrough(inputs: NodeInputs) -> NodeOutput:
        first = next(iter_inputs(inputs), None)
        if first is None:
            return NodeOutput(type=MediaType.TEXT, value="", metadata={"passthrough": True})
        return first.model_copy(update={"metadata": {**first.metadata, "passthrough": True}})
