"""
Model input schemas for polled predictions.

Replicate publishes an OpenAPI document per model version. This module
normalises its ``Input`` component, classifies fields by the media they
accept, and builds a request body from connected inputs and node form
state. Schemas are cached per model id for the lifetime of the cache.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from noder.providers.errors import NodeValidationError

if TYPE_CHECKING:
    from noder.graph.inputs import ConnectedInputs
    from noder.providers.replicate import ReplicateClient

logger = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^#/components/schemas/(.+)$")
_URI_FORMATS = frozenset({"uri", "data-uri", "binary", "base64"})
DEFAULT_ORDER = 999


class ImageRole(StrEnum):
    STYLE_REFERENCE = "style_reference"
    IMG2IMG = "img2img"
    PRIMARY = "primary"  # inpainting source; only when the model has a mask field


@dataclass
class SchemaField:
    """One normalised input property."""

    name: str
    type: str | None = None
    format: str | None = None
    description: str | None = None
    default: Any = None
    has_default: bool = False
    enum: list[Any] | None = None
    minimum: float | None = None
    maximum: float | None = None
    content_media_type: str | None = None
    items: dict[str, Any] | None = None
    variants: list[dict[str, Any]] = field(default_factory=list)
    max_items: int | None = None
    required: bool = False
    order: int = DEFAULT_ORDER


@dataclass
class ModelSchema:
    model_id: str
    inputs: dict[str, SchemaField] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def ordered_fields(self) -> list[SchemaField]:
        return sorted(self.inputs.values(), key=lambda f: f.order)


@dataclass
class FieldMapping:
    field: str
    is_array: bool = False
    max_items: int | None = None
    role: ImageRole | None = None


@dataclass
class InputMapping:
    """Which schema fields receive which kind of connected input."""

    text: list[str] = field(default_factory=list)
    image: list[FieldMapping] = field(default_factory=list)
    video: list[FieldMapping] = field(default_factory=list)
    audio: list[FieldMapping] = field(default_factory=list)
    mask: list[FieldMapping] = field(default_factory=list)

    @property
    def usable_image_fields(self) -> list[FieldMapping]:
        return [
            f for f in self.image if f.role in (ImageRole.STYLE_REFERENCE, ImageRole.IMG2IMG)
        ]


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_schema(openapi_schema: dict[str, Any], model_id: str) -> ModelSchema:
    """Build a ModelSchema from a version's ``openapi_schema`` document."""
    components = (openapi_schema.get("components") or {}).get("schemas") or {}
    input_schema = components.get("Input") or {}
    output_schema = components.get("Output") or {}

    if not input_schema:
        logger.warning(f"No input schema found for {model_id}")

    def resolve_ref(ref: Any) -> dict[str, Any] | None:
        if not isinstance(ref, str):
            return None
        match = _REF_PATTERN.match(ref)
        if match and match.group(1) in components:
            return components[match.group(1)]
        return None

    def resolve_all_of(prop: dict[str, Any]) -> dict[str, Any]:
        all_of = prop.get("allOf")
        if not isinstance(all_of, list):
            return prop
        resolved = {k: v for k, v in prop.items() if k != "allOf"}
        for item in all_of:
            if isinstance(item, dict) and "$ref" in item:
                referenced = resolve_ref(item["$ref"])
                if referenced:
                    resolved = {**referenced, **resolved}
            elif isinstance(item, dict):
                resolved = {**item, **resolved}
        return resolved

    required = list(input_schema.get("required") or [])
    schema = ModelSchema(model_id=model_id, required=required, output=dict(output_schema))

    for name, raw_prop in (input_schema.get("properties") or {}).items():
        prop = resolve_all_of(raw_prop)
        schema.inputs[name] = SchemaField(
            name=name,
            type=prop.get("type"),
            format=prop.get("format"),
            description=prop.get("description") or raw_prop.get("description"),
            default=prop.get("default", raw_prop.get("default")),
            has_default="default" in prop or "default" in raw_prop,
            enum=prop.get("enum"),
            minimum=prop.get("minimum"),
            maximum=prop.get("maximum"),
            content_media_type=prop.get("contentMediaType"),
            items=prop.get("items"),
            variants=list(prop.get("anyOf") or prop.get("oneOf") or []),
            max_items=prop.get("maxItems"),
            required=name in required,
            order=_order(raw_prop, prop),
        )

    return schema


def _order(raw_prop: dict[str, Any], prop: dict[str, Any]) -> int:
    order = raw_prop.get("x-order", prop.get("x-order"))
    return DEFAULT_ORDER if order is None else order


# ---------------------------------------------------------------------------
# Field classification
# ---------------------------------------------------------------------------


def _resolve_definition(definition: dict[str, Any] | None) -> dict[str, Any]:
    """Use the first typed anyOf/oneOf/allOf variant when the field has no type."""
    if not definition:
        return {}
    if definition.get("type"):
        return definition
    for key in ("anyOf", "oneOf", "allOf"):
        variants = definition.get(key)
        if isinstance(variants, list):
            for variant in variants:
                if isinstance(variant, dict) and variant.get("type"):
                    return {**definition, **variant}
    return definition


def _field_definition(schema_field: SchemaField) -> dict[str, Any]:
    definition: dict[str, Any] = {
        "type": schema_field.type,
        "format": schema_field.format,
        "contentMediaType": schema_field.content_media_type,
        "items": schema_field.items,
        "maxItems": schema_field.max_items,
    }
    if schema_field.variants:
        definition["anyOf"] = schema_field.variants
    return _resolve_definition(definition)


def _is_uri_like(definition: dict[str, Any] | None) -> bool:
    return bool(definition) and definition.get("format") in _URI_FORMATS


def _is_media_type(definition: dict[str, Any] | None, prefix: str) -> bool:
    media_type = (definition or {}).get("contentMediaType")
    return isinstance(media_type, str) and media_type.startswith(prefix)


def get_input_mapping(schema: ModelSchema) -> InputMapping:
    """Classify schema fields into text, image, video, audio and mask slots."""
    mapping = InputMapping()

    for name, schema_field in schema.inputs.items():
        resolved = _field_definition(schema_field)
        lower = name.lower()
        is_array = resolved.get("type") == "array"
        items = _resolve_definition(resolved.get("items")) if is_array else {}
        max_items = items.get("maxItems") or resolved.get("maxItems")

        if resolved.get("type") == "string" and not resolved.get("format"):
            if "prompt" in lower or "text" in lower or "description" in lower:
                mapping.text.append(name)

        if "mask" in lower:
            mapping.mask.append(FieldMapping(field=name, is_array=is_array, max_items=max_items))
            continue

        image_by_media_type = _is_media_type(resolved, "image/") or (
            is_array and _is_media_type(items, "image/")
        )
        image_by_name = "image" in lower or "img" in lower or "photo" in lower
        if image_by_media_type or (
            image_by_name
            and (
                _is_uri_like(resolved)
                or (is_array and _is_uri_like(items))
                or resolved.get("type") == "string"
            )
        ):
            is_style_ref = "style" in lower or "reference" in lower or "ref_" in lower
            mapping.image.append(
                FieldMapping(
                    field=name,
                    is_array=is_array,
                    max_items=max_items,
                    role=ImageRole.STYLE_REFERENCE if is_style_ref else None,
                )
            )

        if _is_media_type(resolved, "video/") or (_is_uri_like(resolved) and "video" in lower):
            mapping.video.append(FieldMapping(field=name, is_array=is_array))

        if _is_media_type(resolved, "audio/") or (_is_uri_like(resolved) and "audio" in lower):
            mapping.audio.append(FieldMapping(field=name, is_array=is_array))

    # Plain image fields are the inpainting source when the model takes a mask
    pending_role = ImageRole.PRIMARY if mapping.mask else ImageRole.IMG2IMG
    for entry in mapping.image:
        if entry.role is None:
            entry.role = pending_role

    return mapping


def get_output_type(schema: ModelSchema) -> str:
    """Best-effort media type of a model's output: text, image or unknown."""
    output = schema.output
    if output.get("type") == "array" and (output.get("items") or {}).get("format") == "uri":
        return "image"
    if output.get("format") == "uri":
        return "image"
    if output.get("type") == "string":
        return "text"
    return "unknown"


# ---------------------------------------------------------------------------
# Request building and validation
# ---------------------------------------------------------------------------


def _to_camel_case(value: str) -> str:
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), value)


def node_data_value(node_data: dict[str, Any], field_name: str) -> Any:
    """Look up a form value by its snake_case or camelCase name."""
    value = node_data.get(field_name)
    if value is not None:
        return value
    camel = _to_camel_case(field_name)
    if camel != field_name:
        return node_data.get(camel)
    return None


def build_input(
    schema: ModelSchema, connected: ConnectedInputs, node_data: dict[str, Any]
) -> dict[str, Any]:
    """
    Build a prediction input from the schema.

    Precedence per field: connected inputs, then node form state, then the
    schema default. Inpainting (primary) and mask fields are never filled.
    """
    mapping = get_input_mapping(schema)
    body: dict[str, Any] = {}

    if connected.text and mapping.text:
        body[mapping.text[0]] = connected.text[0]

    prompt = node_data.get("prompt")
    if prompt and mapping.text:
        prompt_field = next(
            (f for f in mapping.text if f == "prompt"),
            next(
                (f for f in mapping.text if "prompt" in f and "negative" not in f),
                mapping.text[0],
            ),
        )
        body.setdefault(prompt_field, prompt)

    if connected.image:
        for entry in mapping.usable_image_fields:
            body[entry.field] = list(connected.image) if entry.is_array else connected.image[0]

    for kind in ("video", "audio"):
        values = getattr(connected, kind)
        if not values:
            continue
        for entry in getattr(mapping, kind):
            body[entry.field] = list(values) if entry.is_array else values[0]

    for name, schema_field in schema.inputs.items():
        if name in body:
            continue
        value = node_data_value(node_data, name)
        if value is not None:
            body[name] = value
        elif schema_field.has_default and schema_field.default is not None:
            body[name] = schema_field.default

    return body


def validate_connected_inputs(
    schema: ModelSchema, connected: ConnectedInputs, node_label: str
) -> None:
    """
    Reject connections the model cannot accept.

    Raises:
        NodeValidationError: a connected media type has no matching field,
            or several inputs feed a single-valued field
    """
    mapping = get_input_mapping(schema)
    usable_images = mapping.usable_image_fields
    unsupported: list[str] = []

    if connected.image and not usable_images:
        if any(f.role == ImageRole.PRIMARY for f in mapping.image):
            logger.warning(
                f"Image connected to model '{schema.model_id}' which only supports "
                "inpainting; the image will be ignored"
            )
        else:
            unsupported.append("image")
    if connected.video and not mapping.video:
        unsupported.append("video")
    if connected.audio and not mapping.audio:
        unsupported.append("audio")

    if unsupported:
        raise NodeValidationError(
            f'{node_label}: model "{schema.model_id}" does not accept '
            f"{', '.join(unsupported)} inputs."
        )

    for kind, entries in (
        ("image", usable_images),
        ("video", mapping.video),
        ("audio", mapping.audio),
    ):
        count = len(getattr(connected, kind))
        if count > 1 and entries and not any(e.is_array for e in entries):
            raise NodeValidationError(
                f'{node_label}: model "{schema.model_id}" accepts a single {kind} input, '
                f"but {count} are connected."
            )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class ModelSchemaCache:
    """Fetches model schemas through a ReplicateClient and keeps them in memory."""

    def __init__(self, client: ReplicateClient):
        self._client = client
        self._cache: dict[str, ModelSchema] = {}

    async def fetch(self, model_id: str) -> ModelSchema:
        """
        Schema for ``owner/name`` or ``owner/name:version``.

        Raises:
            NodeValidationError: malformed model id or no published schema
        """
        cached = self._cache.get(model_id)
        if cached is not None:
            return cached

        owner, _, name = model_id.split(":", 1)[0].partition("/")
        if not owner or not name:
            raise NodeValidationError(f"Invalid model ID format: {model_id}")

        model_data = await self._client.get_model(owner, name)
        openapi_schema = (model_data.get("latest_version") or {}).get("openapi_schema")
        if not openapi_schema:
            raise NodeValidationError(f"No schema found for model {model_id}")

        schema = normalize_schema(openapi_schema, model_id)
        self._cache[model_id] = schema
        logger.debug(f"Cached schema for {model_id} ({len(schema.inputs)} inputs)")
        return schema

    def get_cached(self, model_id: str) -> ModelSchema | None:
        return self._cache.get(model_id)

    def clear(self) -> None:
        self._cache.clear()
