"""
Tests for model schema normalisation, field classification and request building.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from noder.graph.inputs import ConnectedInputs
from noder.graph.node import NodeSpec
from noder.providers.errors import NodeValidationError
from noder.providers.schema import (
    ImageRole,
    ModelSchemaCache,
    build_input,
    get_input_mapping,
    get_output_type,
    normalize_schema,
    validate_connected_inputs,
)


def _openapi(properties: dict, required=None, output=None) -> dict:
    return {
        "components": {
            "schemas": {
                "Input": {"type": "object", "properties": properties, "required": required or []},
                "Output": output or {"type": "string"},
                "aspect_ratio": {"type": "string", "enum": ["1:1", "16:9"]},
            }
        }
    }


IMG2IMG_PROPERTIES = {
    "prompt": {"type": "string", "x-order": 0},
    "image": {"type": "string", "format": "uri", "x-order": 1},
    "width": {"type": "integer", "default": 1024, "x-order": 2},
    "seed": {"type": "integer", "x-order": 3},
}


class TestNormalizeSchema:
    def test_resolves_all_of_refs(self):
        doc = _openapi(
            {
                "aspect_ratio": {
                    "allOf": [{"$ref": "#/components/schemas/aspect_ratio"}],
                    "default": "1:1",
                    "x-order": 2,
                }
            }
        )

        schema = normalize_schema(doc, "owner/model")

        field = schema.inputs["aspect_ratio"]
        assert field.type == "string"
        assert field.enum == ["1:1", "16:9"]
        assert field.default == "1:1"
        assert field.has_default
        assert field.order == 2

    def test_required_and_order(self):
        schema = normalize_schema(_openapi(IMG2IMG_PROPERTIES, required=["prompt"]), "o/m")

        assert schema.inputs["prompt"].required
        assert not schema.inputs["image"].required
        assert [f.name for f in schema.ordered_fields()] == ["prompt", "image", "width", "seed"]

    def test_missing_input_component(self):
        schema = normalize_schema({"components": {"schemas": {}}}, "o/m")

        assert schema.inputs == {}


class TestInputMapping:
    def test_text_and_img2img_fields(self):
        mapping = get_input_mapping(normalize_schema(_openapi(IMG2IMG_PROPERTIES), "o/m"))

        assert mapping.text == ["prompt"]
        assert [(f.field, f.role) for f in mapping.image] == [("image", ImageRole.IMG2IMG)]

    def test_mask_makes_image_primary(self):
        properties = {
            "prompt": {"type": "string"},
            "image": {"type": "string", "format": "uri"},
            "mask": {"type": "string", "format": "uri"},
        }

        mapping = get_input_mapping(normalize_schema(_openapi(properties), "o/m"))

        assert [f.field for f in mapping.mask] == ["mask"]
        assert mapping.image[0].role == ImageRole.PRIMARY
        assert mapping.usable_image_fields == []

    def test_style_reference_role(self):
        properties = {"style_image": {"type": "string", "format": "uri"}}

        mapping = get_input_mapping(normalize_schema(_openapi(properties), "o/m"))

        assert mapping.image[0].role == ImageRole.STYLE_REFERENCE

    def test_array_image_field(self):
        properties = {
            "input_images": {
                "type": "array",
                "items": {"type": "string", "format": "uri"},
                "maxItems": 4,
            }
        }

        mapping = get_input_mapping(normalize_schema(_openapi(properties), "o/m"))

        entry = mapping.image[0]
        assert entry.is_array
        assert entry.max_items == 4

    def test_video_and_audio_by_media_type(self):
        properties = {
            "clip": {"type": "string", "format": "uri", "contentMediaType": "video/mp4"},
            "voice": {"type": "string", "format": "uri", "contentMediaType": "audio/wav"},
            "audio_file": {"type": "string", "format": "uri"},
        }

        mapping = get_input_mapping(normalize_schema(_openapi(properties), "o/m"))

        assert [f.field for f in mapping.video] == ["clip"]
        assert [f.field for f in mapping.audio] == ["voice", "audio_file"]

    def test_output_type(self):
        image_out = {"type": "array", "items": {"type": "string", "format": "uri"}}

        assert get_output_type(normalize_schema(_openapi({}, output=image_out), "o/m")) == "image"
        assert get_output_type(normalize_schema(_openapi({}), "o/m")) == "text"


class TestBuildInput:
    def setup_method(self):
        self.schema = normalize_schema(_openapi(IMG2IMG_PROPERTIES), "o/m")

    def test_connected_inputs_take_precedence(self):
        connected = ConnectedInputs(text=["from edge"], image=["https://x/a.png"])

        body = build_input(self.schema, connected, {"prompt": "form prompt", "width": 512})

        assert body == {"prompt": "from edge", "image": "https://x/a.png", "width": 512}

    def test_form_prompt_and_schema_defaults(self):
        body = build_input(self.schema, ConnectedInputs(), {"prompt": "a cat"})

        assert body == {"prompt": "a cat", "width": 1024}

    def test_camel_case_form_values(self):
        schema = normalize_schema(
            _openapi({"num_outputs": {"type": "integer", "default": 1}}), "o/m"
        )

        assert build_input(schema, ConnectedInputs(), {"numOutputs": 3}) == {"num_outputs": 3}

    def test_node_get_reads_form_values_the_same_way(self):
        node = NodeSpec(id="n", type="image", data={"numOutputs": 3, "seed": None})

        assert node.get("num_outputs") == 3
        assert node.get("seed", 7) == 7
        assert build_input(self.schema, ConnectedInputs(), node.data) == {"width": 1024}

    def test_array_field_receives_all_images(self):
        items = {"type": "string", "format": "uri"}
        schema = normalize_schema(
            _openapi({"input_images": {"type": "array", "items": items}}), "o/m"
        )
        connected = ConnectedInputs(image=["a.png", "b.png"])

        assert build_input(schema, connected, {}) == {"input_images": ["a.png", "b.png"]}

    def test_mask_and_primary_fields_never_filled(self):
        properties = {
            "image": {"type": "string", "format": "uri"},
            "mask": {"type": "string", "format": "uri"},
        }
        schema = normalize_schema(_openapi(properties), "o/m")

        assert build_input(schema, ConnectedInputs(image=["a.png"]), {}) == {}


class TestValidateConnectedInputs:
    def test_rejects_unsupported_media(self):
        schema = normalize_schema(_openapi({"prompt": {"type": "string"}}), "o/text-only")

        with pytest.raises(NodeValidationError) as exc_info:
            validate_connected_inputs(schema, ConnectedInputs(image=["a.png"]), "Render")

        assert str(exc_info.value) == (
            'Render: model "o/text-only" does not accept image inputs.'
        )

    def test_rejects_several_inputs_for_single_field(self):
        schema = normalize_schema(_openapi(IMG2IMG_PROPERTIES), "o/m")

        with pytest.raises(NodeValidationError, match="accepts a single image input, but 2"):
            validate_connected_inputs(schema, ConnectedInputs(image=["a", "b"]), "Render")

    def test_inpainting_only_model_ignores_image(self):
        properties = {
            "image": {"type": "string", "format": "uri"},
            "mask": {"type": "string", "format": "uri"},
        }
        schema = normalize_schema(_openapi(properties), "o/inpaint")

        validate_connected_inputs(schema, ConnectedInputs(image=["a.png"]), "Render")

    def test_accepts_matching_inputs(self):
        schema = normalize_schema(_openapi(IMG2IMG_PROPERTIES), "o/m")

        validate_connected_inputs(schema, ConnectedInputs(text=["x"], image=["a"]), "Render")


class TestModelSchemaCache:
    def _client(self, model_data):
        client = MagicMock()
        client.get_model = AsyncMock(return_value=model_data)
        return client

    @pytest.mark.asyncio
    async def test_fetches_once_per_model(self):
        client = self._client({"latest_version": {"openapi_schema": _openapi(IMG2IMG_PROPERTIES)}})
        cache = ModelSchemaCache(client)

        first = await cache.fetch("owner/model:abc")
        second = await cache.fetch("owner/model:abc")

        assert first is second
        client.get_model.assert_awaited_once_with("owner", "model")
        assert cache.get_cached("owner/model:abc") is first

    @pytest.mark.asyncio
    async def test_invalid_model_id(self):
        cache = ModelSchemaCache(self._client({}))

        with pytest.raises(NodeValidationError, match="Invalid model ID format"):
            await cache.fetch("no-owner")

    @pytest.mark.asyncio
    async def test_missing_schema(self):
        cache = ModelSchemaCache(self._client({"latest_version": None}))

        with pytest.raises(NodeValidationError, match="No schema found"):
            await cache.fetch("owner/model")

    @pytest.mark.asyncio
    async def test_clear(self):
        client = self._client({"latest_version": {"openapi_schema": _openapi({})}})
        cache = ModelSchemaCache(client)
        await cache.fetch("owner/model")

        cache.clear()

        assert cache.get_cached("owner/model") is None
