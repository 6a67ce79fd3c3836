"""
Tests for input gathering, chip collection and placeholder replacement.
"""

from noder.graph.edge import EdgeSpec
from noder.graph.inputs import (
    ConnectedInputs,
    collect_chip_values,
    gather_node_inputs,
    replace_chip_placeholders,
)
from noder.graph.node import NodeOutput


def _text(value, **kwargs) -> NodeOutput:
    return NodeOutput(type="text", value=value, **kwargs)


def _chip(chip_id, value) -> NodeOutput:
    return NodeOutput(type="text", value=value, is_chip=True, chip_id=chip_id)


class TestGatherNodeInputs:
    def test_single_edge_gives_single_value(self):
        edges = [EdgeSpec(source="a", target="c")]
        outputs = {"a": _text("hello")}

        inputs = gather_node_inputs("c", edges, outputs)

        assert inputs == {"default": outputs["a"]}

    def test_several_edges_on_one_handle_give_list(self):
        edges = [
            EdgeSpec(source="a", target="c"),
            EdgeSpec(source="b", target="c"),
            EdgeSpec(source="b", target="c", target_handle="style"),
        ]
        outputs = {"a": _text("one"), "b": _text("two")}

        inputs = gather_node_inputs("c", edges, outputs)

        assert [o.value for o in inputs["default"]] == ["one", "two"]
        assert inputs["style"].value == "two"

    def test_sources_without_output_are_ignored(self):
        edges = [EdgeSpec(source="a", target="c"), EdgeSpec(source="b", target="c")]

        inputs = gather_node_inputs("c", edges, {"b": _text("two")})

        assert inputs["default"].value == "two"

    def test_no_incoming_edges(self):
        assert gather_node_inputs("c", [EdgeSpec(source="c", target="d")], {}) == {}


class TestConnectedInputs:
    def test_groups_by_media_type_and_skips_chips(self):
        inputs = {
            "default": [
                _text("prompt"),
                NodeOutput(type="image", value="https://x/a.png"),
                _chip("STYLE", "watercolor"),
                _text(""),
            ],
            "audio": NodeOutput(type="audio", value="https://x/a.mp3"),
        }

        connected = ConnectedInputs.from_inputs(inputs)

        assert connected.text == ["prompt"]
        assert connected.image == ["https://x/a.png"]
        assert connected.audio == ["https://x/a.mp3"]
        assert connected.first("video") is None
        assert connected.has_media

    def test_text_only_has_no_media(self):
        assert not ConnectedInputs(text=["x"]).has_media


class TestChips:
    def test_collects_connected_chips(self):
        inputs = {"default": [_chip("STYLE", "watercolor"), _text("not a chip")]}

        assert collect_chip_values(inputs) == {"STYLE": "watercolor"}

    def test_connected_chip_overrides_stored_value(self):
        inputs = {"default": _chip("STYLE", "oil")}
        node_data = {"chipValues": {"STYLE": "watercolor", "MOOD": "calm"}}

        assert collect_chip_values(inputs, node_data) == {"STYLE": "oil", "MOOD": "calm"}

    def test_replaces_placeholders_case_insensitively(self):
        text = "A __style__ painting, __STYLE__ again, __MOOD__ untouched"

        result = replace_chip_placeholders(text, {"STYLE": "watercolor"})

        assert result == "A watercolor painting, watercolor again, __MOOD__ untouched"

    def test_replacement_keeps_backslashes_literal(self):
        assert replace_chip_placeholders("__P__", {"P": r"C:\new\dir"}) == r"C:\new\dir"

    def test_empty_inputs_leave_text_unchanged(self):
        assert replace_chip_placeholders("__X__", {}) == "__X__"
        assert replace_chip_placeholders("", {"X": "y"}) == ""
