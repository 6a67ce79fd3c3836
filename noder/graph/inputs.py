"""
Inputs of a node, assembled from upstream outputs.

Edges are grouped by target handle: a handle fed by one edge receives a
single NodeOutput, a handle fed by several receives a list. Chip outputs
travel along edges like any other value but are only used to fill
``__CHIPID__`` placeholders; they never count as prompt or media inputs.
"""

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from noder.graph.edge import EdgeSpec
from noder.graph.node import MediaType, NodeOutput

NodeInputs = dict[str, NodeOutput | list[NodeOutput]]


def gather_node_inputs(
    node_id: str, edges: Iterable[EdgeSpec], node_outputs: Mapping[str, NodeOutput]
) -> NodeInputs:
    """Inputs of ``node_id`` keyed by target handle, in edge order."""
    grouped: dict[str, list[NodeOutput]] = {}
    for edge in edges:
        if edge.target != node_id:
            continue
        output = node_outputs.get(edge.source)
        if output is None:
            continue
        grouped.setdefault(edge.target_handle, []).append(output)

    return {
        handle: outputs[0] if len(outputs) == 1 else outputs for handle, outputs in grouped.items()
    }


def iter_inputs(inputs: NodeInputs) -> Iterator[NodeOutput]:
    """Every input value, flattening multi-edge handles."""
    for value in inputs.values():
        if isinstance(value, list):
            yield from value
        else:
            yield value


@dataclass
class ConnectedInputs:
    """Non-chip input values grouped by media type."""

    text: list[Any] = field(default_factory=list)
    image: list[Any] = field(default_factory=list)
    video: list[Any] = field(default_factory=list)
    audio: list[Any] = field(default_factory=list)

    @classmethod
    def from_inputs(cls, inputs: NodeInputs) -> "ConnectedInputs":
        collected = cls()
        for item in iter_inputs(inputs):
            if item.is_chip or item.value in (None, ""):
                continue
            getattr(collected, MediaType(item.type).value).append(item.value)
        return collected

    def first(self, media_type: str) -> Any:
        values = getattr(self, media_type)
        return values[0] if values else None

    @property
    def has_media(self) -> bool:
        return bool(self.image or self.video or self.audio)


def collect_chip_values(inputs: NodeInputs, node_data: Mapping[str, Any] | None = None) -> dict:
    """
    Chip id → content for placeholder replacement.

    Values stored on the node (``chip_values``) are overridden by chips
    connected as inputs.
    """
    chip_values: dict[str, str] = {}
    if node_data:
        stored = node_data.get("chip_values") or node_data.get("chipValues") or {}
        chip_values.update({str(k): str(v) for k, v in stored.items()})

    for item in iter_inputs(inputs):
        if item.is_chip and item.chip_id:
            chip_values[item.chip_id] = "" if item.value is None else str(item.value)
    return chip_values


def replace_chip_placeholders(text: str, chip_values: Mapping[str, str]) -> str:
    """Replace every ``__CHIPID__`` (case-insensitive) with the chip's content."""
    if not text or not chip_values:
        return text
    for chip_id, value in chip_values.items():
        # Callable replacement keeps backslashes in chip content literal
        text = re.sub(
            f"__{re.escape(chip_id)}__", lambda _m, v=value: v, text, flags=re.IGNORECASE
        )
    return text
