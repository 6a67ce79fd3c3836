"""
Node Protocol - the units of work in a workflow graph.

A node carries a type tag, mutable form state (``data``) and the results of
its last run. Generation nodes call a provider; media, chip and display
nodes produce their value locally and save-media writes a file to disk.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from noder.providers.schema import node_data_value


class MediaType(StrEnum):
    """Kind of value flowing along an edge."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class NodeType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    UPSCALER = "upscaler"
    VIDEO = "video"
    AUDIO = "audio"
    MEDIA = "media"  # user-supplied file or URL
    CHIP = "chip"  # named text snippet for __CHIPID__ placeholders
    SAVE_MEDIA = "save-media"  # downloads an upstream media URL to disk
    DISPLAY = "display-text"
    MARKDOWN = "markdown"

    @property
    def is_generation(self) -> bool:
        return self in GENERATION_TYPES

    @property
    def media_type(self) -> MediaType:
        """Media type of the value this node produces."""
        if self == NodeType.UPSCALER:
            return MediaType.IMAGE
        if self in (NodeType.IMAGE, NodeType.VIDEO, NodeType.AUDIO):
            return MediaType(self.value)
        return MediaType.TEXT


GENERATION_TYPES = frozenset(
    {NodeType.TEXT, NodeType.IMAGE, NodeType.UPSCALER, NodeType.VIDEO, NodeType.AUDIO}
)


class NodeStatus(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


class NodeOutput(BaseModel):
    """The value a node hands to its downstream connections."""

    type: MediaType = MediaType.TEXT
    value: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_chip: bool = False
    chip_id: str | None = None


class NodeSpec(BaseModel):
    """
    A node in a workflow graph.

    Examples:
        NodeSpec(id="writer", type="text", data={"model": "openai/gpt-4o", "prompt": "..."})
        NodeSpec(id="render", type="image", data={"model": "black-forest-labs/flux-schnell"})

    Unknown type tags are kept as plain strings and run as passthrough nodes.
    """

    id: str
    type: NodeType | str = Field(description="Node type tag")
    data: dict[str, Any] = Field(
        default_factory=dict, description="Form state: model, prompt, settings, ..."
    )

    # Results of the last run, written back by the executor
    output: Any = None
    status: NodeStatus = NodeStatus.IDLE
    error: str | None = None
    last_run_duration_ms: int | None = None
    last_run_at: datetime | None = None

    model_config = {"extra": "allow"}

    @property
    def node_type(self) -> NodeType | None:
        """The type tag as a NodeType, or None for unknown tags."""
        try:
            return NodeType(self.type)
        except ValueError:
            return None

    @property
    def label(self) -> str:
        return str(self.data.get("title") or self.type or "Node")

    @property
    def model(self) -> str:
        return str(self.data.get("model") or "").strip()

    def get(self, key: str, default: Any = None) -> Any:
        """Form value by snake_case key, falling back to the camelCase spelling."""
        value = node_data_value(self.data, key)
        return default if value is None else value

    def last_output(self) -> NodeOutput | None:
        """The value from the previous run, wrapped for reuse by a skipped node."""
        if self.output is None:
            return None
        if isinstance(self.output, NodeOutput):
            return self.output
        node_type = self.node_type
        media_type = node_type.media_type if node_type else MediaType.TEXT
        return NodeOutput(type=media_type, value=self.output, metadata={"reused": True})
