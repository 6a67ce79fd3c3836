"""
noder - execution engine for node-based generative AI workflows.

Nodes (text, image, video, audio, ...) call chat-completion or
prediction providers; edges carry outputs downstream. The executor runs a
whole graph or a targeted slice of it, and resumes failed runs without
recomputing finished work.
"""

from noder.config import RuntimeConfig
from noder.credentials import CredentialManager
from noder.graph import (
    EdgeSpec,
    ExecutionResult,
    ExecutionState,
    GenerationInvoker,
    GraphSpec,
    NodeOutput,
    NodeSpec,
    NodeType,
    RunStatus,
    WorkflowExecutor,
    resolve_scope,
)
from noder.observability import configure_logging
from noder.providers import ProviderKind, route
from noder.runtime import EventBus, EventType, WorkflowEvent

__version__ = "0.1.0"

__all__ = [
    "RuntimeConfig",
    "CredentialManager",
    "EdgeSpec",
    "GraphSpec",
    "NodeSpec",
    "NodeType",
    "NodeOutput",
    "ExecutionState",
    "ExecutionResult",
    "GenerationInvoker",
    "RunStatus",
    "WorkflowExecutor",
    "resolve_scope",
    "ProviderKind",
    "route",
    "EventBus",
    "EventType",
    "WorkflowEvent",
    "configure_logging",
]
