"""Workflow graphs: nodes, edges, scope, resume state, invocation and execution."""

from noder.graph.edge import EdgeSpec, GraphSpec
from noder.graph.executor import ExecutionResult, NodeError, RunStatus, WorkflowExecutor
from noder.graph.inputs import (
    ConnectedInputs,
    NodeInputs,
    collect_chip_values,
    gather_node_inputs,
    replace_chip_placeholders,
)
from noder.graph.invoker import GenerationInvoker, extract_result
from noder.graph.node import MediaType, NodeOutput, NodeSpec, NodeStatus, NodeType
from noder.graph.scope import (
    ExecutionScope,
    downstream_closure,
    find_cycle,
    resolve_scope,
    upstream_closure,
)
from noder.graph.state import ExecutionState, ResumePlan

__all__ = [
    # Graph structure
    "NodeSpec",
    "NodeType",
    "NodeStatus",
    "MediaType",
    "NodeOutput",
    "EdgeSpec",
    "GraphSpec",
    # Scope
    "ExecutionScope",
    "resolve_scope",
    "downstream_closure",
    "upstream_closure",
    "find_cycle",
    # Resume state
    "ExecutionState",
    "ResumePlan",
    # Inputs
    "NodeInputs",
    "ConnectedInputs",
    "gather_node_inputs",
    "collect_chip_values",
    "replace_chip_placeholders",
    # Invocation and execution
    "GenerationInvoker",
    "extract_result",
    "WorkflowExecutor",
    "ExecutionResult",
    "NodeError",
    "RunStatus",
]
