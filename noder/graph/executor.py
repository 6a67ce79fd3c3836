"""
Workflow Executor - runs workflow graphs.

The executor:
1. Resolves the run's scope (targets + their upstream closure, or a stored
   scope when resuming)
2. Seeds outputs from the execution state store (resume)
3. Runs every node whose upstream outputs are all present
4. Emits lifecycle events and writes results back onto the nodes
5. Persists or resets the execution state and returns a summary
"""

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

from noder.config import RuntimeConfig
from noder.graph.edge import GraphSpec
from noder.graph.inputs import NodeInputs, gather_node_inputs
from noder.graph.node import NodeOutput, NodeSpec, NodeStatus
from noder.graph.scope import ExecutionScope, find_cycle, resolve_scope
from noder.graph.state import ExecutionState
from noder.observability import clear_trace_context, set_trace_context
from noder.providers.errors import GraphCycleError, NoderError
from noder.providers.replicate import PollProgress
from noder.runtime.event_bus import EventBus


class RunStatus(StrEnum):
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"  # continued past failures
    FAILED = "failed"  # aborted on the first failure, or a run-level error
    REFUSED = "refused"  # another run was in progress


class NodeInvoker(Protocol):
    async def invoke(
        self, node: NodeSpec, inputs: NodeInputs, *, on_progress: Any = None
    ) -> NodeOutput: ...


@dataclass
class NodeError:
    node_id: str
    message: str
    error_type: str = "Exception"


@dataclass
class ExecutionResult:
    """Result of running a workflow."""

    success: bool
    status: RunStatus
    run_id: str = ""
    duration_ms: int = 0
    completed_count: int = 0
    total_count: int = 0
    node_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    error: str | None = None
    errors: list[NodeError] = field(default_factory=list)
    executed_nodes: list[str] = field(default_factory=list)  # Node IDs invoked, in order
    skipped_nodes: list[str] = field(default_factory=list)  # Explicitly skipped
    blocked_nodes: list[str] = field(default_factory=list)  # Never ran
    failed_node_ids: list[str] = field(default_factory=list)
    node_durations_ms: dict[str, int] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        """Serializable summary for events and logs."""
        return {
            "success": self.success,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "completed_count": self.completed_count,
            "total_count": self.total_count,
            "error": self.error,
            "errors": [{"node_id": e.node_id, "message": e.message} for e in self.errors],
            "skipped_nodes": self.skipped_nodes,
            "blocked_nodes": self.blocked_nodes,
        }


@dataclass
class _Run:
    """Mutable bookkeeping of one run."""

    run_id: str
    scope: ExecutionScope = field(default_factory=ExecutionScope)
    node_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    settled: set[str] = field(default_factory=set)
    completed: int = 0
    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[NodeError] = field(default_factory=list)
    durations: dict[str, int] = field(default_factory=dict)
    writes_state: bool = True


class WorkflowExecutor:
    """
    Executes workflow graphs, one run at a time.

    Example:
        executor = WorkflowExecutor(invoker=GenerationInvoker(), event_bus=EventBus())

        result = await executor.run(graph, target_node_ids=["upscale"])
        if not result.success:
            result = await executor.run(graph, resume=True, retry_failed=True)
    """

    def __init__(
        self,
        invoker: NodeInvoker,
        *,
        state: ExecutionState | None = None,
        event_bus: EventBus | None = None,
        config: RuntimeConfig | None = None,
        enable_parallel_execution: bool | None = None,
    ):
        """
        Initialize the executor.

        Args:
            invoker: Runs a single node (normally a GenerationInvoker)
            state: Execution state store kept across runs for resume
            event_bus: Optional event bus for lifecycle events
            config: Runtime settings
            enable_parallel_execution: Run each wave of ready nodes concurrently
                (defaults to the configured value)
        """
        self.invoker = invoker
        self.state = state or ExecutionState()
        self._event_bus = event_bus
        self._config = config or RuntimeConfig()
        self.enable_parallel_execution = (
            self._config.enable_parallel_execution
            if enable_parallel_execution is None
            else enable_parallel_execution
        )
        self._running = False
        self.logger = logging.getLogger(__name__)

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(
        self,
        graph: GraphSpec,
        *,
        target_node_ids: list[str] | None = None,
        resume: bool = False,
        retry_node_ids: list[str] | None = None,
        retry_failed: bool = False,
        skip_failed: bool = False,
        continue_on_error: bool = False,
        skip_node_ids: list[str] | None = None,
        trigger: str = "manual",
    ) -> ExecutionResult:
        """
        Run a workflow, or the part of it the targets depend on.

        Args:
            graph: The workflow; nodes get their results written back
            target_node_ids: Run only these nodes and their upstream closure
            resume: Continue from the stored state of the last failed run
            retry_node_ids: Nodes (and their dependents) to recompute on resume
            retry_failed: Also recompute the previously failed nodes
            skip_failed: Bypass previously failed nodes instead of running them
            continue_on_error: Keep running independent nodes after a failure
            skip_node_ids: Nodes to bypass; their last output is reused if present
            trigger: Free-form label recorded in events and logs

        Returns:
            ExecutionResult; node and run-level failures are reported here
            rather than raised.
        """
        if self._running:
            self.logger.warning("⚠ Workflow is already running; ignoring run request")
            return ExecutionResult(
                success=False, status=RunStatus.REFUSED, error="Workflow is already running"
            )
        self._running = True

        run = _Run(run_id=uuid.uuid4().hex)
        start = time.monotonic()
        clear_trace_context()
        set_trace_context(run_id=run.run_id, trigger=trigger)
        result: ExecutionResult | None = None

        try:
            if not resume:
                self.state.reset()
            result = await self._execute(
                run,
                graph,
                target_node_ids=target_node_ids,
                resume=resume,
                retry_node_ids=retry_node_ids,
                retry_failed=retry_failed,
                skip_failed=skip_failed,
                continue_on_error=continue_on_error,
                skip_node_ids=skip_node_ids,
                trigger=trigger,
                start=start,
            )
            return result

        except NoderError as e:
            self.logger.error(f"❌ Workflow run failed: {e}")
            result = self._run_level_failure(run, e, start)
            await self._emit("emit_execution_failed", run.run_id, str(e), result.summary())
            return result

        except Exception as e:
            self.logger.exception(f"❌ Workflow run crashed: {e}")
            result = self._run_level_failure(run, e, start)
            await self._emit("emit_execution_failed", run.run_id, str(e), result.summary())
            return result

        finally:
            if run.writes_state:
                self.state.finish_run(
                    success=result is not None and result.success,
                    node_outputs=run.node_outputs,
                    scope_node_ids=run.scope.node_ids,
                    failed_node_ids=run.failed,
                )
            self._running = False
            clear_trace_context()

    async def _execute(
        self,
        run: _Run,
        graph: GraphSpec,
        *,
        target_node_ids: list[str] | None,
        resume: bool,
        retry_node_ids: list[str] | None,
        retry_failed: bool,
        skip_failed: bool,
        continue_on_error: bool,
        skip_node_ids: list[str] | None,
        trigger: str,
        start: float,
    ) -> ExecutionResult:
        stored_scope = set(self.state.scope_node_ids)
        if resume and stored_scope:
            run.scope = ExecutionScope(
                nodes=[n for n in graph.nodes if n.id in stored_scope],
                edges=[
                    e for e in graph.edges if e.source in stored_scope and e.target in stored_scope
                ],
            )
        else:
            run.scope = resolve_scope(graph.nodes, graph.edges, target_node_ids)

        scope = run.scope
        if not scope.nodes:
            self.logger.warning("⚠ No nodes to execute")
            run.writes_state = False
            return ExecutionResult(success=True, status=RunStatus.COMPLETED, run_id=run.run_id)

        cycle = find_cycle(scope.node_ids, scope.edges)
        if cycle:
            run.writes_state = False
            raise GraphCycleError(cycle)

        plan = self.state.build_resume_plan(
            scope.node_ids, retry_node_ids, retry_failed, scope.edges
        )
        skip_ids = set(skip_node_ids or [])
        if skip_failed:
            skip_ids |= plan.failed_ids
        allow_partial = continue_on_error or skip_failed

        run.node_outputs = dict(plan.initial_outputs)

        self.logger.info(
            f"🚀 Starting workflow run {run.run_id[:8]}: {len(scope.nodes)} node(s) in scope"
            + (f", {len(plan.initial_outputs)} cached" if plan.initial_outputs else "")
        )
        await self._emit("emit_execution_started", run.run_id, scope.node_ids, trigger)

        for node in scope.nodes:
            if node.id in plan.initial_outputs:
                run.settled.add(node.id)
                run.completed += 1
                await self._emit("emit_node_skipped", run.run_id, node.id, "cached")
            elif node.id not in skip_ids:
                node.error = None
        if run.completed:
            await self._emit("emit_progress", run.run_id, run.completed, len(scope.nodes))

        upstream: dict[str, set[str]] = defaultdict(set)
        for edge in scope.edges:
            upstream[edge.target].add(edge.source)

        aborted = False
        while not aborted:
            ready = [
                node
                for node in scope.nodes
                if node.id not in run.settled
                and all(source in run.node_outputs for source in upstream[node.id])
            ]
            if not ready:
                break

            to_skip = [n for n in ready if n.id in skip_ids]
            if to_skip:
                for node in to_skip:
                    await self._skip_node(run, node)
                continue

            batch = ready if self.enable_parallel_execution else ready[:1]
            if len(batch) > 1:
                self.logger.info(f"⑂ Running {len(batch)} nodes in parallel")
                outcomes = await asyncio.gather(*(self._run_node(run, n) for n in batch))
            else:
                outcomes = [await self._run_node(run, batch[0])]

            if not all(outcomes) and not allow_partial:
                aborted = True

        blocked = [n.id for n in scope.nodes if n.id not in run.settled]
        if blocked:
            self.logger.info(f"⏸ {len(blocked)} node(s) did not run: {blocked}")

        success = not run.errors
        if success:
            status = RunStatus.COMPLETED
        elif allow_partial:
            status = RunStatus.PARTIALLY_FAILED
        else:
            status = RunStatus.FAILED

        result = ExecutionResult(
            success=success,
            status=status,
            run_id=run.run_id,
            duration_ms=int((time.monotonic() - start) * 1000),
            completed_count=run.completed,
            total_count=len(scope.nodes),
            node_outputs=dict(run.node_outputs),
            error=run.errors[0].message if run.errors else None,
            errors=list(run.errors),
            executed_nodes=list(run.executed),
            skipped_nodes=list(run.skipped),
            blocked_nodes=blocked,
            failed_node_ids=list(run.failed),
            node_durations_ms=dict(run.durations),
        )

        if success:
            self.logger.info(
                f"✓ Workflow run completed: {run.completed}/{len(scope.nodes)} nodes "
                f"in {result.duration_ms}ms"
            )
            await self._emit("emit_execution_completed", run.run_id, result.summary())
        else:
            self.logger.warning(
                f"✗ Workflow run {status}: {len(run.errors)} node(s) failed, "
                f"{run.completed}/{len(scope.nodes)} completed"
            )
            await self._emit("emit_execution_failed", run.run_id, result.error, result.summary())
        return result

    async def _skip_node(self, run: _Run, node: NodeSpec) -> None:
        run.settled.add(node.id)
        run.skipped.append(node.id)
        previous = node.last_output()
        if previous is not None:
            run.node_outputs[node.id] = previous
        node.status = NodeStatus.SKIPPED
        self.logger.info(
            f"⏭ Skipping node {node.id}"
            + (" (reusing last output)" if previous is not None else "")
        )
        await self._emit("emit_node_skipped", run.run_id, node.id, "skipped")
        await self._emit("emit_progress", run.run_id, run.completed, len(run.scope.nodes))

    async def _run_node(self, run: _Run, node: NodeSpec) -> bool:
        """Invoke one node; returns False if it failed."""
        set_trace_context(node_id=node.id, node_type=str(node.type))
        inputs = gather_node_inputs(node.id, run.scope.edges, run.node_outputs)

        node.status = NodeStatus.PROCESSING
        self.logger.info(f"▶ Node {node.id} ({node.type})")
        await self._emit("emit_node_started", run.run_id, node.id, str(node.type))

        async def on_progress(progress: PollProgress) -> None:
            self.logger.info(
                f"   ⏳ {node.id}: poll {progress.attempts}/{progress.max_attempts} "
                f"({progress.elapsed_seconds}s, {progress.status})"
            )
            await self._emit("emit_node_progress", run.run_id, node.id, progress.to_dict())

        start = time.monotonic()
        try:
            output = await self.invoker.invoke(node, inputs, on_progress=on_progress)
        except asyncio.CancelledError:
            node.status = NodeStatus.ERROR
            node.error = "Cancelled"
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            message = str(e) or type(e).__name__
            run.settled.add(node.id)
            run.failed.append(node.id)
            run.errors.append(NodeError(node.id, message, type(e).__name__))
            run.durations[node.id] = duration_ms
            node.status = NodeStatus.ERROR
            node.error = message
            node.last_run_duration_ms = duration_ms
            node.last_run_at = datetime.now(UTC)
            self.logger.error(f"   ✗ Node {node.id} failed: {message}")
            await self._emit("emit_node_failed", run.run_id, node.id, message, duration_ms)
            await self._emit("emit_progress", run.run_id, run.completed, len(run.scope.nodes))
            return False

        duration_ms = int((time.monotonic() - start) * 1000)
        run.settled.add(node.id)
        run.node_outputs[node.id] = output
        run.executed.append(node.id)
        run.durations[node.id] = duration_ms
        run.completed += 1

        node.output = output.value
        node.status = NodeStatus.COMPLETED
        node.error = None
        node.last_run_duration_ms = duration_ms
        node.last_run_at = datetime.now(UTC)

        self.logger.info(f"   ✓ Node {node.id} completed in {duration_ms}ms")
        await self._emit(
            "emit_node_completed",
            run.run_id,
            node.id,
            output.model_dump(mode="json"),
            duration_ms,
        )
        await self._emit("emit_progress", run.run_id, run.completed, len(run.scope.nodes))
        return True

    def _run_level_failure(self, run: _Run, error: Exception, start: float) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            status=RunStatus.FAILED,
            run_id=run.run_id,
            duration_ms=int((time.monotonic() - start) * 1000),
            completed_count=run.completed,
            total_count=len(run.scope.nodes),
            node_outputs=dict(run.node_outputs),
            error=str(error),
            errors=list(run.errors),
            executed_nodes=list(run.executed),
            skipped_nodes=list(run.skipped),
            failed_node_ids=list(run.failed),
            node_durations_ms=dict(run.durations),
        )

    async def _emit(self, method: str, *args: Any) -> None:
        if self._event_bus is not None:
            await getattr(self._event_bus, method)(*args)
