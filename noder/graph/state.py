"""
Execution state carried between runs, enabling resume.

After a failed run the store keeps the outputs produced so far, the scope
the run covered and the nodes that failed. The next resume run seeds
itself from those outputs instead of recomputing them, minus anything that
failed, was asked to retry, or depends on a node being retried.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from noder.graph.edge import EdgeSpec
from noder.graph.node import NodeOutput
from noder.graph.scope import downstream_closure

logger = logging.getLogger(__name__)


@dataclass
class ResumePlan:
    """What a resume run starts from."""

    initial_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    failed_ids: set[str] = field(default_factory=set)
    retry_ids: set[str] = field(default_factory=set)

    @property
    def invalidated_ids(self) -> set[str]:
        """Nodes that will be recomputed regardless of cached outputs."""
        return self.failed_ids | self.retry_ids


@dataclass
class ExecutionState:
    """
    Outputs, scope and failures of the last unsuccessful run.

    One instance belongs to one executor; only a single run mutates it at
    a time.
    """

    node_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    scope_node_ids: list[str] = field(default_factory=list)
    failed_node_ids: set[str] = field(default_factory=set)

    def reset(self) -> None:
        self.node_outputs = {}
        self.scope_node_ids = []
        self.failed_node_ids = set()

    def has_resume_state(self) -> bool:
        return bool(self.node_outputs or self.scope_node_ids or self.failed_node_ids)

    def build_resume_plan(
        self,
        scoped_node_ids: Iterable[str],
        retry_node_ids: Iterable[str] | None,
        retry_failed: bool,
        scoped_edges: Sequence[EdgeSpec],
    ) -> ResumePlan:
        """
        Compute the seed outputs for a resume run.

        1. Keep stored outputs of in-scope nodes only.
        2. Drop the outputs of previously failed nodes.
        3. Retry set = requested retries, plus the failed set when
           ``retry_failed`` is set.
        4. Drop the outputs of every node downstream of the retry set
           (retry nodes included), following scoped edges only.
        """
        scoped = set(scoped_node_ids)
        initial_outputs = {
            node_id: output
            for node_id, output in self.node_outputs.items()
            if node_id in scoped
        }

        failed_ids = set(self.failed_node_ids)
        for node_id in failed_ids:
            initial_outputs.pop(node_id, None)

        retry_ids = set(retry_node_ids or [])
        if retry_failed:
            retry_ids |= failed_ids

        if retry_ids:
            for node_id in downstream_closure(retry_ids, scoped_edges):
                initial_outputs.pop(node_id, None)

        logger.debug(
            f"Resume plan: {len(initial_outputs)} cached, "
            f"{len(failed_ids)} failed, {len(retry_ids)} retried"
        )
        return ResumePlan(
            initial_outputs=initial_outputs, failed_ids=failed_ids, retry_ids=retry_ids
        )

    def record_failure(
        self,
        node_outputs: dict[str, NodeOutput],
        scope_node_ids: Iterable[str],
        failed_node_ids: Iterable[str],
    ) -> None:
        """Persist an unsuccessful run so a later resume can continue it."""
        self.node_outputs = dict(node_outputs)
        self.scope_node_ids = list(scope_node_ids)
        self.failed_node_ids = set(failed_node_ids)

    def finish_run(
        self,
        success: bool,
        node_outputs: dict[str, NodeOutput],
        scope_node_ids: Iterable[str],
        failed_node_ids: Iterable[str],
    ) -> None:
        """Reset after a successful run, persist otherwise."""
        if success:
            self.reset()
        else:
            self.record_failure(node_outputs, scope_node_ids, failed_node_ids)
