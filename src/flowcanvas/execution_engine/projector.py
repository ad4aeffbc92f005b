"""
Result Projector

Folds ExecutionRun state into what the canvas shows: a status, output and
error per node, an optional workflow-level error, and (when the workflow
is driven as a conversation) a transcript of input/output pairs.

Projection of a terminal run is idempotent: a run id is recorded the first
time its terminal state is projected, and later calls for it are ignored.
Only the most recent PROJECTED_RUN_HISTORY run ids are remembered.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable
from uuid import uuid4

from flowcanvas.builder.constants import NodeStatus, RunStatus
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.builder.types import NodeID, RunID, TranscriptRecord
from flowcanvas.event_bus import RUN_EVENTS, EventBus
from flowcanvas.execution_engine.dispatcher import ExecutionRun
from flowcanvas.utilities.logging import get_logger

logger = get_logger("execution_engine.projector")

# Terminal run ids remembered for idempotent projection
PROJECTED_RUN_HISTORY = 32


@dataclass
class NodeState:
    status: NodeStatus = NodeStatus.IDLE
    output: Any = None
    error: Optional[str] = None


@runtime_checkable
class TranscriptSink(Protocol):
    """Receives one record per completed conversational run."""

    def append(self, record: TranscriptRecord) -> None:
        ...


class InMemoryTranscriptSink:
    def __init__(self) -> None:
        self.records: List[TranscriptRecord] = []

    def append(self, record: TranscriptRecord) -> None:
        self.records.append(record)


class ResultProjector:
    """
    :param graph: Graph whose nodes receive the projected state.
    :param sink: Where transcript records are emitted.
    :param conversational: Record a transcript entry per terminal run.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        sink: Optional[TranscriptSink] = None,
        conversational: bool = False,
    ) -> None:
        self.graph = graph
        self.sink: TranscriptSink = sink if sink is not None else InMemoryTranscriptSink()
        self.conversational = conversational
        self.transcript: List[TranscriptRecord] = []
        self.workflow_error: Optional[str] = None
        self._states: Dict[NodeID, NodeState] = {}
        self._current_run: Optional[RunID] = None
        self._projected: Deque[RunID] = deque(maxlen=PROJECTED_RUN_HISTORY)

    def subscribe(self, bus: EventBus) -> None:
        """Project every run transition published on ``bus``."""
        for event_type in RUN_EVENTS:
            bus.subscribe(event_type, self._on_run_event)

    def _on_run_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        run = payload.get("run")
        if isinstance(run, ExecutionRun):
            self.project(run)

    def attach(self, graph: WorkflowGraph) -> None:
        self.graph = graph
        self.reset()

    def reset(self) -> None:
        """Return every node to idle and clear the workflow error."""
        self._states.clear()
        self.workflow_error = None
        self._current_run = None

    def node_state(self, node_id: NodeID) -> NodeState:
        return self._states.get(node_id) or NodeState()

    @property
    def node_states(self) -> Dict[NodeID, NodeState]:
        return {node_id: self.node_state(node_id) for node_id in self.graph.nodes}

    def project(self, run: ExecutionRun) -> None:
        if run.id in self._projected:
            logger.debug("Run %s already projected", run.id)
            return
        if run.id != self._current_run:
            self.reset()
            self._current_run = run.id

        if run.status is RunStatus.RUNNING:
            requested = [node["id"] for node in run.request["nodes"]] if run.request else []
            for node_id in [*requested, *run.partial_outputs]:
                if node_id in self.graph.nodes:
                    self._states[node_id] = NodeState(NodeStatus.RUNNING, output=run.partial_outputs.get(node_id))
        elif run.status is RunStatus.SUCCEEDED:
            self._states.clear()
            for node_id, value in run.outputs.items():
                if node_id in self.graph.nodes:
                    self._states[node_id] = NodeState(NodeStatus.SUCCESS, output=value)
        elif run.status is RunStatus.FAILED:
            self._states.clear()
            attributed = [node_id for node_id in run.error_node_ids if node_id in self.graph.nodes]
            for node_id in attributed:
                self._states[node_id] = NodeState(NodeStatus.ERROR, error=run.error)
            if not attributed:
                self.workflow_error = run.error

        if run.is_terminal:
            self._projected.append(run.id)
            if self.conversational:
                self._record(run)

    def top_level_output(self, run: ExecutionRun) -> Any:
        """
        The run's answer: the output of the single sink node, or a mapping
        of sink node outputs when there are several.
        """
        sinks = {node_id: run.outputs[node_id] for node_id in self.graph.sink_nodes() if node_id in run.outputs}
        if len(sinks) == 1:
            return next(iter(sinks.values()))
        if sinks:
            return sinks
        return dict(run.outputs) or None

    def _record(self, run: ExecutionRun) -> None:
        record: TranscriptRecord = {
            "id": f"msg-{uuid4().hex[:12]}",
            "run_id": run.id,
            "workflow_id": run.workflow_id,
            "timestamp": (run.finished_at or run.submitted_at).isoformat(),
            "input": run.input_data,
            "output": self.top_level_output(run) if run.status is RunStatus.SUCCEEDED else None,
            "error": run.error,
        }
        self.transcript.append(record)
        self.sink.append(record)
