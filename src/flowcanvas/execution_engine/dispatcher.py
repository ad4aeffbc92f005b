"""
Execution Dispatcher

Serializes a WorkflowGraph into an execution request, hands it to an
ExecutionTransport and folds the resulting events into an ExecutionRun.

Run lifecycle: pending -> running -> succeeded | failed. The terminal
transition happens exactly once; whatever arrives for a run after that
(late stream chunks, a second terminal marker) is discarded.

At most one run is in flight per dispatcher. Submitting while a run is
pending or running raises RunInProgress and leaves the active run alone.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from flowcanvas.builder.constants import (
    DEFAULT_INTERACTION_ID,
    TERMINAL_RUN_STATUSES,
    FailureReason,
    RunStatus,
)
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.builder.types import ExecutionRequest, NodeID, RunID, WorkflowID
from flowcanvas.event_bus import (
    RUN_CHUNK,
    RUN_FAILED,
    RUN_PENDING,
    RUN_STARTED,
    RUN_SUCCEEDED,
    EventBus,
)
from flowcanvas.exceptions import (
    ExecutionFailed,
    ExecutionTimeout,
    FlowCanvasError,
    RunCancelled,
    RunInProgress,
    TransportError,
    ValidationError,
)
from flowcanvas.execution_engine.transports import (
    ExecutionEvent,
    ExecutionTransport,
    RunError,
    RunResult,
    StreamChunk,
)
from flowcanvas.settings import Settings, get_settings
from flowcanvas.utilities.logging import get_logger

logger = get_logger("execution_engine.dispatcher")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


_FAILURE_ERRORS = {
    FailureReason.VALIDATION: ValidationError,
    FailureReason.EXECUTION: ExecutionFailed,
    FailureReason.TRANSPORT: TransportError,
    FailureReason.TIMEOUT: ExecutionTimeout,
    FailureReason.CANCELLED: RunCancelled,
}


class ExecutionRun:
    """
    One execution attempt of a workflow.

    State changes are made by the dispatcher only; each one is published
    on the bus with the run itself under ``"run"``.
    """

    def __init__(
        self,
        run_id: RunID,
        workflow_id: WorkflowID,
        input_data: Any = "",
        bus: Optional[EventBus] = None,
    ) -> None:
        self.id = run_id
        self.workflow_id = workflow_id
        self.input_data = input_data
        self.submitted_at: datetime = _now()
        self.finished_at: Optional[datetime] = None
        self.status = RunStatus.PENDING
        self.request: Optional[ExecutionRequest] = None
        self.partial_outputs: Dict[NodeID, str] = {}
        self.outputs: Dict[NodeID, Any] = {}
        self.error: Optional[str] = None
        self.failure_reason: Optional[FailureReason] = None
        self.error_node_ids: List[NodeID] = []
        self._bus = bus
        self._done = asyncio.Event()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def output_for(self, node_id: NodeID) -> Any:
        if node_id in self.outputs:
            return self.outputs[node_id]
        return self.partial_outputs.get(node_id)

    async def wait(self) -> "ExecutionRun":
        """Wait until the run reaches a terminal state."""
        await self._done.wait()
        return self

    def _publish(self, event_type: str, **extra: Any) -> None:
        if self._bus is not None:
            self._bus.publish(
                event_type,
                {"run": self, "run_id": self.id, "workflow_id": self.workflow_id, "status": self.status.value, **extra},
            )

    # --- Transitions ---

    def _announce(self) -> None:
        self._publish(RUN_PENDING)

    def _start(self) -> bool:
        if self.status is not RunStatus.PENDING:
            return False
        self.status = RunStatus.RUNNING
        logger.info("Run %s running", self.id)
        self._publish(RUN_STARTED)
        return True

    def _append_chunk(self, node_id: NodeID, value: Any) -> bool:
        if self.status is not RunStatus.RUNNING:
            logger.debug("Discarding chunk for node '%s' of run %s (%s)", node_id, self.id, self.status.value)
            return False
        text = _as_text(value)
        self.partial_outputs[node_id] = self.partial_outputs.get(node_id, "") + text
        self._publish(RUN_CHUNK, node_id=node_id, value=text)
        return True

    def _succeed(self, outputs: Dict[NodeID, Any]) -> bool:
        if self.is_terminal:
            return False
        self.outputs = {**self.partial_outputs, **outputs}
        self.status = RunStatus.SUCCEEDED
        self.finished_at = _now()
        self._done.set()
        logger.info("Run %s succeeded", self.id)
        self._publish(RUN_SUCCEEDED)
        return True

    def _fail(self, reason: FailureReason, message: str, node_ids: Sequence[NodeID] = ()) -> bool:
        if self.is_terminal:
            return False
        self.status = RunStatus.FAILED
        self.failure_reason = reason
        self.error = message
        self.error_node_ids = list(node_ids)
        self.finished_at = _now()
        self._done.set()
        logger.info("Run %s failed (%s): %s", self.id, reason.value, message)
        self._publish(RUN_FAILED)
        return True

    def raise_for_failure(self) -> "ExecutionRun":
        """
        Raise the error matching ``failure_reason`` if the run failed;
        otherwise return the run.
        """
        if self.status is not RunStatus.FAILED:
            return self
        error_cls = _FAILURE_ERRORS.get(self.failure_reason, FlowCanvasError)
        raise error_cls(self.error, details={"run_id": self.id, "node_ids": list(self.error_node_ids)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "submitted_at": self.submitted_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outputs": dict(self.outputs),
            "error": self.error,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error_node_ids": list(self.error_node_ids),
        }

    def __repr__(self) -> str:
        return f"ExecutionRun({self.id!r}, status={self.status.value})"


class ExecutionDispatcher:
    """
    Runs workflows through an ExecutionTransport, one at a time.

    :param transport: Execution service client.
    :param bus: Bus on which run transitions are published.
    :param settings: Provides ``execution_idle_timeout``.
    """

    def __init__(
        self,
        transport: ExecutionTransport,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._transport = transport
        self._bus = bus or EventBus()
        self._settings = settings or get_settings()
        self._active: Optional[ExecutionRun] = None
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def active_run(self) -> Optional[ExecutionRun]:
        if self._active is not None and not self._active.is_terminal:
            return self._active
        return None

    def submit(
        self,
        graph: WorkflowGraph,
        input_data: Any = "",
        interaction_id: str = DEFAULT_INTERACTION_ID,
    ) -> ExecutionRun:
        """
        Start a run without waiting for it. Must be called from a running event loop.

        A graph that fails validation yields a run that is already failed;
        the execution service is not contacted.

        Raises:
            RunInProgress: Another run is still pending or running.
        """
        active = self.active_run
        if active is not None:
            raise RunInProgress(
                f"Run {active.id} is still {active.status.value}.",
                details={"run_id": active.id},
            )

        run = ExecutionRun(f"run-{uuid4().hex[:12]}", graph.id, input_data=input_data, bus=self._bus)
        run._announce()
        try:
            request = graph.to_execution_request(input_data=input_data, interaction_id=interaction_id)
        except ValidationError as e:
            run._fail(FailureReason.VALIDATION, e.message)
            return run

        run.request = request
        self._active = run
        self._task = asyncio.get_running_loop().create_task(self._drive(run, request))
        return run

    async def execute(
        self,
        graph: WorkflowGraph,
        input_data: Any = "",
        interaction_id: str = DEFAULT_INTERACTION_ID,
    ) -> ExecutionRun:
        """Submit a run and wait for its terminal state."""
        run = self.submit(graph, input_data=input_data, interaction_id=interaction_id)
        return await run.wait()

    def cancel(self, run_id: Optional[RunID] = None) -> bool:
        """
        Fail the active run with reason ``cancelled``.

        Returns False if there is no active run (or it is not ``run_id``).
        """
        run = self.active_run
        if run is None or (run_id is not None and run.id != run_id):
            return False
        run._fail(FailureReason.CANCELLED, "Run cancelled.")
        self._active = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def _apply(self, run: ExecutionRun, event: ExecutionEvent) -> None:
        if isinstance(event, StreamChunk):
            run._append_chunk(event.node_id, event.value)
        elif isinstance(event, RunResult):
            run._succeed(event.outputs)
        elif isinstance(event, RunError):
            run._fail(FailureReason.EXECUTION, event.message, event.node_ids)

    async def _drive(self, run: ExecutionRun, request: ExecutionRequest) -> None:
        timeout = self._settings.execution_idle_timeout
        run._start()
        events = self._transport.run(request).__aiter__()
        try:
            while not run.is_terminal:
                try:
                    event = await asyncio.wait_for(events.__anext__(), timeout)
                except StopAsyncIteration:
                    run._fail(FailureReason.TRANSPORT, "Execution stream ended without a final status.")
                    break
                self._apply(run, event)
        except asyncio.TimeoutError:
            logger.warning("Run %s: no data for %gs", run.id, timeout)
            run._fail(FailureReason.TIMEOUT, f"No response from the execution service within {timeout:g}s.")
        except TransportError as e:
            logger.error("Run %s transport failure: %s", run.id, e.message)
            run._fail(FailureReason.TRANSPORT, e.message)
        except asyncio.CancelledError:
            # Already failed by cancel(); anything else is an outside cancellation
            if run._fail(FailureReason.CANCELLED, "Run cancelled."):
                raise
        except Exception as e:
            logger.exception("Run %s: unexpected transport error", run.id)
            run._fail(FailureReason.TRANSPORT, str(e) or e.__class__.__name__)
        finally:
            if self._active is run:
                self._active = None
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
