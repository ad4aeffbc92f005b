import asyncio

import pytest

from flowcanvas.builder.constants import FailureReason, RunStatus
from flowcanvas.builder.types import PortRef
from flowcanvas.event_bus import RUN_EVENTS, RUN_CHUNK, RUN_FAILED, RUN_PENDING, RUN_STARTED, RUN_SUCCEEDED
from flowcanvas.exceptions import ExecutionFailed, ExecutionTimeout, RunCancelled, RunInProgress, TransportError
from flowcanvas.execution_engine.dispatcher import ExecutionDispatcher
from flowcanvas.execution_engine.transports import RunError, RunResult, StreamChunk
from tests.helpers import EventRecorder, ScriptedTransport, wait_until


@pytest.fixture
def text_to_upper(graph):
    a = graph.add_node("TextInput", (0, 0), node_id="A")
    b = graph.add_node("Uppercase", (200, 0), node_id="B")
    graph.add_edge(PortRef(a.id, "text"), PortRef(b.id, "text"))
    return graph


def make_dispatcher(transport, bus, settings):
    return ExecutionDispatcher(transport, bus=bus, settings=settings)


async def test_streamed_chunks_accumulate(text_to_upper, bus, settings):
    recorder = EventRecorder(bus, *RUN_EVENTS)
    transport = ScriptedTransport([StreamChunk("B", "Hello"), StreamChunk("B", " world"), RunResult()])
    dispatcher = make_dispatcher(transport, bus, settings)

    run = await dispatcher.execute(text_to_upper, input_data="hi")

    assert run.status is RunStatus.SUCCEEDED
    assert run.outputs == {"B": "Hello world"}
    assert run.error is None
    assert run.finished_at is not None
    assert recorder.names == [RUN_PENDING, RUN_STARTED, RUN_CHUNK, RUN_CHUNK, RUN_SUCCEEDED]
    assert transport.requests[0]["input_data"] == "hi"
    assert [n["id"] for n in transport.requests[0]["nodes"]] == ["A", "B"]
    assert transport.closed
    assert dispatcher.active_run is None


async def test_single_response_outputs(text_to_upper, bus, settings):
    transport = ScriptedTransport([RunResult({"A": "hi", "B": "HI"})])
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.outputs == {"A": "hi", "B": "HI"}


async def test_terminal_outputs_override_partial_text(text_to_upper, bus, settings):
    transport = ScriptedTransport([StreamChunk("B", "HE"), RunResult({"B": "HELLO"})])
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.outputs == {"B": "HELLO"}
    assert run.partial_outputs == {"B": "HE"}


async def test_non_string_chunks_are_json_encoded(text_to_upper, bus, settings):
    transport = ScriptedTransport([StreamChunk("B", {"n": 1}), StreamChunk("B", [2]), RunResult()])
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.outputs["B"] == '{"n": 1}[2]'


async def test_service_error_is_attributed(text_to_upper, bus, settings):
    transport = ScriptedTransport([RunError("division by zero", ["B"])])
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.status is RunStatus.FAILED
    assert run.failure_reason is FailureReason.EXECUTION
    assert run.error == "division by zero"
    assert run.error_node_ids == ["B"]


async def test_validation_failure_skips_service(graph, bus, settings):
    recorder = EventRecorder(bus, *RUN_EVENTS)
    graph.add_node("Uppercase", (0, 0))
    transport = ScriptedTransport([RunResult()])
    dispatcher = make_dispatcher(transport, bus, settings)

    run = await dispatcher.execute(graph)

    assert run.status is RunStatus.FAILED
    assert run.failure_reason is FailureReason.VALIDATION
    assert "Required input" in run.error
    assert transport.requests == []
    assert recorder.names == [RUN_PENDING, RUN_FAILED]
    assert dispatcher.active_run is None


async def test_second_submit_is_rejected_while_running(text_to_upper, bus, settings):
    gate = asyncio.Event()
    transport = ScriptedTransport([StreamChunk("B", "x"), RunResult()], gate=gate)
    dispatcher = make_dispatcher(transport, bus, settings)

    first = dispatcher.submit(text_to_upper)
    await wait_until(lambda: transport.requests)
    assert first.status is RunStatus.RUNNING

    with pytest.raises(RunInProgress) as exc:
        dispatcher.submit(text_to_upper)
    assert exc.value.details["run_id"] == first.id
    assert dispatcher.active_run is first
    assert first.status is RunStatus.RUNNING
    assert len(transport.requests) == 1

    gate.set()
    await first.wait()
    assert first.status is RunStatus.SUCCEEDED

    second = await dispatcher.execute(text_to_upper)
    assert second.id != first.id


async def test_cancel_discards_later_data(text_to_upper, bus, settings):
    recorder = EventRecorder(bus, RUN_CHUNK, RUN_SUCCEEDED, RUN_FAILED)
    gate = asyncio.Event()
    transport = ScriptedTransport([StreamChunk("B", "late"), RunResult()], gate=gate)
    dispatcher = make_dispatcher(transport, bus, settings)

    run = dispatcher.submit(text_to_upper)
    await wait_until(lambda: transport.requests)
    assert dispatcher.cancel(run.id) is True

    assert run.status is RunStatus.FAILED
    assert run.failure_reason is FailureReason.CANCELLED
    assert dispatcher.active_run is None

    gate.set()
    for _ in range(20):
        await asyncio.sleep(0)
    assert run.partial_outputs == {}
    assert recorder.names == [RUN_FAILED]
    await wait_until(lambda: transport.closed)
    assert dispatcher.cancel() is False


async def test_cancel_other_run_id_is_ignored(text_to_upper, bus, settings):
    gate = asyncio.Event()
    dispatcher = make_dispatcher(ScriptedTransport([RunResult()], gate=gate), bus, settings)
    run = dispatcher.submit(text_to_upper)
    assert dispatcher.cancel("run-other") is False
    gate.set()
    await run.wait()
    assert run.status is RunStatus.SUCCEEDED


async def test_silent_service_times_out(text_to_upper, bus, settings):
    settings.execution_idle_timeout = 0.05
    transport = ScriptedTransport([RunResult()], gate=asyncio.Event())
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.status is RunStatus.FAILED
    assert run.failure_reason is FailureReason.TIMEOUT
    assert transport.closed


async def test_stream_without_terminal_marker(text_to_upper, bus, settings):
    transport = ScriptedTransport([StreamChunk("B", "partial")])
    run = await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    assert run.failure_reason is FailureReason.TRANSPORT
    assert run.partial_outputs == {"B": "partial"}


async def test_transport_error_fails_run(text_to_upper, bus, settings):
    transport = ScriptedTransport([StreamChunk("B", "x"), TransportError("connection reset")])
    dispatcher = make_dispatcher(transport, bus, settings)
    run = await dispatcher.execute(text_to_upper)
    assert run.status is RunStatus.FAILED
    assert run.failure_reason is FailureReason.TRANSPORT
    assert run.error == "connection reset"
    assert dispatcher.active_run is None


async def test_graph_stays_editable_after_failure(text_to_upper, bus, settings):
    transport = ScriptedTransport([TransportError("down")])
    await make_dispatcher(transport, bus, settings).execute(text_to_upper)
    text_to_upper.add_node("Display", (400, 0))
    assert len(text_to_upper.nodes) == 3


async def test_run_to_dict(text_to_upper, bus, settings):
    run = await make_dispatcher(ScriptedTransport([RunError("boom")]), bus, settings).execute(text_to_upper)
    data = run.to_dict()
    assert data["status"] == "failed"
    assert data["failure_reason"] == "execution"
    assert data["error"] == "boom"
    assert data["workflow_id"] == "wf-test"


async def test_raise_for_failure(text_to_upper, bus, settings):
    ok = await make_dispatcher(ScriptedTransport([RunResult()]), bus, settings).execute(text_to_upper)
    assert ok.raise_for_failure() is ok

    failed = await make_dispatcher(ScriptedTransport([RunError("boom", ["B"])]), bus, settings).execute(text_to_upper)
    with pytest.raises(ExecutionFailed) as exc:
        failed.raise_for_failure()
    assert exc.value.details == {"run_id": failed.id, "node_ids": ["B"]}


async def test_raise_for_failure_maps_timeout_and_cancel(text_to_upper, bus, settings):
    settings.execution_idle_timeout = 0.05
    timed_out = await make_dispatcher(ScriptedTransport([], gate=asyncio.Event()), bus, settings).execute(text_to_upper)
    with pytest.raises(ExecutionTimeout):
        timed_out.raise_for_failure()

    dispatcher = make_dispatcher(ScriptedTransport([], gate=asyncio.Event()), bus, settings)
    run = dispatcher.submit(text_to_upper)
    dispatcher.cancel()
    await asyncio.sleep(0)
    with pytest.raises(RunCancelled):
        run.raise_for_failure()
