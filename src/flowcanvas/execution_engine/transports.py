"""
Execution service transports.

A transport submits an ExecutionRequest and yields the service's answer as
an ordered async sequence of ExecutionEvents:

    StreamChunk*  then  RunResult | RunError

The HTTP transport understands both response modes of the execution
service: a single JSON document (``{"outputs": {...}}`` or
``{"error": "..."}``), or a stream of ``{"nodeId", "partialValue"}``
messages closed by ``{"status": "success" | "error", ...}``. Streams may be
Server-Sent Events (``data: {...}`` lines) or newline-delimited JSON.
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union, runtime_checkable

import httpx

from flowcanvas.builder.types import ExecutionRequest, NodeID
from flowcanvas.exceptions import TransportError
from flowcanvas.settings import Settings, get_settings
from flowcanvas.utilities.http import decode_json, error_detail
from flowcanvas.utilities.logging import get_logger

logger = get_logger("execution_engine.transports")

_STREAM_CONTENT_TYPES = ("text/event-stream", "application/x-ndjson", "application/jsonl", "ndjson")


@dataclass(frozen=True)
class StreamChunk:
    """Partial output for one node."""
    node_id: NodeID
    value: Any


@dataclass(frozen=True)
class RunResult:
    """Terminal success, with any final per-node outputs."""
    outputs: Dict[NodeID, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunError:
    """Terminal failure reported by the execution service."""
    message: str
    node_ids: List[NodeID] = field(default_factory=list)


ExecutionEvent = Union[StreamChunk, RunResult, RunError]


@runtime_checkable
class ExecutionTransport(Protocol):
    def run(self, request: ExecutionRequest) -> AsyncIterator[ExecutionEvent]:
        """Submit ``request`` and yield the service's events in order."""
        ...


def _node_ids(payload: Dict[str, Any]) -> List[NodeID]:
    ids = payload.get("node_ids") or payload.get("nodeIds")
    if isinstance(ids, list):
        return [str(node_id) for node_id in ids]
    single = payload.get("node_id") or payload.get("nodeId")
    return [str(single)] if single else []


def _error_message(payload: Dict[str, Any]) -> str:
    message = payload.get("error") or payload.get("message") or payload.get("detail")
    if message is None:
        return "Execution failed."
    return message if isinstance(message, str) else json.dumps(message)


def parse_execution_message(payload: Any) -> Optional[ExecutionEvent]:
    """
    Map one decoded service message onto an ExecutionEvent.

    Returns None for messages that carry nothing actionable (heartbeats,
    unknown shapes).
    """
    if not isinstance(payload, dict):
        return None

    status = payload.get("status")
    if status == "success":
        outputs = payload.get("outputs") or {}
        return RunResult(outputs=dict(outputs) if isinstance(outputs, dict) else {})
    if status == "error":
        return RunError(_error_message(payload), _node_ids(payload))

    if payload.get("error"):
        return RunError(_error_message(payload), _node_ids(payload))

    node_id = payload.get("nodeId") or payload.get("node_id")
    for key in ("partialValue", "partial_value", "value"):
        if node_id and key in payload:
            return StreamChunk(str(node_id), payload[key])

    if isinstance(payload.get("outputs"), dict):
        return RunResult(outputs=dict(payload["outputs"]))
    return None


def decode_stream_line(line: str) -> Optional[ExecutionEvent]:
    """
    Decode one line of an SSE or NDJSON stream.

    Raises:
        TransportError: If a data line is not valid JSON.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    elif line.startswith(("event:", "id:", "retry:")):
        return None
    try:
        payload = json.loads(line)
    except ValueError as e:
        raise TransportError(f"Malformed stream message: {line[:80]!r}") from e
    event = parse_execution_message(payload)
    if event is None:
        logger.debug("Ignoring stream message: %s", line[:200])
    return event


class HttpExecutionTransport:
    """
    Submits workflows to the execution service over HTTP.

    With ``settings.streaming`` the streaming endpoint is used; the
    response mode is decided from the response content type either way.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    @property
    def path(self) -> str:
        if self._settings.streaming:
            return self._settings.execute_stream_path
        return self._settings.execute_path

    async def run(self, request: ExecutionRequest) -> AsyncIterator[ExecutionEvent]:
        path = self.path
        try:
            async with self._client.stream("POST", path, json=request) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    data = decode_json(body)
                    if isinstance(data, dict) and data.get("error"):
                        yield RunError(_error_message(data), _node_ids(data))
                        return
                    raise TransportError(
                        error_detail(response.status_code, body),
                        details={"path": path, "status_code": response.status_code},
                    )

                content_type = response.headers.get("content-type", "").lower()
                if any(kind in content_type for kind in _STREAM_CONTENT_TYPES):
                    async for line in response.aiter_lines():
                        event = decode_stream_line(line)
                        if event is not None:
                            yield event
                    return

                body = await response.aread()
                data = decode_json(body)
                if data is None:
                    raise TransportError("Execution service returned a non-JSON response.", details={"path": path})
                event = parse_execution_message(data)
                if event is None:
                    raise TransportError("Unrecognized execution response.", details={"path": path})
                yield event
        except httpx.HTTPError as e:
            raise TransportError.from_exception(e, details={"path": path}) from e
