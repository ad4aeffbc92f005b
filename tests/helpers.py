"""Shared test data and fakes for the FlowCanvas test suite."""

import asyncio
from typing import Any, Dict, List, Optional

from flowcanvas.event_bus import EventBus


def port(port_id: str, port_type: str, required: bool = False, multi: bool = False) -> Dict[str, Any]:
    return {"id": port_id, "name": port_id.title(), "type": port_type, "required": required, "multi": multi}


CATALOG_PAYLOAD: List[Dict[str, Any]] = [
    {
        "categoryId": "io",
        "categoryName": "Input / Output",
        "functions": [
            {
                "functionId": "input",
                "functionName": "Input",
                "nodes": [
                    {"id": "TextInput", "nodeName": "Text Input", "outputs": [port("text", "STR")]},
                    {
                        "id": "NumberInput",
                        "nodeName": "Number Input",
                        "outputs": [port("value", "INT")],
                        "parameters": [{"id": "value", "name": "Value", "type": "INT", "value": 0}],
                    },
                ],
            },
            {
                "functionId": "output",
                "functionName": "Output",
                "nodes": [{"id": "Display", "nodeName": "Display", "inputs": [port("value", "ANY", required=True)]}],
            },
        ],
    },
    {
        "categoryId": "text",
        "categoryName": "Text",
        "functions": [
            {
                "functionId": "transform",
                "functionName": "Transform",
                "nodes": [
                    {
                        "id": "Uppercase",
                        "nodeName": "Uppercase",
                        "inputs": [port("text", "STR", required=True)],
                        "outputs": [port("text", "STR")],
                    },
                    {
                        "id": "Concat",
                        "nodeName": "Concat",
                        "inputs": [port("a", "STR", required=True), port("b", "STR", required=True)],
                        "outputs": [port("text", "STR")],
                    },
                    {
                        "id": "Collect",
                        "nodeName": "Collect",
                        "inputs": [port("items", "ANY", multi=True)],
                        "outputs": [port("items", "LIST")],
                    },
                ],
            }
        ],
    },
    {
        "categoryId": "math",
        "categoryName": "Math",
        "functions": [
            {
                "functionId": "arithmetic",
                "functionName": "Arithmetic",
                "nodes": [
                    {
                        "id": "Divide",
                        "nodeName": "Divide",
                        "inputs": [port("a", "INT", required=True), port("b", "INT", required=True)],
                        "outputs": [port("result", "FLOAT")],
                        "parameters": [
                            {"id": "precision", "name": "Precision", "type": "INT", "value": 2, "min": 0, "max": 10},
                            {"id": "rounding", "name": "Rounding", "value": "nearest", "options": ["floor", "nearest"]},
                        ],
                    }
                ],
            }
        ],
    },
]


class ScriptedTransport:
    """
    Execution transport that replays a fixed list of events.

    Exceptions in the script are raised in order. When ``gate`` is given,
    nothing is yielded until it is set.
    """

    def __init__(self, events: Optional[List[Any]] = None, gate: Optional[asyncio.Event] = None) -> None:
        self.events = list(events or [])
        self.gate = gate
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    async def run(self, request):
        self.requests.append(request)
        try:
            if self.gate is not None:
                await self.gate.wait()
            for event in self.events:
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.closed = True


async def wait_until(predicate, attempts: int = 100) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class EventRecorder:
    def __init__(self, bus: EventBus, *event_types: str) -> None:
        self.events: List[tuple] = []
        for event_type in event_types:
            bus.subscribe(event_type, self)

    def __call__(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]


