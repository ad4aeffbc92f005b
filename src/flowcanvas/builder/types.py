"""
Centralized type definitions for FlowCanvas.

This module provides shared, strongly-typed structures for:
- Canvas coordinates and port references
- The execution request sent to the execution service
- The workflow document used to save and load canvases
- Transcript records emitted after each run

It is UI-agnostic: the interaction layer, the graph model, the dispatcher
and the projector all import from here.
"""

from typing import Any, Dict, List, NamedTuple, Optional, TypedDict

from typing_extensions import NotRequired

# --- Core Type Aliases ---
NodeID = str
PortID = str
EdgeID = str
TypeID = str
WorkflowID = str
RunID = str


class Position(NamedTuple):
    x: float
    y: float

    def offset(self, other: "Position") -> "Position":
        """Vector from ``other`` to this position."""
        return Position(self.x - other.x, self.y - other.y)


class PortRef(NamedTuple):
    """Address of a port on the canvas: node instance id + port id."""
    node_id: NodeID
    port_id: PortID

    def __str__(self) -> str:
        return f"{self.node_id}:{self.port_id}"


# --- Execution request ---

class RequestNode(TypedDict):
    id: NodeID
    type: TypeID
    name: str
    parameters: Dict[str, Any]
    inputs: Dict[PortID, Any]  # bound input values (only ports carrying a value)


class EdgeEndpoint(TypedDict):
    nodeId: NodeID
    portId: PortID
    portType: str  # 'input' | 'output'


class RequestEdge(TypedDict):
    id: EdgeID
    source: EdgeEndpoint
    target: EdgeEndpoint


class ExecutionRequest(TypedDict):
    workflow_id: WorkflowID
    workflow_name: str
    interaction_id: str
    input_data: Any
    nodes: List[RequestNode]  # topological order
    edges: List[RequestEdge]


# --- Workflow document (save / load) ---

class DocumentPosition(TypedDict):
    x: float
    y: float


class DocumentNode(TypedDict):
    id: NodeID
    type: TypeID
    name: NotRequired[str]
    position: DocumentPosition
    parameters: NotRequired[Dict[str, Any]]
    inputs: NotRequired[Dict[PortID, Any]]


class WorkflowDocument(TypedDict):
    workflow_id: WorkflowID
    workflow_name: str
    nodes: List[DocumentNode]
    edges: List[RequestEdge]
    metadata: NotRequired[Dict[str, Any]]


# --- Transcript ---

class TranscriptRecord(TypedDict):
    id: str
    run_id: RunID
    workflow_id: WorkflowID
    timestamp: str
    input: Any
    output: Optional[Any]
    error: NotRequired[Optional[str]]
