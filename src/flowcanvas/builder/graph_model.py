"""
FlowCanvas Graph Model

In-memory representation of a workflow being edited: nodes instantiated
from catalog definitions, placed on the canvas, and edges joining an
output port of one node to an input port of another.

Every write goes through a validating method on WorkflowGraph:
- ``add_edge`` accepts an edge only if it passes every connection rule;
  a rejected edge leaves the graph untouched.
- ``remove_node`` cascades to all incident edges, so edges always
  reference nodes and ports that exist.
- The model never mutates itself; callers (the interaction controller,
  document loading) drive every change.

Mutations are announced on the optional EventBus as ``graph_changed``.
"""

import math
from typing import Any, Dict, List, Optional
from uuid import uuid4

from flowcanvas.builder.catalog import NodeCatalog, NodeTypeSpec, ParameterSpec, PortSpec
from flowcanvas.builder.constants import DEFAULT_INTERACTION_ID, PortDirection
from flowcanvas.builder.graph_validator import (
    GraphValidationError,
    GraphValidator,
    check_connection,
    missing_required_inputs,
)
from flowcanvas.builder.types import (
    EdgeID,
    ExecutionRequest,
    NodeID,
    PortID,
    PortRef,
    Position,
    RequestEdge,
    RequestNode,
    TypeID,
    WorkflowID,
)
from flowcanvas.event_bus import GRAPH_CHANGED, EventBus
from flowcanvas.exceptions import ConnectionRuleError, ParameterError, ValidationError
from flowcanvas.utilities.logging import get_logger

logger = get_logger("builder.graph_model")

_NUMERIC_TYPES = {"INT", "FLOAT", "NUMBER"}


class Port:
    """A typed connection point owned by exactly one node."""

    def __init__(self, spec: PortSpec, direction: PortDirection) -> None:
        self.id: PortID = spec.id
        self.name: str = spec.name
        self.type: str = spec.type
        self.required: bool = spec.required
        self.multi: bool = spec.multi
        self.direction: PortDirection = direction
        # Bound value for inputs fed without an edge
        self.value: Any = None

    @property
    def has_value(self) -> bool:
        return self.value is not None and self.value != ""

    def __repr__(self) -> str:
        return f"Port({self.direction.value} {self.id}: {self.type})"


class Parameter:
    """A configurable node setting with optional bounds or a fixed option list."""

    def __init__(self, spec: ParameterSpec) -> None:
        self.id: str = spec.id
        self.name: str = spec.name
        self.type: str = spec.type
        self.value: Any = spec.value
        self.required: bool = spec.required
        self.min: Optional[float] = spec.min
        self.max: Optional[float] = spec.max
        self.step: Optional[float] = spec.step
        self.options: List[Any] = [option.value for option in spec.options]

    def coerce(self, value: Any) -> Any:
        """
        Convert and check a candidate value.

        Raises:
            ParameterError: If the value is outside the bounds or options.
        """
        if self.options:
            if value not in self.options:
                raise ParameterError(
                    f"'{value}' is not an allowed value for '{self.name}'.",
                    details={"parameter": self.id, "options": self.options},
                )
            return value

        kind = self.type.upper()
        if kind == "BOOL":
            if isinstance(value, str) and value.lower() in ("true", "false"):
                return value.lower() == "true"
            if not isinstance(value, bool):
                raise ParameterError(f"'{self.name}' expects true or false.", details={"parameter": self.id})
            return value
        if kind not in _NUMERIC_TYPES:
            return value

        try:
            number = int(value) if kind == "INT" and not isinstance(value, float) else float(value)
        except (TypeError, ValueError) as e:
            raise ParameterError(
                f"'{self.name}' expects a number, got {value!r}.", details={"parameter": self.id}
            ) from e
        if isinstance(value, bool) or (isinstance(number, float) and not math.isfinite(number)):
            raise ParameterError(f"'{self.name}' expects a number, got {value!r}.", details={"parameter": self.id})
        if kind == "INT" and isinstance(number, float):
            if not number.is_integer():
                raise ParameterError(f"'{self.name}' expects an integer.", details={"parameter": self.id})
            number = int(number)
        if self.min is not None and number < self.min:
            raise ParameterError(f"'{self.name}' must be >= {self.min}.", details={"parameter": self.id})
        if self.max is not None and number > self.max:
            raise ParameterError(f"'{self.name}' must be <= {self.max}.", details={"parameter": self.id})
        return number


class Node:
    """An instance of a catalog node type placed on the canvas."""

    def __init__(self, node_id: NodeID, spec: NodeTypeSpec, position: Position) -> None:
        self.id: NodeID = node_id
        self.spec: NodeTypeSpec = spec
        self.name: str = spec.display_name
        self.position: Position = position
        self.inputs: List[Port] = [Port(p, PortDirection.INPUT) for p in spec.inputs]
        self.outputs: List[Port] = [Port(p, PortDirection.OUTPUT) for p in spec.outputs]
        self.parameters: List[Parameter] = [Parameter(p) for p in spec.parameters]

    @property
    def type_id(self) -> TypeID:
        return self.spec.id

    def input(self, port_id: PortID) -> Optional[Port]:
        return next((p for p in self.inputs if p.id == port_id), None)

    def output(self, port_id: PortID) -> Optional[Port]:
        return next((p for p in self.outputs if p.id == port_id), None)

    def port(self, port_id: PortID) -> Optional[Port]:
        return self.input(port_id) or self.output(port_id)

    def parameter(self, param_id: str) -> Optional[Parameter]:
        return next((p for p in self.parameters if p.id == param_id), None)

    def __repr__(self) -> str:
        return f"Node({self.id!r}, type={self.type_id!r})"


class Edge:
    """Directed connection from an output port to an input port."""

    def __init__(self, edge_id: EdgeID, source: PortRef, target: PortRef) -> None:
        self.id = edge_id
        self.source = source
        self.target = target

    def touches(self, node_id: NodeID) -> bool:
        return self.source.node_id == node_id or self.target.node_id == node_id

    def to_dict(self) -> RequestEdge:
        return {
            "id": self.id,
            "source": {
                "nodeId": self.source.node_id,
                "portId": self.source.port_id,
                "portType": PortDirection.OUTPUT.value,
            },
            "target": {
                "nodeId": self.target.node_id,
                "portId": self.target.port_id,
                "portType": PortDirection.INPUT.value,
            },
        }

    def __repr__(self) -> str:
        return f"Edge({self.id!r}, {self.source} -> {self.target})"


class WorkflowGraph:
    """
    The user's workflow: nodes, edges and workflow-level metadata.
    """

    def __init__(
        self,
        catalog: NodeCatalog,
        workflow_id: Optional[WorkflowID] = None,
        name: str = "",
        bus: Optional[EventBus] = None,
    ) -> None:
        self.catalog = catalog
        self.id: WorkflowID = workflow_id or f"workflow-{uuid4().hex[:12]}"
        self.name = name
        self.nodes: Dict[NodeID, Node] = {}
        self.edges: Dict[EdgeID, Edge] = {}
        self._bus = bus

    def attach_bus(self, bus: Optional[EventBus]) -> None:
        self._bus = bus

    def _changed(self, action: str, **payload: Any) -> None:
        logger.debug("graph %s: %s %s", self.id, action, payload)
        if self._bus is not None:
            self._bus.publish(GRAPH_CHANGED, {"workflow_id": self.id, "action": action, **payload})

    # --- Nodes ---

    def add_node(self, type_id: TypeID, position: Position, node_id: Optional[NodeID] = None) -> Node:
        """
        Instantiate a catalog node type at ``position``.

        Raises:
            UnknownTypeError: If ``type_id`` is not in the catalog.
        """
        spec = self.catalog.require(type_id)
        node_id = node_id or f"{type_id}-{uuid4().hex[:8]}"
        if node_id in self.nodes:
            raise ValueError(f"Node id '{node_id}' is already in use.")
        node = Node(node_id, spec, Position(*position))
        self.nodes[node_id] = node
        self._changed("add_node", node_id=node_id, type_id=type_id)
        return node

    def remove_node(self, node_id: NodeID) -> List[Edge]:
        """Remove a node and every edge touching it. Returns the removed edges."""
        if node_id not in self.nodes:
            return []
        removed = [edge for edge in self.edges.values() if edge.touches(node_id)]
        for edge in removed:
            del self.edges[edge.id]
        del self.nodes[node_id]
        self._changed("remove_node", node_id=node_id, removed_edges=[e.id for e in removed])
        return removed

    def move_node(self, node_id: NodeID, position: Position) -> Optional[Node]:
        node = self.nodes.get(node_id)
        if node is None:
            return None
        node.position = Position(*position)
        self._changed("move_node", node_id=node_id, position=tuple(node.position))
        return node

    def update_parameter(self, node_id: NodeID, param_id: str, value: Any) -> Any:
        """
        Set a node parameter after checking bounds and options.

        Returns the stored (possibly converted) value.

        Raises:
            ParameterError: Unknown node/parameter, or value rejected.
        """
        node = self.nodes.get(node_id)
        parameter = node.parameter(param_id) if node else None
        if parameter is None:
            raise ParameterError(
                f"Parameter '{param_id}' does not exist on node '{node_id}'.",
                details={"node_id": node_id, "parameter": param_id},
            )
        parameter.value = parameter.coerce(value)
        self._changed("update_parameter", node_id=node_id, parameter=param_id)
        return parameter.value

    def bind_input(self, node_id: NodeID, port_id: PortID, value: Any) -> None:
        """Attach a literal value to an input port (None unbinds it)."""
        node = self.nodes.get(node_id)
        port = node.input(port_id) if node else None
        if port is None:
            raise ParameterError(
                f"Input '{port_id}' does not exist on node '{node_id}'.",
                details={"node_id": node_id, "port_id": port_id},
            )
        port.value = value
        self._changed("bind_input", node_id=node_id, port_id=port_id)

    # --- Edges ---

    def check_connection(self, source: PortRef, target: PortRef) -> Optional[ConnectionRuleError]:
        """Return the first connection rule the edge would break, or None."""
        return check_connection(self, PortRef(*source), PortRef(*target))

    def add_edge(self, source: PortRef, target: PortRef, edge_id: Optional[EdgeID] = None) -> Edge:
        """
        Connect an output port to an input port.

        Raises:
            ConnectionRuleError: The first violated rule (UnknownEndpoint,
                WrongDirection, TypeMismatch, PortFull, WouldCycle).
        """
        source, target = PortRef(*source), PortRef(*target)
        error = check_connection(self, source, target)
        if error is not None:
            raise error
        edge_id = edge_id or f"edge-{source}-{target}-{uuid4().hex[:6]}"
        if edge_id in self.edges:
            raise ValueError(f"Edge id '{edge_id}' is already in use.")
        edge = Edge(edge_id, source, target)
        self.edges[edge_id] = edge
        self._changed("add_edge", edge_id=edge_id, source=str(source), target=str(target))
        return edge

    def remove_edge(self, edge_id: EdgeID) -> Optional[Edge]:
        edge = self.edges.pop(edge_id, None)
        if edge is not None:
            self._changed("remove_edge", edge_id=edge_id)
        return edge

    def incoming_edges(self, node_id: NodeID, port_id: Optional[PortID] = None) -> List[Edge]:
        return [
            edge
            for edge in self.edges.values()
            if edge.target.node_id == node_id and (port_id is None or edge.target.port_id == port_id)
        ]

    def outgoing_edges(self, node_id: NodeID, port_id: Optional[PortID] = None) -> List[Edge]:
        return [
            edge
            for edge in self.edges.values()
            if edge.source.node_id == node_id and (port_id is None or edge.source.port_id == port_id)
        ]

    def sink_nodes(self) -> List[NodeID]:
        """Nodes without outgoing edges, in insertion order."""
        sources = {edge.source.node_id for edge in self.edges.values()}
        return [node_id for node_id in self.nodes if node_id not in sources]

    # --- Execution ---

    def to_execution_request(
        self,
        input_data: Any = "",
        interaction_id: str = DEFAULT_INTERACTION_ID,
    ) -> ExecutionRequest:
        """
        Serialize the graph for the execution service.

        Nodes are listed in dependency order.

        Raises:
            ValidationError: A required input has neither an edge nor a
                bound value, or the graph is not acyclic.
        """
        missing = missing_required_inputs(self)
        if missing:
            first = missing[0]
            raise ValidationError(
                f"Required input '{first['port_name']}' of node '{first['node_name']}' is not connected.",
                details={"reason": "missing_required_input", "missing": missing},
            )
        try:
            order = GraphValidator.for_graph(self).topological_order()
        except GraphValidationError as e:
            raise ValidationError(str(e), details={"reason": "cycle"}) from e

        nodes: List[RequestNode] = []
        for node_id in order:
            node = self.nodes[node_id]
            nodes.append(
                {
                    "id": node.id,
                    "type": node.type_id,
                    "name": node.name,
                    "parameters": {p.id: p.value for p in node.parameters},
                    "inputs": {p.id: p.value for p in node.inputs if p.has_value},
                }
            )
        return {
            "workflow_id": self.id,
            "workflow_name": self.name,
            "interaction_id": interaction_id,
            "input_data": input_data,
            "nodes": nodes,
            "edges": [edge.to_dict() for edge in self.edges.values()],
        }
