"""
Connection rules and structural checks for workflow graphs.

Port-level rules decide whether a single edge may be created. Graph-level
checks (reachability, cycles, execution order, required inputs) work on
the node-to-node adjacency derived from the edges, since two nodes joined
by several port edges are still a single dependency.
"""

from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set, Tuple

from flowcanvas.builder.constants import ANY_TYPE, PortDirection
from flowcanvas.builder.types import NodeID, PortRef
from flowcanvas.exceptions import (
    ConnectionRuleError,
    DuplicateEdge,
    PortFull,
    TypeMismatch,
    UnknownEndpoint,
    WouldCycle,
    WrongDirection,
)

if TYPE_CHECKING:
    from flowcanvas.builder.graph_model import Node, Port, WorkflowGraph

NodeEdge = Tuple[NodeID, NodeID]


class GraphValidationError(Exception):
    """Raised when the node dependency graph is structurally invalid."""
    pass


def types_compatible(source_type: str, target_type: str) -> bool:
    """
    Exact tag match, or ANY on either side.

    No implicit coercions: an INT output does not feed a FLOAT or STR input.
    """
    return source_type == target_type or ANY_TYPE in (source_type, target_type)


class GraphValidator:
    """
    Analyzes the node dependency graph of a workflow.

    :param nodes: Node ids, in insertion order (used to break ties).
    :param edges: List of (from_node_id, to_node_id) pairs.
    """

    def __init__(self, nodes: Sequence[NodeID], edges: Sequence[NodeEdge]) -> None:
        self.nodes: List[NodeID] = list(nodes)
        self.edges: List[NodeEdge] = list(edges)
        self.adjacency: Dict[NodeID, List[NodeID]] = self._build_adjacency()

    def _build_adjacency(self) -> Dict[NodeID, List[NodeID]]:
        adj: Dict[NodeID, List[NodeID]] = {node_id: [] for node_id in self.nodes}
        for from_id, to_id in self.edges:
            adj.setdefault(from_id, []).append(to_id)
        return adj

    def reachable_from(self, start: NodeID) -> Set[NodeID]:
        stack: List[NodeID] = [start]
        seen: Set[NodeID] = set()
        while stack:
            node = stack.pop()
            if node not in seen:
                seen.add(node)
                stack.extend(self.adjacency.get(node, []))
        return seen

    def would_cycle(self, from_id: NodeID, to_id: NodeID) -> bool:
        """True if adding from_id -> to_id closes a cycle (to_id already reaches from_id)."""
        return from_id in self.reachable_from(to_id)

    def topological_order(self) -> List[NodeID]:
        """
        Kahn's algorithm; ready nodes are emitted in insertion order.
        Raises GraphValidationError if the graph contains a cycle.
        """
        position = {node_id: index for index, node_id in enumerate(self.nodes)}
        indegree: Dict[NodeID, int] = {node_id: 0 for node_id in self.nodes}
        for _, to_id in self.edges:
            indegree[to_id] = indegree.get(to_id, 0) + 1
        ready = [node_id for node_id in self.nodes if indegree[node_id] == 0]
        order: List[NodeID] = []
        while ready:
            ready.sort(key=lambda n: position.get(n, len(position)))
            node_id = ready.pop(0)
            order.append(node_id)
            for neighbor in self.adjacency.get(node_id, []):
                indegree[neighbor] -= 1
                if indegree[neighbor] == 0:
                    ready.append(neighbor)
        if len(order) != len(indegree):
            raise GraphValidationError("Graph contains a cycle.")
        return order

    @classmethod
    def for_graph(cls, graph: "WorkflowGraph") -> "GraphValidator":
        return cls(
            list(graph.nodes.keys()),
            [(edge.source.node_id, edge.target.node_id) for edge in graph.edges.values()],
        )


# --- Edge creation rules ---

def _resolve(graph: "WorkflowGraph", ref: PortRef, expected: PortDirection) -> Tuple["Node", "Port"]:
    node = graph.nodes.get(ref.node_id)
    if node is None:
        raise UnknownEndpoint(
            f"Node '{ref.node_id}' does not exist.",
            details={"node_id": ref.node_id, "port_id": ref.port_id},
        )
    wanted = node.output(ref.port_id) if expected is PortDirection.OUTPUT else node.input(ref.port_id)
    if wanted is not None:
        return node, wanted
    other = node.input(ref.port_id) if expected is PortDirection.OUTPUT else node.output(ref.port_id)
    if other is None:
        raise UnknownEndpoint(
            f"Port '{ref.port_id}' does not exist on node '{ref.node_id}'.",
            details={"node_id": ref.node_id, "port_id": ref.port_id},
        )
    return node, other


def check_connection(graph: "WorkflowGraph", source: PortRef, target: PortRef) -> Optional[ConnectionRuleError]:
    """
    Evaluate the edge rules in order and return the first violation, or None.

    Order: endpoints exist, direction, type compatibility, target
    connection count, cycle avoidance.
    """
    try:
        _, source_port = _resolve(graph, source, PortDirection.OUTPUT)
        _, target_port = _resolve(graph, target, PortDirection.INPUT)
    except UnknownEndpoint as e:
        return e

    details = {"source": str(source), "target": str(target)}

    if source_port.direction is not PortDirection.OUTPUT or target_port.direction is not PortDirection.INPUT:
        return WrongDirection(
            f"Edges must run from an output port to an input port ({source} -> {target}).",
            details=details,
        )

    if not types_compatible(source_port.type, target_port.type):
        return TypeMismatch(
            f"Cannot connect {source_port.type} output '{source_port.name}' "
            f"to {target_port.type} input '{target_port.name}'.",
            details={**details, "source_type": source_port.type, "target_type": target_port.type},
        )

    incoming = graph.incoming_edges(target.node_id, target.port_id)
    if any(edge.source == source for edge in incoming):
        return DuplicateEdge(f"{source} is already connected to {target}.", details=details)
    if incoming and not target_port.multi:
        return PortFull(
            f"Input '{target_port.name}' accepts a single connection.",
            details={**details, "existing_edge": incoming[0].id},
        )

    if source.node_id == target.node_id or GraphValidator.for_graph(graph).would_cycle(
        source.node_id, target.node_id
    ):
        return WouldCycle(f"Connecting {source} to {target} would create a cycle.", details=details)

    return None


def missing_required_inputs(graph: "WorkflowGraph") -> List[Dict[str, str]]:
    """
    List required input ports that have neither an incoming edge nor a bound value.
    """
    missing: List[Dict[str, str]] = []
    for node in graph.nodes.values():
        for port in node.inputs:
            if not port.required or port.has_value:
                continue
            if graph.incoming_edges(node.id, port.id):
                continue
            missing.append(
                {
                    "node_id": node.id,
                    "node_name": node.name,
                    "port_id": port.id,
                    "port_name": port.name,
                }
            )
    return missing
