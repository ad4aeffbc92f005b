"""
Interaction Controller

Turns pointer gestures on the canvas into graph mutations. The rendering
surface does its own hit testing and hands the controller resolved
targets (NodeHit, PortHit, EdgeHit, CanvasHit) together with canvas
coordinates, so the state machine can be driven without any UI.

States:
    Idle
    DraggingNode(node_id, offset)   -- commit move_node on release
    DraggingEdge(anchor, cursor)    -- add_edge on release over a port

Rejected connections never raise out of the controller: they become a
transient Notification published on the bus as ``notification``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from flowcanvas.builder.constants import PortDirection
from flowcanvas.builder.graph_model import Edge, Node, WorkflowGraph
from flowcanvas.builder.types import EdgeID, NodeID, PortID, PortRef, Position, TypeID
from flowcanvas.event_bus import NOTIFICATION, EventBus
from flowcanvas.exceptions import (
    ConnectionRuleError,
    FlowCanvasError,
    UnknownEndpoint,
    UnknownTypeError,
    WrongDirection,
)
from flowcanvas.utilities.logging import get_logger

logger = get_logger("builder.interaction")


# --- Hit targets ---

@dataclass(frozen=True)
class NodeHit:
    node_id: NodeID


@dataclass(frozen=True)
class PortHit:
    node_id: NodeID
    port_id: PortID
    direction: PortDirection

    @property
    def ref(self) -> PortRef:
        return PortRef(self.node_id, self.port_id)


@dataclass(frozen=True)
class EdgeHit:
    edge_id: EdgeID


@dataclass(frozen=True)
class CanvasHit:
    pass


Hit = Union[NodeHit, PortHit, EdgeHit, CanvasHit]


# --- Gesture states ---

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class DraggingNode:
    node_id: NodeID
    offset: Position  # pointer position relative to the node origin
    cursor: Position

    @property
    def preview_position(self) -> Position:
        return self.cursor.offset(self.offset)


@dataclass(frozen=True)
class DraggingEdge:
    anchor: PortRef
    anchor_direction: PortDirection
    cursor: Position
    # Edge lifted off an input port when the drag started on it
    detached_edge: Optional[Edge] = None


GestureState = Union[Idle, DraggingNode, DraggingEdge]


@dataclass
class Notification:
    """A transient, non-fatal message for the user."""
    message: str
    level: str = "warning"
    code: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_error(cls, error: FlowCanvasError) -> "Notification":
        return cls(message=error.message, code=error.code, details=dict(error.details))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "level": self.level,
            "code": self.code,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


class InteractionController:
    """
    Gesture state machine over a WorkflowGraph.

    :param graph: The graph to mutate.
    :param bus: Optional bus on which notifications are published.
    """

    def __init__(self, graph: WorkflowGraph, bus: Optional[EventBus] = None) -> None:
        self.graph = graph
        self._bus = bus
        self.state: GestureState = Idle()
        self.selected_node: Optional[NodeID] = None
        self.selected_edge: Optional[EdgeID] = None
        self.last_notification: Optional[Notification] = None

    def attach(self, graph: WorkflowGraph) -> None:
        """Switch to another graph, abandoning any gesture in progress."""
        self.cancel()
        self.graph = graph
        self.selected_node = self.selected_edge = None

    def _notify(self, notification: Notification) -> None:
        self.last_notification = notification
        logger.info("Notification: %s", notification.message)
        if self._bus is not None:
            self._bus.publish(NOTIFICATION, notification.to_dict())

    # --- Selection ---

    def select(self, node_id: Optional[NodeID] = None, edge_id: Optional[EdgeID] = None) -> None:
        self.selected_node = node_id if node_id in self.graph.nodes else None
        self.selected_edge = edge_id if edge_id in self.graph.edges else None

    def clear_selection(self) -> None:
        self.selected_node = self.selected_edge = None

    # --- Pointer gestures ---

    def press(self, hit: Hit, pos: Position) -> GestureState:
        if not isinstance(self.state, Idle):
            logger.debug("press ignored while in %s", type(self.state).__name__)
            return self.state
        pos = Position(*pos)

        if isinstance(hit, NodeHit):
            node = self.graph.nodes.get(hit.node_id)
            if node is not None:
                self.select(node_id=node.id)
                self.state = DraggingNode(node.id, pos.offset(node.position), pos)
        elif isinstance(hit, PortHit):
            self.state = self._start_edge(hit, pos)
        elif isinstance(hit, EdgeHit):
            self.select(edge_id=hit.edge_id)
        else:
            self.clear_selection()
        return self.state

    def _start_edge(self, hit: PortHit, pos: Position) -> GestureState:
        if hit.direction is PortDirection.OUTPUT:
            return DraggingEdge(hit.ref, PortDirection.OUTPUT, pos)

        incoming = self.graph.incoming_edges(hit.node_id, hit.port_id)
        if not incoming:
            # Reverse drag: anchored at the input, looking for an output
            return DraggingEdge(hit.ref, PortDirection.INPUT, pos)

        edge = incoming[-1]
        self.graph.remove_edge(edge.id)
        if self.selected_edge == edge.id:
            self.selected_edge = None
        logger.debug("Detached %r for rewiring", edge)
        return DraggingEdge(edge.source, PortDirection.OUTPUT, pos, detached_edge=edge)

    def move(self, pos: Position) -> GestureState:
        if isinstance(self.state, (DraggingNode, DraggingEdge)):
            self.state = replace(self.state, cursor=Position(*pos))
        return self.state

    def hover(self, hit: Hit) -> Optional[bool]:
        """
        While dragging an edge, report whether releasing over ``hit``
        would create an edge. Returns None when there is nothing to judge.
        """
        if not isinstance(self.state, DraggingEdge) or not isinstance(hit, PortHit):
            return None
        return self._drop_error(self.state, hit) is None

    def release(self, hit: Hit, pos: Position) -> GestureState:
        state = self.state
        self.state = Idle()
        pos = Position(*pos)

        if isinstance(state, DraggingNode):
            self.graph.move_node(state.node_id, pos.offset(state.offset))
        elif isinstance(state, DraggingEdge):
            if isinstance(hit, PortHit):
                self._finish_edge(state, hit)
            elif state.detached_edge is not None:
                logger.debug("Dropped %r on the canvas; edge stays removed", state.detached_edge)
        return self.state

    def _endpoints(self, state: DraggingEdge, hit: PortHit) -> Tuple[PortRef, PortRef]:
        if state.anchor_direction is PortDirection.OUTPUT:
            return state.anchor, hit.ref
        return hit.ref, state.anchor

    def _drop_error(self, state: DraggingEdge, hit: PortHit) -> Optional[ConnectionRuleError]:
        """
        First rule a drop on ``hit`` would break, or None.

        A node may use one id for an input and an output; the direction of
        ``hit`` decides which of the two was dropped on.
        """
        source, target = self._endpoints(state, hit)
        error = self.graph.check_connection(source, target)
        if isinstance(error, UnknownEndpoint) or hit.direction is not state.anchor_direction:
            return error
        return WrongDirection(
            f"Cannot connect two {hit.direction.value} ports ({state.anchor} and {hit.ref}).",
            details={"anchor": str(state.anchor), "hit": str(hit.ref), "direction": hit.direction.value},
        )

    def _finish_edge(self, state: DraggingEdge, hit: PortHit) -> Optional[Edge]:
        error = self._drop_error(state, hit)
        if error is None:
            source, target = self._endpoints(state, hit)
            return self.graph.add_edge(source, target)
        logger.info("Connection rejected: %s", error.message)
        self._restore(state.detached_edge)
        self._notify(Notification.from_error(error))
        return None

    def cancel(self) -> GestureState:
        """Abort the current gesture without committing anything."""
        state = self.state
        self.state = Idle()
        if isinstance(state, DraggingEdge):
            self._restore(state.detached_edge)
        return self.state

    def _restore(self, edge: Optional[Edge]) -> None:
        if edge is None:
            return
        if self.graph.check_connection(edge.source, edge.target) is not None:
            logger.debug("Cannot restore %r; an endpoint changed", edge)
            return
        self.graph.add_edge(edge.source, edge.target, edge_id=edge.id)

    # --- Direct actions ---

    def add_node(self, type_id: TypeID, pos: Position) -> Optional[Node]:
        try:
            node = self.graph.add_node(type_id, pos)
        except UnknownTypeError as e:
            self._notify(Notification.from_error(e))
            return None
        self.select(node_id=node.id)
        return node

    def delete_node(self, node_id: NodeID) -> List[Edge]:
        if isinstance(self.state, DraggingNode) and self.state.node_id == node_id:
            self.cancel()
        removed = self.graph.remove_node(node_id)
        if self.selected_node == node_id:
            self.selected_node = None
        if self.selected_edge in {edge.id for edge in removed}:
            self.selected_edge = None
        return removed

    def delete_edge(self, edge_id: EdgeID) -> Optional[Edge]:
        edge = self.graph.remove_edge(edge_id)
        if self.selected_edge == edge_id:
            self.selected_edge = None
        return edge

    def delete_selected(self) -> bool:
        """Delete the selected node or edge. Returns False if nothing was selected."""
        if self.selected_node is not None:
            self.delete_node(self.selected_node)
            return True
        if self.selected_edge is not None:
            self.delete_edge(self.selected_edge)
            return True
        return False
