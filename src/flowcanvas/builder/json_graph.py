"""
json_graph.py

JSON save/load for FlowCanvas workflow documents.

A document lists nodes (id, type, position, parameter and bound input
values) and edges in the same ``{source: {nodeId, portId}, target: {...}}``
shape the execution service receives. Loading rebuilds the graph through
WorkflowGraph's validating methods, so a document written against an
older catalog loads what is still valid and skips the rest with a
warning.

File writes are atomic (temp file in the target directory, then move).
"""

import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, cast

from flowcanvas.builder.catalog import NodeCatalog
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.builder.types import DocumentNode, PortRef, Position, WorkflowDocument
from flowcanvas.event_bus import EventBus
from flowcanvas.exceptions import (
    ConnectionRuleError,
    ParameterError,
    SerializationError,
    UnknownTypeError,
)
from flowcanvas.utilities.logging import get_logger

logger = get_logger("builder.json_graph")

SCHEMA_VERSION = "1"


# --- Graph <-> document ---

def graph_to_document(graph: WorkflowGraph) -> WorkflowDocument:
    nodes: List[DocumentNode] = []
    for node in graph.nodes.values():
        nodes.append(
            {
                "id": node.id,
                "type": node.type_id,
                "name": node.name,
                "position": {"x": node.position.x, "y": node.position.y},
                "parameters": {p.id: p.value for p in node.parameters},
                "inputs": {p.id: p.value for p in node.inputs if p.value is not None},
            }
        )
    return {
        "workflow_id": graph.id,
        "workflow_name": graph.name,
        "nodes": nodes,
        "edges": [edge.to_dict() for edge in graph.edges.values()],
        "metadata": {"schema_version": SCHEMA_VERSION},
    }


def document_to_graph(
    document: WorkflowDocument,
    catalog: NodeCatalog,
    bus: Optional[EventBus] = None,
) -> WorkflowGraph:
    """
    Rebuild a graph from a validated document.

    Nodes of unknown types, rejected parameter values and edges that no
    longer satisfy the connection rules are skipped and logged.
    """
    graph = WorkflowGraph(
        catalog,
        workflow_id=document["workflow_id"],
        name=document.get("workflow_name", ""),
    )

    for item in document["nodes"]:
        position = Position(item["position"]["x"], item["position"]["y"])
        try:
            node = graph.add_node(item["type"], position, node_id=item["id"])
        except UnknownTypeError:
            logger.warning("Skipping node '%s': type '%s' is not in the catalog", item["id"], item["type"])
            continue
        for param_id, value in item.get("parameters", {}).items():
            if value is None:
                continue
            try:
                graph.update_parameter(node.id, param_id, value)
            except ParameterError as e:
                logger.warning("Skipping parameter '%s' of node '%s': %s", param_id, node.id, e.message)
        for port_id, value in item.get("inputs", {}).items():
            if node.input(port_id) is None:
                logger.warning("Skipping bound value for unknown input '%s' of node '%s'", port_id, node.id)
                continue
            graph.bind_input(node.id, port_id, value)

    for edge in document["edges"]:
        source = PortRef(edge["source"]["nodeId"], edge["source"]["portId"])
        target = PortRef(edge["target"]["nodeId"], edge["target"]["portId"])
        try:
            graph.add_edge(source, target, edge_id=edge["id"])
        except ConnectionRuleError as e:
            logger.warning("Skipping edge '%s': %s", edge["id"], e.message)

    # Mutations made while loading are not published
    graph.attach_bus(bus)
    return graph


# --- Serialization ---

def serialize_graph(document: WorkflowDocument) -> str:
    """
    Serialize a workflow document to a JSON string.

    Raises:
        SerializationError: If the document is malformed or holds values
            that are not JSON-serializable.
    """
    _validate_document(document)
    try:
        return json.dumps(document, indent=2)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize workflow: {e}") from e


def deserialize_graph(json_str: str) -> WorkflowDocument:
    """
    Parse and validate a workflow document.

    Raises:
        SerializationError: If the JSON is invalid or the document does
            not have the expected shape.
    """
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SerializationError(f"Invalid JSON: {e}") from e
    _validate_document(data)
    return cast(WorkflowDocument, data)


def _validate_document(data: Any) -> None:
    if not isinstance(data, dict):
        raise SerializationError("Workflow document must be an object at the top level.")
    for key in ("workflow_id", "nodes", "edges"):
        if key not in data:
            raise SerializationError(f"Missing required key '{key}' in workflow document.")
    if not isinstance(data["workflow_id"], str):
        raise SerializationError("'workflow_id' must be a string.")
    if not isinstance(data.get("workflow_name", ""), str):
        raise SerializationError("'workflow_name' must be a string.")
    if not isinstance(data["nodes"], list):
        raise SerializationError("'nodes' must be a list.")
    for node in data["nodes"]:
        _validate_node(node)
    if not isinstance(data["edges"], list):
        raise SerializationError("'edges' must be a list.")
    for edge in data["edges"]:
        _validate_edge(edge)
    for key in ("nodes", "edges"):
        ids = [item["id"] for item in data[key]]
        if len(ids) != len(set(ids)):
            raise SerializationError(f"Duplicate ids in '{key}'.")
    if not isinstance(data.get("metadata", {}), dict):
        raise SerializationError("'metadata' must be an object.")


def _validate_node(node: Any) -> None:
    if not isinstance(node, dict):
        raise SerializationError("Each node must be an object.")
    for key in ("id", "type", "position"):
        if key not in node:
            raise SerializationError(f"Node missing required key '{key}'.")
    if not isinstance(node["id"], str) or not isinstance(node["type"], str):
        raise SerializationError("Node 'id' and 'type' must be strings.")
    position = node["position"]
    if not isinstance(position, dict):
        raise SerializationError("Node 'position' must be an object.")
    for axis in ("x", "y"):
        if not isinstance(position.get(axis), (float, int)) or isinstance(position.get(axis), bool):
            raise SerializationError(f"Node 'position.{axis}' must be a number.")
    for key in ("parameters", "inputs"):
        if not isinstance(node.get(key, {}), dict):
            raise SerializationError(f"Node '{key}' must be an object.")


def _validate_edge(edge: Any) -> None:
    if not isinstance(edge, dict):
        raise SerializationError("Each edge must be an object.")
    if not isinstance(edge.get("id"), str):
        raise SerializationError("Edge 'id' must be a string.")
    for end in ("source", "target"):
        endpoint: Dict[str, Any] = edge.get(end)
        if not isinstance(endpoint, dict):
            raise SerializationError(f"Edge '{end}' must be an object.")
        for key in ("nodeId", "portId"):
            if not isinstance(endpoint.get(key), str):
                raise SerializationError(f"Edge '{end}.{key}' must be a string.")


# --- File I/O ---

def load_graph_from_file(path: str, catalog: NodeCatalog, bus: Optional[EventBus] = None) -> WorkflowGraph:
    """
    Load a workflow from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        SerializationError: If the file contents are invalid.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"File not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        json_str = f.read()
    graph = document_to_graph(deserialize_graph(json_str), catalog, bus=bus)
    logger.info("Loaded workflow '%s' from %s", graph.id, path)
    return graph


def save_graph_to_file(graph: WorkflowGraph, path: str) -> None:
    """
    Save a workflow to a JSON file atomically.

    Raises:
        SerializationError: If serialization fails.
        OSError: If the file cannot be written.
    """
    json_str = serialize_graph(graph_to_document(graph))
    dir_name = os.path.dirname(os.path.abspath(path))
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=dir_name, delete=False) as tmp_file:
        tmp_file.write(json_str)
        temp_path = tmp_file.name
    try:
        shutil.move(temp_path, path)
    except OSError:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    logger.info("Saved workflow '%s' to %s", graph.id, path)
