import json
import os

import pytest

from flowcanvas.builder.catalog import NodeCatalog
from flowcanvas.builder.json_graph import (
    deserialize_graph,
    document_to_graph,
    graph_to_document,
    load_graph_from_file,
    save_graph_to_file,
    serialize_graph,
)
from flowcanvas.builder.types import PortRef, Position
from flowcanvas.event_bus import GRAPH_CHANGED
from flowcanvas.exceptions import SerializationError
from tests.helpers import EventRecorder


@pytest.fixture
def populated(graph):
    text = graph.add_node("TextInput", (0, 0), node_id="text")
    divide = graph.add_node("Divide", (200, 50), node_id="divide")
    concat = graph.add_node("Concat", (400, 0), node_id="concat")
    graph.bind_input(divide.id, "a", 10)
    graph.bind_input(divide.id, "b", 4)
    graph.update_parameter(divide.id, "rounding", "floor")
    graph.bind_input(concat.id, "b", "!")
    graph.add_edge(PortRef(text.id, "text"), PortRef(concat.id, "a"), edge_id="e1")
    return graph


def test_save_and_load_file(populated, catalog, temp_work_dir):
    path = temp_work_dir / "workflow.json"
    save_graph_to_file(populated, str(path))

    assert os.listdir(temp_work_dir) == ["workflow.json"]
    loaded = load_graph_from_file(str(path), catalog)

    assert loaded.id == "wf-test"
    assert loaded.name == "Test Workflow"
    assert list(loaded.nodes) == ["text", "divide", "concat"]
    assert loaded.nodes["divide"].position == Position(200, 50)
    assert loaded.nodes["divide"].parameter("rounding").value == "floor"
    assert loaded.nodes["divide"].input("a").value == 10
    assert loaded.nodes["concat"].input("b").value == "!"
    assert list(loaded.edges) == ["e1"]
    assert loaded.to_execution_request() == populated.to_execution_request()


def test_document_edges_use_request_shape(populated):
    document = graph_to_document(populated)
    assert document["edges"][0]["source"] == {"nodeId": "text", "portId": "text", "portType": "output"}
    assert document["metadata"]["schema_version"] == "1"


def test_load_skips_stale_types_and_edges(populated, catalog_payload, caplog):
    document = graph_to_document(populated)
    # A catalog that no longer knows TextInput
    catalog_payload[0]["functions"][0]["nodes"] = catalog_payload[0]["functions"][0]["nodes"][1:]
    shrunk = NodeCatalog.from_payload(catalog_payload)

    graph = document_to_graph(document, shrunk)

    assert list(graph.nodes) == ["divide", "concat"]
    assert graph.edges == {}
    assert "type 'TextInput' is not in the catalog" in caplog.text
    assert "Skipping edge 'e1'" in caplog.text


def test_load_skips_edges_that_break_rules(catalog):
    document = {
        "workflow_id": "wf-stale",
        "workflow_name": "",
        "nodes": [
            {"id": "n", "type": "NumberInput", "position": {"x": 0, "y": 0}},
            {"id": "u", "type": "Uppercase", "position": {"x": 1, "y": 1}},
        ],
        "edges": [{"id": "bad", "source": {"nodeId": "n", "portId": "value"}, "target": {"nodeId": "u", "portId": "text"}}],
    }
    graph = document_to_graph(deserialize_graph(json.dumps(document)), catalog)
    assert set(graph.nodes) == {"n", "u"}
    assert graph.edges == {}


def test_loaded_graph_publishes_only_later_mutations(populated, catalog, bus):
    recorder = EventRecorder(bus, GRAPH_CHANGED)
    graph = document_to_graph(graph_to_document(populated), catalog, bus=bus)
    assert recorder.events == []
    graph.move_node("text", (5, 5))
    assert recorder.names == [GRAPH_CHANGED]


@pytest.mark.parametrize(
    "text, message",
    [
        ("not json", "Invalid JSON"),
        ("[]", "top level"),
        ('{"nodes": [], "edges": []}', "workflow_id"),
        ('{"workflow_id": "w", "nodes": {}, "edges": []}', "'nodes' must be a list"),
        ('{"workflow_id": "w", "nodes": [{"id": "a", "type": "T"}], "edges": []}', "position"),
        ('{"workflow_id": "w", "nodes": [], "edges": [{"id": "e", "source": {}, "target": {}}]}', "source.nodeId"),
    ],
)
def test_deserialize_rejects_malformed_documents(text, message):
    with pytest.raises(SerializationError) as exc:
        deserialize_graph(text)
    assert message in exc.value.message


def test_duplicate_node_ids_rejected():
    node = {"id": "a", "type": "T", "position": {"x": 0, "y": 0}}
    with pytest.raises(SerializationError):
        deserialize_graph(json.dumps({"workflow_id": "w", "nodes": [node, node], "edges": []}))


def test_serialize_rejects_unserializable_values(populated):
    populated.bind_input("concat", "b", object())
    with pytest.raises(SerializationError):
        serialize_graph(graph_to_document(populated))


def test_load_missing_file(catalog, temp_work_dir):
    with pytest.raises(FileNotFoundError):
        load_graph_from_file(str(temp_work_dir / "nope.json"), catalog)
