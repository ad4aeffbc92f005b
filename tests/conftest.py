"""
Pytest configuration and fixtures for FlowCanvas.

- The sample node catalog from tests/helpers.py, parsed.
- A graph bound to an EventBus.
- Explicit Settings with short timeouts; nothing reads the environment.
"""

import copy
from pathlib import Path
from typing import Any, Dict, Generator, List

import pytest

from flowcanvas.builder.catalog import NodeCatalog
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.event_bus import EventBus
from flowcanvas.settings import Settings
from tests.helpers import CATALOG_PAYLOAD


# --- Core Fixtures ---

@pytest.fixture
def temp_work_dir(tmp_path: Path) -> Generator[Path, None, None]:
    yield tmp_path


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch, temp_work_dir: Path) -> Generator[None, None, None]:
    """Run in an empty directory with no FLOWCANVAS_ variables set."""
    import os

    monkeypatch.chdir(temp_work_dir)
    for key in list(os.environ):
        if key.startswith("FLOWCANVAS_"):
            monkeypatch.delenv(key)
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_base_url="http://testserver",
        execution_idle_timeout=1.0,
        request_timeout=1.0,
        _env_file=None,
    )


@pytest.fixture
def catalog_payload() -> List[Dict[str, Any]]:
    return copy.deepcopy(CATALOG_PAYLOAD)


@pytest.fixture
def catalog(catalog_payload) -> NodeCatalog:
    return NodeCatalog.from_payload(catalog_payload)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def graph(catalog: NodeCatalog, bus: EventBus) -> WorkflowGraph:
    return WorkflowGraph(catalog, workflow_id="wf-test", name="Test Workflow", bus=bus)
