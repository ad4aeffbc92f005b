"""FlowCanvas - typed workflow graph editing and execution dispatch."""

from importlib.metadata import version as _version

from flowcanvas.builder.catalog import NodeCatalog
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.builder.interaction import InteractionController
from flowcanvas.execution_engine.dispatcher import ExecutionDispatcher, ExecutionRun
from flowcanvas.execution_engine.projector import ResultProjector
from flowcanvas.workflow_session import WorkflowSession
from . import settings

__version__: str = _version("flowcanvas")

__all__ = [
    "NodeCatalog",
    "WorkflowGraph",
    "InteractionController",
    "ExecutionDispatcher",
    "ExecutionRun",
    "ResultProjector",
    "WorkflowSession",
    "settings",
]
