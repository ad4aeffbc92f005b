"""
FlowCanvas Workflow Session

The explicit context object an editor surface works against: one catalog,
one graph being edited, the interaction controller driving it, the
dispatcher running it and the projector reflecting results back. All of
them share a single EventBus, which is also what UI components subscribe
to.

Usage:

    async with await WorkflowSession.connect() as session:
        session.controller.add_node("TextInput", (0, 0))
        run = await session.run("hello")
"""

from typing import Any, Optional

import httpx

from flowcanvas.builder.catalog import HttpCatalogSource, NodeCatalog
from flowcanvas.builder.constants import DEFAULT_INTERACTION_ID
from flowcanvas.builder.graph_model import WorkflowGraph
from flowcanvas.builder.interaction import InteractionController
from flowcanvas.builder.json_graph import load_graph_from_file, save_graph_to_file
from flowcanvas.builder.types import RunID
from flowcanvas.event_bus import CATALOG_REPLACED, EventBus
from flowcanvas.exceptions import RunInProgress
from flowcanvas.execution_engine.dispatcher import ExecutionDispatcher, ExecutionRun
from flowcanvas.execution_engine.projector import ResultProjector, TranscriptSink
from flowcanvas.execution_engine.transports import ExecutionTransport, HttpExecutionTransport
from flowcanvas.settings import Settings, get_settings
from flowcanvas.utilities.http import build_client
from flowcanvas.utilities.logging import get_logger

logger = get_logger("workflow_session")


class WorkflowSession:
    """
    Wires catalog, graph, controller, dispatcher and projector together.
    """

    def __init__(
        self,
        catalog: NodeCatalog,
        transport: ExecutionTransport,
        *,
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
        transcript_sink: Optional[TranscriptSink] = None,
        conversational: bool = False,
        workflow_name: str = "",
    ) -> None:
        self.settings = settings or get_settings()
        self.bus = bus or EventBus()
        self.catalog = catalog
        self.graph = WorkflowGraph(catalog, name=workflow_name, bus=self.bus)
        self.controller = InteractionController(self.graph, bus=self.bus)
        self.dispatcher = ExecutionDispatcher(transport, bus=self.bus, settings=self.settings)
        self.projector = ResultProjector(self.graph, sink=transcript_sink, conversational=conversational)
        self.projector.subscribe(self.bus)
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    async def connect(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ) -> "WorkflowSession":
        """
        Build a session backed by the HTTP catalog and execution services,
        loading the catalog before returning.

        A client created here is closed by ``aclose()``; a client passed in
        belongs to the caller.
        """
        settings = settings or get_settings()
        owned = client is None
        client = client or build_client(settings)
        catalog = NodeCatalog(source=HttpCatalogSource(client, settings))
        try:
            await catalog.refresh(force_refresh=False)
        except Exception:
            if owned:
                await client.aclose()
            raise
        session = cls(catalog, HttpExecutionTransport(client, settings), settings=settings, **kwargs)
        if owned:
            session._client = client
        return session

    async def aclose(self) -> None:
        self.dispatcher.cancel()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WorkflowSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Catalog ---

    async def refresh_catalog(self, force_refresh: bool = True) -> None:
        """Re-fetch the catalog. On failure the current catalog stays in place."""
        await self.catalog.refresh(force_refresh=force_refresh)
        self.bus.publish(CATALOG_REPLACED, {"types": len(self.catalog)})

    # --- Execution ---

    def submit(self, input_data: Any = "", interaction_id: str = DEFAULT_INTERACTION_ID) -> ExecutionRun:
        return self.dispatcher.submit(self.graph, input_data=input_data, interaction_id=interaction_id)

    async def run(self, input_data: Any = "", interaction_id: str = DEFAULT_INTERACTION_ID) -> ExecutionRun:
        return await self.dispatcher.execute(self.graph, input_data=input_data, interaction_id=interaction_id)

    def cancel(self, run_id: Optional[RunID] = None) -> bool:
        return self.dispatcher.cancel(run_id)

    # --- Documents ---

    def _replace_graph(self, graph: WorkflowGraph) -> None:
        active = self.dispatcher.active_run
        if active is not None:
            raise RunInProgress(
                f"Cannot switch workflows while run {active.id} is {active.status.value}.",
                details={"run_id": active.id},
            )
        self.graph = graph
        self.controller.attach(graph)
        self.projector.attach(graph)

    def new_workflow(self, name: str = "") -> WorkflowGraph:
        self._replace_graph(WorkflowGraph(self.catalog, name=name, bus=self.bus))
        return self.graph

    def load(self, path: str) -> WorkflowGraph:
        graph = load_graph_from_file(path, self.catalog, bus=self.bus)
        self._replace_graph(graph)
        return graph

    def save(self, path: str) -> None:
        save_graph_to_file(self.graph, path)
