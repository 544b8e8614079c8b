"""Service wiring and process lifecycle."""

import asyncio
import logging
from dataclasses import dataclass, field

from gvflow.config import Settings
from gvflow.db.entity_store import EntityStore
from gvflow.db.graph_store import GraphStore
from gvflow.db.variable_repository import VariableRepository
from gvflow.llm.adapters import AnthropicChatAdapter, ChatAdapterRegistry
from gvflow.services.broadcaster import LiveClientBroadcaster
from gvflow.services.entity_sync import EntityVariableSync
from gvflow.services.event_bus import EventBus
from gvflow.services.node_executors import (
    AssignmentExecutor,
    DisplayExecutor,
    LoopExecutor,
    NodeExecutorRegistry,
    StartExecutor,
    WorkTaskExecutor,
)
from gvflow.services.resolver import VariableResolver
from gvflow.services.variable_sources import (
    CustomVariableProvider,
    NpcVariableProvider,
    VariableSourceRegistry,
    WorkflowVariableProvider,
    WorkTaskVariableProvider,
)
from gvflow.services.variable_store import VariableStore
from gvflow.services.work_task_runner import WorkTaskRunner
from gvflow.services.workflow_engine import WorkflowExecutionEngine

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Explicitly constructed services shared by the API and background tasks."""

    settings: Settings
    bus: EventBus
    broadcaster: LiveClientBroadcaster
    repository: VariableRepository
    entities: EntityStore
    graphs: GraphStore
    sources: VariableSourceRegistry
    variables: VariableStore
    entity_sync: EntityVariableSync
    resolver: VariableResolver
    adapters: ChatAdapterRegistry
    runner: WorkTaskRunner
    executors: NodeExecutorRegistry
    engine: WorkflowExecutionEngine
    _reconcile_task: asyncio.Task | None = field(default=None, repr=False)

    async def start(self) -> None:
        """Start the bus, the broadcaster timers and orphan reconciliation."""
        await self.bus.start()
        await self.broadcaster.start()
        self.entity_sync.attach(self.entities, self.graphs)
        if self._reconcile_task is None:
            self._reconcile_task = asyncio.create_task(self._reconcile_periodically())
        logger.info("Services started")

    async def shutdown(self) -> None:
        """Stop background work and close every live client connection."""
        if self._reconcile_task:
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
            self._reconcile_task = None

        self.entity_sync.detach()
        await self.broadcaster.shutdown()
        await self.bus.shutdown()
        logger.info("Services shutdown complete")

    async def _reconcile_periodically(self) -> None:
        """Background task that invalidates orphaned variables."""
        while True:
            try:
                await asyncio.sleep(self.settings.reconcile_seconds)
                await self.variables.reconcile_orphans()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in orphan reconciliation task: {e}")


def build_services(
    settings: Settings, adapters: ChatAdapterRegistry | None = None
) -> ServiceContainer:
    """Construct every service for one process."""
    bus = EventBus()
    broadcaster = LiveClientBroadcaster(
        bus,
        heartbeat_seconds=settings.heartbeat_seconds,
        cleanup_seconds=settings.client_cleanup_seconds,
        idle_timeout_seconds=settings.client_idle_timeout_seconds,
    )

    repository = VariableRepository()
    entities = EntityStore()
    graphs = GraphStore()

    sources = VariableSourceRegistry()
    sources.register(NpcVariableProvider(repository, entities))
    sources.register(WorkTaskVariableProvider(repository, entities))
    sources.register(WorkflowVariableProvider(repository, graphs))
    sources.register(CustomVariableProvider(repository))

    variables = VariableStore(
        repository, sources, bus, deduplicate=settings.deduplicate_variables
    )
    resolver = VariableResolver(variables, max_depth=settings.resolver_max_depth)

    if adapters is None:
        adapters = ChatAdapterRegistry()
        if settings.anthropic_api_key:
            adapters.set_default(
                AnthropicChatAdapter(
                    api_key=settings.anthropic_api_key,
                    model=settings.ai_model,
                    timeout=settings.ai_timeout_seconds,
                )
            )
        else:
            logger.warning("ANTHROPIC_API_KEY not set; work task nodes will fail")

    runner = WorkTaskRunner(
        entities, resolver, adapters, timeout_seconds=settings.ai_timeout_seconds
    )
    executors = NodeExecutorRegistry(
        [
            StartExecutor(),
            WorkTaskExecutor(runner, resolver),
            AssignmentExecutor(variables),
            LoopExecutor(variables),
            DisplayExecutor(variables, resolver),
        ]
    )
    engine = WorkflowExecutionEngine(
        graphs, executors, variables, max_dispatches=settings.max_node_dispatches
    )

    return ServiceContainer(
        settings=settings,
        bus=bus,
        broadcaster=broadcaster,
        repository=repository,
        entities=entities,
        graphs=graphs,
        sources=sources,
        variables=variables,
        entity_sync=EntityVariableSync(variables),
        resolver=resolver,
        adapters=adapters,
        runner=runner,
        executors=executors,
        engine=engine,
    )
