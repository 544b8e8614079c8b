"""Service layer for variables and workflow execution."""

from gvflow.services.broadcaster import LiveClientBroadcaster
from gvflow.services.container import ServiceContainer, build_services
from gvflow.services.event_bus import EventBus
from gvflow.services.execution_context import CancellationToken, ExecutionContext
from gvflow.services.resolver import VariableResolver
from gvflow.services.variable_store import VariableStore
from gvflow.services.workflow_engine import WorkflowExecutionEngine

__all__ = [
    "CancellationToken",
    "EventBus",
    "ExecutionContext",
    "LiveClientBroadcaster",
    "ServiceContainer",
    "VariableResolver",
    "VariableStore",
    "WorkflowExecutionEngine",
    "build_services",
]
