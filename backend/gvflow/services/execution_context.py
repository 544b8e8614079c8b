"""Mutable state shared by the node executors during one execution."""

from dataclasses import dataclass, field
from typing import Any

from gvflow.errors import ExecutionCanceled
from gvflow.models.workflow import NodeState, WorkflowGraph


class CancellationToken:
    """Cooperative cancellation flag checked before every node dispatch."""

    def __init__(self) -> None:
        self._canceled = False
        self.reason: str | None = None

    @property
    def is_canceled(self) -> bool:
        return self._canceled

    def cancel(self, reason: str = "Execution canceled") -> None:
        self._canceled = True
        self.reason = reason

    def raise_if_canceled(self) -> None:
        if self._canceled:
            raise ExecutionCanceled(self.reason or "Execution canceled")


@dataclass
class ExecutionContext:
    """Everything a node executor may read or write during one execution.

    ``variables`` holds ``{workflowName}.start`` and one
    ``{workflowName}.{nodeId}.output`` entry per completed node, plus the
    targets written by assignment nodes.
    """

    execution_id: str
    workflow_id: str
    workflow_name: str
    graph: WorkflowGraph
    input: Any = None
    variables: dict[str, Any] = field(default_factory=dict)
    node_states: dict[str, NodeState] = field(default_factory=dict)
    outputs: list[Any] = field(default_factory=list)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    dispatch_count: int = 0

    @property
    def start_key(self) -> str:
        return f"{self.workflow_name}.start"

    def output_key(self, node_id: str) -> str:
        return f"{self.workflow_name}.{node_id}.output"

    def state_for(self, node_id: str) -> NodeState:
        """Node state, created idle on first access."""
        return self.node_states.setdefault(node_id, NodeState())

    def lookup(self, key: str) -> tuple[bool, Any]:
        """Find a context variable by key, ignoring a leading ``@``."""
        for candidate in (key, key.lstrip("@")):
            if candidate in self.variables:
                return True, self.variables[candidate]
        return False, None
