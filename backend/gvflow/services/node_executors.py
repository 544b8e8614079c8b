"""Node executors: one handler per workflow node type."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from gvflow.errors import (
    InvalidArgument,
    InvalidNodeConfig,
    NotFound,
    UnparseableIdentifier,
    UnsupportedNodeType,
    WorkTaskExecutionFailed,
)
from gvflow.models.variable import stringify_value
from gvflow.models.workflow import BranchLabel, NodeType, WorkflowConnection, WorkflowNode

if TYPE_CHECKING:
    from gvflow.services.execution_context import ExecutionContext
    from gvflow.services.resolver import VariableResolver
    from gvflow.services.variable_store import VariableStore
    from gvflow.services.work_task_runner import WorkTaskRunner

logger = logging.getLogger(__name__)

_UNRESOLVED = (NotFound, UnparseableIdentifier, InvalidArgument)


async def _read_variable(
    reference: str, context: ExecutionContext, store: VariableStore
) -> tuple[bool, Any]:
    """Look a reference up in the execution context first, then in the store."""
    found, value = context.lookup(reference)
    if found:
        return True, value
    try:
        variable = await store.lookup(reference)
    except _UNRESOLVED:
        return False, None
    return True, variable.value


class NodeExecutor(ABC):
    """Abstract base class for node executors."""

    node_type: ClassVar[NodeType]

    @abstractmethod
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        """Run the node and return its output."""
        pass

    def next_connections(
        self, node: WorkflowNode, output: Any, context: ExecutionContext
    ) -> list[WorkflowConnection]:
        """Outgoing connections to follow after the node completes; all by default."""
        return context.graph.outgoing(node.id)


class StartExecutor(NodeExecutor):
    """Passes the execution input through unchanged."""

    node_type = NodeType.START

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        return context.input


class WorkTaskExecutor(NodeExecutor):
    """Runs a work task through its read-only test execution."""

    node_type = NodeType.WORK_TASK

    def __init__(self, runner: WorkTaskRunner, resolver: VariableResolver):
        self._runner = runner
        self._resolver = resolver

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        task_id = node.config.get("workTaskId")
        if not task_id:
            raise InvalidNodeConfig(
                f"Work task node {node.id} has no workTaskId", node_id=node.id
            )

        configured = node.config.get("input")
        if configured:
            task_input = await self._resolver.resolve_text(stringify_value(configured))
        else:
            task_input = await self._runner.get_task_input(task_id)
            if task_input is None:
                raise WorkTaskExecutionFailed(
                    f"Work task {task_id} not found", node_id=node.id
                )

        result = await self._runner.test_execute(task_id, task_input)
        if not result.success:
            raise WorkTaskExecutionFailed(
                f"Work task {task_id} failed: {result.error}", node_id=node.id
            )
        return result.output


class AssignmentExecutor(NodeExecutor):
    """Copies values into execution context variables.

    Config:
        assignments: list of ``{sourceVariable, targetVariable}``
    """

    node_type = NodeType.ASSIGNMENT

    def __init__(self, store: VariableStore):
        self._store = store

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        applied = []
        for assignment in node.config.get("assignments") or []:
            source = (assignment.get("sourceVariable") or "").strip()
            target = (assignment.get("targetVariable") or "").strip().lstrip("@")
            if not source or not target:
                logger.warning(f"Assignment node {node.id}: skipping incomplete entry {assignment}")
                continue

            found, value = await _read_variable(source, context, self._store)
            if not found:
                logger.warning(f"Assignment node {node.id}: source {source} not found, skipping")
                continue

            context.variables[target] = value
            applied.append({"from": source, "to": target, "value": value})

        return {
            "message": f"Applied {len(applied)} assignment(s)",
            "assignments": applied,
        }


class LoopExecutor(NodeExecutor):
    """Evaluates a condition and follows the matching branch.

    Config:
        conditionType: ``runCount`` or ``variableValue``
        conditionConfig: ``{maxRuns}`` or ``{variable, expectedValue}``

    Connections labeled ``Yes`` are followed when the condition holds, ``No``
    when it does not; connections with any other label, or none, are always
    followed.
    """

    node_type = NodeType.LOOP

    def __init__(self, store: VariableStore):
        self._store = store

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        condition_type = node.config.get("conditionType", "runCount")
        condition = node.config.get("conditionConfig") or {}
        run_count = context.state_for(node.id).run_count

        if condition_type == "runCount":
            try:
                max_runs = int(condition.get("maxRuns") or 1)
            except (TypeError, ValueError):
                raise InvalidNodeConfig(
                    f"Loop node {node.id} has a non-numeric maxRuns", node_id=node.id
                ) from None
            met = run_count < max_runs
        elif condition_type == "variableValue":
            reference = condition.get("variable") or condition.get("variablePath")
            if not reference:
                raise InvalidNodeConfig(
                    f"Loop node {node.id} has no variable to compare", node_id=node.id
                )
            found, value = await _read_variable(reference, context, self._store)
            met = found and _loosely_equal(value, condition.get("expectedValue"))
        else:
            raise InvalidNodeConfig(
                f"Loop node {node.id} has unknown condition type {condition_type!r}",
                node_id=node.id,
            )

        return {
            "conditionMet": met,
            "runCount": run_count,
            "nextBranch": BranchLabel.YES.value if met else BranchLabel.NO.value,
        }

    def next_connections(
        self, node: WorkflowNode, output: Any, context: ExecutionContext
    ) -> list[WorkflowConnection]:
        branch = output["nextBranch"]
        branches = (BranchLabel.YES.value, BranchLabel.NO.value)
        return [
            c
            for c in context.graph.outgoing(node.id)
            if c.label not in branches or c.label == branch
        ]


def _loosely_equal(value: Any, expected: Any) -> bool:
    if value == expected:
        return True
    return stringify_value(value) == stringify_value(expected)


class DisplayExecutor(NodeExecutor):
    """Renders one variable for display.

    Config:
        variablePath: context key, identifier, or text containing references
        displayMode: passed through, ``direct`` by default
    """

    node_type = NodeType.DISPLAY

    def __init__(self, store: VariableStore, resolver: VariableResolver):
        self._store = store
        self._resolver = resolver

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> Any:
        path = (node.config.get("variablePath") or "").strip()
        content = await self._render(path, context)
        return {
            "content": content,
            "displayMode": node.config.get("displayMode") or "direct",
            "timestamp": datetime.utcnow().isoformat(),
        }

    async def _render(self, path: str, context: ExecutionContext) -> str:
        if not path:
            return "[No variable selected]"

        found, value = await _read_variable(path, context, self._store)
        if found:
            return stringify_value(value)

        if self._resolver.contains_references(path):
            rendered = await self._resolver.resolve_text(path)
            if rendered != path:
                return rendered

        return f"[Variable not found: {path}]"


class NodeExecutorRegistry:
    """Executors keyed by node type."""

    def __init__(self, executors: list[NodeExecutor] | None = None):
        self._executors: dict[NodeType, NodeExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: NodeExecutor) -> None:
        self._executors[executor.node_type] = executor

    def get(self, node_type: NodeType) -> NodeExecutor:
        """Executor for a node type.

        Raises:
            UnsupportedNodeType: If none is registered.
        """
        executor = self._executors.get(node_type)
        if executor is None:
            raise UnsupportedNodeType(f"Unsupported node type: {node_type.value}")
        return executor
