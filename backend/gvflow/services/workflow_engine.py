"""WorkflowExecutionEngine - walks a workflow graph and records the run."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from gvflow.errors import (
    DispatchLimitExceeded,
    ExecutionCanceled,
    GvFlowError,
    MissingStartNode,
    WorkflowExecutionError,
)
from gvflow.models.workflow import (
    ExecutionStatus,
    NodeRunStatus,
    NodeType,
    WorkflowExecution,
    WorkflowGraph,
    WorkflowNode,
    WorkflowNodeUpdate,
)
from gvflow.services.execution_context import CancellationToken, ExecutionContext

if TYPE_CHECKING:
    from gvflow.db.graph_store import GraphStore
    from gvflow.services.node_executors import NodeExecutorRegistry
    from gvflow.services.variable_store import VariableStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_DISPATCHES = 200


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


class WorkflowExecutionEngine:
    """Runs workflows depth-first from their start node.

    Every node transitions idle -> running -> completed/failed, with its run
    count bumped on each entry into running. After a node completes, every
    outgoing connection its executor selects is followed in insertion order.
    Sibling branches run one after another, never concurrently.
    """

    def __init__(
        self,
        graphs: GraphStore,
        executors: NodeExecutorRegistry,
        store: VariableStore,
        max_dispatches: int = DEFAULT_MAX_DISPATCHES,
    ):
        self._graphs = graphs
        self._executors = executors
        self._store = store
        self._max_dispatches = max_dispatches
        self._running: dict[str, CancellationToken] = {}

    @property
    def running_executions(self) -> list[str]:
        """Ids of executions currently in progress."""
        return list(self._running)

    async def execute(
        self,
        workflow_id: str,
        input: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> WorkflowExecution:
        """Run a workflow once and return the terminal execution record.

        Node failures do not raise; they end the execution as ``failed`` with
        the error message and the per-node state trail.

        Raises:
            NotFound: If the workflow does not exist.
        """
        graph = await self._graphs.get_graph(workflow_id)
        execution = await self._graphs.create_execution(workflow_id, input)

        token = cancel_token or CancellationToken()
        self._running[execution.id] = token
        context = ExecutionContext(
            execution_id=execution.id,
            workflow_id=workflow_id,
            workflow_name=graph.workflow.name,
            graph=graph,
            input=input,
            cancel_token=token,
        )
        logger.info(f"Execution {execution.id} of workflow {workflow_id} created")

        try:
            start = self._find_start_node(graph)
            context.variables[context.start_key] = input

            execution.status = ExecutionStatus.RUNNING
            execution.started_at = _now()
            await self._graphs.save_execution(execution)

            await self._execute_node(start, context)
            execution.status = ExecutionStatus.COMPLETED
        except ExecutionCanceled as e:
            execution.status = ExecutionStatus.CANCELED
            execution.error = str(e)
            logger.info(f"Execution {execution.id} canceled")
        except GvFlowError as e:
            execution.status = ExecutionStatus.FAILED
            execution.error = str(e)
            logger.warning(f"Execution {execution.id} failed: {e}")
        except Exception as e:
            execution.status = ExecutionStatus.FAILED
            execution.error = str(e) or type(e).__name__
            logger.exception(f"Execution {execution.id} crashed: {e}")
        finally:
            self._running.pop(execution.id, None)

        execution.node_states = context.node_states
        execution.output = context.outputs
        execution.completed_at = _now()
        await self._graphs.save_execution(execution)
        await self._graphs.touch_last_run(workflow_id)
        await self._record_node_data(graph, context)

        if execution.status == ExecutionStatus.COMPLETED:
            await self._store.sync_workflow_outputs(graph.workflow, context.outputs)

        logger.info(
            f"Execution {execution.id} finished with status {execution.status.value} "
            f"after {context.dispatch_count} node dispatch(es)"
        )
        return execution

    def cancel(self, execution_id: str, reason: str = "Execution canceled") -> bool:
        """Request cancellation of a running execution.

        Returns:
            True if the execution was running.
        """
        token = self._running.get(execution_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def _find_start_node(self, graph: WorkflowGraph) -> WorkflowNode:
        starts = graph.start_nodes()
        if not starts:
            raise MissingStartNode(f"Workflow {graph.workflow.id} has no start node")
        if len(starts) > 1:
            raise MissingStartNode(
                f"Workflow {graph.workflow.id} has {len(starts)} start nodes, expected one"
            )
        return starts[0]

    async def _execute_node(self, node: WorkflowNode, context: ExecutionContext) -> None:
        context.cancel_token.raise_if_canceled()

        context.dispatch_count += 1
        if context.dispatch_count > self._max_dispatches:
            raise DispatchLimitExceeded(
                f"Execution exceeded {self._max_dispatches} node dispatches", node_id=node.id
            )

        state = context.state_for(node.id)
        state.status = NodeRunStatus.RUNNING
        state.run_count += 1
        state.start_time = _now()
        state.end_time = None
        state.error = None

        try:
            executor = self._executors.get(node.type)
            output = await executor.execute(node, context)
        except Exception as e:
            state.status = NodeRunStatus.FAILED
            state.error = str(e)
            state.end_time = _now()
            if isinstance(e, WorkflowExecutionError) and e.node_id is None:
                e.node_id = node.id
            logger.warning(f"Node {node.id} ({node.type.value}) failed: {e}")
            raise

        state.status = NodeRunStatus.COMPLETED
        state.output = output
        state.end_time = _now()
        if output is not None:
            context.variables[context.output_key(node.id)] = output
        if node.type == NodeType.DISPLAY:
            context.outputs.append(output["content"])

        for connection in executor.next_connections(node, output, context):
            target = context.graph.get_node(connection.target_node_id)
            if target is None:
                logger.warning(
                    f"Connection {connection.id} points at missing node "
                    f"{connection.target_node_id}"
                )
                continue
            await self._execute_node(target, context)

    async def _record_node_data(self, graph: WorkflowGraph, context: ExecutionContext) -> None:
        """Keep each node's latest output as its scratch data."""
        for node_id, state in context.node_states.items():
            node = graph.get_node(node_id)
            if node is None:
                continue
            data = {
                **node.data,
                "lastRun": {
                    "executionId": context.execution_id,
                    "status": state.status.value,
                    "output": state.output,
                    "error": state.error,
                },
            }
            await self._graphs.update_node(node_id, WorkflowNodeUpdate(data=data))
