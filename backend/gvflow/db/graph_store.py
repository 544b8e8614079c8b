"""GraphStore - Storage for workflows, their node graphs and executions."""

import json
import uuid
from datetime import datetime
from typing import Any

import aiosqlite

from gvflow.db.database import get_db
from gvflow.db.entity_store import EntityAction, EntityChange, ListenerMixin
from gvflow.errors import Conflict, InvalidArgument, NotFound
from gvflow.models.workflow import (
    ExecutionStatus,
    NodeState,
    NodeType,
    Position,
    Workflow,
    WorkflowConnection,
    WorkflowConnectionCreate,
    WorkflowCreate,
    WorkflowExecution,
    WorkflowGraph,
    WorkflowMetadata,
    WorkflowNode,
    WorkflowNodeCreate,
    WorkflowNodeUpdate,
    WorkflowUpdate,
)


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load(raw: str | None) -> Any:
    return None if raw is None else json.loads(raw)


class GraphStore(ListenerMixin):
    """Storage abstraction for workflow graph operations."""

    # ==================== Workflows ====================

    async def create_workflow(self, data: WorkflowCreate) -> Workflow:
        """Create an empty workflow."""
        db = await get_db()
        now = _now()
        workflow = Workflow(
            id=data.id or _generate_id(),
            name=data.name,
            description=data.description,
            is_active=data.is_active,
            metadata=WorkflowMetadata(version=1, created_at=now, updated_at=now),
            created_at=now,
            updated_at=now,
        )
        await db.execute(
            """
            INSERT INTO workflows (id, name, description, is_active, metadata_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workflow.id,
                workflow.name,
                workflow.description,
                1 if workflow.is_active else 0,
                workflow.metadata.model_dump_json(by_alias=True),
                now,
                now,
            ),
        )
        await db.commit()

        await self._notify(
            EntityChange(
                kind="workflow",
                action=EntityAction.INSERT,
                entity_id=workflow.id,
                entity=workflow,
            )
        )
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Get a workflow by ID."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
        row = await cursor.fetchone()
        return self._row_to_workflow(row) if row else None

    async def list_workflows(self) -> list[Workflow]:
        """List all workflows."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM workflows ORDER BY created_at, id")
        rows = await cursor.fetchall()
        return [self._row_to_workflow(row) for row in rows]

    async def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> Workflow | None:
        """Apply a partial update to a workflow."""
        existing = await self.get_workflow(workflow_id)
        if existing is None:
            return None

        now = _now()
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        metadata = existing.metadata.model_copy(update={"updated_at": now})
        updated = existing.model_copy(
            update={**changes, "metadata": metadata, "updated_at": now}
        )
        await self._write_workflow(updated)

        changed = {k for k in changes if getattr(existing, k) != getattr(updated, k)}
        await self._notify(
            EntityChange(
                kind="workflow",
                action=EntityAction.UPDATE,
                entity_id=workflow_id,
                entity=updated,
                previous=existing,
                changed_fields=changed,
            )
        )
        return updated

    async def touch_last_run(self, workflow_id: str) -> None:
        """Record the time of the latest execution in the workflow metadata."""
        existing = await self.get_workflow(workflow_id)
        if existing is None:
            return
        metadata = existing.metadata.model_copy(update={"last_run_at": _now()})
        await self._write_workflow(existing.model_copy(update={"metadata": metadata}))

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and all its nodes, connections and executions."""
        existing = await self.get_workflow(workflow_id)
        if existing is None:
            return False

        db = await get_db()
        await db.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        await db.commit()

        await self._notify(
            EntityChange(
                kind="workflow",
                action=EntityAction.DELETE,
                entity_id=workflow_id,
                previous=existing,
            )
        )
        return True

    async def copy_workflow(self, workflow_id: str, new_name: str | None = None) -> Workflow:
        """Duplicate a workflow with fresh node and connection ids.

        Raises:
            NotFound: If the workflow does not exist.
        """
        graph = await self.get_graph(workflow_id)
        snapshot = self._snapshot(graph)

        source = graph.workflow
        copy = await self.create_workflow(
            WorkflowCreate(
                name=new_name or f"{source.name} (copy)",
                description=source.description,
                is_active=source.is_active,
            )
        )

        id_map: dict[str, str] = {}
        for node in snapshot["nodes"]:
            created = await self.add_node(
                copy.id,
                WorkflowNodeCreate(
                    type=node["type"],
                    name=node["name"],
                    position=Position(**node["position"]),
                    config=node["config"],
                ),
            )
            id_map[node["id"]] = created.id

        for edge in snapshot["connections"]:
            await self.add_connection(
                copy.id,
                WorkflowConnectionCreate(
                    source_node_id=id_map[edge["sourceNodeId"]],
                    target_node_id=id_map[edge["targetNodeId"]],
                    label=edge["label"],
                    config=edge["config"],
                ),
            )

        # Keep the snapshot that produced the copy for later copies of the copy
        metadata = copy.metadata.model_copy(update={"snapshot": snapshot})
        copy = copy.model_copy(update={"metadata": metadata})
        await self._write_workflow(copy)
        return copy

    async def _write_workflow(self, workflow: Workflow) -> None:
        db = await get_db()
        await db.execute(
            """
            UPDATE workflows
            SET name = ?, description = ?, is_active = ?, metadata_json = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                workflow.name,
                workflow.description,
                1 if workflow.is_active else 0,
                workflow.metadata.model_dump_json(by_alias=True),
                workflow.updated_at,
                workflow.id,
            ),
        )
        await db.commit()

    @staticmethod
    def _snapshot(graph: WorkflowGraph) -> dict[str, Any]:
        return {
            "nodes": [
                n.model_dump(mode="json", by_alias=True, exclude={"data"}) for n in graph.nodes
            ],
            "connections": [c.model_dump(mode="json", by_alias=True) for c in graph.connections],
        }

    # ==================== Nodes ====================

    async def add_node(self, workflow_id: str, data: WorkflowNodeCreate) -> WorkflowNode:
        """Add a node to a workflow.

        Raises:
            NotFound: If the workflow does not exist.
        """
        if await self.get_workflow(workflow_id) is None:
            raise NotFound(f"Workflow {workflow_id} not found")

        db = await get_db()
        node = WorkflowNode(
            id=data.id or _generate_id(),
            workflow_id=workflow_id,
            type=data.type,
            name=data.name,
            position=data.position,
            config=data.config,
        )
        await db.execute(
            """
            INSERT INTO workflow_nodes (id, workflow_id, type, name, position_json, config_json, data_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                node.id,
                workflow_id,
                node.type.value,
                node.name,
                node.position.model_dump_json(),
                json.dumps(node.config),
                json.dumps(node.data),
                _now(),
            ),
        )
        await db.commit()
        return node

    async def get_node(self, node_id: str) -> WorkflowNode | None:
        """Get a node by ID."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM workflow_nodes WHERE id = ?", (node_id,))
        row = await cursor.fetchone()
        return self._row_to_node(row) if row else None

    async def update_node(self, node_id: str, update: WorkflowNodeUpdate) -> WorkflowNode | None:
        """Apply a partial update to a node."""
        existing = await self.get_node(node_id)
        if existing is None:
            return None

        changes: dict[str, Any] = {}
        if update.name is not None:
            changes["name"] = update.name
        if update.position is not None:
            changes["position"] = update.position
        if update.config is not None:
            changes["config"] = update.config
        if update.data is not None:
            changes["data"] = update.data
        updated = existing.model_copy(update=changes)

        db = await get_db()
        await db.execute(
            """
            UPDATE workflow_nodes
            SET name = ?, position_json = ?, config_json = ?, data_json = ?
            WHERE id = ?
            """,
            (
                updated.name,
                updated.position.model_dump_json(),
                json.dumps(updated.config),
                json.dumps(updated.data, default=str),
                node_id,
            ),
        )
        await db.commit()
        return updated

    async def delete_node(self, node_id: str) -> bool:
        """Delete a node and its connections."""
        db = await get_db()
        cursor = await db.execute("DELETE FROM workflow_nodes WHERE id = ?", (node_id,))
        await db.commit()
        return cursor.rowcount > 0

    # ==================== Connections ====================

    async def add_connection(
        self, workflow_id: str, data: WorkflowConnectionCreate
    ) -> WorkflowConnection:
        """Connect two nodes of the same workflow.

        Raises:
            InvalidArgument: If either node is missing or belongs to another workflow.
            Conflict: If the two nodes are already connected in that direction.
        """
        for node_id in (data.source_node_id, data.target_node_id):
            node = await self.get_node(node_id)
            if node is None or node.workflow_id != workflow_id:
                raise InvalidArgument(
                    f"Node {node_id} does not belong to workflow {workflow_id}"
                )

        db = await get_db()
        connection = WorkflowConnection(
            id=data.id or _generate_id(),
            workflow_id=workflow_id,
            source_node_id=data.source_node_id,
            target_node_id=data.target_node_id,
            label=data.label,
            config=data.config,
        )
        try:
            await db.execute(
                """
                INSERT INTO workflow_connections (id, workflow_id, source_node_id, target_node_id, label, config_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    connection.id,
                    workflow_id,
                    connection.source_node_id,
                    connection.target_node_id,
                    connection.label,
                    json.dumps(connection.config),
                    _now(),
                ),
            )
            await db.commit()
        except aiosqlite.IntegrityError as e:
            await db.rollback()
            raise Conflict(
                f"Nodes {data.source_node_id} and {data.target_node_id} are already connected"
            ) from e
        return connection

    async def delete_connection(self, connection_id: str) -> bool:
        """Delete a connection."""
        db = await get_db()
        cursor = await db.execute(
            "DELETE FROM workflow_connections WHERE id = ?", (connection_id,)
        )
        await db.commit()
        return cursor.rowcount > 0

    async def get_graph(self, workflow_id: str) -> WorkflowGraph:
        """Load a workflow with all its nodes and connections.

        Raises:
            NotFound: If the workflow does not exist.
        """
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            raise NotFound(f"Workflow {workflow_id} not found")

        db = await get_db()
        cursor = await db.execute(
            "SELECT * FROM workflow_nodes WHERE workflow_id = ? ORDER BY created_at, rowid",
            (workflow_id,),
        )
        nodes = [self._row_to_node(row) for row in await cursor.fetchall()]

        cursor = await db.execute(
            "SELECT * FROM workflow_connections WHERE workflow_id = ? ORDER BY created_at, rowid",
            (workflow_id,),
        )
        connections = [self._row_to_connection(row) for row in await cursor.fetchall()]

        return WorkflowGraph(workflow=workflow, nodes=nodes, connections=connections)

    # ==================== Executions ====================

    async def create_execution(self, workflow_id: str, input: Any) -> WorkflowExecution:
        """Create an execution record in idle state."""
        db = await get_db()
        execution = WorkflowExecution(
            id=_generate_id(),
            workflow_id=workflow_id,
            status=ExecutionStatus.IDLE,
            input=input,
            created_at=_now(),
        )
        await db.execute(
            """
            INSERT INTO workflow_executions (id, workflow_id, status, input_json, node_states_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                execution.id,
                workflow_id,
                execution.status.value,
                _dump(input),
                "{}",
                execution.created_at,
            ),
        )
        await db.commit()
        return execution

    async def save_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Persist the mutable state of an execution."""
        db = await get_db()
        node_states = {
            node_id: state.model_dump(mode="json", by_alias=True)
            for node_id, state in execution.node_states.items()
        }
        await db.execute(
            """
            UPDATE workflow_executions
            SET status = ?, output_json = ?, node_states_json = ?, error = ?,
                started_at = ?, completed_at = ?
            WHERE id = ?
            """,
            (
                execution.status.value,
                json.dumps(execution.output, default=str) if execution.output is not None else None,
                json.dumps(node_states, default=str),
                execution.error,
                execution.started_at,
                execution.completed_at,
                execution.id,
            ),
        )
        await db.commit()
        return execution

    async def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Get an execution by ID."""
        db = await get_db()
        cursor = await db.execute(
            "SELECT * FROM workflow_executions WHERE id = ?", (execution_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_execution(row) if row else None

    async def list_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        """List executions of a workflow, newest first."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM workflow_executions
            WHERE workflow_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (workflow_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_execution(row) for row in rows]

    async def get_latest_execution(self, workflow_id: str) -> WorkflowExecution | None:
        """Most recent execution of a workflow."""
        executions = await self.list_executions(workflow_id, limit=1)
        return executions[0] if executions else None

    # ==================== Row Conversion ====================

    def _row_to_workflow(self, row: aiosqlite.Row) -> Workflow:
        return Workflow(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            metadata=WorkflowMetadata.model_validate_json(row["metadata_json"] or "{}"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_node(self, row: aiosqlite.Row) -> WorkflowNode:
        return WorkflowNode(
            id=row["id"],
            workflow_id=row["workflow_id"],
            type=NodeType(row["type"]),
            name=row["name"],
            position=Position(**json.loads(row["position_json"] or "{}")),
            config=json.loads(row["config_json"] or "{}"),
            data=json.loads(row["data_json"] or "{}"),
        )

    def _row_to_connection(self, row: aiosqlite.Row) -> WorkflowConnection:
        return WorkflowConnection(
            id=row["id"],
            workflow_id=row["workflow_id"],
            source_node_id=row["source_node_id"],
            target_node_id=row["target_node_id"],
            label=row["label"],
            config=json.loads(row["config_json"] or "{}"),
        )

    def _row_to_execution(self, row: aiosqlite.Row) -> WorkflowExecution:
        node_states = {
            node_id: NodeState.model_validate(state)
            for node_id, state in json.loads(row["node_states_json"] or "{}").items()
        }
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=ExecutionStatus(row["status"]),
            input=_load(row["input_json"]),
            output=_load(row["output_json"]),
            node_states=node_states,
            error=row["error"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
        )
