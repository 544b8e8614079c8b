"""Tests for GraphStore."""

import pytest

from gvflow.db.graph_store import GraphStore
from gvflow.errors import Conflict, InvalidArgument, NotFound
from gvflow.models.workflow import (
    NodeType,
    Position,
    WorkflowConnectionCreate,
    WorkflowCreate,
    WorkflowNodeCreate,
    WorkflowNodeUpdate,
    WorkflowUpdate,
)


@pytest.fixture
def store():
    return GraphStore()


async def _two_nodes(store, name="Flow"):
    workflow = await store.create_workflow(WorkflowCreate(name=name))
    a = await store.add_node(workflow.id, WorkflowNodeCreate(type=NodeType.START, name="a"))
    b = await store.add_node(
        workflow.id,
        WorkflowNodeCreate(
            type=NodeType.DISPLAY,
            name="b",
            position=Position(x=10, y=20),
            config={"variablePath": "Flow.start"},
        ),
    )
    return workflow, a, b


class TestWorkflows:
    """Tests for workflow CRUD."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        workflow = await store.create_workflow(WorkflowCreate(name="Flow", description="d"))

        fetched = await store.get_workflow(workflow.id)
        assert fetched.name == "Flow"
        assert fetched.metadata.version == 1
        assert fetched.metadata.created_at == workflow.created_at

    @pytest.mark.asyncio
    async def test_update_notifies_listeners(self, store):
        changes = []

        async def listener(change):
            changes.append(change)

        store.add_listener(listener)
        workflow = await store.create_workflow(WorkflowCreate(name="Flow"))
        await store.update_workflow(workflow.id, WorkflowUpdate(name="Renamed", is_active=False))

        assert [c.action.value for c in changes] == ["insert", "update"]
        assert changes[1].changed_fields == {"name", "is_active"}
        assert changes[1].previous.name == "Flow"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_undo_write(self, store):
        async def listener(change):
            raise RuntimeError("boom")

        store.add_listener(listener)
        workflow = await store.create_workflow(WorkflowCreate(name="Flow"))

        assert await store.get_workflow(workflow.id) is not None

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store):
        workflow, a, b = await _two_nodes(store)
        await store.add_connection(
            workflow.id, WorkflowConnectionCreate(source_node_id=a.id, target_node_id=b.id)
        )
        await store.create_execution(workflow.id, None)

        assert await store.delete_workflow(workflow.id)
        assert await store.get_node(a.id) is None
        assert await store.list_executions(workflow.id) == []
        assert not await store.delete_workflow(workflow.id)

    @pytest.mark.asyncio
    async def test_copy_workflow(self, store):
        workflow, a, b = await _two_nodes(store)
        await store.add_connection(
            workflow.id,
            WorkflowConnectionCreate(source_node_id=a.id, target_node_id=b.id, label="Yes"),
        )

        copy = await store.copy_workflow(workflow.id)

        assert copy.name == "Flow (copy)"
        assert copy.metadata.snapshot is not None
        graph = await store.get_graph(copy.id)
        assert [n.name for n in graph.nodes] == ["a", "b"]
        assert {n.id for n in graph.nodes}.isdisjoint({a.id, b.id})
        assert graph.nodes[1].config == {"variablePath": "Flow.start"}
        assert graph.nodes[1].position == Position(x=10, y=20)
        [edge] = graph.connections
        assert edge.label == "Yes"
        assert (edge.source_node_id, edge.target_node_id) == (graph.nodes[0].id, graph.nodes[1].id)

    @pytest.mark.asyncio
    async def test_copy_missing_workflow(self, store):
        with pytest.raises(NotFound):
            await store.copy_workflow("missing")


class TestNodesAndConnections:
    """Tests for graph editing."""

    @pytest.mark.asyncio
    async def test_add_node_to_missing_workflow(self, store):
        with pytest.raises(NotFound):
            await store.add_node("missing", WorkflowNodeCreate(type=NodeType.START))

    @pytest.mark.asyncio
    async def test_update_node(self, store):
        _, a, _ = await _two_nodes(store)

        updated = await store.update_node(a.id, WorkflowNodeUpdate(name="entry", data={"k": 1}))

        assert updated.name == "entry"
        fetched = await store.get_node(a.id)
        assert fetched.data == {"k": 1}
        assert fetched.type == NodeType.START

    @pytest.mark.asyncio
    async def test_duplicate_connection_conflicts(self, store):
        workflow, a, b = await _two_nodes(store)
        data = WorkflowConnectionCreate(source_node_id=a.id, target_node_id=b.id)
        await store.add_connection(workflow.id, data)

        with pytest.raises(Conflict):
            await store.add_connection(workflow.id, data)

        reverse = WorkflowConnectionCreate(source_node_id=b.id, target_node_id=a.id)
        assert await store.add_connection(workflow.id, reverse)

    @pytest.mark.asyncio
    async def test_cross_workflow_connection_rejected(self, store):
        first, a, _ = await _two_nodes(store, "First")
        _, _, other = await _two_nodes(store, "Second")

        with pytest.raises(InvalidArgument):
            await store.add_connection(
                first.id, WorkflowConnectionCreate(source_node_id=a.id, target_node_id=other.id)
            )
        with pytest.raises(InvalidArgument):
            await store.add_connection(
                first.id, WorkflowConnectionCreate(source_node_id=a.id, target_node_id="ghost")
            )

    @pytest.mark.asyncio
    async def test_delete_node_removes_connections(self, store):
        workflow, a, b = await _two_nodes(store)
        await store.add_connection(
            workflow.id, WorkflowConnectionCreate(source_node_id=a.id, target_node_id=b.id)
        )

        assert await store.delete_node(b.id)

        graph = await store.get_graph(workflow.id)
        assert [n.id for n in graph.nodes] == [a.id]
        assert graph.connections == []

    @pytest.mark.asyncio
    async def test_get_graph_missing(self, store):
        with pytest.raises(NotFound):
            await store.get_graph("missing")


class TestExecutions:
    """Tests for execution records."""

    @pytest.mark.asyncio
    async def test_create_starts_idle(self, store):
        workflow = await store.create_workflow(WorkflowCreate(name="Flow"))

        execution = await store.create_execution(workflow.id, {"q": "hi"})

        fetched = await store.get_execution(execution.id)
        assert fetched.status.value == "idle"
        assert fetched.input == {"q": "hi"}
        assert fetched.node_states == {}

    @pytest.mark.asyncio
    async def test_list_newest_first(self, store):
        workflow = await store.create_workflow(WorkflowCreate(name="Flow"))
        first = await store.create_execution(workflow.id, 1)
        second = await store.create_execution(workflow.id, 2)

        executions = await store.list_executions(workflow.id)

        assert [e.id for e in executions] == [second.id, first.id]
        assert (await store.get_latest_execution(workflow.id)).id == second.id
