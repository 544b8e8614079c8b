"""Tests for the HTTP API."""

import pytest

from gvflow.models.entity import NpcCreate
from gvflow.models.workflow import (
    NodeType,
    WorkflowConnectionCreate,
    WorkflowCreate,
    WorkflowNodeCreate,
)

NPC_ID = "550e8400-e29b-41d4-a716-446655440000"


async def _digest_workflow(services):
    workflow = await services.graphs.create_workflow(WorkflowCreate(name="Digest"))
    start = await services.graphs.add_node(workflow.id, WorkflowNodeCreate(type=NodeType.START))
    show = await services.graphs.add_node(
        workflow.id,
        WorkflowNodeCreate(type=NodeType.DISPLAY, config={"variablePath": "Digest.start"}),
    )
    await services.graphs.add_connection(
        workflow.id, WorkflowConnectionCreate(source_node_id=start.id, target_node_id=show.id)
    )
    return workflow


class TestHealth:
    """Tests for health endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestVariablesAPI:
    """Tests for variable endpoints."""

    @pytest.mark.asyncio
    async def test_custom_variable_lifecycle(self, client):
        response = await client.post(
            "/api/v1/variables",
            json={"name": "Weather", "value": "sunny", "entityId": "1718000000000"},
        )
        assert response.status_code == 201
        created = response.json()
        assert created["identifier"] == "@gv_custom_1718000000000_value-="
        assert created["displayIdentifier"] == "@Weather.value#0000"

        response = await client.get(f"/api/v1/variables/{created['id']}")
        assert response.status_code == 200
        assert response.json()["value"] == "sunny"

        response = await client.put(f"/api/v1/variables/{created['id']}", json={"value": "rain"})
        assert response.status_code == 200
        assert response.json()["value"] == "rain"

        response = await client.delete(f"/api/v1/variables/{created['id']}")
        assert response.status_code == 200
        assert response.json() == {"success": True}

        response = await client.get(f"/api/v1/variables/{created['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_conflict(self, client):
        body = {"name": "Weather", "entityId": "1718000000000"}
        await client.post("/api/v1/variables", json=body)

        response = await client.post("/api/v1/variables", json=body)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_create_requires_name(self, client):
        response = await client.post("/api/v1/variables", json={"name": ""})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_entity_variable_forbidden(self, client, services):
        await services.entities.create_npc(NpcCreate(id=NPC_ID, name="Aria"))

        response = await client.put(f"/api/v1/variables/npc_{NPC_ID}_name", json={"value": "Bob"})
        assert response.status_code == 403

        response = await client.delete(f"/api/v1/variables/npc_{NPC_ID}_name")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_wildcard_id_not_found(self, client):
        body = {"name": "Weather", "value": "sunny", "entityId": "1718000000000"}
        created = (await client.post("/api/v1/variables", json=body)).json()

        response = await client.delete("/api/v1/variables/%25")
        assert response.status_code == 404

        response = await client.get(f"/api/v1/variables/{created['id']}")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_list_filtered_by_type(self, client, services):
        await services.entities.create_npc(NpcCreate(id=NPC_ID, name="Aria"))
        await client.post("/api/v1/variables", json={"name": "Weather"})

        response = await client.get("/api/v1/variables", params={"type": "custom"})

        assert response.status_code == 200
        assert [v["name"] for v in response.json()] == ["Weather"]

    @pytest.mark.asyncio
    async def test_resolve(self, client, services):
        await services.entities.create_npc(
            NpcCreate(id=NPC_ID, name="Aria", knowledge_background="Loves astronomy")
        )

        response = await client.post(
            "/api/v1/variables/resolve",
            json={"text": f"Bio: @gv_npc_{NPC_ID}_knowledge-="},
        )

        assert response.status_code == 200
        assert response.json()["resolved"] == "Bio: Loves astronomy"
        assert response.json()["hasReferences"] is True

    @pytest.mark.asyncio
    async def test_resolve_cycle_is_unprocessable(self, client):
        created = (await client.post("/api/v1/variables", json={"name": "Echo"})).json()
        await client.put(
            f"/api/v1/variables/{created['id']}", json={"value": created["identifier"]}
        )

        response = await client.post(
            "/api/v1/variables/resolve", json={"text": created["identifier"], "maxDepth": 2}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_parse(self, client):
        response = await client.post(
            "/api/v1/variables/parse", json={"identifier": "@Aria.name#550e"}
        )
        assert response.status_code == 200
        assert response.json()["kind"] == "display"
        assert response.json()["shortId"] == "550e"

        response = await client.post("/api/v1/variables/parse", json={"identifier": "hello"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_sync(self, client, services):
        await services.entities.create_npc(NpcCreate(id=NPC_ID, name="Aria"))

        response = await client.post("/api/v1/variables/sync")
        assert response.json() == {"synced": 6}


class TestVariableEventsAPI:
    """Tests for the live event endpoints."""

    @pytest.mark.asyncio
    async def test_stats(self, client):
        response = await client.get("/api/v1/variable-events/stats")

        assert response.status_code == 200
        assert response.json()["total_clients"] == 0
        assert response.json()["heartbeat_running"] is True


class TestExecutionsAPI:
    """Tests for workflow execution endpoints."""

    @pytest.mark.asyncio
    async def test_execute_and_fetch(self, client, services):
        workflow = await _digest_workflow(services)

        response = await client.post(
            f"/api/v1/workflows/{workflow.id}/execute", json={"input": "hello"}
        )
        assert response.status_code == 200
        execution = response.json()
        assert execution["status"] == "completed"
        assert execution["output"] == ["hello"]
        assert len(execution["nodeStates"]) == 2

        response = await client.get(f"/api/v1/executions/{execution['id']}")
        assert response.json()["status"] == "completed"

        response = await client.get(f"/api/v1/workflows/{workflow.id}/executions")
        assert [e["id"] for e in response.json()] == [execution["id"]]

    @pytest.mark.asyncio
    async def test_execute_missing_workflow(self, client):
        response = await client.post("/api/v1/workflows/missing/execute", json={})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_finished_execution(self, client, services):
        workflow = await _digest_workflow(services)
        execution = await services.engine.execute(workflow.id, "x")

        response = await client.post(f"/api/v1/executions/{execution.id}/cancel")
        assert response.json() == {"canceled": False}

        response = await client.post("/api/v1/executions/missing/cancel")
        assert response.status_code == 404
