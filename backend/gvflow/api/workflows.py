"""Workflow execution API routes."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from gvflow.api.deps import get_services
from gvflow.models import WorkflowExecution
from gvflow.services.container import ServiceContainer

router = APIRouter()


class ExecuteRequest(BaseModel):
    """Input handed to the start node."""

    input: Any = None


# ==================== Executions ====================


@router.post("/workflows/{workflow_id}/execute", response_model=WorkflowExecution)
async def execute_workflow(
    workflow_id: str,
    request: ExecuteRequest | None = None,
    services: ServiceContainer = Depends(get_services),
) -> WorkflowExecution:
    """Run a workflow to completion and return the execution record."""
    workflow = await services.graphs.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")

    return await services.engine.execute(
        workflow_id, request.input if request else None
    )


@router.get("/workflows/{workflow_id}/executions", response_model=list[WorkflowExecution])
async def list_executions(
    workflow_id: str,
    limit: int = 50,
    services: ServiceContainer = Depends(get_services),
) -> list[WorkflowExecution]:
    """List recent executions of a workflow."""
    workflow = await services.graphs.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return await services.graphs.list_executions(workflow_id, limit=limit)


@router.get("/executions/{execution_id}", response_model=WorkflowExecution)
async def get_execution(
    execution_id: str,
    services: ServiceContainer = Depends(get_services),
) -> WorkflowExecution:
    """Get an execution with its per-node state."""
    execution = await services.graphs.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return execution


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    services: ServiceContainer = Depends(get_services),
) -> dict[str, bool]:
    """Request cancellation of a running execution."""
    execution = await services.graphs.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return {"canceled": services.engine.cancel(execution_id)}
