"""Variable API routes."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gvflow.api.deps import get_services
from gvflow.identifiers import parse_identifier
from gvflow.models import Variable, VariableCreate, VariableType, VariableUpdate
from gvflow.services.container import ServiceContainer

router = APIRouter()


class ResolveRequest(BaseModel):
    """Text to expand."""

    text: str
    max_depth: int | None = Field(default=None, alias="maxDepth", ge=0, le=20)

    model_config = {"populate_by_name": True}


class ResolveResponse(BaseModel):
    """Expanded text."""

    text: str
    resolved: str
    has_references: bool = Field(alias="hasReferences")

    model_config = {"populate_by_name": True}


class ParseRequest(BaseModel):
    """Identifier to parse."""

    identifier: str


# ==================== Variables ====================


@router.get("/variables", response_model=list[Variable])
async def list_variables(
    type: VariableType | None = Query(None),
    source_id: str | None = Query(None, alias="sourceId"),
    services: ServiceContainer = Depends(get_services),
) -> list[Variable]:
    """List persisted and virtual variables."""
    return await services.variables.list(type=type, source_id=source_id)


@router.post("/variables", response_model=Variable, status_code=201)
async def create_variable(
    data: VariableCreate,
    services: ServiceContainer = Depends(get_services),
) -> Variable:
    """Create a custom variable."""
    return await services.variables.create(data)


@router.post("/variables/resolve", response_model=ResolveResponse)
async def resolve_text(
    request: ResolveRequest,
    services: ServiceContainer = Depends(get_services),
) -> ResolveResponse:
    """Expand every variable reference in a piece of text."""
    resolved = await services.resolver.resolve_text(request.text, request.max_depth)
    return ResolveResponse(
        text=request.text,
        resolved=resolved,
        has_references=services.resolver.contains_references(request.text),
    )


@router.post("/variables/parse")
async def parse_variable_identifier(request: ParseRequest) -> dict[str, Any]:
    """Parse an identifier written in any supported grammar."""
    parsed = parse_identifier(request.identifier)
    return {
        "kind": parsed.kind.value,
        "type": parsed.type,
        "sourceId": parsed.source_id,
        "field": parsed.field,
        "sourceName": parsed.source_name,
        "shortId": parsed.short_id,
    }


@router.post("/variables/sync")
async def sync_variables(services: ServiceContainer = Depends(get_services)) -> dict[str, int]:
    """Upsert the variables of every entity."""
    return {"synced": await services.variables.sync_all()}


@router.get("/variables/{variable_id}", response_model=Variable)
async def get_variable(
    variable_id: str,
    services: ServiceContainer = Depends(get_services),
) -> Variable:
    """Get a variable by id, entity id or id fragment."""
    return await services.variables.get_by_id(variable_id)


@router.put("/variables/{variable_id}", response_model=Variable)
async def update_variable(
    variable_id: str,
    data: VariableUpdate,
    services: ServiceContainer = Depends(get_services),
) -> Variable:
    """Update a custom variable."""
    return await services.variables.update(variable_id, data)


@router.delete("/variables/{variable_id}")
async def delete_variable(
    variable_id: str,
    services: ServiceContainer = Depends(get_services),
) -> dict[str, bool]:
    """Delete a custom variable."""
    await services.variables.delete(variable_id)
    return {"success": True}
