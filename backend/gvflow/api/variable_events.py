"""Live variable event stream (server-sent events)."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from gvflow.api.deps import get_services
from gvflow.services.container import ServiceContainer

router = APIRouter()


@router.get("/variable-events")
async def stream_variable_events(
    services: ServiceContainer = Depends(get_services),
) -> StreamingResponse:
    """Stream variable changes to the client.

    Events:
        - connected: Sent once with the assigned clientId
        - sync: A variable was created, updated, deleted, invalidated or renamed
        - keepalive: Periodic heartbeat with the active client count
    """
    client_id = await services.broadcaster.add_client()
    return StreamingResponse(
        services.broadcaster.stream(client_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/variable-events/stats")
async def variable_event_stats(
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    """Connected client statistics."""
    return services.broadcaster.get_stats()
