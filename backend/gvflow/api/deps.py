"""FastAPI dependencies."""

from fastapi import Request

from gvflow.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Services built during application startup."""
    return request.app.state.services
