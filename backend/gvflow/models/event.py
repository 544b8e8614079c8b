"""Pydantic models for variable lifecycle events."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from gvflow.models.variable import Variable, VariableType


class VariableEventType(str, Enum):
    """Lifecycle events published on the event bus."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    INVALIDATED = "invalidated"
    SOURCE_RENAMED = "source_renamed"


class SourceRenamed(BaseModel):
    """Payload of a source_renamed event."""

    source_type: VariableType = Field(alias="sourceType")
    entity_id: str = Field(alias="entityId")
    old_source_name: str = Field(alias="oldSourceName")
    new_source_name: str = Field(alias="newSourceName")
    variables: list[Variable] = []

    model_config = {"populate_by_name": True}


class VariableEvent(BaseModel):
    """An event as delivered to subscribers."""

    type: VariableEventType
    payload: Any = None
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())

    def variables(self) -> list[Variable]:
        """Variables affected by this event."""
        if isinstance(self.payload, Variable):
            return [self.payload]
        if isinstance(self.payload, SourceRenamed):
            return list(self.payload.variables)
        return []
