"""Pydantic models for global variables."""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class VariableType(str, Enum):
    """Kind of entity that owns a variable."""

    NPC = "npc"
    TASK = "task"
    CUSTOM = "custom"
    FILE = "file"
    WORKFLOW = "workflow"


def stringify_value(value: Any) -> str:
    """Render any stored or computed value as variable text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class VariableSource(BaseModel):
    """Denormalized provenance of a variable."""

    id: str
    name: str
    type: VariableType


class Variable(BaseModel):
    """A named value addressable through its system identifier."""

    id: str
    name: str
    type: VariableType
    source: VariableSource
    identifier: str
    display_identifier: str = Field(alias="displayIdentifier")
    value: str = ""
    entity_id: str | None = Field(default=None, alias="entityId")
    fieldname: str
    is_valid: bool = Field(default=True, alias="isValid")
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = {"populate_by_name": True}

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> str:
        return stringify_value(v)


class VariableCreate(BaseModel):
    """Request to create a custom variable."""

    name: str = Field(min_length=1)
    value: Any = ""
    entity_id: str | None = Field(default=None, alias="entityId")
    fieldname: str = "value"

    model_config = {"populate_by_name": True}


class VariableUpdate(BaseModel):
    """Request to update a custom variable."""

    name: str | None = None
    value: Any | None = None
