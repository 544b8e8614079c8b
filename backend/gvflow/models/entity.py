"""Pydantic models for variable-owning entities (NPCs and work tasks)."""

from pydantic import BaseModel, Field


class Npc(BaseModel):
    """A non-player character whose attributes are exposed as variables."""

    id: str
    name: str
    description: str = ""
    knowledge_background: str = Field(default="", alias="knowledgeBackground")
    action_principles: str = Field(default="", alias="actionPrinciples")
    activity_level: float = Field(default=0.5, alias="activityLevel")
    activity_level_description: str = Field(default="", alias="activityLevelDescription")
    prompt_template: str | None = Field(default=None, alias="promptTemplate")
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = {"populate_by_name": True}


class NpcCreate(BaseModel):
    """Request to create an NPC."""

    id: str | None = None
    name: str = Field(min_length=1)
    description: str = ""
    knowledge_background: str = Field(default="", alias="knowledgeBackground")
    action_principles: str = Field(default="", alias="actionPrinciples")
    activity_level: float = Field(default=0.5, alias="activityLevel")
    activity_level_description: str = Field(default="", alias="activityLevelDescription")
    prompt_template: str | None = Field(default=None, alias="promptTemplate")

    model_config = {"populate_by_name": True}


class NpcUpdate(BaseModel):
    """Partial update of an NPC."""

    name: str | None = None
    description: str | None = None
    knowledge_background: str | None = Field(default=None, alias="knowledgeBackground")
    action_principles: str | None = Field(default=None, alias="actionPrinciples")
    activity_level: float | None = Field(default=None, alias="activityLevel")
    activity_level_description: str | None = Field(
        default=None, alias="activityLevelDescription"
    )
    prompt_template: str | None = Field(default=None, alias="promptTemplate")

    model_config = {"populate_by_name": True}


class NpcPromptTemplate(BaseModel):
    """Per-task override of the NPC prompt."""

    template: str = ""
    is_customized: bool = Field(default=False, alias="isCustomized")

    model_config = {"populate_by_name": True}


class WorkTask(BaseModel):
    """A prompt run by an NPC through an AI service."""

    id: str
    name: str
    input: str = ""
    output: str = ""
    npc_id: str | None = Field(default=None, alias="npcId")
    ai_service_id: str | None = Field(default=None, alias="aiServiceId")
    npc_prompt_template: NpcPromptTemplate | None = Field(
        default=None, alias="npcPromptTemplate"
    )
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = {"populate_by_name": True}


class WorkTaskCreate(BaseModel):
    """Request to create a work task."""

    id: str | None = None
    name: str = Field(min_length=1)
    input: str = ""
    output: str = ""
    npc_id: str | None = Field(default=None, alias="npcId")
    ai_service_id: str | None = Field(default=None, alias="aiServiceId")
    npc_prompt_template: NpcPromptTemplate | None = Field(
        default=None, alias="npcPromptTemplate"
    )

    model_config = {"populate_by_name": True}


class WorkTaskUpdate(BaseModel):
    """Partial update of a work task."""

    name: str | None = None
    input: str | None = None
    output: str | None = None
    npc_id: str | None = Field(default=None, alias="npcId")
    ai_service_id: str | None = Field(default=None, alias="aiServiceId")
    npc_prompt_template: NpcPromptTemplate | None = Field(
        default=None, alias="npcPromptTemplate"
    )

    model_config = {"populate_by_name": True}
