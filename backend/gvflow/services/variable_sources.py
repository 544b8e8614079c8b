"""Variable source providers: one per kind of entity that owns variables.

A provider knows which fields of its entity are exposed as variables and can
materialize them on demand (virtual variables) or upsert them into the
``variables`` table.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from gvflow.identifiers import format_database_id, format_display_identifier, format_identifier
from gvflow.models.entity import Npc, WorkTask
from gvflow.models.variable import Variable, VariableSource, VariableType
from gvflow.models.workflow import Workflow

if TYPE_CHECKING:
    from gvflow.db.entity_store import EntityStore
    from gvflow.db.graph_store import GraphStore
    from gvflow.db.variable_repository import VariableRepository

logger = logging.getLogger(__name__)

OUTPUT_FIELD_PREFIX = "output_"


class VariableSourceProvider(ABC):
    """Abstract base class for variable source providers.

    Example implementation:
        class BookProvider(VariableSourceProvider):
            source_type = VariableType.FILE
            fields = ("title",)
            entity_fields = {"title": "title"}

            async def list_entities(self):
                return await self._books.list()
            ...
    """

    # Class-level configuration
    source_type: ClassVar[VariableType]
    fields: ClassVar[tuple[str, ...]]
    entity_fields: ClassVar[dict[str, str]]  # Entity attribute -> variable field

    def __init__(self, repository: VariableRepository):
        self._repository = repository

    # ==================== Entity access ====================

    @abstractmethod
    async def list_entities(self) -> list[Any]:
        """All entities of this kind."""
        pass

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Any | None:
        """One entity by id, or None."""
        pass

    @abstractmethod
    def field_values(self, entity: Any) -> dict[str, Any]:
        """Current value of every tracked field of an entity."""
        pass

    def entity_name(self, entity: Any) -> str:
        """Display name used as the variable's source name."""
        return entity.name

    async def dynamic_variables(self, entity: Any) -> list[Variable]:
        """Variables beyond the fixed field list; none by default."""
        return []

    # ==================== Materialization ====================

    def build_variable(self, entity: Any, field: str, value: Any) -> Variable:
        """Build an unpersisted variable for one field of an entity."""
        name = self.entity_name(entity)
        return Variable(
            id=format_database_id(self.source_type.value, entity.id, field),
            name=name,
            type=self.source_type,
            source=VariableSource(id=entity.id, name=name, type=self.source_type),
            identifier=format_identifier(self.source_type.value, name, field, entity.id),
            display_identifier=format_display_identifier(
                self.source_type.value, name, field, entity.id
            ),
            value=value,
            entity_id=entity.id,
            fieldname=field,
            is_valid=True,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def variables_for(self, entity: Any) -> list[Variable]:
        """Materialize every variable of one entity."""
        values = self.field_values(entity)
        variables = [self.build_variable(entity, f, values.get(f)) for f in self.fields]
        variables.extend(await self.dynamic_variables(entity))
        return variables

    async def get_variables(self) -> list[Variable]:
        """Materialize the variables of every entity without persisting them."""
        variables: list[Variable] = []
        for entity in await self.list_entities():
            variables.extend(await self.variables_for(entity))
        return variables

    async def get_variables_for_entity(self, entity_id: str) -> list[Variable]:
        """Materialize the variables of one entity; empty if it does not exist."""
        entity = await self.get_entity(entity_id)
        if entity is None:
            return []
        return await self.variables_for(entity)

    async def get_variable(self, entity_id: str, field: str) -> Variable | None:
        """Materialize a single variable, or None if entity or field is unknown."""
        for variable in await self.get_variables_for_entity(entity_id):
            if variable.fieldname == field:
                return variable
        return None

    def fields_for_changes(self, changed: set[str]) -> list[str]:
        """Variable fields affected by a set of changed entity attributes."""
        return [self.entity_fields[attr] for attr in changed if attr in self.entity_fields]

    # ==================== Persistence ====================

    async def sync_entity(
        self, entity: Any, fields: list[str] | None = None
    ) -> list[tuple[Variable, bool]]:
        """Upsert the variables of one entity.

        Args:
            entity: The owning entity.
            fields: Only sync these variable fields; all fixed fields if None.

        Returns:
            (variable, created) pairs for every row written.
        """
        values = self.field_values(entity)
        targets = [f for f in self.fields if fields is None or f in fields]
        results = []
        for field in targets:
            variable = self.build_variable(entity, field, values.get(field))
            results.append(await self._repository.upsert(variable))
        return results

    async def sync_variables_to_database(self) -> list[tuple[Variable, bool]]:
        """Idempotently upsert one variable per tracked field per entity."""
        results = []
        for entity in await self.list_entities():
            results.extend(await self.sync_entity(entity))
        logger.info(
            f"Synced {len(results)} {self.source_type.value} variable(s) to the database"
        )
        return results

    async def delete_variables_for(self, entity_id: str) -> list[Variable]:
        """Delete every persisted variable of an entity."""
        return await self._repository.delete_for_entity(self.source_type, entity_id)


class NpcVariableProvider(VariableSourceProvider):
    """Exposes NPC attributes as variables."""

    source_type = VariableType.NPC
    fields = ("name", "description", "knowledge", "act", "actlv", "actlvdesc")
    entity_fields = {
        "name": "name",
        "description": "description",
        "knowledge_background": "knowledge",
        "action_principles": "act",
        "activity_level": "actlv",
        "activity_level_description": "actlvdesc",
    }

    def __init__(self, repository: VariableRepository, entities: EntityStore):
        super().__init__(repository)
        self._entities = entities

    async def list_entities(self) -> list[Npc]:
        return await self._entities.list_npcs()

    async def get_entity(self, entity_id: str) -> Npc | None:
        return await self._entities.get_npc(entity_id)

    def field_values(self, entity: Npc) -> dict[str, Any]:
        return {
            "name": entity.name,
            "description": entity.description,
            "knowledge": entity.knowledge_background,
            "act": entity.action_principles,
            "actlv": entity.activity_level,
            "actlvdesc": entity.activity_level_description,
        }


class WorkTaskVariableProvider(VariableSourceProvider):
    """Exposes work task input and output as variables."""

    source_type = VariableType.TASK
    fields = ("input", "output")
    entity_fields = {"input": "input", "output": "output"}

    def __init__(self, repository: VariableRepository, entities: EntityStore):
        super().__init__(repository)
        self._entities = entities

    async def list_entities(self) -> list[WorkTask]:
        return await self._entities.list_work_tasks()

    async def get_entity(self, entity_id: str) -> WorkTask | None:
        return await self._entities.get_work_task(entity_id)

    def field_values(self, entity: WorkTask) -> dict[str, Any]:
        return {"input": entity.input, "output": entity.output}


class WorkflowVariableProvider(VariableSourceProvider):
    """Exposes workflow attributes and the outputs of its latest execution."""

    source_type = VariableType.WORKFLOW
    fields = ("name", "description", "status")
    entity_fields = {"name": "name", "description": "description", "is_active": "status"}

    def __init__(self, repository: VariableRepository, graphs: GraphStore):
        super().__init__(repository)
        self._graphs = graphs

    async def list_entities(self) -> list[Workflow]:
        return await self._graphs.list_workflows()

    async def get_entity(self, entity_id: str) -> Workflow | None:
        return await self._graphs.get_workflow(entity_id)

    def field_values(self, entity: Workflow) -> dict[str, Any]:
        return {
            "name": entity.name,
            "description": entity.description,
            "status": "active" if entity.is_active else "inactive",
        }

    async def dynamic_variables(self, entity: Workflow) -> list[Variable]:
        latest = await self._graphs.get_latest_execution(entity.id)
        if latest is None or not isinstance(latest.output, list):
            return []
        return [
            self.build_variable(entity, f"{OUTPUT_FIELD_PREFIX}{n}", value)
            for n, value in enumerate(latest.output, start=1)
        ]

    async def upsert_output_variable(
        self, workflow: Workflow, n: int, value: Any
    ) -> tuple[Variable, bool]:
        """Persist ``output_{n}`` for a workflow."""
        variable = self.build_variable(workflow, f"{OUTPUT_FIELD_PREFIX}{n}", value)
        return await self._repository.upsert(variable)

    async def delete_output_variable(self, workflow_id: str, n: int) -> Variable | None:
        """Remove ``output_{n}`` of a workflow if it is persisted."""
        variable = await self._repository.find_by_type_entity_field(
            self.source_type, workflow_id, f"{OUTPUT_FIELD_PREFIX}{n}"
        )
        if variable is None:
            return None
        await self._repository.delete(variable.id)
        return variable

    async def persisted_output_count(self, workflow_id: str) -> int:
        """Highest ``n`` among the persisted ``output_{n}`` variables."""
        highest = 0
        for variable in await self._repository.find_by_entity(workflow_id):
            if variable.type != self.source_type:
                continue
            suffix = variable.fieldname.removeprefix(OUTPUT_FIELD_PREFIX)
            if variable.fieldname.startswith(OUTPUT_FIELD_PREFIX) and suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest


class CustomVariableProvider(VariableSourceProvider):
    """User-authored variables live only in the database."""

    source_type = VariableType.CUSTOM
    fields = ()
    entity_fields = {}

    async def list_entities(self) -> list[Any]:
        return []

    async def get_entity(self, entity_id: str) -> Any | None:
        return None

    def field_values(self, entity: Any) -> dict[str, Any]:
        return {}


class VariableSourceRegistry:
    """Providers keyed by the variable type they own."""

    def __init__(self) -> None:
        self._providers: dict[VariableType, VariableSourceProvider] = {}

    def register(self, provider: VariableSourceProvider) -> None:
        """Register a provider, replacing any previous one for its type."""
        self._providers[provider.source_type] = provider
        logger.debug(f"Registered variable source provider for {provider.source_type.value}")

    def unregister(self, source_type: VariableType) -> bool:
        """Remove the provider for a type."""
        return self._providers.pop(source_type, None) is not None

    def get(self, source_type: VariableType | str) -> VariableSourceProvider | None:
        """Provider for a type, or None."""
        try:
            return self._providers.get(VariableType(source_type))
        except ValueError:
            return None

    def all(self) -> list[VariableSourceProvider]:
        """Every registered provider."""
        return list(self._providers.values())

    async def get_variables_by_entity(self, entity_id: str) -> list[Variable]:
        """Materialize the variables of an entity from whichever provider owns it."""
        for provider in self._providers.values():
            variables = await provider.get_variables_for_entity(entity_id)
            if variables:
                return variables
        return []
