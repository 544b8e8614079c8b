"""VariableStore - lookups and writes over persisted and virtual variables."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any

from gvflow.errors import Conflict, Forbidden, NotFound, UnparseableIdentifier
from gvflow.identifiers import (
    IdentifierKind,
    format_database_id,
    format_display_identifier,
    format_identifier,
    parse_database_id,
    parse_identifier,
    sanitize_name,
)
from gvflow.models.event import SourceRenamed, VariableEventType
from gvflow.models.variable import (
    Variable,
    VariableCreate,
    VariableSource,
    VariableType,
    VariableUpdate,
    stringify_value,
)
from gvflow.services.variable_sources import WorkflowVariableProvider

if TYPE_CHECKING:
    from gvflow.db.variable_repository import VariableRepository
    from gvflow.models.workflow import Workflow
    from gvflow.services.event_bus import EventBus
    from gvflow.services.variable_sources import VariableSourceRegistry

logger = logging.getLogger(__name__)


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


def _sort_key(variable: Variable) -> tuple[str, str, str]:
    return (variable.type.value, variable.source.name.lower(), variable.name.lower())


class VariableStore:
    """Single entry point for reading and writing variables.

    Reads merge persisted rows with the virtual variables materialized by the
    registered providers. Only custom variables may be written directly;
    everything else follows its owning entity. Every write publishes an event.
    """

    def __init__(
        self,
        repository: VariableRepository,
        registry: VariableSourceRegistry,
        bus: EventBus,
        deduplicate: bool = False,
    ):
        self._repository = repository
        self._registry = registry
        self._bus = bus
        self._deduplicate = deduplicate

    @property
    def registry(self) -> VariableSourceRegistry:
        return self._registry

    # ==================== Listing ====================

    async def list(
        self, type: VariableType | None = None, source_id: str | None = None
    ) -> list[Variable]:
        """Persisted and virtual variables, sorted by type, source name and name.

        Overlapping rows are kept unless the store was built with
        ``deduplicate=True``, in which case the persisted row wins.
        """
        variables = await self._repository.list_all(type=type, source_id=source_id)

        for provider in self._registry.all():
            if type is not None and provider.source_type != type:
                continue
            if source_id:
                variables.extend(await provider.get_variables_for_entity(source_id))
            else:
                variables.extend(await provider.get_variables())

        if self._deduplicate:
            seen: set[str] = set()
            unique = []
            for variable in variables:
                if variable.identifier not in seen:
                    seen.add(variable.identifier)
                    unique.append(variable)
            variables = unique

        return sorted(variables, key=_sort_key)

    # ==================== Point Lookups ====================

    async def get_by_id(self, variable_id: str) -> Variable:
        """Find a variable by database id, entity id or id fragment.

        Raises:
            NotFound: If all three strategies miss.
        """
        # Exact database id, then system identifier
        variable = await self._repository.get(variable_id)
        if variable is None:
            variable = await self._repository.get_by_identifier(variable_id)
        if variable is None:
            triple = parse_database_id(variable_id)
            if triple is not None:
                variable = await self._virtual(*triple)
        if variable is not None:
            return variable

        # Bare entity id
        by_entity = await self._repository.find_by_entity(variable_id)
        if by_entity:
            return by_entity[0]
        virtual = await self._registry.get_variables_by_entity(variable_id)
        if virtual:
            return virtual[0]

        # Partial or legacy id
        variable = await self._repository.find_by_id_fragment(variable_id)
        if variable is not None:
            return variable
        for candidate in await self.list():
            if variable_id in candidate.id:
                return candidate

        raise NotFound(f"Variable {variable_id} not found")

    async def get_by_identifier(self, identifier: str) -> Variable:
        """Find a variable by its system identifier.

        Raises:
            NotFound: If no variable carries the identifier.
        """
        variable = await self._repository.get_by_identifier(identifier)
        if variable is not None:
            return variable
        try:
            parsed = parse_identifier(identifier)
        except UnparseableIdentifier:
            raise NotFound(f"Variable {identifier} not found") from None
        if parsed.kind != IdentifierKind.CANONICAL:
            raise NotFound(f"Variable {identifier} not found")
        return await self.get_by_type_and_entity_and_field(
            parsed.type, parsed.source_id, parsed.field
        )

    async def get_by_type_and_entity_and_field(
        self, type: VariableType | str, entity_id: str, field: str
    ) -> Variable:
        """Find the variable for a (type, entity, field) triple.

        A virtual variable found through its provider is persisted on first use.

        Raises:
            NotFound: If neither the database nor the provider knows the triple.
        """
        try:
            type = VariableType(type)
        except ValueError:
            raise NotFound(f"Unknown variable type {type!r}") from None

        variable = await self._repository.find_by_type_entity_field(type, entity_id, field)
        if variable is not None:
            return variable

        variable = await self._virtual(type, entity_id, field)
        if variable is None:
            raise NotFound(f"Variable {type.value}/{entity_id}/{field} not found")
        return await self._persist_on_first_use(variable)

    async def find_by_entity_and_field(self, entity_id: str, field: str) -> Variable:
        """Find a variable by owning entity id and field, whatever its type.

        Raises:
            NotFound: If no persisted or virtual variable matches.
        """
        variable = await self._repository.find_by_entity_and_field(entity_id, field)
        if variable is not None:
            return variable

        for provider in self._registry.all():
            virtual = await provider.get_variable(entity_id, field)
            if virtual is not None:
                return await self._persist_on_first_use(virtual)

        raise NotFound(f"Variable {entity_id}/{field} not found")

    async def find_by_short_id(
        self, short_id: str, field: str, source_name: str | None = None
    ) -> Variable:
        """Find a variable from the short id and field of a display reference.

        Raises:
            NotFound: If nothing matches.
        """
        matches = await self._repository.find_by_display(
            field, short_id=short_id, source_name=source_name
        )
        if matches:
            return matches[0]

        suffix = f"#{short_id}"
        for variable in await self._all_virtual():
            if variable.fieldname != field or not variable.display_identifier.endswith(suffix):
                continue
            if source_name and sanitize_name(variable.source.name) != source_name:
                continue
            return await self._persist_on_first_use(variable)

        raise NotFound(f"Variable #{short_id}.{field} not found")

    async def find_by_source_name(self, source_name: str, field: str) -> Variable:
        """Find a variable by the (sanitized) name of its source and its field.

        Raises:
            NotFound: If nothing matches.
        """
        wanted = sanitize_name(source_name)
        matches = await self._repository.find_by_display(field, source_name=wanted)
        if matches:
            return matches[0]

        for variable in await self._all_virtual():
            if variable.fieldname == field and sanitize_name(variable.source.name) == wanted:
                return await self._persist_on_first_use(variable)

        raise NotFound(f"Variable {source_name}.{field} not found")

    async def lookup(self, reference: str) -> Variable:
        """Resolve a reference written in any supported form.

        Accepts every identifier grammar and the bare ``Source.field`` shorthand.

        Raises:
            UnparseableIdentifier: If the reference matches no grammar.
            NotFound: If it parses but nothing matches.
        """
        reference = reference.strip()
        try:
            parsed = parse_identifier(reference)
        except UnparseableIdentifier:
            if reference.startswith("@"):
                raise
            parsed = parse_identifier(f"@{reference}")

        if parsed.kind == IdentifierKind.CANONICAL:
            return await self.get_by_type_and_entity_and_field(
                parsed.type, parsed.source_id, parsed.field
            )
        if parsed.kind == IdentifierKind.LEGACY_V2:
            return await self.find_by_entity_and_field(parsed.source_id, parsed.field)
        if parsed.kind == IdentifierKind.LEGACY_BARE:
            return await self.get_by_id(parsed.source_id)
        if parsed.short_id:
            return await self.find_by_short_id(parsed.short_id, parsed.field, parsed.source_name)
        return await self.find_by_source_name(parsed.source_name, parsed.field)

    # ==================== Custom Variables ====================

    async def create(self, data: VariableCreate) -> Variable:
        """Create a custom variable.

        Raises:
            Conflict: If a variable with the same identifier already exists.
        """
        entity_id = data.entity_id or str(int(time.time() * 1000))
        field = data.fieldname or "value"
        kind = VariableType.CUSTOM.value
        identifier = format_identifier(kind, data.name, field, entity_id)

        if await self._repository.get_by_identifier(identifier) is not None:
            raise Conflict(f"Variable {identifier} already exists", identifier=identifier)

        now = _now()
        variable = Variable(
            id=format_database_id(kind, entity_id, field),
            name=data.name,
            type=VariableType.CUSTOM,
            source=VariableSource(id=entity_id, name=data.name, type=VariableType.CUSTOM),
            identifier=identifier,
            display_identifier=format_display_identifier(kind, data.name, field, entity_id),
            value=data.value,
            entity_id=entity_id,
            fieldname=field,
            is_valid=True,
            created_at=now,
            updated_at=now,
        )
        variable = await self._repository.insert(variable)
        logger.info(f"Created custom variable {variable.identifier}")
        self._bus.publish(VariableEventType.CREATED, variable)
        return variable

    async def update(self, variable_id: str, data: VariableUpdate) -> Variable:
        """Update the name and/or value of a custom variable.

        The identifier never changes; a new name refreshes the display identifier.

        Raises:
            NotFound: If the variable does not exist.
            Forbidden: If it is not a custom variable.
        """
        variable = await self._writable(variable_id)

        changes: dict[str, Any] = {}
        if data.value is not None:
            changes["value"] = stringify_value(data.value)
        if data.name is not None and data.name != variable.name:
            changes["name"] = data.name
            changes["source"] = variable.source.model_copy(update={"name": data.name})
            changes["display_identifier"] = format_display_identifier(
                variable.type.value, data.name, variable.fieldname, variable.entity_id
            )

        updated = await self._repository.update(variable.model_copy(update=changes))
        logger.info(f"Updated custom variable {updated.identifier}")
        self._bus.publish(VariableEventType.UPDATED, updated)
        return updated

    async def delete(self, variable_id: str) -> None:
        """Delete a custom variable.

        Raises:
            NotFound: If the variable does not exist.
            Forbidden: If it is not a custom variable.
        """
        variable = await self._writable(variable_id)
        await self._repository.delete(variable.id)
        logger.info(f"Deleted custom variable {variable.identifier}")
        self._bus.publish(VariableEventType.DELETED, variable)

    async def _writable(self, variable_id: str) -> Variable:
        # Writes match exact ids only, never a fragment
        variable = await self._repository.get(variable_id)
        if variable is None:
            variable = await self._repository.get_by_identifier(variable_id)
        if variable is None:
            triple = parse_database_id(variable_id)
            if triple is None:
                try:
                    parsed = parse_identifier(variable_id)
                except UnparseableIdentifier:
                    parsed = None
                if parsed is not None and parsed.kind == IdentifierKind.CANONICAL:
                    triple = (parsed.type, parsed.source_id, parsed.field)
            if triple is not None:
                # Surface Forbidden for virtual variables rather than NotFound
                variable = await self._virtual(*triple)
        if variable is None:
            raise NotFound(f"Variable {variable_id} not found")
        if variable.type != VariableType.CUSTOM:
            raise Forbidden(
                f"Variable {variable.identifier} is owned by its {variable.type.value} "
                "and cannot be modified directly"
            )
        return variable

    # ==================== Entity Synchronization ====================

    async def sync_entity(
        self, type: VariableType, entity: Any, fields: list[str] | None = None
    ) -> list[Variable]:
        """Upsert an entity's variables through its provider and publish the changes."""
        provider = self._registry.get(type)
        if provider is None:
            return []
        synced = []
        for variable, created in await provider.sync_entity(entity, fields):
            event = VariableEventType.CREATED if created else VariableEventType.UPDATED
            self._bus.publish(event, variable)
            synced.append(variable)
        return synced

    async def delete_entity_variables(self, type: VariableType, entity_id: str) -> list[Variable]:
        """Delete every variable of an entity and publish one event per row."""
        provider = self._registry.get(type)
        if provider is None:
            return []
        removed = await provider.delete_variables_for(entity_id)
        for variable in removed:
            self._bus.publish(VariableEventType.DELETED, variable)
        if removed:
            logger.info(f"Deleted {len(removed)} variable(s) of {type.value} {entity_id}")
        return removed

    async def rename_source(
        self, type: VariableType, entity_id: str, new_name: str
    ) -> list[Variable]:
        """Propagate an entity rename to its persisted variables.

        Names and display identifiers are refreshed; identifiers are untouched.
        """
        rows = [v for v in await self._repository.find_by_entity(entity_id) if v.type == type]
        if not rows:
            return []

        old_name = rows[0].source.name
        renamed = []
        for variable in rows:
            refreshed = variable.model_copy(
                update={
                    "name": new_name,
                    "source": variable.source.model_copy(update={"name": new_name}),
                    "display_identifier": format_display_identifier(
                        type.value, new_name, variable.fieldname, entity_id
                    ),
                }
            )
            renamed.append(await self._repository.update(refreshed))

        self._bus.publish(
            VariableEventType.SOURCE_RENAMED,
            SourceRenamed(
                source_type=type,
                entity_id=entity_id,
                old_source_name=old_name,
                new_source_name=new_name,
                variables=renamed,
            ),
        )
        logger.info(f"Renamed source {old_name!r} -> {new_name!r} on {len(renamed)} variable(s)")
        return renamed

    async def sync_workflow_outputs(self, workflow: Workflow, outputs: list[Any]) -> list[Variable]:
        """Persist ``output_1..n`` for a workflow and drop stale higher outputs."""
        provider = self._registry.get(VariableType.WORKFLOW)
        if not isinstance(provider, WorkflowVariableProvider):
            return []

        synced = []
        for n, value in enumerate(outputs, start=1):
            variable, created = await provider.upsert_output_variable(workflow, n, value)
            event = VariableEventType.CREATED if created else VariableEventType.UPDATED
            self._bus.publish(event, variable)
            synced.append(variable)

        highest = await provider.persisted_output_count(workflow.id)
        for n in range(len(outputs) + 1, highest + 1):
            removed = await provider.delete_output_variable(workflow.id, n)
            if removed is not None:
                self._bus.publish(VariableEventType.DELETED, removed)
        return synced

    async def sync_all(self) -> int:
        """Upsert the variables of every entity of every provider."""
        count = 0
        for provider in self._registry.all():
            for variable, created in await provider.sync_variables_to_database():
                if created:
                    self._bus.publish(VariableEventType.CREATED, variable)
                count += 1
        return count

    async def reconcile_orphans(self) -> list[Variable]:
        """Invalidate persisted variables whose owning entity no longer exists."""
        exists: dict[tuple[VariableType, str], bool] = {}
        invalidated = []

        for variable in await self._repository.list_all():
            if variable.type == VariableType.CUSTOM or not variable.is_valid:
                continue
            provider = self._registry.get(variable.type)
            if provider is None:
                continue

            key = (variable.type, variable.entity_id or "")
            if key not in exists:
                exists[key] = bool(variable.entity_id) and (
                    await provider.get_entity(variable.entity_id) is not None
                )
            if exists[key]:
                continue

            await self._repository.set_valid(variable.id, False)
            orphan = variable.model_copy(update={"is_valid": False})
            self._bus.publish(VariableEventType.INVALIDATED, orphan)
            invalidated.append(orphan)

        if invalidated:
            logger.warning(f"Invalidated {len(invalidated)} orphaned variable(s)")
        return invalidated

    # ==================== Helpers ====================

    async def _virtual(
        self, type: VariableType | str, entity_id: str, field: str
    ) -> Variable | None:
        provider = self._registry.get(type)
        if provider is None:
            return None
        return await provider.get_variable(entity_id, field)

    async def _all_virtual(self) -> list[Variable]:
        variables: list[Variable] = []
        for provider in self._registry.all():
            variables.extend(await provider.get_variables())
        return variables

    async def _persist_on_first_use(self, variable: Variable) -> Variable:
        stored, created = await self._repository.upsert(variable)
        if created:
            logger.debug(f"Persisted virtual variable {stored.identifier} on first use")
            self._bus.publish(VariableEventType.CREATED, stored)
        return stored
