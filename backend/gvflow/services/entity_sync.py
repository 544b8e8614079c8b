"""Keeps variable rows in step with writes to their owning entities."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from gvflow.db.entity_store import EntityAction, EntityChange
from gvflow.models.variable import VariableType

if TYPE_CHECKING:
    from gvflow.db.entity_store import ListenerMixin
    from gvflow.services.variable_store import VariableStore

logger = logging.getLogger(__name__)

_KIND_TO_TYPE = {
    "npc": VariableType.NPC,
    "task": VariableType.TASK,
    "workflow": VariableType.WORKFLOW,
}


class EntityVariableSync:
    """Entity store listener that upserts, renames and deletes variables."""

    def __init__(self, store: VariableStore):
        self._store = store
        self._detach: list[Callable[[], None]] = []

    def attach(self, *entity_stores: ListenerMixin) -> None:
        """Start listening to the given stores."""
        for entity_store in entity_stores:
            self._detach.append(entity_store.add_listener(self.on_change))

    def detach(self) -> None:
        """Stop listening to every store."""
        for remove in self._detach:
            remove()
        self._detach.clear()

    async def on_change(self, change: EntityChange) -> None:
        type = _KIND_TO_TYPE.get(change.kind)
        if type is None:
            return

        if change.action == EntityAction.DELETE:
            await self._store.delete_entity_variables(type, change.entity_id)
            return

        if change.action == EntityAction.INSERT:
            await self._store.sync_entity(type, change.entity)
            return

        provider = self._store.registry.get(type)
        if provider is None or not change.changed_fields:
            return

        if "name" in change.changed_fields:
            await self._store.rename_source(type, change.entity_id, change.entity.name)

        fields = provider.fields_for_changes(change.changed_fields)
        if fields:
            logger.debug(
                f"Syncing {type.value} {change.entity_id} fields: {', '.join(sorted(fields))}"
            )
            await self._store.sync_entity(type, change.entity, fields)
