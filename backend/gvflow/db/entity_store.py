"""Database operations for NPCs and work tasks, with write listeners."""

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import aiosqlite

from gvflow.db.database import get_db
from gvflow.models.entity import (
    Npc,
    NpcCreate,
    NpcPromptTemplate,
    NpcUpdate,
    WorkTask,
    WorkTaskCreate,
    WorkTaskUpdate,
)

logger = logging.getLogger(__name__)


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


class EntityAction(str, Enum):
    """Write that happened to an entity."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class EntityChange:
    """Notification sent to listeners after an entity write commits."""

    kind: str
    action: EntityAction
    entity_id: str
    entity: Any = None
    previous: Any = None
    changed_fields: set[str] = field(default_factory=set)


EntityListener = Callable[[EntityChange], Awaitable[None]]


class ListenerMixin:
    """Post-commit listener registry shared by the entity stores."""

    def __init__(self) -> None:
        self._listeners: list[EntityListener] = []

    def add_listener(self, listener: EntityListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def _notify(self, change: EntityChange) -> None:
        # Listener failures never undo a committed write
        for listener in list(self._listeners):
            try:
                await listener(change)
            except Exception as e:
                logger.exception(
                    f"Listener failed for {change.kind} {change.action.value} "
                    f"{change.entity_id}: {e}"
                )


def _changed(before: Any, after: Any) -> set[str]:
    old = before.model_dump()
    new = after.model_dump()
    return {key for key in new if key not in ("updated_at",) and old.get(key) != new[key]}


def _row_to_npc(row: aiosqlite.Row) -> Npc:
    """Convert a database row to an Npc model."""
    return Npc(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        knowledge_background=row["knowledge_background"],
        action_principles=row["action_principles"],
        activity_level=row["activity_level"],
        activity_level_description=row["activity_level_description"],
        prompt_template=row["prompt_template"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_work_task(row: aiosqlite.Row) -> WorkTask:
    """Convert a database row to a WorkTask model."""
    template = (
        NpcPromptTemplate(**json.loads(row["npc_prompt_template_json"]))
        if row["npc_prompt_template_json"]
        else None
    )
    return WorkTask(
        id=row["id"],
        name=row["name"],
        input=row["input"],
        output=row["output"],
        npc_id=row["npc_id"],
        ai_service_id=row["ai_service_id"],
        npc_prompt_template=template,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class EntityStore(ListenerMixin):
    """Storage for the entities that own variables, other than workflows."""

    # ==================== NPCs ====================

    async def create_npc(self, data: NpcCreate) -> Npc:
        """Create an NPC."""
        db = await get_db()
        now = _now()
        npc = Npc(
            id=data.id or _generate_id(),
            name=data.name,
            description=data.description,
            knowledge_background=data.knowledge_background,
            action_principles=data.action_principles,
            activity_level=data.activity_level,
            activity_level_description=data.activity_level_description,
            prompt_template=data.prompt_template,
            created_at=now,
            updated_at=now,
        )
        await db.execute(
            """
            INSERT INTO npcs (id, name, description, knowledge_background, action_principles,
                              activity_level, activity_level_description, prompt_template,
                              created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                npc.id,
                npc.name,
                npc.description,
                npc.knowledge_background,
                npc.action_principles,
                npc.activity_level,
                npc.activity_level_description,
                npc.prompt_template,
                now,
                now,
            ),
        )
        await db.commit()

        await self._notify(
            EntityChange(kind="npc", action=EntityAction.INSERT, entity_id=npc.id, entity=npc)
        )
        return npc

    async def get_npc(self, npc_id: str) -> Npc | None:
        """Get an NPC by ID."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM npcs WHERE id = ?", (npc_id,))
        row = await cursor.fetchone()
        return _row_to_npc(row) if row else None

    async def list_npcs(self) -> list[Npc]:
        """List all NPCs."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM npcs ORDER BY created_at, id")
        rows = await cursor.fetchall()
        return [_row_to_npc(row) for row in rows]

    async def update_npc(self, npc_id: str, update: NpcUpdate) -> Npc | None:
        """Apply a partial update to an NPC."""
        existing = await self.get_npc(npc_id)
        if existing is None:
            return None

        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        updated = existing.model_copy(update={**changes, "updated_at": _now()})

        db = await get_db()
        await db.execute(
            """
            UPDATE npcs
            SET name = ?, description = ?, knowledge_background = ?, action_principles = ?,
                activity_level = ?, activity_level_description = ?, prompt_template = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (
                updated.name,
                updated.description,
                updated.knowledge_background,
                updated.action_principles,
                updated.activity_level,
                updated.activity_level_description,
                updated.prompt_template,
                updated.updated_at,
                npc_id,
            ),
        )
        await db.commit()

        await self._notify(
            EntityChange(
                kind="npc",
                action=EntityAction.UPDATE,
                entity_id=npc_id,
                entity=updated,
                previous=existing,
                changed_fields=_changed(existing, updated),
            )
        )
        return updated

    async def delete_npc(self, npc_id: str) -> bool:
        """Delete an NPC."""
        existing = await self.get_npc(npc_id)
        if existing is None:
            return False

        db = await get_db()
        await db.execute("DELETE FROM npcs WHERE id = ?", (npc_id,))
        await db.commit()

        await self._notify(
            EntityChange(
                kind="npc", action=EntityAction.DELETE, entity_id=npc_id, previous=existing
            )
        )
        return True

    # ==================== Work Tasks ====================

    async def create_work_task(self, data: WorkTaskCreate) -> WorkTask:
        """Create a work task."""
        db = await get_db()
        now = _now()
        task = WorkTask(
            id=data.id or _generate_id(),
            name=data.name,
            input=data.input,
            output=data.output,
            npc_id=data.npc_id,
            ai_service_id=data.ai_service_id,
            npc_prompt_template=data.npc_prompt_template,
            created_at=now,
            updated_at=now,
        )
        await db.execute(
            """
            INSERT INTO work_tasks (id, name, input, output, npc_id, ai_service_id,
                                    npc_prompt_template_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.name,
                task.input,
                task.output,
                task.npc_id,
                task.ai_service_id,
                task.npc_prompt_template.model_dump_json() if task.npc_prompt_template else None,
                now,
                now,
            ),
        )
        await db.commit()

        await self._notify(
            EntityChange(kind="task", action=EntityAction.INSERT, entity_id=task.id, entity=task)
        )
        return task

    async def get_work_task(self, task_id: str) -> WorkTask | None:
        """Get a work task by ID."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM work_tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return _row_to_work_task(row) if row else None

    async def list_work_tasks(self) -> list[WorkTask]:
        """List all work tasks."""
        db = await get_db()
        cursor = await db.execute("SELECT * FROM work_tasks ORDER BY created_at, id")
        rows = await cursor.fetchall()
        return [_row_to_work_task(row) for row in rows]

    async def update_work_task(self, task_id: str, update: WorkTaskUpdate) -> WorkTask | None:
        """Apply a partial update to a work task."""
        existing = await self.get_work_task(task_id)
        if existing is None:
            return None

        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if "npc_prompt_template" in changes:
            changes["npc_prompt_template"] = update.npc_prompt_template
        updated = existing.model_copy(update={**changes, "updated_at": _now()})

        db = await get_db()
        await db.execute(
            """
            UPDATE work_tasks
            SET name = ?, input = ?, output = ?, npc_id = ?, ai_service_id = ?,
                npc_prompt_template_json = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                updated.name,
                updated.input,
                updated.output,
                updated.npc_id,
                updated.ai_service_id,
                updated.npc_prompt_template.model_dump_json()
                if updated.npc_prompt_template
                else None,
                updated.updated_at,
                task_id,
            ),
        )
        await db.commit()

        await self._notify(
            EntityChange(
                kind="task",
                action=EntityAction.UPDATE,
                entity_id=task_id,
                entity=updated,
                previous=existing,
                changed_fields=_changed(existing, updated),
            )
        )
        return updated

    async def delete_work_task(self, task_id: str) -> bool:
        """Delete a work task."""
        existing = await self.get_work_task(task_id)
        if existing is None:
            return False

        db = await get_db()
        await db.execute("DELETE FROM work_tasks WHERE id = ?", (task_id,))
        await db.commit()

        await self._notify(
            EntityChange(
                kind="task", action=EntityAction.DELETE, entity_id=task_id, previous=existing
            )
        )
        return True
