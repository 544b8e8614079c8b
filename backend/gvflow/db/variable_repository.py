"""Database operations for persisted variables."""

import json
from datetime import datetime

import aiosqlite

from gvflow.db.database import get_db
from gvflow.errors import Conflict
from gvflow.models.variable import Variable, VariableSource, VariableType

_COLUMNS = (
    "id, name, type, source_json, identifier, display_identifier, value, "
    "entity_id, fieldname, is_valid, created_at, updated_at"
)


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.utcnow().isoformat()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_variable(row: aiosqlite.Row) -> Variable:
    """Convert a database row to a Variable model."""
    return Variable(
        id=row["id"],
        name=row["name"],
        type=VariableType(row["type"]),
        source=VariableSource(**json.loads(row["source_json"])),
        identifier=row["identifier"],
        display_identifier=row["display_identifier"],
        value=row["value"],
        entity_id=row["entity_id"],
        fieldname=row["fieldname"],
        is_valid=bool(row["is_valid"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class VariableRepository:
    """CRUD over the ``variables`` table."""

    async def _fetch_all(self, where: str = "", params: tuple = ()) -> list[Variable]:
        db = await get_db()
        query = f"SELECT {_COLUMNS} FROM variables"
        if where:
            query += f" WHERE {where}"
        query += " ORDER BY created_at, id"
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_variable(row) for row in rows]

    async def _fetch_one(self, where: str, params: tuple) -> Variable | None:
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {_COLUMNS} FROM variables WHERE {where} LIMIT 1", params
        )
        row = await cursor.fetchone()
        return _row_to_variable(row) if row else None

    # ==================== Reads ====================

    async def list_all(
        self, type: VariableType | None = None, source_id: str | None = None
    ) -> list[Variable]:
        """List persisted variables with optional type/source filters."""
        conditions = []
        params: list = []
        if type:
            conditions.append("type = ?")
            params.append(type.value)
        if source_id:
            conditions.append("entity_id = ?")
            params.append(source_id)
        return await self._fetch_all(" AND ".join(conditions), tuple(params))

    async def get(self, variable_id: str) -> Variable | None:
        """Get a variable by its database id."""
        return await self._fetch_one("id = ?", (variable_id,))

    async def get_by_identifier(self, identifier: str) -> Variable | None:
        """Get a variable by its system identifier."""
        return await self._fetch_one("identifier = ?", (identifier,))

    async def find_by_type_entity_field(
        self, type: VariableType, entity_id: str, field: str
    ) -> Variable | None:
        """Get the variable for a (type, entity, field) triple."""
        return await self._fetch_one(
            "type = ? AND entity_id = ? AND fieldname = ?",
            (type.value, entity_id, field),
        )

    async def find_by_entity(self, entity_id: str) -> list[Variable]:
        """All variables owned by an entity."""
        return await self._fetch_all("entity_id = ?", (entity_id,))

    async def find_by_entity_and_field(self, entity_id: str, field: str) -> Variable | None:
        """First variable of an entity with the given field."""
        return await self._fetch_one(
            "entity_id = ? AND fieldname = ?", (entity_id, field)
        )

    async def find_by_id_fragment(self, fragment: str) -> Variable | None:
        """Best-effort match of a partial id, identifier or entity id."""
        pattern = f"%{_escape_like(fragment)}%"
        return await self._fetch_one(
            "id LIKE ? ESCAPE '\\' OR identifier LIKE ? ESCAPE '\\' "
            "OR entity_id LIKE ? ESCAPE '\\'",
            (pattern, pattern, pattern),
        )

    async def find_by_display(
        self, field: str, short_id: str | None = None, source_name: str | None = None
    ) -> list[Variable]:
        """Variables whose display identifier matches a display reference."""
        conditions = ["fieldname = ?"]
        params: list = [field]
        if short_id:
            conditions.append("display_identifier LIKE ? ESCAPE '\\'")
            params.append(f"%#{_escape_like(short_id)}")
        if source_name:
            conditions.append("display_identifier LIKE ? ESCAPE '\\'")
            params.append(f"@{_escape_like(source_name)}.%")
        return await self._fetch_all(" AND ".join(conditions), tuple(params))

    # ==================== Writes ====================

    async def insert(self, variable: Variable) -> Variable:
        """Insert a new variable.

        Raises:
            Conflict: If the id or identifier already exists.
        """
        db = await get_db()
        try:
            await db.execute(
                f"INSERT INTO variables ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    variable.id,
                    variable.name,
                    variable.type.value,
                    variable.source.model_dump_json(),
                    variable.identifier,
                    variable.display_identifier,
                    variable.value,
                    variable.entity_id,
                    variable.fieldname,
                    1 if variable.is_valid else 0,
                    variable.created_at,
                    variable.updated_at,
                ),
            )
            await db.commit()
        except aiosqlite.IntegrityError as e:
            await db.rollback()
            raise Conflict(
                f"Variable {variable.identifier} already exists",
                identifier=variable.identifier,
            ) from e
        return variable

    async def update(self, variable: Variable) -> Variable:
        """Write every mutable column of an existing variable."""
        db = await get_db()
        updated = variable.model_copy(update={"updated_at": _now()})
        await db.execute(
            """
            UPDATE variables
            SET name = ?, source_json = ?, display_identifier = ?, value = ?,
                is_valid = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                updated.name,
                updated.source.model_dump_json(),
                updated.display_identifier,
                updated.value,
                1 if updated.is_valid else 0,
                updated.updated_at,
                updated.id,
            ),
        )
        await db.commit()
        return updated

    async def upsert(self, variable: Variable) -> tuple[Variable, bool]:
        """Insert or refresh a variable keyed by identifier.

        Returns:
            The stored variable and whether it was newly created.
        """
        existing = await self.get_by_identifier(variable.identifier)
        if existing is None:
            return await self.insert(variable), True

        refreshed = existing.model_copy(
            update={
                "name": variable.name,
                "source": variable.source,
                "display_identifier": variable.display_identifier,
                "value": variable.value,
                "is_valid": True,
            }
        )
        return await self.update(refreshed), False

    async def set_valid(self, variable_id: str, is_valid: bool) -> None:
        """Flip the soft-delete flag."""
        db = await get_db()
        await db.execute(
            "UPDATE variables SET is_valid = ?, updated_at = ? WHERE id = ?",
            (1 if is_valid else 0, _now(), variable_id),
        )
        await db.commit()

    async def delete(self, variable_id: str) -> bool:
        """Delete a variable by id."""
        db = await get_db()
        cursor = await db.execute("DELETE FROM variables WHERE id = ?", (variable_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def delete_for_entity(self, type: VariableType, entity_id: str) -> list[Variable]:
        """Delete every variable of an entity and return what was removed."""
        doomed = await self._fetch_all(
            "type = ? AND entity_id = ?", (type.value, entity_id)
        )
        if doomed:
            db = await get_db()
            await db.execute(
                "DELETE FROM variables WHERE type = ? AND entity_id = ?",
                (type.value, entity_id),
            )
            await db.commit()
        return doomed
