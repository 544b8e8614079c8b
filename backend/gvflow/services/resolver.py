"""VariableResolver - expands embedded variable references in text."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from gvflow.errors import InvalidArgument, MaxDepthExceeded, NotFound, UnparseableIdentifier
from gvflow.identifiers import (
    CANONICAL_PATTERN,
    DISPLAY_PATTERN,
    LEGACY_V2_PATTERN,
    contains_references,
)

if TYPE_CHECKING:
    from gvflow.models.variable import Variable
    from gvflow.services.variable_store import VariableStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5

_UNRESOLVED = (NotFound, UnparseableIdentifier, InvalidArgument)


class VariableResolver:
    """Substitutes variable references with their current values.

    Each pass scans for canonical identifiers, then the unwrapped legacy form,
    then display references. Passes repeat while they substitute something, so
    a value may itself contain references. References that cannot be found are
    left in place.
    """

    def __init__(self, store: VariableStore, max_depth: int = DEFAULT_MAX_DEPTH):
        self._store = store
        self._max_depth = max_depth
        self._scans: list[tuple[re.Pattern, Callable[[re.Match], Awaitable[Variable]]]] = [
            (CANONICAL_PATTERN, self._lookup_canonical),
            (LEGACY_V2_PATTERN, self._lookup_legacy),
            (DISPLAY_PATTERN, self._lookup_display),
        ]

    @property
    def max_depth(self) -> int:
        return self._max_depth

    async def resolve_text(self, text: str, max_depth: int | None = None) -> str:
        """Expand every resolvable reference in ``text``.

        Raises:
            MaxDepthExceeded: If references still resolve after ``max_depth``
                passes, which means the values reference each other in a cycle.
        """
        if not text or not isinstance(text, str):
            return text

        depth = self._max_depth if max_depth is None else max_depth
        current = text
        for _ in range(depth):
            current, substituted = await self._resolve_pass(current)
            if not substituted:
                return current

        _, substituted = await self._resolve_pass(current)
        if substituted:
            raise MaxDepthExceeded(depth, current)
        return current

    async def resolve_object(self, obj: Any, max_depth: int | None = None) -> Any:
        """Apply ``resolve_text`` to every string inside nested lists and dicts."""
        if isinstance(obj, str):
            return await self.resolve_text(obj, max_depth)
        if isinstance(obj, list):
            return [await self.resolve_object(item, max_depth) for item in obj]
        if isinstance(obj, tuple):
            return tuple([await self.resolve_object(item, max_depth) for item in obj])
        if isinstance(obj, dict):
            return {key: await self.resolve_object(value, max_depth) for key, value in obj.items()}
        return obj

    def contains_references(self, text: str) -> bool:
        """Whether ``text`` embeds at least one reference."""
        return isinstance(text, str) and contains_references(text)

    async def _resolve_pass(self, text: str) -> tuple[str, bool]:
        substituted = False
        for pattern, lookup in self._scans:
            values: dict[str, str] = {}
            for match in pattern.finditer(text):
                reference = match.group(0)
                if reference in values:
                    continue
                try:
                    variable = await lookup(match)
                except _UNRESOLVED as e:
                    logger.debug(f"Leaving reference {reference} unresolved: {e}")
                    continue
                values[reference] = variable.value

            if values:
                text = pattern.sub(lambda m: values.get(m.group(0), m.group(0)), text)
                substituted = True
        return text, substituted

    async def _lookup_canonical(self, match: re.Match) -> Variable:
        return await self._store.get_by_type_and_entity_and_field(
            match["type"], match["entity_id"], match["field"]
        )

    async def _lookup_legacy(self, match: re.Match) -> Variable:
        return await self._store.find_by_entity_and_field(match["entity_id"], match["field"])

    async def _lookup_display(self, match: re.Match) -> Variable:
        if match["short_id"]:
            try:
                return await self._store.find_by_short_id(
                    match["short_id"], match["field"], match["source_name"]
                )
            except NotFound:
                # Source renamed since the reference was written
                return await self._store.find_by_short_id(match["short_id"], match["field"])
        return await self._store.find_by_source_name(match["source_name"], match["field"])
