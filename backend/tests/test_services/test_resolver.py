"""Tests for VariableResolver."""

import pytest

from gvflow.errors import MaxDepthExceeded
from gvflow.models.entity import NpcCreate
from gvflow.models.variable import VariableCreate, VariableUpdate

NPC_ID = "550e8400-e29b-41d4-a716-446655440000"
KNOWLEDGE = f"@gv_npc_{NPC_ID}_knowledge-="


@pytest.fixture
async def aria(services):
    return await services.entities.create_npc(
        NpcCreate(id=NPC_ID, name="Aria", knowledge_background="Loves astronomy")
    )


async def _custom(services, name: str, entity_id: str, value: str = ""):
    return await services.variables.create(
        VariableCreate(name=name, entity_id=entity_id, value=value)
    )


class TestResolveText:
    """Tests for resolve_text."""

    @pytest.mark.asyncio
    async def test_canonical_reference(self, services, aria):
        text = f"Bio: {KNOWLEDGE}"
        assert await services.resolver.resolve_text(text) == "Bio: Loves astronomy"

    @pytest.mark.asyncio
    async def test_legacy_and_display_references(self, services, aria):
        text = f"@gv_{NPC_ID}_name knows @Aria.knowledge#550e; again: @Aria.knowledge."
        assert await services.resolver.resolve_text(text) == (
            "Aria knows Loves astronomy; again: Loves astronomy."
        )

    @pytest.mark.asyncio
    async def test_text_without_references_unchanged(self, services):
        for text in ["", "plain text", "mail me at someone@example.com", "@ alone"]:
            assert await services.resolver.resolve_text(text) == text

    @pytest.mark.asyncio
    async def test_resolving_twice_is_stable(self, services, aria):
        once = await services.resolver.resolve_text(f"Bio: {KNOWLEDGE}")
        assert await services.resolver.resolve_text(once) == once

    @pytest.mark.asyncio
    async def test_unresolved_reference_left_verbatim(self, services):
        missing = "@gv_npc_00000000-dead-beef-0000-000000000000_knowledge-="
        text = f"Bio: {missing} and @Nobody.name#zzzz"
        assert await services.resolver.resolve_text(text) == text

    @pytest.mark.asyncio
    async def test_nested_references(self, services, aria):
        await _custom(services, "Greeting", "1718000000001", f"Hi, {KNOWLEDGE}!")

        text = "@gv_custom_1718000000001_value-="
        assert await services.resolver.resolve_text(text) == "Hi, Loves astronomy!"

    @pytest.mark.asyncio
    async def test_self_reference_exceeds_depth(self, services):
        variable = await _custom(services, "Echo", "1718000000002")
        await services.variables.update(
            variable.id, VariableUpdate(value=f"again {variable.identifier}")
        )

        with pytest.raises(MaxDepthExceeded) as exc_info:
            await services.resolver.resolve_text(variable.identifier, max_depth=3)
        assert exc_info.value.max_depth == 3

    @pytest.mark.asyncio
    async def test_two_variable_cycle_exceeds_depth(self, services):
        a = await _custom(services, "Ping", "1718000000003")
        b = await _custom(services, "Pong", "1718000000004", a.identifier)
        await services.variables.update(a.id, VariableUpdate(value=b.identifier))

        with pytest.raises(MaxDepthExceeded):
            await services.resolver.resolve_text(f"start {a.identifier}")

    @pytest.mark.asyncio
    async def test_max_depth_counts_passes(self, services):
        """A chain exactly max_depth links deep still resolves."""
        last = await _custom(services, "Leaf", "1718000000010", "done")
        for n in range(1, 3):
            last = await _custom(services, f"Link{n}", f"171800000001{n}", last.identifier)

        assert await services.resolver.resolve_text(last.identifier, max_depth=3) == "done"
        with pytest.raises(MaxDepthExceeded):
            await services.resolver.resolve_text(last.identifier, max_depth=2)


class TestResolveObject:
    """Tests for resolve_object."""

    @pytest.mark.asyncio
    async def test_nested_containers(self, services, aria):
        payload = {
            "bio": f"Bio: {KNOWLEDGE}",
            "tags": ["@Aria.name", 42, None],
            "pair": ("x", "@Aria.name#550e"),
        }

        resolved = await services.resolver.resolve_object(payload)

        assert resolved == {
            "bio": "Bio: Loves astronomy",
            "tags": ["Aria", 42, None],
            "pair": ("x", "Aria"),
        }

    @pytest.mark.asyncio
    async def test_contains_references(self, services):
        assert services.resolver.contains_references(f"x {KNOWLEDGE}")
        assert services.resolver.contains_references("see @Aria.name")
        assert not services.resolver.contains_references("nothing here")
        assert not services.resolver.contains_references(None)
