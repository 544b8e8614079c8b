"""Tests for the variable identifier codec."""

import pytest

from gvflow.errors import InvalidArgument, UnparseableIdentifier
from gvflow.identifiers import (
    IdentifierKind,
    contains_references,
    field_from_identifier,
    format_database_id,
    format_display_identifier,
    format_identifier,
    parse_database_id,
    parse_identifier,
    sanitize_name,
    short_id,
)

NPC_ID = "550e8400-e29b-41d4-a716-446655440000"


class TestFormatDatabaseId:
    """Tests for database id construction."""

    def test_basic(self):
        assert format_database_id("npc", NPC_ID, "knowledge") == f"npc_{NPC_ID}_knowledge"

    def test_lowercases_type(self):
        assert format_database_id("NPC", "abc", "name") == "npc_abc_name"

    def test_strips_end_marker_from_field(self):
        assert format_database_id("task", "abc", "output-=") == "task_abc_output"

    @pytest.mark.parametrize(
        "type_,entity_id,field",
        [("", "abc", "name"), ("npc", "", "name"), ("npc", "abc", ""), ("npc", "abc", "-=")],
    )
    def test_empty_component(self, type_, entity_id, field):
        """Any empty component is rejected."""
        with pytest.raises(InvalidArgument):
            format_database_id(type_, entity_id, field)

    def test_entity_id_with_underscore_rejected(self):
        """Underscores in the entity id would make the id ambiguous."""
        with pytest.raises(InvalidArgument):
            format_database_id("npc", "a_b", "name")

    def test_parse_database_id(self):
        assert parse_database_id("workflow_wf-1_output_2") == ("workflow", "wf-1", "output_2")
        assert parse_database_id("not-an-id") is None


class TestFormatIdentifier:
    """Tests for system identifier construction."""

    def test_canonical_form(self):
        identifier = format_identifier("npc", "Aria", "knowledge", NPC_ID)
        assert identifier == f"@gv_npc_{NPC_ID}_knowledge-="

    def test_source_name_never_used(self):
        """Renaming the source must not change the identifier."""
        assert format_identifier("npc", "Aria", "name", "abc") == format_identifier(
            "npc", "Someone Else", "name", "abc"
        )

    @pytest.mark.parametrize(
        "type_,entity_id,field",
        [
            ("npc", NPC_ID, "knowledge"),
            ("task", "1718000000000", "output"),
            ("workflow", "wf-42", "output_3"),
            ("custom", "abc", "value"),
        ],
    )
    def test_round_trip(self, type_, entity_id, field):
        """Parsing a formatted identifier recovers the triple."""
        parsed = parse_identifier(format_identifier(type_, "Name", field, entity_id))
        assert parsed.kind == IdentifierKind.CANONICAL
        assert (parsed.type, parsed.source_id, parsed.field) == (type_, entity_id, field)


class TestDisplayIdentifier:
    """Tests for display identifiers."""

    def test_uuid_uses_first_four(self):
        assert format_display_identifier("npc", "Aria", "name", NPC_ID) == "@Aria.name#550e"

    def test_timestamp_uses_last_four(self):
        assert (
            format_display_identifier("custom", "Weather", "value", "1718000000000")
            == "@Weather.value#0000"
        )

    def test_sanitizes_name(self):
        assert format_display_identifier("npc", "Dr. Who?", "name", "abcd1234") == (
            "@Dr__Who_.name#abcd"
        )

    def test_keeps_cjk(self):
        assert sanitize_name("小明 the 2nd") == "小明_the_2nd"

    def test_short_id(self):
        assert short_id("1718000001234") == "1234"
        assert short_id("abcdef") == "abcd"


class TestParseIdentifier:
    """Tests for parsing every supported grammar."""

    def test_legacy_v2(self):
        parsed = parse_identifier(f"@gv_{NPC_ID}_knowledge")
        assert parsed.kind == IdentifierKind.LEGACY_V2
        assert parsed.source_id == NPC_ID
        assert parsed.field == "knowledge"
        assert parsed.type is None

    def test_legacy_bare(self):
        parsed = parse_identifier(f"@gv_{NPC_ID}")
        assert parsed.kind == IdentifierKind.LEGACY_BARE
        assert parsed.source_id == NPC_ID
        assert parsed.field is None

    def test_display_with_short_id(self):
        parsed = parse_identifier("@Aria.name#550e")
        assert parsed.kind == IdentifierKind.DISPLAY
        assert parsed.source_name == "Aria"
        assert parsed.field == "name"
        assert parsed.short_id == "550e"

    def test_display_without_short_id(self):
        parsed = parse_identifier("@Weather.value")
        assert parsed.kind == IdentifierKind.DISPLAY
        assert parsed.short_id is None

    @pytest.mark.parametrize("text", ["", "hello", "@", "@gv_", "@Aria", "gv_npc_a_b-="])
    def test_unparseable(self, text):
        with pytest.raises(UnparseableIdentifier):
            parse_identifier(text)

    def test_field_from_identifier(self):
        assert field_from_identifier("@gv_task_abc_input-=") == "input"
        assert field_from_identifier("@gv_abc") == "output"
        assert field_from_identifier("garbage") == "output"


class TestContainsReferences:
    """Tests for reference detection in free text."""

    def test_detects_each_form(self):
        assert contains_references(f"Bio: @gv_npc_{NPC_ID}_knowledge-=")
        assert contains_references(f"Bio: @gv_{NPC_ID}_knowledge")
        assert contains_references("Hi @Aria.name#550e!")

    def test_plain_text(self):
        assert not contains_references("no references here")
        assert not contains_references("mail me at someone@example.com")
