"""Variable identifier codec.

Every variable owned by an entity is addressed by an immutable triple
``(type, entity_id, field)``. The triple has three string renderings:

* database id: ``{type}_{entity_id}_{field}``
* system identifier: ``@gv_{type}_{entity_id}_{field}-=``, the only key used
  for lookups
* display identifier: ``@{SourceName}.{field}#{shortId}``, for humans only

Older content still carries the unwrapped ``@gv_{id}_{field}`` and bare
``@gv_{id}`` forms and pre-UUID ``@Source.field`` references, so parsing walks
an ordered chain of matchers and returns a tagged ``ParsedIdentifier``.
"""

import re
from dataclasses import dataclass
from enum import Enum

from gvflow.errors import InvalidArgument, UnparseableIdentifier

END_MARKER = "-="
PREFIX = "@gv_"
DEFAULT_FIELD = "output"

_TYPE_RE = re.compile(r"[a-z]+")
_ENTITY_ID_RE = re.compile(r"[A-Za-z0-9\-]+")
_FIELD_RE = re.compile(r"[A-Za-z0-9_]+")
_DIGITS_RE = re.compile(r"[0-9]+")
_UNSAFE_NAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5_]")
_DATABASE_ID_RE = re.compile(
    r"(?P<type>[a-z]+)_(?P<entity_id>[A-Za-z0-9\-]+)_(?P<field>[A-Za-z0-9_]+)"
)

# Patterns used both for whole-string parsing and for scanning free text.
CANONICAL_PATTERN = re.compile(
    r"@gv_(?P<type>[a-z]+)_(?P<entity_id>[A-Za-z0-9\-]+)_(?P<field>[A-Za-z0-9_]+)-="
)
LEGACY_V2_PATTERN = re.compile(
    r"@gv_(?P<entity_id>[A-Za-z0-9\-]+)_(?P<field>[A-Za-z0-9_]+)"
    r"(?![A-Za-z0-9_\-]*-=)(?![A-Za-z0-9_\-])"
)
LEGACY_BARE_PATTERN = re.compile(r"@gv_(?P<entity_id>[A-Za-z0-9\-]+)(?![A-Za-z0-9_\-=])")
DISPLAY_PATTERN = re.compile(
    r"(?<![A-Za-z0-9_\u4e00-\u9fa5])@(?!gv_)"
    r"(?P<source_name>[A-Za-z0-9_\u4e00-\u9fa5]+)\.(?P<field>[A-Za-z0-9_]+)"
    r"(?:#(?P<short_id>[A-Za-z0-9\-]{4}))?(?![A-Za-z0-9])"
)


class IdentifierKind(str, Enum):
    """Which grammar an identifier was written in."""

    CANONICAL = "canonical"
    LEGACY_V2 = "legacy_v2"
    LEGACY_BARE = "legacy_bare"
    DISPLAY = "display"


@dataclass(frozen=True)
class ParsedIdentifier:
    """Result of parsing any supported identifier form.

    ``type`` is only known for canonical identifiers; ``field`` is absent for the
    bare legacy form; display references carry ``source_name`` and an optional
    ``short_id`` instead of a ``source_id``.
    """

    kind: IdentifierKind
    type: str | None = None
    source_id: str | None = None
    field: str | None = None
    source_name: str | None = None
    short_id: str | None = None


def _require(value: str | None, label: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{label} must not be empty")
    return str(value).strip()


def _strip_end_marker(field: str) -> str:
    while field.endswith(END_MARKER):
        field = field[: -len(END_MARKER)]
    return field


def format_database_id(type: str, entity_id: str, field: str) -> str:
    """Build ``{type}_{entity_id}_{field}`` from a variable triple.

    Raises:
        InvalidArgument: If a component is empty or contains characters that
            would make the id ambiguous to parse back.
    """
    type_ = _require(type, "type").lower()
    entity_id = _require(entity_id, "entity_id")
    field = _require(_strip_end_marker(_require(field, "field")), "field")

    if not _TYPE_RE.fullmatch(type_):
        raise InvalidArgument(f"Invalid variable type: {type!r}")
    if not _ENTITY_ID_RE.fullmatch(entity_id):
        raise InvalidArgument(f"Invalid entity id: {entity_id!r}")
    if not _FIELD_RE.fullmatch(field):
        raise InvalidArgument(f"Invalid field name: {field!r}")

    return f"{type_}_{entity_id}_{field}"


def parse_database_id(database_id: str) -> tuple[str, str, str] | None:
    """Split a database id into (type, entity_id, field), or None if malformed."""
    m = _DATABASE_ID_RE.fullmatch(database_id or "")
    if m is None:
        return None
    return m["type"], m["entity_id"], m["field"]


def format_identifier(type: str, source_name: str | None, field: str, entity_id: str) -> str:
    """Build the system identifier ``@gv_{type}_{entity_id}_{field}-=``.

    ``source_name`` is accepted for call-site symmetry with
    ``format_display_identifier`` but never contributes to the result.
    """
    return f"{PREFIX}{format_database_id(type, entity_id, field)}{END_MARKER}"


def sanitize_name(name: str) -> str:
    """Replace everything except letters, digits, underscore and CJK with ``_``."""
    return _UNSAFE_NAME_CHARS_RE.sub("_", name or "")


def short_id(entity_id: str) -> str:
    """Four-character suffix used in display identifiers.

    Timestamp-style numeric ids share their leading digits, so those use the
    last four characters; everything else uses the first four.
    """
    entity_id = str(entity_id)
    if _DIGITS_RE.fullmatch(entity_id):
        return entity_id[-4:]
    return entity_id[:4]


def format_display_identifier(type: str, source_name: str, field: str, entity_id: str) -> str:
    """Build ``@{SourceName}.{field}#{shortId}`` for display."""
    _require(type, "type")
    entity_id = _require(entity_id, "entity_id")
    field = _strip_end_marker(_require(field, "field"))
    return f"@{sanitize_name(source_name)}.{field}#{short_id(entity_id)}"


def _match_canonical(identifier: str) -> ParsedIdentifier | None:
    m = CANONICAL_PATTERN.fullmatch(identifier)
    if m is None:
        return None
    return ParsedIdentifier(
        kind=IdentifierKind.CANONICAL,
        type=m["type"],
        source_id=m["entity_id"],
        field=m["field"],
    )


def _match_legacy_v2(identifier: str) -> ParsedIdentifier | None:
    m = LEGACY_V2_PATTERN.fullmatch(identifier)
    if m is None:
        return None
    return ParsedIdentifier(
        kind=IdentifierKind.LEGACY_V2, source_id=m["entity_id"], field=m["field"]
    )


def _match_legacy_bare(identifier: str) -> ParsedIdentifier | None:
    m = LEGACY_BARE_PATTERN.fullmatch(identifier)
    if m is None:
        return None
    return ParsedIdentifier(kind=IdentifierKind.LEGACY_BARE, source_id=m["entity_id"])


def _match_display(identifier: str) -> ParsedIdentifier | None:
    m = DISPLAY_PATTERN.fullmatch(identifier)
    if m is None:
        return None
    return ParsedIdentifier(
        kind=IdentifierKind.DISPLAY,
        field=m["field"],
        source_name=m["source_name"],
        short_id=m["short_id"],
    )


# Order matters: the canonical form is also a valid prefix of the legacy forms.
_MATCHERS = (_match_canonical, _match_legacy_v2, _match_legacy_bare, _match_display)


def parse_identifier(identifier: str) -> ParsedIdentifier:
    """Parse an identifier written in any supported grammar.

    Raises:
        UnparseableIdentifier: If no grammar matches.
    """
    candidate = (identifier or "").strip()
    for matcher in _MATCHERS:
        parsed = matcher(candidate)
        if parsed is not None:
            return parsed
    raise UnparseableIdentifier(identifier)


def field_from_identifier(identifier: str) -> str:
    """Field name carried by an identifier, ``output`` when it has none."""
    try:
        parsed = parse_identifier(identifier)
    except UnparseableIdentifier:
        return DEFAULT_FIELD
    return parsed.field or DEFAULT_FIELD


def contains_references(text: str) -> bool:
    """Whether ``text`` embeds at least one resolvable variable reference."""
    if not text or "@" not in text:
        return False
    return any(
        pattern.search(text)
        for pattern in (CANONICAL_PATTERN, LEGACY_V2_PATTERN, DISPLAY_PATTERN)
    )
