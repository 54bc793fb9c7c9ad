"""Flatten JSON-schema-like descriptions into addressable data fields.

Rules:
- Object nodes recurse into ``properties`` in declaration order.
- Array nodes get exactly one synthetic child at ``<path>[0]`` built from ``items``.
- Local ``$ref`` pointers (``#/definitions/...`` or ``#/$defs/...``) are followed.
- A node reachable from itself raises SchemaError instead of recursing forever.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import Any

from core.schema.models import DataField, FieldType
from core.schema.paths import index_path, join_path
from core.utils.errors import SchemaError
from core.utils.log_events import log_event

logger = logging.getLogger("binder.schema")

_TYPE_ALIASES = {
    "string": FieldType.STRING,
    "number": FieldType.NUMBER,
    "integer": FieldType.NUMBER,
    "boolean": FieldType.BOOLEAN,
    "object": FieldType.OBJECT,
    "array": FieldType.ARRAY,
    "date": FieldType.DATE,
}
_DATE_FORMATS = frozenset({"date", "date-time"})


def flatten_schema(schema: Mapping[str, Any]) -> list[DataField]:
    """Build the top-level field tree for an object schema."""

    if not isinstance(schema, Mapping):
        raise SchemaError("Schema must be a mapping")

    builder = _TreeBuilder(schema)
    root = builder.resolve(schema, path="")
    if _field_type(root, path="") is not FieldType.OBJECT:
        raise SchemaError("Root schema must describe an object", path="")

    builder.active.add(id(root))
    fields = builder.object_children(root, parent_path="")
    _assert_unique_paths(fields)
    log_event(logger, logging.DEBUG, "flattened", field_count=sum(1 for _ in iter_fields(fields)))
    return fields


def all_fields(tree: list[DataField]) -> list[DataField]:
    """Return every field of the tree in pre-order."""

    return list(iter_fields(tree))


def iter_fields(tree: list[DataField] | tuple[DataField, ...]) -> Iterator[DataField]:
    for field in tree:
        yield field
        yield from iter_fields(field.children)


def filter_fields(tree: list[DataField], query: str) -> list[DataField]:
    """Case-insensitive search over name, path and description.

    A parent is kept when it matches or when any descendant matches; kept
    parents carry only their matching subtrees.
    """

    needle = query.strip().lower()
    if not needle:
        return list(tree)
    return _filter_level(tree, needle)


def find_field(tree: list[DataField], path: str) -> DataField | None:
    for field in iter_fields(tree):
        if field.path == path:
            return field
    return None


def _filter_level(fields: list[DataField] | tuple[DataField, ...], needle: str) -> list[DataField]:
    kept: list[DataField] = []
    for field in fields:
        children = _filter_level(field.children, needle)
        if _field_matches(field, needle) or children:
            kept.append(
                DataField(
                    path=field.path,
                    name=field.name,
                    type=field.type,
                    description=field.description,
                    children=tuple(children),
                )
            )
    return kept


def _field_matches(field: DataField, needle: str) -> bool:
    haystacks = (field.name, field.path, field.description or "")
    return any(needle in value.lower() for value in haystacks)


class _TreeBuilder:
    def __init__(self, root: Mapping[str, Any]) -> None:
        self.root = root
        self.active: set[int] = set()

    def resolve(self, node: Any, *, path: str) -> Mapping[str, Any]:
        seen_refs: set[str] = set()
        while isinstance(node, Mapping) and "$ref" in node:
            ref = node["$ref"]
            if not isinstance(ref, str) or ref in seen_refs:
                raise SchemaError(f"Unresolvable $ref at '{path}': {ref!r}", path=path)
            seen_refs.add(ref)
            node = self._lookup_ref(ref, path=path)

        if not isinstance(node, Mapping):
            raise SchemaError(f"Schema node at '{path}' must be a mapping", path=path)
        return node

    def object_children(self, node: Mapping[str, Any], *, parent_path: str) -> list[DataField]:
        properties = node.get("properties", {})
        if not isinstance(properties, Mapping):
            raise SchemaError(f"'properties' at '{parent_path}' must be a mapping", path=parent_path)
        return [
            self.build(str(key), child, path=join_path(parent_path, str(key)))
            for key, child in properties.items()
        ]

    def build(self, key: str, raw_node: Any, *, path: str) -> DataField:
        node = self.resolve(raw_node, path=path)
        marker = id(node)
        if marker in self.active:
            raise SchemaError(f"Cyclic schema detected at '{path}'", path=path)

        field_type = _field_type(node, path=path)
        name = str(node.get("title") or key)
        description = node.get("description")

        self.active.add(marker)
        try:
            children: tuple[DataField, ...] = ()
            if field_type is FieldType.OBJECT:
                children = tuple(self.object_children(node, parent_path=path))
            elif field_type is FieldType.ARRAY:
                children = (self._element_field(key, node, path=path),)
        finally:
            self.active.discard(marker)

        return DataField(
            path=path,
            name=name,
            type=field_type,
            description=str(description) if description is not None else None,
            children=children,
        )

    def _element_field(self, key: str, node: Mapping[str, Any], *, path: str) -> DataField:
        items = node.get("items", {"type": "string"})
        if isinstance(items, list):
            if not items:
                raise SchemaError(f"'items' at '{path}' must not be empty", path=path)
            items = items[0]
        return self.build(f"{key} item", items, path=index_path(path))

    def _lookup_ref(self, ref: str, *, path: str) -> Any:
        if not ref.startswith("#/"):
            raise SchemaError(f"Only local $ref pointers are supported at '{path}': {ref}", path=path)

        target: Any = self.root
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(target, Mapping) or part not in target:
                raise SchemaError(f"Unresolvable $ref at '{path}': {ref}", path=path)
            target = target[part]
        return target


def _field_type(node: Mapping[str, Any], *, path: str) -> FieldType:
    declared = node.get("type")
    if isinstance(declared, list):
        declared = next((item for item in declared if item != "null"), None)

    if declared is None:
        if "properties" in node:
            return FieldType.OBJECT
        if "items" in node:
            return FieldType.ARRAY
        return FieldType.STRING

    if not isinstance(declared, str) or declared not in _TYPE_ALIASES:
        raise SchemaError(f"Unsupported type at '{path}': {declared!r}", path=path)

    field_type = _TYPE_ALIASES[declared]
    if field_type is FieldType.STRING and node.get("format") in _DATE_FORMATS:
        return FieldType.DATE
    return field_type


def _assert_unique_paths(tree: list[DataField]) -> None:
    seen: set[str] = set()
    for field in iter_fields(tree):
        if field.path in seen:
            raise SchemaError(f"Duplicate field path '{field.path}'", path=field.path)
        seen.add(field.path)
