"""Data models for the flattened data-field tree."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FieldType(str, Enum):
    """Value type of one addressable data field."""

    STRING = "string"
    NUMBER = "number"
    ARRAY = "array"
    OBJECT = "object"
    BOOLEAN = "boolean"
    DATE = "date"


@dataclass(frozen=True)
class DataField:
    """One addressable node of a data schema.

    ``children`` is non-empty only for object and array fields; an array holds
    exactly one synthetic child at ``<path>[0]`` describing its element shape.
    """

    path: str
    name: str
    type: FieldType
    description: str | None = None
    children: tuple[DataField, ...] = ()
