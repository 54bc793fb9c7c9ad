"""Dotted/indexed field path parsing and resolution against data."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")

PathPart = str | int


def parse_path(path: str) -> list[PathPart]:
    """Split ``workExperience[0].company`` into ``["workExperience", 0, "company"]``."""

    parts: list[PathPart] = []
    for match in _SEGMENT_RE.finditer(path.strip()):
        name, index = match.groups()
        if index is not None:
            parts.append(int(index))
        else:
            parts.append(name.strip())
    return parts


def join_path(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else key


def index_path(parent: str, index: int = 0) -> str:
    return f"{parent}[{index}]"


def resolve_path(data: Any, path: str) -> Any | None:
    """Walk ``path`` through nested mappings and sequences.

    Returns None when any step is absent.
    """

    parts = parse_path(path)
    if not parts:
        return None

    current = data
    for part in parts:
        if isinstance(part, int):
            if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
                if part >= len(current):
                    return None
                current = current[part]
                continue
            return None
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
            continue
        return None
    return current


def format_value(value: Any) -> str:
    """Render a resolved value as substitution text."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return ", ".join(format_value(item) for item in value)
    return str(value)
