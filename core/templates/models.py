"""Data models for template sources, extracted tokens, and token context."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class TokenKind(str, Enum):
    """Semantic kind derived from a token's surface syntax."""

    FIELD = "field"
    LOOP = "loop"
    CONDITIONAL = "conditional"
    RAW = "raw"


@dataclass(frozen=True)
class TokenPosition:
    """Advisory grid placement used only for visualization."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class TemplateToken:
    """One distinct placeholder found in template markup."""

    id: str
    raw: str
    key: str
    kind: TokenKind
    position: TokenPosition
    start: int
    end: int


@dataclass(frozen=True)
class TokenContext:
    """Markup surrounding the first occurrence of a token."""

    context: str
    html_tag: str | None = None
    in_repeated_block: bool = False
    section: str | None = None


@dataclass(frozen=True)
class PlaceholderCounts:
    """Distinct token counts per template source."""

    svg: int = 0
    html: int = 0
    css: int = 0
    js: int = 0
    total: int = 0


class TemplateSource(BaseModel):
    """Template artifacts as served by the persistence collaborator."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        coerce_numbers_to_str=True,
    )

    id: str
    name: str = ""
    html_content: str | None = None
    svg_content: str | None = None
    css_content: str | None = None
    js_content: str | None = None
    pdf_content: str | None = None
