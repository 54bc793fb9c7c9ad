"""Token extraction over template markup.

Recognized surface syntaxes:
- ``[[FIELD:name]]``, ``[[LOOP:items]]``, ``[[IF:flag]]``
- ``{{name}}``, ``{{#each items}}``, ``{{#if flag}}``
- ``{field:name}`` and ``${name}``

Closing block markers (``{{/each}}``, ``{{/if}}``, ``[[/LOOP]]``) are structure,
not tokens.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections import Counter

from core.templates.models import (
    PlaceholderCounts,
    TemplateSource,
    TemplateToken,
    TokenContext,
    TokenKind,
    TokenPosition,
)
from core.utils.log_events import log_event

logger = logging.getLogger("binder.extract")

_TOKEN_RE = re.compile(
    r"\[\[(?P<bracket_kind>(?i:FIELD|LOOP|IF)):\s*(?P<bracket_key>[^\]]+?)\s*\]\]"
    r"|\{\{\s*#(?P<block_kind>each|if)\s+(?P<block_key>[^{}]+?)\s*\}\}"
    r"|\{\{\s*(?P<mustache_key>[^\s#/{}][^{}]*?)\s*\}\}"
    r"|\{field:\s*(?P<brace_key>[^{}]+?)\s*\}"
    r"|\$\{\s*(?P<literal_key>[^{}]+?)\s*\}"
)
_BLOCK_RE = re.compile(
    r"\{\{\s*#each\s+(?P<each>[^\s{}]+)[^{}]*\}\}"
    r"|\[\[(?i:LOOP):\s*(?P<loop>[^\]]+?)\s*\]\]"
    r"|(?P<close>\{\{\s*/each\s*\}\}|\[\[/(?i:LOOP)\s*\]\]|\[\[(?i:END_?LOOP)\]\])"
)
_TAG_RE = re.compile(r"<(?P<closing>/?)(?P<name>[a-zA-Z][a-zA-Z0-9-]*)\b[^>]*?(?P<self>/?)>")
_VOID_TAGS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)
_MUSTACHE_KEYWORDS = frozenset({"else", "this"})
_BRACKET_KINDS = {"field": TokenKind.FIELD, "loop": TokenKind.LOOP, "if": TokenKind.CONDITIONAL}
_BLOCK_KINDS = {"each": TokenKind.LOOP, "if": TokenKind.CONDITIONAL}

_GRID_COLUMNS = 3
_CELL_WIDTH = 180
_CELL_HEIGHT = 40
_CELL_GAP = 20
_CONTEXT_RADIUS = 100


def extract_tokens(markup: str | None) -> list[TemplateToken]:
    """Extract distinct tokens from markup in first-occurrence order.

    An empty or token-free markup yields an empty list. Tokens sharing a
    canonical key but differing in literal text are kept as separate entries.
    """

    tokens: list[TemplateToken] = []
    seen_raw: set[str] = set()
    key_ordinals: Counter[str] = Counter()

    for match in _TOKEN_RE.finditer(markup or ""):
        parsed = _parse_match(match)
        if parsed is None:
            continue
        kind, key = parsed
        raw = match.group(0)
        if raw in seen_raw:
            continue
        seen_raw.add(raw)

        ordinal = key_ordinals[key]
        key_ordinals[key] += 1
        tokens.append(
            TemplateToken(
                id=_token_id(raw, ordinal),
                raw=raw,
                key=key,
                kind=kind,
                position=_grid_position(len(tokens)),
                start=match.start(),
                end=match.end(),
            )
        )

    log_event(logger, logging.DEBUG, "extracted", token_count=len(tokens))
    return tokens


def canonical_key(text: str) -> str:
    """Strip any recognized delimiters and surrounding whitespace from token text."""

    stripped = text.strip()
    match = _TOKEN_RE.fullmatch(stripped)
    if match is None:
        return stripped
    parsed = _parse_match(match)
    if parsed is None:
        return stripped
    return parsed[1]


def template_markup(template: TemplateSource) -> str:
    """Join the token-bearing sources of a template in render order."""

    primary = template.html_content if _has_text(template.html_content) else template.svg_content
    parts = [primary, template.css_content, template.js_content]
    return "\n".join(part for part in parts if _has_text(part))


def extract_template_tokens(template: TemplateSource) -> list[TemplateToken]:
    return extract_tokens(template_markup(template))


def count_placeholders(template: TemplateSource) -> PlaceholderCounts:
    """Count distinct tokens per source and across all sources."""

    sources = {
        "svg": template.svg_content,
        "html": template.html_content,
        "css": template.css_content,
        "js": template.js_content,
    }
    per_source: dict[str, int] = {}
    all_raw: set[str] = set()
    for name, content in sources.items():
        tokens = extract_tokens(content)
        per_source[name] = len(tokens)
        all_raw.update(token.raw for token in tokens)

    return PlaceholderCounts(total=len(all_raw), **per_source)


def analyze_token_context(raw: str, markup: str) -> TokenContext:
    """Describe where the first occurrence of ``raw`` sits in ``markup``."""

    index = markup.find(raw)
    if index == -1:
        return TokenContext(context="")

    start = max(0, index - _CONTEXT_RADIUS)
    end = min(len(markup), index + len(raw) + _CONTEXT_RADIUS)
    prefix = markup[:index]

    sections = _open_sections(prefix)
    return TokenContext(
        context=markup[start:end],
        html_tag=_enclosing_tag(prefix),
        in_repeated_block=bool(sections),
        section=sections[-1] if sections else None,
    )


def _parse_match(match: re.Match[str]) -> tuple[TokenKind, str] | None:
    groups = match.groupdict()
    if groups["bracket_kind"] is not None:
        return _BRACKET_KINDS[groups["bracket_kind"].lower()], groups["bracket_key"].strip()
    if groups["block_kind"] is not None:
        return _BLOCK_KINDS[groups["block_kind"]], groups["block_key"].strip()
    if groups["mustache_key"] is not None:
        key = groups["mustache_key"].strip()
        if key in _MUSTACHE_KEYWORDS:
            return None
        return TokenKind.FIELD, key
    if groups["brace_key"] is not None:
        return TokenKind.FIELD, groups["brace_key"].strip()
    if groups["literal_key"] is not None:
        return TokenKind.RAW, groups["literal_key"].strip()
    return None


def _token_id(raw: str, ordinal: int) -> str:
    digest = hashlib.sha1(f"{raw}#{ordinal}".encode("utf-8")).hexdigest()
    return f"tok_{digest[:12]}"


def _grid_position(index: int) -> TokenPosition:
    row, column = divmod(index, _GRID_COLUMNS)
    return TokenPosition(
        x=column * (_CELL_WIDTH + _CELL_GAP),
        y=row * (_CELL_HEIGHT + _CELL_GAP),
        width=_CELL_WIDTH,
        height=_CELL_HEIGHT,
    )


def _open_sections(prefix: str) -> list[str]:
    stack: list[str] = []
    for match in _BLOCK_RE.finditer(prefix):
        if match.group("close") is not None:
            if stack:
                stack.pop()
            continue
        stack.append((match.group("each") or match.group("loop")).strip())
    return stack


def _enclosing_tag(prefix: str) -> str | None:
    stack: list[str] = []
    for match in _TAG_RE.finditer(prefix):
        name = match.group("name").lower()
        if match.group("closing"):
            if name in stack:
                while stack and stack.pop() != name:
                    pass
            continue
        if match.group("self") or name in _VOID_TAGS:
            continue
        stack.append(name)
    return stack[-1] if stack else None


def _has_text(value: str | None) -> bool:
    return value is not None and value.strip() != ""
