"""Merge live data into template markup using the current bindings."""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping
from html import escape
from typing import Any

from core.bindings.models import Binding
from core.render.models import (
    RenderMode,
    RenderOutput,
    ReplaceLogEntry,
    ReplaceReport,
    ReplaceSummary,
)
from core.schema.paths import format_value, resolve_path
from core.templates.models import TemplateSource
from core.utils.errors import RenderFallbackExhausted
from core.utils.log_events import log_event

logger = logging.getLogger("binder.render")

_FALLBACK_ORDER: dict[str, tuple[RenderMode, ...]] = {
    "html": ("html",),
    "svg": ("svg", "html"),
    "pdf": ("pdf", "html"),
}
TOKEN_CLASS = "binder-token"
_MARKUP_SEGMENT = re.compile(
    r"<(script|style)\b[^>]*>.*?</\1\s*>|<!--.*?-->|<[^>]*>",
    re.IGNORECASE | re.DOTALL,
)


def render_template(
    template: TemplateSource,
    bindings: list[Binding],
    data: Mapping[str, Any] | None,
    mode: RenderMode = "html",
    *,
    annotate_tokens: bool = False,
) -> RenderOutput:
    """Render ``template`` for ``mode``, falling back to HTML for svg and pdf.

    Output depends only on the inputs. Unmapped placeholders stay in place;
    mapped placeholders whose path resolves to nothing render as empty text.
    With ``annotate_tokens`` each HTML text occurrence is wrapped in a clickable
    element carrying its placeholder; occurrences inside tags, styles and
    scripts are substituted plainly.
    """

    if mode not in _FALLBACK_ORDER:
        raise ValueError(f"Unsupported render mode: {mode}")

    attempted: list[str] = []
    for candidate in _FALLBACK_ORDER[mode]:
        attempted.append(candidate)
        if candidate == "pdf":
            pdf = template.pdf_content
            if pdf is None or not _has_text(pdf):
                continue
            # PDF artifacts are pre-rendered; there is no markup to substitute into.
            return _output(mode, candidate, pdf, [])

        if candidate == "svg":
            svg = template.svg_content
            if svg is None or not _has_text(svg):
                continue
            markup = _insert_before(svg, "</svg>", _style_tag(template.css_content))
            content, entries = _substitute(markup, bindings, data, annotate=False)
            return _output(mode, candidate, content, entries)

        html = template.html_content
        if html is None or not _has_text(html):
            continue
        markup = _insert_before(html, "</head>", _style_tag(template.css_content))
        markup = _insert_before(markup, "</body>", _script_tag(template.js_content))
        content, entries = _substitute(markup, bindings, data, annotate=annotate_tokens)
        return _output(mode, candidate, content, entries)

    log_event(logger, logging.WARNING, "fallback_exhausted", mode=mode, attempted=attempted)
    raise RenderFallbackExhausted(
        f"No renderable artifact for mode '{mode}'", mode=mode, attempted=attempted
    )


def _substitute(
    markup: str,
    bindings: list[Binding],
    data: Mapping[str, Any] | None,
    *,
    annotate: bool,
) -> tuple[str, list[ReplaceLogEntry]]:
    ordered: dict[str, Binding] = {}
    for binding in bindings:
        if binding.placeholder and binding.placeholder not in ordered:
            ordered[binding.placeholder] = binding
    if not ordered:
        return markup, []

    values: dict[str, str | None] = {}
    for placeholder, binding in ordered.items():
        selector = binding.selector
        if selector is None or not binding.is_mapped:
            values[placeholder] = None
            continue
        values[placeholder] = format_value(resolve_path(data or {}, selector))

    counts: Counter[str] = Counter()

    def _plain(match: re.Match[str]) -> str:
        placeholder = match.group(0)
        counts[placeholder] += 1
        value = values[placeholder]
        return placeholder if value is None else value

    def _annotated(match: re.Match[str]) -> str:
        placeholder = match.group(0)
        value = values[placeholder]
        return (
            f'<span class="{TOKEN_CLASS}" data-binder-token="{escape(placeholder, quote=True)}" '
            f'data-mapped="{"false" if value is None else "true"}">{_plain(match)}</span>'
        )

    # Longest placeholders first so overlapping literals resolve to the most specific.
    pattern = re.compile(
        "|".join(re.escape(item) for item in sorted(ordered, key=lambda item: (-len(item), item)))
    )
    if not annotate:
        content = pattern.sub(_plain, markup)
    else:
        parts: list[str] = []
        cursor = 0
        for segment in _MARKUP_SEGMENT.finditer(markup):
            parts.append(pattern.sub(_annotated, markup[cursor : segment.start()]))
            parts.append(pattern.sub(_plain, segment.group(0)))
            cursor = segment.end()
        parts.append(pattern.sub(_annotated, markup[cursor:]))
        content = "".join(parts)

    entries: list[ReplaceLogEntry] = []
    for placeholder, binding in ordered.items():
        value = values[placeholder]
        if value is None:
            status = "unmapped"
        elif resolve_path(data or {}, binding.selector or "") is None:
            status = "missing"
        else:
            status = "replaced"
        entries.append(
            ReplaceLogEntry(
                status=status,
                placeholder=placeholder,
                selector=binding.selector,
                occurrences=counts[placeholder],
                new_text=value,
            )
        )
    return content, entries


def _output(
    requested: RenderMode,
    rendered: RenderMode,
    content: str,
    entries: list[ReplaceLogEntry],
) -> RenderOutput:
    summary = ReplaceSummary(
        total_bindings=len(entries),
        replaced_count=sum(1 for item in entries if item.status == "replaced"),
        missing_count=sum(1 for item in entries if item.status == "missing"),
        unmapped_count=sum(1 for item in entries if item.status == "unmapped"),
    )
    log_event(
        logger,
        logging.DEBUG,
        "rendered",
        requested_mode=requested,
        rendered_mode=rendered,
        **summary.model_dump(),
    )
    return RenderOutput(
        requested_mode=requested,
        rendered_mode=rendered,
        fell_back=requested != rendered,
        content=content,
        replace_report=ReplaceReport(entries=entries, summary=summary),
    )


def _insert_before(markup: str, closing_tag: str, snippet: str) -> str:
    if not snippet:
        return markup
    index = markup.lower().rfind(closing_tag)
    if index == -1:
        return markup + snippet
    return markup[:index] + snippet + markup[index:]


def _style_tag(css: str | None) -> str:
    return f"<style>{css}</style>" if _has_text(css) else ""


def _script_tag(js: str | None) -> str:
    return f"<script>{js}</script>" if _has_text(js) else ""


def _has_text(value: str | None) -> bool:
    return value is not None and value.strip() != ""
