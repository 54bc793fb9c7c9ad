"""Typer CLI entrypoint for template-binder."""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any, cast

import typer

from apps.cli.io import load_json_object, load_template_file, write_render_output_atomic
from core.bindings.persistence import JsonFilePersistence
from core.matching.config_loader import load_match_config
from core.matching.engine import MatchEngine
from core.orchestrator.notices import Notice
from core.orchestrator.session import BindingSession
from core.render.models import RenderMode
from core.schema.field_tree import filter_fields, flatten_schema
from core.schema.models import DataField
from core.templates.models import TemplateSource
from core.templates.token_extractor import (
    analyze_token_context,
    count_placeholders,
    extract_tokens,
    template_markup,
)
from core.utils.errors import SchemaError

app = typer.Typer(help="Template binder CLI", rich_markup_mode=None)

_DEFAULT_STORE_PATH = "bindings.json"
_RENDER_MODES = ("html", "svg", "pdf")

EXIT_INVALID_INPUT = 1
EXIT_PERSISTENCE_FAILURE = 2
EXIT_NOTHING_TO_RENDER = 3

StoreOption = Annotated[
    Path | None,
    typer.Option("--store", help="Binding store JSON file (default: $BINDER_STORE_PATH or bindings.json)."),
]
TemplateIdOption = Annotated[str, typer.Option("--template-id", help="Template id inside the store.")]
MatchConfigOption = Annotated[
    Path | None,
    typer.Option("--match-config", help="Matching thresholds YAML (default: $BINDER_MATCH_CONFIG or bundled)."),
]


@app.callback()
def cli_callback() -> None:
    """Map template tokens to data-schema field paths."""


@app.command("tokens")
def tokens_command(
    template: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    context: Annotated[bool, typer.Option("--context", help="Include surrounding context.")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON instead of text.")] = False,
) -> None:
    """List tokens found in a template file."""

    source = _load_template_or_exit(template)
    markup = template_markup(source)
    tokens = extract_tokens(markup)
    counts = count_placeholders(source)

    if as_json:
        payload: dict[str, Any] = {
            "counts": asdict(counts),
            "tokens": [
                {
                    "id": token.id,
                    "raw": token.raw,
                    "key": token.key,
                    "kind": token.kind.value,
                    **({"context": asdict(analyze_token_context(token.raw, markup))} if context else {}),
                }
                for token in tokens
            ],
        }
        typer.echo(json.dumps(payload, ensure_ascii=False, sort_keys=True))
        return

    if not tokens:
        typer.echo("WARNING(extract): no tokens found in template")
        return

    for token in tokens:
        line = f"{token.id}\t{token.kind.value}\t{token.key}\t{token.raw}"
        if context:
            info = analyze_token_context(token.raw, markup)
            line += f"\ttag={info.html_tag or '-'}\tsection={info.section or '-'}"
            line += f"\trepeated={'yes' if info.in_repeated_block else 'no'}"
        typer.echo(line)
    typer.echo(
        f"INFO: {len(tokens)} token(s); placeholders html={counts.html} svg={counts.svg} "
        f"css={counts.css} js={counts.js} total={counts.total}"
    )


@app.command("fields")
def fields_command(
    schema: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    query: Annotated[str | None, typer.Option("--query", help="Filter by name or path.")] = None,
) -> None:
    """Print the field tree of a data schema."""

    try:
        tree = flatten_schema(load_json_object(schema, label="schema"))
    except (SchemaError, ValueError) as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc

    if query:
        tree = filter_fields(tree, query)
    if not tree:
        typer.echo("INFO: no fields")
        return
    for line in _tree_lines(tree):
        typer.echo(line)


@app.command("analyze")
def analyze_command(
    template: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    schema: Annotated[Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)] = None,
    template_id: Annotated[str | None, typer.Option("--template-id")] = None,
    store: StoreOption = None,
) -> None:
    """Import a template (and optionally a schema) into the store and create bindings."""

    source = _load_template_or_exit(template, template_id=template_id)
    engine = _engine_or_exit(None)
    schema_payload = None
    if schema is not None:
        schema_payload = _load_json_or_exit(schema, label="schema")

    async def _run() -> int:
        client = JsonFilePersistence(_store_path(store))
        await client.put_template(source)
        if schema_payload is not None:
            await client.put_schema(schema_payload)

        session = BindingSession(source.id, client, engine=engine)
        await session.open()
        await session.close()

        typer.echo(f"INFO: template={source.id} tokens={len(session.tokens)} bindings={len(session.store.list())}")
        if session.fields:
            typer.echo(f"INFO: fields={len(session.fields)}")
        typer.echo(f"INFO: completion={session.completion()}%")
        return _echo_notices(session.pop_notices(), ignore={"get_schema"} if schema_payload is None else set())

    raise typer.Exit(code=asyncio.run(_run()))


@app.command("suggest")
def suggest_command(
    template_id: TemplateIdOption,
    store: StoreOption = None,
    match_config: MatchConfigOption = None,
    auto: Annotated[bool, typer.Option("--auto", help="Apply exact path/name matches.")] = False,
    apply: Annotated[bool, typer.Option("--apply", help="Accept every top suggestion above the floor.")] = False,
    floor: Annotated[float | None, typer.Option("--floor", min=0.0, max=1.0)] = None,
) -> None:
    """Show ranked field suggestions for unmapped bindings."""

    engine = _engine_or_exit(match_config)

    async def _run() -> int:
        session = _session(template_id, store, engine)
        await session.open()

        suggestions = session.suggest()
        for suggestion in suggestions:
            if not suggestion.suggestions:
                typer.echo(f"{suggestion.token}\t(no suggestions)")
                continue
            for item in suggestion.suggestions:
                typer.echo(f"{suggestion.token}\t{item.field_path}\t{item.confidence:.2f}\t{item.reasoning}")

        if auto:
            applied = await session.auto_apply()
            typer.echo(f"INFO: auto-applied {applied} exact match(es)")
        if apply:
            accepted = await session.accept_all_suggestions(session.suggest(), floor)
            typer.echo(f"INFO: accepted {accepted} suggestion(s)")

        await session.close()
        typer.echo(f"INFO: completion={session.completion()}%")
        return _echo_notices(session.pop_notices())

    raise typer.Exit(code=asyncio.run(_run()))


@app.command("bind")
def bind_command(
    template_id: TemplateIdOption,
    token: Annotated[str, typer.Option("--token", help="Token text exactly as it appears in markup.")],
    path: Annotated[str, typer.Option("--path", help="Field path; empty to unmap.")] = "",
    store: StoreOption = None,
) -> None:
    """Map a token to a field path, creating its binding when needed."""

    engine = _engine_or_exit(None)

    async def _run() -> int:
        session = _session(template_id, store, engine)
        await session.open()

        binding = session.store.find(token)
        if binding is None or binding.id is None:
            updated = await session.create_binding(token, path or None)
        else:
            updated = await session.set_selector(binding.id, path)
        await session.close()

        if updated is not None:
            target = updated.selector or "(unmapped)"
            typer.echo(f"INFO: {updated.placeholder} -> {target}")
        typer.echo(f"INFO: completion={session.completion()}%")
        return _echo_notices(session.pop_notices())

    raise typer.Exit(code=asyncio.run(_run()))


@app.command("render")
def render_command(
    template_id: TemplateIdOption,
    out: Annotated[Path, typer.Option("--out", help="Output file for merged content.")],
    data: Annotated[Path | None, typer.Option(exists=True, dir_okay=False, file_okay=True)] = None,
    mode: Annotated[str, typer.Option("--mode")] = "html",
    annotate: Annotated[bool, typer.Option("--annotate", help="Wrap tokens in clickable elements.")] = False,
    store: StoreOption = None,
) -> None:
    """Merge data into the template using the current bindings."""

    normalized_mode = mode.lower().strip()
    if normalized_mode not in _RENDER_MODES:
        typer.echo("ERROR: --mode must be one of: html, svg, pdf.")
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    data_payload = _load_json_or_exit(data, label="data") if data is not None else {}
    engine = _engine_or_exit(None)

    async def _run() -> int:
        session = _session(template_id, store, engine)
        await session.open()
        session.set_data(data_payload)
        output = session.render_preview(cast(RenderMode, normalized_mode), annotate=annotate)
        await session.close()

        exit_code = _echo_notices(
            session.pop_notices(), ignore={"get_schema"}, quiet_kinds={"extraction_warning"}
        )
        if output is None:
            typer.echo("ERROR: nothing to render")
            return EXIT_NOTHING_TO_RENDER

        content_path, log_path = write_render_output_atomic(out, output)
        if output.fell_back:
            typer.echo(f"WARNING(render): {output.requested_mode} unavailable, rendered {output.rendered_mode}")
        summary = output.replace_report.summary
        typer.echo(
            f"INFO: replaced={summary.replaced_count} missing={summary.missing_count} "
            f"unmapped={summary.unmapped_count}"
        )
        typer.echo(f"INFO: wrote {content_path} and {log_path}")
        return exit_code

    raise typer.Exit(code=asyncio.run(_run()))


@app.command("status")
def status_command(
    template_id: TemplateIdOption,
    store: StoreOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON instead of text.")] = False,
) -> None:
    """Report completion, unmapped bindings and orphans for a template."""

    engine = _engine_or_exit(None)

    async def _run() -> int:
        session = _session(template_id, store, engine)
        await session.open()
        await session.close()

        bindings = session.store.list()
        unmapped = session.store.unmapped()
        orphans = session.orphans()
        if as_json:
            payload = {
                "template_id": template_id,
                "completion": session.completion(),
                "total": len(bindings),
                "unmapped": [binding.placeholder for binding in unmapped],
                "orphans": [binding.placeholder for binding in orphans],
            }
            typer.echo(json.dumps(payload, ensure_ascii=False, sort_keys=True))
        else:
            typer.echo(f"INFO: completion={session.completion()}% ({len(bindings) - len(unmapped)}/{len(bindings)})")
            for binding in unmapped:
                typer.echo(f"UNMAPPED: {binding.placeholder}")
            for binding in orphans:
                typer.echo(f"ORPHAN: {binding.placeholder} -> {binding.selector or '(unmapped)'}")
        return _echo_notices(session.pop_notices(), ignore={"get_schema"}, quiet_kinds={"extraction_warning"})

    raise typer.Exit(code=asyncio.run(_run()))


def _store_path(store: Path | None) -> Path:
    if store is not None:
        return store
    raw = os.getenv("BINDER_STORE_PATH", "").strip()
    return Path(raw or _DEFAULT_STORE_PATH)


def _session(template_id: str, store: Path | None, engine: MatchEngine) -> BindingSession:
    return BindingSession(template_id, JsonFilePersistence(_store_path(store)), engine=engine)


def _engine_or_exit(path: Path | None) -> MatchEngine:
    try:
        return MatchEngine(load_match_config(path))
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _load_template_or_exit(path: Path, *, template_id: str | None = None) -> TemplateSource:
    try:
        return load_template_file(path, template_id=template_id)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _load_json_or_exit(path: Path, *, label: str) -> dict[str, Any]:
    try:
        return load_json_object(path, label=label)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from exc


def _echo_notices(
    notices: list[Notice],
    *,
    ignore: set[str] | None = None,
    quiet_kinds: set[str] | None = None,
) -> int:
    """Print notices; returns the exit code they imply.

    ``ignore`` lists persistence operations whose failure is expected (for
    example a store without a schema).
    """

    exit_code = 0
    for notice in notices:
        if notice.kind == "persistence_failure" and notice.params.get("operation") in (ignore or set()):
            continue
        if notice.kind in (quiet_kinds or set()):
            continue
        if notice.kind == "persistence_failure":
            typer.echo(f"ERROR(persistence): {notice.message}")
            exit_code = EXIT_PERSISTENCE_FAILURE
        else:
            typer.echo(f"WARNING({notice.kind}): {notice.message}")
    return exit_code


def _tree_lines(tree: list[DataField] | tuple[DataField, ...], depth: int = 0) -> list[str]:
    lines: list[str] = []
    for field in tree:
        lines.append(f"{'  ' * depth}{field.path} ({field.type.value})")
        lines.extend(_tree_lines(field.children, depth + 1))
    return lines


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
