from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from apps.cli.main import app

runner = CliRunner()

ORDER_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "items": {
            "type": "array",
            "items": {"type": "object", "properties": {"sku": {"type": "string"}}},
        },
    },
}


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BINDER_STORE_PATH", raising=False)
    monkeypatch.delenv("BINDER_MATCH_CONFIG", raising=False)
    monkeypatch.setenv("BINDER_PERSIST_RETRIES", "0")
    monkeypatch.setenv("BINDER_REFRESH_DEBOUNCE_MS", "0")


def _write_inputs(tmp_path: Path) -> tuple[Path, Path, Path]:
    template = tmp_path / "order.html"
    template.write_text("<h1>[[FIELD:name]]</h1><p>{{items[0].sku}}</p>", encoding="utf-8")
    schema = tmp_path / "schema.json"
    schema.write_text(json.dumps(ORDER_SCHEMA), encoding="utf-8")
    data = tmp_path / "data.json"
    data.write_text(json.dumps({"name": "Acme", "items": [{"sku": "X1"}]}), encoding="utf-8")
    return template, schema, data


def _analyze(tmp_path: Path, store: Path) -> None:
    template, schema, _ = _write_inputs(tmp_path)
    result = runner.invoke(
        app,
        [
            "analyze",
            "--template",
            str(template),
            "--schema",
            str(schema),
            "--template-id",
            "order",
            "--store",
            str(store),
        ],
    )
    assert result.exit_code == 0, result.output


def _last_json_line(output: str) -> dict[str, object]:
    return json.loads(output.strip().splitlines()[-1])


def test_tokens_lists_tokens_and_counts(tmp_path: Path) -> None:
    template, _, _ = _write_inputs(tmp_path)

    result = runner.invoke(app, ["tokens", "--template", str(template)])

    assert result.exit_code == 0
    assert "field\tname\t[[FIELD:name]]" in result.output
    assert "field\titems[0].sku\t{{items[0].sku}}" in result.output
    assert "INFO: 2 token(s); placeholders html=2 svg=0 css=0 js=0 total=2" in result.output


def test_tokens_json_with_context(tmp_path: Path) -> None:
    template, _, _ = _write_inputs(tmp_path)

    result = runner.invoke(app, ["tokens", "--template", str(template), "--json", "--context"])

    assert result.exit_code == 0
    payload = _last_json_line(result.output)
    assert payload["counts"] == {"svg": 0, "html": 2, "css": 0, "js": 0, "total": 2}
    tokens = payload["tokens"]
    assert isinstance(tokens, list)
    assert tokens[0]["context"]["html_tag"] == "h1"


def test_tokens_warns_on_empty_template(tmp_path: Path) -> None:
    template = tmp_path / "plain.html"
    template.write_text("<p>nothing</p>", encoding="utf-8")

    result = runner.invoke(app, ["tokens", "--template", str(template)])

    assert result.exit_code == 0
    assert "WARNING(extract): no tokens found in template" in result.output


def test_tokens_rejects_unsupported_file_type(tmp_path: Path) -> None:
    template = tmp_path / "template.docx"
    template.write_text("x", encoding="utf-8")

    result = runner.invoke(app, ["tokens", "--template", str(template)])

    assert result.exit_code == 1
    assert "ERROR: Unsupported template file type" in result.output


def test_fields_prints_tree_and_filters(tmp_path: Path) -> None:
    _, schema, _ = _write_inputs(tmp_path)

    full = runner.invoke(app, ["fields", "--schema", str(schema)])
    filtered = runner.invoke(app, ["fields", "--schema", str(schema), "--query", "sku"])

    assert full.exit_code == 0
    assert full.output.splitlines() == [
        "name (string)",
        "items (array)",
        "  items[0] (object)",
        "    items[0].sku (string)",
    ]
    assert "name (string)" not in filtered.output
    assert "    items[0].sku (string)" in filtered.output


def test_fields_rejects_cyclic_schema(tmp_path: Path) -> None:
    schema = tmp_path / "schema.json"
    schema.write_text(
        json.dumps(
            {
                "type": "object",
                "definitions": {"n": {"type": "object", "properties": {"n": {"$ref": "#/definitions/n"}}}},
                "properties": {"root": {"$ref": "#/definitions/n"}},
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["fields", "--schema", str(schema)])

    assert result.exit_code == 1
    assert "ERROR: Cyclic schema detected" in result.output


def test_analyze_bind_status_render_flow(tmp_path: Path) -> None:
    store = tmp_path / "store.json"
    _analyze(tmp_path, store)

    bind = runner.invoke(
        app,
        ["bind", "--template-id", "order", "--token", "[[FIELD:name]]", "--path", "name", "--store", str(store)],
    )
    assert bind.exit_code == 0, bind.output
    assert "INFO: [[FIELD:name]] -> name" in bind.output
    assert "INFO: completion=50%" in bind.output

    status = runner.invoke(app, ["status", "--template-id", "order", "--store", str(store), "--json"])
    assert status.exit_code == 0, status.output
    assert _last_json_line(status.output) == {
        "template_id": "order",
        "completion": 50,
        "total": 2,
        "unmapped": ["{{items[0].sku}}"],
        "orphans": [],
    }

    _, _, data = _write_inputs(tmp_path)
    out = tmp_path / "out" / "order.html"
    render = runner.invoke(
        app,
        ["render", "--template-id", "order", "--data", str(data), "--out", str(out), "--store", str(store)],
    )
    assert render.exit_code == 0, render.output
    assert out.read_text(encoding="utf-8") == "<h1>Acme</h1><p>{{items[0].sku}}</p>"
    report = json.loads((tmp_path / "out" / "order.html.replace_log.json").read_text(encoding="utf-8"))
    assert report["summary"]["replaced_count"] == 1
    assert report["summary"]["unmapped_count"] == 1


def test_bind_creates_missing_binding_and_unmaps(tmp_path: Path) -> None:
    store = tmp_path / "store.json"
    _analyze(tmp_path, store)

    created = runner.invoke(
        app, ["bind", "--template-id", "order", "--token", "{{email}}", "--path", "name", "--store", str(store)]
    )
    unmapped = runner.invoke(app, ["bind", "--template-id", "order", "--token", "{{email}}", "--store", str(store)])

    assert created.exit_code == 0, created.output
    assert "INFO: {{email}} -> name" in created.output
    assert unmapped.exit_code == 0, unmapped.output
    assert "INFO: {{email}} -> (unmapped)" in unmapped.output


def test_suggest_lists_and_auto_applies(tmp_path: Path) -> None:
    store = tmp_path / "store.json"
    _analyze(tmp_path, store)

    listed = runner.invoke(app, ["suggest", "--template-id", "order", "--store", str(store)])
    applied = runner.invoke(app, ["suggest", "--template-id", "order", "--store", str(store), "--auto"])

    assert listed.exit_code == 0, listed.output
    assert '[[FIELD:name]]\tname\t1.00\tExact match on field path "name".' in listed.output
    assert applied.exit_code == 0, applied.output
    assert "INFO: auto-applied 2 exact match(es)" in applied.output
    assert "INFO: completion=100%" in applied.output


def test_suggest_apply_uses_floor(tmp_path: Path) -> None:
    store = tmp_path / "store.json"
    _analyze(tmp_path, store)

    result = runner.invoke(
        app, ["suggest", "--template-id", "order", "--store", str(store), "--apply", "--floor", "0.9"]
    )

    assert result.exit_code == 0, result.output
    assert "INFO: accepted 2 suggestion(s)" in result.output


def test_render_rejects_unknown_mode(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["render", "--template-id", "order", "--out", str(tmp_path / "x.html"), "--mode", "docx"]
    )

    assert result.exit_code == 1
    assert "ERROR: --mode must be one of: html, svg, pdf." in result.output


def test_status_for_unknown_template_reports_persistence_failure(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--template-id", "ghost", "--store", str(tmp_path / "store.json")])

    assert result.exit_code == 2
    assert "ERROR(persistence)" in result.output


def test_store_path_defaults_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = tmp_path / "env-store.json"
    monkeypatch.setenv("BINDER_STORE_PATH", str(store))
    template, _, _ = _write_inputs(tmp_path)

    result = runner.invoke(app, ["analyze", "--template", str(template), "--template-id", "order"])

    assert result.exit_code == 0, result.output
    assert store.exists()
    assert "INFO: template=order tokens=2 bindings=2" in result.output
