"""CLI I/O helpers for reading inputs and writing outputs atomically."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

from core.render.models import RenderOutput
from core.templates.models import TemplateSource

_SOURCE_SUFFIXES = {
    ".html": "htmlContent",
    ".htm": "htmlContent",
    ".svg": "svgContent",
    ".css": "cssContent",
    ".js": "jsContent",
    ".pdf": "pdfContent",
}


def load_json_object(path: Path, *, label: str) -> dict[str, Any]:
    """Read a JSON file that must hold an object."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid {label} JSON: {path}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"{label.capitalize()} JSON must be an object: {path}")
    return raw


def load_template_file(path: Path, *, template_id: str | None = None) -> TemplateSource:
    """Load template sources from a JSON descriptor or a single markup file.

    A ``.json`` file holds the camelCase template object. Any other supported
    suffix becomes the matching content slot of a new template.
    """

    if path.suffix.lower() == ".json":
        payload = load_json_object(path, label="template")
        if template_id is not None:
            payload["id"] = template_id
        payload.setdefault("id", path.stem)
        payload.setdefault("name", path.stem)
        return TemplateSource.model_validate(payload)

    slot = _SOURCE_SUFFIXES.get(path.suffix.lower())
    if slot is None:
        raise ValueError(f"Unsupported template file type: {path.suffix or path.name}")
    return TemplateSource.model_validate(
        {
            "id": template_id or path.stem,
            "name": path.stem,
            slot: path.read_text(encoding="utf-8"),
        }
    )


def render_output_paths(out: Path) -> tuple[Path, Path]:
    """Content path and replace-log path for one render."""

    return out, out.with_name(f"{out.name}.replace_log.json")


def write_render_output_atomic(out: Path, output: RenderOutput) -> tuple[Path, Path]:
    """Write merged content and its replace report side by side."""

    content_path, log_path = render_output_paths(out)
    content_path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_text(content_path, output.content)
    _atomic_write_json(log_path, output.replace_report.model_dump(mode="json"))
    return content_path, log_path


def _atomic_write_json(path: Path, payload: Any) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)


def _atomic_write_text(path: Path, content: str) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        tmp.write(content)

    try:
        tmp_path.replace(path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
