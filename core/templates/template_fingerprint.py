"""Template fingerprint generation that is insensitive to whitespace runs."""

from __future__ import annotations

import hashlib
import json
import re

from core.templates.models import TemplateSource

_SPACE_RE = re.compile(r"[ \t]+")
_FINGERPRINT_SOURCES = ("html_content", "svg_content", "css_content", "js_content", "pdf_content")


def compute_template_fingerprint(template: TemplateSource) -> str:
    """Compute a canonical SHA256 fingerprint over all template sources."""

    payload = {
        name: _normalize_whitespace(getattr(template, name) or "")
        for name in _FINGERPRINT_SOURCES
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _SPACE_RE.sub(" ", text)
    return text.strip()
