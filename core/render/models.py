"""Render pipeline report models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RenderMode = Literal["html", "svg", "pdf"]


class ReplaceLogEntry(BaseModel):
    """Outcome of substituting one binding's placeholder."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["replaced", "missing", "unmapped"]
    placeholder: str
    selector: str | None = None
    occurrences: int = 0
    new_text: str | None = None


class ReplaceSummary(BaseModel):
    """Aggregate replacement summary for observability."""

    model_config = ConfigDict(extra="forbid")

    total_bindings: int
    replaced_count: int
    missing_count: int
    unmapped_count: int


class ReplaceReport(BaseModel):
    """Full replacement report."""

    model_config = ConfigDict(extra="forbid")

    entries: list[ReplaceLogEntry] = Field(default_factory=list)
    summary: ReplaceSummary


class RenderOutput(BaseModel):
    """Merged template output for one presentation mode."""

    model_config = ConfigDict(extra="forbid")

    requested_mode: RenderMode
    rendered_mode: RenderMode
    fell_back: bool
    content: str
    replace_report: ReplaceReport
