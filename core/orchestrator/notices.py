"""Operator-facing notices for recoverable conditions."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.utils.errors import (
    MessageValidationError,
    PersistenceFailure,
    RenderFallbackExhausted,
    SchemaError,
    UnresolvedClick,
)

NoticeKind = Literal[
    "extraction_warning",
    "schema_error",
    "persistence_failure",
    "unresolved_click",
    "render_fallback_exhausted",
    "message_rejected",
]


class Notice(BaseModel):
    """A recoverable condition surfaced to the operator.

    ``params`` preserves what is needed to act on the notice, e.g. the
    original operation and arguments of a failed persistence call.
    """

    model_config = ConfigDict(extra="forbid")

    kind: NoticeKind
    message: str
    retryable: bool = False
    params: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(
        cls,
        error: PersistenceFailure
        | UnresolvedClick
        | RenderFallbackExhausted
        | SchemaError
        | MessageValidationError,
    ) -> Notice:
        if isinstance(error, PersistenceFailure):
            return cls(
                kind="persistence_failure",
                message=f"Could not save changes: {error}. Retry to try again.",
                retryable=error.retryable,
                params={"operation": error.operation, **error.params},
            )
        if isinstance(error, UnresolvedClick):
            return cls(
                kind="unresolved_click",
                message=f"No binding exists for {error.token}. Create one to map it.",
                params={"token": error.token},
            )
        if isinstance(error, RenderFallbackExhausted):
            return cls(
                kind="render_fallback_exhausted",
                message=f"Nothing to preview for {error.mode}: no artifact available.",
                params={"mode": error.mode, "attempted": error.attempted},
            )
        if isinstance(error, SchemaError):
            return cls(
                kind="schema_error",
                message=f"No fields available: {error}",
                params={"path": error.path},
            )
        return cls(
            kind="message_rejected",
            message=str(error),
            params={"message_type": error.message_type},
        )
