"""Typed messages exchanged between the editor and the rendering sandbox.

Wire shapes (protocol version 1):
- sandbox -> editor: ``{"type": "TOKEN_CLICKED", "token": str, "rect": {x, y, width, height}}``
- editor -> sandbox: ``{"type": "UPDATE_TOKEN_MAPPING", "token": str, "isMapped": bool}``
- editor -> sandbox: ``{"type": "HIGHLIGHT_TOKEN", "token": str | null}``
- editor -> sandbox: ``{"type": "PREVIEW_REFRESH", "html": str}``

Messages may carry ``"version"``; a missing version means the current one.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from core.utils.errors import MessageValidationError

PROTOCOL_VERSION = 1

_MESSAGE_CONFIG = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel, frozen=True)


class TokenRect(BaseModel):
    model_config = _MESSAGE_CONFIG

    x: float
    y: float
    width: float
    height: float


class TokenClicked(BaseModel):
    """A user clicked a recognized token wrapper inside the sandbox."""

    model_config = _MESSAGE_CONFIG

    type: Literal["TOKEN_CLICKED"] = "TOKEN_CLICKED"
    version: int = PROTOCOL_VERSION
    token: str
    rect: TokenRect


class UpdateTokenMapping(BaseModel):
    """Reflect the mapped state of every occurrence of a token."""

    model_config = _MESSAGE_CONFIG

    type: Literal["UPDATE_TOKEN_MAPPING"] = "UPDATE_TOKEN_MAPPING"
    version: int = PROTOCOL_VERSION
    token: str
    is_mapped: bool


class HighlightToken(BaseModel):
    """Highlight one token's occurrences; None clears the highlight."""

    model_config = _MESSAGE_CONFIG

    type: Literal["HIGHLIGHT_TOKEN"] = "HIGHLIGHT_TOKEN"
    version: int = PROTOCOL_VERSION
    token: str | None = None


class PreviewRefresh(BaseModel):
    """Replace the sandbox document with freshly merged markup."""

    model_config = _MESSAGE_CONFIG

    type: Literal["PREVIEW_REFRESH"] = "PREVIEW_REFRESH"
    version: int = PROTOCOL_VERSION
    html: str


EditorMessage = UpdateTokenMapping | HighlightToken | PreviewRefresh
BridgeMessage = Annotated[
    TokenClicked | UpdateTokenMapping | HighlightToken | PreviewRefresh,
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(BridgeMessage)
MESSAGE_TYPES = ("TOKEN_CLICKED", "UPDATE_TOKEN_MAPPING", "HIGHLIGHT_TOKEN", "PREVIEW_REFRESH")


def parse_message(payload: Any) -> TokenClicked | UpdateTokenMapping | HighlightToken | PreviewRefresh:
    """Validate a raw wire payload; unknown types and bad shapes are rejected."""

    if not isinstance(payload, Mapping):
        raise MessageValidationError("Bridge message must be an object")

    message_type = payload.get("type")
    if message_type not in MESSAGE_TYPES:
        raise MessageValidationError(
            f"Unknown bridge message type: {message_type!r}",
            message_type=message_type if isinstance(message_type, str) else None,
        )

    version = payload.get("version", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise MessageValidationError(
            f"Unsupported bridge protocol version: {version!r}", message_type=message_type
        )

    try:
        return _MESSAGE_ADAPTER.validate_python(dict(payload))
    except ValidationError as exc:
        raise MessageValidationError(
            f"Invalid {message_type} payload", message_type=message_type
        ) from exc


def dump_message(message: BaseModel) -> dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True)
