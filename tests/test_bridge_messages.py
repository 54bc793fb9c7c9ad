from __future__ import annotations

import pytest

from core.bridge.messages import (
    HighlightToken,
    PreviewRefresh,
    TokenClicked,
    UpdateTokenMapping,
    dump_message,
    parse_message,
)
from core.utils.errors import MessageValidationError

RECT = {"x": 10, "y": 20.5, "width": 100, "height": 18}


def test_parse_token_clicked() -> None:
    message = parse_message({"type": "TOKEN_CLICKED", "token": "{{name}}", "rect": RECT})

    assert isinstance(message, TokenClicked)
    assert message.token == "{{name}}"
    assert message.rect.y == 20.5
    assert message.version == 1


def test_parse_editor_messages() -> None:
    mapping = parse_message({"type": "UPDATE_TOKEN_MAPPING", "token": "{{a}}", "isMapped": True, "version": 1})
    refresh = parse_message({"type": "PREVIEW_REFRESH", "html": "<p></p>"})

    assert isinstance(mapping, UpdateTokenMapping)
    assert mapping.is_mapped is True
    assert isinstance(refresh, PreviewRefresh)


@pytest.mark.parametrize("message_type", ["UNKNOWN", "token_clicked", None, 5])
def test_unknown_types_are_rejected(message_type: object) -> None:
    with pytest.raises(MessageValidationError, match="Unknown bridge message type"):
        parse_message({"type": message_type, "token": "{{a}}", "rect": RECT})


def test_unsupported_version_is_rejected() -> None:
    with pytest.raises(MessageValidationError) as exc_info:
        parse_message({"type": "TOKEN_CLICKED", "version": 2, "token": "{{a}}", "rect": RECT})

    assert exc_info.value.message_type == "TOKEN_CLICKED"


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "TOKEN_CLICKED", "token": "{{a}}"},
        {"type": "TOKEN_CLICKED", "token": "{{a}}", "rect": {"x": "left"}},
        {"type": "UPDATE_TOKEN_MAPPING", "token": "{{a}}"},
    ],
)
def test_invalid_payload_shapes_are_rejected(payload: dict[str, object]) -> None:
    with pytest.raises(MessageValidationError, match="Invalid"):
        parse_message(payload)


def test_non_mapping_payload_is_rejected() -> None:
    with pytest.raises(MessageValidationError):
        parse_message('{"type": "TOKEN_CLICKED"}')


def test_dump_uses_wire_field_names() -> None:
    assert dump_message(UpdateTokenMapping(token="{{a}}", is_mapped=True)) == {
        "type": "UPDATE_TOKEN_MAPPING",
        "version": 1,
        "token": "{{a}}",
        "isMapped": True,
    }
    assert dump_message(HighlightToken(token=None)) == {"type": "HIGHLIGHT_TOKEN", "version": 1, "token": None}
