"""Message bridge between the editor and one isolated rendering sandbox.

The bridge only reads binding state. A click resolves to a binding and is
handed to the editor through ``on_select``; mapping changes flow back to the
sandbox as ``UPDATE_TOKEN_MAPPING`` messages. Messages from any source other
than the attached sandbox are dropped before parsing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from core.bindings.models import Binding
from core.bindings.store import BindingStore
from core.bridge.messages import (
    EditorMessage,
    HighlightToken,
    PreviewRefresh,
    TokenClicked,
    TokenRect,
    UpdateTokenMapping,
    dump_message,
    parse_message,
)
from core.utils.errors import MessageValidationError, UnresolvedClick
from core.utils.log_events import log_event

logger = logging.getLogger("binder.bridge")


class SandboxChannel(Protocol):
    """Transport endpoint of a sandbox instance (frame, window, socket)."""

    async def post_message(self, payload: dict[str, Any]) -> None:
        """Deliver one serialized message to the sandbox."""


@dataclass(frozen=True)
class TokenSelection:
    """A resolved sandbox click."""

    token: str
    rect: TokenRect
    binding: Binding | None


SelectHandler = Callable[[TokenSelection], Any]
UnresolvedHandler = Callable[[UnresolvedClick], Any]
RejectedHandler = Callable[[MessageValidationError], Any]


class SandboxBridge:
    def __init__(
        self,
        store: BindingStore,
        *,
        on_select: SelectHandler | None = None,
        on_unresolved: UnresolvedHandler | None = None,
        on_rejected: RejectedHandler | None = None,
    ) -> None:
        self._store = store
        self._channel: SandboxChannel | None = None
        self._on_select = on_select
        self._on_unresolved = on_unresolved
        self._on_rejected = on_rejected

    @property
    def attached(self) -> bool:
        return self._channel is not None

    def attach(self, channel: SandboxChannel) -> None:
        """Track ``channel`` as the only accepted message source."""

        self._channel = channel
        log_event(logger, logging.INFO, "attached", channel=type(channel).__name__)

    def detach(self) -> None:
        self._channel = None

    def is_tracked(self, source: object) -> bool:
        return self._channel is not None and source is self._channel

    async def receive(self, payload: Any, source: object) -> TokenSelection | None:
        """Handle one inbound message; bad input and failing handlers never raise."""

        if not self.is_tracked(source):
            log_event(logger, logging.DEBUG, "ignored_foreign_source", source=type(source).__name__)
            return None

        try:
            message = parse_message(payload)
            if not isinstance(message, TokenClicked):
                raise MessageValidationError(
                    f"{message.type} is not accepted from the sandbox", message_type=message.type
                )
        except MessageValidationError as exc:
            log_event(logger, logging.WARNING, "rejected", reason=str(exc), message_type=exc.message_type)
            await _call(self._on_rejected, exc)
            return None

        binding = self._store.find(message.token)
        selection = TokenSelection(token=message.token, rect=message.rect, binding=binding)
        if binding is None:
            log_event(logger, logging.INFO, "unresolved_click", token=message.token)
            await _call(
                self._on_unresolved,
                UnresolvedClick(f"No binding for token: {message.token}", token=message.token),
            )
            return selection

        log_event(logger, logging.INFO, "token_selected", token=message.token, binding_id=binding.id)
        await _call(self._on_select, selection)
        return selection

    async def send(self, message: EditorMessage) -> bool:
        """Post a message to the attached sandbox; False when not delivered."""

        channel = self._channel
        if channel is None:
            return False
        try:
            await channel.post_message(dump_message(message))
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.WARNING, "send_failed", message_type=message.type, error=repr(exc))
            return False
        return True

    async def update_token_mapping(self, token: str, is_mapped: bool) -> bool:
        return await self.send(UpdateTokenMapping(token=token, is_mapped=is_mapped))

    async def sync_mappings(self, bindings: list[Binding] | None = None) -> int:
        """Push the mapped state of every binding; returns messages delivered."""

        delivered = 0
        for binding in bindings if bindings is not None else self._store.list():
            if await self.update_token_mapping(binding.placeholder, binding.is_mapped):
                delivered += 1
        return delivered

    async def highlight(self, token: str | None) -> bool:
        return await self.send(HighlightToken(token=token))

    async def refresh_preview(self, html: str) -> bool:
        return await self.send(PreviewRefresh(html=html))


async def _call(handler: Callable[[Any], Any] | None, argument: Any) -> None:
    if handler is None:
        return
    try:
        result = handler(argument)
        if asyncio.iscoroutine(result):
            await result
    except Exception:  # noqa: BLE001
        logger.exception("bridge handler failed")
