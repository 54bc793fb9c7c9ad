"""In-memory binding store backed by a persistence collaborator.

The store is the single writer of mapping state. ``set_selector`` is the one
path by which a binding becomes mapped or unmapped, and every successful
mutation schedules a debounced render refresh.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from core.bindings.models import Binding
from core.bindings.persistence import PersistenceClient
from core.render.refresh import RefreshScheduler
from core.templates.models import TemplateToken
from core.templates.token_extractor import canonical_key
from core.utils.errors import DuplicateBindingError, PersistenceFailure, UnknownBindingError
from core.utils.log_events import log_event

logger = logging.getLogger("binder.store")

T = TypeVar("T")
BindingListener = Callable[[Binding], Any]


def compute_bindings(
    template_id: str,
    tokens: list[TemplateToken],
    existing: list[Binding],
) -> list[Binding]:
    """Merge extracted tokens with existing bindings.

    Existing bindings are kept as-is, including orphans whose placeholder no
    longer appears in markup. Each token text without a binding gets a new
    unmapped binding with no id.
    """

    merged = list(existing)
    known = {binding.placeholder for binding in existing}
    for token in tokens:
        if token.raw in known:
            continue
        known.add(token.raw)
        merged.append(Binding(template_id=template_id, placeholder=token.raw))
    return merged


def completion_percentage(bindings: list[Binding]) -> int:
    if not bindings:
        return 0
    mapped = sum(1 for binding in bindings if binding.is_mapped)
    return math.floor(mapped * 100 / len(bindings) + 0.5)


class BindingStore:
    """Hold the token to field-path mapping for one template."""

    def __init__(
        self,
        template_id: str,
        client: PersistenceClient,
        *,
        refresh: RefreshScheduler | None = None,
        retries: int = 2,
    ) -> None:
        self._template_id = template_id
        self._client = client
        self._refresh = refresh
        self._retries = max(0, retries)
        self._bindings: dict[str, Binding] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[BindingListener] = []

    @property
    def template_id(self) -> str:
        return self._template_id

    def subscribe(self, listener: BindingListener) -> None:
        """Register a callback invoked with each binding after it changes."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: BindingListener) -> None:
        self._listeners = [item for item in self._listeners if item is not listener]

    async def load(self) -> list[Binding]:
        """Replace local state with the collaborator's bindings."""

        bindings = await self._call(
            "get_bindings",
            {"template_id": self._template_id},
            lambda: self._client.get_bindings(self._template_id),
        )
        self._bindings = {binding.id: binding for binding in bindings if binding.id is not None}
        log_event(logger, logging.INFO, "loaded", template_id=self._template_id, count=len(self._bindings))
        return self.list()

    def list(self) -> list[Binding]:
        return list(self._bindings.values())

    def get(self, binding_id: str) -> Binding | None:
        return self._bindings.get(binding_id)

    def find(self, token: str) -> Binding | None:
        """Resolve token text by exact placeholder, then by canonical key."""

        for binding in self._bindings.values():
            if binding.placeholder == token:
                return binding

        key = canonical_key(token)
        for binding in self._bindings.values():
            if canonical_key(binding.placeholder) == key:
                return binding
        return None

    def unmapped(self) -> list[Binding]:
        return [binding for binding in self._bindings.values() if not binding.is_mapped]

    def orphans(self, tokens: list[TemplateToken]) -> list[Binding]:
        """Bindings whose placeholder no longer appears among ``tokens``."""

        present = {token.raw for token in tokens}
        return [binding for binding in self._bindings.values() if binding.placeholder not in present]

    def completion(self) -> int:
        return completion_percentage(self.list())

    async def create(
        self,
        placeholder: str,
        selector: str | None = None,
        *,
        description: str | None = None,
    ) -> Binding:
        if any(binding.placeholder == placeholder for binding in self._bindings.values()):
            raise DuplicateBindingError(
                f"Binding already exists for placeholder: {placeholder}", placeholder=placeholder
            )

        draft = Binding(
            template_id=self._template_id,
            placeholder=placeholder,
            selector=_normalize_selector(selector),
            description=description,
        )
        created = await self._call(
            "create_binding",
            {"template_id": self._template_id, "placeholder": placeholder, "selector": draft.selector},
            lambda: self._client.create_binding(draft),
        )
        if created.id is None:
            raise PersistenceFailure(
                "Collaborator returned a binding without id",
                operation="create_binding",
                params={"placeholder": placeholder},
                retryable=False,
            )
        self._bindings[created.id] = created
        log_event(logger, logging.INFO, "created", binding_id=created.id, placeholder=placeholder)
        await self._notify(created)
        return created

    async def upsert(self, binding: Binding) -> Binding:
        """Create a binding for a new placeholder or re-point an existing one."""

        for binding_id, existing in self._bindings.items():
            if existing.placeholder != binding.placeholder:
                continue
            if _normalize_selector(binding.selector) == _normalize_selector(existing.selector):
                return existing
            return await self.set_selector(binding_id, binding.selector)

        return await self.create(binding.placeholder, binding.selector, description=binding.description)

    async def set_selector(self, binding_id: str, path: str | None) -> Binding:
        """Point a binding at a field path, or unmap it with an empty path.

        Calls for the same binding id are applied strictly one after another;
        local state changes only after the collaborator acknowledges.
        """

        if binding_id not in self._bindings:
            raise UnknownBindingError(f"Unknown binding: {binding_id}", binding_id=binding_id)

        selector = _normalize_selector(path)
        async with self._lock_for(binding_id):
            persisted = await self._call(
                "set_selector",
                {"binding_id": binding_id, "selector": selector},
                lambda: self._client.patch_binding(binding_id, selector),
            )
            current = self._bindings.get(binding_id)
            if current is None:
                raise UnknownBindingError(f"Binding deleted during update: {binding_id}", binding_id=binding_id)
            updated = current.model_copy(update={"selector": persisted.selector})
            self._bindings[binding_id] = updated

        log_event(
            logger,
            logging.INFO,
            "selector_set",
            binding_id=binding_id,
            placeholder=updated.placeholder,
            selector=updated.selector,
            completion=self.completion(),
        )
        await self._notify(updated)
        self._schedule_refresh()
        return updated

    async def delete(self, binding_id: str) -> bool:
        if binding_id not in self._bindings:
            return False

        async with self._lock_for(binding_id):
            await self._call(
                "delete_binding",
                {"binding_id": binding_id},
                lambda: self._client.delete_binding(binding_id),
            )
            removed = self._bindings.pop(binding_id, None)
        self._locks.pop(binding_id, None)

        log_event(logger, logging.INFO, "deleted", binding_id=binding_id)
        if removed is not None:
            self._schedule_refresh()
        return removed is not None

    async def delete_all(self) -> int:
        deleted = 0
        for binding_id in list(self._bindings):
            if await self.delete(binding_id):
                deleted += 1
        return deleted

    def _lock_for(self, binding_id: str) -> asyncio.Lock:
        lock = self._locks.get(binding_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[binding_id] = lock
        return lock

    def _schedule_refresh(self) -> None:
        if self._refresh is not None:
            self._refresh.schedule()

    async def _notify(self, binding: Binding) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(binding)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("binding listener failed")

    async def _call(
        self,
        operation: str,
        params: dict[str, Any],
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        return await call_with_retries(operation, params, factory, retries=self._retries)


def _normalize_selector(path: str | None) -> str | None:
    if path is None:
        return None
    stripped = path.strip()
    return stripped or None


async def call_with_retries(
    operation: str,
    params: dict[str, Any],
    factory: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
) -> T:
    """Await a collaborator call, retrying before raising PersistenceFailure."""

    attempts = max(0, retries) + 1
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await factory()
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            log_event(
                logger,
                logging.WARNING,
                "persistence_error",
                operation=operation,
                attempt=attempt,
                attempts=attempts,
                error=repr(exc),
                **params,
            )

    raise PersistenceFailure(
        f"{operation} failed after {attempts} attempt(s)",
        operation=operation,
        params=params,
    ) from last_error
