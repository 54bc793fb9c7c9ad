"""Editing session wiring extraction, matching, binding, rendering and the sandbox.

The session is what the surrounding application talks to. Recoverable
conditions (empty templates, bad schemas, persistence failures, unknown
clicks, missing render artifacts) become ``Notice`` records instead of
exceptions.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from collections.abc import Mapping
from typing import Any

from core.bindings.models import Binding, BindingSuggestion
from core.bindings.persistence import PersistenceClient
from core.bindings.store import BindingStore, call_with_retries, compute_bindings
from core.bridge.sandbox_bridge import SandboxBridge, TokenSelection
from core.matching.config_loader import load_match_config
from core.matching.engine import MatchEngine
from core.orchestrator.notices import Notice
from core.render.html_renderer import render_template
from core.render.models import RenderMode, RenderOutput
from core.render.refresh import RefreshScheduler
from core.schema.field_tree import filter_fields, flatten_schema
from core.schema.models import DataField
from core.templates.models import TemplateSource, TemplateToken
from core.templates.template_fingerprint import compute_template_fingerprint
from core.templates.token_extractor import extract_tokens, template_markup
from core.utils.errors import (
    ExtractionWarning,
    MessageValidationError,
    PersistenceFailure,
    RenderFallbackExhausted,
    SchemaError,
    UnresolvedClick,
)
from core.utils.log_events import log_event

logger = logging.getLogger("binder.session")

_DEFAULT_DEBOUNCE_MS = 150
_DEFAULT_PERSIST_RETRIES = 2

DEMO_TOKENS = (
    "{{name}}",
    "{{email}}",
    "{{phone}}",
    "{{address}}",
    "{{summary}}",
    "{{workExperience[0].company}}",
)


class BindingSession:
    """Binding workflow for one template."""

    def __init__(
        self,
        template_id: str,
        client: PersistenceClient,
        *,
        engine: MatchEngine | None = None,
        debounce_ms: int | None = None,
        retries: int | None = None,
    ) -> None:
        self.template_id = template_id
        self._client = client
        self._engine = engine or MatchEngine(load_match_config())
        self._retries = retries if retries is not None else _persist_retries()
        self._refresh = RefreshScheduler(
            self._refresh_preview,
            debounce_ms if debounce_ms is not None else _debounce_ms(),
        )
        self.store = BindingStore(template_id, client, refresh=self._refresh, retries=self._retries)
        self.bridge = SandboxBridge(
            self.store,
            on_select=self._select,
            on_unresolved=self._report,
            on_rejected=self._report,
        )
        self.store.subscribe(self._forward_mapping)

        self.template: TemplateSource | None = None
        self.tokens: list[TemplateToken] = []
        self.using_demo_tokens = False
        self.fields: list[DataField] = []
        self.data: dict[str, Any] = {}
        self.preview_mode: RenderMode = "html"
        self.preview: RenderOutput | None = None
        self.selection: TokenSelection | None = None
        self.notices: list[Notice] = []

        self._generation = 0
        self._fingerprint: str | None = None
        self._schema_key: str | None = None

    @property
    def generation(self) -> int:
        """Counter bumped whenever the template or schema changes."""
        return self._generation

    @property
    def engine(self) -> MatchEngine:
        return self._engine

    async def open(self) -> None:
        """Load template, bindings and schema; each may fail independently."""

        try:
            template = await self._fetch("get_template", self._client.get_template)
        except PersistenceFailure as exc:
            self._report_now(exc)
        else:
            try:
                await self.store.load()
            except PersistenceFailure as exc:
                # Without the existing bindings, new ones could duplicate them.
                self._report_now(exc)
                self._adopt(template)
                self.analyze_template(template_markup(template))
            else:
                await self.set_template(template)

        try:
            schema = await self._fetch("get_schema", lambda _: self._client.get_schema())
        except PersistenceFailure as exc:
            self._report_now(exc)
        else:
            self.set_schema(schema)

        log_event(
            logger,
            logging.INFO,
            "opened",
            template_id=self.template_id,
            tokens=len(self.tokens),
            bindings=len(self.store.list()),
            fields=len(self.fields),
            notices=len(self.notices),
        )

    async def close(self) -> None:
        await self._refresh.flush()

    def analyze_template(self, markup: str) -> list[TemplateToken]:
        """Extract tokens, falling back to demonstration tokens when none exist."""

        tokens = extract_tokens(markup)
        self.using_demo_tokens = not tokens
        if not tokens:
            message = "Template has no recognizable tokens; showing demonstration tokens"
            warnings.warn(message, ExtractionWarning, stacklevel=2)
            self.notices.append(Notice(kind="extraction_warning", message=message))
            tokens = extract_tokens(" ".join(DEMO_TOKENS))
        self.tokens = tokens
        return tokens

    async def set_template(self, template: TemplateSource) -> list[TemplateToken]:
        """Adopt new template sources and create bindings for new tokens."""

        self._adopt(template)
        tokens = self.analyze_template(template_markup(template))
        if not self.using_demo_tokens:
            await self.compute_bindings(tokens)
        return tokens

    async def compute_bindings(
        self,
        tokens: list[TemplateToken] | None = None,
        existing: list[Binding] | None = None,
    ) -> list[Binding]:
        """Persist an unmapped binding for every newly seen token text."""

        merged = compute_bindings(
            self.template_id,
            self.tokens if tokens is None else tokens,
            self.store.list() if existing is None else existing,
        )
        for binding in merged:
            if binding.id is not None or _has_exact(self.store.list(), binding.placeholder):
                continue
            try:
                await self.store.create(binding.placeholder)
            except PersistenceFailure as exc:
                self._report_now(exc)
        return self.store.list()

    def set_schema(self, schema: Mapping[str, Any]) -> list[DataField]:
        """Rebuild the field tree; a bad schema leaves no fields and a notice."""

        schema_key = _schema_key(schema)
        if schema_key != self._schema_key:
            self._generation += 1
            self._schema_key = schema_key

        try:
            self.fields = flatten_schema(schema)
        except SchemaError as exc:
            self.fields = []
            self._report_now(exc)
        return self.fields

    def set_data(self, data: Mapping[str, Any]) -> None:
        self.data = dict(data)

    def search_fields(self, query: str) -> list[DataField]:
        return filter_fields(self.fields, query)

    def completion(self) -> int:
        return self.store.completion()

    def orphans(self) -> list[Binding]:
        if self.using_demo_tokens:
            return []
        return self.store.orphans(self.tokens)

    def suggest(self) -> list[BindingSuggestion]:
        """Ranked suggestions for every unmapped binding at the current generation."""

        return self._engine.suggest_all(self.store.list(), self.fields, generation=self._generation)

    async def refresh_suggestions(self) -> list[BindingSuggestion]:
        """Re-fetch the schema, then suggest; results are dropped if inputs changed meanwhile."""

        generation = self._generation
        try:
            schema = await self._fetch("get_schema", lambda _: self._client.get_schema())
        except PersistenceFailure as exc:
            self._report_now(exc)
            return []

        if generation != self._generation:
            log_event(logger, logging.INFO, "suggestions_discarded", generation=generation)
            return []
        self.set_schema(schema)
        return self.suggest()

    async def auto_apply(self) -> int:
        """Apply exact path/name matches to unmapped bindings."""

        return await self._engine.auto_apply(self.store, self.fields, on_failure=self._report_now)

    async def set_selector(self, binding_id: str, path: str | None) -> Binding | None:
        """Map (or unmap) a binding; failures become retryable notices."""

        try:
            return await self.store.set_selector(binding_id, path)
        except PersistenceFailure as exc:
            self._report_now(exc)
            return None

    async def accept_suggestion(self, binding_id: str, field_path: str) -> Binding | None:
        return await self.set_selector(binding_id, field_path)

    async def accept_all_suggestions(
        self,
        suggestions: list[BindingSuggestion],
        confidence_floor: float | None = None,
    ) -> int:
        """Apply each suggestion's top candidate when it clears the floor.

        Suggestions from an older generation and bindings mapped in the
        meantime are skipped.
        """

        floor = self._engine.config.accept_floor if confidence_floor is None else confidence_floor
        applied = 0
        for suggestion in suggestions:
            if suggestion.generation != self._generation:
                log_event(
                    logger,
                    logging.INFO,
                    "stale_suggestion_skipped",
                    token=suggestion.token,
                    generation=suggestion.generation,
                    current=self._generation,
                )
                continue
            top = suggestion.top
            if top is None or top.confidence < floor or suggestion.binding_id is None:
                continue
            binding = self.store.get(suggestion.binding_id)
            if binding is None or binding.is_mapped:
                continue
            if await self.accept_suggestion(suggestion.binding_id, top.field_path) is not None:
                applied += 1
        return applied

    async def create_binding(self, token: str, selector: str | None = None) -> Binding | None:
        """Create a binding for a token, e.g. after an unresolved sandbox click."""

        try:
            binding = await self.store.create(token, selector)
        except PersistenceFailure as exc:
            self._report_now(exc)
            return None
        self.notices = [
            notice
            for notice in self.notices
            if not (notice.kind == "unresolved_click" and notice.params.get("token") == token)
        ]
        return binding

    async def delete_binding(self, binding_id: str) -> bool:
        try:
            return await self.store.delete(binding_id)
        except PersistenceFailure as exc:
            self._report_now(exc)
            return False

    def render_preview(self, mode: RenderMode | None = None, *, annotate: bool = True) -> RenderOutput | None:
        """Render the current template with live data; None when nothing can be shown."""

        requested = mode or self.preview_mode
        self.preview_mode = requested
        if self.template is None:
            self._report_now(
                RenderFallbackExhausted("No template loaded", mode=requested, attempted=[])
            )
            self.preview = None
            return None

        try:
            output = render_template(
                self.template, self.store.list(), self.data, requested, annotate_tokens=annotate
            )
        except RenderFallbackExhausted as exc:
            self._report_now(exc)
            self.preview = None
            return None

        self.preview = output
        return output

    async def handle_sandbox_message(self, payload: Any, source: object) -> TokenSelection | None:
        return await self.bridge.receive(payload, source)

    async def retry(self, notice: Notice) -> bool:
        """Re-run the operation preserved on a retryable persistence notice."""

        if notice.kind != "persistence_failure" or not notice.retryable:
            return False

        params = notice.params
        operation = params.get("operation")
        if notice in self.notices:
            self.notices.remove(notice)

        if operation == "set_selector":
            return await self.set_selector(params["binding_id"], params.get("selector")) is not None
        if operation == "create_binding":
            return await self.create_binding(params["placeholder"], params.get("selector")) is not None
        if operation == "delete_binding":
            return await self.delete_binding(params["binding_id"])
        if operation in {"get_template", "get_bindings", "get_schema"}:
            await self.open()
            return not any(item.kind == "persistence_failure" for item in self.notices)

        self.notices.append(notice)
        return False

    def pop_notices(self) -> list[Notice]:
        notices, self.notices = self.notices, []
        return notices

    async def _fetch(self, operation: str, call: Any) -> Any:
        return await call_with_retries(
            operation,
            {"template_id": self.template_id},
            lambda: call(self.template_id),
            retries=self._retries,
        )

    def _adopt(self, template: TemplateSource) -> None:
        fingerprint = compute_template_fingerprint(template)
        if fingerprint != self._fingerprint:
            self._generation += 1
            self._fingerprint = fingerprint
        self.template = template

    async def _refresh_preview(self) -> None:
        output = self.render_preview(self.preview_mode)
        if output is not None and output.rendered_mode == "html":
            await self.bridge.refresh_preview(output.content)

    async def _forward_mapping(self, binding: Binding) -> None:
        await self.bridge.update_token_mapping(binding.placeholder, binding.is_mapped)

    def _select(self, selection: TokenSelection) -> None:
        self.selection = selection

    def _report(self, error: UnresolvedClick | MessageValidationError) -> None:
        self._report_now(error)

    def _report_now(
        self,
        error: PersistenceFailure
        | UnresolvedClick
        | RenderFallbackExhausted
        | SchemaError
        | MessageValidationError,
    ) -> None:
        notice = Notice.from_error(error)
        self.notices.append(notice)
        log_event(logger, logging.WARNING, "notice", kind=notice.kind, message=notice.message)


def _has_exact(bindings: list[Binding], placeholder: str) -> bool:
    return any(binding.placeholder == placeholder for binding in bindings)


def _schema_key(schema: Mapping[str, Any]) -> str:
    try:
        return json.dumps(schema, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return f"id:{id(schema)}"


def _debounce_ms() -> int:
    raw = os.getenv("BINDER_REFRESH_DEBOUNCE_MS")
    if raw is None:
        return _DEFAULT_DEBOUNCE_MS
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_DEBOUNCE_MS
    return parsed if parsed >= 0 else _DEFAULT_DEBOUNCE_MS


def _persist_retries() -> int:
    raw = os.getenv("BINDER_PERSIST_RETRIES")
    if raw is None:
        return _DEFAULT_PERSIST_RETRIES
    try:
        parsed = int(raw)
    except ValueError:
        return _DEFAULT_PERSIST_RETRIES
    return parsed if parsed >= 0 else _DEFAULT_PERSIST_RETRIES
