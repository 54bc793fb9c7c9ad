"""FastAPI wrapper for the template binding engine.

Endpoints are stateless: each request carries the template, bindings, schema
and data it needs, so the API can front any persistence collaborator.
"""

from __future__ import annotations

import functools
import logging
import time
import uuid
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.bindings.models import Binding
from core.bindings.store import completion_percentage, compute_bindings
from core.matching.config_loader import load_match_config
from core.matching.engine import MatchEngine
from core.render.html_renderer import render_template
from core.render.models import RenderMode
from core.schema.field_tree import filter_fields, flatten_schema
from core.schema.models import DataField
from core.templates.models import TemplateSource, TemplateToken
from core.templates.template_fingerprint import compute_template_fingerprint
from core.templates.token_extractor import (
    analyze_token_context,
    count_placeholders,
    extract_tokens,
    template_markup,
)
from core.utils.errors import RenderFallbackExhausted, SchemaError
from core.utils.log_events import log_event

app = FastAPI(title="template-binder API", version="0.1.0")
logger = logging.getLogger("binder.api")

_REQUEST_ID_HEADER = "X-Binder-Request-Id"


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    markup: str | None = None
    template: TemplateSource | None = None
    include_context: bool = False


class FieldsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    data_schema: dict[str, Any] = Field(alias="schema")
    query: str | None = None


class SuggestRequest(BaseModel):
    """Suggest for the given bindings plus any new tokens in ``template``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    data_schema: dict[str, Any] = Field(alias="schema")
    template: TemplateSource | None = None
    bindings: list[Binding] = Field(default_factory=list)


class RenderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template: TemplateSource
    bindings: list[Binding] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)
    mode: RenderMode = "html"
    annotate: bool = False


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        logger.exception("unhandled error")
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            path=request.url.path,
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(_REQUEST_ID_HEADER, request_id)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_from_request(request)
    _log_event(logging.INFO, "error", request_id, error_code="INVALID_REQUEST", status_code=422)
    return _error_response(
        status_code=422,
        error_code="INVALID_REQUEST",
        message="request body failed validation",
        request_id=request_id,
        detail={"errors": [_error_summary(error) for error in exc.errors()]},
    )


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.post("/v1/analyze")
async def analyze_v1(request: Request, body: AnalyzeRequest) -> JSONResponse:
    """Extract tokens from inline markup or a full template."""

    request_id = _request_id_from_request(request)
    started = time.perf_counter()
    if body.template is None and body.markup is None:
        return _error_response(
            status_code=400,
            error_code="MISSING_INPUT",
            message="provide markup or template",
            request_id=request_id,
        )

    markup = template_markup(body.template) if body.template is not None else body.markup or ""
    tokens = extract_tokens(markup)
    payload: dict[str, Any] = {"tokens": [_token_payload(token, markup, body.include_context) for token in tokens]}
    if body.template is not None:
        payload["counts"] = asdict(count_placeholders(body.template))
        payload["fingerprint"] = compute_template_fingerprint(body.template)
    if not tokens:
        payload["warnings"] = ["no tokens found"]

    _log_event(
        logging.INFO,
        "analyzed",
        request_id,
        token_count=len(tokens),
        elapsed_ms=_elapsed_ms(started),
    )
    return _json_response(payload, request_id)


@app.post("/v1/fields")
async def fields_v1(request: Request, body: FieldsRequest) -> JSONResponse:
    """Flatten a data schema into its field tree."""

    request_id = _request_id_from_request(request)
    try:
        tree = flatten_schema(body.data_schema)
    except SchemaError as exc:
        return _schema_error(exc, request_id)

    if body.query:
        tree = filter_fields(tree, body.query)
    return _json_response({"fields": [_field_payload(field) for field in tree]}, request_id)


@app.post("/v1/suggest")
async def suggest_v1(request: Request, body: SuggestRequest) -> JSONResponse:
    """Rank field suggestions for every unmapped binding."""

    request_id = _request_id_from_request(request)
    started = time.perf_counter()
    try:
        tree = flatten_schema(body.data_schema)
    except SchemaError as exc:
        return _schema_error(exc, request_id)

    bindings = list(body.bindings)
    if body.template is not None:
        bindings = compute_bindings(body.template.id, extract_tokens(template_markup(body.template)), bindings)

    suggestions = _engine().suggest_all(bindings, tree)
    payload = {
        "suggestions": [item.model_dump(mode="json", by_alias=True) for item in suggestions],
        "bindings": [binding.model_dump(mode="json", by_alias=True) for binding in bindings],
        "completion": completion_percentage(bindings),
    }
    _log_event(
        logging.INFO,
        "suggested",
        request_id,
        binding_count=len(bindings),
        suggestion_count=len(suggestions),
        elapsed_ms=_elapsed_ms(started),
    )
    return _json_response(payload, request_id)


@app.post("/v1/render")
async def render_v1(request: Request, body: RenderRequest) -> JSONResponse:
    """Merge data into the template for the requested presentation mode."""

    request_id = _request_id_from_request(request)
    started = time.perf_counter()
    try:
        output = render_template(
            body.template,
            body.bindings,
            body.data,
            body.mode,
            annotate_tokens=body.annotate,
        )
    except RenderFallbackExhausted as exc:
        _log_event(
            logging.WARNING,
            "error",
            request_id,
            error_code="RENDER_FALLBACK_EXHAUSTED",
            status_code=422,
            mode=exc.mode,
        )
        return _error_response(
            status_code=422,
            error_code="RENDER_FALLBACK_EXHAUSTED",
            message=str(exc),
            request_id=request_id,
            detail={"mode": exc.mode, "attempted": exc.attempted},
        )

    summary = output.replace_report.summary
    _log_event(
        logging.INFO,
        "rendered",
        request_id,
        requested_mode=output.requested_mode,
        rendered_mode=output.rendered_mode,
        replaced_count=summary.replaced_count,
        missing_count=summary.missing_count,
        unmapped_count=summary.unmapped_count,
        elapsed_ms=_elapsed_ms(started),
    )
    return _json_response(output.model_dump(mode="json"), request_id)


@functools.lru_cache(maxsize=1)
def _engine() -> MatchEngine:
    return MatchEngine(load_match_config())


def _schema_error(error: SchemaError, request_id: str) -> JSONResponse:
    _log_event(logging.INFO, "error", request_id, error_code="SCHEMA_ERROR", status_code=422)
    return _error_response(
        status_code=422,
        error_code="SCHEMA_ERROR",
        message=str(error),
        request_id=request_id,
        detail={"path": error.path},
    )


def _token_payload(token: TemplateToken, markup: str, include_context: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": token.id,
        "raw": token.raw,
        "key": token.key,
        "kind": token.kind.value,
        "position": asdict(token.position),
    }
    if include_context:
        payload["context"] = asdict(analyze_token_context(token.raw, markup))
    return payload


def _field_payload(field: DataField) -> dict[str, Any]:
    payload: dict[str, Any] = {"path": field.path, "name": field.name, "type": field.type.value}
    if field.description:
        payload["description"] = field.description
    if field.children:
        payload["children"] = [_field_payload(child) for child in field.children]
    return payload


def _error_summary(error: dict[str, Any]) -> dict[str, Any]:
    return {
        "loc": [str(part) for part in error.get("loc", ())],
        "msg": str(error.get("msg", "")),
        "type": str(error.get("type", "")),
    }


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    generated = uuid.uuid4().hex
    request.state.request_id = generated
    return generated


def _json_response(payload: dict[str, Any], request_id: str) -> JSONResponse:
    return JSONResponse(status_code=200, headers={_REQUEST_ID_HEADER: request_id}, content=payload)


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={_REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    log_event(logger, level, event, request_id=request_id, **fields)
