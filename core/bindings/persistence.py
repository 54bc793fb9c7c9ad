"""Persistence collaborators for templates, bindings and the data schema."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Protocol

import httpx

from core.bindings.models import Binding
from core.templates.models import TemplateSource

_STORE_VERSION = 1


class PersistenceClient(Protocol):
    """Key-value CRUD contract consumed by the binding engine."""

    async def get_template(self, template_id: str) -> TemplateSource:
        """Fetch template sources by id."""

    async def get_bindings(self, template_id: str) -> list[Binding]:
        """Fetch all bindings owned by a template."""

    async def create_binding(self, binding: Binding) -> Binding:
        """Persist a new binding and return it with an assigned id."""

    async def patch_binding(self, binding_id: str, selector: str | None) -> Binding:
        """Update the selector of one binding."""

    async def delete_binding(self, binding_id: str) -> bool:
        """Delete one binding; False when it did not exist."""

    async def get_schema(self) -> dict[str, Any]:
        """Fetch the JSON-schema-like data description."""


class JsonFilePersistence:
    """Persist templates, bindings and schema in one local JSON file."""

    def __init__(self, store_path: Path) -> None:
        self._store_path = store_path

    async def get_template(self, template_id: str) -> TemplateSource:
        data = self._read_data()
        raw = data["templates"].get(template_id)
        if raw is None:
            raise KeyError(f"Template not found: {template_id}")
        return TemplateSource.model_validate(raw)

    async def put_template(self, template: TemplateSource) -> None:
        data = self._read_data()
        data["templates"][template.id] = template.model_dump(mode="json", by_alias=True)
        self._write_data(data)

    async def get_bindings(self, template_id: str) -> list[Binding]:
        data = self._read_data()
        bindings = [Binding.model_validate(item) for item in data["bindings"].values()]
        return [item for item in bindings if item.template_id == template_id]

    async def create_binding(self, binding: Binding) -> Binding:
        data = self._read_data()
        for item in data["bindings"].values():
            if item["templateId"] == binding.template_id and item["placeholder"] == binding.placeholder:
                raise ValueError(f"Binding already exists for placeholder: {binding.placeholder}")

        created = binding.model_copy(update={"id": uuid.uuid4().hex})
        data["bindings"][created.id] = created.model_dump(mode="json", by_alias=True)
        self._write_data(data)
        return created

    async def patch_binding(self, binding_id: str, selector: str | None) -> Binding:
        data = self._read_data()
        raw = data["bindings"].get(binding_id)
        if raw is None:
            raise KeyError(f"Binding not found: {binding_id}")

        updated = Binding.model_validate(raw).model_copy(update={"selector": selector})
        data["bindings"][binding_id] = updated.model_dump(mode="json", by_alias=True)
        self._write_data(data)
        return updated

    async def delete_binding(self, binding_id: str) -> bool:
        data = self._read_data()
        if binding_id not in data["bindings"]:
            return False
        del data["bindings"][binding_id]
        self._write_data(data)
        return True

    async def get_schema(self) -> dict[str, Any]:
        schema = self._read_data()["schema"]
        if schema is None:
            raise KeyError("No schema stored")
        return schema

    async def put_schema(self, schema: dict[str, Any]) -> None:
        data = self._read_data()
        data["schema"] = schema
        self._write_data(data)

    def _read_data(self) -> dict[str, Any]:
        if not self._store_path.exists():
            return {"version": _STORE_VERSION, "templates": {}, "bindings": {}, "schema": None}

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid binding store JSON: {self._store_path}") from exc

        return {
            "version": int(raw.get("version", _STORE_VERSION)),
            "templates": dict(raw.get("templates", {})),
            "bindings": dict(raw.get("bindings", {})),
            "schema": raw.get("schema"),
        }

    def _write_data(self, data: dict[str, Any]) -> None:
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._store_path.with_suffix(f"{self._store_path.suffix}.tmp")
        temp_path.write_text(
            json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
            encoding="utf-8",
        )
        temp_path.replace(self._store_path)


class HttpPersistence:
    """REST client for a remote persistence service."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_template(self, template_id: str) -> TemplateSource:
        payload = await self._request("GET", f"/templates/{template_id}")
        return TemplateSource.model_validate(payload)

    async def get_bindings(self, template_id: str) -> list[Binding]:
        payload = await self._request("GET", f"/templates/{template_id}/bindings")
        return [Binding.model_validate(item) for item in payload]

    async def create_binding(self, binding: Binding) -> Binding:
        payload = await self._request(
            "POST",
            f"/templates/{binding.template_id}/bindings",
            json=binding.model_dump(mode="json", by_alias=True, exclude={"id"}),
        )
        return Binding.model_validate(payload)

    async def patch_binding(self, binding_id: str, selector: str | None) -> Binding:
        payload = await self._request("PATCH", f"/bindings/{binding_id}", json={"selector": selector})
        return Binding.model_validate(payload)

    async def delete_binding(self, binding_id: str) -> bool:
        response = await self._client.request("DELETE", f"{self._base_url}/bindings/{binding_id}")
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    async def get_schema(self) -> dict[str, Any]:
        payload = await self._request("GET", "/schema")
        if not isinstance(payload, dict):
            raise ValueError("Schema response must be a JSON object")
        return payload

    async def _request(self, method: str, path: str, *, json: Any | None = None) -> Any:
        response = await self._client.request(method, f"{self._base_url}{path}", json=json)
        response.raise_for_status()
        return response.json()
