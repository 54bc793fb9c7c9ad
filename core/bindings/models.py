"""Binding and suggestion models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(
    extra="ignore",
    populate_by_name=True,
    alias_generator=to_camel,
    coerce_numbers_to_str=True,
)


class Binding(BaseModel):
    """Persisted mapping from a token's literal text to a data field path.

    ``id`` is None until the persistence collaborator assigns one.
    """

    model_config = _WIRE_CONFIG

    id: str | None = None
    template_id: str
    placeholder: str
    selector: str | None = None
    description: str | None = None

    @property
    def is_mapped(self) -> bool:
        return bool(self.selector and self.selector.strip())


class SuggestionItem(BaseModel):
    """One ranked candidate field for a token."""

    model_config = _WIRE_CONFIG

    field_path: str
    field_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class BindingSuggestion(BaseModel):
    """Ephemeral ranked suggestions for one unmapped binding."""

    model_config = _WIRE_CONFIG

    binding_id: str | None
    token: str
    suggestions: list[SuggestionItem] = Field(default_factory=list)
    generation: int = 0

    @property
    def top(self) -> SuggestionItem | None:
        return self.suggestions[0] if self.suggestions else None
