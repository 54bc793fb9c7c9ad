"""Ranked field-path suggestions for unmapped tokens.

Scoring stages, first hit wins the primary slot:
1. canonical token text equals a field path
2. canonical token text equals a field name (case-insensitive)
3. token contains the path or the path contains the token (case-insensitive)

Every other field gets a composite score from type preference, name
similarity and path similarity; those above the floor fill the remaining
slots in descending order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Literal

from core.bindings.models import Binding, BindingSuggestion, SuggestionItem
from core.bindings.store import BindingStore
from core.matching.models import MatchConfig
from core.matching.similarity import SimilarityFn, positional_similarity
from core.schema.field_tree import iter_fields
from core.schema.models import DataField
from core.templates.token_extractor import canonical_key
from core.utils.errors import PersistenceFailure
from core.utils.log_events import log_event

logger = logging.getLogger("binder.match")

MatchKind = Literal["exact_path", "exact_name", "substring", "composite"]
FailureHandler = Callable[[PersistenceFailure], None]


class MatchEngine:
    """Deterministic suggestion ranking over a data-field tree."""

    def __init__(
        self,
        config: MatchConfig | None = None,
        similarity: SimilarityFn = positional_similarity,
    ) -> None:
        self.config = config or MatchConfig()
        self._similarity = similarity

    def suggest(self, token: str, tree: list[DataField]) -> list[SuggestionItem]:
        """Rank candidate fields for one token, best first."""

        key = canonical_key(token)
        if not key:
            return []

        candidates = _unique_fields(tree)
        results: list[SuggestionItem] = []

        primary = self._primary(key, candidates)
        primary_path: str | None = None
        if primary is not None:
            field, confidence, kind = primary
            primary_path = field.path
            results.append(self._item(field, confidence, key, kind))

        scored: list[tuple[float, int, DataField]] = []
        for index, field in enumerate(candidates):
            if field.path == primary_path:
                continue
            score = self._composite_score(key, field)
            if score < self.config.similarity_floor:
                continue
            scored.append((score, index, field))

        scored.sort(key=lambda item: (-item[0], item[1]))
        for score, _, field in scored[: self.config.secondary_limit]:
            results.append(self._item(field, score, key, "composite"))

        return results

    def exact_match(self, token: str, tree: list[DataField]) -> SuggestionItem | None:
        """Exact path or exact name hit only."""

        key = canonical_key(token)
        if not key:
            return None
        primary = self._primary(key, _unique_fields(tree), include_substring=False)
        if primary is None:
            return None
        field, confidence, kind = primary
        return self._item(field, confidence, key, kind)

    def suggest_all(
        self,
        bindings: list[Binding],
        tree: list[DataField],
        *,
        generation: int = 0,
    ) -> list[BindingSuggestion]:
        """Suggestions for every binding whose selector is empty."""

        suggestions = [
            BindingSuggestion(
                binding_id=binding.id,
                token=binding.placeholder,
                suggestions=self.suggest(binding.placeholder, tree),
                generation=generation,
            )
            for binding in bindings
            if not binding.is_mapped
        ]
        log_event(
            logger,
            logging.DEBUG,
            "suggested",
            binding_count=len(suggestions),
            with_candidates=sum(1 for item in suggestions if item.suggestions),
            generation=generation,
        )
        return suggestions

    async def auto_apply(
        self,
        store: BindingStore,
        tree: list[DataField],
        *,
        on_failure: FailureHandler | None = None,
    ) -> int:
        """Map every unmapped binding that has an exact path or name hit.

        Returns the number of bindings updated. Without ``on_failure`` the
        first persistence failure propagates.
        """

        applied = 0
        for binding in store.unmapped():
            hit = self.exact_match(binding.placeholder, tree)
            if hit is None or binding.id is None:
                continue
            current = store.get(binding.id)
            if current is None or current.is_mapped:
                continue
            try:
                await store.set_selector(binding.id, hit.field_path)
            except PersistenceFailure as exc:
                if on_failure is None:
                    raise
                on_failure(exc)
                continue
            applied += 1

        log_event(logger, logging.INFO, "auto_applied", applied=applied)
        return applied

    def _primary(
        self,
        key: str,
        candidates: list[DataField],
        *,
        include_substring: bool = True,
    ) -> tuple[DataField, float, MatchKind] | None:
        for field in candidates:
            if field.path == key:
                return field, self.config.exact_path_confidence, "exact_path"

        lowered = key.lower()
        for field in candidates:
            if field.name.lower() == lowered:
                return field, self.config.exact_name_confidence, "exact_name"

        if not include_substring:
            return None

        for field in candidates:
            path = field.path.lower()
            if lowered in path or path in lowered:
                return field, self.config.substring_confidence, "substring"
        return None

    def _composite_score(self, key: str, field: DataField) -> float:
        weights = self.config.weights
        type_bonus = 1.0 if field.type.value == self.config.preferred_type else 0.0
        return (
            weights.type * type_bonus
            + weights.name * self._similarity(key, field.name)
            + weights.path * self._similarity(key, field.path)
        )

    def _item(self, field: DataField, confidence: float, key: str, kind: MatchKind) -> SuggestionItem:
        bounded = round(min(1.0, max(0.0, confidence)), 4)
        return SuggestionItem(
            field_path=field.path,
            field_name=field.name,
            confidence=bounded,
            reasoning=explain_match(kind, bounded, key, field),
        )


def explain_match(kind: MatchKind, confidence: float, key: str, field: DataField) -> str:
    if kind == "exact_path":
        return f'Exact match on field path "{field.path}".'
    if kind == "exact_name":
        return f'Exact match on field name "{field.name}".'
    if kind == "substring":
        return f'"{key}" and "{field.path}" contain one another.'
    if confidence > 0.9:
        return f'Perfect match based on field name "{field.name}".'
    if confidence > 0.7:
        return f'Strong match between "{key}" and "{field.name}".'
    if confidence > 0.5:
        return "Good match based on naming similarity and field type."
    if confidence > 0.3:
        return "Possible match, but low confidence."
    return "Low confidence match, consider manual binding."


def _unique_fields(tree: list[DataField]) -> list[DataField]:
    seen: set[str] = set()
    unique: list[DataField] = []
    for field in iter_fields(tree):
        if field.path in seen:
            continue
        seen.add(field.path)
        unique.append(field)
    return unique
