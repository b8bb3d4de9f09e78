from __future__ import annotations

from typing import Iterable

from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.model import (
    MarkerOccurrence,
    Registry,
    ValidatedOccurrence,
    ValidationResult,
)
from tracemark.order_contract import sort_once

MAX_SUGGESTIONS = 3


def levenshtein_distance(s1: str, s2: str) -> int:
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)
    if not s2:
        return len(s1)
    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row
    return previous_row[-1]


def suggestion_threshold(identifier: Identifier) -> float:
    return max(3.0, len(identifier.value) / 3)


def suggest(
    identifier: Identifier,
    registry: Registry,
    *,
    limit: int = MAX_SUGGESTIONS,
) -> tuple[Identifier, ...]:
    """Nearest same-kind identifiers by edit distance.

    Ties break on the shorter identifier, then lexical order, so two runs over
    the same registry always agree.
    """
    threshold = suggestion_threshold(identifier)
    scored = [
        (levenshtein_distance(identifier.value, candidate.value), candidate)
        for candidate in registry.candidates(identifier.kind)
        if candidate != identifier
    ]
    ranked = sort_once(
        (item for item in scored if item[0] <= threshold),
        source="suggest.ranked",
        key=lambda item: (item[0], len(item[1].value), item[1].value),
    )
    return tuple(candidate for _, candidate in ranked[:limit])


def validate(occurrence: MarkerOccurrence, registry: Registry) -> ValidationResult:
    """Classify one occurrence. Unknown identifiers resolve to Hallucinated."""
    identifier = Identifier(occurrence.id.value)
    if registry.is_placeholder(identifier):
        return ValidationResult.placeholder()
    requirement = registry.requirement(identifier)
    if requirement is not None:
        return ValidationResult.valid(requirement)
    return ValidationResult.hallucinated(suggest(identifier, registry))


def validate_all(
    occurrences: Iterable[MarkerOccurrence], registry: Registry
) -> tuple[ValidatedOccurrence, ...]:
    cache: dict[Identifier, ValidationResult] = {}
    validated: list[ValidatedOccurrence] = []
    for occurrence in occurrences:
        result = cache.get(occurrence.id)
        if result is None:
            result = validate(occurrence, registry)
            cache[occurrence.id] = result
        validated.append(ValidatedOccurrence(occurrence=occurrence, result=result))
    return tuple(validated)
