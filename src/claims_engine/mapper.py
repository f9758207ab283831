"""Column mapping module.

Binds observed carrier headers to canonical schema columns in two passes:

1. Exact: case-insensitive equality with a still-unclaimed target (confidence 1.0).
2. Fuzzy: best similarity against each unclaimed target's name and aliases,
   accepted when it reaches ``1 - threshold``.

A target is claimed at most once. Columns are processed in observed order and
all exact matches are bound before any fuzzy match is considered.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from claims_engine.config import MapperOptions
from claims_engine.schema import SchemaType, TargetSchema, resolve_schema
from claims_engine.similarity import best_similarity, similarity

logger = logging.getLogger(__name__)

RawValue = str | int | float | None
RawRow = Mapping[str, RawValue]


class ColumnMapping(BaseModel):
    """A single observed-column to canonical-column binding."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Observed header")
    target: str = Field(description="Canonical column name")
    confidence: float = Field(ge=0, le=1)
    is_required: bool
    is_perfect_match: bool


class MappingResult(BaseModel):
    """Outcome of mapping one header set onto a target schema."""

    mappings: list[ColumnMapping] = Field(default_factory=list)
    missing_required: list[str] = Field(default_factory=list)
    extra_columns: list[str] = Field(default_factory=list)
    confidence: float = 0.0

    def as_dict(self) -> dict[str, str]:
        """target -> source lookup."""
        return {m.target: m.source for m in self.mappings}

    def is_bound(self, target: str) -> bool:
        return any(m.target == target for m in self.mappings)


class MappingValidation(BaseModel):
    is_valid: bool
    missing_required: list[str] = Field(default_factory=list)


class MatchCount(BaseModel):
    matches: int
    total: int


def count_matches(observed: Iterable[str], expected: Iterable[str]) -> MatchCount:
    """Count expected columns present (trimmed, case-insensitive) among observed headers."""
    observed_norm = {c.strip().lower() for c in observed}
    expected_list = list(expected)
    matches = sum(1 for col in expected_list if col.strip().lower() in observed_norm)
    return MatchCount(matches=matches, total=len(expected_list))


def _score(source: str, target: str, schema: TargetSchema, include_aliases: bool) -> float:
    score = similarity(source, target)
    if include_aliases:
        score = max(score, best_similarity(source, schema.aliases_for(target)))
    return score


def generate_mappings(
    observed_columns: list[str],
    schema: SchemaType | TargetSchema,
    options: MapperOptions | None = None,
) -> MappingResult:
    """Map observed headers onto a target schema.

    Args:
        observed_columns: Headers in file order.
        schema: A detected schema type or an explicit target table.
        options: Fuzzy threshold and alias usage.

    Returns:
        MappingResult with bindings (sorted by descending confidence),
        missing required targets, unbound sources and mean confidence.
    """
    opts = options or MapperOptions()
    target_schema = resolve_schema(schema)
    targets = list(target_schema.expected_columns)
    required = set(target_schema.required_columns)

    if not targets:
        return MappingResult(
            mappings=[],
            missing_required=list(target_schema.required_columns),
            extra_columns=list(observed_columns),
            confidence=0.0,
        )

    mappings: list[ColumnMapping] = []
    claimed: set[str] = set()
    bound_sources: set[str] = set()

    # Pass 1: exact matches
    for source in observed_columns:
        key = source.strip().lower()
        exact = next((t for t in targets if t.lower() == key and t not in claimed), None)
        if exact is None:
            continue
        mappings.append(
            ColumnMapping(
                source=source,
                target=exact,
                confidence=1.0,
                is_required=exact in required,
                is_perfect_match=True,
            )
        )
        claimed.add(exact)
        bound_sources.add(source)

    # Pass 2: fuzzy matches over what is left
    min_score = 1.0 - opts.threshold
    for source in observed_columns:
        if source in bound_sources:
            continue
        best_target: str | None = None
        best_score = -1.0
        for target in targets:
            if target in claimed:
                continue
            score = _score(source, target, target_schema, opts.include_aliases)
            if score > best_score:
                best_target, best_score = target, score
        if best_target is None or best_score < min_score:
            continue
        mappings.append(
            ColumnMapping(
                source=source,
                target=best_target,
                confidence=best_score,
                is_required=best_target in required,
                is_perfect_match=False,
            )
        )
        claimed.add(best_target)
        bound_sources.add(source)

    missing_required = [r for r in target_schema.required_columns if r not in claimed]
    extra_columns = [c for c in observed_columns if c not in bound_sources]
    confidence = sum(m.confidence for m in mappings) / len(mappings) if mappings else 0.0

    logger.debug(
        "Mapped %d/%d columns onto %s (confidence=%.3f, missing=%s)",
        len(mappings),
        len(observed_columns),
        target_schema.name,
        confidence,
        missing_required,
    )

    return MappingResult(
        mappings=sorted(mappings, key=lambda m: m.confidence, reverse=True),
        missing_required=missing_required,
        extra_columns=extra_columns,
        confidence=confidence,
    )


def apply_mappings(
    rows: Iterable[RawRow],
    mappings: list[ColumnMapping],
) -> list[dict[str, RawValue]]:
    """Rename row keys from source to target.

    Unmapped keys are kept as-is so validation can still report them.
    A mapped value wins over a pass-through key of the same name.
    """
    rename = {m.source: m.target for m in mappings}
    transformed: list[dict[str, RawValue]] = []
    for row in rows:
        out: dict[str, RawValue] = {k: v for k, v in row.items() if k not in rename}
        for key, value in row.items():
            if key in rename:
                out[rename[key]] = value
        transformed.append(out)
    return transformed


def validate_mappings(
    mappings: list[ColumnMapping],
    schema: SchemaType | TargetSchema,
) -> MappingValidation:
    """Check that every required target column has a bound source."""
    target_schema = resolve_schema(schema)
    bound = {m.target for m in mappings}
    missing = [r for r in target_schema.required_columns if r not in bound]
    return MappingValidation(is_valid=not missing, missing_required=missing)


def get_suggestions(
    observed_columns: list[str],
    schema: SchemaType | TargetSchema,
    threshold: float = 0.3,
) -> list[ColumnMapping]:
    """Candidate mappings for manual review, keeping those at or above ``threshold``."""
    result = generate_mappings(
        observed_columns,
        schema,
        MapperOptions(threshold=threshold, include_aliases=True),
    )
    return [m for m in result.mappings if m.confidence >= threshold]


def extract_columns(rows: Iterable[RawRow]) -> list[str]:
    """Distinct non-empty keys across rows, in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            if key:
                seen.setdefault(key, None)
    return list(seen)


def mapped_partition(
    mapped_rows: list[dict[str, RawValue]],
    mappings: list[ColumnMapping],
    schema: SchemaType | TargetSchema,
) -> tuple[list[str], list[str]]:
    """Re-derive (missing_required, extra_columns) from rows after ``apply_mappings``."""
    targets = {m.target for m in mappings}
    missing = validate_mappings(mappings, schema).missing_required
    extras = [c for c in extract_columns(mapped_rows) if c not in targets]
    return missing, extras
