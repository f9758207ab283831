"""Schema detection module.

Classifies a header set as one of the known carrier export shapes by counting
exact (case-insensitive) matches against each schema's expected columns.

Ties fall back to keyword heuristics:
1. a header containing "category" -> cost-category schema
2. a header containing "claimant", or both "member" and "id" -> per-claimant schema

The heuristics are best-effort and can misclassify ambiguous header sets.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from claims_engine.mapper import count_matches
from claims_engine.schema import (
    COST_CATEGORY_EXPECTED_COLUMNS,
    PER_CLAIMANT_EXPECTED_COLUMNS,
    SchemaType,
)

logger = logging.getLogger(__name__)


class SchemaDetection(BaseModel):
    """Detected schema plus the evidence behind it."""

    schema_type: SchemaType
    cost_category_matches: int
    per_claimant_matches: int
    resolved_by: str  # 'matches' | 'keyword' | 'none'


def _has_category_column(columns: list[str]) -> bool:
    return any("category" in c.lower() for c in columns)


def _has_claimant_column(columns: list[str]) -> bool:
    for col in columns:
        lowered = col.lower()
        if "claimant" in lowered or ("member" in lowered and "id" in lowered):
            return True
    return False


def explain_schema_type(columns: list[str]) -> SchemaDetection:
    """Classify ``columns`` and report the match counts used."""
    cost = count_matches(columns, COST_CATEGORY_EXPECTED_COLUMNS).matches
    claimant = count_matches(columns, PER_CLAIMANT_EXPECTED_COLUMNS).matches

    if cost > claimant:
        schema_type, resolved_by = SchemaType.COST_CATEGORY, "matches"
    elif claimant > cost:
        schema_type, resolved_by = SchemaType.PER_CLAIMANT, "matches"
    elif _has_category_column(columns):
        schema_type, resolved_by = SchemaType.COST_CATEGORY, "keyword"
    elif _has_claimant_column(columns):
        schema_type, resolved_by = SchemaType.PER_CLAIMANT, "keyword"
    else:
        schema_type, resolved_by = SchemaType.UNKNOWN, "none"

    logger.debug(
        "Schema detection: cost_category=%d per_claimant=%d -> %s (%s)",
        cost,
        claimant,
        schema_type.value,
        resolved_by,
    )
    return SchemaDetection(
        schema_type=schema_type,
        cost_category_matches=cost,
        per_claimant_matches=claimant,
        resolved_by=resolved_by,
    )


def detect_schema_type(columns: list[str]) -> SchemaType:
    """Return the schema type with strictly more exact matches, else apply keyword heuristics."""
    return explain_schema_type(columns).schema_type
