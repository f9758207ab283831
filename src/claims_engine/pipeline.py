"""End-to-end claims processing.

headers + raw rows -> column mapping -> validation -> normalization
-> stop-loss -> aggregation.

Unmapped required columns block row processing unless the run explicitly
allows it. Rows with row-level errors are excluded from normalization.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from claims_engine.aggregation import AggregatedMetrics, aggregate_metrics
from claims_engine.config import EngineConfig
from claims_engine.mapper import MappingResult, RawRow, generate_mappings
from claims_engine.normalize import NormalizationResult, normalize_claims
from claims_engine.schema import CLAIM_SCHEMA, ProcessedClaim
from claims_engine.stop_loss import (
    EvaluatedLineItem,
    apply_configuration,
    derive_month_keys,
    evaluate_line_items,
)
from claims_engine.validate import ValidationResult, validate_claims

logger = logging.getLogger(__name__)


class PipelineResult(BaseModel):
    """Everything produced by one claims processing run."""

    mapping: MappingResult
    validation: ValidationResult
    blocked: bool = Field(
        default=False, description="Rows were not processed because required columns are unmapped"
    )
    normalization: NormalizationResult = Field(default_factory=NormalizationResult)
    claims: list[ProcessedClaim] = Field(default_factory=list)
    metrics: AggregatedMetrics = Field(default_factory=AggregatedMetrics)
    months: list[str] = Field(default_factory=list)
    line_items: list[EvaluatedLineItem] = Field(default_factory=list)


def run_claims_pipeline(
    headers: list[str],
    rows: list[RawRow],
    config: EngineConfig | None = None,
) -> PipelineResult:
    """Map, validate, normalize, apply stop-loss and aggregate one claims file.

    Args:
        headers: Observed header row.
        rows: Raw data rows keyed by header.
        config: Engine configuration; defaults apply when omitted.

    Returns:
        PipelineResult. When ``blocked`` is set only the mapping and
        validation are populated.
    """
    cfg = config or EngineConfig()

    mapping = generate_mappings(headers, CLAIM_SCHEMA, cfg.mapper)
    validation = validate_claims(rows, mapping)

    if mapping.missing_required and not cfg.allow_missing_required:
        logger.warning(
            "Required columns not mapped: %s; skipping row processing",
            ", ".join(mapping.missing_required),
        )
        return PipelineResult(mapping=mapping, validation=validation, blocked=True)

    normalization = normalize_claims(rows, mapping, skip_rows=validation.invalid_row_numbers)
    claims = apply_configuration(normalization.claims, cfg.plan)
    months = derive_month_keys(claims)

    logger.debug(
        "Processed %d of %d rows across %d months",
        len(claims),
        len(rows),
        len(months),
    )
    return PipelineResult(
        mapping=mapping,
        validation=validation,
        normalization=normalization,
        claims=claims,
        metrics=aggregate_metrics(claims),
        months=months,
        line_items=evaluate_line_items(claims, cfg.plan, months),
    )
