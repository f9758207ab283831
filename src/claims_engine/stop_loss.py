"""Stop-loss and plan configuration engine.

Applies the plan's specific stop-loss terms to each normalized claim and
evaluates custom line items month by month:
- excess = max(0, total - threshold)
- reimbursement = excess * reimbursement rate
- net paid = total - reimbursement

Fixed line items spread their amount by basis: monthly as-is, annual divided
across the reporting months, PEPM multiplied by the member count.
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from claims_engine.aggregation import AggregatedMetrics
from claims_engine.config import DEFAULT_MONTHS_PER_YEAR, LineItem, PlanConfiguration
from claims_engine.schema import NormalizedClaim, ProcessedClaim

logger = logging.getLogger(__name__)


class EvaluatedLineItem(LineItem):
    """A line item with its per-month values resolved."""

    months_totals: dict[str, float] = Field(default_factory=dict)
    annual_total: float = 0.0


class FinancialSummaryRow(BaseModel):
    """One row of the plan financial summary table."""

    key: str
    label: str
    months_totals: dict[str, float] = Field(default_factory=dict)
    annual_total: float = 0.0
    budget: float | None = None
    type: Literal["revenue", "expense"] | None = None


class ClaimFilters(BaseModel):
    service_type: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    stop_loss_only: bool = False
    search_term: str | None = Field(
        default=None,
        description="Case-insensitive substring over claimant, ICD, descriptions and provider",
    )


def derive_month_keys(claims: list[NormalizedClaim]) -> list[str]:
    """Distinct month keys across claims, in calendar order."""
    return sorted({claim.month_key for claim in claims if claim.month_key})


def apply_configuration(
    claims: list[NormalizedClaim],
    config: PlanConfiguration | None = None,
) -> list[ProcessedClaim]:
    """Apply per-claim stop-loss terms.

    Args:
        claims: Normalized claims.
        config: Plan terms; unset threshold/rate fall back to the defaults.

    Returns:
        One ProcessedClaim per input claim, in input order.
    """
    plan = config or PlanConfiguration()
    threshold = plan.threshold
    rate = plan.reimbursement_rate

    processed: list[ProcessedClaim] = []
    for claim in claims:
        excess = max(0.0, claim.total_amount - threshold)
        reimbursement = excess * rate
        processed.append(
            ProcessedClaim(
                **claim.model_dump(),
                stop_loss_triggered=excess > 0,
                stop_loss_excess=excess,
                stop_loss_reimbursement=reimbursement,
                net_paid=claim.total_amount - reimbursement,
            )
        )

    triggered = sum(1 for c in processed if c.stop_loss_triggered)
    logger.debug(
        "Applied stop-loss (threshold=%.2f, rate=%.2f): %d of %d claims triggered",
        threshold,
        rate,
        triggered,
        len(processed),
    )
    return processed


def _fixed_monthly_amount(item: LineItem, plan: PlanConfiguration, month_count: int) -> float:
    if item.basis == "annual":
        return item.amount / month_count
    if item.basis == "pepm":
        return item.amount * plan.members
    return item.amount


def evaluate_line_items(
    claims: list[ProcessedClaim],
    config: PlanConfiguration | None = None,
    months: list[str] | None = None,
) -> list[EvaluatedLineItem]:
    """Resolve each configured line item to per-month totals over ``months``.

    Claims-sourced items sum the item's claim field per month, optionally
    restricted to one service type. Annual amounts are divided by the number
    of months (12 when no months are given).
    """
    plan = config or PlanConfiguration()
    month_keys = list(months or [])
    month_count = len(month_keys) or DEFAULT_MONTHS_PER_YEAR

    results: list[EvaluatedLineItem] = []
    for item in plan.line_items:
        if item.source == "claims":
            selected = [
                c for c in claims if item.service_type is None or c.service_type == item.service_type
            ]
            totals = {
                month: sum(float(getattr(c, item.field)) for c in selected if c.month_key == month)
                for month in month_keys
            }
        else:
            monthly = _fixed_monthly_amount(item, plan, month_count)
            totals = {month: monthly for month in month_keys}

        results.append(
            EvaluatedLineItem(
                **item.model_dump(),
                months_totals=totals,
                annual_total=sum(totals.values()),
            )
        )
    return results


def get_high_cost_claims(claims: list[ProcessedClaim], limit: int = 5) -> list[ProcessedClaim]:
    """Largest claims by total amount."""
    return sorted(claims, key=lambda c: c.total_amount, reverse=True)[:limit]


def _matches_search(claim: ProcessedClaim, term: str) -> bool:
    haystack = (
        claim.claimant_id,
        claim.icd_code,
        claim.medical_desc,
        claim.layman_term,
        claim.provider,
    )
    needle = term.lower()
    return any(needle in value.lower() for value in haystack if value)


def filter_claims(
    claims: list[ProcessedClaim],
    filters: ClaimFilters | None = None,
) -> list[ProcessedClaim]:
    """Claims passing every set filter."""
    f = filters or ClaimFilters()
    selected: list[ProcessedClaim] = []
    for claim in claims:
        if f.service_type and claim.service_type != f.service_type:
            continue
        if f.stop_loss_only and not claim.stop_loss_triggered:
            continue
        if f.min_amount is not None and claim.total_amount < f.min_amount:
            continue
        if f.max_amount is not None and claim.total_amount > f.max_amount:
            continue
        if f.search_term and not _matches_search(claim, f.search_term):
            continue
        selected.append(claim)
    return selected


def build_financial_summary_rows(
    metrics: AggregatedMetrics,
    config: PlanConfiguration,
    line_items: list[EvaluatedLineItem],
    months: list[str],
) -> list[FinancialSummaryRow]:
    """Assemble the plan financial summary: claim lines, fees, rebates, then line items.

    Rx rebates are credits and appear negated.
    """
    month_count = len(months) or DEFAULT_MONTHS_PER_YEAR
    sequence = metrics.month_sequence

    rows = [
        FinancialSummaryRow(
            key="medical_claims",
            label="Total Medical Claims",
            months_totals={m.month_key: m.medical for m in sequence},
            annual_total=metrics.total_medical,
            budget=config.medical_budget,
        ),
        FinancialSummaryRow(
            key="pharmacy_claims",
            label="Total Pharmacy Claims",
            months_totals={m.month_key: m.pharmacy for m in sequence},
            annual_total=metrics.total_pharmacy,
            budget=config.rx_budget,
        ),
        FinancialSummaryRow(
            key="stop_loss",
            label="Stop Loss Reimbursements",
            months_totals={m.month_key: m.reimbursement for m in sequence},
            annual_total=metrics.stop_loss_reimbursement,
        ),
        FinancialSummaryRow(
            key="net_paid",
            label="Net Paid Claims",
            months_totals={m.month_key: m.net_paid for m in sequence},
            annual_total=metrics.net_paid,
        ),
        FinancialSummaryRow(
            key="admin_fees",
            label="Administrative Fees",
            months_totals={m: config.admin_fee_monthly for m in months},
            annual_total=config.admin_fee_monthly * month_count,
        ),
        FinancialSummaryRow(
            key="rx_rebates",
            label="Rx Rebates",
            months_totals={m: -config.rx_rebates_monthly for m in months},
            annual_total=-config.rx_rebates_monthly * month_count,
        ),
    ]

    rows.extend(
        FinancialSummaryRow(
            key=item.id,
            label=item.label,
            months_totals=item.months_totals,
            annual_total=item.annual_total,
            type=item.type,
        )
        for item in line_items
    )
    return rows
