"""Financial metrics module.

Turns long-format experience rows into per-month plan financials:
- Medical roll-up: hospital -> all medical -> adjusted -> total medical
- Rx claims, admin fees, rebates and stop-loss reimbursement
- Monthly and cumulative totals against a PEPM budget
- Loss ratios, including a trailing 12-month ratio

Carrier category labels are resolved through EXPERIENCE_CATEGORY_ALIASES; for
each month the first alias carrying a value wins. Ratios with a zero
denominator are None, never NaN or inf.
"""

from __future__ import annotations

import logging
import re
from typing import Mapping

from pydantic import BaseModel, Field
import polars as pl

from claims_engine.schema import (
    ADMIN_FEE_CATEGORIES,
    CLAIMS_KEYWORD,
    EXPERIENCE_CATEGORY_ALIASES,
    RX_CLAIMS_PATTERN,
    ExperienceRow,
    FeesRow,
)

logger = logging.getLogger(__name__)

ROLLING_WINDOW_MONTHS = 12

_EXPERIENCE_COLUMNS = {
    "month": pl.Utf8,
    "category": pl.Utf8,
    "amount": pl.Float64,
    "premium": pl.Float64,
    "claims": pl.Float64,
}


class FinancialMetrics(BaseModel):
    """Plan financials for one calendar month."""

    month: str
    total_hospital_medical_claims: float
    total_all_medical_claims: float
    total_adjusted_medical_claims: float
    total_medical_claims: float
    total_rx_claims: float
    total_admin_fees: float
    monthly_claims_and_expenses: float
    cumulative_claims_and_expenses: float
    pepm_actual: float | None = Field(description="Monthly total / EE count; None when no EEs")
    pepm_cumulative: float | None = Field(
        description="Cumulative total / cumulative EE-months; None when zero"
    )
    monthly_budget: float = Field(description="Budget PEPM x EE count")
    cumulative_budget: float
    monthly_difference: float
    monthly_difference_pct: float | None = Field(description="None when the budget is zero")
    cumulative_difference: float
    cumulative_difference_pct: float | None
    ee_count: float
    member_count: float
    rx_rebates: float
    stop_loss_reimbursement: float


class MonthlySummary(BaseModel):
    """Claims, premium and fees for one month, with loss ratios."""

    month: str
    claims: float
    premium: float
    fees_total: float
    total_cost: float = Field(description="claims + fees_total")
    loss_ratio: float | None = Field(description="claims / premium; None when premium <= 0")
    r12_loss_ratio: float | None = Field(
        description="Trailing 12-month loss ratio; None until 12 months of history"
    )


class SummaryTotals(BaseModel):
    claims: float = 0.0
    premium: float = 0.0
    fees_total: float = 0.0
    total_cost: float = 0.0


def experience_frame(experience: list[ExperienceRow]) -> pl.DataFrame:
    return pl.DataFrame(
        [row.model_dump() for row in experience],
        schema=_EXPERIENCE_COLUMNS,
    )


def calculate_loss_ratio(claims: float, premium: float | None) -> float | None:
    """claims / premium, or None when premium is missing or not positive."""
    if premium is None or premium <= 0:
        return None
    return claims / premium


def _resolve_category(columns: list[str], key: str) -> pl.Expr:
    """First alias column with a value in the month, or null when none is present."""
    present = [label for label in EXPERIENCE_CATEGORY_ALIASES[key] if label in columns]
    if not present:
        return pl.lit(None, dtype=pl.Float64).alias(key)
    return pl.coalesce(present).alias(key)


def _rx_claims(columns: list[str]) -> pl.Expr:
    pattern = re.compile(RX_CLAIMS_PATTERN)
    matching = [c for c in columns if c != "month" and pattern.search(c)]
    if not matching:
        return pl.lit(0.0).alias("total_rx_claims")
    return pl.sum_horizontal([pl.col(c).fill_null(0.0) for c in matching]).alias("total_rx_claims")


def _ratio(numerator: str, denominator: str) -> pl.Expr:
    return pl.when(pl.col(denominator) != 0).then(pl.col(numerator) / pl.col(denominator))


def compute_financial_metrics(experience: list[ExperienceRow]) -> list[FinancialMetrics]:
    """Compute per-month plan financials in calendar order.

    Args:
        experience: Long-format experience rows (one amount per month/category).

    Returns:
        One FinancialMetrics per month present in the input.
    """
    if not experience:
        return []

    wide = (
        experience_frame(experience)
        .group_by("month", "category")
        .agg(pl.col("amount").sum())
        .pivot(on="category", index="month", values="amount", aggregate_function="sum")
        .sort("month")
    )
    columns = wide.columns

    resolved = wide.select(
        "month",
        *[_resolve_category(columns, key) for key in EXPERIENCE_CATEGORY_ALIASES],
        _rx_claims(columns),
    )

    def zero_if_null(name: str) -> pl.Expr:
        return pl.col(name).fill_null(0.0)

    frame = (
        resolved.with_columns(
            # Derive non-domestic from an explicit hospital total when it is not reported
            pl.when(
                pl.col("non_domestic_hospital").is_null() & pl.col("total_hospital").is_not_null()
            )
            .then(pl.col("total_hospital") - zero_if_null("domestic_hospital"))
            .otherwise(pl.col("non_domestic_hospital"))
            .alias("non_domestic_hospital"),
        )
        .with_columns(
            pl.coalesce(
                pl.col("total_hospital"),
                zero_if_null("domestic_hospital") + zero_if_null("non_domestic_hospital"),
            ).alias("total_hospital_medical_claims"),
        )
        .with_columns(
            (pl.col("total_hospital_medical_claims") + zero_if_null("non_hospital")).alias(
                "total_all_medical_claims"
            ),
        )
        .with_columns(
            (pl.col("total_all_medical_claims") + zero_if_null("uc_adjustment")).alias(
                "total_adjusted_medical_claims"
            ),
        )
        .with_columns(
            (
                pl.col("total_adjusted_medical_claims")
                + zero_if_null("runout")
                + zero_if_null("eba_paid")
            ).alias("total_medical_claims"),
            pl.sum_horizontal([zero_if_null(k) for k in ADMIN_FEE_CATEGORIES]).alias(
                "total_admin_fees"
            ),
            zero_if_null("rx_rebates").alias("rx_rebates"),
            zero_if_null("stop_loss_reimbursement").alias("stop_loss_reimbursement"),
            zero_if_null("ee_count").alias("ee_count"),
            zero_if_null("member_count").alias("member_count"),
        )
        .with_columns(
            (
                pl.col("total_medical_claims")
                + pl.col("total_rx_claims")
                + pl.col("total_admin_fees")
                + pl.col("rx_rebates")
                + pl.col("stop_loss_reimbursement")
            ).alias("monthly_claims_and_expenses"),
            (zero_if_null("budget_pepm") * pl.col("ee_count")).alias("monthly_budget"),
        )
        .with_columns(
            pl.col("monthly_claims_and_expenses").cum_sum().alias("cumulative_claims_and_expenses"),
            pl.col("monthly_budget").cum_sum().alias("cumulative_budget"),
            pl.col("ee_count").cum_sum().alias("cumulative_ee_months"),
            (pl.col("monthly_claims_and_expenses") - pl.col("monthly_budget")).alias(
                "monthly_difference"
            ),
        )
        .with_columns(
            (pl.col("cumulative_claims_and_expenses") - pl.col("cumulative_budget")).alias(
                "cumulative_difference"
            ),
        )
        .with_columns(
            _ratio("monthly_difference", "monthly_budget").alias("monthly_difference_pct"),
            _ratio("cumulative_difference", "cumulative_budget").alias("cumulative_difference_pct"),
            pl.when(pl.col("ee_count") > 0)
            .then(pl.col("monthly_claims_and_expenses") / pl.col("ee_count"))
            .alias("pepm_actual"),
            pl.when(pl.col("cumulative_ee_months") > 0)
            .then(pl.col("cumulative_claims_and_expenses") / pl.col("cumulative_ee_months"))
            .alias("pepm_cumulative"),
        )
        .select(list(FinancialMetrics.model_fields))
    )

    logger.debug("Computed financial metrics for %d months", frame.height)
    return [FinancialMetrics(**row) for row in frame.iter_rows(named=True)]


def compute_monthly_summaries(
    experience: list[ExperienceRow],
    fees_by_month: Mapping[str, FeesRow] | None = None,
) -> list[MonthlySummary]:
    """Group experience by month and compute loss ratios.

    Claims per row come from the explicit ``claims`` value when present,
    otherwise from ``amount`` when the category mentions claims. The trailing
    12-month ratio is defined only from the 12th month onward.
    """
    if not experience:
        return []

    fees = pl.DataFrame(
        [{"month": month, "fees_total": row.total} for month, row in (fees_by_month or {}).items()],
        schema={"month": pl.Utf8, "fees_total": pl.Float64},
    )

    monthly = (
        experience_frame(experience)
        .with_columns(
            pl.when(pl.col("claims").is_not_null())
            .then(pl.col("claims"))
            .when(pl.col("category").str.to_lowercase().str.contains(CLAIMS_KEYWORD, literal=True))
            .then(pl.col("amount"))
            .otherwise(0.0)
            .alias("claims"),
            pl.col("premium").fill_null(0.0),
        )
        .group_by("month")
        .agg(pl.col("claims").sum(), pl.col("premium").sum())
        .sort("month")
        .join(fees, on="month", how="left")
        .with_columns(pl.col("fees_total").fill_null(0.0))
        .with_columns(
            (pl.col("claims") + pl.col("fees_total")).alias("total_cost"),
            pl.col("claims")
            .rolling_sum(window_size=ROLLING_WINDOW_MONTHS, min_samples=ROLLING_WINDOW_MONTHS)
            .alias("r12_claims"),
            pl.col("premium")
            .rolling_sum(window_size=ROLLING_WINDOW_MONTHS, min_samples=ROLLING_WINDOW_MONTHS)
            .alias("r12_premium"),
        )
    )

    summaries: list[MonthlySummary] = []
    for row in monthly.iter_rows(named=True):
        r12 = (
            calculate_loss_ratio(row["r12_claims"], row["r12_premium"])
            if row["r12_claims"] is not None
            else None
        )
        summaries.append(
            MonthlySummary(
                month=row["month"],
                claims=row["claims"],
                premium=row["premium"],
                fees_total=row["fees_total"],
                total_cost=row["total_cost"],
                loss_ratio=calculate_loss_ratio(row["claims"], row["premium"]),
                r12_loss_ratio=r12,
            )
        )
    return summaries


def calculate_totals(summaries: list[MonthlySummary]) -> SummaryTotals:
    """Sum claims, premium, fees and total cost across months."""
    return SummaryTotals(
        claims=sum(s.claims for s in summaries),
        premium=sum(s.premium for s in summaries),
        fees_total=sum(s.fees_total for s in summaries),
        total_cost=sum(s.total_cost for s in summaries),
    )
