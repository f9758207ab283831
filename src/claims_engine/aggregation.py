"""Aggregation engine.

Rolls processed claims up into plan-level totals:
- Grand totals (medical, pharmacy, stop-loss excess/reimbursement, net paid)
- Stop-loss hit count and distinct claimants
- Per-month buckets in calendar order
- Per-service-type buckets by descending total

Experience rows can also be rolled up by category (with percentage shares)
or by month, and filtered to a month range. High-cost claimant rows roll up
into top claimants, amount bands, diagnosis categories and a place-of-service
cost split.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
import polars as pl

from claims_engine.schema import ExperienceRow, HighCostClaimant, ProcessedClaim

_CLAIM_COLUMNS = {
    "claimant_id": pl.Utf8,
    "month_key": pl.Utf8,
    "service_type": pl.Utf8,
    "medical_amount": pl.Float64,
    "pharmacy_amount": pl.Float64,
    "total_amount": pl.Float64,
    "stop_loss_triggered": pl.Boolean,
    "stop_loss_excess": pl.Float64,
    "stop_loss_reimbursement": pl.Float64,
    "net_paid": pl.Float64,
}

_CLAIMANT_COLUMNS = {
    "member_id": pl.Utf8,
    "primary_diagnosis_category": pl.Utf8,
    "total": pl.Float64,
    "facility_inpatient": pl.Float64,
    "facility_outpatient": pl.Float64,
    "professional": pl.Float64,
    "pharmacy": pl.Float64,
}


class MonthSequenceItem(BaseModel):
    """Totals for one calendar month."""

    month_key: str
    label: str = Field(description="Display label, e.g. 'Jan 2024'")
    medical: float = 0.0
    pharmacy: float = 0.0
    total: float = 0.0
    stop_loss: float = Field(default=0.0, description="Stop-loss excess for the month")
    reimbursement: float = 0.0
    net_paid: float = 0.0


class ServiceDistributionItem(BaseModel):
    service_type: str
    medical: float = 0.0
    pharmacy: float = 0.0
    total: float = 0.0


class AggregatedMetrics(BaseModel):
    """Plan-level rollup of processed claims."""

    model_config = ConfigDict(frozen=True)

    total_claims: float = Field(default=0.0, description="Sum of total_amount")
    total_medical: float = 0.0
    total_pharmacy: float = 0.0
    stop_loss_excess: float = 0.0
    stop_loss_reimbursement: float = 0.0
    net_paid: float = 0.0
    stop_loss_count: int = Field(default=0, description="Claims that breached the threshold")
    unique_claimants: int = 0
    month_sequence: list[MonthSequenceItem] = Field(default_factory=list)
    service_distribution: list[ServiceDistributionItem] = Field(default_factory=list)


class CategoryTotal(BaseModel):
    category: str
    amount: float
    percentage: float | None = Field(
        description="Share of the grand total, in percent; None when the total is not positive"
    )


def month_label(month_key: str) -> str:
    """'2024-01' -> 'Jan 2024'."""
    return datetime.strptime(month_key, "%Y-%m").strftime("%b %Y")


def claims_frame(processed: list[ProcessedClaim]) -> pl.DataFrame:
    """Columnar view of processed claims used by the rollups."""
    return pl.DataFrame(
        [claim.model_dump(include=set(_CLAIM_COLUMNS)) for claim in processed],
        schema=_CLAIM_COLUMNS,
    )


def aggregate_metrics(processed: list[ProcessedClaim]) -> AggregatedMetrics:
    """Aggregate processed claims into totals, month buckets and service buckets.

    Empty input yields all-zero totals and empty sequences.
    """
    if not processed:
        return AggregatedMetrics()

    df = claims_frame(processed)

    months = (
        df.group_by("month_key")
        .agg(
            pl.col("medical_amount").sum().alias("medical"),
            pl.col("pharmacy_amount").sum().alias("pharmacy"),
            pl.col("total_amount").sum().alias("total"),
            pl.col("stop_loss_excess").sum().alias("stop_loss"),
            pl.col("stop_loss_reimbursement").sum().alias("reimbursement"),
            pl.col("net_paid").sum().alias("net_paid"),
        )
        .sort("month_key")
    )

    services = (
        df.with_columns(pl.col("service_type").fill_null("Unknown"))
        .group_by("service_type", maintain_order=True)
        .agg(
            pl.col("medical_amount").sum().alias("medical"),
            pl.col("pharmacy_amount").sum().alias("pharmacy"),
            pl.col("total_amount").sum().alias("total"),
        )
        .sort("total", descending=True, maintain_order=True)
    )

    return AggregatedMetrics(
        total_claims=float(df["total_amount"].sum()),
        total_medical=float(df["medical_amount"].sum()),
        total_pharmacy=float(df["pharmacy_amount"].sum()),
        stop_loss_excess=float(df["stop_loss_excess"].sum()),
        stop_loss_reimbursement=float(df["stop_loss_reimbursement"].sum()),
        net_paid=float(df["net_paid"].sum()),
        stop_loss_count=int(df["stop_loss_triggered"].sum()),
        unique_claimants=df["claimant_id"].n_unique(),
        month_sequence=[
            MonthSequenceItem(label=month_label(row["month_key"]), **row)
            for row in months.iter_rows(named=True)
        ],
        service_distribution=[
            ServiceDistributionItem(**row) for row in services.iter_rows(named=True)
        ],
    )


def _share(amount: float, grand_total: float) -> float | None:
    """Percent of ``grand_total``, rounded to 2 places; None when the total is not positive."""
    if grand_total <= 0:
        return None
    return round(amount / grand_total * 100, 2)


def aggregate_by_category(experience: list[ExperienceRow]) -> list[CategoryTotal]:
    """Sum experience amounts per category, largest first, with percentage shares."""
    if not experience:
        return []

    df = pl.DataFrame(
        [{"category": r.category, "amount": r.amount} for r in experience],
        schema={"category": pl.Utf8, "amount": pl.Float64},
    )
    totals = (
        df.group_by("category", maintain_order=True)
        .agg(pl.col("amount").sum())
        .sort("amount", descending=True, maintain_order=True)
    )
    grand_total = float(totals["amount"].sum())

    return [
        CategoryTotal(
            category=row["category"],
            amount=row["amount"],
            percentage=_share(row["amount"], grand_total),
        )
        for row in totals.iter_rows(named=True)
    ]


def aggregate_by_month(experience: list[ExperienceRow]) -> list[dict[str, str | float]]:
    """One row per month (calendar order) with the summed amount of each category present."""
    if not experience:
        return []

    df = pl.DataFrame(
        [{"month": r.month, "category": r.category, "amount": r.amount} for r in experience],
        schema={"month": pl.Utf8, "category": pl.Utf8, "amount": pl.Float64},
    )
    wide = (
        df.group_by("month", "category", maintain_order=True)
        .agg(pl.col("amount").sum())
        .pivot(on="category", index="month", values="amount", aggregate_function="sum")
        .sort("month")
    )
    return [
        {key: value for key, value in row.items() if value is not None}
        for row in wide.iter_rows(named=True)
    ]


def get_unique_months(experience: list[ExperienceRow]) -> list[str]:
    return sorted({row.month for row in experience})


def get_unique_categories(experience: list[ExperienceRow]) -> list[str]:
    """Categories ordered by descending total amount."""
    return [total.category for total in aggregate_by_category(experience)]


def filter_by_date_range(
    experience: list[ExperienceRow],
    start_month: str | None = None,
    end_month: str | None = None,
) -> list[ExperienceRow]:
    """Keep rows with ``start_month <= month <= end_month``; an omitted bound is open."""
    return [
        row
        for row in experience
        if (start_month is None or row.month >= start_month)
        and (end_month is None or row.month <= end_month)
    ]


# ---------------------------------------------------------------------------
# High-cost claimants
# ---------------------------------------------------------------------------
# (label, inclusive lower bound, exclusive upper bound)
AMOUNT_BANDS: tuple[tuple[str, float, float], ...] = (
    ("$50K to $200K", 50_000, 200_000),
    ("$200K to $500K", 200_000, 500_000),
    ("$1M to $2M", 1_000_000, 2_000_000),
    ("$2M to $3.5M", 2_000_000, 3_500_000),
)


class TopClaimant(BaseModel):
    member_id: str
    total_amount: float
    claim_count: int = 1
    percentage: float | None = Field(description="Share of all claimants' total, in percent")


class ClaimantAmountBand(BaseModel):
    label: str
    count: int = 0
    total_amount: float = 0.0
    average_amount: float | None = Field(default=None, description="None when the band is empty")


class CostDistribution(BaseModel):
    """Claimant spend split by place of service."""

    facility_inpatient: float = 0.0
    facility_outpatient: float = 0.0
    professional: float = 0.0
    pharmacy: float = 0.0


def claimants_frame(claimants: list[HighCostClaimant]) -> pl.DataFrame:
    return pl.DataFrame(
        [c.model_dump(include=set(_CLAIMANT_COLUMNS)) for c in claimants],
        schema=_CLAIMANT_COLUMNS,
    )


def get_top_claimants(claimants: list[HighCostClaimant], top_n: int = 10) -> list[TopClaimant]:
    """The ``top_n`` claimants by total, largest first, with their share of the overall total."""
    if not claimants:
        return []

    df = claimants_frame(claimants)
    grand_total = float(df["total"].sum())
    top = df.sort("total", descending=True, maintain_order=True).head(top_n)
    return [
        TopClaimant(
            member_id=row["member_id"],
            total_amount=row["total"],
            percentage=_share(row["total"], grand_total),
        )
        for row in top.iter_rows(named=True)
    ]


def get_claimant_amount_bands(claimants: list[HighCostClaimant]) -> list[ClaimantAmountBand]:
    """Count and total claimants per amount band.

    Every band is returned, empty or not. Totals outside all bands are not counted.
    """
    bands: list[ClaimantAmountBand] = []
    for label, low, high in AMOUNT_BANDS:
        totals = [c.total for c in claimants if low <= c.total < high]
        bands.append(
            ClaimantAmountBand(
                label=label,
                count=len(totals),
                total_amount=sum(totals),
                average_amount=sum(totals) / len(totals) if totals else None,
            )
        )
    return bands


def get_top_diagnosis_categories(
    claimants: list[HighCostClaimant], top_n: int = 5
) -> list[CategoryTotal]:
    """Claimant totals per primary diagnosis category ("Unspecified" when blank)."""
    if not claimants:
        return []

    totals = (
        claimants_frame(claimants)
        .with_columns(pl.col("primary_diagnosis_category").fill_null("Unspecified"))
        .group_by("primary_diagnosis_category", maintain_order=True)
        .agg(pl.col("total").sum())
        .sort("total", descending=True, maintain_order=True)
    )
    grand_total = float(totals["total"].sum())
    return [
        CategoryTotal(
            category=row["primary_diagnosis_category"],
            amount=row["total"],
            percentage=_share(row["total"], grand_total),
        )
        for row in totals.head(top_n).iter_rows(named=True)
    ]


def get_cost_distribution(claimants: list[HighCostClaimant]) -> CostDistribution:
    if not claimants:
        return CostDistribution()
    sums = claimants_frame(claimants).select(list(CostDistribution.model_fields)).sum()
    return CostDistribution(**sums.row(0, named=True))
