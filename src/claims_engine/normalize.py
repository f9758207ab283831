"""Row normalization module.

Turns raw carrier cells into canonical typed values and records:
- Currency: strip ``$``, ``,``, ``%`` and whitespace; unparseable or empty -> 0.
- Percentage: same stripping, divided by 100, clamped to the field's range.
- Dates: strict calendar-aware formats; invalid or missing drops the row.

Also reshapes cost-category tables (one column per month) and long-format
experience exports into ``ExperienceRow`` records, and per-claimant
exports into ``HighCostClaimant`` records.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Iterable

from pydantic import BaseModel, Field
import polars as pl

from claims_engine.mapper import MappingResult, RawRow, RawValue, extract_columns
from claims_engine.schema import (
    CLAIM_REQUIRED_FIELDS,
    HIGH_COST_AMOUNT_FIELDS,
    PERCENT_FIELD_BOUNDS,
    ExperienceRow,
    HighCostClaimant,
    NormalizedClaim,
)

logger = logging.getLogger(__name__)

_NUMERIC_NOISE = re.compile(r"[\s$,%]")
_PROJECTION_SUFFIX = re.compile(r"[\s_-]*proj(ected)?$", re.IGNORECASE)

DATE_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%Y%m%d",
    "%m/%d/%y",
    "%Y/%m/%d",
)

MONTH_HEADER_FORMATS: tuple[str, ...] = (
    "%Y-%m",
    "%b-%Y",
    "%b %Y",
    "%b_%Y",
    "%B %Y",
    "%B-%Y",
    "%B_%Y",
    "%b-%y",
    "%m/%Y",
)


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------
def is_blank(value: RawValue) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_number(value: RawValue) -> float | None:
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _NUMERIC_NOISE.sub("", str(value))
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def is_numeric(value: RawValue) -> bool:
    """True when the cell holds a parseable finite number after stripping."""
    return _parse_number(value) is not None


def parse_currency(value: RawValue) -> float:
    """Parse a currency-like cell; anything unparseable becomes 0.0."""
    number = _parse_number(value)
    return 0.0 if number is None else number


def parse_percentage(value: RawValue, bounds: tuple[float, float] | None = None) -> float:
    """Parse a percentage cell ("12%" -> 0.12), clamped to ``bounds`` when given."""
    fraction = parse_currency(value) / 100.0
    if bounds is not None:
        low, high = bounds
        fraction = min(max(fraction, low), high)
    return fraction


def parse_date(value: RawValue) -> date | None:
    """Parse a claim date; returns None for blank or invalid input."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if is_blank(value) or isinstance(value, bool):
        return None
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def parse_month_header(label: str) -> str | None:
    """Normalize a month label (``Jan-2024``, ``January 2024``, ``2024-01``) to ``YYYY-MM``."""
    text = _PROJECTION_SUFFIX.sub("", label.strip())
    for fmt in MONTH_HEADER_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m")
        except ValueError:
            continue
    parsed = parse_date(text)
    return parsed.strftime("%Y-%m") if parsed else None


_TRUE_FLAGS = frozenset({"y", "yes", "true", "1"})
_FALSE_FLAGS = frozenset({"n", "no", "false", "0"})


def parse_flag(value: RawValue) -> bool | None:
    """Parse a Y/N style cell; None when blank or unrecognized."""
    if is_blank(value):
        return None
    text = str(value).strip().lower()
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    return None


def clean_text(value: RawValue) -> str | None:
    """Trimmed string, or None when blank."""
    if is_blank(value):
        return None
    return str(value).strip()


# ---------------------------------------------------------------------------
# Claim normalization
# ---------------------------------------------------------------------------
class NormalizationResult(BaseModel):
    """Normalized claims plus completeness tallies for the source rows."""

    claims: list[NormalizedClaim] = Field(default_factory=list)
    row_count: int = 0
    dropped_rows: list[int] = Field(
        default_factory=list, description="1-based row numbers excluded from output"
    )
    missing_required: dict[str, int] = Field(default_factory=dict)
    invalid_dates: int = 0


def _cell(row: RawRow, lookup: dict[str, str], field: str) -> RawValue:
    source = lookup.get(field)
    if source is None:
        return None
    return row.get(source)


def normalize_row(row: RawRow, mapping: MappingResult, index: int) -> NormalizedClaim | None:
    """Build one ``NormalizedClaim`` from a raw row, or None when the date is unusable.

    ``index`` is the 0-based position of the row in its file.
    """
    lookup = mapping.as_dict()
    claim_date = parse_date(_cell(row, lookup, "claim_date"))
    if claim_date is None:
        return None

    medical = parse_currency(_cell(row, lookup, "medical_amount"))
    pharmacy = parse_currency(_cell(row, lookup, "pharmacy_amount"))
    if "total_amount" in lookup:
        total = parse_currency(_cell(row, lookup, "total_amount"))
    else:
        total = medical + pharmacy

    claimant = clean_text(_cell(row, lookup, "claimant_id"))
    raw_percent = _cell(row, lookup, "percent_plan_paid")
    percent = (
        None
        if is_blank(raw_percent)
        else parse_percentage(raw_percent, PERCENT_FIELD_BOUNDS.get("percent_plan_paid"))
    )

    return NormalizedClaim(
        id=f"{claimant or 'claim'}-{index}",
        claimant_id=claimant or f"Claim-{index + 1}",
        claim_date=claim_date,
        month_key=claim_date.strftime("%Y-%m"),
        service_type=clean_text(_cell(row, lookup, "service_type")) or "Unknown",
        medical_amount=medical,
        pharmacy_amount=pharmacy,
        total_amount=total,
        icd_code=clean_text(_cell(row, lookup, "icd_code")),
        medical_desc=clean_text(_cell(row, lookup, "medical_desc")),
        layman_term=clean_text(_cell(row, lookup, "layman_term")),
        provider=clean_text(_cell(row, lookup, "provider")),
        location=clean_text(_cell(row, lookup, "location")),
        percent_plan_paid=percent,
    )


def completeness_tally(rows: list[RawRow], mapping: MappingResult) -> dict[str, int]:
    """Count rows missing each required claim field (every row when unmapped)."""
    lookup = mapping.as_dict()
    tally: dict[str, int] = {}
    for field in CLAIM_REQUIRED_FIELDS:
        if field not in lookup:
            tally[field] = len(rows)
            continue
        missing = sum(1 for row in rows if is_blank(_cell(row, lookup, field)))
        if missing:
            tally[field] = missing
    return tally


def normalize_claims(
    rows: Iterable[RawRow],
    mapping: MappingResult,
    skip_rows: set[int] | None = None,
) -> NormalizationResult:
    """Normalize every row, dropping those with unusable dates.

    Args:
        rows: Raw rows keyed by observed header.
        mapping: Mapping onto the claim schema.
        skip_rows: 1-based row numbers to exclude regardless (e.g. rows that
            failed validation).
    """
    row_list = list(rows)
    skip = skip_rows or set()
    claims: list[NormalizedClaim] = []
    dropped: list[int] = []
    invalid_dates = 0
    lookup = mapping.as_dict()

    for index, row in enumerate(row_list):
        row_number = index + 1
        if parse_date(_cell(row, lookup, "claim_date")) is None:
            invalid_dates += 1
        if row_number in skip:
            dropped.append(row_number)
            continue
        claim = normalize_row(row, mapping, index)
        if claim is None:
            dropped.append(row_number)
            continue
        claims.append(claim)

    if dropped:
        logger.warning("Dropped %d of %d rows during normalization", len(dropped), len(row_list))

    return NormalizationResult(
        claims=claims,
        row_count=len(row_list),
        dropped_rows=dropped,
        missing_required=completeness_tally(row_list, mapping),
        invalid_dates=invalid_dates,
    )


# ---------------------------------------------------------------------------
# Experience reshaping
# ---------------------------------------------------------------------------
def _as_text(value: RawValue) -> str | None:
    return None if value is None else str(value)


def experience_from_cost_table(
    rows: Iterable[RawRow],
    mapping: MappingResult,
) -> list[ExperienceRow]:
    """Unpivot a cost-category table (Category + one column per month) into experience rows.

    Only the ``Category`` binding is taken from the mapping. Every other header
    that parses as a month label (``Jan-2025``, ``1/1/2025``, ...) is a month
    column, and its month is read from that header.
    """
    row_list = list(rows)
    category_source = mapping.as_dict().get("Category")
    if not row_list or category_source is None or parse_month_header(category_source):
        return []

    month_by_column: dict[str, str] = {}
    for column in extract_columns(row_list):
        if column == category_source:
            continue
        month = parse_month_header(column)
        if month is not None:
            month_by_column[column] = month
    if not month_by_column:
        return []

    frame = pl.DataFrame(
        {
            "Category": [_as_text(row.get(category_source)) for row in row_list],
            **{col: [_as_text(row.get(col)) for row in row_list] for col in month_by_column},
        },
        schema={"Category": pl.Utf8, **{col: pl.Utf8 for col in month_by_column}},
    )
    long = (
        frame.with_columns(pl.col("Category").str.strip_chars())
        .filter(pl.col("Category").is_not_null() & (pl.col("Category") != ""))
        .unpivot(index="Category", variable_name="column", value_name="raw")
        .with_columns(
            pl.col("column").replace_strict(month_by_column, return_dtype=pl.Utf8).alias("month"),
            pl.col("raw").map_elements(parse_currency, return_dtype=pl.Float64, skip_nulls=False).alias("amount"),
        )
        .sort("month", maintain_order=True)
    )
    return [
        ExperienceRow(month=r["month"], category=r["Category"], amount=r["amount"])
        for r in long.iter_rows(named=True)
    ]


def experience_from_rows(
    rows: Iterable[RawRow],
    mapping: MappingResult,
) -> list[ExperienceRow]:
    """Coerce long-format experience rows (mapped onto the experience schema)."""
    lookup = mapping.as_dict()
    records: list[ExperienceRow] = []
    skipped = 0
    for row in rows:
        raw_month = clean_text(_cell(row, lookup, "month"))
        month = parse_month_header(raw_month) if raw_month else None
        category = clean_text(_cell(row, lookup, "category"))
        if month is None or category is None:
            skipped += 1
            continue
        premium = _cell(row, lookup, "premium")
        claims = _cell(row, lookup, "claims")
        records.append(
            ExperienceRow(
                month=month,
                category=category,
                amount=parse_currency(_cell(row, lookup, "amount")),
                premium=None if is_blank(premium) else max(parse_currency(premium), 0.0),
                claims=None if is_blank(claims) else max(parse_currency(claims), 0.0),
            )
        )
    if skipped:
        logger.warning("Skipped %d experience rows without a valid month or category", skipped)
    return records


# ---------------------------------------------------------------------------
# High-cost claimants
# ---------------------------------------------------------------------------
def high_cost_claimants_from_rows(
    rows: Iterable[RawRow],
    mapping: MappingResult,
) -> list[HighCostClaimant]:
    """Coerce per-claimant rows (mapped through the high-cost claimant schema).

    Rows without a member id are skipped. Amounts are clamped at zero. When no
    hit-stop-loss flag is given it is derived from the reimbursement, or from
    the total exceeding a non-zero deductible.
    """
    lookup = mapping.as_dict()
    claimants: list[HighCostClaimant] = []
    skipped = 0
    for row in rows:
        member_id = clean_text(_cell(row, lookup, "member_id"))
        if member_id is None:
            skipped += 1
            continue

        amounts = {
            field: max(parse_currency(_cell(row, lookup, field)), 0.0)
            for field in HIGH_COST_AMOUNT_FIELDS
        }
        hit = parse_flag(_cell(row, lookup, "hit_stop_loss"))
        if hit is None:
            deductible = amounts["stop_loss_deductible"]
            hit = amounts["estimated_stop_loss_reimbursement"] > 0 or (
                deductible > 0 and amounts["total"] > deductible
            )
        raw_percent = _cell(row, lookup, "percent_plan_paid")

        claimants.append(
            HighCostClaimant(
                member_id=member_id,
                member_type=clean_text(_cell(row, lookup, "member_type")),
                age_band=clean_text(_cell(row, lookup, "age_band")),
                primary_diagnosis_category=clean_text(
                    _cell(row, lookup, "primary_diagnosis_category")
                ),
                specific_diagnosis=clean_text(_cell(row, lookup, "specific_diagnosis")),
                top_provider=clean_text(_cell(row, lookup, "top_provider")),
                enrolled=parse_flag(_cell(row, lookup, "enrolled")),
                hit_stop_loss=hit,
                percent_plan_paid=None
                if is_blank(raw_percent)
                else parse_percentage(raw_percent, PERCENT_FIELD_BOUNDS.get("percent_plan_paid")),
                **amounts,
            )
        )
    if skipped:
        logger.warning("Skipped %d claimant rows without a member id", skipped)
    logger.debug("Read %d high-cost claimants", len(claimants))
    return claimants
