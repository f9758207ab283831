"""Configuration models for the claims engine.

Plan configuration (stop-loss terms, budgets, custom line items) and the
column-mapper options are Pydantic models. A plan configuration is an
immutable snapshot for the duration of one aggregation run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_STOP_LOSS_THRESHOLD = 100_000.0
DEFAULT_REIMBURSEMENT_RATE = 0.90
DEFAULT_MEMBER_COUNT = 1000
DEFAULT_MONTHS_PER_YEAR = 12

# Numeric claim fields a claims-sourced line item may sum
LINE_ITEM_CLAIM_FIELDS = (
    "medical_amount",
    "pharmacy_amount",
    "total_amount",
    "stop_loss_excess",
    "stop_loss_reimbursement",
    "net_paid",
)


class LineItem(BaseModel):
    """A custom revenue/expense line evaluated per month."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable key for the line")
    label: str = Field(description="Display label")
    type: Literal["revenue", "expense"] = "expense"
    source: Literal["claims", "fixed"] = Field(
        default="fixed", description="'claims' sums a claim field, 'fixed' uses amount"
    )
    field: str = Field(
        default="total_amount", description="Claim field to sum for claims-sourced items"
    )
    service_type: str | None = Field(
        default=None, description="Only sum claims of this service type"
    )
    amount: float = Field(default=0.0, description="Configured amount for fixed items")
    basis: Literal["monthly", "annual", "pepm"] = Field(
        default="monthly", description="How a fixed amount spreads across months"
    )

    @model_validator(mode="after")
    def _check_field(self) -> LineItem:
        if self.source == "claims" and self.field not in LINE_ITEM_CLAIM_FIELDS:
            raise ValueError(
                f"Line item '{self.id}' sums unknown claim field '{self.field}'; "
                f"expected one of {list(LINE_ITEM_CLAIM_FIELDS)}"
            )
        return self


class PlanConfiguration(BaseModel):
    """Plan terms applied to normalized claims for one reporting run."""

    model_config = ConfigDict(frozen=True)

    stop_loss_threshold: float | None = Field(
        default=None, ge=0, description="Per-claim specific stop-loss deductible (USD)"
    )
    stop_loss_reimbursement_rate: float | None = Field(
        default=None, ge=0, le=1, description="Fraction of excess reimbursed by the carrier"
    )
    member_count: int | None = Field(default=None, ge=0, description="Enrolled members")
    medical_budget: float = Field(default=0.0, description="Annual medical budget")
    rx_budget: float = Field(default=0.0, description="Annual pharmacy budget")
    admin_fee_monthly: float = Field(default=0.0, description="Monthly admin fee")
    rx_rebates_monthly: float = Field(default=0.0, description="Monthly Rx rebate credit")
    line_items: list[LineItem] = Field(default_factory=list)

    @property
    def threshold(self) -> float:
        if self.stop_loss_threshold is None:
            return DEFAULT_STOP_LOSS_THRESHOLD
        return self.stop_loss_threshold

    @property
    def reimbursement_rate(self) -> float:
        if self.stop_loss_reimbursement_rate is None:
            return DEFAULT_REIMBURSEMENT_RATE
        return self.stop_loss_reimbursement_rate

    @property
    def members(self) -> int:
        if self.member_count is None:
            return DEFAULT_MEMBER_COUNT
        return self.member_count


class MapperOptions(BaseModel):
    """Column mapper tuning."""

    model_config = ConfigDict(frozen=True)

    threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Fuzzy tolerance; a match needs similarity >= 1 - threshold",
    )
    include_aliases: bool = Field(default=True, description="Score against alias lists")


class EngineConfig(BaseModel):
    """Top-level configuration for a CLI run."""

    plan: PlanConfiguration = Field(default_factory=PlanConfiguration)
    mapper: MapperOptions = Field(default_factory=MapperOptions)
    chunk_size: int = Field(default=1024 * 1024, gt=0, description="Bytes read per chunk")
    output_dir: Path = Field(default=Path("output"), description="Root output directory")
    allow_missing_required: bool = Field(
        default=False, description="Process rows even when required columns are unmapped"
    )

    @classmethod
    def from_file(cls, path: Path) -> EngineConfig:
        """Load an engine config from a JSON file."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return cls.model_validate_json(path.read_text(encoding="utf-8"))
