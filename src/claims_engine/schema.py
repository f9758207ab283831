"""Schema definitions for carrier claims and experience data.

Provides:
- Versioned schema tables consumed by the column mapper (expected columns,
  required subsets, alias lists) for every supported target schema.
- Experience category labels and their carrier-specific aliases.
- Pydantic record models for normalized/processed claims, experience rows
  and high-cost claimants.

All tables are module-level constants built once at import and exposed
read-only (tuples and ``MappingProxyType``).
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "2024.1"

MONTH_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class SchemaType(str, Enum):
    """Known carrier export shapes."""

    COST_CATEGORY = "cost_category"
    PER_CLAIMANT = "per_claimant"
    UNKNOWN = "unknown"


class TargetSchema(BaseModel):
    """A canonical column set the mapper can bind observed headers to."""

    model_config = ConfigDict(frozen=True)

    name: str
    expected_columns: tuple[str, ...]
    required_columns: tuple[str, ...]
    aliases: Mapping[str, tuple[str, ...]] = Field(default_factory=dict)

    def aliases_for(self, column: str) -> tuple[str, ...]:
        return tuple(self.aliases.get(column, ()))


# ---------------------------------------------------------------------------
# Cost-category schema (category rows, one column per month)
# ---------------------------------------------------------------------------
_MONTH_ABBRS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def _month_aliases(abbr: str, name: str, year: int, canonical_sep: str) -> tuple[str, ...]:
    forms = [
        f"{abbr} {year}",
        f"{name} {year}",
        f"{abbr}_{year}" if canonical_sep == "-" else f"{abbr}-{year}",
        f"{name}-{year}",
    ]
    # dict.fromkeys keeps order while dropping "May 2024" duplicates
    return tuple(dict.fromkeys(forms))


COST_CATEGORY_EXPECTED_COLUMNS: tuple[str, ...] = ("Category",) + tuple(
    f"{abbr}-2024" for abbr in _MONTH_ABBRS
)
COST_CATEGORY_REQUIRED_COLUMNS: tuple[str, ...] = ("Category",) + tuple(
    f"{abbr}-2024" for abbr in _MONTH_ABBRS[:6]
)

# ---------------------------------------------------------------------------
# Per-claimant schema (one row per high-cost claimant)
# ---------------------------------------------------------------------------
PER_CLAIMANT_EXPECTED_COLUMNS: tuple[str, ...] = (
    "Claimant_ID",
    "Member_Type",
    "Age_Band",
    "Gender",
    "Primary_Diagnosis",
    "Secondary_Diagnosis",
    "ICD10_Primary",
    "ICD10_Secondary",
    "Claim_Start_Date",
    "Current_Status",
    "Total_Paid_YTD",
    "Total_Pending",
    "Total_Projected",
    "Prior_Year_Claims",
    "Provider_Network",
    "Primary_Facility",
    "Treatment_Category",
    "Stop_Loss_Threshold",
    "Amount_Over_Threshold",
    "Stop_Loss_Recovery",
    "Case_Management_Status",
    "Risk_Score",
    "Months_Active",
    *(f"{abbr}_2024" for abbr in _MONTH_ABBRS[:11]),
    "Dec_2024_Proj",
)
PER_CLAIMANT_REQUIRED_COLUMNS: tuple[str, ...] = (
    "Claimant_ID",
    "Total_Paid_YTD",
    "Jan_2024",
    "Feb_2024",
    "Mar_2024",
)

_column_aliases: dict[str, tuple[str, ...]] = {}
for _abbr, _name in zip(_MONTH_ABBRS, _MONTH_NAMES):
    _column_aliases[f"{_abbr}-2024"] = _month_aliases(_abbr, _name, 2024, "-")
    if _abbr != "Dec":
        _column_aliases[f"{_abbr}_2024"] = _month_aliases(_abbr, _name, 2024, "_")
_column_aliases.update(
    {
        "Claimant_ID": ("Member_ID", "ID", "MemberID", "ClaimantID"),
        "Total_Paid_YTD": (
            "Total Paid YTD",
            "Total_Allowed",
            "Total Allowed",
            "Member_Paid",
            "Plan_Paid",
        ),
        "Dec_2024_Proj": (
            "Dec 2024 Proj",
            "December 2024 Proj",
            "Dec-2024-Proj",
            "December-2024-Proj",
        ),
    }
)

COLUMN_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(_column_aliases)

COST_CATEGORY_SCHEMA = TargetSchema(
    name=SchemaType.COST_CATEGORY.value,
    expected_columns=COST_CATEGORY_EXPECTED_COLUMNS,
    required_columns=COST_CATEGORY_REQUIRED_COLUMNS,
    aliases=COLUMN_ALIASES,
)
PER_CLAIMANT_SCHEMA = TargetSchema(
    name=SchemaType.PER_CLAIMANT.value,
    expected_columns=PER_CLAIMANT_EXPECTED_COLUMNS,
    required_columns=PER_CLAIMANT_REQUIRED_COLUMNS,
    aliases=COLUMN_ALIASES,
)
UNKNOWN_SCHEMA = TargetSchema(
    name=SchemaType.UNKNOWN.value,
    expected_columns=(),
    required_columns=(),
)

# ---------------------------------------------------------------------------
# Claim-level schema (one row per claim line)
# ---------------------------------------------------------------------------
CLAIM_REQUIRED_FIELDS: tuple[str, ...] = (
    "claimant_id",
    "claim_date",
    "service_type",
    "medical_amount",
    "pharmacy_amount",
)
CLAIM_OPTIONAL_FIELDS: tuple[str, ...] = (
    "total_amount",
    "icd_code",
    "medical_desc",
    "layman_term",
    "provider",
    "location",
    "percent_plan_paid",
)
CLAIM_AMOUNT_FIELDS: tuple[str, ...] = ("medical_amount", "pharmacy_amount", "total_amount")

CLAIM_FIELD_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "claimant_id": ("claimant number", "claimant id", "member id", "employee id", "subscriber id"),
        "claim_date": ("claim date", "service date", "date of service", "date"),
        "service_type": ("service type", "category", "claim category", "type"),
        "medical_amount": ("medical", "medical amount", "medical paid", "paid medical"),
        "pharmacy_amount": ("rx", "pharmacy", "rx amount", "pharmacy paid"),
        "total_amount": ("total", "total paid", "amount paid", "claim total"),
        "icd_code": ("icd code", "diagnosis code", "icd10", "dx code"),
        "medical_desc": ("medical desc", "description", "medical description", "line item"),
        "layman_term": ("layman term", "simplified description", "member friendly term"),
        "provider": ("provider", "facility", "provider name"),
        "location": ("location", "state", "region"),
        "percent_plan_paid": ("% plan paid", "percent plan paid", "plan paid pct"),
    }
)

CLAIM_DISPLAY_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "claimant_id": "Claimant ID",
        "claim_date": "Claim Date",
        "service_type": "Service Type",
        "medical_amount": "Medical Amount",
        "pharmacy_amount": "Pharmacy Amount",
        "total_amount": "Total Amount",
        "icd_code": "ICD Code",
        "medical_desc": "Medical Description",
        "layman_term": "Plain Language Description",
        "provider": "Provider",
        "location": "Location",
        "percent_plan_paid": "Percent Plan Paid",
    }
)

# Fields parsed as percentages, with the valid range after scaling
PERCENT_FIELD_BOUNDS: Mapping[str, tuple[float, float]] = MappingProxyType(
    {"percent_plan_paid": (0.0, 1.0)}
)

CLAIM_SCHEMA = TargetSchema(
    name="claims",
    expected_columns=CLAIM_REQUIRED_FIELDS + CLAIM_OPTIONAL_FIELDS,
    required_columns=CLAIM_REQUIRED_FIELDS,
    aliases=CLAIM_FIELD_ALIASES,
)

# ---------------------------------------------------------------------------
# Long-format experience schema (month, category, amount)
# ---------------------------------------------------------------------------
EXPERIENCE_SCHEMA = TargetSchema(
    name="experience",
    expected_columns=("month", "category", "amount", "premium", "claims"),
    required_columns=("month", "category", "amount"),
    aliases=MappingProxyType(
        {
            "month": ("date", "period", "month_year"),
            "category": ("service_type", "claim_type", "type"),
            "amount": ("paid_amount", "claim_amount", "cost", "total"),
            "premium": ("premium_amount", "monthly_premium"),
            "claims": ("claim_count", "total_claims"),
        }
    ),
)

# ---------------------------------------------------------------------------
# High-cost claimant schema (one row per claimant, from per-claimant exports)
# ---------------------------------------------------------------------------
HIGH_COST_REQUIRED_FIELDS: tuple[str, ...] = ("member_id", "total")
HIGH_COST_OPTIONAL_FIELDS: tuple[str, ...] = (
    "member_type",
    "age_band",
    "primary_diagnosis_category",
    "specific_diagnosis",
    "facility_inpatient",
    "facility_outpatient",
    "professional",
    "pharmacy",
    "top_provider",
    "enrolled",
    "stop_loss_deductible",
    "estimated_stop_loss_reimbursement",
    "hit_stop_loss",
    "percent_plan_paid",
)
HIGH_COST_AMOUNT_FIELDS: tuple[str, ...] = (
    "total",
    "facility_inpatient",
    "facility_outpatient",
    "professional",
    "pharmacy",
    "stop_loss_deductible",
    "estimated_stop_loss_reimbursement",
)

HIGH_COST_CLAIMANT_SCHEMA = TargetSchema(
    name="high_cost_claimants",
    expected_columns=HIGH_COST_REQUIRED_FIELDS + HIGH_COST_OPTIONAL_FIELDS,
    required_columns=HIGH_COST_REQUIRED_FIELDS,
    aliases=MappingProxyType(
        {
            "member_id": ("Claimant_ID", "Member_ID", "member id", "claimant id", "MemberID"),
            "total": ("Total_Paid_YTD", "total paid ytd", "total paid", "Total_Allowed"),
            "member_type": ("Member_Type", "member type", "relationship"),
            "age_band": ("Age_Band", "age band", "age group"),
            "primary_diagnosis_category": (
                "Primary_Diagnosis",
                "primary diagnosis category",
                "diagnosis category",
            ),
            "specific_diagnosis": ("specific diagnosis", "diagnosis detail", "diagnosis description"),
            "facility_inpatient": ("facility inpatient", "inpatient facility", "ip facility"),
            "facility_outpatient": ("facility outpatient", "outpatient facility", "op facility"),
            "professional": ("professional", "professional services"),
            "pharmacy": ("pharmacy", "rx"),
            "top_provider": ("Primary_Facility", "top provider", "provider"),
            "enrolled": ("enrolled", "currently enrolled"),
            "stop_loss_deductible": (
                "Stop_Loss_Threshold",
                "stop loss deductible",
                "specific deductible",
            ),
            "estimated_stop_loss_reimbursement": (
                "Stop_Loss_Recovery",
                "estimated stop loss reimbursement",
                "stop loss reimbursement",
            ),
            "hit_stop_loss": ("hit stop loss", "stop loss hit"),
            "percent_plan_paid": ("% plan paid", "percent plan paid"),
        }
    ),
)

SCHEMAS_BY_TYPE: Mapping[SchemaType, TargetSchema] = MappingProxyType(
    {
        SchemaType.COST_CATEGORY: COST_CATEGORY_SCHEMA,
        SchemaType.PER_CLAIMANT: PER_CLAIMANT_SCHEMA,
        SchemaType.UNKNOWN: UNKNOWN_SCHEMA,
    }
)


def resolve_schema(schema: SchemaType | TargetSchema) -> TargetSchema:
    """Return the target table for a schema type (or pass a table through)."""
    if isinstance(schema, TargetSchema):
        return schema
    return SCHEMAS_BY_TYPE[schema]


# ---------------------------------------------------------------------------
# Experience categories
# Canonical key -> carrier labels, in precedence order. For a given month the
# first label carrying data is used.
# ---------------------------------------------------------------------------
EXPERIENCE_CATEGORY_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "domestic_hospital": (
            "Domestic Medical Facility Claims (IP/OP)",
            "Domestic Medical Facility Claims (Inpatient/Outpatient)",
        ),
        "non_domestic_hospital": (
            "Non-Domestic Medical Claims (IP/OP)",
            "Non-Domestic Medical Claims (Inpatient/Outpatient)",
        ),
        "total_hospital": ("Total Hospital Medical Claims",),
        "non_hospital": ("Non-Hospital Medical Claims",),
        "uc_adjustment": ("UC Claims Settlement Adjustment", "Adjustments"),
        "runout": ("Run Out Claims",),
        "eba_paid": ("Medical Claims Paid via EBA",),
        "rx_rebates": ("Rx Rebates", "Total Pharmacy Rebates"),
        "stop_loss_fees": ("Total Stop Loss Fees",),
        "stop_loss_reimbursement": ("Stop Loss Reimbursement", "Stop Loss Reimbursements"),
        "consulting": ("Consulting", "Consulting Fees"),
        "tpa_admin": ("TPA Claims/COBRA Administration Fee (PEPM)", "TPA/COBRA Admin Fee"),
        "network_fee": ("Anthem JAA", "Anthem Network Fee"),
        "pharmacy_coalition_fee": ("KPPC Fees", "Keenan Pharmacy Coalition Fee"),
        "pharmacy_management_fee": ("KPCM Fees", "Keenan Pharmacy Management Fee"),
        "optional_rx_programs": ("Optional ESI Programs", "Other Optional Express Scripts Fees"),
        "ee_count": ("EE COUNT (Active & COBRA)", "Employee Count (Active + COBRA)"),
        "member_count": ("MEMBER COUNT", "Member Count"),
        "incurred_target_pepm": ("INCURRED TARGET PEPM", "Incurred Target PEPM"),
        "budget_pepm": (
            "2025–2026 PEPM BUDGET (with 0% Margin)",
            "2025-2026 PEPM BUDGET (with 0% Margin)",
            "PEPM Budget",
        ),
    }
)

ADMIN_FEE_CATEGORIES: tuple[str, ...] = (
    "consulting",
    "tpa_admin",
    "network_fee",
    "pharmacy_coalition_fee",
    "pharmacy_management_fee",
    "optional_rx_programs",
    "stop_loss_fees",
)

# A category counts toward Rx claims when it mentions pharmacy claims, or both rx and claims
RX_CLAIMS_PATTERN = r"(?i)pharmacy claims|(rx.*claims|claims.*rx)"

CLAIMS_KEYWORD = "claim"


# ---------------------------------------------------------------------------
# Pydantic record models
# ---------------------------------------------------------------------------
class NormalizedClaim(BaseModel):
    """A single claim row coerced into canonical types."""

    model_config = ConfigDict(frozen=True)

    id: str
    claimant_id: str
    claim_date: date
    month_key: str = Field(pattern=MONTH_KEY_PATTERN)
    service_type: str
    medical_amount: float
    pharmacy_amount: float
    total_amount: float
    icd_code: str | None = None
    medical_desc: str | None = None
    layman_term: str | None = None
    provider: str | None = None
    location: str | None = None
    percent_plan_paid: float | None = None


class ProcessedClaim(NormalizedClaim):
    """A normalized claim with stop-loss fields derived from plan configuration."""

    stop_loss_triggered: bool
    stop_loss_excess: float = Field(ge=0)
    stop_loss_reimbursement: float = Field(ge=0)
    net_paid: float


class ExperienceRow(BaseModel):
    """One (month, category) amount from an experience export."""

    model_config = ConfigDict(frozen=True)

    month: str = Field(pattern=MONTH_KEY_PATTERN, description="YYYY-MM")
    category: str = Field(min_length=1)
    amount: float = Field(description="Rebates and reimbursements are negative")
    premium: float | None = Field(default=None, ge=0)
    claims: float | None = Field(default=None, ge=0)


class FeesRow(BaseModel):
    """Fixed fees booked against a month."""

    model_config = ConfigDict(frozen=True)

    month: str = Field(pattern=MONTH_KEY_PATTERN)
    tpa_fee: float = Field(default=0.0, ge=0)
    network_fee: float = Field(default=0.0, ge=0)
    stop_loss_premium: float = Field(default=0.0, ge=0)
    other_fees: float = Field(default=0.0, ge=0)

    @property
    def total(self) -> float:
        return self.tpa_fee + self.network_fee + self.stop_loss_premium + self.other_fees


class HighCostClaimant(BaseModel):
    """One claimant row from a per-claimant high-cost export."""

    model_config = ConfigDict(frozen=True)

    member_id: str
    member_type: str | None = None
    age_band: str | None = None
    primary_diagnosis_category: str | None = None
    specific_diagnosis: str | None = None
    total: float = Field(ge=0, description="Total paid for the claimant")
    facility_inpatient: float = Field(default=0.0, ge=0)
    facility_outpatient: float = Field(default=0.0, ge=0)
    professional: float = Field(default=0.0, ge=0)
    pharmacy: float = Field(default=0.0, ge=0)
    top_provider: str | None = None
    enrolled: bool | None = None
    stop_loss_deductible: float = Field(default=0.0, ge=0)
    estimated_stop_loss_reimbursement: float = Field(default=0.0, ge=0)
    hit_stop_loss: bool = False
    percent_plan_paid: float | None = None
