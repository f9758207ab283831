"""Claims data validation module.

Three tiers:
- Mapping: a required column with no bound source -> one blocking error per
  field at row 0.
- Row errors: missing/invalid claim date, or a non-numeric value in a mapped
  required amount column -> row excluded and counted as invalid.
- Row warnings: suspicious but usable values (blank claimant, long IDs,
  very large amounts, malformed ICD codes).

Issues are accumulated; a bad row never stops validation of the rest.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from claims_engine.mapper import MappingResult, RawRow, RawValue
from claims_engine.normalize import (
    clean_text,
    completeness_tally,
    is_blank,
    is_numeric,
    parse_currency,
    parse_date,
)
from claims_engine.schema import CLAIM_AMOUNT_FIELDS, CLAIM_REQUIRED_FIELDS, CLAIM_SCHEMA

MAX_CLAIMANT_ID_LENGTH = 50
HIGH_AMOUNT_THRESHOLD = 1_000_000.0
ICD10_PATTERN = re.compile(r"^[A-Z]\d{2}(\.\d{1,4})?$")
ICD9_PATTERN = re.compile(r"^\d{3}(\.\d{1,2})?$")


class ValidationIssue(BaseModel):
    """A single error or warning tied to a source row."""

    row: int = Field(
        description="1-based data record (blank lines not counted); 0 for file-level issues"
    )
    field: str = Field(description="Canonical field name")
    message: str = Field(description="Human-readable description")
    value: RawValue = Field(default=None, description="Offending cell value")


class ValidationSummary(BaseModel):
    member_count: int = 0
    total_costs: float = 0.0
    data_completeness: float | None = Field(
        default=None, description="Valid rows as % of all rows; None when there are no rows"
    )
    provider_coverage: float | None = Field(
        default=None, description="% of valid rows with a provider value; None when none are valid"
    )
    missing_required: dict[str, int] = Field(default_factory=dict)
    invalid_dates: int = 0


class ValidationResult(BaseModel):
    """Result of validating one claims file against its column mapping."""

    is_valid: bool = Field(description="True if no errors were found")
    total_rows: int
    valid_rows: int = 0
    invalid_rows: int = 0
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)

    @property
    def all_issues(self) -> list[ValidationIssue]:
        return self.errors + self.warnings

    @property
    def invalid_row_numbers(self) -> set[int]:
        return {e.row for e in self.errors if e.row > 0}


def mapping_errors(mapping: MappingResult) -> list[ValidationIssue]:
    """One blocking issue per required claim field left unmapped."""
    bound = {m.target for m in mapping.mappings}
    return [
        ValidationIssue(
            row=0,
            field=field,
            message=f"Required column '{field}' is not mapped",
            value=None,
        )
        for field in CLAIM_SCHEMA.required_columns
        if field not in bound
    ]


def validate_row(
    row: RawRow,
    row_number: int,
    lookup: dict[str, str],
) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
    """Return (errors, warnings) for one raw row."""
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    def cell(field: str) -> RawValue:
        source = lookup.get(field)
        return None if source is None else row.get(source)

    # --- Errors ---
    raw_date = cell("claim_date")
    if parse_date(raw_date) is None:
        errors.append(
            ValidationIssue(
                row=row_number,
                field="claim_date",
                message="Invalid or missing claim date",
                value=raw_date,
            )
        )

    for field in CLAIM_AMOUNT_FIELDS:
        if field not in lookup:
            continue
        raw = cell(field)
        if is_blank(raw) or is_numeric(raw):
            continue
        issue = ValidationIssue(
            row=row_number,
            field=field,
            message=f"Non-numeric {field.replace('_', ' ')}",
            value=raw,
        )
        (errors if field in CLAIM_REQUIRED_FIELDS else warnings).append(issue)

    # --- Warnings ---
    if "claimant_id" in lookup:
        claimant = clean_text(cell("claimant_id"))
        if claimant is None:
            warnings.append(
                ValidationIssue(
                    row=row_number,
                    field="claimant_id",
                    message="Claimant ID is blank; a placeholder will be assigned",
                    value=cell("claimant_id"),
                )
            )
        elif len(claimant) > MAX_CLAIMANT_ID_LENGTH:
            warnings.append(
                ValidationIssue(
                    row=row_number,
                    field="claimant_id",
                    message=f"Claimant ID too long (max {MAX_CLAIMANT_ID_LENGTH} characters)",
                    value=claimant,
                )
            )

    if "service_type" in lookup and clean_text(cell("service_type")) is None:
        warnings.append(
            ValidationIssue(
                row=row_number,
                field="service_type",
                message="Service type is blank; 'Unknown' will be used",
                value=cell("service_type"),
            )
        )

    for field in CLAIM_AMOUNT_FIELDS:
        if field not in lookup:
            continue
        amount = parse_currency(cell(field))
        if amount > HIGH_AMOUNT_THRESHOLD:
            warnings.append(
                ValidationIssue(
                    row=row_number,
                    field=field,
                    message=f"Unusually high {field.replace('_', ' ')}: ${amount:,.2f}",
                    value=cell(field),
                )
            )

    icd = clean_text(cell("icd_code")) if "icd_code" in lookup else None
    if icd is not None and not (ICD10_PATTERN.match(icd) or ICD9_PATTERN.match(icd)):
        warnings.append(
            ValidationIssue(
                row=row_number,
                field="icd_code",
                message="Invalid ICD code format",
                value=icd,
            )
        )

    return errors, warnings


def validate_claims(rows: list[RawRow], mapping: MappingResult) -> ValidationResult:
    """Validate raw claim rows against a mapping onto the claim schema.

    Args:
        rows: Raw rows keyed by observed header; row 1 is the first data row.
        mapping: Result of mapping the headers onto the claim schema.

    Returns:
        ValidationResult with accumulated errors/warnings and a summary.
    """
    lookup = mapping.as_dict()
    total_rows = len(rows)
    errors = mapping_errors(mapping)
    warnings: list[ValidationIssue] = []

    valid_rows = 0
    invalid_rows = 0
    claimants: set[str] = set()
    total_costs = 0.0
    with_provider = 0
    invalid_dates = 0

    for index, row in enumerate(rows):
        row_number = index + 1
        row_errors, row_warnings = validate_row(row, row_number, lookup)
        errors.extend(row_errors)
        warnings.extend(row_warnings)

        def cell(field: str) -> RawValue:
            source = lookup.get(field)
            return None if source is None else row.get(source)

        if parse_date(cell("claim_date")) is None:
            invalid_dates += 1

        if row_errors:
            invalid_rows += 1
            continue
        valid_rows += 1

        claimants.add(clean_text(cell("claimant_id")) or f"Claim-{row_number}")
        if "total_amount" in lookup:
            total_costs += parse_currency(cell("total_amount"))
        else:
            total_costs += parse_currency(cell("medical_amount")) + parse_currency(
                cell("pharmacy_amount")
            )
        if clean_text(cell("provider")) is not None:
            with_provider += 1

    completeness = round(valid_rows / total_rows * 100, 2) if total_rows else None
    provider_coverage = round(with_provider / valid_rows * 100, 2) if valid_rows else None

    return ValidationResult(
        is_valid=not errors,
        total_rows=total_rows,
        valid_rows=valid_rows,
        invalid_rows=invalid_rows,
        errors=errors,
        warnings=warnings,
        summary=ValidationSummary(
            member_count=len(claimants),
            total_costs=total_costs,
            data_completeness=completeness,
            provider_coverage=provider_coverage,
            missing_required=completeness_tally(rows, mapping),
            invalid_dates=invalid_dates,
        ),
    )


def quality_report(result: ValidationResult) -> str:
    """Plain-text data quality report for a validation result."""
    lines = [
        "Data Quality Report",
        "===================",
        f"Total Rows: {result.total_rows:,}",
        f"Valid Rows: {result.valid_rows:,}",
        f"Invalid Rows: {result.invalid_rows:,}",
    ]
    completeness = result.summary.data_completeness
    lines.append(
        "Data Completeness: n/a" if completeness is None else f"Data Completeness: {completeness}%"
    )
    missing = {k: v for k, v in result.summary.missing_required.items() if v}
    if missing:
        lines.append("")
        lines.append("Missing Required Fields:")
        lines.extend(f"  {field}: {count:,} rows" for field, count in missing.items())
    if result.summary.invalid_dates:
        lines.append("")
        lines.append(f"Invalid Dates: {result.summary.invalid_dates:,} rows")
    return "\n".join(lines)
