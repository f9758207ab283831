"""Shared test fixtures for claims engine tests."""

from __future__ import annotations

import textwrap
from datetime import date
from pathlib import Path
from typing import Callable

import pytest

from claims_engine.mapper import MappingResult, generate_mappings
from claims_engine.schema import CLAIM_SCHEMA, NormalizedClaim

CLAIM_HEADERS = [
    "claimant_id",
    "claim_date",
    "service_type",
    "medical_amount",
    "pharmacy_amount",
    "provider",
]


@pytest.fixture
def claim_headers() -> list[str]:
    return list(CLAIM_HEADERS)


@pytest.fixture
def claim_rows() -> list[dict[str, str | None]]:
    """Raw claim rows keyed by canonical headers, with one blank-date row."""
    return [
        {
            "claimant_id": "A100",
            "claim_date": "01/15/2024",
            "service_type": "Inpatient",
            "medical_amount": "$150,000.00",
            "pharmacy_amount": "0",
            "provider": "General Hospital",
        },
        {
            "claimant_id": "A100",
            "claim_date": "02/03/2024",
            "service_type": "Pharmacy",
            "medical_amount": "",
            "pharmacy_amount": "$2,500",
            "provider": None,
        },
        {
            "claimant_id": "B200",
            "claim_date": "",
            "service_type": "Outpatient",
            "medical_amount": "900",
            "pharmacy_amount": "0",
            "provider": "Clinic",
        },
        {
            "claimant_id": "C300",
            "claim_date": "2024-01-28",
            "service_type": "Outpatient",
            "medical_amount": "1,200.50",
            "pharmacy_amount": "$300",
            "provider": "Clinic",
        },
    ]


@pytest.fixture
def claim_mapping(claim_headers: list[str]) -> MappingResult:
    return generate_mappings(claim_headers, CLAIM_SCHEMA)


@pytest.fixture
def make_claim() -> Callable[..., NormalizedClaim]:
    """Factory for normalized claims with sensible defaults."""

    def _make(
        claimant_id: str = "A100",
        claim_date: date = date(2024, 1, 15),
        service_type: str = "Inpatient",
        medical_amount: float = 0.0,
        pharmacy_amount: float = 0.0,
        total_amount: float | None = None,
        **extra: object,
    ) -> NormalizedClaim:
        total = medical_amount + pharmacy_amount if total_amount is None else total_amount
        return NormalizedClaim(
            id=f"{claimant_id}-{claim_date.isoformat()}",
            claimant_id=claimant_id,
            claim_date=claim_date,
            month_key=claim_date.strftime("%Y-%m"),
            service_type=service_type,
            medical_amount=medical_amount,
            pharmacy_amount=pharmacy_amount,
            total_amount=total,
            **extra,
        )

    return _make


@pytest.fixture
def claims_csv(tmp_path: Path) -> Path:
    """Write a small carrier claims CSV with readable headers and return its path."""
    csv_content = textwrap.dedent("""\
        Claimant ID,Claim Date,Service Type,Medical,Rx,Provider
        A100,01/15/2024,Inpatient,"$150,000.00",0,General Hospital
        A100,02/03/2024,Pharmacy,,"$2,500",
        B200,,Outpatient,900,0,Clinic
        C300,2024-01-28,Outpatient,"1,200.50",$300,Clinic
    """)
    csv_path = tmp_path / "claims.csv"
    csv_path.write_text(csv_content)
    return csv_path
