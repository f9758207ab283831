"""Tests for processed-claim export."""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Callable

import pytest

from claims_engine.io.export import (
    EXPORT_COLUMNS,
    claims_from_csv,
    claims_from_json,
    claims_to_csv,
    claims_to_json,
    save_claims,
)
from claims_engine.schema import NormalizedClaim, ProcessedClaim
from claims_engine.stop_loss import apply_configuration


@pytest.fixture
def processed(make_claim: Callable[..., NormalizedClaim]) -> list[ProcessedClaim]:
    return apply_configuration(
        [
            make_claim(
                claimant_id="A100",
                medical_amount=150_000,
                provider='Mercy "North", Campus',
                icd_code="E11.9",
                percent_plan_paid=0.8,
            ),
            make_claim(claimant_id="00042", claim_date=date(2024, 2, 3), pharmacy_amount=12.34),
        ]
    )


class TestCsvExport:
    def test_header_has_every_field(self, processed: list[ProcessedClaim]) -> None:
        header = claims_to_csv(processed).splitlines()[0]
        assert header.split(",") == list(EXPORT_COLUMNS)

    def test_quotes_delimiter_and_quote_characters(self, processed: list[ProcessedClaim]) -> None:
        text = claims_to_csv(processed)
        assert '"Mercy ""North"", Campus"' in text

    def test_round_trip(self, processed: list[ProcessedClaim]) -> None:
        restored = claims_from_csv(claims_to_csv(processed))
        assert restored == processed
        assert restored[1].claimant_id == "00042"
        assert restored[1].provider is None

    def test_empty(self) -> None:
        assert claims_from_csv(claims_to_csv([])) == []


class TestJsonExport:
    def test_round_trip(self, processed: list[ProcessedClaim]) -> None:
        text = claims_to_json(processed)
        assert json.loads(text)[0]["claim_date"] == "2024-01-15"
        assert claims_from_json(text) == processed


class TestSaveClaims:
    def test_writes_both_formats(self, processed: list[ProcessedClaim], tmp_path: Path) -> None:
        paths = save_claims(processed, tmp_path / "out")
        assert paths["csv"].exists()
        assert paths["json"].exists()
        assert len(claims_from_json(paths["json"].read_text())) == 2
