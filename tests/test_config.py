"""Tests for configuration models."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from claims_engine.config import (
    DEFAULT_MEMBER_COUNT,
    DEFAULT_REIMBURSEMENT_RATE,
    DEFAULT_STOP_LOSS_THRESHOLD,
    EngineConfig,
    LineItem,
    PlanConfiguration,
)


class TestPlanConfiguration:
    def test_defaults_when_unset(self) -> None:
        plan = PlanConfiguration()
        assert plan.threshold == DEFAULT_STOP_LOSS_THRESHOLD == 100_000
        assert plan.reimbursement_rate == DEFAULT_REIMBURSEMENT_RATE == 0.90
        assert plan.members == DEFAULT_MEMBER_COUNT == 1000

    def test_explicit_zero_is_kept(self) -> None:
        plan = PlanConfiguration(stop_loss_threshold=0, stop_loss_reimbursement_rate=0)
        assert plan.threshold == 0
        assert plan.reimbursement_rate == 0

    def test_rate_must_be_fraction(self) -> None:
        with pytest.raises(ValidationError):
            PlanConfiguration(stop_loss_reimbursement_rate=1.5)

    def test_frozen(self) -> None:
        plan = PlanConfiguration()
        with pytest.raises(ValidationError):
            plan.member_count = 5  # type: ignore[misc]


class TestLineItem:
    def test_unknown_claim_field_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown claim field"):
            LineItem(id="x", label="X", source="claims", field="claimant_id")

    def test_fixed_item_ignores_field(self) -> None:
        item = LineItem(id="x", label="X", amount=10, basis="annual")
        assert item.source == "fixed"


class TestEngineConfig:
    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "engine.json"
        path.write_text(
            json.dumps(
                {
                    "plan": {"stop_loss_threshold": 50000, "member_count": 250},
                    "mapper": {"threshold": 0.3},
                    "allow_missing_required": True,
                }
            )
        )
        config = EngineConfig.from_file(path)
        assert config.plan.threshold == 50000
        assert config.plan.members == 250
        assert config.mapper.threshold == 0.3
        assert config.allow_missing_required

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            EngineConfig.from_file(tmp_path / "nope.json")
