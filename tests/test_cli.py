"""Tests for the command-line interface."""

from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from claims_engine.cli import app

runner = CliRunner()


@pytest.fixture
def cost_category_csv(tmp_path: Path) -> Path:
    csv_path = tmp_path / "experience.csv"
    csv_path.write_text(
        textwrap.dedent("""\
            Category,Jan-2024,Feb-2024
            Total Hospital Medical Claims,"$1,000",2000
            Non-Hospital Medical Claims,200,300
            Rx Rebates,-50,-50
        """)
    )
    return csv_path


class TestDetect:
    def test_reports_schema(self, cost_category_csv: Path) -> None:
        result = runner.invoke(app, ["detect", "--input", str(cost_category_csv)])
        assert result.exit_code == 0
        assert "cost_category" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["detect", "--input", str(tmp_path / "nope.csv")])
        assert result.exit_code == 2


class TestMap:
    def test_all_required_mapped(self, claims_csv: Path) -> None:
        result = runner.invoke(app, ["map", "--input", str(claims_csv), "--target", "claims"])
        assert result.exit_code == 0
        assert "All required columns mapped" in result.output

    def test_missing_required_exits_nonzero(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "partial.csv"
        csv_path.write_text("Claimant ID,Claim Date\nA1,2024-01-01\n")
        result = runner.invoke(app, ["map", "--input", str(csv_path), "--target", "claims"])
        assert result.exit_code == 1


class TestProcess:
    def test_writes_outputs(self, claims_csv: Path, tmp_path: Path) -> None:
        out = tmp_path / "out"
        result = runner.invoke(app, ["process", "--input", str(claims_csv), "--output-dir", str(out)])

        assert result.exit_code == 0, result.output
        for name in (
            "processed_claims.csv",
            "processed_claims.json",
            "validation_report.json",
            "metrics.json",
            "financial_summary.json",
        ):
            assert (out / name).exists()
        metrics = json.loads((out / "metrics.json").read_text())
        assert metrics["stop_loss_count"] == 1
        summary = json.loads((out / "financial_summary.json").read_text())
        assert summary[0]["key"] == "medical_claims"

    def test_blocked_run_writes_report_and_exits(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "partial.csv"
        csv_path.write_text("Claimant ID,Claim Date,Medical,Rx\nA1,2024-01-01,10,0\n")
        out = tmp_path / "out"
        result = runner.invoke(app, ["process", "--input", str(csv_path), "--output-dir", str(out)])

        assert result.exit_code == 1
        assert (out / "validation_report.json").exists()
        assert not (out / "processed_claims.csv").exists()

    def test_allow_missing_required(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "partial.csv"
        csv_path.write_text("Claimant ID,Claim Date,Medical,Rx\nA1,2024-01-01,10,0\n")
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            [
                "process",
                "--input",
                str(csv_path),
                "--output-dir",
                str(out),
                "--allow-missing-required",
            ],
        )
        assert result.exit_code == 0, result.output
        assert (out / "processed_claims.csv").exists()

    def test_invalid_config_exits_2(self, claims_csv: Path, tmp_path: Path) -> None:
        config_path = tmp_path / "config.json"
        config_path.write_text('{"plan": {"stop_loss_reimbursement_rate": 5}}')
        result = runner.invoke(
            app, ["process", "--input", str(claims_csv), "--config", str(config_path)]
        )
        assert result.exit_code == 2


class TestFinancials:
    def test_cost_category_with_fees(self, cost_category_csv: Path, tmp_path: Path) -> None:
        fees_path = tmp_path / "fees.json"
        fees_path.write_text(json.dumps([{"month": "2024-01", "tpa_fee": 100, "network_fee": 25}]))
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            [
                "financials",
                "--input",
                str(cost_category_csv),
                "--fees",
                str(fees_path),
                "--output-dir",
                str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        metrics = json.loads((out / "financial_metrics.json").read_text())
        assert [m["month"] for m in metrics] == ["2024-01", "2024-02"]
        assert metrics[0]["total_medical_claims"] == pytest.approx(1_200)
        assert metrics[0]["rx_rebates"] == pytest.approx(-50)

        summaries = json.loads((out / "monthly_summaries.json").read_text())
        assert summaries[0]["claims"] == pytest.approx(1_200)
        assert summaries[0]["fees_total"] == pytest.approx(125)
        assert summaries[1]["fees_total"] == 0
        assert (out / "category_totals.json").exists()

    def test_malformed_fees_exits_2(self, cost_category_csv: Path, tmp_path: Path) -> None:
        fees_path = tmp_path / "fees.json"
        fees_path.write_text(json.dumps([{"month": "January", "tpa_fee": "lots"}]))
        result = runner.invoke(
            app,
            [
                "financials",
                "--input",
                str(cost_category_csv),
                "--fees",
                str(fees_path),
                "--output-dir",
                str(tmp_path / "out"),
            ],
        )
        assert result.exit_code == 2
        assert "Invalid fees file" in result.output

    def test_no_experience_rows(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "empty.csv"
        csv_path.write_text("period,type,cost\nnot a month,Medical,10\n")
        result = runner.invoke(
            app, ["financials", "--input", str(csv_path), "--output-dir", str(tmp_path / "out")]
        )
        assert result.exit_code == 1

    def test_month_range_limits_metrics(self, cost_category_csv: Path, tmp_path: Path) -> None:
        out = tmp_path / "out"
        result = runner.invoke(
            app,
            [
                "financials",
                "--input",
                str(cost_category_csv),
                "--start-month",
                "2024-02",
                "--output-dir",
                str(out),
            ],
        )

        assert result.exit_code == 0, result.output
        metrics = json.loads((out / "financial_metrics.json").read_text())
        assert [m["month"] for m in metrics] == ["2024-02"]
        by_month = json.loads((out / "monthly_categories.json").read_text())
        assert by_month == [
            {
                "month": "2024-02",
                "Total Hospital Medical Claims": 2000.0,
                "Non-Hospital Medical Claims": 300.0,
                "Rx Rebates": -50.0,
            }
        ]


class TestClaimants:
    def test_writes_summary(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "claimants.csv"
        csv_path.write_text(
            textwrap.dedent("""\
                Claimant_ID,Primary_Diagnosis,Total_Paid_YTD,Stop_Loss_Threshold,Stop_Loss_Recovery
                M-001,Oncology,"$412,000",250000,162000
                M-002,Cardiac,95500,250000,0
                M-003,,1200000,250000,950000
            """)
        )
        out = tmp_path / "out"
        result = runner.invoke(
            app, ["claimants", "--input", str(csv_path), "--top", "2", "--output-dir", str(out)]
        )

        assert result.exit_code == 0, result.output
        assert "Stop-loss hits: 2" in result.output
        summary = json.loads((out / "high_cost_claimants.json").read_text())
        assert [c["member_id"] for c in summary["top_claimants"]] == ["M-003", "M-001"]
        assert [b["count"] for b in summary["amount_bands"]] == [1, 1, 1, 0]
        assert summary["top_diagnoses"][0]["category"] == "Unspecified"
        assert summary["cost_distribution"]["pharmacy"] == 0

    def test_missing_required_exits_1(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "claimants.csv"
        csv_path.write_text("Primary_Diagnosis,Stop_Loss_Threshold\nOncology,250000\n")
        result = runner.invoke(
            app, ["claimants", "--input", str(csv_path), "--output-dir", str(tmp_path / "out")]
        )
        assert result.exit_code == 1
        assert "Missing required" in result.output
