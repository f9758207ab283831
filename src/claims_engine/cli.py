"""CLI entrypoint for the claims engine.

Commands:
  detect      - Classify a carrier CSV's header set
  map         - Show how a CSV's columns bind to a target schema
  process     - Validate, normalize, apply stop-loss and aggregate a claims CSV
  financials  - Compute monthly plan financials from an experience CSV
  claimants   - Summarize a per-claimant high-cost export
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from claims_engine.config import EngineConfig
from claims_engine.io.csv_reader import ParsedCsv, read_csv_file

app = typer.Typer(
    name="claims-engine",
    help="Carrier claims normalization: column mapping, validation, stop-loss and financials.",
    add_completion=False,
)
console = Console()


class MapTarget(str, Enum):
    AUTO = "auto"
    CLAIMS = "claims"
    COST_CATEGORY = "cost_category"
    PER_CLAIMANT = "per_claimant"
    EXPERIENCE = "experience"
    HIGH_COST = "high_cost"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Carrier claims normalization and aggregation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _get_config(config_file: Path | None) -> EngineConfig:
    """Load the engine config file, or defaults when none is given."""
    if config_file is None:
        return EngineConfig()
    try:
        return EngineConfig.from_file(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗ Invalid config: {e}[/]")
        raise typer.Exit(code=2) from e


def _load_csv(path: Path, chunk_size: int) -> ParsedCsv:
    try:
        return read_csv_file(path, chunk_size=chunk_size)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗ {e}[/]")
        raise typer.Exit(code=2) from e


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str))


@app.command()
def detect(
    input_file: Path = typer.Option(..., "--input", help="Carrier CSV file"),
) -> None:
    """Detect which carrier export shape a CSV file has."""
    from claims_engine.detection import explain_schema_type

    parsed = _load_csv(input_file, EngineConfig().chunk_size)
    detection = explain_schema_type(parsed.headers)

    console.print(f"[bold blue]Schema: {detection.schema_type.value}[/] ({detection.resolved_by})")
    console.print(
        f"  cost_category matches: {detection.cost_category_matches}, "
        f"per_claimant matches: {detection.per_claimant_matches}"
    )
    console.print(
        f"  {len(parsed.rows):,} rows, delimiter={parsed.delimiter!r}, encoding={parsed.encoding}"
    )


@app.command("map")
def map_columns(
    input_file: Path = typer.Option(..., "--input", help="Carrier CSV file"),
    target: MapTarget = typer.Option(MapTarget.AUTO, help="Target schema; 'auto' detects it"),
    threshold: float | None = typer.Option(None, help="Fuzzy tolerance (0-1)"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
) -> None:
    """Show the column mapping for a CSV file."""
    from claims_engine.config import MapperOptions
    from claims_engine.detection import detect_schema_type
    from claims_engine.mapper import generate_mappings
    from claims_engine.schema import (
        CLAIM_SCHEMA,
        EXPERIENCE_SCHEMA,
        HIGH_COST_CLAIMANT_SCHEMA,
        SchemaType,
    )

    config = _get_config(config_file)
    parsed = _load_csv(input_file, config.chunk_size)

    if target is MapTarget.AUTO:
        schema = detect_schema_type(parsed.headers)
    elif target is MapTarget.CLAIMS:
        schema = CLAIM_SCHEMA
    elif target is MapTarget.EXPERIENCE:
        schema = EXPERIENCE_SCHEMA
    elif target is MapTarget.HIGH_COST:
        schema = HIGH_COST_CLAIMANT_SCHEMA
    else:
        schema = SchemaType(target.value)

    options = config.mapper
    if threshold is not None:
        options = MapperOptions(threshold=threshold, include_aliases=options.include_aliases)
    result = generate_mappings(parsed.headers, schema, options)

    table = Table(title=f"Column mapping (confidence {result.confidence:.2f})")
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Confidence", justify="right")
    table.add_column("Required")
    for m in result.mappings:
        table.add_row(
            m.source,
            m.target,
            f"{m.confidence:.2f}",
            "yes" if m.is_required else "",
        )
    console.print(table)

    if result.extra_columns:
        console.print(f"  Unmapped columns: {', '.join(result.extra_columns)}")
    if result.missing_required:
        console.print(f"[red]✗ Missing required: {', '.join(result.missing_required)}[/]")
        raise typer.Exit(code=1)
    console.print("[green]✓ All required columns mapped[/]")


@app.command()
def process(
    input_file: Path = typer.Option(..., "--input", help="Claims CSV file"),
    output_dir: Path | None = typer.Option(None, help="Output directory"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
    allow_missing_required: bool = typer.Option(
        False, help="Process rows even when required columns are unmapped"
    ),
) -> None:
    """Validate, normalize, apply stop-loss and aggregate a claims CSV."""
    from claims_engine.io.export import save_claims
    from claims_engine.pipeline import run_claims_pipeline
    from claims_engine.stop_loss import build_financial_summary_rows
    from claims_engine.validate import quality_report

    config = _get_config(config_file)
    if allow_missing_required:
        config = config.model_copy(update={"allow_missing_required": True})
    out_dir = output_dir or config.output_dir

    console.print(f"[bold blue]Processing {input_file}...[/]")
    parsed = _load_csv(input_file, config.chunk_size)
    result = run_claims_pipeline(parsed.headers, parsed.rows, config)

    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "validation_report.json").write_text(result.validation.model_dump_json(indent=2))
    console.print(quality_report(result.validation))

    if result.blocked:
        console.print(
            f"[red]✗ Required columns not mapped: {', '.join(result.mapping.missing_required)}[/]"
        )
        raise typer.Exit(code=1)

    paths = save_claims(result.claims, out_dir)
    (out_dir / "metrics.json").write_text(result.metrics.model_dump_json(indent=2))
    summary_rows = build_financial_summary_rows(
        result.metrics, config.plan, result.line_items, result.months
    )
    _write_json(out_dir / "financial_summary.json", [r.model_dump() for r in summary_rows])

    metrics = result.metrics
    console.print(
        f"[green]✓ {len(result.claims):,} claims processed "
        f"({result.validation.invalid_rows:,} rows excluded) → {paths['csv']}[/]"
    )
    console.print(
        f"  Total: ${metrics.total_claims:,.2f}  Net paid: ${metrics.net_paid:,.2f}  "
        f"Stop-loss hits: {metrics.stop_loss_count}"
    )


@app.command()
def financials(
    input_file: Path = typer.Option(..., "--input", help="Experience or cost-category CSV"),
    fees_file: Path | None = typer.Option(None, "--fees", help="JSON list of monthly fees"),
    output_dir: Path | None = typer.Option(None, help="Output directory"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
    start_month: str | None = typer.Option(None, help="First month to include (YYYY-MM)"),
    end_month: str | None = typer.Option(None, help="Last month to include (YYYY-MM)"),
) -> None:
    """Compute monthly plan financials and loss ratios."""
    from pydantic import TypeAdapter

    from claims_engine.aggregation import (
        aggregate_by_category,
        aggregate_by_month,
        filter_by_date_range,
    )
    from claims_engine.detection import detect_schema_type
    from claims_engine.financials import (
        calculate_totals,
        compute_financial_metrics,
        compute_monthly_summaries,
    )
    from claims_engine.mapper import generate_mappings
    from claims_engine.normalize import experience_from_cost_table, experience_from_rows
    from claims_engine.schema import EXPERIENCE_SCHEMA, FeesRow, SchemaType

    config = _get_config(config_file)
    out_dir = output_dir or config.output_dir

    console.print(f"[bold blue]Computing financials from {input_file}...[/]")
    parsed = _load_csv(input_file, config.chunk_size)

    if detect_schema_type(parsed.headers) is SchemaType.COST_CATEGORY:
        mapping = generate_mappings(parsed.headers, SchemaType.COST_CATEGORY, config.mapper)
        experience = experience_from_cost_table(parsed.rows, mapping)
    else:
        mapping = generate_mappings(parsed.headers, EXPERIENCE_SCHEMA, config.mapper)
        experience = experience_from_rows(parsed.rows, mapping)
    experience = filter_by_date_range(experience, start_month, end_month)

    if not experience:
        console.print("[red]✗ No experience rows found in the file or month range[/]")
        raise typer.Exit(code=1)

    fees_by_month: dict[str, FeesRow] = {}
    if fees_file is not None:
        if not fees_file.exists():
            console.print(f"[red]✗ Fees file not found: {fees_file}[/]")
            raise typer.Exit(code=2)
        try:
            fees = TypeAdapter(list[FeesRow]).validate_json(fees_file.read_text())
        except ValueError as e:
            console.print(f"[red]✗ Invalid fees file: {e}[/]")
            raise typer.Exit(code=2) from e
        fees_by_month = {f.month: f for f in fees}

    metrics = compute_financial_metrics(experience)
    summaries = compute_monthly_summaries(experience, fees_by_month)
    totals = calculate_totals(summaries)

    _write_json(out_dir / "financial_metrics.json", [m.model_dump() for m in metrics])
    _write_json(out_dir / "monthly_summaries.json", [s.model_dump() for s in summaries])
    _write_json(
        out_dir / "category_totals.json",
        [c.model_dump() for c in aggregate_by_category(experience)],
    )
    _write_json(out_dir / "monthly_categories.json", aggregate_by_month(experience))

    console.print(f"[green]✓ {len(metrics)} months → {out_dir / 'financial_metrics.json'}[/]")
    console.print(
        f"  Claims: ${totals.claims:,.2f}  Premium: ${totals.premium:,.2f}  "
        f"Total cost: ${totals.total_cost:,.2f}"
    )


@app.command()
def claimants(
    input_file: Path = typer.Option(..., "--input", help="Per-claimant high-cost CSV"),
    output_dir: Path | None = typer.Option(None, help="Output directory"),
    top: int = typer.Option(10, min=1, help="Number of top claimants to report"),
    config_file: Path | None = typer.Option(None, "--config", help="JSON config file"),
) -> None:
    """Summarize high-cost claimants: top members, amount bands, diagnoses and cost split."""
    from claims_engine.aggregation import (
        get_claimant_amount_bands,
        get_cost_distribution,
        get_top_claimants,
        get_top_diagnosis_categories,
    )
    from claims_engine.mapper import generate_mappings
    from claims_engine.normalize import high_cost_claimants_from_rows
    from claims_engine.schema import HIGH_COST_CLAIMANT_SCHEMA

    config = _get_config(config_file)
    out_dir = output_dir or config.output_dir

    console.print(f"[bold blue]Summarizing claimants from {input_file}...[/]")
    parsed = _load_csv(input_file, config.chunk_size)
    mapping = generate_mappings(parsed.headers, HIGH_COST_CLAIMANT_SCHEMA, config.mapper)
    if mapping.missing_required:
        console.print(f"[red]✗ Missing required: {', '.join(mapping.missing_required)}[/]")
        raise typer.Exit(code=1)

    members = high_cost_claimants_from_rows(parsed.rows, mapping)
    if not members:
        console.print("[red]✗ No claimant rows could be read from the file[/]")
        raise typer.Exit(code=1)

    top_claimants = get_top_claimants(members, top)
    _write_json(
        out_dir / "high_cost_claimants.json",
        {
            "top_claimants": [c.model_dump() for c in top_claimants],
            "amount_bands": [b.model_dump() for b in get_claimant_amount_bands(members)],
            "top_diagnoses": [d.model_dump() for d in get_top_diagnosis_categories(members)],
            "cost_distribution": get_cost_distribution(members).model_dump(),
        },
    )

    hits = sum(1 for m in members if m.hit_stop_loss)
    console.print(
        f"[green]✓ {len(members):,} claimants → {out_dir / 'high_cost_claimants.json'}[/]"
    )
    console.print(
        f"  Largest: {top_claimants[0].member_id} (${top_claimants[0].total_amount:,.2f})  "
        f"Stop-loss hits: {hits}"
    )


if __name__ == "__main__":
    app()
