"""Processed-claim export.

Serializes ``ProcessedClaim`` lists to CSV and JSON and reads them back.
Every canonical field is written; CSV cells containing the delimiter or a
quote are quoted with embedded quotes doubled.
"""

from __future__ import annotations

import io
from pathlib import Path

from pydantic import TypeAdapter
import polars as pl

from claims_engine.schema import ProcessedClaim

_CLAIMS_ADAPTER = TypeAdapter(list[ProcessedClaim])
EXPORT_COLUMNS: tuple[str, ...] = tuple(ProcessedClaim.model_fields)


def claims_frame_for_export(claims: list[ProcessedClaim]) -> pl.DataFrame:
    records = [claim.model_dump(mode="json") for claim in claims]
    if not records:
        return pl.DataFrame(schema={col: pl.Utf8 for col in EXPORT_COLUMNS})
    return pl.DataFrame(records).select(EXPORT_COLUMNS)


def claims_to_csv(claims: list[ProcessedClaim], delimiter: str = ",") -> str:
    """Render processed claims as CSV text with a header row."""
    return claims_frame_for_export(claims).write_csv(separator=delimiter, quote_style="necessary")


def claims_from_csv(text: str, delimiter: str = ",") -> list[ProcessedClaim]:
    """Parse CSV written by ``claims_to_csv`` back into processed claims."""
    df = pl.read_csv(
        io.BytesIO(text.encode("utf-8")),
        separator=delimiter,
        infer_schema_length=0,
    )
    return [ProcessedClaim.model_validate(row) for row in df.to_dicts()]


def claims_to_json(claims: list[ProcessedClaim], indent: int | None = 2) -> str:
    return _CLAIMS_ADAPTER.dump_json(claims, indent=indent).decode("utf-8")


def claims_from_json(text: str) -> list[ProcessedClaim]:
    return _CLAIMS_ADAPTER.validate_json(text)


def save_claims(claims: list[ProcessedClaim], output_dir: Path) -> dict[str, Path]:
    """Write processed claims as CSV and JSON under ``output_dir``.

    Returns:
        Mapping of format name to the path written.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / "processed_claims.csv"
    json_path = output_dir / "processed_claims.json"
    csv_path.write_text(claims_to_csv(claims), encoding="utf-8")
    json_path.write_text(claims_to_json(claims), encoding="utf-8")
    return {"csv": csv_path, "json": json_path}
