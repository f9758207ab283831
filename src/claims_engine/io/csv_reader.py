"""Carrier CSV reader.

Reads delimited carrier exports into raw rows keyed by header:
- Encoding from the byte-order mark, else UTF-8 unless the sample holds
  bytes that are not valid UTF-8 (then Windows-1252).
- Delimiter chosen from ``, ; \\t |`` by how consistently it appears across
  the first lines of the sample.
- Parsing via Polars with every column read as text; cells are trimmed and
  empty cells become None.

Lines whose cells are all empty are not data records and are dropped. Row
numbers reported downstream count data records (1 = first record after the
header), so they are not file line numbers once a blank line or a quoted
multi-line cell appears.

Large files are read in fixed-size byte chunks. The decoder, delimiter,
header and any partial trailing record (including quoted fields that span a
chunk boundary) are carried between chunks.
"""

from __future__ import annotations

import codecs
import io
import logging
from pathlib import Path

from pydantic import BaseModel, Field
import polars as pl

from claims_engine.mapper import RawRow

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")
DELIMITER_SAMPLE_LINES = 5
ENCODING_SAMPLE_BYTES = 1024
DEFAULT_CHUNK_SIZE = 1024 * 1024


class CsvStructureError(ValueError):
    """The file cannot be read as a table: empty, no header, or no data rows."""


class ParsedCsv(BaseModel):
    """A parsed CSV file.

    ``rows[i]`` is data record ``i + 1``; all-empty lines are not counted.
    """

    headers: list[str]
    rows: list[dict[str, str | None]] = Field(default_factory=list)
    delimiter: str = ","
    encoding: str = "utf-8"


def detect_encoding(sample: bytes) -> str:
    """Guess the text encoding of a byte sample."""
    head = sample[:ENCODING_SAMPLE_BYTES]
    if head.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if head.startswith(codecs.BOM_UTF16_LE) or head.startswith(codecs.BOM_UTF16_BE):
        return "utf-16"
    if all(b < 0x80 for b in head):
        return "utf-8"
    # A multi-byte sequence may be cut at the end of the sample
    try:
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return "cp1252"
    return "utf-8"


def detect_delimiter(sample: str) -> str:
    """Pick the candidate delimiter with the most consistent per-line count.

    consistency = mean / (1 + variance), over the first lines of ``sample``.
    Defaults to a comma.
    """
    lines = sample.split("\n")[:DELIMITER_SAMPLE_LINES]
    best, best_score = ",", 0.0
    for delimiter in CANDIDATE_DELIMITERS:
        counts = [line.count(delimiter) for line in lines]
        if not counts:
            continue
        mean = sum(counts) / len(counts)
        variance = sum((c - mean) ** 2 for c in counts) / len(counts)
        score = mean / (1 + variance) if mean > 0 else 0.0
        if score > best_score:
            best, best_score = delimiter, score
    return best


def _split_complete_records(text: str) -> tuple[str, str]:
    """Split ``text`` after its last newline that is outside a quoted field."""
    in_quotes = False
    cut = -1
    for i, ch in enumerate(text):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "\n" and not in_quotes:
            cut = i
    return text[: cut + 1], text[cut + 1 :]


def _split_first_record(text: str) -> tuple[str, str]:
    in_quotes = False
    for i, ch in enumerate(text):
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "\n" and not in_quotes:
            return text[: i + 1], text[i + 1 :]
    return text, ""


def _read_table(text: str, delimiter: str) -> pl.DataFrame:
    try:
        df = pl.read_csv(
            io.BytesIO(text.encode("utf-8")),
            separator=delimiter,
            has_header=True,
            infer_schema_length=0,
            truncate_ragged_lines=True,
        )
    except Exception as e:
        raise CsvStructureError(f"Failed to parse CSV: {e}") from e
    df = df.rename({c: c.strip() for c in df.columns})
    if not df.columns:
        return df
    # Trim cells; empty cells become null and all-empty lines are dropped
    trimmed = [pl.col(c).str.strip_chars().alias(c) for c in df.columns]
    return (
        df.with_columns(trimmed)
        .with_columns(
            [pl.when(pl.col(c).str.len_chars() > 0).then(pl.col(c)).alias(c) for c in df.columns]
        )
        .filter(~pl.all_horizontal(pl.all().is_null()))
    )


class ChunkedCsvReader:
    """Incremental CSV parser fed one byte chunk at a time.

    Usage::

        reader = ChunkedCsvReader()
        for chunk in chunks:
            rows.extend(reader.feed(chunk))
        rows.extend(reader.close())
    """

    def __init__(self, encoding: str | None = None, delimiter: str | None = None) -> None:
        self.encoding = encoding
        self.delimiter = delimiter
        self.headers: list[str] | None = None
        self.row_count = 0
        self._decoder: codecs.IncrementalDecoder | None = None
        self._header_record = ""
        self._remainder = ""

    def _decode(self, chunk: bytes, final: bool = False) -> str:
        if self._decoder is None:
            if self.encoding is None:
                self.encoding = detect_encoding(chunk)
            self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        return self._decoder.decode(chunk, final=final)

    def _parse(self, body: str) -> list[RawRow]:
        if self.headers is None:
            header_record, body = _split_first_record(body)
            if not header_record.strip():
                raise CsvStructureError("CSV has no header row")
            if self.delimiter is None:
                self.delimiter = detect_delimiter(header_record + body)
            if not header_record.endswith("\n"):
                header_record += "\n"
            self._header_record = header_record
            self.headers = _read_table(self._header_record, self.delimiter).columns
            if not any(self.headers):
                raise CsvStructureError("CSV has no header row")
            logger.debug(
                "Detected encoding=%s delimiter=%r headers=%d",
                self.encoding,
                self.delimiter,
                len(self.headers),
            )
        if not body.strip():
            return []
        df = _read_table(self._header_record + body, self.delimiter or ",")
        rows = df.to_dicts()
        self.row_count += len(rows)
        return rows

    def feed(self, chunk: bytes) -> list[RawRow]:
        """Consume one chunk; return the rows completed by it."""
        text = self._remainder + self._decode(chunk)
        complete, self._remainder = _split_complete_records(text)
        if not complete.strip():
            return []
        return self._parse(complete)

    def close(self) -> list[RawRow]:
        """Flush the decoder and the trailing partial record.

        Raises:
            CsvStructureError: If the input was empty, had no header, or no data rows.
        """
        text = self._remainder + (self._decode(b"", final=True) if self._decoder else "")
        self._remainder = ""
        if self.headers is None and not text.strip():
            raise CsvStructureError("CSV file is empty")
        rows = self._parse(text) if text.strip() else []
        if self.row_count == 0:
            raise CsvStructureError("CSV has no data rows")
        return rows


def parse_csv_bytes(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ParsedCsv:
    """Parse an in-memory CSV export."""
    reader = ChunkedCsvReader()
    rows: list[RawRow] = []
    for start in range(0, len(data), chunk_size):
        rows.extend(reader.feed(data[start : start + chunk_size]))
    rows.extend(reader.close())
    return ParsedCsv(
        headers=reader.headers or [],
        rows=rows,
        delimiter=reader.delimiter or ",",
        encoding=reader.encoding or "utf-8",
    )


def read_csv_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ParsedCsv:
    """Read a CSV file from disk in ``chunk_size`` byte windows.

    Raises:
        FileNotFoundError: If the file does not exist.
        CsvStructureError: If the file is empty, has no header, or no data rows.
    """
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    reader = ChunkedCsvReader()
    rows: list[RawRow] = []
    with path.open("rb") as fh:
        while chunk := fh.read(chunk_size):
            rows.extend(reader.feed(chunk))
    rows.extend(reader.close())

    logger.debug("Read %d rows from %s", len(rows), path)
    return ParsedCsv(
        headers=reader.headers or [],
        rows=rows,
        delimiter=reader.delimiter or ",",
        encoding=reader.encoding or "utf-8",
    )
