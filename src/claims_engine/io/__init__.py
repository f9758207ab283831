"""I/O modules for reading carrier CSV exports and writing processed claims."""

from claims_engine.io.csv_reader import CsvStructureError, ParsedCsv, read_csv_file

__all__ = ["CsvStructureError", "ParsedCsv", "read_csv_file"]
