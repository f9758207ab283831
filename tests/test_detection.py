"""Tests for schema detection."""

from claims_engine.detection import detect_schema_type, explain_schema_type
from claims_engine.schema import (
    COST_CATEGORY_EXPECTED_COLUMNS,
    PER_CLAIMANT_REQUIRED_COLUMNS,
    SchemaType,
)


class TestDetectSchemaType:
    def test_cost_category_by_matches(self) -> None:
        columns = list(COST_CATEGORY_EXPECTED_COLUMNS[:7])
        detection = explain_schema_type(columns)
        assert detection.schema_type == SchemaType.COST_CATEGORY
        assert detection.resolved_by == "matches"
        assert detection.cost_category_matches == 7

    def test_per_claimant_by_matches(self) -> None:
        assert detect_schema_type(list(PER_CLAIMANT_REQUIRED_COLUMNS)) == SchemaType.PER_CLAIMANT

    def test_match_is_case_insensitive(self) -> None:
        assert detect_schema_type(["category", "JAN-2024"]) == SchemaType.COST_CATEGORY

    def test_tie_broken_by_category_keyword(self) -> None:
        detection = explain_schema_type(["Cost Category", "Amount"])
        assert detection.schema_type == SchemaType.COST_CATEGORY
        assert detection.resolved_by == "keyword"

    def test_tie_broken_by_claimant_keyword(self) -> None:
        assert detect_schema_type(["Claimant Name", "Paid"]) == SchemaType.PER_CLAIMANT

    def test_member_and_id_keyword(self) -> None:
        assert detect_schema_type(["Member ID", "Paid"]) == SchemaType.PER_CLAIMANT

    def test_category_keyword_checked_first(self) -> None:
        assert detect_schema_type(["Claimant", "Service Category"]) == SchemaType.COST_CATEGORY

    def test_unknown(self) -> None:
        detection = explain_schema_type(["foo", "bar"])
        assert detection.schema_type == SchemaType.UNKNOWN
        assert detection.resolved_by == "none"

    def test_empty_columns(self) -> None:
        assert detect_schema_type([]) == SchemaType.UNKNOWN
