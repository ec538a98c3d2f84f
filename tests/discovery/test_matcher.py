"""Tests for subject-column matching."""

from __future__ import annotations

from subject_rights.discovery.matcher import (
    SUBJECT_PATTERNS,
    match_columns,
    patterns_for,
    score_column,
)


class TestScoreColumn:
    """Tests for scoring one column name against one pattern."""

    def test_exact_match_scores_one(self) -> None:
        assert score_column("email", "email") == 1.0

    def test_exact_match_is_case_insensitive(self) -> None:
        assert score_column("EMAIL", "email") == 1.0

    def test_prefix_scores_point_nine(self) -> None:
        assert score_column("email_verified", "email") == 0.9

    def test_suffix_scores_point_nine(self) -> None:
        assert score_column("primary_email", "email") == 0.9

    def test_substring_scores_point_eight(self) -> None:
        assert score_column("backup_email_2", "email") == 0.8

    def test_unrelated_scores_zero(self) -> None:
        assert score_column("created_at", "email") == 0.0


class TestMatchColumns:
    """Tests for matching a table's columns against a subject type."""

    def test_unrelated_columns_excluded(self) -> None:
        """Test that columns matching no pattern are not returned."""
        matches = match_columns("email", [("email", "varchar"), ("created_at", "timestamp")])

        assert [m.column_name for m in matches] == ["email"]
        assert matches[0].relevance == 1.0
        assert matches[0].data_type == "varchar"

    def test_first_matching_pattern_wins(self) -> None:
        """Test that 'customer_id' for user_id matches 'id' (suffix) before 'customer_id'."""
        matches = match_columns("user_id", [("customer_id", "bigint")])

        assert len(matches) == 1
        assert matches[0].pattern == "id"
        assert matches[0].relevance == 0.9

    def test_exact_pattern_earlier_in_list(self) -> None:
        matches = match_columns("user_id", [("user_id", "bigint")])
        assert matches[0].relevance == 1.0
        assert matches[0].pattern == "user_id"

    def test_duplicate_columns_keep_first(self) -> None:
        """Test that a duplicate column name (any case) matches only once."""
        matches = match_columns(
            "email",
            [("email", "varchar"), ("EMAIL", "text"), ("email", "varchar")],
        )

        assert len(matches) == 1
        assert matches[0].data_type == "varchar"

    def test_input_order_preserved(self) -> None:
        matches = match_columns(
            "phone",
            [("mobile", "varchar"), ("id", "int"), ("phone_number", "varchar")],
        )
        assert [m.column_name for m in matches] == ["mobile", "phone_number"]

    def test_unknown_subject_type_uses_itself_as_pattern(self) -> None:
        matches = match_columns(
            "loyalty_number",
            [("loyalty_number", "varchar"), ("email", "varchar")],
        )

        assert [m.column_name for m in matches] == ["loyalty_number"]
        assert matches[0].relevance == 1.0

    def test_empty_input_returns_empty(self) -> None:
        assert match_columns("email", []) == []

    def test_relevance_always_in_unit_interval(self) -> None:
        columns = [(name, "varchar") for names in SUBJECT_PATTERNS.values() for name in names]
        for subject_type in SUBJECT_PATTERNS:
            for match in match_columns(subject_type, columns):
                assert 0.0 < match.relevance <= 1.0


class TestPatternsFor:
    """Tests for the subject type pattern table."""

    def test_known_types(self) -> None:
        assert patterns_for("email")[0] == "email"
        assert "member_id" in patterns_for("user_id")
        assert "cell_phone" in patterns_for("phone")

    def test_lookup_is_case_insensitive(self) -> None:
        assert patterns_for("EMAIL") == SUBJECT_PATTERNS["email"]
