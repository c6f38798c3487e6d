"""Tests for the per-grid data-quality analyzer."""

from datetime import date

from sheet_cleaner.models import IssueType, Severity
from sheet_cleaner.services.quality_analyzer import (
    QualityAnalyzer,
    has_whitespace_defect,
    is_multi_value,
    missing_severity,
    runtime_type,
)
from sheet_cleaner.workbook import Sheet


def _issues_of(issues, issue_type):
    return [i for i in issues if i.type is issue_type]


class TestHelpers:
    def test_runtime_type(self) -> None:
        assert runtime_type(True) == "boolean"
        assert runtime_type(3) == "number"
        assert runtime_type(2.5) == "number"
        assert runtime_type(date(2024, 1, 1)) == "date"
        assert runtime_type("x") == "string"

    def test_whitespace_defect(self) -> None:
        assert has_whitespace_defect(" a")
        assert has_whitespace_defect("a  b")
        assert not has_whitespace_defect("a b")

    def test_multi_value_needs_two_tokens(self) -> None:
        assert is_multi_value("red, blue")
        assert is_multi_value("a;b|c")
        assert not is_multi_value("red,")
        assert not is_multi_value("plain")

    def test_missing_severity_thresholds(self) -> None:
        assert missing_severity(4, 10) is Severity.HIGH
        assert missing_severity(2, 10) is Severity.MEDIUM
        assert missing_severity(1, 10) is Severity.LOW


class TestQualityAnalyzer:
    def test_empty_grid_has_no_issues(self) -> None:
        assert QualityAnalyzer("S").analyze(Sheet("S", ["A"], [])) == []

    def test_missing_values(self) -> None:
        grid = Sheet("S", ["Age"], [[1], [None], ["  "], [4]])

        issues = QualityAnalyzer("S").analyze(grid)

        missing = _issues_of(issues, IssueType.MISSING_VALUES)
        assert len(missing) == 1
        assert missing[0].count == 2
        assert missing[0].severity is Severity.HIGH
        assert missing[0].column == "Age"
        assert missing[0].examples == ["1", "4"]

    def test_duplicates_counts_extra_copies(self) -> None:
        grid = Sheet("S", ["A", "B"], [[1, "x"], [2, "y"], [1, "x"], [1, "x"]])

        issues = QualityAnalyzer("S").analyze(grid)

        duplicates = _issues_of(issues, IssueType.DUPLICATES)
        assert len(duplicates) == 1
        assert duplicates[0].count == 2
        assert duplicates[0].column is None

    def test_mixed_types(self) -> None:
        grid = Sheet("S", ["Amount"], [[1], ["two"], [3.5]])

        issues = QualityAnalyzer("S").analyze(grid)

        mismatch = _issues_of(issues, IssueType.DATA_TYPE_MISMATCH)
        assert len(mismatch) == 1
        assert "number, string" in mismatch[0].description

    def test_whitespace_and_multi_value(self) -> None:
        grid = Sheet("S", ["Tags"], [[" red "], ["red, blue"], ["green"]])

        issues = QualityAnalyzer("S").analyze(grid)

        assert _issues_of(issues, IssueType.WHITESPACE)[0].count == 1
        inconsistent = _issues_of(issues, IssueType.INCONSISTENT_FORMAT)
        assert inconsistent[0].examples == ["red, blue"]

    def test_invalid_emails(self) -> None:
        grid = Sheet(
            "S", ["Email"], [["a@example.com"], ["not-an-email"], ["b@example.org"]]
        )

        issues = QualityAnalyzer("S").analyze(grid)

        inconsistent = _issues_of(issues, IssueType.INCONSISTENT_FORMAT)
        assert len(inconsistent) == 1
        assert inconsistent[0].examples == ["not-an-email"]

    def test_scope_label_and_sheet_are_attached(self) -> None:
        grid = Sheet("People", ["Age"], [[None], [3]])

        issues = QualityAnalyzer("People", scope="s_People_chunk_0").analyze(grid)

        assert issues[0].sheet == "People"
        assert issues[0].description.endswith("(s_People_chunk_0)")
        assert issues[0].scope == "s_People_chunk_0"

    def test_sorted_high_first(self) -> None:
        grid = Sheet(
            "S",
            ["A", "B"],
            [[" x", None], ["y", None], ["z", None], ["w", 1]],
        )

        issues = QualityAnalyzer("S").analyze(grid)

        ranks = [i.severity.rank for i in issues]
        assert ranks == sorted(ranks, reverse=True)
        assert issues[0].type is IssueType.MISSING_VALUES

    def test_clean_grid_has_no_issues(self) -> None:
        grid = Sheet("S", ["Name", "Age"], [["Alice", 30], ["Bob", 41]])
        assert QualityAnalyzer("S").analyze(grid) == []
