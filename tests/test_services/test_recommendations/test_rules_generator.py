"""Tests for the rule-based recommendation generator and shared helpers."""

import pytest

from sheet_cleaner.models import (
    CreateLookupTableGlobal,
    DataQualityIssue,
    FillMissing,
    FixDataTypes,
    IssueType,
    Priority,
    RecommendationCategory,
    RemoveDuplicates,
    RemoveDuplicatesGlobal,
    Severity,
    SplitMultiValue,
    StandardizeFormat,
    TrimWhitespace,
)
from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    cross_chunk_recommendations,
    issue_batches,
    prioritize,
)
from sheet_cleaner.services.recommendations.rules import (
    RuleBasedRecommendationGenerator,
    format_for_column,
    issue_score,
    mostly,
)
from sheet_cleaner.workbook import ChunkMetadata


def _issue(
    issue_type: IssueType,
    column: str | None = "Col",
    examples: list[str] | None = None,
    severity: Severity = Severity.MEDIUM,
    count: int = 2,
) -> DataQualityIssue:
    return DataQualityIssue(
        type=issue_type,
        severity=severity,
        sheet="People",
        column=column,
        count=count,
        description="issue",
        examples=examples or [],
    )


class TestRuleBasedGenerator:
    """Tests for RuleBasedRecommendationGenerator.generate."""

    def test_ranked_issues_then_cross_chunk(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        recommendations = RuleBasedRecommendationGenerator().generate(issues, context)

        assert [r.id for r in recommendations] == [
            "rules_s1_1",
            "rules_s1_2",
            "rules_s1_3",
            "cross_chunk_dedup_s1_People",
            "cross_chunk_normalize_s1_People",
        ]
        assert isinstance(recommendations[0].transformation, FillMissing)
        assert recommendations[0].transformation.method == "median"
        assert isinstance(recommendations[1].transformation, RemoveDuplicates)
        assert isinstance(recommendations[2].transformation, TrimWhitespace)
        assert all(r.source == "rules" for r in recommendations)

    def test_priority_and_confidence(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        by_id = {
            r.id: r for r in RuleBasedRecommendationGenerator().generate(issues, context)
        }

        fill = by_id["rules_s1_1"]
        assert fill.priority is Priority.HIGH
        assert fill.confidence == 90
        assert by_id["rules_s1_2"].confidence == 95
        assert by_id["rules_s1_3"].priority is Priority.LOW

    def test_affected_chunks_limited_to_sheet(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        fill = RuleBasedRecommendationGenerator().generate(issues, context)[0]

        assert fill.affected_chunks == ["s1_People_chunk_0", "s1_People_chunk_1"]
        assert fill.can_process_in_parallel is True

    def test_respects_cap(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        recommendations = RuleBasedRecommendationGenerator(max_recommendations=2).generate(
            issues, context
        )
        assert len(recommendations) == 2

    def test_no_issues_still_yields_cross_chunk(self, context: RecommendationContext) -> None:
        recommendations = RuleBasedRecommendationGenerator().generate([], context)

        assert [r.step for r in recommendations] == [100, 101]


class TestTransformationFor:
    @pytest.fixture
    def generator(self) -> RuleBasedRecommendationGenerator:
        return RuleBasedRecommendationGenerator()

    def test_text_missing_values_use_mode(
        self, generator: RuleBasedRecommendationGenerator
    ) -> None:
        t = generator.transformation_for(
            _issue(IssueType.MISSING_VALUES, "City", ["Boston", "Austin"])
        )
        assert isinstance(t, FillMissing)
        assert t.method == "mode"

    def test_email_format(self, generator: RuleBasedRecommendationGenerator) -> None:
        t = generator.transformation_for(
            _issue(IssueType.INCONSISTENT_FORMAT, "Email", ["a, b", "c; d"])
        )
        assert isinstance(t, StandardizeFormat)
        assert t.format == "email"

    def test_multi_value_column_is_split(
        self, generator: RuleBasedRecommendationGenerator
    ) -> None:
        t = generator.transformation_for(
            _issue(IssueType.INCONSISTENT_FORMAT, "Tags", ["red, blue", "a;b", "x|y"])
        )
        assert isinstance(t, SplitMultiValue)

    def test_numeric_type_mismatch(self, generator: RuleBasedRecommendationGenerator) -> None:
        t = generator.transformation_for(
            _issue(IssueType.DATA_TYPE_MISMATCH, "Amount", ["1", "2.5", "3", "4"])
        )
        assert isinstance(t, FixDataTypes)
        assert t.target_type == "number"

    def test_date_type_mismatch(self, generator: RuleBasedRecommendationGenerator) -> None:
        t = generator.transformation_for(
            _issue(
                IssueType.DATA_TYPE_MISMATCH,
                "When",
                ["2024-01-05", "2024-02-01", "2024-03-03"],
            )
        )
        assert isinstance(t, FixDataTypes)
        assert t.target_type == "date"

    def test_columnless_issue_without_rule(
        self, generator: RuleBasedRecommendationGenerator
    ) -> None:
        assert generator.transformation_for(_issue(IssueType.WHITESPACE, None)) is None

    def test_confidence_boosts_are_capped(
        self, generator: RuleBasedRecommendationGenerator
    ) -> None:
        issue = _issue(
            IssueType.MISSING_VALUES,
            examples=["1", "2", "3", "4"],
            severity=Severity.HIGH,
            count=50,
        )
        assert generator.confidence_for(issue) == 95


class TestHelpers:
    def test_issue_score(self) -> None:
        high = _issue(IssueType.MISSING_VALUES, severity=Severity.HIGH, count=10)
        assert issue_score(high) == pytest.approx(181.0)

    def test_mostly_is_strict_majority(self) -> None:
        assert mostly(["1", "2", "3", "x"], str.isdigit)
        assert not mostly(["1", "2", "x"], str.isdigit)
        assert not mostly([], str.isdigit)

    def test_format_for_column(self) -> None:
        assert format_for_column("Work Email") == "email"
        assert format_for_column("Phone") == "phone"
        assert format_for_column("Full Name") == "title_case"
        assert format_for_column("Country Code") == "uppercase"
        assert format_for_column("City") == "lowercase"

    def test_issue_batches(self) -> None:
        items = [_issue(IssueType.WHITESPACE) for _ in range(5)]
        assert [len(b) for b in issue_batches(items, 2)] == [2, 2, 1]


class TestCrossChunk:
    def test_only_multi_chunk_sheets(self, context: RecommendationContext) -> None:
        recommendations = cross_chunk_recommendations(context)

        dedup, lookup = recommendations
        assert isinstance(dedup.transformation, RemoveDuplicatesGlobal)
        assert dedup.transformation.sheet == "People"
        assert dedup.can_process_in_parallel is False
        assert isinstance(lookup.transformation, CreateLookupTableGlobal)
        assert lookup.transformation.columns == ["Status"]
        assert lookup.category is RecommendationCategory.NORMALIZATION

    def test_prioritize_puts_coordinated_last(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        cross = cross_chunk_recommendations(context)
        local = RuleBasedRecommendationGenerator().generate(issues[:1], context)[:1]

        ranked = prioritize(cross + local, limit=10)

        assert ranked[0].runs_in_parallel
        assert not ranked[-1].runs_in_parallel

    def test_repeated_header_names_give_one_lookup_column(self) -> None:
        header = ["Status", "Amount", "Status"]
        context = RecommendationContext(
            session_id="s2",
            chunks=[
                ChunkMetadata("s2_Orders_chunk_0", "Orders", 0, 1, 10, list(header)),
                ChunkMetadata("s2_Orders_chunk_1", "Orders", 1, 11, 20, list(header)),
            ],
        )

        lookup = cross_chunk_recommendations(context)[1]

        assert lookup.transformation.columns == ["Status"]
