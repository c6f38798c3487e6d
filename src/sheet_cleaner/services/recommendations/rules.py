"""Deterministic, rule-based recommendation generator.

This is the last strategy of the fallback chain and never calls out of
process, so it always produces a result. Issues are ranked by a score built
from severity, issue type and count; the top ones are each mapped to one
transformation.
"""

from __future__ import annotations

from collections.abc import Callable

from sheet_cleaner.config import settings
from sheet_cleaner.models import (
    DataQualityIssue,
    FillMissing,
    FixDataTypes,
    IssueType,
    Priority,
    Recommendation,
    RecommendationCategory,
    RemoveDuplicates,
    Severity,
    SplitMultiValue,
    StandardizeFormat,
    Transformation,
    TrimWhitespace,
)
from sheet_cleaner.services.quality_analyzer import is_multi_value
from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    cross_chunk_recommendations,
    prioritize,
)
from sheet_cleaner.services.transformation_engine import parse_date, parse_number
from sheet_cleaner.utils.logging import get_logger

logger = get_logger(__name__)

MAX_RULE_ISSUES = 8
MAJORITY = 0.7

SEVERITY_SCORE = {Severity.HIGH: 100, Severity.MEDIUM: 50, Severity.LOW: 25}

TYPE_SCORE = {
    IssueType.DUPLICATES: 90,
    IssueType.MISSING_VALUES: 80,
    IssueType.DATA_TYPE_MISMATCH: 70,
    IssueType.INCONSISTENT_FORMAT: 60,
    IssueType.WHITESPACE: 40,
}

FIXED_CONFIDENCE = {
    IssueType.DUPLICATES: 95,
    IssueType.WHITESPACE: 90,
    IssueType.INCONSISTENT_FORMAT: 85,
    IssueType.DATA_TYPE_MISMATCH: 80,
}

SEVERITY_PRIORITY = {
    Severity.HIGH: Priority.HIGH,
    Severity.MEDIUM: Priority.MEDIUM,
    Severity.LOW: Priority.LOW,
}


def issue_score(issue: DataQualityIssue) -> float:
    return SEVERITY_SCORE[issue.severity] + TYPE_SCORE[issue.type] + issue.count * 0.1


def mostly(examples: list[str], predicate: Callable[[str], bool]) -> bool:
    """True when more than 70% of the examples satisfy ``predicate``."""
    if not examples:
        return False
    return sum(1 for e in examples if predicate(e)) / len(examples) > MAJORITY


def format_for_column(column: str) -> str:
    lowered = column.lower()
    if "email" in lowered:
        return "email"
    if "phone" in lowered:
        return "phone"
    if "name" in lowered or "title" in lowered:
        return "title_case"
    if "code" in lowered or "id" in lowered:
        return "uppercase"
    return "lowercase"


class RuleBasedRecommendationGenerator:
    """Map the highest-scoring issues to transformations by fixed rules."""

    name = "rules"

    def __init__(self, max_recommendations: int | None = None) -> None:
        self.max_recommendations = max_recommendations or settings.max_recommendations

    def generate(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> list[Recommendation]:
        ranked = sorted(issues, key=issue_score, reverse=True)[:MAX_RULE_ISSUES]
        chunk_count = len(context.chunks)

        recommendations = []
        for step, issue in enumerate(ranked, start=1):
            transformation = self.transformation_for(issue)
            if transformation is None:
                continue
            recommendations.append(
                Recommendation(
                    id=f"rules_{context.session_id}_{step}",
                    step=step,
                    message=self._message(issue, chunk_count),
                    transformation=transformation,
                    affected_chunks=context.affected_chunks(
                        issue.sheet, transformation.target_columns
                    ),
                    can_process_in_parallel=not transformation.requires_cross_chunk_coordination,
                    priority=SEVERITY_PRIORITY[issue.severity],
                    category=RecommendationCategory.CLEANING,
                    reasoning=(
                        f"Addressing {issue.type.value} across {chunk_count} chunks "
                        "to improve data quality"
                    ),
                    impact=f"Resolves {issue.count} data quality issues",
                    confidence=self.confidence_for(issue),
                    source=self.name,
                )
            )

        recommendations.extend(cross_chunk_recommendations(context, source=self.name))
        result = prioritize(recommendations, self.max_recommendations)
        logger.info(
            "Rule-based recommendations generated",
            issues=len(issues),
            recommendations=len(result),
        )
        return result

    def transformation_for(self, issue: DataQualityIssue) -> Transformation | None:
        """The fix for one issue, or None when the issue has no column to act on."""
        if issue.type is IssueType.DUPLICATES:
            return RemoveDuplicates(sheet=issue.sheet)
        if issue.column is None:
            return None

        match issue.type:
            case IssueType.MISSING_VALUES:
                numeric = mostly(issue.examples, lambda e: parse_number(e) is not None)
                return FillMissing(
                    sheet=issue.sheet,
                    column=issue.column,
                    method="median" if numeric else "mode",
                )
            case IssueType.WHITESPACE:
                return TrimWhitespace(sheet=issue.sheet, column=issue.column)
            case IssueType.INCONSISTENT_FORMAT:
                if "email" not in issue.column.lower() and mostly(
                    issue.examples, is_multi_value
                ):
                    return SplitMultiValue(sheet=issue.sheet, column=issue.column)
                return StandardizeFormat(
                    sheet=issue.sheet,
                    column=issue.column,
                    format=format_for_column(issue.column),
                )
            case IssueType.DATA_TYPE_MISMATCH:
                if mostly(issue.examples, lambda e: parse_number(e) is not None):
                    target = "number"
                elif mostly(issue.examples, lambda e: parse_date(e) is not None):
                    target = "date"
                else:
                    target = "string"
                return FixDataTypes(sheet=issue.sheet, column=issue.column, target_type=target)
        return None

    def confidence_for(self, issue: DataQualityIssue) -> int:
        fixed = FIXED_CONFIDENCE.get(issue.type)
        if fixed is not None:
            return fixed
        confidence = 70
        if len(issue.examples) > 3:
            confidence += 10
        if issue.severity is Severity.HIGH:
            confidence += 15
        elif issue.severity is Severity.MEDIUM:
            confidence += 10
        if issue.count > 10:
            confidence += 5
        return min(confidence, 95)

    @staticmethod
    def _message(issue: DataQualityIssue, chunk_count: int) -> str:
        match issue.type:
            case IssueType.MISSING_VALUES:
                return (
                    f"Found {issue.count} missing values in '{issue.column}' across "
                    f"{chunk_count} chunks. Fill these to complete your dataset."
                )
            case IssueType.DUPLICATES:
                return (
                    f"Found {issue.count} duplicate rows across {chunk_count} chunks. "
                    "Remove these to ensure data uniqueness."
                )
            case _:
                return (
                    f"Found {issue.count} {issue.type.value} issues in '{issue.column}' "
                    f"across {chunk_count} chunks that need attention."
                )
