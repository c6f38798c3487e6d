"""Merge data-quality findings produced independently per chunk."""

from __future__ import annotations

from collections.abc import Iterable

from sheet_cleaner.config import settings
from sheet_cleaner.models import DataQualityIssue
from sheet_cleaner.services.quality_analyzer import sort_by_severity
from sheet_cleaner.utils.logging import get_logger

logger = get_logger(__name__)

AGGREGATED_SUFFIX = " (aggregated across chunks)"


class IssueAggregator:
    """Group issues by (type, sheet, column) and sum them.

    Within a group counts are summed, examples are concatenated in discovery
    order and capped, and the first description is kept. The severity of a
    group is the highest severity any contributing chunk reported.
    """

    def __init__(self, max_examples: int | None = None) -> None:
        self.max_examples = max_examples or settings.max_issue_examples

    def aggregate(self, issues: Iterable[DataQualityIssue]) -> list[DataQualityIssue]:
        groups: dict[tuple[str, str, str], DataQualityIssue] = {}

        for issue in issues:
            key = issue.key
            current = groups.get(key)
            if current is None:
                groups[key] = issue.model_copy(
                    update={"examples": list(issue.examples[: self.max_examples])}
                )
                continue

            room = self.max_examples - len(current.examples)
            merged_examples = current.examples + issue.examples[: max(room, 0)]
            groups[key] = current.model_copy(
                update={
                    "count": current.count + issue.count,
                    "severity": max(current.severity, issue.severity, key=lambda s: s.rank),
                    "examples": merged_examples,
                }
            )

        merged = [
            issue.model_copy(
                update={
                    "description": _strip_scope(issue) + AGGREGATED_SUFFIX,
                    "scope": None,
                }
            )
            for issue in groups.values()
        ]
        logger.debug("Issues aggregated", groups=len(merged))
        return sort_by_severity(merged)


def _strip_scope(issue: DataQualityIssue) -> str:
    """Drop the exact ``" (scope)"`` label the analyzer appended, if any."""
    label = f" ({issue.scope})" if issue.scope else ""
    if label and issue.description.endswith(label):
        return issue.description[: -len(label)]
    return issue.description
