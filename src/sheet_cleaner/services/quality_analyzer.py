"""Data-quality checks over a single grid.

The analyzer is a pure function of the grid it is given, so it can be run on
a whole sheet or on one chunk payload, from any number of tasks at once.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any

from sheet_cleaner.models import DataQualityIssue, IssueType, Severity
from sheet_cleaner.workbook import Grid, default_column_name, is_empty, row_signature

MULTI_VALUE_PATTERN = re.compile(r"[,;|]")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_EXAMPLES = 3


def runtime_type(value: Any) -> str:
    """Primitive type name used by the mixed-type check."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (datetime, date, time)):
        return "date"
    return "string"


def has_whitespace_defect(value: str) -> bool:
    return value != value.strip() or "  " in value


def is_multi_value(value: str) -> bool:
    if not MULTI_VALUE_PATTERN.search(value):
        return False
    tokens = [t for t in MULTI_VALUE_PATTERN.split(value) if t.strip()]
    return len(tokens) > 1


def missing_severity(missing: int, total: int) -> Severity:
    if missing > total * 0.3:
        return Severity.HIGH
    if missing > total * 0.1:
        return Severity.MEDIUM
    return Severity.LOW


def sort_by_severity(issues: list[DataQualityIssue]) -> list[DataQualityIssue]:
    """Stable sort, high first; ties keep discovery order."""
    return sorted(issues, key=lambda issue: -issue.severity.rank)


@dataclass
class QualityAnalyzer:
    """Scan a grid and report typed data-quality findings.

    Attributes:
        sheet_name: Sheet the grid belongs to; copied into every issue.
        scope: Label appended to descriptions (e.g. a chunk id).
    """

    sheet_name: str
    scope: str | None = None

    def analyze(self, grid: Grid) -> list[DataQualityIssue]:
        rows = grid.rows
        if not rows:
            return []

        issues: list[DataQualityIssue] = []
        for col_index, raw_name in enumerate(grid.header):
            name = raw_name or default_column_name(col_index)
            values = [row[col_index] if col_index < len(row) else None for row in rows]
            issues.extend(self._check_column(name, values, len(rows)))

        duplicates = self._check_duplicates(rows)
        if duplicates is not None:
            issues.append(duplicates)

        return sort_by_severity(issues)

    # ------------------------------------------------------------------ #
    # Per-column checks
    # ------------------------------------------------------------------ #

    def _check_column(
        self, column: str, values: list[Any], total: int
    ) -> list[DataQualityIssue]:
        issues: list[DataQualityIssue] = []
        non_empty = [v for v in values if not is_empty(v)]

        missing = total - len(non_empty)
        if missing > 0:
            issues.append(
                self._issue(
                    IssueType.MISSING_VALUES,
                    missing_severity(missing, total),
                    column,
                    missing,
                    f"{missing} missing values found in column '{column}'",
                    non_empty,
                )
            )

        types = list(dict.fromkeys(runtime_type(v) for v in non_empty))
        if len(types) > 1:
            issues.append(
                self._issue(
                    IssueType.DATA_TYPE_MISMATCH,
                    Severity.MEDIUM,
                    column,
                    len(non_empty),
                    f"Mixed data types found in column '{column}': {', '.join(types)}",
                    non_empty,
                )
            )

        strings = [v for v in values if isinstance(v, str) and v]
        whitespace = [v for v in strings if has_whitespace_defect(v)]
        if whitespace:
            issues.append(
                self._issue(
                    IssueType.WHITESPACE,
                    Severity.LOW,
                    column,
                    len(whitespace),
                    f"{len(whitespace)} cells with whitespace issues in column '{column}'",
                    whitespace,
                )
            )

        multi = [v for v in strings if is_multi_value(v)]
        if multi:
            issues.append(
                self._issue(
                    IssueType.INCONSISTENT_FORMAT,
                    Severity.MEDIUM,
                    column,
                    len(multi),
                    f"{len(multi)} cells contain multiple values in '{column}' "
                    "and should be normalized",
                    multi,
                )
            )

        if "email" in column.lower():
            malformed = [
                v
                for v in non_empty
                if not (isinstance(v, str) and EMAIL_PATTERN.match(v.strip()))
            ]
            if malformed:
                issues.append(
                    self._issue(
                        IssueType.INCONSISTENT_FORMAT,
                        Severity.MEDIUM,
                        column,
                        len(malformed),
                        f"{len(malformed)} invalid email addresses in column '{column}'",
                        malformed,
                    )
                )

        return issues

    # ------------------------------------------------------------------ #
    # Whole-grid checks
    # ------------------------------------------------------------------ #

    def _check_duplicates(self, rows: list[list[Any]]) -> DataQualityIssue | None:
        signatures = [row_signature(row) for row in rows]
        duplicate_count = len(signatures) - len(set(signatures))
        if duplicate_count == 0:
            return None
        severity = Severity.HIGH if duplicate_count > len(rows) * 0.1 else Severity.MEDIUM
        return self._issue(
            IssueType.DUPLICATES,
            severity,
            None,
            duplicate_count,
            f"{duplicate_count} duplicate rows found",
            [],
        )

    def _issue(
        self,
        issue_type: IssueType,
        severity: Severity,
        column: str | None,
        count: int,
        description: str,
        examples: list[Any],
    ) -> DataQualityIssue:
        if self.scope:
            description = f"{description} ({self.scope})"
        return DataQualityIssue(
            type=issue_type,
            severity=severity,
            sheet=self.sheet_name,
            column=column,
            count=count,
            description=description,
            examples=[str(v) for v in examples[:MAX_EXAMPLES]],
            scope=self.scope or None,
        )
