"""Tests for cleaning session reports."""

import pytest

from sheet_cleaner.models import (
    Decision,
    FillMissing,
    Recommendation,
    RemoveDuplicates,
    TransformationLogEntry,
    TransformationStatus,
    TrimWhitespace,
)
from sheet_cleaner.services.report import CleaningReport, build_report


@pytest.fixture
def report() -> CleaningReport:
    recommendations = [
        Recommendation(
            id="r1",
            step=1,
            message="Remove duplicate rows",
            transformation=RemoveDuplicates(sheet="People"),
        ),
        Recommendation(
            id="r2",
            step=2,
            message="Fill <missing> ages",
            transformation=FillMissing(sheet="People", column="Age"),
        ),
        Recommendation(id="r3", step=3, transformation=TrimWhitespace(sheet="People", column="City")),
    ]
    log = [
        TransformationLogEntry(chunk_id="c0", transformation=RemoveDuplicates(sheet="People")),
        TransformationLogEntry(chunk_id="c1", transformation=RemoveDuplicates(sheet="People")),
        TransformationLogEntry(
            chunk_id="c2",
            transformation=RemoveDuplicates(sheet="People"),
            status=TransformationStatus.FAILED,
        ),
    ]
    return build_report(
        "s1",
        "people.xlsx",
        recommendations,
        {"r1": Decision.ACCEPT, "r2": Decision.SKIP},
        log,
    )


class TestCleaningReport:
    """Tests for build_report and its renderings."""

    def test_lines_follow_decisions(self, report: CleaningReport) -> None:
        assert [line.step for line in report.accepted] == [1]
        assert [line.step for line in report.skipped] == [2]
        assert [line.transformation_type for line in report.pending] == ["trim_whitespace"]

    def test_log_counts(self, report: CleaningReport) -> None:
        assert report.completed_entries == 2
        assert report.failed_entries == 1

    def test_to_dict(self, report: CleaningReport) -> None:
        data = report.to_dict()

        assert data["total"] == 3
        assert data["accepted"] == 1
        assert data["skipped"] == 1
        assert data["pending"] == 1
        assert data["filename"] == "people.xlsx"

    def test_to_text(self, report: CleaningReport) -> None:
        text = report.to_text()

        assert text.startswith("Cleaning report for people.xlsx\n")
        assert "Applied: 1" in text
        assert "Not decided: 1" in text
        assert "Chunk operations: 2 completed, 1 failed" in text
        assert "  1. Remove duplicate rows [remove_duplicates on People]" in text
        assert "  2. Fill <missing> ages [fill_missing on People]" in text

    def test_to_html_escapes_messages(self, report: CleaningReport) -> None:
        page = report.to_html()

        assert "<title>Cleaning report: people.xlsx</title>" in page
        assert "Fill &lt;missing&gt; ages" in page
        assert "<missing>" not in page

    def test_empty_report(self) -> None:
        report = build_report("s2", None, [], {}, [])

        assert report.to_text().startswith("Cleaning report for s2")
        assert "<li><em>None</em></li>" in report.to_html()
