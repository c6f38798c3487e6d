"""Fixtures shared by the recommendation generator tests."""

import pytest

from sheet_cleaner.models import ChunkSample, DataQualityIssue, IssueType, Severity
from sheet_cleaner.services.recommendations.base import RecommendationContext
from sheet_cleaner.workbook import ChunkMetadata


@pytest.fixture
def context() -> RecommendationContext:
    """Two chunks of People (with a Status column) and one chunk of Notes."""
    people_header = ["Name", "Age", "Email", "Status"]
    return RecommendationContext(
        session_id="s1",
        chunks=[
            ChunkMetadata("s1_People_chunk_0", "People", 0, 1, 100, list(people_header)),
            ChunkMetadata("s1_People_chunk_1", "People", 1, 101, 150, list(people_header)),
            ChunkMetadata("s1_Notes_chunk_0", "Notes", 0, 1, 3, ["Text"]),
        ],
        samples=[
            ChunkSample(
                chunk_id="s1_People_chunk_0",
                sheet="People",
                header=list(people_header),
                rows=[
                    ["Alice", 30, "alice@example.com", "open"],
                    ["Bob", None, None, "closed"],
                    ["Carol", 41, "carol@example.com", None],
                    ["Dan", None, "dan@example.com", "open"],
                ],
            )
        ],
        filename="people.xlsx",
    )


@pytest.fixture
def issues() -> list[DataQualityIssue]:
    return [
        DataQualityIssue(
            type=IssueType.WHITESPACE,
            severity=Severity.LOW,
            sheet="People",
            column="Name",
            count=4,
            description="4 values in Name with extra whitespace",
            examples=[" Alice", "Bob "],
        ),
        DataQualityIssue(
            type=IssueType.MISSING_VALUES,
            severity=Severity.HIGH,
            sheet="People",
            column="Age",
            count=45,
            description="45 missing values in Age",
            examples=["30", "41", "28"],
        ),
        DataQualityIssue(
            type=IssueType.DUPLICATES,
            severity=Severity.MEDIUM,
            sheet="People",
            count=3,
            description="3 duplicate rows",
        ),
    ]
