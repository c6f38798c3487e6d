"""Shared types and helpers for recommendation generators.

A generator turns aggregated :class:`DataQualityIssue` findings into
:class:`Recommendation` objects the cleaning session can later apply. The
engine only depends on the output shape; how the suggestions are produced
(an LLM, a reduced prompt, or deterministic rules) is a swappable strategy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sheet_cleaner.models import (
    ChunkSample,
    CreateLookupTableGlobal,
    DataQualityIssue,
    Priority,
    Recommendation,
    RecommendationCategory,
    RemoveDuplicatesGlobal,
)
from sheet_cleaner.workbook import ChunkMetadata

PRIORITY_ORDER = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}

CATEGORY_ORDER = {
    RecommendationCategory.NORMALIZATION: 4,
    RecommendationCategory.VALIDATION: 3,
    RecommendationCategory.CLEANING: 2,
    RecommendationCategory.OPTIMIZATION: 1,
}

LOOKUP_COLUMN_HINTS = ("category", "type", "status")


@dataclass
class RecommendationContext:
    """What a generator may look at besides the issues themselves."""

    session_id: str
    chunks: list[ChunkMetadata]
    samples: list[ChunkSample] = field(default_factory=list)
    filename: str | None = None

    @property
    def sheet_names(self) -> list[str]:
        return list(dict.fromkeys(c.sheet_name for c in self.chunks))

    def chunks_for_sheet(self, sheet: str) -> list[ChunkMetadata]:
        return [c for c in self.chunks if c.sheet_name == sheet]

    def headers_for_sheet(self, sheet: str) -> list[str]:
        for chunk in self.chunks:
            if chunk.sheet_name == sheet:
                return list(chunk.headers)
        for sample in self.samples:
            if sample.sheet == sheet:
                return list(sample.header)
        return []

    def affected_chunks(self, sheet: str, columns: list[str] | None = None) -> list[str]:
        """Chunks of ``sheet`` whose header holds every column in ``columns``."""
        return [
            c.chunk_id
            for c in self.chunks
            if c.sheet_name == sheet and c.has_columns(columns or [])
        ]


class RecommendationGenerator(Protocol):
    """Strategy interface implemented by every generator."""

    name: str

    def generate(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> list[Recommendation]:
        """Produce recommendations for ``issues``.

        Raises:
            RecommendationGeneratorError: If the strategy cannot produce a
                result; callers fall through to the next strategy.
        """
        ...


def cross_chunk_recommendations(
    context: RecommendationContext, source: str = "rules"
) -> list[Recommendation]:
    """Whole-sheet opportunities that per-chunk analysis cannot see.

    For every sheet split into more than one chunk: a global duplicate
    removal, and a shared lookup table when category/type/status columns
    are present.
    """
    recommendations: list[Recommendation] = []
    for sheet in context.sheet_names:
        sheet_chunks = context.chunks_for_sheet(sheet)
        if len(sheet_chunks) < 2:
            continue
        chunk_ids = [c.chunk_id for c in sheet_chunks]

        recommendations.append(
            Recommendation(
                id=f"cross_chunk_dedup_{context.session_id}_{sheet}",
                step=100,
                message=(
                    f"Remove duplicates across all {len(sheet_chunks)} chunks in sheet "
                    f"'{sheet}'. This requires cross-chunk coordination for accurate "
                    "deduplication."
                ),
                transformation=RemoveDuplicatesGlobal(sheet=sheet),
                affected_chunks=chunk_ids,
                can_process_in_parallel=False,
                priority=Priority.HIGH,
                category=RecommendationCategory.OPTIMIZATION,
                reasoning=(
                    "Global deduplication ensures no duplicates exist across the "
                    "entire dataset"
                ),
                impact="Eliminates all duplicate records across chunks",
                confidence=90,
                source=source,
            )
        )

        lookup_columns = list(
            dict.fromkeys(
                h
                for h in sheet_chunks[0].headers
                if any(hint in h.lower() for hint in LOOKUP_COLUMN_HINTS)
            )
        )
        if lookup_columns:
            recommendations.append(
                Recommendation(
                    id=f"cross_chunk_normalize_{context.session_id}_{sheet}",
                    step=101,
                    message=(
                        f"Create a lookup table for columns: {', '.join(lookup_columns)} "
                        f"across all chunks in '{sheet}'."
                    ),
                    transformation=CreateLookupTableGlobal(
                        sheet=sheet, columns=lookup_columns
                    ),
                    affected_chunks=chunk_ids,
                    can_process_in_parallel=False,
                    priority=Priority.MEDIUM,
                    category=RecommendationCategory.NORMALIZATION,
                    reasoning=(
                        "One lookup table for the whole sheet keeps reference ids "
                        "consistent across chunks"
                    ),
                    impact="Reduces data redundancy and improves query performance",
                    confidence=80,
                    source=source,
                )
            )
    return recommendations


def prioritize(recommendations: list[Recommendation], limit: int) -> list[Recommendation]:
    """Parallel-capable first, then priority, category and confidence; capped."""
    ranked = sorted(
        recommendations,
        key=lambda r: (
            not r.runs_in_parallel,
            -PRIORITY_ORDER[r.priority],
            -CATEGORY_ORDER[r.category],
            -r.confidence,
        ),
    )
    return ranked[:limit]


def issue_batches(
    issues: list[DataQualityIssue], size: int
) -> list[list[DataQualityIssue]]:
    return [issues[i : i + size] for i in range(0, len(issues), size)]
