"""Cleaning session orchestration.

A session owns one parsed source workbook and the chunk manager built from
it, and drives the analyze -> decide -> export flow:

1. ``analyze()`` materializes chunks in batches, runs the quality analyzer on
   each, evicts chunks older than the retained batches, aggregates the
   findings and asks the recommendation chain for suggestions.
2. ``decide()`` accepts (applies) or skips one recommendation.
3. ``export()`` reassembles every chunk and auxiliary sheet into bytes in
   the source container format; ``report()`` summarizes the decisions.

Sessions are registered in a :class:`SessionRegistry` held by
:class:`CleaningService`, which the surrounding application creates once and
passes around.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Literal, Protocol

from sheet_cleaner.config import settings
from sheet_cleaner.models import (
    AnalysisResult,
    ChunkSample,
    DataQualityIssue,
    Decision,
    ProgressSnapshot,
    Recommendation,
    TransformationLogEntry,
)
from sheet_cleaner.services.chunk_manager import ChunkManager
from sheet_cleaner.services.issue_aggregator import IssueAggregator
from sheet_cleaner.services.quality_analyzer import QualityAnalyzer
from sheet_cleaner.services.reassembly import Reassembler
from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    RecommendationGenerator,
)
from sheet_cleaner.services.recommendations.chain import build_default_chain
from sheet_cleaner.services.recommendations.user_request import UserRequestProcessor
from sheet_cleaner.services.report import CleaningReport, build_report
from sheet_cleaner.services.session_registry import SessionRegistry
from sheet_cleaner.services.workbook_io import (
    DocumentFormat,
    WorkbookReader,
    build_placeholder_workbook,
)
from sheet_cleaner.utils.exceptions import (
    InvalidInputError,
    RecommendationNotFoundError,
    SourceUnavailableError,
)
from sheet_cleaner.utils.logging import (
    LogContext,
    ProgressTracker,
    get_logger,
    timed_operation,
)
from sheet_cleaner.workbook import Workbook

logger = get_logger(__name__)


class SourceStore(Protocol):
    """Where the original uploaded documents live."""

    def save(self, name: str, data: bytes) -> None: ...

    def load(self, name: str) -> bytes:
        """Return the document bytes.

        Raises:
            SourceUnavailableError: If the document cannot be retrieved.
        """
        ...


class InMemorySourceStore:
    """Dict-backed :class:`SourceStore`, used in tests and single-process setups."""

    def __init__(self) -> None:
        self._documents: dict[str, bytes] = {}

    def save(self, name: str, data: bytes) -> None:
        self._documents[name] = data

    def delete(self, name: str) -> None:
        self._documents.pop(name, None)

    def load(self, name: str) -> bytes:
        data = self._documents.get(name)
        if data is None:
            raise SourceUnavailableError(
                f"Source document '{name}' is not stored", source_name=name
            )
        return data


class CleaningSession:
    """State of one upload from analysis to export."""

    def __init__(
        self,
        session_id: str,
        data: bytes,
        filename: str | None = None,
        chunk_size: int | None = None,
        generator: RecommendationGenerator | None = None,
        request_processor: UserRequestProcessor | None = None,
        reader: WorkbookReader | None = None,
        reassembler: Reassembler | None = None,
    ) -> None:
        if len(data) > settings.max_file_size_bytes:
            raise InvalidInputError(
                f"Document exceeds {settings.max_file_size_mb} MB",
                field="data",
                details={"size": len(data)},
            )

        self.session_id = session_id
        self.filename = filename
        self.chunk_size = settings.chunk_size if chunk_size is None else chunk_size
        self._generator = generator
        self._request_processor = request_processor
        self._reader = reader or WorkbookReader()
        self._reassembler = reassembler or Reassembler()

        with LogContext(session_id=session_id):
            self.manager = self._build_manager(self._reader.read(data, filename))

        self._issues: list[DataQualityIssue] = []
        self._recommendations: dict[str, Recommendation] = {}
        self._decisions: dict[str, Decision] = {}
        self._applied_order: list[str] = []

    def _build_manager(self, workbook: Workbook) -> ChunkManager:
        manager = ChunkManager(workbook, self.session_id)
        manager.partition_all(self.chunk_size)
        return manager

    @property
    def source_format(self) -> DocumentFormat:
        return DocumentFormat(self.manager.source.metadata.get("format", "xlsx"))

    @property
    def recommendations(self) -> list[Recommendation]:
        return list(self._recommendations.values())

    @property
    def decisions(self) -> dict[str, Decision]:
        return dict(self._decisions)

    @property
    def issues(self) -> list[DataQualityIssue]:
        return list(self._issues)

    # ------------------------------------------------------------------ #
    # Analysis
    # ------------------------------------------------------------------ #

    async def analyze(self) -> AnalysisResult:
        """Analyze every chunk and generate recommendations.

        Raises:
            InvalidInputError: If a recommendation was already applied;
                analysis evicts chunks and would discard their changes.
        """
        if self._applied_order:
            raise InvalidInputError(
                "Session already has applied recommendations; analysis must run first",
                field="session_id",
            )
        with LogContext(session_id=self.session_id):
            chunk_ids = [c.chunk_id for c in self.manager.chunks]
            batch_size = settings.analysis_batch_size
            batches = [
                chunk_ids[i : i + batch_size] for i in range(0, len(chunk_ids), batch_size)
            ]
            tracker = ProgressTracker(logger, "Analyzing chunks", total=len(chunk_ids))

            issues: list[DataQualityIssue] = []
            samples: list[ChunkSample] = []
            with timed_operation(logger, "analyze") as metrics:
                for index, batch in enumerate(batches):
                    results = await asyncio.gather(
                        *(asyncio.to_thread(self._analyze_chunk, cid) for cid in batch)
                    )
                    for chunk_issues, sample in results:
                        issues.extend(chunk_issues)
                        samples.append(sample)
                    tracker.update(len(batch), current_item=batch[-1])
                    metrics.batches += 1

                    stale = index - settings.retained_batches
                    if stale >= 0:
                        for cid in batches[stale]:
                            self.manager.evict(cid)

                metrics.chunks_processed = len(chunk_ids)
                metrics.rows_processed = self.manager.source.total_data_rows
            tracker.complete()

            self._issues = IssueAggregator().aggregate(issues)
            context = self._context(samples)
            generator = self._generator or build_default_chain()
            recommendations = await asyncio.to_thread(
                generator.generate, self._issues, context
            )
            self._recommendations = {r.id: r for r in recommendations}
            self._decisions.clear()

            logger.info(
                "Analysis complete",
                issues=len(self._issues),
                recommendations=len(recommendations),
            )
            return AnalysisResult(
                session_id=self.session_id,
                issues=self._issues,
                samples=samples,
                recommendations=recommendations,
                progress=self.manager.progress(),
                total_rows=self.manager.source.total_data_rows,
                sheet_names=self.manager.source.sheet_names,
            )

    def _analyze_chunk(self, chunk_id: str) -> tuple[list[DataQualityIssue], ChunkSample]:
        with LogContext(chunk_id=chunk_id):
            payload = self.manager.materialize(chunk_id)
            found = QualityAnalyzer(payload.sheet_name, scope=chunk_id).analyze(payload)
            return found, self.manager.sample(chunk_id)

    def _context(self, samples: list[ChunkSample] | None = None) -> RecommendationContext:
        if samples is None:
            samples = [self.manager.sample(c.chunk_id) for c in self.manager.chunks[:3]]
        return RecommendationContext(
            session_id=self.session_id,
            chunks=self.manager.chunks,
            samples=samples,
            filename=self.filename,
        )

    # ------------------------------------------------------------------ #
    # Decisions
    # ------------------------------------------------------------------ #

    def add_recommendation(self, recommendation: Recommendation) -> None:
        self._recommendations[recommendation.id] = recommendation

    async def request(self, text: str) -> Recommendation:
        """Turn a free-text request into a registered recommendation."""
        processor = self._request_processor or UserRequestProcessor()
        with LogContext(session_id=self.session_id):
            recommendation = await asyncio.to_thread(processor.process, text, self._context())
        self.add_recommendation(recommendation)
        logger.info(
            "User request resolved",
            recommendation_id=recommendation.id,
            transformation=recommendation.transformation.type,
        )
        return recommendation

    def find_recommendation(self, recommendation_id: str) -> Recommendation:
        """Look up by id, falling back to a step-number match.

        Raises:
            RecommendationNotFoundError: If neither matches.
        """
        recommendation = self._recommendations.get(recommendation_id)
        if recommendation is not None:
            return recommendation
        step = recommendation_id.rsplit("_", 1)[-1]
        if step.isdigit():
            for candidate in self._recommendations.values():
                if candidate.step == int(step):
                    return candidate
        raise RecommendationNotFoundError(recommendation_id, session_id=self.session_id)

    async def decide(
        self, recommendation_id: str, decision: Decision
    ) -> list[TransformationLogEntry]:
        """Apply or skip a recommendation.

        Accepting runs the transformation over the recommendation's affected
        chunks (or every routed chunk when it names none). A failure leaves
        the recommendation undecided so it can be retried.

        Raises:
            RecommendationNotFoundError: If the recommendation is unknown.
            InvalidInputError: If it was already decided.
            TransformationFailedError: If a chunk failed; earlier chunks keep
                their changes.
        """
        recommendation = self.find_recommendation(recommendation_id)
        if recommendation.id in self._decisions:
            raise InvalidInputError(
                f"Recommendation {recommendation.id} was already decided "
                f"({self._decisions[recommendation.id].value})",
                field="recommendation_id",
            )

        with LogContext(session_id=self.session_id):
            if decision is Decision.SKIP:
                self._decisions[recommendation.id] = decision
                logger.info("Recommendation skipped", recommendation_id=recommendation.id)
                return []

            entries = await self._apply(self.manager, recommendation)
            self._decisions[recommendation.id] = decision
            self._applied_order.append(recommendation.id)
            logger.info(
                "Recommendation applied",
                recommendation_id=recommendation.id,
                chunks=len(entries),
            )
            return entries

    @staticmethod
    async def _apply(
        manager: ChunkManager, recommendation: Recommendation
    ) -> list[TransformationLogEntry]:
        transformation = recommendation.transformation
        targets = recommendation.affected_chunks or manager.route(transformation)
        return await manager.batch_apply(
            targets, transformation, parallel=recommendation.runs_in_parallel
        )

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #

    def progress(self) -> ProgressSnapshot:
        return self.manager.progress()

    @property
    def transformation_log(self) -> list[TransformationLogEntry]:
        return self.manager.transformation_log

    def reassemble(self) -> Workbook:
        return self._reassembler.reassemble(self.manager)

    def export(self, fmt: DocumentFormat | None = None) -> bytes:
        """Cleaned document bytes, in the source format unless ``fmt`` is given."""
        with LogContext(session_id=self.session_id):
            return self._reassembler.export(self.manager, fmt or self.source_format)

    def build_report(self) -> CleaningReport:
        return build_report(
            self.session_id,
            self.filename,
            self.recommendations,
            self._decisions,
            self.transformation_log,
        )

    def report(self, fmt: Literal["text", "html"] = "text") -> str:
        report = self.build_report()
        return report.to_html() if fmt == "html" else report.to_text()

    async def rebuild_from_source(self, store: SourceStore) -> Workbook:
        """Recreate chunk state from the stored source and replay accepted steps.

        When the source cannot be retrieved, a workbook holding a single
        marked error sheet is returned and the current state is left alone.
        """
        with LogContext(session_id=self.session_id):
            try:
                data = store.load(self.session_id)
            except SourceUnavailableError as e:
                logger.error(
                    "Source unavailable, returning placeholder",
                    source=self.filename,
                    error=e.message,
                )
                return build_placeholder_workbook(self.filename or self.session_id)

            manager = self._build_manager(self._reader.read(data, self.filename))
            for recommendation_id in self._applied_order:
                await self._apply(manager, self._recommendations[recommendation_id])
            self.manager = manager
            logger.info("Session rebuilt from source", replayed=len(self._applied_order))
            return self.reassemble()


class CleaningService:
    """Entry point used by the surrounding application.

    Holds the session registry and the source store; both are injected so a
    web layer can share them across requests.
    """

    def __init__(
        self,
        registry: SessionRegistry[CleaningSession] | None = None,
        store: SourceStore | None = None,
        generator: RecommendationGenerator | None = None,
        request_processor: UserRequestProcessor | None = None,
    ) -> None:
        self.registry: SessionRegistry[CleaningSession] = registry or SessionRegistry()
        self.store: SourceStore = store or InMemorySourceStore()
        self._generator = generator
        self._request_processor = request_processor

    def create_session(
        self,
        data: bytes,
        filename: str | None = None,
        chunk_size: int | None = None,
        session_id: str | None = None,
    ) -> CleaningSession:
        session_id = session_id or uuid.uuid4().hex[:12]
        session = CleaningSession(
            session_id,
            data,
            filename=filename,
            chunk_size=chunk_size,
            generator=self._generator,
            request_processor=self._request_processor,
        )
        self.store.save(session_id, data)
        self.registry.put(session_id, session)
        logger.info(
            "Session created",
            session_id=session_id,
            filename=filename,
            chunks=len(session.manager.chunks),
        )
        return session

    def get_session(self, session_id: str) -> CleaningSession:
        return self.registry.get(session_id)

    async def analyze(self, session_id: str) -> AnalysisResult:
        return await self.get_session(session_id).analyze()

    async def request(self, session_id: str, text: str) -> Recommendation:
        return await self.get_session(session_id).request(text)

    async def decide(
        self, session_id: str, recommendation_id: str, decision: Decision
    ) -> list[TransformationLogEntry]:
        return await self.get_session(session_id).decide(recommendation_id, decision)

    def progress(self, session_id: str) -> ProgressSnapshot:
        return self.get_session(session_id).progress()

    def export(self, session_id: str, fmt: DocumentFormat | None = None) -> bytes:
        return self.get_session(session_id).export(fmt)

    def report(self, session_id: str, fmt: Literal["text", "html"] = "text") -> str:
        return self.get_session(session_id).report(fmt)

    async def rebuild(self, session_id: str) -> Workbook:
        return await self.get_session(session_id).rebuild_from_source(self.store)
