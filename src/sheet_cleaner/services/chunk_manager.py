"""Chunk manager: partitions sheets into row ranges and routes work to them.

The manager owns two tables keyed by chunk id: metadata (created once at
partition time, never renumbered) and payloads (materialized on demand,
dropped by :meth:`ChunkManager.evict`). Transformations and analyzers only
borrow a payload for the duration of a call.

Concurrency model:
    ``batch_apply`` starts up to ``parallel_batch_size`` chunks at once with
    ``asyncio.to_thread`` and waits for the whole batch before starting the
    next one. Chunks are disjoint row ranges, so no per-chunk locking is
    needed; only the shared log and the auxiliary sheet table are guarded.
    Transformations that need a running cross-chunk state are never run in
    parallel: they go through one sequential pass with an explicit
    accumulator from :class:`TransformationEngine`.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections.abc import Iterable

from sheet_cleaner.config import settings
from sheet_cleaner.models import (
    ChunkSample,
    ProgressSnapshot,
    Transformation,
    TransformationLogEntry,
    TransformationStatus,
)
from sheet_cleaner.services.transformation_engine import (
    CoordinationState,
    TransformationEngine,
)
from sheet_cleaner.utils.exceptions import (
    ChunkNotFoundError,
    CoordinationRequiredError,
    ErrorCode,
    InvalidInputError,
    SheetCleanerError,
    TransformationFailedError,
)
from sheet_cleaner.utils.logging import LogContext, get_logger, timed_operation
from sheet_cleaner.workbook import ChunkMetadata, ChunkPayload, Sheet, Workbook

logger = get_logger(__name__)


def format_remaining(seconds: float) -> str:
    """Human readable remaining time, e.g. ``"12 seconds"`` or ``"3 minutes"``."""
    if seconds <= 0:
        return ""
    if seconds < 60:
        return f"{math.ceil(seconds)} seconds"
    return f"{math.ceil(seconds / 60)} minutes"


class ChunkManager:
    """Partition a workbook into row-range chunks and apply work per chunk.

    Attributes:
        session_id: Prefix of every chunk id created by this manager.
        source: The parsed source workbook; never mutated.
    """

    def __init__(
        self,
        source: Workbook,
        session_id: str,
        engine: TransformationEngine | None = None,
        parallel_batch_size: int | None = None,
    ) -> None:
        self.source = source
        self.session_id = session_id
        self._engine = engine or TransformationEngine()
        self._batch_size = parallel_batch_size or settings.parallel_batch_size

        self._chunks: dict[str, ChunkMetadata] = {}
        self._payloads: dict[str, ChunkPayload] = {}
        self._auxiliary: dict[str, Sheet] = {}
        self._log: list[TransformationLogEntry] = []
        self._dirty: set[str] = set()

        self._lock = threading.Lock()
        self._current_chunk = ""
        self._started_at: float | None = None

    # ------------------------------------------------------------------ #
    # Partitioning
    # ------------------------------------------------------------------ #

    def partition(self, sheet_name: str, chunk_size: int | None = None) -> list[ChunkMetadata]:
        """Split a sheet's data rows into contiguous ranges of ``chunk_size``.

        Creates ``ceil(rows / chunk_size)`` chunks; the last one may be
        smaller. No payload is read.

        Raises:
            InvalidInputError: If ``chunk_size`` is not positive, the sheet
                does not exist, or it was already partitioned.
        """
        size = settings.chunk_size if chunk_size is None else chunk_size
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise InvalidInputError(
                f"Chunk size must be a positive integer, got {size!r}",
                error_code=ErrorCode.INVALID_CHUNK_SIZE,
                field="chunk_size",
            )

        sheet = self.source.get_sheet(sheet_name)
        if sheet is None:
            raise InvalidInputError(f"Sheet '{sheet_name}' not found", field="sheet")
        if any(m.sheet_name == sheet_name for m in self._chunks.values()):
            raise InvalidInputError(
                f"Sheet '{sheet_name}' is already partitioned", field="sheet"
            )

        total_rows = sheet.data_row_count
        created = []
        for index in range(math.ceil(total_rows / size)):
            start = 1 + index * size
            meta = ChunkMetadata(
                chunk_id=f"{self.session_id}_{sheet_name}_chunk_{index}",
                sheet_name=sheet_name,
                index=index,
                start_row=start,
                end_row=min(start + size - 1, total_rows),
                headers=list(sheet.header),
            )
            self._chunks[meta.chunk_id] = meta
            created.append(meta)

        logger.info(
            "Sheet partitioned",
            sheet=sheet_name,
            rows=total_rows,
            chunk_size=size,
            chunks=len(created),
        )
        return created

    def partition_all(self, chunk_size: int | None = None) -> list[ChunkMetadata]:
        """Partition every sheet of the source workbook, in sheet order."""
        created: list[ChunkMetadata] = []
        for name in self.source.sheet_names:
            created.extend(self.partition(name, chunk_size))
        return created

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    @property
    def chunks(self) -> list[ChunkMetadata]:
        """All chunk metadata in creation order."""
        return list(self._chunks.values())

    def get_chunk(self, chunk_id: str) -> ChunkMetadata:
        meta = self._chunks.get(chunk_id)
        if meta is None:
            raise ChunkNotFoundError(chunk_id)
        return meta

    def chunks_for_sheet(self, sheet_name: str) -> list[ChunkMetadata]:
        return [m for m in self._chunks.values() if m.sheet_name == sheet_name]

    def payload(self, chunk_id: str) -> ChunkPayload | None:
        """Current payload if materialized; never reads the source."""
        self.get_chunk(chunk_id)
        return self._payloads.get(chunk_id)

    def is_materialized(self, chunk_id: str) -> bool:
        return chunk_id in self._payloads

    @property
    def materialized_ids(self) -> list[str]:
        return [cid for cid in self._chunks if cid in self._payloads]

    @property
    def auxiliary_sheets(self) -> list[Sheet]:
        """Sheets synthesized by lookup and normalization transformations."""
        with self._lock:
            return list(self._auxiliary.values())

    @property
    def transformation_log(self) -> list[TransformationLogEntry]:
        """Append-only audit log of attempted transformations, oldest first."""
        with self._lock:
            return list(self._log)

    # ------------------------------------------------------------------ #
    # Payload lifecycle
    # ------------------------------------------------------------------ #

    def materialize(self, chunk_id: str) -> ChunkPayload:
        """Load a chunk's header and rows from the source sheet.

        Idempotent: a chunk that is already materialized returns the same
        payload object without re-reading the source.

        Raises:
            ChunkNotFoundError: If the chunk id is unknown.
        """
        meta = self.get_chunk(chunk_id)
        existing = self._payloads.get(chunk_id)
        if existing is not None:
            return existing

        sheet = self.source.get_sheet(meta.sheet_name)
        if sheet is None:
            raise ChunkNotFoundError(
                chunk_id, message=f"Source sheet '{meta.sheet_name}' is gone"
            )

        rows = [list(r) for r in sheet.rows[meta.start_row - 1 : meta.end_row]]
        payload = ChunkPayload(
            chunk_id=chunk_id,
            sheet_name=meta.sheet_name,
            header=list(sheet.header),
            rows=rows,
        )
        meta.headers = list(sheet.header)
        self._payloads[chunk_id] = payload

        if self._started_at is None:
            self._started_at = time.monotonic()
        meta.processed = True
        self._current_chunk = chunk_id
        logger.debug("Chunk materialized", chunk_id=chunk_id, rows=len(rows))
        return payload

    def evict(self, chunk_id: str) -> None:
        """Drop a chunk's payload; metadata and ``processed`` are kept.

        A later :meth:`materialize` re-reads the source range, so changes made
        to an evicted payload are gone.
        """
        self.get_chunk(chunk_id)
        payload = self._payloads.pop(chunk_id, None)
        if payload is None:
            return
        if chunk_id in self._dirty:
            self._dirty.discard(chunk_id)
            logger.warning("Evicted chunk had applied transformations", chunk_id=chunk_id)
        logger.debug("Chunk evicted", chunk_id=chunk_id)

    def sample(self, chunk_id: str, max_rows: int | None = None) -> ChunkSample:
        """Header plus the first ``max_rows`` data rows of a chunk."""
        limit = settings.sample_rows if max_rows is None else max_rows
        payload = self.materialize(chunk_id)
        return ChunkSample(
            chunk_id=chunk_id,
            sheet=payload.sheet_name,
            header=list(payload.header),
            rows=[list(r) for r in payload.rows[: max(limit, 0)]],
        )

    # ------------------------------------------------------------------ #
    # Routing and application
    # ------------------------------------------------------------------ #

    def route(self, transformation: Transformation) -> list[str]:
        """Ids of chunks of the target sheet whose header has the target columns."""
        columns = transformation.target_columns
        return [
            meta.chunk_id
            for meta in self._chunks.values()
            if meta.sheet_name == transformation.sheet and meta.has_columns(columns)
        ]

    def apply_to_chunk(
        self,
        chunk_id: str,
        transformation: Transformation,
        state: CoordinationState | None = None,
    ) -> TransformationLogEntry:
        """Apply one descriptor to one chunk's payload, in place, and log it.

        Raises:
            ChunkNotFoundError: If the chunk id is unknown.
            TransformationFailedError: If the mutation raised. The payload may
                be partially mutated; a ``failed`` entry is still logged.
        """
        payload = self.materialize(chunk_id)
        meta = self._chunks[chunk_id]
        rows_before = len(payload.rows)

        with LogContext(chunk_id=chunk_id):
            try:
                outcome = self._engine.apply(
                    payload,
                    transformation,
                    scope_id=chunk_id,
                    state=state,
                    row_offset=meta.start_row - 1,
                )
            except TransformationFailedError as e:
                self._record_failure(chunk_id, transformation, rows_before, payload, e)
                raise
            except SheetCleanerError:
                raise
            except Exception as e:
                error = TransformationFailedError(
                    str(e) or type(e).__name__,
                    chunk_id=chunk_id,
                    transformation_type=transformation.type,
                    details={"cause": type(e).__name__},
                )
                self._record_failure(chunk_id, transformation, rows_before, payload, error)
                raise error from e

            if outcome.header_changed:
                meta.headers = list(payload.header)
            entry = TransformationLogEntry(
                chunk_id=chunk_id,
                transformation=transformation,
                status=TransformationStatus.COMPLETED,
                rows_before=outcome.rows_before,
                rows_after=outcome.rows_after,
                detail=outcome.detail,
            )
            with self._lock:
                self._merge_auxiliary(outcome.auxiliary_sheets)
                self._log.append(entry)
                self._dirty.add(chunk_id)
                self._current_chunk = chunk_id

            logger.debug(
                "Transformation applied",
                transformation=transformation.type,
                rows_before=outcome.rows_before,
                rows_after=outcome.rows_after,
                cells_changed=outcome.cells_changed,
            )
        return entry

    async def batch_apply(
        self,
        chunk_ids: Iterable[str],
        transformation: Transformation,
        parallel: bool = True,
    ) -> list[TransformationLogEntry]:
        """Apply a descriptor to many chunks.

        With ``parallel`` the chunks run in batches of ``parallel_batch_size``;
        batch *i + 1* starts only after every chunk of batch *i* finished.
        Without it, chunks run one at a time in the given order. Either way the
        first failure stops the call; work already done is not rolled back.

        Raises:
            CoordinationRequiredError: If a coordinated transformation is
                requested with ``parallel=True``.
            ChunkNotFoundError: If any id is unknown (checked up front).
            TransformationFailedError: If a chunk's mutation failed.
        """
        ids = list(dict.fromkeys(chunk_ids))
        for chunk_id in ids:
            self.get_chunk(chunk_id)

        coordinated = transformation.requires_cross_chunk_coordination
        if coordinated and parallel:
            raise CoordinationRequiredError(transformation.type)

        with timed_operation(logger, f"batch_apply[{transformation.type}]") as metrics:
            if coordinated:
                entries = await asyncio.to_thread(
                    self._apply_coordinated, ids, transformation
                )
                metrics.batches = 1
            elif parallel:
                entries = []
                for start in range(0, len(ids), self._batch_size):
                    batch = ids[start : start + self._batch_size]
                    results = await asyncio.gather(
                        *(
                            asyncio.to_thread(self.apply_to_chunk, cid, transformation)
                            for cid in batch
                        ),
                        return_exceptions=True,
                    )
                    metrics.batches += 1
                    for result in results:
                        if isinstance(result, BaseException):
                            raise result
                    entries.extend(results)
            else:
                entries = []
                for chunk_id in ids:
                    entries.append(
                        await asyncio.to_thread(self.apply_to_chunk, chunk_id, transformation)
                    )
                metrics.batches = len(ids)

            metrics.chunks_processed = len(entries)
            metrics.rows_processed = sum(e.rows_before for e in entries)
        return entries

    def _apply_coordinated(
        self, chunk_ids: list[str], transformation: Transformation
    ) -> list[TransformationLogEntry]:
        """One sequential pass threading an accumulator through the chunks."""
        order = {cid: position for position, cid in enumerate(self._chunks)}
        ordered = sorted(chunk_ids, key=order.__getitem__)
        payloads = [self.materialize(cid) for cid in ordered]

        state = self._engine.prepare(transformation, payloads)
        entries = [self.apply_to_chunk(cid, transformation, state=state) for cid in ordered]
        with self._lock:
            self._merge_auxiliary(self._engine.finalize(transformation, state))
        logger.info(
            "Coordinated pass finished",
            transformation=transformation.type,
            chunks=len(ordered),
        )
        return entries

    # ------------------------------------------------------------------ #
    # Progress
    # ------------------------------------------------------------------ #

    def progress(self) -> ProgressSnapshot:
        total = len(self._chunks)
        processed = sum(1 for m in self._chunks.values() if m.processed)
        percentage = round(processed / total * 100) if total else 0

        remaining = ""
        if self._started_at is not None and 0 < processed < total:
            elapsed = time.monotonic() - self._started_at
            remaining = format_remaining(elapsed / processed * (total - processed))

        return ProgressSnapshot(
            total_chunks=total,
            processed_chunks=processed,
            current_chunk=self._current_chunk,
            percentage=percentage,
            estimated_time_remaining=remaining,
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _merge_auxiliary(self, sheets: list[Sheet]) -> None:
        # Caller holds the lock. Same-name sheets from different chunks are concatenated.
        for sheet in sheets:
            existing = self._auxiliary.get(sheet.name)
            if existing is None:
                self._auxiliary[sheet.name] = Sheet(
                    name=sheet.name,
                    header=list(sheet.header),
                    rows=[list(r) for r in sheet.rows],
                )
            else:
                existing.rows.extend(list(r) for r in sheet.rows)

    def _record_failure(
        self,
        chunk_id: str,
        transformation: Transformation,
        rows_before: int,
        payload: ChunkPayload,
        error: TransformationFailedError,
    ) -> None:
        entry = TransformationLogEntry(
            chunk_id=chunk_id,
            transformation=transformation,
            status=TransformationStatus.FAILED,
            rows_before=rows_before,
            rows_after=len(payload.rows),
            detail=[error.message],
            error_code=error.error_code,
        )
        with self._lock:
            self._log.append(entry)
            self._dirty.add(chunk_id)
        logger.error(
            "Transformation failed",
            transformation=transformation.type,
            error_code=error.error_code.value,
            error=error.message,
        )
