"""Structured logging utilities for the sheet cleaner.

This module provides:
- Session and chunk correlation using contextvars, so log lines emitted from
  concurrently running chunk tasks stay attributable
- A ``StructuredLogger`` wrapper that renders key/value context
- Timing helpers that report chunk and row throughput
- Progress tracking for batched chunk processing

Usage:
    from sheet_cleaner.utils.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(session_id="s-1", chunk_id="s-1_Sheet1_chunk_0"):
        logger.info("Applying transformation", type="trim_whitespace")
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

_session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
_chunk_id_var: ContextVar[str | None] = ContextVar("chunk_id", default=None)
_extra_context_var: ContextVar[dict[str, Any] | None] = ContextVar(
    "extra_context", default=None
)


def get_session_id() -> str | None:
    """Get the current session ID from context."""
    return _session_id_var.get()


def set_session_id(session_id: str | None) -> None:
    """Set the session ID in context.

    Args:
        session_id: The session ID to set, or None to clear.
    """
    _session_id_var.set(session_id)


def get_chunk_id() -> str | None:
    """Get the chunk ID currently being processed, if any."""
    return _chunk_id_var.get()


def set_chunk_id(chunk_id: str | None) -> None:
    """Set the chunk ID in context.

    Args:
        chunk_id: The chunk ID to set, or None to clear.
    """
    _chunk_id_var.set(chunk_id)


def get_extra_context() -> dict[str, Any]:
    ctx = _extra_context_var.get()
    return ctx if ctx is not None else {}


def set_extra_context(context: dict[str, Any]) -> None:
    _extra_context_var.set(context)


def clear_context() -> None:
    """Clear all context variables."""
    _session_id_var.set(None)
    _chunk_id_var.set(None)
    _extra_context_var.set(None)


@dataclass
class PerformanceMetrics:
    """Container for performance metrics of a chunked operation.

    Attributes:
        operation: Name of the operation being measured.
        start_time: When the operation started.
        end_time: When the operation ended.
        duration_seconds: Duration in seconds.
        chunks_processed: Number of chunks touched.
        rows_processed: Number of data rows touched.
        batches: Number of batches run.
        api_calls: Number of recommendation generator calls.
        custom_metrics: Additional custom metrics.
    """

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    duration_seconds: float = 0.0
    chunks_processed: int = 0
    rows_processed: int = 0
    batches: int = 0
    api_calls: int = 0
    custom_metrics: dict[str, Any] = field(default_factory=dict)

    def finish(self) -> None:
        """Mark the operation as complete and calculate duration."""
        self.end_time = datetime.now(UTC)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if self.chunks_processed > 0:
            result["chunks_processed"] = self.chunks_processed
        if self.rows_processed > 0:
            result["rows_processed"] = self.rows_processed
        if self.batches > 0:
            result["batches"] = self.batches
        if self.api_calls > 0:
            result["api_calls"] = self.api_calls
        if self.custom_metrics:
            result["custom_metrics"] = self.custom_metrics
        return result


class StructuredLogFormatter(logging.Formatter):
    """Log formatter that prefixes records with session and chunk context."""

    def format(self, record: logging.LogRecord) -> str:
        prefix_parts = []
        session_id = get_session_id()
        chunk_id = get_chunk_id()
        if session_id:
            prefix_parts.append(f"session_id={session_id}")
        if chunk_id:
            prefix_parts.append(f"chunk_id={chunk_id}")
        for key, value in get_extra_context().items():
            prefix_parts.append(f"{key}={value}")

        prefix = f"[{' '.join(prefix_parts)}] " if prefix_parts else ""

        original_msg = record.msg
        record.msg = f"{prefix}{original_msg}"
        try:
            return super().format(record)
        finally:
            record.msg = original_msg


class StructuredLogger:
    """Logger wrapper that renders keyword arguments as ``key=value`` pairs.

    Example:
        logger.info("Chunk materialized", chunk_id="s_Sheet1_chunk_0", rows=1000)
        # Chunk materialized | chunk_id=s_Sheet1_chunk_0, rows=1000
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._name = name

    @property
    def logger(self) -> logging.Logger:
        """Access the underlying Python logger."""
        return self._logger

    def _build_message(self, message: str, **kwargs: Any) -> str:
        if not kwargs:
            return message
        parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {', '.join(parts)}"

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._build_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._build_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._build_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.error(self._build_message(message, **kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._logger.exception(self._build_message(message, **kwargs))

    def log_performance(self, metrics: PerformanceMetrics) -> None:
        """Log performance metrics.

        Args:
            metrics: Performance metrics to log.
        """
        self.info(f"Performance: {metrics.operation}", **metrics.to_dict())

    def log_progress(
        self,
        stage: str,
        current: int,
        total: int,
        details: str | None = None,
    ) -> None:
        """Log progress for long-running operations.

        Args:
            stage: Current processing stage.
            current: Current progress count.
            total: Total items to process.
            details: Optional additional details.
        """
        percentage = (current / total * 100) if total > 0 else 0
        kwargs: dict[str, Any] = {
            "current": current,
            "total": total,
            "percentage": f"{percentage:.1f}%",
        }
        if details:
            kwargs["details"] = details
        self.info(f"Progress: {stage}", **kwargs)

    def log_api_call(
        self,
        service: str,
        operation: str,
        duration_seconds: float,
        tokens_used: int | None = None,
        success: bool = True,
        error_message: str | None = None,
    ) -> None:
        """Log a call to the external recommendation generator.

        Args:
            service: Service name (e.g., "openai").
            operation: Operation performed.
            duration_seconds: Time taken for the call.
            tokens_used: Tokens consumed (if applicable).
            success: Whether the call succeeded.
            error_message: Error message if call failed.
        """
        kwargs: dict[str, Any] = {
            "service": service,
            "operation": operation,
            "duration_seconds": f"{duration_seconds:.3f}",
            "success": success,
        }
        if tokens_used is not None:
            kwargs["tokens_used"] = tokens_used
        if error_message:
            kwargs["error"] = error_message

        level = logging.INFO if success else logging.ERROR
        self._logger.log(level, self._build_message("API call", **kwargs))


class LogContext:
    """Context manager for adding temporary context to logs.

    ``session_id`` and ``chunk_id`` are routed to their dedicated context
    variables; any other keyword is merged into the extra context.

    Usage:
        with LogContext(session_id="abc", stage="analysis"):
            logger.info("Analyzing chunks")
    """

    def __init__(self, **kwargs: Any) -> None:
        self._new_context = dict(kwargs)
        self._old_context: dict[str, Any] = {}
        self._old_session_id: str | None = None
        self._old_chunk_id: str | None = None

    def __enter__(self) -> "LogContext":
        self._old_context = get_extra_context().copy()
        self._old_session_id = get_session_id()
        self._old_chunk_id = get_chunk_id()

        new_context = dict(self._new_context)
        session_id = new_context.pop("session_id", None)
        chunk_id = new_context.pop("chunk_id", None)
        if session_id is not None:
            set_session_id(session_id)
        if chunk_id is not None:
            set_chunk_id(chunk_id)

        merged = self._old_context.copy()
        merged.update(new_context)
        set_extra_context(merged)
        return self

    def __exit__(self, *args: Any) -> None:
        set_extra_context(self._old_context)
        set_session_id(self._old_session_id)
        set_chunk_id(self._old_chunk_id)


@contextmanager
def timed_operation(
    logger: StructuredLogger,
    operation: str,
) -> Generator[PerformanceMetrics, None, None]:
    """Context manager for timing operations.

    Usage:
        with timed_operation(logger, "batch_apply") as metrics:
            metrics.chunks_processed = 3

    Args:
        logger: Logger to use for output.
        operation: Name of the operation.

    Yields:
        PerformanceMetrics instance for tracking.
    """
    metrics = PerformanceMetrics(operation=operation)
    try:
        yield metrics
    finally:
        metrics.finish()
        logger.log_performance(metrics)


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    use_structured_formatter: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (int or string like "INFO").
        format_string: Custom format string (uses default if None).
        use_structured_formatter: Whether to use the structured formatter.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    formatter: logging.Formatter
    if use_structured_formatter:
        formatter = StructuredLogFormatter(format_string)
    else:
        formatter = logging.Formatter(format_string)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module.

    Args:
        name: Logger name (typically __name__).

    Returns:
        StructuredLogger instance.
    """
    return StructuredLogger(name)


class ProgressTracker:
    """Tracks completed chunks and estimates remaining time.

    Usage:
        tracker = ProgressTracker(logger, "Analyzing chunks", total=12)
        for batch in batches:
            ...
            tracker.update(len(batch), current_item=batch[-1])
        tracker.complete()
    """

    def __init__(
        self,
        logger: StructuredLogger,
        stage: str,
        total: int,
        log_interval: int = 1,
    ) -> None:
        """Initialize the progress tracker.

        Args:
            logger: Logger to use.
            stage: Description of the stage being tracked.
            total: Total number of items.
            log_interval: Log every N updates (1 = every update).
        """
        self._logger = logger
        self._stage = stage
        self._total = total
        self._current = 0
        self._current_item: str | None = None
        self._updates = 0
        self._log_interval = log_interval
        self._start_time = time.monotonic()

    @property
    def total(self) -> int:
        return self._total

    @property
    def current(self) -> int:
        return self._current

    @property
    def current_item(self) -> str | None:
        return self._current_item

    @property
    def percentage(self) -> int:
        """Completed share rounded to a whole percent."""
        if self._total <= 0:
            return 100
        return round(self._current / self._total * 100)

    def estimated_seconds_remaining(self) -> float:
        """Linear extrapolation from the average time per completed item."""
        if self._current <= 0 or self._current >= self._total:
            return 0.0
        elapsed = time.monotonic() - self._start_time
        return elapsed / self._current * (self._total - self._current)

    def update(
        self,
        increment: int = 1,
        current_item: str | None = None,
        details: str | None = None,
    ) -> None:
        """Update progress.

        Args:
            increment: Number of items completed.
            current_item: Identifier of the item last completed.
            details: Optional details about current item.
        """
        self._current = min(self._total, self._current + increment)
        self._updates += 1
        if current_item is not None:
            self._current_item = current_item
        if self._updates % self._log_interval == 0 or self._current == self._total:
            self._logger.log_progress(
                self._stage,
                self._current,
                self._total,
                details or current_item,
            )

    def complete(self) -> float:
        """Mark progress as complete.

        Returns:
            Total duration in seconds.
        """
        duration = time.monotonic() - self._start_time
        self._logger.info(
            f"Completed: {self._stage}",
            total_items=self._total,
            duration_seconds=f"{duration:.2f}",
        )
        return duration
