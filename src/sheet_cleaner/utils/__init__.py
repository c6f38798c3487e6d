"""Utilities package for the sheet cleaner.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
"""

from sheet_cleaner.utils.exceptions import (
    ChunkNotFoundError,
    ErrorCode,
    HTTPStatusMixin,
    InvalidInputError,
    SheetCleanerError,
    SourceUnavailableError,
    TransformationFailedError,
)
from sheet_cleaner.utils.logging import (
    LogContext,
    StructuredLogger,
    get_chunk_id,
    get_logger,
    get_session_id,
    set_session_id,
)

__all__ = [
    # Exceptions
    "ChunkNotFoundError",
    "ErrorCode",
    "HTTPStatusMixin",
    "InvalidInputError",
    "SheetCleanerError",
    "SourceUnavailableError",
    "TransformationFailedError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_chunk_id",
    "get_logger",
    "get_session_id",
    "set_session_id",
]
