"""Centralized exception classes for the sheet cleaner.

Every error raised by the engine carries a stable error code, an HTTP status
for the surrounding web layer, and a ``details`` dictionary that is safe to
log or return to an operator.

Exception Hierarchy:
    SheetCleanerError (base)
    ├── InvalidInputError
    │   ├── UnreadableDocumentError
    │   └── InvalidTransformationError
    ├── ChunkError
    │   └── ChunkNotFoundError
    ├── TransformationFailedError
    ├── SessionError
    │   ├── SessionNotFoundError
    │   ├── SessionExpiredError
    │   ├── RecommendationNotFoundError
    │   └── SourceUnavailableError
    ├── RecommendationGeneratorError
    │   └── LLMResponseParseError
    └── ConfigurationError

Error Codes:
    All errors have a unique error code (e.g., "E1001") that can be used
    for programmatic error handling and documentation.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used by the sheet cleaner.

    Error codes are grouped by category:
    - E1xxx: Input errors (chunk size, document buffer, descriptors)
    - E2xxx: Chunk errors
    - E3xxx: Transformation errors
    - E4xxx: Session errors
    - E5xxx: External service errors
    - E9xxx: Internal/unexpected errors
    """

    # Input errors (E1xxx)
    INVALID_INPUT = "E1001"
    UNREADABLE_DOCUMENT = "E1002"
    INVALID_TRANSFORMATION = "E1003"
    INVALID_CHUNK_SIZE = "E1004"

    # Chunk errors (E2xxx)
    CHUNK_NOT_FOUND = "E2001"

    # Transformation errors (E3xxx)
    TRANSFORMATION_FAILED = "E3001"
    COLUMN_NOT_FOUND = "E3002"
    COORDINATION_REQUIRED = "E3003"

    # Session errors (E4xxx)
    SESSION_NOT_FOUND = "E4001"
    SESSION_EXPIRED = "E4002"
    RECOMMENDATION_NOT_FOUND = "E4003"
    SOURCE_UNAVAILABLE = "E4004"

    # External service errors (E5xxx)
    RECOMMENDATION_GENERATOR_FAILED = "E5001"
    LLM_RESPONSE_PARSE_ERROR = "E5002"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    CONFIGURATION_ERROR = "E9002"


class HTTPStatusMixin:
    """Mixin that provides an HTTP status code for exceptions.

    Subclasses set the ``http_status`` class attribute so that an API layer
    can map errors to responses without a lookup table.
    """

    http_status: int = 500

    def get_http_status(self) -> int:
        """Get the HTTP status code for this exception."""
        return self.http_status


class SheetCleanerError(Exception, HTTPStatusMixin):
    """Base exception for all sheet cleaner errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses.

        Returns:
            Dictionary with error information.
        """
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# Input Errors (E1xxx)
# =============================================================================


class InvalidInputError(SheetCleanerError):
    """Raised when the caller supplies input the engine cannot work with."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_INPUT,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the offending field.

        Args:
            message: Error message.
            error_code: Error code.
            field: Name of the invalid parameter, if any.
            details: Additional details.
        """
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, error_code, details)
        self.field = field


class UnreadableDocumentError(InvalidInputError):
    """Raised when a document buffer is corrupt or not a supported container."""

    def __init__(
        self,
        message: str,
        filename: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the document name.

        Args:
            message: Error message.
            filename: Name of the uploaded document, when known.
            details: Additional details.
        """
        details = details or {}
        if filename:
            details["filename"] = filename
        super().__init__(
            message=message,
            error_code=ErrorCode.UNREADABLE_DOCUMENT,
            details=details,
        )
        self.filename = filename


class InvalidTransformationError(InvalidInputError):
    """Raised when a transformation descriptor is malformed or unsupported."""

    def __init__(
        self,
        message: str,
        transformation_type: str | None = None,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with validation errors.

        Args:
            message: Main error message.
            transformation_type: The ``type`` tag of the descriptor.
            errors: Individual validation error messages.
            details: Additional details.
        """
        details = details or {}
        if transformation_type:
            details["transformation_type"] = transformation_type
        if errors:
            details["validation_errors"] = errors
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_TRANSFORMATION,
            details=details,
        )
        self.transformation_type = transformation_type
        self.errors = errors or []


# =============================================================================
# Chunk Errors (E2xxx)
# =============================================================================


class ChunkError(SheetCleanerError):
    """Base class for chunk bookkeeping errors."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CHUNK_NOT_FOUND,
        chunk_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if chunk_id:
            details["chunk_id"] = chunk_id
        super().__init__(message, error_code, details)
        self.chunk_id = chunk_id


class ChunkNotFoundError(ChunkError):
    """Raised when an operation references an unknown chunk id."""

    http_status: int = 404

    def __init__(
        self,
        chunk_id: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with chunk ID.

        Args:
            chunk_id: The chunk ID that was not found.
            message: Optional custom message.
            details: Additional details.
        """
        message = message or f"Chunk not found: {chunk_id}"
        super().__init__(
            message=message,
            error_code=ErrorCode.CHUNK_NOT_FOUND,
            chunk_id=chunk_id,
            details=details,
        )


# =============================================================================
# Transformation Errors (E3xxx)
# =============================================================================


class TransformationFailedError(SheetCleanerError):
    """Raised when applying a transformation to one chunk fails.

    The message always names the chunk and the transformation type so an
    operator can decide whether to retry that single recommendation.
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        chunk_id: str | None = None,
        transformation_type: str | None = None,
        error_code: ErrorCode = ErrorCode.TRANSFORMATION_FAILED,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with chunk and transformation context.

        Args:
            message: Description of the underlying failure.
            chunk_id: Chunk whose payload was being mutated.
            transformation_type: ``type`` tag of the descriptor.
            error_code: Error code.
            details: Additional details.
        """
        details = details or {}
        if chunk_id:
            details["chunk_id"] = chunk_id
        if transformation_type:
            details["transformation_type"] = transformation_type
        prefix = []
        if transformation_type:
            prefix.append(f"{transformation_type}")
        if chunk_id:
            prefix.append(f"on chunk {chunk_id}")
        full_message = f"{' '.join(prefix)} failed: {message}" if prefix else message
        super().__init__(full_message, error_code, details)
        self.chunk_id = chunk_id
        self.transformation_type = transformation_type


class ColumnNotFoundError(TransformationFailedError):
    """Raised when a column-scoped transformation targets a missing column."""

    http_status: int = 400

    def __init__(
        self,
        column: str,
        sheet: str | None = None,
        chunk_id: str | None = None,
        transformation_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["column"] = column
        if sheet:
            details["sheet"] = sheet
        super().__init__(
            message=f"column '{column}' not found",
            chunk_id=chunk_id,
            transformation_type=transformation_type,
            error_code=ErrorCode.COLUMN_NOT_FOUND,
            details=details,
        )
        self.column = column


class CoordinationRequiredError(InvalidInputError):
    """Raised when a cross-chunk transformation is requested in parallel mode."""

    def __init__(
        self,
        transformation_type: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["transformation_type"] = transformation_type
        super().__init__(
            message=(
                f"Transformation '{transformation_type}' requires cross-chunk "
                "coordination and cannot run in parallel"
            ),
            error_code=ErrorCode.COORDINATION_REQUIRED,
            details=details,
        )
        self.transformation_type = transformation_type


# =============================================================================
# Session Errors (E4xxx)
# =============================================================================


class SessionError(SheetCleanerError):
    """Base class for cleaning session errors."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.SESSION_NOT_FOUND,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with session ID.

        Args:
            message: Error message.
            error_code: Error code.
            session_id: ID of the affected session.
            details: Additional details.
        """
        details = details or {}
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, error_code, details)
        self.session_id = session_id


class SessionNotFoundError(SessionError):
    """Raised when a session is not registered."""

    http_status: int = 404

    def __init__(
        self,
        session_id: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = message or f"Session not found: {session_id}"
        super().__init__(
            message=message,
            error_code=ErrorCode.SESSION_NOT_FOUND,
            session_id=session_id,
            details=details,
        )


class SessionExpiredError(SessionError):
    """Raised when a session has been idle past its TTL."""

    http_status: int = 410

    def __init__(
        self,
        session_id: str,
        ttl_hours: int | None = None,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with session ID and TTL.

        Args:
            session_id: The session ID that has expired.
            ttl_hours: The TTL in hours (for the error message).
            message: Optional custom message.
            details: Additional details.
        """
        details = details or {}
        if ttl_hours:
            details["ttl_hours"] = ttl_hours
        message = message or f"Session has expired: {session_id}"
        super().__init__(
            message=message,
            error_code=ErrorCode.SESSION_EXPIRED,
            session_id=session_id,
            details=details,
        )


class RecommendationNotFoundError(SessionError):
    """Raised when a decision references an unknown recommendation."""

    http_status: int = 404

    def __init__(
        self,
        recommendation_id: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        details["recommendation_id"] = recommendation_id
        super().__init__(
            message=f"Recommendation not found: {recommendation_id}",
            error_code=ErrorCode.RECOMMENDATION_NOT_FOUND,
            session_id=session_id,
            details=details,
        )
        self.recommendation_id = recommendation_id


class SourceUnavailableError(SessionError):
    """Raised when the backing document for a session cannot be retrieved."""

    http_status: int = 503

    def __init__(
        self,
        message: str,
        source_name: str | None = None,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if source_name:
            details["source_name"] = source_name
        super().__init__(
            message=message,
            error_code=ErrorCode.SOURCE_UNAVAILABLE,
            session_id=session_id,
            details=details,
        )
        self.source_name = source_name


# =============================================================================
# External Service Errors (E5xxx)
# =============================================================================


class RecommendationGeneratorError(SheetCleanerError):
    """Base class for recommendation generator failures."""

    http_status: int = 502

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.RECOMMENDATION_GENERATOR_FAILED,
        generator: str | None = None,
        model: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with generator information.

        Args:
            message: Error message.
            error_code: Error code.
            generator: Name of the strategy that failed.
            model: The LLM model involved, if any.
            details: Additional details.
        """
        details = details or {}
        if generator:
            details["generator"] = generator
        if model:
            details["model"] = model
        super().__init__(message, error_code, details)
        self.generator = generator
        self.model = model


class LLMResponseParseError(RecommendationGeneratorError):
    """Raised when an LLM response cannot be parsed into recommendations."""

    def __init__(
        self,
        message: str,
        raw_response: str | None = None,
        generator: str | None = None,
        model: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if raw_response:
            details["raw_response"] = raw_response[:500]
        super().__init__(
            message=message,
            error_code=ErrorCode.LLM_RESPONSE_PARSE_ERROR,
            generator=generator,
            model=model,
            details=details,
        )


# =============================================================================
# Internal Errors (E9xxx)
# =============================================================================


class ConfigurationError(SheetCleanerError):
    """Raised when settings are inconsistent."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)
        self.setting = setting
