"""Tests for the centralized exception classes."""

from sheet_cleaner.utils.exceptions import (
    ChunkNotFoundError,
    ColumnNotFoundError,
    ConfigurationError,
    CoordinationRequiredError,
    ErrorCode,
    InvalidInputError,
    InvalidTransformationError,
    LLMResponseParseError,
    RecommendationGeneratorError,
    RecommendationNotFoundError,
    SessionExpiredError,
    SessionNotFoundError,
    SheetCleanerError,
    SourceUnavailableError,
    TransformationFailedError,
    UnreadableDocumentError,
)


class TestErrorCode:
    """Tests for ErrorCode enumeration."""

    def test_error_codes_are_unique(self) -> None:
        values = [code.value for code in ErrorCode]
        assert len(values) == len(set(values))

    def test_error_code_format(self) -> None:
        """Error codes should follow Exxxx format."""
        for code in ErrorCode:
            assert code.value.startswith("E")
            assert len(code.value) == 5
            assert code.value[1:].isdigit()

    def test_code_ranges(self) -> None:
        assert ErrorCode.INVALID_CHUNK_SIZE.value.startswith("E1")
        assert ErrorCode.CHUNK_NOT_FOUND.value.startswith("E2")
        assert ErrorCode.TRANSFORMATION_FAILED.value.startswith("E3")
        assert ErrorCode.SOURCE_UNAVAILABLE.value.startswith("E4")
        assert ErrorCode.LLM_RESPONSE_PARSE_ERROR.value.startswith("E5")
        assert ErrorCode.CONFIGURATION_ERROR.value.startswith("E9")


class TestSheetCleanerError:
    """Tests for the base error class."""

    def test_basic_initialization(self) -> None:
        error = SheetCleanerError("Test error message")
        assert str(error) == "[E9001] Test error message"
        assert error.message == "Test error message"
        assert error.error_code == ErrorCode.INTERNAL_ERROR
        assert error.details == {}
        assert error.get_http_status() == 500

    def test_to_dict(self) -> None:
        error = SheetCleanerError(
            "Test error",
            error_code=ErrorCode.CHUNK_NOT_FOUND,
            details={"chunk_id": "c-1"},
        )
        assert error.to_dict() == {
            "error_code": "E2001",
            "message": "Test error",
            "details": {"chunk_id": "c-1"},
        }

    def test_to_dict_without_details(self) -> None:
        assert "details" not in SheetCleanerError("Test error").to_dict()


class TestInputErrors:
    def test_invalid_input_records_field(self) -> None:
        error = InvalidInputError(
            "Chunk size must be positive",
            error_code=ErrorCode.INVALID_CHUNK_SIZE,
            field="chunk_size",
        )
        assert error.field == "chunk_size"
        assert error.details["field"] == "chunk_size"
        assert error.http_status == 400
        assert str(error).startswith("[E1004]")

    def test_unreadable_document(self) -> None:
        error = UnreadableDocumentError("Corrupt", filename="broken.xlsx")
        assert isinstance(error, InvalidInputError)
        assert error.error_code == ErrorCode.UNREADABLE_DOCUMENT
        assert error.details["filename"] == "broken.xlsx"

    def test_invalid_transformation(self) -> None:
        error = InvalidTransformationError(
            "Malformed",
            transformation_type="fill_missing",
            errors=["column: Field required"],
        )
        assert error.errors == ["column: Field required"]
        assert error.details["transformation_type"] == "fill_missing"
        assert error.details["validation_errors"] == ["column: Field required"]

    def test_coordination_required(self) -> None:
        error = CoordinationRequiredError("remove_duplicates_global")
        assert isinstance(error, InvalidInputError)
        assert error.error_code == ErrorCode.COORDINATION_REQUIRED
        assert "remove_duplicates_global" in error.message


class TestChunkAndTransformationErrors:
    def test_chunk_not_found(self) -> None:
        error = ChunkNotFoundError("s_Sheet1_chunk_9")
        assert error.chunk_id == "s_Sheet1_chunk_9"
        assert error.http_status == 404
        assert "s_Sheet1_chunk_9" in str(error)

    def test_transformation_failed_names_chunk_and_type(self) -> None:
        error = TransformationFailedError(
            "division by zero",
            chunk_id="s_Sheet1_chunk_0",
            transformation_type="fill_missing",
        )
        assert error.message == "fill_missing on chunk s_Sheet1_chunk_0 failed: division by zero"
        assert error.details == {
            "chunk_id": "s_Sheet1_chunk_0",
            "transformation_type": "fill_missing",
        }

    def test_transformation_failed_without_context(self) -> None:
        assert TransformationFailedError("boom").message == "boom"

    def test_column_not_found(self) -> None:
        error = ColumnNotFoundError(
            "Age", chunk_id="c-0", transformation_type="fill_missing"
        )
        assert isinstance(error, TransformationFailedError)
        assert error.column == "Age"
        assert error.error_code == ErrorCode.COLUMN_NOT_FOUND
        assert "column 'Age' not found" in error.message
        assert "on chunk c-0" in error.message


class TestSessionErrors:
    def test_session_not_found(self) -> None:
        error = SessionNotFoundError("abc")
        assert error.session_id == "abc"
        assert error.http_status == 404

    def test_session_expired(self) -> None:
        error = SessionExpiredError("abc", ttl_hours=24)
        assert error.http_status == 410
        assert error.details["ttl_hours"] == 24

    def test_recommendation_not_found(self) -> None:
        error = RecommendationNotFoundError("rules_abc_3", session_id="abc")
        assert error.recommendation_id == "rules_abc_3"
        assert error.details == {"recommendation_id": "rules_abc_3", "session_id": "abc"}

    def test_source_unavailable(self) -> None:
        error = SourceUnavailableError("gone", source_name="data.xlsx")
        assert error.http_status == 503
        assert error.source_name == "data.xlsx"


class TestExternalErrors:
    def test_generator_error(self) -> None:
        error = RecommendationGeneratorError("failed", generator="llm", model="gpt-4o-mini")
        assert error.http_status == 502
        assert error.details == {"generator": "llm", "model": "gpt-4o-mini"}

    def test_parse_error_truncates_raw_response(self) -> None:
        error = LLMResponseParseError("bad json", raw_response="x" * 1000)
        assert isinstance(error, RecommendationGeneratorError)
        assert len(error.details["raw_response"]) == 500

    def test_configuration_error(self) -> None:
        error = ConfigurationError("bad", setting="chunk_size")
        assert error.error_code == ErrorCode.CONFIGURATION_ERROR
        assert error.details["setting"] == "chunk_size"
