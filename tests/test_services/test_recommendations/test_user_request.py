"""Tests for turning free-text cleaning requests into recommendations."""

import json
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from sheet_cleaner.models import (
    FillMissing,
    RemoveDuplicates,
    RemoveEmptyRows,
    StandardizeFormat,
)
from sheet_cleaner.services.recommendations.base import RecommendationContext
from sheet_cleaner.services.recommendations.llm import LLMRecommendationGenerator
from sheet_cleaner.services.recommendations.user_request import UserRequestProcessor
from sheet_cleaner.utils.exceptions import InvalidInputError


@pytest.fixture
def processor() -> UserRequestProcessor:
    """Processor without an API key, so keyword rules handle every request."""
    return UserRequestProcessor(LLMRecommendationGenerator(api_key=""))


@pytest.fixture
def llm_processor() -> UserRequestProcessor:
    generator = LLMRecommendationGenerator(api_key="test-key")
    generator._llm = MagicMock()
    return UserRequestProcessor(generator)


class TestKeywordRules:
    """Tests for the keyword fallback path."""

    def test_remove_blank_rows(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        rec = processor.process("Please remove blank rows", context)

        assert isinstance(rec.transformation, RemoveEmptyRows)
        assert rec.transformation.sheet == "People"
        assert rec.source == "rules"
        assert rec.id.startswith("user_req_s1_")

    def test_duplicates_target_named_sheet(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        rec = processor.process("get rid of duplicates in notes", context)

        assert isinstance(rec.transformation, RemoveDuplicates)
        assert rec.transformation.sheet == "Notes"
        assert rec.affected_chunks == ["s1_Notes_chunk_0"]

    def test_email_column_is_found(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        rec = processor.process("clean up the email addresses", context)

        assert isinstance(rec.transformation, StandardizeFormat)
        assert rec.transformation.column == "Email"
        assert rec.transformation.format == "email"

    def test_phone_without_matching_column(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        with pytest.raises(InvalidInputError, match="No column"):
            processor.process("format phone numbers", context)

    def test_fill_missing_picks_emptiest_numeric_column(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        rec = processor.process("fill in missing values", context)

        assert isinstance(rec.transformation, FillMissing)
        assert rec.transformation.column == "Age"
        assert rec.transformation.method == "median"

    def test_fill_missing_named_text_column_uses_mode(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        rec = processor.process("fill missing status", context)

        assert isinstance(rec.transformation, FillMissing)
        assert rec.transformation.column == "Status"
        assert rec.transformation.method == "mode"

    def test_unsupported_request(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        with pytest.raises(InvalidInputError, match="not supported") as exc_info:
            processor.process("make it prettier", context)

        assert "duplicates" in exc_info.value.details["supported"]

    def test_empty_request(
        self, processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        with pytest.raises(InvalidInputError, match="empty"):
            processor.process("   ", context)


class TestLLMPath:
    def test_model_descriptor_is_used(
        self, llm_processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        llm_processor._llm_generator._llm.invoke.return_value = AIMessage(
            content=json.dumps(
                {
                    "message": "Title-case names",
                    "transformation": {
                        "type": "standardize_format",
                        "column": "Name",
                        "format": "title_case",
                    },
                    "reasoning": "Names are inconsistently cased",
                    "confidence": 91,
                }
            )
        )

        rec = llm_processor.process("capitalize the names properly", context)

        assert isinstance(rec.transformation, StandardizeFormat)
        assert rec.transformation.sheet == "People"
        assert rec.transformation.format == "title_case"
        assert rec.confidence == 91
        assert rec.source == "llm"
        prompt = llm_processor._llm_generator._llm.invoke.call_args[0][0][1].content
        assert "People: Name, Age, Email, Status" in prompt

    def test_model_failure_falls_back_to_rules(
        self, llm_processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        llm_processor._llm_generator._llm.invoke.side_effect = RuntimeError("timeout")

        rec = llm_processor.process("remove duplicates", context)

        assert isinstance(rec.transformation, RemoveDuplicates)
        assert rec.source == "rules"

    def test_bad_descriptor_falls_back_to_rules(
        self, llm_processor: UserRequestProcessor, context: RecommendationContext
    ) -> None:
        llm_processor._llm_generator._llm.invoke.return_value = AIMessage(
            content=json.dumps({"transformation": {"type": "fill_missing"}})
        )

        rec = llm_processor.process("remove empty rows", context)

        assert isinstance(rec.transformation, RemoveEmptyRows)
