"""Turn a free-text cleaning request into one recommendation.

The request is first sent to the LLM; when that is not configured or fails,
keyword rules handle the common asks (blank rows, duplicates, phone numbers,
email addresses, missing values). Requests neither path understands are
rejected instead of being turned into a no-op.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from langchain_core.prompts import ChatPromptTemplate

from sheet_cleaner.models import (
    FillMissing,
    Priority,
    Recommendation,
    RecommendationCategory,
    RemoveDuplicates,
    RemoveEmptyRows,
    StandardizeFormat,
    Transformation,
    parse_transformation,
)
from sheet_cleaner.services.recommendations.base import RecommendationContext
from sheet_cleaner.services.recommendations.llm import (
    TRANSFORMATION_REFERENCE,
    LLMRecommendationGenerator,
)
from sheet_cleaner.services.recommendations.rules import mostly
from sheet_cleaner.services.transformation_engine import parse_number
from sheet_cleaner.utils.exceptions import (
    InvalidInputError,
    InvalidTransformationError,
    RecommendationGeneratorError,
)
from sheet_cleaner.utils.logging import get_logger
from sheet_cleaner.workbook import is_empty

logger = get_logger(__name__)

PHONE_KEYWORDS = ("phone", "tel", "mobile", "cell", "number")
EMAIL_KEYWORDS = ("email", "mail")


class UserRequestProcessor:
    """Resolve a user's request against the session's sheets and columns."""

    SYSTEM_PROMPT = """You are a spreadsheet data cleaning expert. Turn the user's \
request into exactly one transformation.

Allowed transformations (use exactly these type names and fields):
{transformation_reference}

Respond with a JSON object:
{{
  "message": "Clear explanation of what will be done",
  "transformation": {{"type": "...", "sheet": "...", "column": "..."}},
  "reasoning": "Why this approach fits the request",
  "confidence": 85
}}"""

    USER_PROMPT = """User request: "{request}"

Sheets and columns:
{columns}

Sample rows from the first sheet:
{samples}"""

    def __init__(self, llm_generator: LLMRecommendationGenerator | None = None) -> None:
        self._llm_generator = llm_generator or LLMRecommendationGenerator()

    def process(self, request: str, context: RecommendationContext) -> Recommendation:
        """Build a recommendation for ``request``.

        Raises:
            InvalidInputError: If the request is empty or cannot be mapped to a
                supported transformation.
        """
        if not request.strip():
            raise InvalidInputError("Cleaning request is empty", field="request")
        if not context.sheet_names:
            raise InvalidInputError("Session has no sheets to clean", field="request")

        if self._llm_generator.api_key:
            try:
                return self._process_with_llm(request, context)
            except (RecommendationGeneratorError, InvalidTransformationError) as e:
                logger.warning(
                    "LLM request processing failed, using keyword rules",
                    error=e.message,
                )
        return self._process_with_rules(request, context)

    def _process_with_llm(self, request: str, context: RecommendationContext) -> Recommendation:
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", self.SYSTEM_PROMPT),
                ("human", self.USER_PROMPT),
            ]
        ).partial(
            transformation_reference=TRANSFORMATION_REFERENCE,
            request=request,
            columns="\n".join(
                f"- {sheet}: {', '.join(context.headers_for_sheet(sheet))}"
                for sheet in context.sheet_names
            ),
            samples=json.dumps(
                [s.rows for s in context.samples[:1]], default=str, indent=2
            ),
        )
        data, _ = self._llm_generator.invoke_json(prompt)

        raw = data.get("transformation")
        if not isinstance(raw, dict):
            raise InvalidTransformationError(
                "Response carried no transformation object", errors=[str(raw)[:200]]
            )
        descriptor = dict(raw)
        descriptor.setdefault("sheet", context.sheet_names[0])
        transformation = parse_transformation(descriptor)

        return self._recommendation(
            context,
            transformation,
            message=str(data.get("message") or ""),
            reasoning=str(data.get("reasoning") or ""),
            confidence=data.get("confidence", 75),
            source="llm",
        )

    def _process_with_rules(self, request: str, context: RecommendationContext) -> Recommendation:
        text = request.lower()
        sheet = self._target_sheet(text, context)
        headers = context.headers_for_sheet(sheet)

        transformation: Transformation
        if "remove" in text and ("empty" in text or "blank" in text):
            transformation = RemoveEmptyRows(sheet=sheet)
            message = "I'll remove rows where every cell is empty."
        elif "duplicate" in text:
            transformation = RemoveDuplicates(sheet=sheet)
            message = "I'll remove exact duplicate rows, keeping the first occurrence."
        elif "phone" in text or "number" in text:
            column = self._find_column(headers, PHONE_KEYWORDS, text)
            transformation = StandardizeFormat(sheet=sheet, column=column, format="phone")
            message = f"I'll standardize phone numbers in '{column}' to (XXX) XXX-XXXX."
        elif "email" in text:
            column = self._find_column(headers, EMAIL_KEYWORDS, text)
            transformation = StandardizeFormat(sheet=sheet, column=column, format="email")
            message = f"I'll lowercase and trim email addresses in '{column}'."
        elif "missing" in text or "fill" in text or "empty" in text:
            column = self._column_named(headers, text) or self._most_missing(
                headers, sheet, context
            )
            position = headers.index(column)
            values = [
                str(row[position])
                for s in context.samples
                if s.sheet == sheet
                for row in s.rows
                if position < len(row) and not is_empty(row[position])
            ]
            numeric = mostly(values, lambda v: parse_number(v) is not None)
            transformation = FillMissing(
                sheet=sheet, column=column, method="median" if numeric else "mode"
            )
            message = (
                f"I'll fill missing values in '{column}' with the "
                f"{'median' if numeric else 'most common value'}."
            )
        else:
            raise InvalidInputError(
                f"Request not supported: {request}",
                field="request",
                details={
                    "supported": [
                        "remove blank rows",
                        "duplicates",
                        "phone",
                        "email",
                        "missing values",
                    ]
                },
            )

        return self._recommendation(
            context,
            transformation,
            message=message,
            reasoning=f"Keyword rules matched the request: {request}",
            confidence=75,
            source="rules",
        )

    @staticmethod
    def _target_sheet(text: str, context: RecommendationContext) -> str:
        for sheet in context.sheet_names:
            if sheet.lower() in text:
                return sheet
        return context.sheet_names[0]

    @staticmethod
    def _column_named(headers: list[str], text: str) -> str | None:
        for header in headers:
            if re.search(rf"\b{re.escape(header.lower())}\b", text):
                return header
        return None

    @classmethod
    def _find_column(cls, headers: list[str], keywords: tuple[str, ...], text: str) -> str:
        """Column named in the request, else the first matching a keyword."""
        named = cls._column_named(headers, text)
        if named is not None:
            return named
        for header in headers:
            if any(k in header.lower() for k in keywords):
                return header
        raise InvalidInputError(
            "No column in the sheet matches the request",
            field="request",
            details={"headers": headers},
        )

    @staticmethod
    def _most_missing(headers: list[str], sheet: str, context: RecommendationContext) -> str:
        """Header with the most empty cells in the sheet's previews."""
        if not headers:
            raise InvalidInputError("Sheet has no columns", field="request")
        rows = [row for s in context.samples if s.sheet == sheet for row in s.rows]
        missing = [
            sum(1 for row in rows if i >= len(row) or is_empty(row[i]))
            for i in range(len(headers))
        ]
        return headers[missing.index(max(missing))]

    @staticmethod
    def _recommendation(
        context: RecommendationContext,
        transformation: Transformation,
        message: str,
        reasoning: str,
        confidence: Any,
        source: str,
    ) -> Recommendation:
        return Recommendation(
            id=f"user_req_{context.session_id}_{time.time_ns()}",
            step=1,
            message=message,
            transformation=transformation,
            affected_chunks=context.affected_chunks(
                transformation.sheet, transformation.target_columns
            ),
            can_process_in_parallel=not transformation.requires_cross_chunk_coordination,
            priority=Priority.MEDIUM,
            category=RecommendationCategory.CLEANING,
            reasoning=reasoning,
            confidence=confidence,
            source=source,
        )
