"""LLM-backed recommendation generators using LangChain.

Two strategies share one client setup:

- :class:`LLMRecommendationGenerator` sends issues in small batches together
  with chunk previews and asks for detailed recommendations.
- :class:`SimplifiedPromptRecommendationGenerator` sends one short prompt
  with the highest ranked issues only; it is tried when the detailed prompt
  fails.

Both return recommendations whose ``transformation`` has been validated
against the descriptor union; suggestions the engine cannot run are dropped
with a warning.
"""

import json
import logging
import time
from typing import Any

from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from sheet_cleaner.config import settings
from sheet_cleaner.models import (
    ChunkSample,
    DataQualityIssue,
    Priority,
    Recommendation,
    RecommendationCategory,
    parse_transformation,
)
from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    cross_chunk_recommendations,
    issue_batches,
    prioritize,
)
from sheet_cleaner.utils.exceptions import (
    ErrorCode,
    InvalidTransformationError,
    LLMResponseParseError,
    RecommendationGeneratorError,
)

logger = logging.getLogger(__name__)

TRANSFORMATION_REFERENCE = """\
- fill_missing: sheet, column, method (median|mean|mode|fixed), value (only for fixed)
- remove_duplicates: sheet
- standardize_format: sheet, column, format (lowercase|uppercase|title_case|email|phone)
- fix_data_types: sheet, column, target_type (number|date|string)
- trim_whitespace: sheet, column
- split_multi_value: sheet, column, delimiter (optional regular expression)
- create_lookup_table: sheet, columns, lookup_table_name
- normalize_data: sheet, columns, new_table_name
- remove_empty_rows: sheet"""


class LLMRecommendationGenerator:
    """Generate recommendations with an LLM, a few issues per prompt."""

    name = "llm"

    SYSTEM_PROMPT = """You are a data cleaning expert working on large spreadsheets \
that have been split into row-range chunks. Every transformation you propose is \
applied to each chunk independently unless it says otherwise, so prefer operations \
that are correct on any subset of rows.

Allowed transformations (use exactly these type names and fields):
{transformation_reference}

Respond with a JSON object:
{{
  "recommendations": [
    {{
      "message": "Clear description of the action",
      "transformation": {{"type": "...", "sheet": "...", "column": "..."}},
      "priority": "critical|high|medium|low",
      "category": "normalization|cleaning|optimization|validation",
      "reasoning": "Why this approach works for large data",
      "impact": "Expected outcome",
      "confidence": 85,
      "can_process_in_parallel": true
    }}
  ]
}}

Limit yourself to {max_per_prompt} recommendations."""

    USER_PROMPT = """File: {filename}

## Chunks
- Total chunks: {chunk_count}
- Average rows per chunk: {average_rows}
- Sheets: {sheets}

## Identified issues (batch {batch_number})
{issues}

## Sample data from chunks
{samples}"""

    max_per_prompt = 5
    max_sample_chunks = 3
    max_sample_rows = 3
    max_sample_columns = 8

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        issue_batch_size: int | None = None,
        max_recommendations: int | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            api_key: OpenAI API key. Defaults to settings.
            model: Model name to use. Defaults to settings.openai_model.
            temperature: Sampling temperature. Defaults to settings.openai_temperature.
            max_tokens: Maximum tokens for response. Defaults to settings.openai_max_tokens.
            issue_batch_size: Issues per prompt.
            max_recommendations: Cap on the returned list.
        """
        self.api_key = api_key if api_key is not None else settings.get_openai_api_key()
        self.model = model or settings.openai_model
        self.temperature = (
            temperature if temperature is not None else settings.openai_temperature
        )
        self.max_tokens = max_tokens or settings.openai_max_tokens
        self.issue_batch_size = issue_batch_size or settings.recommendation_issue_batch_size
        self.max_recommendations = max_recommendations or settings.max_recommendations

        self._llm: ChatOpenAI | None = None

    @property
    def llm(self) -> ChatOpenAI:
        """Get or create the LangChain ChatOpenAI instance.

        Raises:
            RecommendationGeneratorError: If API key is not configured.
        """
        if self._llm is None:
            if not self.api_key:
                raise RecommendationGeneratorError(
                    "OpenAI API key not configured",
                    error_code=ErrorCode.CONFIGURATION_ERROR,
                    generator=self.name,
                    details={"missing": "openai_api_key"},
                )

            self._llm = ChatOpenAI(
                api_key=self.api_key,  # type: ignore[arg-type]
                model=self.model,
                temperature=self.temperature,
                max_completion_tokens=self.max_tokens,
                model_kwargs={"response_format": {"type": "json_object"}},
            )

        return self._llm

    def generate(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> list[Recommendation]:
        """Ask the model for recommendations, batch by batch.

        Raises:
            RecommendationGeneratorError: If the client is not configured, a
                call fails, or no usable recommendation came back.
        """
        start_time = time.time()
        recommendations: list[Recommendation] = []
        total_tokens = 0

        for batch_index, batch in enumerate(self._issue_batches(issues)):
            prompt = self._build_prompt(batch, context, batch_index)
            data, tokens = self.invoke_json(prompt)
            total_tokens += tokens
            recommendations.extend(
                self._build_recommendations(
                    data.get("recommendations", []), context, batch_index
                )
            )

        if issues and not recommendations:
            raise RecommendationGeneratorError(
                "Model returned no usable recommendations",
                generator=self.name,
                model=self.model,
            )

        recommendations.extend(cross_chunk_recommendations(context, source=self.name))
        result = prioritize(recommendations, self.max_recommendations)
        logger.info(
            f"LLM recommendations generated: generator={self.name}, "
            f"count={len(result)}, tokens={total_tokens}, "
            f"time={time.time() - start_time:.2f}s"
        )
        return result

    # ------------------------------------------------------------------ #
    # Prompting
    # ------------------------------------------------------------------ #

    def _issue_batches(self, issues: list[DataQualityIssue]) -> list[list[DataQualityIssue]]:
        return issue_batches(issues, self.issue_batch_size)

    def _build_prompt(
        self,
        issues: list[DataQualityIssue],
        context: RecommendationContext,
        batch_index: int,
    ) -> ChatPromptTemplate:
        chunks = context.chunks
        average_rows = round(sum(c.row_count for c in chunks) / len(chunks)) if chunks else 0

        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", self.SYSTEM_PROMPT),
                ("human", self.USER_PROMPT),
            ]
        )
        return prompt.partial(
            transformation_reference=TRANSFORMATION_REFERENCE,
            max_per_prompt=str(self.max_per_prompt),
            filename=context.filename or "spreadsheet",
            chunk_count=str(len(chunks)),
            average_rows=str(average_rows),
            sheets=", ".join(context.sheet_names) or "none",
            batch_number=str(batch_index + 1),
            issues=json.dumps(
                [issue.model_dump(mode="json") for issue in issues], indent=2
            ),
            samples=self._format_samples(context.samples),
        )

    def _format_samples(self, samples: list[ChunkSample]) -> str:
        lines: list[str] = []
        for sample in samples[: self.max_sample_chunks]:
            lines.append(f"Chunk {sample.chunk_id}:")
            for row in [sample.header, *sample.rows[: self.max_sample_rows]]:
                lines.append(
                    " | ".join("" if v is None else str(v) for v in row[: self.max_sample_columns])
                )
        return "\n".join(lines) or "No samples available."

    def invoke_json(self, prompt: ChatPromptTemplate) -> tuple[dict[str, Any], int]:
        """Run one prompt and return the parsed JSON object and token count."""
        llm = self.llm
        messages = prompt.format_messages()
        try:
            response = llm.invoke(messages)
        except Exception as e:
            raise RecommendationGeneratorError(
                f"LLM call failed: {e}",
                generator=self.name,
                model=self.model,
                details={"original_error": str(e)},
            ) from e

        content = response.content
        if not isinstance(content, str):
            content = str(content)

        usage_metadata = getattr(response, "usage_metadata", None) or {}
        tokens = usage_metadata.get("input_tokens", 0) + usage_metadata.get(
            "output_tokens", 0
        )
        return self._parse_response(content), tokens

    def _parse_response(self, response: str) -> dict[str, Any]:
        """Parse a JSON object, tolerating prose around it.

        Raises:
            LLMResponseParseError: If no JSON object can be recovered.
        """
        try:
            data = json.loads(response)
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            start_idx = response.find("{")
            end_idx = response.rfind("}") + 1
            if start_idx != -1 and end_idx > start_idx:
                try:
                    data = json.loads(response[start_idx:end_idx])
                except json.JSONDecodeError:
                    data = None
                if isinstance(data, dict):
                    return data

        raise LLMResponseParseError(
            "Failed to parse recommendation response as a JSON object",
            raw_response=response,
            generator=self.name,
            model=self.model,
        )

    # ------------------------------------------------------------------ #
    # Response mapping
    # ------------------------------------------------------------------ #

    def _build_recommendations(
        self,
        items: Any,
        context: RecommendationContext,
        batch_index: int,
    ) -> list[Recommendation]:
        if not isinstance(items, list):
            return []

        recommendations = []
        for index, item in enumerate(items[: self.max_per_prompt], start=1):
            if not isinstance(item, dict):
                continue
            raw = item.get("transformation")
            if not isinstance(raw, dict):
                continue

            descriptor = dict(raw)
            descriptor.setdefault("sheet", item.get("targetSheet") or item.get("target_sheet"))
            if "column" not in descriptor and item.get("targetColumn"):
                descriptor["column"] = item["targetColumn"]
            try:
                transformation = parse_transformation(descriptor)
            except InvalidTransformationError as e:
                logger.warning(
                    f"Dropping unusable suggestion from {self.name}: "
                    f"{e.message} ({'; '.join(e.errors)})"
                )
                continue
            if transformation.sheet not in context.sheet_names:
                logger.warning(
                    f"Dropping suggestion for unknown sheet '{transformation.sheet}'"
                )
                continue

            recommendations.append(
                Recommendation(
                    id=f"{self.name}_{context.session_id}_{batch_index}_{index}",
                    step=batch_index * self.max_per_prompt + index,
                    message=str(item.get("message") or ""),
                    transformation=transformation,
                    affected_chunks=context.affected_chunks(
                        transformation.sheet, transformation.target_columns
                    ),
                    can_process_in_parallel=item.get("can_process_in_parallel", True) is not False,
                    priority=_enum_or_default(Priority, item.get("priority"), Priority.MEDIUM),
                    category=_enum_or_default(
                        RecommendationCategory,
                        item.get("category"),
                        RecommendationCategory.CLEANING,
                    ),
                    reasoning=str(item.get("reasoning") or ""),
                    impact=str(item.get("impact") or ""),
                    confidence=item.get("confidence", 75),
                    source=self.name,
                )
            )
        return recommendations


class SimplifiedPromptRecommendationGenerator(LLMRecommendationGenerator):
    """One short prompt with the top issues only, no chunk previews."""

    name = "llm_simplified"

    SYSTEM_PROMPT = """You suggest spreadsheet cleaning steps. Allowed transformations:
{transformation_reference}

Respond with JSON: {{"recommendations": [{{"message": "...", \
"transformation": {{"type": "...", "sheet": "..."}}, "priority": "high|medium|low", \
"confidence": 80}}]}}. At most {max_per_prompt} items."""

    USER_PROMPT = """Sheets: {sheets}
Issues:
{issues}"""

    max_per_prompt = 5
    max_issues = 5

    def _issue_batches(self, issues: list[DataQualityIssue]) -> list[list[DataQualityIssue]]:
        return [issues[: self.max_issues]] if issues else []

    def _build_prompt(
        self,
        issues: list[DataQualityIssue],
        context: RecommendationContext,
        batch_index: int,
    ) -> ChatPromptTemplate:
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", self.SYSTEM_PROMPT),
                ("human", self.USER_PROMPT),
            ]
        )
        return prompt.partial(
            transformation_reference=TRANSFORMATION_REFERENCE,
            max_per_prompt=str(self.max_per_prompt),
            sheets=", ".join(context.sheet_names) or "none",
            issues="\n".join(
                f"- {i.type.value} in {i.sheet}/{i.column or 'all columns'}: "
                f"{i.count} ({i.severity.value})"
                for i in issues
            ),
        )


def _enum_or_default(enum_cls: Any, value: Any, default: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return default
