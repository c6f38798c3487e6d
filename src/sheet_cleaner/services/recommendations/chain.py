"""Fallback chain over recommendation strategies."""

from __future__ import annotations

from collections.abc import Sequence

from sheet_cleaner.models import DataQualityIssue, Recommendation
from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    RecommendationGenerator,
)
from sheet_cleaner.services.recommendations.llm import (
    LLMRecommendationGenerator,
    SimplifiedPromptRecommendationGenerator,
)
from sheet_cleaner.services.recommendations.rules import RuleBasedRecommendationGenerator
from sheet_cleaner.utils.exceptions import RecommendationGeneratorError
from sheet_cleaner.utils.logging import get_logger, timed_operation

logger = get_logger(__name__)


class FallbackRecommendationChain:
    """Try each strategy in order and return the first result.

    A strategy signals that the next one should be tried by raising
    :class:`RecommendationGeneratorError`. Any other exception propagates.
    """

    name = "chain"

    def __init__(self, strategies: Sequence[RecommendationGenerator]) -> None:
        if not strategies:
            raise ValueError("FallbackRecommendationChain needs at least one strategy")
        self.strategies = list(strategies)

    def generate(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> list[Recommendation]:
        last_error: RecommendationGeneratorError | None = None
        for strategy in self.strategies:
            with timed_operation(logger, f"recommendations[{strategy.name}]") as metrics:
                try:
                    recommendations = strategy.generate(issues, context)
                except RecommendationGeneratorError as e:
                    last_error = e
                    logger.warning(
                        "Recommendation strategy failed, falling back",
                        strategy=strategy.name,
                        error_code=e.error_code.value,
                        error=e.message,
                    )
                    continue
                metrics.custom_metrics["recommendations"] = len(recommendations)
            return recommendations

        assert last_error is not None
        raise last_error


def build_default_chain() -> FallbackRecommendationChain:
    """Primary LLM prompt, then the simplified prompt, then the rules."""
    return FallbackRecommendationChain(
        [
            LLMRecommendationGenerator(),
            SimplifiedPromptRecommendationGenerator(),
            RuleBasedRecommendationGenerator(),
        ]
    )
