"""Tests for the fallback chain over recommendation strategies."""

from unittest.mock import MagicMock

import pytest

from sheet_cleaner.models import DataQualityIssue, Recommendation, RemoveDuplicates
from sheet_cleaner.services.recommendations.base import RecommendationContext
from sheet_cleaner.services.recommendations.chain import (
    FallbackRecommendationChain,
    build_default_chain,
)
from sheet_cleaner.services.recommendations.llm import (
    LLMRecommendationGenerator,
    SimplifiedPromptRecommendationGenerator,
)
from sheet_cleaner.services.recommendations.rules import RuleBasedRecommendationGenerator
from sheet_cleaner.utils.exceptions import LLMResponseParseError, RecommendationGeneratorError


def _strategy(name: str, result: list[Recommendation] | Exception) -> MagicMock:
    strategy = MagicMock()
    strategy.name = name
    if isinstance(result, Exception):
        strategy.generate.side_effect = result
    else:
        strategy.generate.return_value = result
    return strategy


@pytest.fixture
def recommendation() -> Recommendation:
    return Recommendation(id="r1", transformation=RemoveDuplicates(sheet="People"))


class TestFallbackRecommendationChain:
    """Tests for FallbackRecommendationChain.generate."""

    def test_first_success_wins(
        self,
        issues: list[DataQualityIssue],
        context: RecommendationContext,
        recommendation: Recommendation,
    ) -> None:
        first = _strategy("first", [recommendation])
        second = _strategy("second", [])

        result = FallbackRecommendationChain([first, second]).generate(issues, context)

        assert result == [recommendation]
        second.generate.assert_not_called()

    def test_falls_through_generator_errors_in_order(
        self,
        issues: list[DataQualityIssue],
        context: RecommendationContext,
        recommendation: Recommendation,
    ) -> None:
        first = _strategy("llm", RecommendationGeneratorError("down", generator="llm"))
        second = _strategy("llm_simplified", LLMResponseParseError("garbled"))
        third = _strategy("rules", [recommendation])

        result = FallbackRecommendationChain([first, second, third]).generate(issues, context)

        assert result == [recommendation]
        first.generate.assert_called_once_with(issues, context)
        second.generate.assert_called_once_with(issues, context)

    def test_all_failing_reraises_last_error(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        last = RecommendationGeneratorError("second failed")
        chain = FallbackRecommendationChain(
            [_strategy("a", RecommendationGeneratorError("first failed")), _strategy("b", last)]
        )

        with pytest.raises(RecommendationGeneratorError) as exc_info:
            chain.generate(issues, context)

        assert exc_info.value is last

    def test_other_exceptions_propagate(
        self, issues: list[DataQualityIssue], context: RecommendationContext
    ) -> None:
        fallback = _strategy("rules", [])
        chain = FallbackRecommendationChain([_strategy("a", KeyError("boom")), fallback])

        with pytest.raises(KeyError):
            chain.generate(issues, context)

        fallback.generate.assert_not_called()

    def test_requires_a_strategy(self) -> None:
        with pytest.raises(ValueError):
            FallbackRecommendationChain([])


def test_default_chain_order() -> None:
    chain = build_default_chain()

    assert [type(s) for s in chain.strategies] == [
        LLMRecommendationGenerator,
        SimplifiedPromptRecommendationGenerator,
        RuleBasedRecommendationGenerator,
    ]


def test_default_chain_without_api_key_uses_rules(
    issues: list[DataQualityIssue], context: RecommendationContext
) -> None:
    chain = FallbackRecommendationChain(
        [
            LLMRecommendationGenerator(api_key=""),
            SimplifiedPromptRecommendationGenerator(api_key=""),
            RuleBasedRecommendationGenerator(),
        ]
    )

    result = chain.generate(issues, context)

    assert result
    assert {r.source for r in result} == {"rules"}
