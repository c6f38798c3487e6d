"""Recommendation strategies: LLM, simplified LLM prompt and rules."""

from sheet_cleaner.services.recommendations.base import (
    RecommendationContext,
    RecommendationGenerator,
)
from sheet_cleaner.services.recommendations.chain import (
    FallbackRecommendationChain,
    build_default_chain,
)
from sheet_cleaner.services.recommendations.llm import (
    LLMRecommendationGenerator,
    SimplifiedPromptRecommendationGenerator,
)
from sheet_cleaner.services.recommendations.rules import RuleBasedRecommendationGenerator
from sheet_cleaner.services.recommendations.user_request import UserRequestProcessor

__all__ = [
    "FallbackRecommendationChain",
    "LLMRecommendationGenerator",
    "RecommendationContext",
    "RecommendationGenerator",
    "RuleBasedRecommendationGenerator",
    "SimplifiedPromptRecommendationGenerator",
    "UserRequestProcessor",
    "build_default_chain",
]
