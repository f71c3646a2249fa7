"""
Classifier selection for the parse stage.

Both strategies expose the same shape: a name, the minimum confidence the
parse stage should accept from them, and an async classify().
"""

from typing import Protocol

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.domain import Classification, EmailCandidate
from trackme.features.subscription_discovery.pipeline.parse.heuristic import HeuristicClassifier
from trackme.features.subscription_discovery.pipeline.parse.llm import LLMClassifier
from trackme.services.openai_service import OpenAIService

HEURISTIC = "heuristic"
LLM = "llm"


class SubscriptionClassifier(Protocol):
    name: str
    min_confidence: float

    async def classify(self, candidate: EmailCandidate) -> Classification: ...


def build_classifier(
    config: PipelineConfig, openai_service: OpenAIService | None = None
) -> SubscriptionClassifier:
    """
    Build the classifier named by config.parse_strategy.

    Raises:
        ValueError: Unknown strategy
    """
    strategy = (config.parse_strategy or HEURISTIC).lower()

    if strategy == HEURISTIC:
        return HeuristicClassifier(min_confidence=config.heuristic_min_confidence)

    if strategy == LLM:
        return LLMClassifier(
            openai_service or OpenAIService(timeout=config.http_timeout_seconds),
            min_confidence=config.llm_min_confidence,
        )

    raise ValueError(f"Unknown parse strategy '{config.parse_strategy}'")
