from trackme.features.subscription_discovery.pipeline.parse.classifier import (
    SubscriptionClassifier,
    build_classifier,
)
from trackme.features.subscription_discovery.pipeline.parse.heuristic import HeuristicClassifier
from trackme.features.subscription_discovery.pipeline.parse.llm import LLMClassifier
from trackme.features.subscription_discovery.pipeline.parse.service import ParseWorker

__all__ = [
    "HeuristicClassifier",
    "LLMClassifier",
    "ParseWorker",
    "SubscriptionClassifier",
    "build_classifier",
]
