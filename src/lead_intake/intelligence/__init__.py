"""Sender heuristics and model-backed classification."""

from lead_intake.core.interfaces import ClassifierUnreachable

from .classifier import SenderClassifier, StatusPolicy, parse_classification
from .heuristics import is_obviously_not_a_lead
from .llm import GeminiClient, LLMClient, LLMError

__all__ = [
    "ClassifierUnreachable",
    "GeminiClient",
    "LLMClient",
    "LLMError",
    "SenderClassifier",
    "StatusPolicy",
    "is_obviously_not_a_lead",
    "parse_classification",
]
