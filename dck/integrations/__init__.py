"""
Integrations: optional AI answer evaluation.

Importing this package registers the built-in providers.
"""

from .evaluation import (
    AnswerEvaluator,
    Evaluation,
    EvaluationError,
    EvaluationParams,
    ProviderConfig,
    UnknownProviderError,
    available_providers,
    create_provider,
    register_provider,
)
from .claude_provider import ClaudeProvider
from .keywords import extract_keywords, find_matching_keywords

__all__ = [
    "AnswerEvaluator",
    "Evaluation",
    "EvaluationError",
    "EvaluationParams",
    "ProviderConfig",
    "UnknownProviderError",
    "available_providers",
    "create_provider",
    "register_provider",
    "ClaudeProvider",
    "extract_keywords",
    "find_matching_keywords",
]
