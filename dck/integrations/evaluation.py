"""
AI answer evaluation.

An evaluation scores a typed answer against the expected answer and
suggests a rating. It is feedback only: scheduling never depends on it and
the rating the user gives always wins.

Providers are looked up by id in a registry of factories:

    register_provider("claude", ClaudeProvider.from_config)
    evaluator = AnswerEvaluator(create_provider(config))
    result = await evaluator.evaluate(question, expected, answer)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from dck.integrations.keywords import extract_keywords


# =============================================================================
# Models
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AccuracyAssessment(_CamelModel):
    level: str
    explanation: str = ""


class CompletenessAssessment(_CamelModel):
    level: str
    missing_points: list[str] = Field(default_factory=list, alias="missingPoints")


class ClarityAssessment(_CamelModel):
    level: str
    suggestion: str | None = None


class ReasoningAssessment(_CamelModel):
    level: str
    explanation: str | None = None


class StructureAssessment(_CamelModel):
    level: str
    feedback: str | None = None


class KeywordAnalysis(_CamelModel):
    expected_keywords: list[str] = Field(default_factory=list, alias="expectedKeywords")
    found_keywords: list[str] = Field(default_factory=list, alias="foundKeywords")
    missing_keywords: list[str] = Field(default_factory=list, alias="missingKeywords")
    keyword_score: float = Field(default=0, alias="keywordScore")


class Evaluation(_CamelModel):
    """Structured feedback for one answer."""

    suggested_rating: int = Field(alias="suggestedRating", ge=1, le=4)
    overall_score: float = Field(alias="overallScore")
    accuracy: AccuracyAssessment
    completeness: CompletenessAssessment
    clarity: ClarityAssessment
    reasoning: ReasoningAssessment
    structure: StructureAssessment
    keyword_analysis: KeywordAnalysis = Field(alias="keywordAnalysis")
    improvements: list[str]
    strengths: list[str]


@dataclass
class EvaluationParams:
    """Request payload for a provider."""

    question: str
    expected_answer: str
    user_answer: str
    keywords: list[str]


@dataclass
class ProviderConfig:
    """Settings needed to construct a provider."""

    provider_id: str
    api_key: str | None = None
    model: str | None = None
    max_tokens: int = 2000
    timeout_seconds: float = 60.0
    retry_attempts: int = 3
    endpoint: str | None = None


class EvaluationError(Exception):
    """Raised when a provider cannot produce a valid evaluation."""


class UnknownProviderError(KeyError):
    """Raised when a provider id is not registered."""


class EvaluationProvider(Protocol):
    name: str
    id: str
    requires_api_key: bool

    async def evaluate(self, params: EvaluationParams) -> Evaluation: ...

    async def close(self) -> None: ...


# =============================================================================
# Registry
# =============================================================================

ProviderFactory = Callable[[ProviderConfig], EvaluationProvider]

_PROVIDERS: dict[str, ProviderFactory] = {}


def register_provider(provider_id: str, factory: ProviderFactory) -> None:
    """Register (or replace) the factory for a provider id."""
    _PROVIDERS[provider_id] = factory
    logger.debug(f"Registered evaluation provider '{provider_id}'")


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)


def create_provider(config: ProviderConfig) -> EvaluationProvider:
    """
    Construct the provider named by ``config.provider_id``.

    Raises:
        UnknownProviderError: If no factory is registered for the id
        EvaluationError: If the provider needs an API key and none is set
    """
    try:
        factory = _PROVIDERS[config.provider_id]
    except KeyError:
        raise UnknownProviderError(config.provider_id) from None

    provider = factory(config)
    if provider.requires_api_key and not config.api_key:
        raise EvaluationError(f"Provider '{config.provider_id}' requires an API key")
    return provider


# =============================================================================
# Evaluator
# =============================================================================


class AnswerEvaluator:
    """
    Scores answers with one provider.

    Constructed explicitly by the caller and passed to whoever needs it;
    on configuration changes, build a new one.
    """

    def __init__(self, provider: EvaluationProvider):
        self.provider = provider

    @classmethod
    def from_config(cls, config: ProviderConfig) -> AnswerEvaluator | None:
        """Build an evaluator, or None if the provider cannot be used."""
        try:
            return cls(create_provider(config))
        except (UnknownProviderError, EvaluationError) as e:
            logger.warning(f"AI evaluation unavailable: {e}")
            return None

    @property
    def provider_name(self) -> str:
        return self.provider.name

    async def evaluate(self, question: str, expected_answer: str, user_answer: str) -> Evaluation:
        """
        Evaluate one answer.

        Raises:
            EvaluationError: On provider failure
        """
        params = EvaluationParams(
            question=question,
            expected_answer=expected_answer,
            user_answer=user_answer,
            keywords=extract_keywords(expected_answer),
        )
        evaluation = await self.provider.evaluate(params)
        logger.debug(
            f"Evaluation: score={evaluation.overall_score} "
            f"suggested={evaluation.suggested_rating}"
        )
        return evaluation

    async def close(self) -> None:
        await self.provider.close()
