"""
Anthropic Claude evaluation provider.

Sends the question, expected answer, student answer and keywords to the
Messages API and parses the JSON evaluation from the reply.
"""

from __future__ import annotations

import asyncio
import json

import httpx
from loguru import logger
from pydantic import ValidationError

from dck.integrations.evaluation import (
    Evaluation,
    EvaluationError,
    EvaluationParams,
    ProviderConfig,
    register_provider,
)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"

EVALUATION_PROMPT = """You are an expert educational evaluator. Compare the student's answer with the expected answer.

**Question:**
{question}

**Expected Answer:**
{expected_answer}

**Student's Answer:**
{user_answer}

**Keywords to Check (bold terms of the expected answer):**
{keywords}

Rate the answer on five dimensions, using exactly one level for each:

1. accuracy: fully_correct | mostly_correct | partially_correct | incorrect_related | incorrect_misconception | completely_incorrect
2. completeness: complete | missing_key_detail | missing_examples | missing_explanation
3. clarity: clear | unclear_wording | ambiguous | unfocused
4. reasoning: sound | good_reasoning_wrong_conclusion | right_conclusion_wrong_reasoning | good_intuition_factual_mistake | confusing_concepts
5. structure: appropriate | too_short | too_long | missed_main_point | misinterpreted_question

Also report which keywords are present or missing, concrete improvements, and what the student did well.

Suggest a spaced repetition rating:
- 4 (Easy): excellent, full understanding
- 3 (Good): solid with minor gaps
- 2 (Hard): partially correct, needs review
- 1 (Again): major gaps or misconceptions

Respond with ONLY valid JSON (no markdown, no backticks) in this shape:
{{
  "suggestedRating": 3,
  "overallScore": 75,
  "accuracy": {{"level": "mostly_correct", "explanation": "..."}},
  "completeness": {{"level": "missing_key_detail", "missingPoints": ["..."]}},
  "clarity": {{"level": "clear", "suggestion": null}},
  "reasoning": {{"level": "sound", "explanation": "..."}},
  "structure": {{"level": "appropriate", "feedback": null}},
  "keywordAnalysis": {{
    "expectedKeywords": ["..."],
    "foundKeywords": ["..."],
    "missingKeywords": ["..."],
    "keywordScore": 50
  }},
  "improvements": ["..."],
  "strengths": ["..."]
}}"""


def build_prompt(params: EvaluationParams) -> str:
    return EVALUATION_PROMPT.format(
        question=params.question,
        expected_answer=params.expected_answer,
        user_answer=params.user_answer or "(no answer)",
        keywords=", ".join(params.keywords) or "(none)",
    )


def strip_code_fences(text: str) -> str:
    """Remove ```json fences a model may wrap around its JSON."""
    return text.replace("```json", "").replace("```", "").strip()


def parse_evaluation(text: str) -> Evaluation:
    """
    Parse a model reply into an Evaluation.

    Raises:
        EvaluationError: If the reply is not valid evaluation JSON
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise EvaluationError(f"Claude returned invalid JSON: {e}") from e

    try:
        return Evaluation.model_validate(data)
    except ValidationError as e:
        raise EvaluationError(f"Invalid evaluation response from Claude: {e}") from e


class ClaudeProvider:
    """HTTP client for Claude answer evaluation."""

    name = "Anthropic Claude"
    id = "claude"
    requires_api_key = True

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2000,
        timeout_seconds: float = 60.0,
        retry_attempts: int = 3,
        api_url: str = ANTHROPIC_API_URL,
        client: httpx.AsyncClient | None = None,
        backoff_base: float = 1.0,
    ):
        """
        Initialize Claude provider.

        Args:
            api_key: Anthropic API key
            model: Model name
            max_tokens: Maximum tokens for the reply
            timeout_seconds: Request timeout
            retry_attempts: Attempts on timeouts, network errors and 5xx
            api_url: Messages endpoint
            client: Pre-built client (tests inject a mock transport)
            backoff_base: Seconds for the first retry wait, doubled each attempt
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.api_url = api_url
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_base = backoff_base
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @classmethod
    def from_config(cls, config: ProviderConfig) -> ClaudeProvider:
        """
        Build a provider from settings.

        Raises:
            EvaluationError: If no API key is set (before any client is opened)
        """
        if not config.api_key:
            raise EvaluationError(f"Provider '{cls.id}' requires an API key")
        return cls(
            api_key=config.api_key,
            model=config.model or DEFAULT_MODEL,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
            retry_attempts=config.retry_attempts,
            api_url=config.endpoint or ANTHROPIC_API_URL,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def evaluate(self, params: EvaluationParams) -> Evaluation:
        """
        Evaluate an answer with retry logic.

        Raises:
            EvaluationError: On API failure or an unusable reply
        """
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": build_prompt(params)}],
        }
        headers = {
            "content-type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = await self.client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
                return parse_evaluation(self._reply_text(response))

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status < 500:
                    logger.error(f"Claude API error: {status} - {e.response.text}")
                    raise EvaluationError(f"Claude API error: {status}") from e
                logger.warning(
                    f"Claude server error {status} on attempt "
                    f"{attempt + 1}/{self.retry_attempts}"
                )

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"Claude timeout on attempt {attempt + 1}/{self.retry_attempts}")

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    f"Claude request error on attempt {attempt + 1}/{self.retry_attempts}: {e}"
                )

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.backoff_base * 2 ** attempt)

        logger.error(f"Claude evaluation failed after {self.retry_attempts} attempts: {last_error}")
        raise EvaluationError(f"Failed to evaluate with Claude: {last_error}")

    @staticmethod
    def _reply_text(response: httpx.Response) -> str:
        try:
            text = response.json()["content"][0]["text"]
        except ValueError as e:
            raise EvaluationError(f"Claude reply is not JSON: {e}") from e
        except (KeyError, IndexError, TypeError) as e:
            raise EvaluationError("Claude reply has no text content") from e
        if not isinstance(text, str):
            raise EvaluationError("Claude reply text is not a string")
        return text


register_provider(ClaudeProvider.id, ClaudeProvider.from_config)
