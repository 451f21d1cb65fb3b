"""
Unit tests for AI answer evaluation (registry, evaluator, Claude provider).
"""
import json

import httpx
import pytest
import pytest_asyncio

from dck.integrations import evaluation
from dck.integrations.claude_provider import (
    ANTHROPIC_VERSION,
    ClaudeProvider,
    build_prompt,
    parse_evaluation,
    strip_code_fences,
)
from dck.integrations.evaluation import (
    AnswerEvaluator,
    Evaluation,
    EvaluationError,
    EvaluationParams,
    ProviderConfig,
    UnknownProviderError,
    available_providers,
    create_provider,
)


@pytest.fixture
def params():
    return EvaluationParams(
        question="Name the first two OSI layers",
        expected_answer="- **Physical**\n- **Data Link**",
        user_answer="Physical, then network",
        keywords=["Physical", "Data Link"],
    )


def claude_reply(text, status=200):
    return httpx.Response(status, json={"content": [{"type": "text", "text": text}]})


class Recorder:
    """MockTransport handler replaying scripted responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_provider(recorder, retry_attempts=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return ClaudeProvider(api_key="sk-test", retry_attempts=retry_attempts, client=client, backoff_base=0)


class TestEvaluationModel:

    def test_camel_case_payload(self, evaluation_payload):
        result = Evaluation.model_validate(evaluation_payload)

        assert result.suggested_rating == 3
        assert result.overall_score == 82
        assert result.completeness.missing_points == ["Mention the handshake"]
        assert result.keyword_analysis.missing_keywords == ["Data Link"]
        assert result.clarity.suggestion is None

    def test_rating_out_of_range(self, evaluation_payload):
        evaluation_payload["suggestedRating"] = 7
        with pytest.raises(ValueError):
            Evaluation.model_validate(evaluation_payload)


class TestPromptAndParsing:

    def test_prompt_contents(self, params):
        prompt = build_prompt(params)

        assert "Name the first two OSI layers" in prompt
        assert "Physical, then network" in prompt
        assert "Physical, Data Link" in prompt
        assert '"suggestedRating": 3' in prompt

    def test_prompt_without_answer_or_keywords(self, params):
        params.user_answer = ""
        params.keywords = []
        prompt = build_prompt(params)

        assert "(no answer)" in prompt
        assert "(none)" in prompt

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_parse_fenced_reply(self, evaluation_payload):
        result = parse_evaluation("```json\n" + json.dumps(evaluation_payload) + "\n```")
        assert result.suggested_rating == 3

    def test_parse_invalid_json(self):
        with pytest.raises(EvaluationError):
            parse_evaluation("I think the answer is fine.")

    def test_parse_wrong_shape(self):
        with pytest.raises(EvaluationError):
            parse_evaluation('{"suggestedRating": 3}')


class TestClaudeProvider:

    @pytest.mark.asyncio
    async def test_success(self, params, evaluation_payload):
        recorder = Recorder(claude_reply(json.dumps(evaluation_payload)))
        provider = make_provider(recorder)

        result = await provider.evaluate(params)
        await provider.close()

        assert result.overall_score == 82
        request = recorder.requests[0]
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        body = json.loads(request.content)
        assert body["model"] == provider.model
        assert body["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, params, evaluation_payload):
        recorder = Recorder(httpx.Response(503), claude_reply(json.dumps(evaluation_payload)))
        provider = make_provider(recorder)

        result = await provider.evaluate(params)
        await provider.close()

        assert result.suggested_rating == 3
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, params, evaluation_payload):
        recorder = Recorder(httpx.ReadTimeout("slow"), claude_reply(json.dumps(evaluation_payload)))
        provider = make_provider(recorder)

        result = await provider.evaluate(params)
        await provider.close()

        assert result.suggested_rating == 3
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, params):
        recorder = Recorder(httpx.Response(401, json={"error": "bad key"}))
        provider = make_provider(recorder)

        with pytest.raises(EvaluationError):
            await provider.evaluate(params)
        await provider.close()

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, params):
        recorder = Recorder(httpx.Response(500))
        provider = make_provider(recorder, retry_attempts=3)

        with pytest.raises(EvaluationError):
            await provider.evaluate(params)
        await provider.close()

        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_non_json_body(self, params):
        recorder = Recorder(httpx.Response(200, text="<html>gateway</html>"))
        provider = make_provider(recorder)

        with pytest.raises(EvaluationError):
            await provider.evaluate(params)
        await provider.close()

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_text_that_is_not_a_string(self, params):
        recorder = Recorder(httpx.Response(200, json={"content": [{"text": {"nested": True}}]}))
        provider = make_provider(recorder)

        with pytest.raises(EvaluationError):
            await provider.evaluate(params)
        await provider.close()

    @pytest.mark.asyncio
    async def test_reply_without_text(self, params):
        recorder = Recorder(httpx.Response(200, json={"content": []}))
        provider = make_provider(recorder)

        with pytest.raises(EvaluationError):
            await provider.evaluate(params)
        await provider.close()


class FakeProvider:
    name = "Fake"
    id = "fake"
    requires_api_key = False

    def __init__(self, config, result):
        self.config = config
        self.result = result
        self.seen = []
        self.closed = False

    async def evaluate(self, params):
        self.seen.append(params)
        return self.result

    async def close(self):
        self.closed = True


class TestRegistry:

    def test_claude_is_registered(self):
        assert "claude" in available_providers()

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            create_provider(ProviderConfig(provider_id="nope"))

    def test_claude_needs_a_key(self, monkeypatch):
        opened = []
        monkeypatch.setattr(httpx, "AsyncClient", lambda *args, **kwargs: opened.append(1))

        with pytest.raises(EvaluationError):
            create_provider(ProviderConfig(provider_id="claude"))

        assert opened == []

    def test_claude_from_config(self):
        provider = create_provider(ProviderConfig(provider_id="claude", api_key="sk-test", model="m", max_tokens=10))

        assert isinstance(provider, ClaudeProvider)
        assert provider.model == "m"
        assert provider.max_tokens == 10

    def test_from_config_failure_returns_none(self):
        assert AnswerEvaluator.from_config(ProviderConfig(provider_id="nope")) is None
        assert AnswerEvaluator.from_config(ProviderConfig(provider_id="claude")) is None


class TestAnswerEvaluator:

    @pytest_asyncio.fixture
    async def fake(self, monkeypatch, evaluation_payload):
        result = Evaluation.model_validate(evaluation_payload)
        created = []

        def factory(config):
            provider = FakeProvider(config, result)
            created.append(provider)
            return provider

        monkeypatch.setitem(evaluation._PROVIDERS, "fake", factory)
        evaluator = AnswerEvaluator.from_config(ProviderConfig(provider_id="fake"))
        yield evaluator, created
        await evaluator.close()

    @pytest.mark.asyncio
    async def test_keywords_come_from_expected_answer(self, fake):
        evaluator, created = fake

        result = await evaluator.evaluate("Q?", "**alpha** and **beta**", "alpha")

        assert result.suggested_rating == 3
        assert evaluator.provider_name == "Fake"
        assert created[0].seen[0].keywords == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_close(self, fake):
        evaluator, created = fake
        await evaluator.close()
        assert created[0].closed
