"""LLM client retry policy and hard timeout."""

import asyncio

import anthropic
import httpx
import pytest

from arena.config import ModelProvider, Settings
from arena.lib.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from arena.lib.llm import LLMClient, LLMResponse, _classify_error
from arena.lib.models import TokenUsage

MODEL = "claude-sonnet-4-20250514"


@pytest.fixture
def llm_settings() -> Settings:
    return Settings(
        _env_file=None,
        llm_timeout_seconds=0.05,
        llm_retries=3,
        llm_retry_delay_seconds=0,
        llm_retry_max_delay_seconds=0,
    )


def scripted(client: LLMClient, outcomes: list):
    """Replace the Anthropic call with a script of results and exceptions."""
    calls = []

    async def fake(model, messages, system, max_tokens, temperature):
        calls.append(model)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(10)
        return LLMResponse(content=outcome, token_usage=TokenUsage(), model=model)

    client._complete_anthropic = fake
    return calls


async def complete(client: LLMClient) -> LLMResponse:
    return await client.complete(MODEL, [{"role": "user", "content": "hi"}], role="juror")


async def test_transient_errors_are_retried(llm_settings):
    client = LLMClient(llm_settings)
    calls = scripted(client, [LLMRateLimitError(), LLMConnectionError("reset"), "{}"])

    response = await complete(client)
    assert response.content == "{}"
    assert len(calls) == 3


async def test_hung_call_times_out_then_retries(llm_settings):
    client = LLMClient(llm_settings)
    calls = scripted(client, ["hang", "ok"])

    response = await complete(client)
    assert response.content == "ok"
    assert len(calls) == 2


async def test_timeout_after_last_attempt(llm_settings):
    client = LLMClient(llm_settings)
    scripted(client, ["hang", "hang", "hang"])

    with pytest.raises(LLMTimeoutError) as exc:
        await complete(client)
    assert exc.value.transient is True


async def test_authentication_error_is_not_retried(llm_settings):
    client = LLMClient(llm_settings)
    calls = scripted(client, [LLMAuthenticationError("bad key"), "{}"])

    with pytest.raises(LLMAuthenticationError):
        await complete(client)
    assert len(calls) == 1


@pytest.mark.parametrize(
    "model,provider",
    [
        ("claude-sonnet-4-20250514", ModelProvider.ANTHROPIC),
        ("gpt-4o", ModelProvider.OPENAI),
        ("meta-llama/llama-3-70b", ModelProvider.OPENROUTER),
    ],
)
def test_provider_routing(llm_settings, model, provider):
    assert llm_settings.get_model_provider(model) == provider


def test_role_model_override():
    settings = Settings(_env_file=None, judge_model="gpt-4o")
    config = settings.model_for_role("judge")
    assert config.model_id == "gpt-4o"
    assert config.provider == ModelProvider.OPENAI


# =============================================================================
# Retry-After
# =============================================================================


def rate_limited(retry_after: str) -> httpx.Response:
    return httpx.Response(
        429,
        headers={"retry-after": retry_after},
        request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
    )


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    delays: list[float] = []

    async def record(delay):
        delays.append(delay)

    monkeypatch.setattr("arena.lib.llm.asyncio.sleep", record)
    return delays


def test_sdk_rate_limit_carries_retry_after():
    error = _classify_error(
        anthropic.RateLimitError("Error code: 429", response=rate_limited("4"), body=None)
    )
    assert isinstance(error, LLMRateLimitError)
    assert error.retry_after == 4.0


def test_unparseable_retry_after_is_ignored():
    error = _classify_error(
        anthropic.RateLimitError(
            "Error code: 429",
            response=rate_limited("Wed, 21 Oct 2026 07:28:00 GMT"),
            body=None,
        )
    )
    assert error.retry_after is None


async def test_retry_waits_for_retry_after(sleeps):
    settings = Settings(
        _env_file=None,
        llm_retries=3,
        llm_retry_delay_seconds=1,
        llm_retry_max_delay_seconds=30,
    )
    client = LLMClient(settings)
    scripted(client, [LLMRateLimitError(retry_after=7), LLMConnectionError("reset"), "{}"])

    await complete(client)
    assert sleeps == [7, 2]


async def test_openrouter_429_uses_retry_after(sleeps):
    settings = Settings(
        _env_file=None,
        openrouter_api_key="sk-or-test",
        llm_retries=2,
        llm_retry_max_delay_seconds=30,
    )
    responses = [
        httpx.Response(429, headers={"retry-after": "3"}),
        httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "{}"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3},
            },
        ),
    ]
    client = LLMClient(settings)
    client._http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: responses.pop(0))
    )

    response = await client.complete(
        "meta-llama/llama-3-70b", [{"role": "user", "content": "hi"}]
    )
    assert response.content == "{}"
    assert response.token_usage.input_tokens == 12
    assert sleeps == [3.0]
    await client.close()
