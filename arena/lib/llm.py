"""Unified LLM client for the arena.

Supports Anthropic (Claude), OpenAI (GPT), and OpenRouter APIs.
Routes requests based on the model id. Every attempt is bounded by a hard
timeout; transient failures are retried with capped exponential backoff.
"""

import asyncio
import logging
from typing import Any

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel

from arena.config import ModelProvider, Settings, get_settings
from arena.lib.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMContextLengthError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from arena.lib.models import TokenUsage

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"


# =============================================================================
# Response Models
# =============================================================================


class LLMResponse(BaseModel):
    """Unified response from LLM."""

    content: str
    token_usage: TokenUsage
    model: str
    finish_reason: str | None = None


def _retry_after(response: httpx.Response | None) -> float | None:
    """Seconds to wait from a 429 response's Retry-After header, if numeric."""
    if response is None:
        return None
    value = response.headers.get("retry-after", "")
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form; the computed backoff applies
        return None


def _classify_error(e: Exception) -> Exception:
    """Map a provider SDK exception onto the arena's LLM error types."""
    error_msg = str(e).lower()
    if "rate limit" in error_msg or "429" in error_msg:
        return LLMRateLimitError(
            str(e), retry_after=_retry_after(getattr(e, "response", None))
        )
    if "context length" in error_msg or "too many tokens" in error_msg:
        return LLMContextLengthError(str(e))
    if "authentication" in error_msg or "401" in error_msg:
        return LLMAuthenticationError(str(e))
    return LLMConnectionError(str(e))


# =============================================================================
# LLM Client
# =============================================================================


class LLMClient:
    """
    Unified client for LLM APIs.

    Routes requests to Anthropic, OpenAI, or OpenRouter based on model id.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._anthropic_client: AsyncAnthropic | None = None
        self._openai_client: AsyncOpenAI | None = None
        self._http_client: httpx.AsyncClient | None = None

    async def _ensure_clients(self) -> None:
        """Initialize clients if needed."""
        if self._anthropic_client is None and self.settings.has_anthropic_key:
            self._anthropic_client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                max_retries=0,
            )

        if self._openai_client is None and self.settings.has_openai_key:
            self._openai_client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                max_retries=0,
            )

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.llm_timeout_seconds, connect=10.0),
            )

    async def close(self) -> None:
        """Close all clients."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        if self._anthropic_client:
            await self._anthropic_client.close()
            self._anthropic_client = None
        if self._openai_client:
            await self._openai_client.close()
            self._openai_client = None

    def _get_provider(self, model: str) -> ModelProvider:
        """Determine provider for a model."""
        return self.settings.get_model_provider(model)

    # =========================================================================
    # Anthropic API
    # =========================================================================

    async def _complete_anthropic(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete using Anthropic API."""
        await self._ensure_clients()

        if not self._anthropic_client:
            raise LLMAuthenticationError("Anthropic API key not configured")

        try:
            kwargs: dict[str, Any] = {
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
            if system:
                kwargs["system"] = system

            response = await self._anthropic_client.messages.create(**kwargs)
        except Exception as e:
            raise _classify_error(e) from e

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return LLMResponse(
            content=content,
            token_usage=TokenUsage(
                input_tokens=input_tokens, output_tokens=output_tokens, model=model
            ),
            model=model,
            finish_reason=response.stop_reason,
        )

    # =========================================================================
    # OpenAI API
    # =========================================================================

    async def _complete_openai(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete using OpenAI API."""
        await self._ensure_clients()

        if not self._openai_client:
            raise LLMAuthenticationError("OpenAI API key not configured")

        all_messages = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._openai_client.chat.completions.create(
                model=model,
                messages=all_messages,
                max_completion_tokens=max_tokens,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise _classify_error(e) from e

        content = response.choices[0].message.content or ""
        input_tokens = response.usage.prompt_tokens if response.usage else 0
        output_tokens = response.usage.completion_tokens if response.usage else 0

        return LLMResponse(
            content=content,
            token_usage=TokenUsage(
                input_tokens=input_tokens, output_tokens=output_tokens, model=model
            ),
            model=model,
            finish_reason=response.choices[0].finish_reason,
        )

    # =========================================================================
    # OpenRouter API
    # =========================================================================

    async def _complete_openrouter(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete using OpenRouter API."""
        await self._ensure_clients()

        if not self.settings.has_openrouter_key:
            raise LLMAuthenticationError("OpenRouter API key not configured")

        all_messages = messages.copy()
        if system:
            all_messages.insert(0, {"role": "system", "content": system})

        payload = {
            "model": model,
            "messages": all_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            assert self._http_client is not None
            response = await self._http_client.post(
                OPENROUTER_URL,
                headers={
                    "Authorization": f"Bearer {self.settings.openrouter_api_key}",
                    "X-Title": "Debate Arena",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

            if response.status_code == 429:
                raise LLMRateLimitError(
                    "OpenRouter rate limit exceeded",
                    retry_after=_retry_after(response),
                )
            if response.status_code == 401:
                raise LLMAuthenticationError("OpenRouter authentication failed")

            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.settings.llm_timeout_seconds) from e
        except httpx.HTTPStatusError as e:
            raise LLMConnectionError(f"OpenRouter HTTP error: {e}") from e
        except httpx.RequestError as e:
            raise LLMConnectionError(f"OpenRouter connection error: {e}") from e

        content = data["choices"][0]["message"]["content"] or ""
        usage = data.get("usage", {})
        input_tokens = usage.get("prompt_tokens", 0)
        output_tokens = usage.get("completion_tokens", 0)

        return LLMResponse(
            content=content,
            token_usage=TokenUsage(
                input_tokens=input_tokens, output_tokens=output_tokens, model=model
            ),
            model=model,
            finish_reason=data["choices"][0].get("finish_reason"),
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        role: str | None = None,
    ) -> LLMResponse:
        """
        Complete a chat conversation.

        Each attempt is cut off after ``llm_timeout_seconds``. Rate limits,
        connection errors and timeouts are retried up to ``llm_retries``
        attempts with exponential backoff capped at
        ``llm_retry_max_delay_seconds``; authentication and context-length
        errors are raised immediately.

        Args:
            model: Model id
            messages: List of message dicts with 'role' and 'content'
            system: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            role: Persona role, used in log lines

        Returns:
            LLMResponse with content and token usage
        """
        provider = self._get_provider(model)
        retries = self.settings.llm_retries
        timeout = self.settings.llm_timeout_seconds

        if provider == ModelProvider.ANTHROPIC:
            call = self._complete_anthropic
        elif provider == ModelProvider.OPENAI:
            call = self._complete_openai
        else:
            call = self._complete_openrouter

        for attempt in range(retries):
            try:
                return await asyncio.wait_for(
                    call(model, messages, system, max_tokens, temperature),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                error: Exception = LLMTimeoutError(timeout)
                error.__cause__ = e
            except (LLMRateLimitError, LLMConnectionError, LLMTimeoutError) as e:
                error = e

            if attempt >= retries - 1:
                raise error

            delay = min(
                self.settings.llm_retry_delay_seconds * (2**attempt),
                self.settings.llm_retry_max_delay_seconds,
            )
            if isinstance(error, LLMRateLimitError) and error.retry_after:
                delay = min(error.retry_after, self.settings.llm_retry_max_delay_seconds)
            logger.warning(
                f"{type(error).__name__} from {model} ({role or 'unassigned'}) "
                f"(attempt {attempt + 1}/{retries}), retrying in {delay}s..."
            )
            await asyncio.sleep(delay)

        # Should never reach here
        raise LLMConnectionError("Max retries exceeded")


# =============================================================================
# Module-level client factory
# =============================================================================


_default_client: LLMClient | None = None


async def get_llm_client() -> LLMClient:
    """Get the default LLM client instance."""
    global _default_client
    if _default_client is None:
        _default_client = LLMClient()
        await _default_client._ensure_clients()
    return _default_client


async def close_llm_client() -> None:
    """Close the default LLM client."""
    global _default_client
    if _default_client:
        await _default_client.close()
        _default_client = None
