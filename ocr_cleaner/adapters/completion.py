from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from ocr_cleaner.env_utils import default_model
from ocr_cleaner.errors import (
    CompletionServiceError,
    CompletionTimeoutError,
    CompletionUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class CompletionClient(Protocol):
    async def complete(self, prompt: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> Completion:
        ...


@dataclass
class UsageMeter:
    """Counts completion calls and tokens for one cleaning run."""

    api_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, completion: Completion) -> None:
        self.api_calls += 1
        self.input_tokens += completion.input_tokens
        self.output_tokens += completion.output_tokens


def _usage(response: Any) -> tuple[int, int]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0
    return (
        int(getattr(usage, "prompt_tokens", 0) or 0),
        int(getattr(usage, "completion_tokens", 0) or 0),
    )


class LiteLLMClient:
    """``CompletionClient`` backed by ``litellm.acompletion``."""

    def __init__(self, *, model: str, api_key: str | None = None, temperature: float = 0.0) -> None:
        self.model = model
        self._api_key = api_key
        self._temperature = temperature

    async def complete(self, prompt: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> Completion:
        import litellm

        response = await litellm.acompletion(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self._temperature,
            max_tokens=max_tokens,
            api_key=self._api_key,
        )
        text = response.choices[0].message.content or ""
        input_tokens, output_tokens = _usage(response)
        return Completion(text=text, input_tokens=input_tokens, output_tokens=output_tokens)


class FunctionClient:
    """Adapt a plain ``async (prompt) -> str`` callable to ``CompletionClient``."""

    def __init__(self, fn: Callable[[str], Awaitable[str]]) -> None:
        self._fn = fn

    async def complete(self, prompt: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> Completion:
        return Completion(text=await self._fn(prompt))


def init_llm(api_key: str | None = None, model: str | None = None) -> LiteLLMClient:
    """Return a completion client configured with an API key."""
    from dotenv import load_dotenv  # lazy import

    load_dotenv()
    name = model or default_model()
    key = api_key or os.environ.get("OCR_CLEANER_API_KEY") or os.environ.get("OPENAI_API_KEY")
    if not key:
        raise CompletionUnavailableError(
            "no API key: set OCR_CLEANER_API_KEY or OPENAI_API_KEY in .env or environment"
        )
    return LiteLLMClient(model=name, api_key=key)


async def complete_with_timeout(
    client: CompletionClient | None,
    prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    usage: UsageMeter | None = None,
) -> str:
    """Await one completion under ``timeout``; failures become service errors."""
    if client is None:
        raise CompletionUnavailableError()
    try:
        completion = await asyncio.wait_for(
            client.complete(prompt, max_tokens=max_tokens), timeout=timeout
        )
    except asyncio.TimeoutError as exc:
        logger.warning("completion call timed out after %.1fs", timeout)
        raise CompletionTimeoutError(timeout) from exc
    except CompletionServiceError:
        raise
    except Exception as exc:
        logger.warning("completion call failed: %s", exc)
        raise CompletionServiceError(f"completion call failed: {exc}") from exc
    if usage is not None:
        usage.add(completion)
    if not completion.text.strip():
        raise CompletionServiceError("completion service returned an empty response")
    return completion.text
