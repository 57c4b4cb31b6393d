from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Protocol

from openai import AsyncOpenAI

from janeproxy.logging import get_logger

logger = get_logger(__name__)


class CompletionBackend(Protocol):
    """Source of streamed completion text.

    ``stream`` returns a lazy, finite, non-restartable sequence of text deltas and
    may raise at any point before or during iteration.
    """

    mode: str

    def stream(self, messages: List[dict]) -> AsyncIterator[str]: ...


class OpenAIStreamBackend:
    """Streams chat completions from an OpenAI-compatible endpoint."""

    mode = "openai"

    def __init__(
        self,
        model: str,
        *,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout
        )

    async def stream(self, messages: List[dict]) -> AsyncIterator[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            stream=True,
        )
        # closing the response aborts the HTTP stream when the caller stops early
        async with response:
            async for part in response:
                choices = getattr(part, "choices", None) or []
                first_choice = next(iter(choices), None)
                if first_choice is None or first_choice.delta is None:
                    continue
                delta = first_choice.delta.content or ""
                if delta:
                    yield delta

    async def close(self) -> None:
        await self.client.close()


@dataclass(frozen=True)
class StubBackend:
    """Deterministic backend used when no provider key is configured."""

    STUB_RESPONSE = "Thanks for sharing that. Let's take one small, manageable step together."

    mode: str = "stub"
    delay_seconds: float = 0.0

    async def stream(self, messages: List[dict]) -> AsyncIterator[str]:
        words = self.STUB_RESPONSE.split(" ")
        for index, word in enumerate(words):
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield word if index == len(words) - 1 else word + " "


def build_backend(
    model: str,
    *,
    api_key: Optional[str],
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CompletionBackend:
    if not api_key:
        logger.warning(
            "completion_backend_stubbed",
            model=model,
            message="PROVIDER_API_KEY is not set; replies come from the stub backend",
        )
        return StubBackend()
    return OpenAIStreamBackend(model, api_key=api_key, base_url=base_url, timeout=timeout)
