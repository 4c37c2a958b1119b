"""OpenAI-compatible completion client factory and streaming adapter."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

from scholarchat.config import settings
from scholarchat.services import logger as log_service


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


class CompletionStream:
    """Async context manager over a streamed chat completion.

    Exposes the text deltas through `text_stream` and closes the underlying
    HTTP stream on exit, which is how an abandoned stream is released.
    """

    def __init__(self, stream_coro: Any, *, model: str = "", caller: str = ""):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._usage = Usage()
        self._finished = False
        self._model = model
        self._caller = caller
        self._started_at = 0.0

    async def __aenter__(self) -> "CompletionStream":
        self._started_at = time.monotonic()
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()
        if self._caller:
            log_service.log_llm_call(
                model=self._model,
                caller=self._caller,
                input_tokens=self._usage.input_tokens,
                output_tokens=self._usage.output_tokens,
                duration_ms=int((time.monotonic() - self._started_at) * 1000),
                status="success" if self._finished else "incomplete",
                error=str(exc) if exc is not None else None,
            )

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            choices = getattr(chunk, "choices", None) or []
            usage = getattr(chunk, "usage", None)
            if usage:
                self._usage = Usage(
                    input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                    output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                )

            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text
        self._finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()

    @property
    def usage(self) -> Usage:
        return self._usage


def stream_completion(
    openai_client: Any,
    *,
    model: str,
    system: str,
    user: str,
    max_tokens: int,
    caller: str = "",
) -> CompletionStream:
    stream = openai_client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        max_tokens=max_tokens,
        stream=True,
        stream_options={"include_usage": True},
    )
    return CompletionStream(stream, model=model, caller=caller)


def get_client():
    """Build an AsyncOpenAI client from settings.

    Falls back to the OPENAI_API_KEY environment variable; the SDK raises
    `openai.OpenAIError` when no key is available.
    """
    from openai import AsyncOpenAI

    kwargs: dict[str, Any] = {"api_key": settings.openai_api_key or None}
    if settings.openai_base_url.strip():
        kwargs["base_url"] = settings.openai_base_url.strip()
    return AsyncOpenAI(**kwargs)


def get_model() -> str:
    """Get the default completion model id."""
    return settings.openai_model


_client = None


def client():
    """Get or create the completion client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
