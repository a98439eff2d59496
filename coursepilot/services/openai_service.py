"""
OpenAI Service for the course assistant.
Handles chat completions (single-shot and streaming), speech-to-text for lecture
recordings, and embeddings for the vector store.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import openai
from openai import AsyncOpenAI

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3


class GenerationServiceError(Exception):
    """Raised when a generation, transcription or embedding call fails."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


class OpenAIService:
    """
    Thin async wrapper around AsyncOpenAI with retry for transient failures.

    The client is only created when OPENAI_API_KEY is set; every call on an
    unconfigured service raises a non-recoverable GenerationServiceError.
    """

    def __init__(self, client: AsyncOpenAI | None = None):
        self.client = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self) -> None:
        """Initialize OpenAI async client with configuration."""
        if not settings.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not configured; generation features disabled")
            return

        self.client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )
        logger.info(
            "OpenAI client initialized",
            model=settings.OPENAI_MODEL,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise GenerationServiceError("OpenAI client not initialized", recoverable=False)
        return self.client

    async def _call_with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Call OpenAI with retry logic for transient failures."""
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES):
            try:
                return await call()

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < MAX_RETRIES - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "OpenAI API timeout, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    timeout=settings.OPENAI_TIMEOUT_SECONDS,
                )

            except openai.APIStatusError as e:
                last_error = e
                # Don't retry on client errors (4xx)
                if 400 <= e.status_code < 500:
                    logger.error(
                        "OpenAI client error (not retrying)",
                        operation=operation,
                        status_code=e.status_code,
                        error=str(e),
                    )
                    break
                logger.warning(
                    "OpenAI API error, retrying", operation=operation, attempt=attempt + 1, error=str(e)
                )

            except openai.APIError as e:
                last_error = e
                logger.warning(
                    "OpenAI API error, retrying", operation=operation, attempt=attempt + 1, error=str(e)
                )

        logger.error(
            "OpenAI API call failed after all retries",
            operation=operation,
            max_retries=MAX_RETRIES,
            final_error=str(last_error),
        )
        raise GenerationServiceError(
            f"OpenAI {operation} failed",
            api_error=str(last_error),
            recoverable=True,
        ) from last_error

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Single-shot chat completion.

        Returns:
            str: The assistant message content, stripped

        Raises:
            GenerationServiceError: If the call fails or the response is empty
        """
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "model": model or settings.OPENAI_MODEL,
            "messages": messages,
            "max_tokens": max_tokens or settings.OPENAI_MAX_TOKENS,
            "temperature": settings.OPENAI_TEMPERATURE if temperature is None else temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._call_with_retry(
            "chat_completion", lambda: client.chat.completions.create(**kwargs)
        )

        if not response.choices or not response.choices[0].message.content:
            raise GenerationServiceError("Empty response from OpenAI API")

        result = response.choices[0].message.content.strip()
        logger.debug(
            "OpenAI completion successful",
            model=kwargs["model"],
            response_length=len(result),
            usage_tokens=response.usage.total_tokens if response.usage else 0,
        )
        return result

    async def stream(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """
        Streaming chat completion yielding text deltas as they arrive.

        Only opening the stream is retried; a failure mid-stream propagates.
        """
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "model": model or settings.OPENAI_MODEL,
            "messages": messages,
            "max_tokens": max_tokens or settings.OPENAI_MAX_TOKENS,
            "temperature": settings.OPENAI_TEMPERATURE if temperature is None else temperature,
            "stream": True,
        }

        stream = await self._call_with_retry(
            "chat_stream", lambda: client.chat.completions.create(**kwargs)
        )

        async with stream:
            async for event in stream:
                delta = event.choices[0].delta.content if event.choices else None
                if delta:
                    yield delta

    async def transcribe(self, audio: bytes, filename: str) -> str:
        """Speech-to-text for one audio blob."""
        client = self._require_client()

        transcription = await self._call_with_retry(
            "transcription",
            lambda: client.audio.transcriptions.create(
                model=settings.OPENAI_TRANSCRIPTION_MODEL,
                file=(filename, audio),
            ),
        )
        text = getattr(transcription, "text", None)
        if text is None and isinstance(transcription, str):
            text = transcription
        return (text or "").strip()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts with the configured embedding model, preserving order."""
        if not texts:
            return []
        client = self._require_client()

        response = await self._call_with_retry(
            "embedding",
            lambda: client.embeddings.create(model=settings.OPENAI_EMBEDDING_MODEL, input=texts),
        )
        return [item.embedding for item in response.data]

    async def health_check(self) -> dict[str, Any]:
        """
        Health check for OpenAI service.

        Returns:
            dict: Health status and configuration
        """
        health_data: dict[str, Any] = {
            "healthy": self.client is not None,
            "service": "openai_service",
            "client_initialized": self.client is not None,
            "configuration": {
                "model": settings.OPENAI_MODEL,
                "query_model": settings.OPENAI_QUERY_MODEL,
                "transcription_model": settings.OPENAI_TRANSCRIPTION_MODEL,
                "embedding_model": settings.OPENAI_EMBEDDING_MODEL,
                "timeout_seconds": settings.OPENAI_TIMEOUT_SECONDS,
                "max_retries": MAX_RETRIES,
            },
        }
        if self.client is None:
            health_data["api_connectivity"] = "client_not_initialized"
        return health_data


# Singleton instance for application use
openai_service = OpenAIService()
