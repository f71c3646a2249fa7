"""
OpenAI Service for structured JSON completions.
Used by the language-model subscription classifier.
"""

import asyncio
import json
from typing import Any

import openai
from openai import AsyncOpenAI

from trackme.config import settings
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class OpenAIServiceError(Exception):
    """Raised when an OpenAI completion cannot be obtained or decoded."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.api_error = api_error
        self.recoverable = recoverable


class OpenAIService:
    """
    Thin async wrapper around chat completions in JSON mode.

    Retries rate limits, timeouts and 5xx responses; 4xx client errors fail fast.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout: float = 30.0,
        max_retries: int | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens if max_tokens is not None else settings.OPENAI_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else settings.OPENAI_TEMPERATURE
        )
        self.max_retries = max_retries if max_retries is not None else settings.OPENAI_MAX_RETRIES
        self.timeout = timeout
        self.client = client or self._initialize_client(api_key or settings.OPENAI_API_KEY)

    def _initialize_client(self, api_key: str | None) -> AsyncOpenAI:
        if not api_key:
            raise OpenAIServiceError("OPENAI_API_KEY not configured in settings", recoverable=False)

        # Retries are handled here so they show up in our logs
        client = AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)
        logger.info("OpenAI client initialized", model=self.model, timeout=self.timeout)
        return client

    async def complete_json(self, system_message: str, user_message: str) -> dict[str, Any]:
        """
        Run one chat completion and decode its JSON object reply.

        Raises:
            OpenAIServiceError: API failure after retries, empty reply or non-JSON reply
        """
        raw = await self._call_openai_with_retry(system_message, user_message)

        try:
            result = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("OpenAI returned invalid JSON", response_preview=raw[:200])
            raise OpenAIServiceError(
                "Invalid AI response format", api_error=str(e), recoverable=False
            ) from e

        if not isinstance(result, dict):
            raise OpenAIServiceError("AI response is not a JSON object", recoverable=False)

        return result

    async def _call_openai_with_retry(self, system_message: str, user_message: str) -> str:
        """Call OpenAI API with retry logic for transient failures."""
        last_error: Exception | None = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_message},
                        {"role": "user", "content": user_message},
                    ],
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    response_format={"type": "json_object"},
                )

                if not response.choices or not response.choices[0].message.content:
                    raise OpenAIServiceError("Empty response from OpenAI API", recoverable=False)

                result = response.choices[0].message.content.strip()
                logger.debug(
                    "OpenAI API call successful",
                    attempt=attempt + 1,
                    usage_tokens=response.usage.total_tokens if response.usage else 0,
                )
                return result

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "OpenAI API timeout, retrying",
                    attempt=attempt + 1,
                    timeout=self.timeout,
                    error=str(e),
                )

            except openai.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        logger.error(
            "OpenAI API call failed after all retries",
            attempts=attempts,
            final_error=str(last_error),
        )
        raise OpenAIServiceError(
            f"OpenAI API failed after {attempts} attempts: {last_error}",
            api_error=str(last_error),
            recoverable=True,
        ) from last_error
