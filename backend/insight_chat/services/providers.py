"""
Structured-completion service adapters: Gemini and Groq.

Each adapter turns (prompt, output schema, temperature) into JSON text and
translates vendor exceptions into the pipeline's ServiceError family.
Nothing here retries; that is the CompletionClient's job.
"""
import os
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional
import groq
from google.api_core import exceptions as google_exceptions
from insight_chat.core.config import Settings
from insight_chat.core.errors import (
    InsightChatError,
    InvalidKeyError,
    QuotaExceededError,
    ServiceError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 120.0

_QUOTA_MARKERS = ('429', 'quota', 'rate limit', 'rate_limit', 'resource_exhausted', 'too many requests')
_INVALID_KEY_MARKERS = ('api key not valid', 'api_key_invalid', 'invalid api key', 'invalid_api_key', '401')


class CompletionService(ABC):
    """A service that answers a prompt with JSON matching a declared schema."""

    name = "completion"

    @abstractmethod
    async def complete(self, prompt: str, schema: Dict[str, Any], temperature: float) -> str:
        """Return the full JSON text of one completion."""

    @abstractmethod
    def stream(self, prompt: str, schema: Dict[str, Any], temperature: float) -> AsyncIterator[str]:
        """Yield the JSON text of one completion in order, chunk by chunk."""


def classify_error(exc: BaseException) -> InsightChatError:
    """
    Map a vendor exception onto InvalidKeyError / QuotaExceededError / ServiceError.

    Typed vendor exceptions are checked first, then the message text, the
    same way rate limits were recognised from error strings before.
    """
    if isinstance(exc, InsightChatError):
        return exc

    detail = str(exc)
    if isinstance(exc, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests, groq.RateLimitError)):
        return QuotaExceededError(f"The AI service quota was exceeded. Details: {detail}")
    if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied,
                        groq.AuthenticationError, groq.PermissionDeniedError)):
        return InvalidKeyError(f"The AI service rejected the API key. Details: {detail}")

    lowered = detail.lower()
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return QuotaExceededError(f"The AI service quota was exceeded. Details: {detail}")
    if any(marker in lowered for marker in _INVALID_KEY_MARKERS):
        return InvalidKeyError(f"The AI service rejected the API key. Details: {detail}")
    return ServiceError(f"The AI service request failed. Details: {detail}")


class GeminiCompletionService(CompletionService):
    """
    Gemini with JSON mime type and a response schema.

    google-generativeai keeps the API key in module state set by
    `genai.configure`, so there is one Gemini key per process. The service
    itself is still built by `build_completion_service` and injected.
    """

    name = "gemini"

    def __init__(self, api_key: str, model_name: str, timeout: float = REQUEST_TIMEOUT_SECONDS):
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        self._genai = genai
        self._model = genai.GenerativeModel(model_name)
        self._timeout = timeout
        logger.info(f"Gemini completion service initialized with model: {model_name}")

    def _config(self, schema: Dict[str, Any], temperature: float):
        return self._genai.GenerationConfig(
            response_mime_type="application/json",
            response_schema=schema,
            temperature=temperature,
        )

    @staticmethod
    def _text(response) -> str:
        # .text raises ValueError when the candidate has no parts (e.g. blocked)
        try:
            return response.text or ""
        except ValueError:
            return ""

    async def complete(self, prompt: str, schema: Dict[str, Any], temperature: float) -> str:
        try:
            response = await self._model.generate_content_async(
                prompt,
                generation_config=self._config(schema, temperature),
                request_options={"timeout": self._timeout},
            )
        except Exception as e:
            raise classify_error(e) from e

        text = self._text(response)
        if not text:
            raise ServiceError("The AI service returned an empty response.")
        return text

    async def stream(self, prompt: str, schema: Dict[str, Any], temperature: float) -> AsyncIterator[str]:
        try:
            response = await self._model.generate_content_async(
                prompt,
                generation_config=self._config(schema, temperature),
                request_options={"timeout": self._timeout},
                stream=True,
            )
            async for chunk in response:
                text = self._text(chunk)
                if text:
                    yield text
        except Exception as e:
            raise classify_error(e) from e


class GroqCompletionService(CompletionService):
    """Groq chat completions in JSON object mode, schema given in the system message."""

    name = "groq"

    def __init__(self, api_key: str, model_name: str, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self._client = groq.AsyncGroq(api_key=api_key, timeout=timeout)
        self._model_name = model_name
        logger.info(f"Groq completion service initialized with model: {model_name}")

    @staticmethod
    def _messages(prompt: str, schema: Dict[str, Any]):
        system_prompt = (
            "You are a data analyst. Reply with exactly one JSON object that conforms to this schema "
            "(OpenAPI subset, upper-case type names):\n" + json.dumps(schema)
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]

    async def complete(self, prompt: str, schema: Dict[str, Any], temperature: float) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model_name,
                messages=self._messages(prompt, schema),
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise classify_error(e) from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise ServiceError("The AI service returned an empty response.")
        return text

    async def stream(self, prompt: str, schema: Dict[str, Any], temperature: float) -> AsyncIterator[str]:
        # JSON object mode is not offered with streaming; stray code fences
        # are stripped by the normalizer.
        try:
            stream = await self._client.chat.completions.create(
                model=self._model_name,
                messages=self._messages(prompt, schema),
                temperature=temperature,
                stream=True,
            )
            async for chunk in stream:
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if delta:
                    yield delta
        except Exception as e:
            raise classify_error(e) from e


def build_completion_service(settings: Settings, api_key: Optional[str] = None) -> CompletionService:
    """
    Construct the configured completion service.

    The API key comes from GEMINI_API_KEY or GROQ_API_KEY unless given.

    Raises:
        InvalidKeyError: when no key is configured for the provider
    """
    if settings.ai_provider == "groq":
        key = api_key or os.getenv("GROQ_API_KEY")
        if not key:
            raise InvalidKeyError("No AI provider key configured (set GROQ_API_KEY).")
        return GroqCompletionService(key, settings.groq_model)

    key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not key:
        raise InvalidKeyError("No AI provider key configured (set GEMINI_API_KEY).")
    return GeminiCompletionService(key, settings.gemini_model)
