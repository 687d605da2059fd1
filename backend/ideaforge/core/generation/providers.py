"""
AI Provider Adapters
====================

Thin async wrappers around the text-generation and embedding APIs.

- LLMProvider: prompt -> generated text (Claude, Gemini or OpenAI chat)
- EmbeddingProvider: text -> fixed-dimension vector (OpenAI embeddings)

Every provider failure is translated into an ExternalServiceError that
keeps the provider name and the original message.
"""

from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import openai
import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from ideaforge.core.config import Settings, settings as default_settings
from ideaforge.core.errors import ExternalServiceError

logger = structlog.get_logger()


DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"
DEFAULT_GEMINI_MODEL = "gemini-1.5-pro"
DEFAULT_OPENAI_MODEL = "gpt-4o"


# ==========================================================================
# Interfaces
# ==========================================================================

class LLMProvider(ABC):
    """Abstract interface for text generation."""

    name: str = "AI Provider"

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when a credential is available."""
        pass

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        max_tokens: int = 4096,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Generate text for a prompt."""
        pass


class EmbeddingProvider(ABC):
    """Abstract interface for text embeddings."""

    name: str = "Embedding Provider"

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Map text to a fixed-dimension vector."""
        pass


# ==========================================================================
# Error Translation
# ==========================================================================

def _translate_error(service: str, error: Exception, model: Optional[str]) -> ExternalServiceError:
    details = {"originalError": str(error), "model": model}

    if isinstance(error, (anthropic.AuthenticationError, openai.AuthenticationError)):
        return ExternalServiceError(service, "Invalid API key", details)
    if isinstance(error, (anthropic.RateLimitError, openai.RateLimitError)):
        return ExternalServiceError(service, "Rate limit exceeded", details)
    if isinstance(error, (anthropic.NotFoundError, openai.NotFoundError)):
        return ExternalServiceError(service, f"Model '{model}' is not available", details)
    if isinstance(error, genai_errors.APIError):
        return _translate_gemini_error(service, error, model, details)
    return ExternalServiceError(service, str(error) or "Unknown error", details)


def _translate_gemini_error(
    service: str,
    error: genai_errors.APIError,
    model: Optional[str],
    details: dict,
) -> ExternalServiceError:
    # Gemini reports a bad key as 400 INVALID_ARGUMENT, so the message is checked too
    message = (error.message or "").lower()
    if error.code in (401, 403) or "api key" in message:
        return ExternalServiceError(service, "Invalid API key", details)
    if error.code == 429 or "quota" in message or "rate limit" in message:
        return ExternalServiceError(service, "Rate limit exceeded", details)
    if error.code == 404 or "not found" in message or "not supported" in message:
        return ExternalServiceError(service, f"Model '{model}' is not available", details)
    return ExternalServiceError(service, error.message or str(error), details)


# ==========================================================================
# Claude
# ==========================================================================

class ClaudeProvider(LLMProvider):
    """Text generation through the Anthropic Messages API."""

    name = "Claude API"

    def __init__(self, api_key: Optional[str], default_model: Optional[str] = None):
        self.api_key = api_key
        self.default_model = default_model or DEFAULT_CLAUDE_MODEL
        self._client: Optional[anthropic.AsyncAnthropic] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        max_tokens: int = 4096,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        model = model or self.default_model
        if not self.is_configured:
            raise ExternalServiceError(self.name, "No API key configured", {"model": model})

        logger.info("Calling Claude", model=model, max_tokens=max_tokens)
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Claude API error", model=model, error=str(e))
            raise _translate_error(self.name, e, model) from e

        return "\n".join(block.text for block in response.content if block.type == "text")


# ==========================================================================
# Gemini
# ==========================================================================

class GeminiProvider(LLMProvider):
    """Text generation through the Google Gen AI SDK."""

    name = "Gemini API"

    def __init__(self, api_key: Optional[str], default_model: Optional[str] = None):
        self.api_key = api_key
        self.default_model = default_model or DEFAULT_GEMINI_MODEL
        self._client: Optional[genai.Client] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        max_tokens: int = 4096,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        model = model or self.default_model
        if not self.is_configured:
            raise ExternalServiceError(self.name, "No API key configured", {"model": model})

        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt,
        )

        logger.info("Calling Gemini", model=model, max_tokens=max_tokens)
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=config,
            )
        except genai_errors.APIError as e:
            logger.error("Gemini API error", model=model, error=str(e))
            raise _translate_error(self.name, e, model) from e

        return response.text or ""


# ==========================================================================
# OpenAI
# ==========================================================================

class OpenAIChatProvider(LLMProvider):
    """Text generation through the OpenAI Chat Completions API."""

    name = "OpenAI API"

    def __init__(self, api_key: Optional[str], default_model: Optional[str] = None):
        self.api_key = api_key
        self.default_model = default_model or DEFAULT_OPENAI_MODEL
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        max_tokens: int = 4096,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        model = model or self.default_model
        if not self.is_configured:
            raise ExternalServiceError(self.name, "No API key configured", {"model": model})

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        logger.info("Calling OpenAI", model=model, max_tokens=max_tokens)
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APIError as e:
            logger.error("OpenAI API error", model=model, error=str(e))
            raise _translate_error(self.name, e, model) from e

        return response.choices[0].message.content or ""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings through the OpenAI Embeddings API."""

    name = "OpenAI Embeddings"

    def __init__(self, api_key: Optional[str], model: str, dimensions: Optional[int] = None):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed(self, text: str) -> list[float]:
        if not self.api_key:
            raise ExternalServiceError(self.name, "No OpenAI API key configured", {"model": self.model})

        kwargs = {"model": self.model, "input": text}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions

        try:
            response = await self.client.embeddings.create(**kwargs)
        except openai.APIError as e:
            logger.error("Embedding API error", model=self.model, error=str(e))
            raise _translate_error(self.name, e, self.model) from e

        return list(response.data[0].embedding)


# ==========================================================================
# Factories
# ==========================================================================

def create_llm_provider(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    config: Settings = default_settings,
) -> LLMProvider:
    """Build the text-generation provider named by settings or a profile."""
    provider = provider or config.LLM_PROVIDER
    model = model or config.LLM_MODEL

    if provider == "claude":
        return ClaudeProvider(config.ANTHROPIC_API_KEY, model)
    if provider == "gemini":
        return GeminiProvider(config.GEMINI_API_KEY, model)
    if provider == "openai":
        return OpenAIChatProvider(config.OPENAI_API_KEY, model)
    raise ExternalServiceError("AI Provider", f"Unsupported provider: {provider}")


def create_embedding_provider(config: Settings = default_settings) -> EmbeddingProvider:
    return OpenAIEmbeddingProvider(
        config.OPENAI_API_KEY,
        model=config.EMBEDDING_MODEL,
        dimensions=config.EMBEDDING_DIMENSIONS,
    )
