# smart_insights/llm_providers.py
"""
LLM provider implementations.

Every provider exposes the same surface:
  initialize(settings) -> None           (raises InitializationError)
  complete(messages, max_tokens, temperature) -> Completion   (raises LLMError)
  close() -> None

Messages use the OpenAI shape: [{"role": "system"|"user"|"assistant", "content": str}].
SDKs are imported lazily so only the providers actually used need their
client library to be importable at call time.

Instances are never shared between requests: the registry builds a fresh one
per resolution, so providers may keep request-scoped state without locking.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict

from smart_insights import monitoring
from smart_insights.errors import InitializationError, LLMError

DEFAULT_MAX_TOKENS = int(os.getenv("DEFAULT_MAX_TOKENS", "3000"))


# ---------------------------------------------------------------------------
# Provider-specific options (one typed model per provider kind)
# ---------------------------------------------------------------------------
class _Options(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OpenAIOptions(_Options):
    organization: Optional[str] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None


class AnthropicOptions(_Options):
    max_tokens_to_sample: Optional[int] = None
    temperature: Optional[float] = None
    top_k: Optional[int] = None


class GeminiOptions(_Options):
    location: Optional[str] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None


class BedrockOptions(_Options):
    region: Optional[str] = None
    model_provider: Optional[str] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class ProviderSettings:
    """A stored LLMConfig after conversion for one provider kind."""
    name: str
    api_key: str
    model: str
    options: _Options


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class Completion:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None
    response_id: Optional[str] = None


def _split_system(messages: List[Dict[str, str]]) -> Tuple[str, List[Dict[str, str]]]:
    """Pull system messages out for APIs that take the system prompt separately."""
    system_parts = []
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
        elif m["role"] in ("user", "assistant"):
            chat_messages.append({"role": m["role"], "content": m["content"]})
        else:
            raise LLMError("internal", "bad_request", f"unsupported message role: {m['role']}")
    return "\n".join(system_parts).strip(), chat_messages


class BaseLLMProvider(ABC):
    """Abstract Base Class for all LLM providers."""

    kind: ClassVar[str] = ""
    options_model: ClassVar[Type[_Options]] = _Options

    def __init__(self):
        self.settings: Optional[ProviderSettings] = None
        self.client: Any = None

    @property
    def options(self) -> Any:
        return self.settings.options

    def initialize(self, settings: ProviderSettings) -> None:
        if not settings.api_key or not settings.api_key.strip():
            raise InitializationError(f"{self.kind}: API key is required")
        if not settings.model:
            raise InitializationError(f"{self.kind}: model is required")
        self.settings = settings
        try:
            self.client = self._make_client(settings)
        except InitializationError:
            raise
        except Exception as e:
            raise InitializationError(f"{self.kind}: failed to create client: {e}") from e

    @abstractmethod
    def _make_client(self, settings: ProviderSettings) -> Any:
        """Build the SDK client from validated settings."""

    @abstractmethod
    def _complete(self, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> Completion:
        """Provider call. May raise anything; complete() wraps it."""

    def _is_retryable(self, exc: Exception) -> bool:
        return False

    def _default_max_tokens(self) -> Optional[int]:
        return None

    def _configured_temperature(self) -> Optional[float]:
        return None

    def complete(self, messages: List[Dict[str, str]], max_tokens: Optional[int] = None,
                 temperature: float = 0.0) -> Completion:
        """
        Run one completion. Token budget: explicit argument, then the
        provider's configured option, then DEFAULT_MAX_TOKENS. A temperature
        stored in the configuration overrides the per-call value.
        """
        if self.client is None:
            raise LLMError(self.kind, "not_initialized", "provider not initialized")
        max_tokens = max_tokens or self._default_max_tokens() or DEFAULT_MAX_TOKENS
        configured = self._configured_temperature()
        if configured is not None:
            temperature = configured
        try:
            completion = self._complete(messages, max_tokens, temperature)
        except LLMError:
            monitoring.inc_llm_call(self.kind, "error")
            raise
        except Exception as e:
            monitoring.inc_llm_call(self.kind, "error")
            raise LLMError(self.kind, "api_error", str(e), retryable=self._is_retryable(e)) from e
        monitoring.inc_llm_call(self.kind, "success")
        monitoring.add_llm_tokens(self.kind, completion.usage.prompt_tokens, completion.usage.completion_tokens)
        return completion

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()
        self.client = None


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
class OpenAIProvider(BaseLLMProvider):
    kind = "openai"
    options_model = OpenAIOptions

    def _make_client(self, settings):
        from openai import OpenAI

        return OpenAI(
            api_key=settings.api_key,
            organization=settings.options.organization,
            base_url=settings.options.base_url,
        )

    def _default_max_tokens(self):
        return self.options.max_tokens

    def _is_retryable(self, exc):
        import openai

        return isinstance(exc, (openai.RateLimitError, openai.APIConnectionError,
                                openai.APITimeoutError, openai.InternalServerError))

    def _complete(self, messages, max_tokens, temperature):
        resp = self.client.chat.completions.create(
            model=self.settings.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise LLMError(self.kind, "no_completion", "no completion choices returned")
        usage = getattr(resp, "usage", None)
        return Completion(
            content=choices[0].message.content or "",
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=getattr(resp, "model", self.settings.model),
            response_id=getattr(resp, "id", None),
        )


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------
class AnthropicProvider(BaseLLMProvider):
    kind = "anthropic"
    options_model = AnthropicOptions

    def _make_client(self, settings):
        from anthropic import Anthropic

        return Anthropic(api_key=settings.api_key)

    def _default_max_tokens(self):
        return self.options.max_tokens_to_sample

    def _configured_temperature(self):
        return self.options.temperature

    def _is_retryable(self, exc):
        import anthropic

        return isinstance(exc, (anthropic.RateLimitError, anthropic.APIConnectionError,
                                anthropic.APITimeoutError, anthropic.InternalServerError))

    def _complete(self, messages, max_tokens, temperature):
        # Anthropic uses a separate system param, not a system message in messages list
        system_text, chat_messages = _split_system(messages)
        kwargs = {
            "model": self.settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat_messages,
        }
        if system_text:
            kwargs["system"] = system_text
        if self.options.top_k is not None:
            kwargs["top_k"] = self.options.top_k

        resp = self.client.messages.create(**kwargs)

        text = ""
        for block in resp.content:
            if hasattr(block, "text"):
                text += block.text
        usage = getattr(resp, "usage", None)
        return Completion(
            content=text,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
                completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
            model=getattr(resp, "model", self.settings.model),
            response_id=getattr(resp, "id", None),
        )


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------
class GeminiProvider(BaseLLMProvider):
    kind = "gemini"
    options_model = GeminiOptions

    def _make_client(self, settings):
        from google import genai

        return genai.Client(api_key=settings.api_key)

    def _default_max_tokens(self):
        return self.options.max_output_tokens

    def _configured_temperature(self):
        return self.options.temperature

    def _complete(self, messages, max_tokens, temperature):
        from google.genai import types

        system_text, chat_messages = _split_system(messages)
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]
        resp = self.client.models.generate_content(
            model=self.settings.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_text or None,
                max_output_tokens=max_tokens,
                temperature=temperature,
            ),
        )
        usage = getattr(resp, "usage_metadata", None)
        return Completion(
            content=getattr(resp, "text", None) or "",
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_token_count", 0) or 0,
                completion_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            ),
            model=self.settings.model,
            response_id=getattr(resp, "response_id", None),
        )


# ---------------------------------------------------------------------------
# Bedrock (Converse API)
# ---------------------------------------------------------------------------
class BedrockProvider(BaseLLMProvider):
    kind = "bedrock"
    options_model = BedrockOptions

    def _make_client(self, settings):
        import boto3

        # api_key holds "ACCESS_KEY_ID:SECRET_ACCESS_KEY"
        key_id, sep, secret = settings.api_key.partition(":")
        if not sep or not key_id.strip() or not secret.strip():
            raise InitializationError(
                "bedrock: API key must have the form ACCESS_KEY_ID:SECRET_ACCESS_KEY"
            )
        return boto3.client(
            "bedrock-runtime",
            region_name=settings.options.region or os.getenv("AWS_REGION", "us-east-1"),
            aws_access_key_id=key_id.strip(),
            aws_secret_access_key=secret.strip(),
        )

    def _default_max_tokens(self):
        return self.options.max_tokens

    def _is_retryable(self, exc):
        from botocore.exceptions import ClientError, EndpointConnectionError

        if isinstance(exc, EndpointConnectionError):
            return True
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            return code in ("ThrottlingException", "ServiceUnavailableException", "InternalServerException")
        return False

    def _complete(self, messages, max_tokens, temperature):
        system_text, chat_messages = _split_system(messages)
        kwargs = {
            "modelId": self.settings.model,
            "messages": [
                {"role": m["role"], "content": [{"text": m["content"]}]} for m in chat_messages
            ],
            "inferenceConfig": {"maxTokens": max_tokens, "temperature": temperature},
        }
        if system_text:
            kwargs["system"] = [{"text": system_text}]

        resp = self.client.converse(**kwargs)

        blocks = resp.get("output", {}).get("message", {}).get("content", [])
        text = "".join(b.get("text", "") for b in blocks)
        usage = resp.get("usage", {})
        return Completion(
            content=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("inputTokens", 0),
                completion_tokens=usage.get("outputTokens", 0),
            ),
            model=self.settings.model,
            response_id=resp.get("ResponseMetadata", {}).get("RequestId"),
        )


BUILTIN_PROVIDERS: Dict[str, Type[BaseLLMProvider]] = {
    OpenAIProvider.kind: OpenAIProvider,
    AnthropicProvider.kind: AnthropicProvider,
    GeminiProvider.kind: GeminiProvider,
    BedrockProvider.kind: BedrockProvider,
}
