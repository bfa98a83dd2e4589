# tests/test_llm_registry.py
from types import SimpleNamespace

import pytest

from smart_insights.config_store import ConfigStore
from smart_insights.errors import (
    ConfigNotFoundError, InitializationError, InvalidConfigError, LLMError, UnsupportedProviderError,
)
from smart_insights.llm_providers import (
    AnthropicProvider, BaseLLMProvider, BedrockOptions, BedrockProvider, Completion, GeminiOptions,
    GeminiProvider, OpenAIProvider, ProviderSettings, TokenUsage,
)
from smart_insights.llm_registry import LLMRegistry
from smart_insights.schemas import LLMConfig


class RecordingOpenAIClient:
    def __init__(self, content="<sql>select 1</sql>", choices=True):
        self.requests = []
        self.closed = False
        self._content = content
        self._choices = choices
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        choices = [SimpleNamespace(message=SimpleNamespace(content=self._content))] if self._choices else []
        return SimpleNamespace(
            id="resp-1", model=kwargs["model"], choices=choices,
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=5),
        )

    def close(self):
        self.closed = True


class RecordingAnthropicClient:
    def __init__(self):
        self.requests = []
        self.messages = SimpleNamespace(create=self._create)

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(
            id="msg-1", model=kwargs["model"],
            content=[SimpleNamespace(type="text", text="<markdown># Hi</markdown>")],
            usage=SimpleNamespace(input_tokens=30, output_tokens=8),
        )


class EchoProvider(BaseLLMProvider):
    kind = "echo"

    def _make_client(self, settings):
        return object()

    def _complete(self, messages, max_tokens, temperature):
        return Completion(content=messages[-1]["content"], usage=TokenUsage())


MESSAGES = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hello"}]


@pytest.fixture
def store(app_db):
    return ConfigStore()


@pytest.fixture
def registry(store):
    return LLMRegistry(store)


def test_missing_config(registry):
    with pytest.raises(ConfigNotFoundError):
        registry.resolve("openai", "nope")


def test_unsupported_provider(store, registry):
    store.save_llm_config(LLMConfig(name="default", type="mistral", api_key="k", model="m"))
    with pytest.raises(UnsupportedProviderError):
        registry.resolve("mistral", "default")


def test_unknown_option_is_invalid_config(store, registry):
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="k", model="gpt-4o-mini",
                                    options={"max_tokens": 100, "top_p": 0.9}))
    with pytest.raises(InvalidConfigError):
        registry.resolve("openai", "default")


def test_wrong_option_type_is_invalid_config(store, registry):
    store.save_llm_config(LLMConfig(name="default", type="anthropic", api_key="k", model="claude",
                                    options={"top_k": "many"}))
    with pytest.raises(InvalidConfigError):
        registry.resolve("anthropic", "default")


def test_missing_api_key_fails_initialization(store, registry):
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="", model="gpt-4o-mini"))
    with pytest.raises(InitializationError):
        registry.resolve("openai", "default")


def test_bedrock_key_format(store, registry):
    store.save_llm_config(LLMConfig(name="default", type="bedrock", api_key="just-one-part",
                                    model="anthropic.claude-3-haiku", options={"region": "us-east-1"}))
    with pytest.raises(InitializationError) as exc:
        registry.resolve("bedrock", "default")
    assert "ACCESS_KEY_ID:SECRET_ACCESS_KEY" in str(exc.value)


def test_each_resolution_is_a_fresh_instance(store):
    registry = LLMRegistry(store, providers={"echo": EchoProvider})
    store.save_llm_config(LLMConfig(name="default", type="echo", api_key="k", model="m"))
    a = registry.resolve("echo", "default")
    b = registry.resolve("echo", "default")
    assert a is not b
    assert a.complete(MESSAGES).content == "hello"


def test_register_extends_kinds(store):
    registry = LLMRegistry(store, providers={})
    registry.register("echo", EchoProvider)
    assert registry.list_providers() == ["echo"]


def test_openai_completion(store, registry, monkeypatch):
    client = RecordingOpenAIClient()
    monkeypatch.setattr(OpenAIProvider, "_make_client", lambda self, settings: client)
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="sk-test", model="gpt-4o-mini",
                                    options={"max_tokens": 256}))

    provider = registry.resolve("openai", "default")
    completion = provider.complete(MESSAGES, temperature=0.3)

    assert completion.content == "<sql>select 1</sql>"
    assert completion.usage.total_tokens == 17
    req = client.requests[0]
    assert req["max_tokens"] == 256
    assert req["temperature"] == 0.3
    assert req["messages"] == MESSAGES

    provider.close()
    assert client.closed is True


def test_openai_default_max_tokens(store, registry, monkeypatch):
    client = RecordingOpenAIClient()
    monkeypatch.setattr(OpenAIProvider, "_make_client", lambda self, settings: client)
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="sk-test", model="gpt-4o-mini"))
    registry.resolve("openai", "default").complete(MESSAGES)
    assert client.requests[0]["max_tokens"] == 3000


def test_openai_no_choices_is_llm_error(store, registry, monkeypatch):
    monkeypatch.setattr(OpenAIProvider, "_make_client",
                        lambda self, settings: RecordingOpenAIClient(choices=False))
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="sk-test", model="gpt-4o-mini"))
    with pytest.raises(LLMError) as exc:
        registry.resolve("openai", "default").complete(MESSAGES)
    assert exc.value.code == "no_completion"


def test_sdk_exception_wrapped_as_llm_error(store, registry, monkeypatch):
    client = RecordingOpenAIClient()

    def boom(**kwargs):
        raise ConnectionResetError("socket closed")

    client.chat.completions.create = boom
    monkeypatch.setattr(OpenAIProvider, "_make_client", lambda self, settings: client)
    store.save_llm_config(LLMConfig(name="default", type="openai", api_key="sk-test", model="gpt-4o-mini"))
    with pytest.raises(LLMError) as exc:
        registry.resolve("openai", "default").complete(MESSAGES)
    assert exc.value.code == "api_error"
    assert "socket closed" in str(exc.value)


def test_anthropic_system_and_configured_temperature(store, registry, monkeypatch):
    client = RecordingAnthropicClient()
    monkeypatch.setattr(AnthropicProvider, "_make_client", lambda self, settings: client)
    store.save_llm_config(LLMConfig(name="default", type="anthropic", api_key="k", model="claude-3-haiku",
                                    options={"temperature": 0.1, "top_k": 5}))

    completion = registry.resolve("anthropic", "default").complete(MESSAGES, temperature=0.7)

    assert completion.content == "<markdown># Hi</markdown>"
    assert completion.usage.prompt_tokens == 30
    req = client.requests[0]
    assert req["system"] == "be brief"
    assert req["messages"] == [{"role": "user", "content": "hello"}]
    assert req["temperature"] == 0.1
    assert req["top_k"] == 5


def test_complete_before_initialize():
    with pytest.raises(LLMError) as exc:
        OpenAIProvider().complete(MESSAGES)
    assert exc.value.code == "not_initialized"


def test_bedrock_converse_request(monkeypatch):
    calls = []

    class FakeBedrock:
        def converse(self, **kwargs):
            calls.append(kwargs)
            return {
                "output": {"message": {"content": [{"text": "<sql>select 2</sql>"}]}},
                "usage": {"inputTokens": 9, "outputTokens": 4},
            }

    monkeypatch.setattr(BedrockProvider, "_make_client", lambda self, settings: FakeBedrock())
    provider = BedrockProvider()
    provider.initialize(ProviderSettings(name="b", api_key="AKIA:secret", model="m",
                                         options=BedrockOptions(max_tokens=50)))
    completion = provider.complete(MESSAGES)
    assert completion.content == "<sql>select 2</sql>"
    assert calls[0]["system"] == [{"text": "be brief"}]
    assert calls[0]["inferenceConfig"]["maxTokens"] == 50


def test_gemini_close_closes_client(monkeypatch):
    client = SimpleNamespace(closed=False)
    client.close = lambda: setattr(client, "closed", True)
    monkeypatch.setattr(GeminiProvider, "_make_client", lambda self, settings: client)

    provider = GeminiProvider()
    provider.initialize(ProviderSettings(name="g", api_key="k", model="gemini-1.5-flash",
                                         options=GeminiOptions()))
    provider.close()
    assert client.closed is True
    assert provider.client is None
