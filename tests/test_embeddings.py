from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest

from cairn import embeddings as embeddings_module
from cairn.config import Settings
from cairn.embeddings import EmbeddingBackend, EmbeddingService, prepare_embedding_input


class _FakeEmbeddingsAPI:
    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self.calls: list[dict] = []

    def create(self, *, model: str, input: list[str]):
        self.calls.append({"model": model, "input": input})
        data = [SimpleNamespace(embedding=[0.5] * self.dimension) for _ in input]
        return SimpleNamespace(data=data)


class _FakeOpenAIClient:
    instances: list["_FakeOpenAIClient"] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.embeddings = _FakeEmbeddingsAPI(dimension=4)
        self.models = SimpleNamespace(retrieve=self._retrieve)
        self.retrieved: list[str] = []
        _FakeOpenAIClient.instances.append(self)

    def _retrieve(self, name: str) -> None:
        self.retrieved.append(name)


@pytest.fixture(autouse=True)
def _reset_fake_clients() -> None:
    _FakeOpenAIClient.instances.clear()


def test_prepare_embedding_input_flattens_first_newline() -> None:
    assert prepare_embedding_input(" a\nb\nc ") == "a b\nc"
    assert prepare_embedding_input("plain") == "plain"


def test_azure_backend_uses_deployment_as_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(embeddings_module, "AzureOpenAI", _FakeOpenAIClient)
    settings = Settings(
        embedding_model="azure",
        azure_openai_endpoint="https://example.openai.azure.com/",
        azure_openai_api_key="secret",
        azure_embedding_deployment="embed-large",
    )

    service = EmbeddingService(settings)
    vector = service.embed_one("hello")

    client = _FakeOpenAIClient.instances[-1]
    assert service.backend is EmbeddingBackend.AZURE_OPENAI
    assert client.kwargs == {
        "api_key": "secret",
        "api_version": "2024-02-15-preview",
        "azure_endpoint": "https://example.openai.azure.com",
    }
    assert client.embeddings.calls == [{"model": "embed-large", "input": ["hello"]}]
    assert vector == [0.5, 0.5, 0.5, 0.5]
    assert service.dimension == 4
    assert service.model_identifier == "azure:embed-large"


def test_azure_backend_requires_credentials() -> None:
    with pytest.raises(ValueError):
        EmbeddingService(Settings(embedding_model="azure"))


def test_openai_backend_validates_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(embeddings_module, "OpenAI", _FakeOpenAIClient)
    settings = Settings(embedding_model="text-embedding-3-large", openai_api_key="sk-test")

    service = EmbeddingService(settings)

    client = _FakeOpenAIClient.instances[-1]
    assert service.backend is EmbeddingBackend.OPENAI
    assert service.dimension == 3072
    assert client.retrieved == ["text-embedding-3-large"]


def test_openai_dimension_mismatch_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(embeddings_module, "OpenAI", _FakeOpenAIClient)
    service = EmbeddingService(
        Settings(embedding_model="text-embedding-3-large", openai_api_key="sk-test"),
        validate=False,
    )

    with pytest.raises(RuntimeError, match="dimension"):
        service.embed(["text"])


def test_ollama_backend_probes_dimension(monkeypatch: pytest.MonkeyPatch) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"embedding": [0.1, 0.2]})

    real_client = httpx.Client

    def _client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(embeddings_module.httpx, "Client", _client_factory)
    settings = Settings(embedding_model="ollama:nomic-embed-text", ollama_base_url="http://ollama:11434/")

    service = EmbeddingService(settings)
    vector = service.embed_one("hello")
    service.close()

    assert service.backend is EmbeddingBackend.OLLAMA
    assert service.dimension == 2
    assert vector == [0.1, 0.2]
    assert str(requests[0].url) == "http://ollama:11434/api/embeddings"
    assert json.loads(requests[-1].read()) == {"model": "nomic-embed-text", "prompt": "hello"}


def test_ollama_backend_requires_model_name() -> None:
    with pytest.raises(ValueError):
        EmbeddingService(Settings(embedding_model="ollama:"))


def test_unknown_model_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported"):
        EmbeddingService(Settings(embedding_model="bert"))
