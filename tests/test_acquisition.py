from __future__ import annotations

import json

import httpx
import pytest

from cairn.acquisition import (
    EmbeddingAcquirer,
    HttpEmbeddingProvider,
    LocalEmbeddingProvider,
    UnavailableEmbeddingProvider,
)
from cairn.errors import EmbeddingError


def _provider(handler) -> HttpEmbeddingProvider:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpEmbeddingProvider("http://embed.local/api/generate-embedding", client=client)


def test_http_provider_posts_text_and_parses_vector() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [1, 2.5, -3]})

    vector = _provider(handler).embed_text("hello world")

    assert seen == [{"text": "hello world"}]
    assert vector == [1.0, 2.5, -3.0]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "Failed to generate embedding"}),
        httpx.Response(200, json={"vector": [1.0]}),
        httpx.Response(200, json={"embedding": ["a", "b"]}),
        httpx.Response(200, text="<html>oops</html>"),
    ],
)
def test_http_provider_rejects_unusable_responses(response: httpx.Response) -> None:
    provider = _provider(lambda request: response)

    with pytest.raises(EmbeddingError):
        provider.embed_text("hello")


def test_http_provider_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(EmbeddingError, match="unreachable"):
        _provider(handler).embed_text("hello")


def test_http_provider_requires_endpoint() -> None:
    with pytest.raises(ValueError):
        HttpEmbeddingProvider("   ")


def test_acquirer_returns_vector_on_success(stub_provider) -> None:
    outcome = EmbeddingAcquirer(stub_provider).acquire("abc")

    assert outcome.ok
    assert outcome.vector == [3.0, 1.0, 0.0]
    assert outcome.dimension == 3


def test_acquirer_absorbs_provider_failure(failing_provider) -> None:
    outcome = EmbeddingAcquirer(failing_provider).acquire("abc")

    assert not outcome.ok
    assert outcome.vector == []
    assert isinstance(outcome.error, EmbeddingError)
    assert failing_provider.calls == 1


def test_unavailable_provider_always_fails() -> None:
    outcome = EmbeddingAcquirer(UnavailableEmbeddingProvider("no backend configured")).acquire("abc")

    assert outcome.vector == []
    assert str(outcome.error) == "no backend configured"


def test_local_provider_prepares_text_and_wraps_errors() -> None:
    class _Service:
        def __init__(self) -> None:
            self.inputs: list[str] = []

        def embed_one(self, text: str) -> list[float]:
            self.inputs.append(text)
            if text == "boom":
                raise RuntimeError("backend exploded")
            return [0.25]

    service = _Service()
    provider = LocalEmbeddingProvider(service)  # type: ignore[arg-type]

    assert provider.embed_text("  line one\nline two\nthree ") == [0.25]
    assert service.inputs == ["line one line two\nthree"]

    with pytest.raises(EmbeddingError, match="backend exploded"):
        provider.embed_text("boom")
