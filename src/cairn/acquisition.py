"""Best-effort embedding acquisition for knowledge writes.

A knowledge item is still worth saving when its embedding cannot be produced,
so :class:`EmbeddingAcquirer` converts every provider failure into an
:class:`EmbeddingOutcome` carrying the error instead of raising it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Protocol

import httpx

from .config import Settings
from .embeddings import EmbeddingService, prepare_embedding_input
from .errors import EmbeddingError

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns a text into a vector or raises :class:`EmbeddingError`."""

    name: str

    def embed_text(self, text: str) -> List[float]:
        ...


@dataclass(slots=True)
class EmbeddingOutcome:
    """Result of one acquisition attempt: a vector, or the error that prevented it."""

    vector: List[float] = field(default_factory=list)
    error: EmbeddingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def dimension(self) -> int:
        return len(self.vector)


class HttpEmbeddingProvider:
    """Call an embedding endpoint that accepts ``{"text"}`` and returns ``{"embedding"}``."""

    name = "remote"

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not endpoint.strip():
            raise ValueError("Embedding endpoint URL must not be empty.")
        self._endpoint = endpoint.strip()
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpEmbeddingProvider":
        return cls(settings.embedding_endpoint, timeout=settings.embedding_timeout)

    def embed_text(self, text: str) -> List[float]:
        try:
            response = self._client.post(self._endpoint, json={"text": text})
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding endpoint unreachable: {exc}") from exc

        if response.is_error:
            raise EmbeddingError(f"Embedding endpoint returned HTTP {response.status_code}: {_error_detail(response)}")

        try:
            data = response.json()
        except ValueError as exc:
            raise EmbeddingError("Embedding endpoint returned a non-JSON body.") from exc

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingError("Embedding response did not include an 'embedding' list.")
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError("Embedding response contained non-numeric values.") from exc

    def close(self) -> None:
        self._client.close()


class LocalEmbeddingProvider:
    """Adapt the in-process :class:`EmbeddingService` to the provider protocol."""

    name = "local"

    def __init__(self, service: EmbeddingService) -> None:
        self._service = service

    def embed_text(self, text: str) -> List[float]:
        try:
            return self._service.embed_one(prepare_embedding_input(text))
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding backend failed: {exc}") from exc


class UnavailableEmbeddingProvider:
    """Stand-in used when no embedding backend is configured; every call fails."""

    name = "unavailable"

    def __init__(self, reason: str) -> None:
        self._reason = reason

    def embed_text(self, text: str) -> List[float]:
        raise EmbeddingError(self._reason)


class EmbeddingAcquirer:
    """Wrap a provider so callers always receive an :class:`EmbeddingOutcome`."""

    def __init__(self, provider: EmbeddingProvider, *, metrics: "MetricsRecorder | None" = None) -> None:
        self._provider = provider
        self._metrics = metrics

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    def acquire(self, content: str) -> EmbeddingOutcome:
        provider_name = getattr(self._provider, "name", type(self._provider).__name__)
        try:
            if self._metrics:
                with self._metrics.track_timing("embedding.acquire_duration", provider=provider_name):
                    vector = self._provider.embed_text(content)
            else:
                vector = self._provider.embed_text(content)
        except EmbeddingError as exc:
            logger.warning("embedding.acquire.failed provider=%s error=%s", provider_name, exc)
            if self._metrics:
                self._metrics.increment("embedding.failures", provider=provider_name)
            return EmbeddingOutcome(vector=[], error=exc)

        logger.debug("embedding.acquire.ok provider=%s dimension=%s", provider_name, len(vector))
        return EmbeddingOutcome(vector=list(vector))


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)
