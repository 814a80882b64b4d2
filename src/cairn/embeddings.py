"""Embedding service backing the embedding proxy route."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum, auto
from typing import Final, List

import httpx
from openai import AzureOpenAI, OpenAI

from .config import Settings

logger = logging.getLogger(__name__)

_OPENAI_MODEL: Final[str] = "text-embedding-3-large"
_OPENAI_DIMENSION: Final[int] = 3072


class EmbeddingBackend(Enum):
    """Supported embedding backends."""

    AZURE_OPENAI = auto()
    OPENAI = auto()
    OLLAMA = auto()


def prepare_embedding_input(text: str) -> str:
    """Flatten the first line break and trim surrounding whitespace."""

    return text.replace("\n", " ", 1).strip()


class EmbeddingService:
    """High-level interface for embedding generation."""

    def __init__(self, settings: Settings, *, validate: bool = True) -> None:
        self._settings = settings
        if settings.is_openai_embedding_backend:
            backend = EmbeddingBackend.OPENAI
        elif settings.is_ollama_embedding_backend:
            backend = EmbeddingBackend.OLLAMA
        elif settings.is_azure_embedding_backend:
            backend = EmbeddingBackend.AZURE_OPENAI
        else:
            msg = f"Unsupported EMBEDDING_MODEL '{settings.embedding_model}'."
            raise ValueError(msg)

        self._backend = backend
        self._dimension: int | None = None
        self._openai_client: OpenAI | AzureOpenAI | None = None
        self._azure_deployment: str | None = None
        self._ollama_model: str | None = None
        self._ollama_client: httpx.Client | None = None

        if self._backend is EmbeddingBackend.AZURE_OPENAI:
            self._setup_azure()
        elif self._backend is EmbeddingBackend.OPENAI:
            self._setup_openai(validate)
        else:
            self._setup_ollama(validate)

    @property
    def backend(self) -> EmbeddingBackend:
        """Return the active backend type."""

        return self._backend

    @property
    def dimension(self) -> int | None:
        """Return the embedding dimensionality once it is known."""

        return self._dimension

    @property
    def model_identifier(self) -> str:
        if self._backend is EmbeddingBackend.AZURE_OPENAI and self._azure_deployment:
            return f"azure:{self._azure_deployment}"
        return self._settings.embedding_model

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embeddings for a sequence of texts."""

        if not texts:
            return []

        if self._backend is EmbeddingBackend.OLLAMA:
            vectors = [self._ollama_embed(text) for text in texts]
        else:
            assert self._openai_client is not None  # for mypy
            model = self._azure_deployment if self._backend is EmbeddingBackend.AZURE_OPENAI else _OPENAI_MODEL
            result = self._openai_client.embeddings.create(model=model, input=list(texts))
            vectors = [[float(value) for value in item.embedding] for item in result.data]

        self._check_dimension(vectors)
        return vectors

    def embed_one(self, text: str) -> List[float]:
        """Generate an embedding for a single piece of text."""

        vectors = self.embed([text])
        if not vectors:
            raise RuntimeError("Embedding backend returned no vectors.")
        return vectors[0]

    def close(self) -> None:
        """Release any underlying client resources."""

        if self._ollama_client is not None:
            self._ollama_client.close()
            self._ollama_client = None

    # Internal helpers -------------------------------------------------

    def _setup_azure(self) -> None:
        api_key = self._settings.azure_openai_api_key or None
        if not api_key:
            msg = "AZURE_OPENAI_API_KEY must be set when using the Azure embedding backend."
            raise ValueError(msg)
        endpoint, deployment = self._settings.azure_embeddings_deployment()
        self._azure_deployment = deployment
        self._openai_client = AzureOpenAI(
            api_key=api_key,
            api_version=self._settings.azure_openai_api_version,
            azure_endpoint=endpoint,
        )

    def _setup_openai(self, validate: bool) -> None:
        api_key = self._settings.openai_api_key or None
        if not api_key:
            msg = "OPENAI_API_KEY must be set when using the OpenAI embedding backend."
            raise ValueError(msg)

        self._openai_client = OpenAI(api_key=api_key)
        self._dimension = _OPENAI_DIMENSION

        if validate:
            # Raises if the configured model is not available to this key.
            self._openai_client.models.retrieve(_OPENAI_MODEL)

    def _setup_ollama(self, validate: bool) -> None:
        model = self._settings.ollama_embedding_model
        if not model:
            msg = "EMBEDDING_MODEL must include an Ollama model identifier (e.g. 'ollama:nomic-embed-text')."
            raise ValueError(msg)

        self._ollama_model = model
        self._ollama_client = httpx.Client(
            base_url=self._settings.ollama_base_url.rstrip("/"),
            timeout=self._settings.ollama_request_timeout,
        )

        if validate:
            vector = self._ollama_embed("__dimension_probe__")
            if not vector:
                msg = f"Ollama embedding backend '{model}' returned no data."
                raise ValueError(msg)
            self._dimension = len(vector)

    def _ollama_embed(self, text: str) -> List[float]:
        if self._ollama_client is None or not self._ollama_model:
            msg = "Ollama embedding backend is not initialised."
            raise RuntimeError(msg)

        url = f"{self._settings.ollama_base_url.rstrip('/')}/api/embeddings"
        payload = {"model": self._ollama_model, "prompt": text}

        try:
            response = self._ollama_client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Ollama embedding request failed: {exc}") from exc

        embedding = response.json().get("embedding")
        if embedding is None:
            msg = "Ollama embedding response did not include an 'embedding' field."
            raise RuntimeError(msg)
        return [float(value) for value in embedding]

    def _check_dimension(self, vectors: Sequence[Sequence[float]]) -> None:
        for vector in vectors:
            if self._dimension is None:
                self._dimension = len(vector)
                logger.info(
                    "embeddings.dimension.detected backend=%s dimension=%s",
                    self._backend.name.lower(),
                    self._dimension,
                )
            elif len(vector) != self._dimension:
                msg = f"Embedding dimension changed from {self._dimension} to {len(vector)}."
                raise RuntimeError(msg)
