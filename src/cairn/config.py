"""Configuration helpers for the Cairn knowledge service."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import TYPE_CHECKING, Final, Literal

from dotenv import load_dotenv

load_dotenv()

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

StoreBackend = Literal["supabase", "sqlite"]
EmbeddingMode = Literal["local", "remote"]

_DEFAULT_STORE_BACKEND: Final[str] = "sqlite"
_DEFAULT_KNOWLEDGE_TABLE: Final[str] = "knowledge_items"
_DEFAULT_SQLITE_PATH: Final[str] = "data/knowledge.sqlite"
_DEFAULT_STORE_TIMEOUT: Final[float] = 15.0
_DEFAULT_EMBEDDING_MODE: Final[str] = "local"
_DEFAULT_EMBEDDING_ENDPOINT: Final[str] = "http://localhost:8000/api/generate-embedding"
_DEFAULT_EMBEDDING_TIMEOUT: Final[float] = 30.0
_DEFAULT_EMBEDDING_MODEL: Final[str] = "azure"
_DEFAULT_AZURE_API_VERSION: Final[str] = "2024-02-15-preview"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_TIMEOUT: Final[float] = 60.0
_DEFAULT_PROCESSING_URL: Final[str] = "http://localhost:8000"
_DEFAULT_PROCESSING_TIMEOUT: Final[float] = 30.0
_DEFAULT_SIMILARITY_THRESHOLD: Final[float] = 0.8


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_choice(name: str, default: str, choices: set[str]) -> str:
    value = (os.getenv(name) or default).strip().lower()
    if value not in choices:
        options = ", ".join(sorted(choices))
        raise ValueError(f"Environment variable {name} must be one of: {options}")
    return value


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    store_backend: str = _DEFAULT_STORE_BACKEND
    supabase_url: str | None = None
    supabase_key: str | None = None
    knowledge_table: str = _DEFAULT_KNOWLEDGE_TABLE
    sqlite_path: str = _DEFAULT_SQLITE_PATH
    store_timeout: float = _DEFAULT_STORE_TIMEOUT
    embedding_mode: str = _DEFAULT_EMBEDDING_MODE
    embedding_endpoint: str = _DEFAULT_EMBEDDING_ENDPOINT
    embedding_timeout: float = _DEFAULT_EMBEDDING_TIMEOUT
    embedding_model: str = _DEFAULT_EMBEDDING_MODEL
    azure_openai_endpoint: str | None = None
    azure_openai_api_key: str | None = None
    azure_embedding_deployment: str | None = None
    azure_openai_api_version: str = _DEFAULT_AZURE_API_VERSION
    openai_api_key: str | None = None
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_request_timeout: float = _DEFAULT_OLLAMA_TIMEOUT
    processing_api_url: str = _DEFAULT_PROCESSING_URL
    processing_timeout: float = _DEFAULT_PROCESSING_TIMEOUT
    similarity_threshold: float = _DEFAULT_SIMILARITY_THRESHOLD
    observability_metrics_enabled: bool = True
    observability_namespace: str = "cairn"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        metrics_enabled = _env_optional_bool("OBSERVABILITY_METRICS_ENABLED")

        return cls(
            store_backend=_env_choice("STORE_BACKEND", _DEFAULT_STORE_BACKEND, {"supabase", "sqlite"}),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY"),
            knowledge_table=os.getenv("KNOWLEDGE_TABLE", _DEFAULT_KNOWLEDGE_TABLE),
            sqlite_path=os.getenv("SQLITE_PATH", _DEFAULT_SQLITE_PATH),
            store_timeout=_env_float("STORE_TIMEOUT", _DEFAULT_STORE_TIMEOUT),
            embedding_mode=_env_choice("EMBEDDING_MODE", _DEFAULT_EMBEDDING_MODE, {"local", "remote"}),
            embedding_endpoint=os.getenv("EMBEDDING_ENDPOINT", _DEFAULT_EMBEDDING_ENDPOINT),
            embedding_timeout=_env_float("EMBEDDING_TIMEOUT", _DEFAULT_EMBEDDING_TIMEOUT),
            embedding_model=os.getenv("EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL),
            azure_openai_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
            azure_openai_api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            azure_embedding_deployment=os.getenv("AZURE_EMBEDDING_DEPLOYMENT"),
            azure_openai_api_version=os.getenv("AZURE_OPENAI_API_VERSION", _DEFAULT_AZURE_API_VERSION),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_request_timeout=_env_float("OLLAMA_TIMEOUT", _DEFAULT_OLLAMA_TIMEOUT),
            processing_api_url=os.getenv("PROCESSING_API_URL", _DEFAULT_PROCESSING_URL),
            processing_timeout=_env_float("PROCESSING_TIMEOUT", _DEFAULT_PROCESSING_TIMEOUT),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", _DEFAULT_SIMILARITY_THRESHOLD),
            observability_metrics_enabled=metrics_enabled if metrics_enabled is not None else True,
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "cairn"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_supabase_store(self) -> bool:
        """Return True when knowledge items live in a hosted Supabase table."""

        return self.store_backend.strip().lower() == "supabase"

    @property
    def is_remote_embedding(self) -> bool:
        """Return True when embeddings are fetched from an HTTP embedding endpoint."""

        return self.embedding_mode.strip().lower() == "remote"

    @property
    def is_azure_embedding_backend(self) -> bool:
        return self.embedding_model.strip().lower() == "azure"

    @property
    def is_openai_embedding_backend(self) -> bool:
        return self.embedding_model.strip().lower() == "text-embedding-3-large"

    @property
    def is_ollama_embedding_backend(self) -> bool:
        """Return True when embeddings should be generated via an Ollama-hosted model."""

        return self.embedding_model.strip().lower().startswith("ollama:")

    @property
    def ollama_embedding_model(self) -> str | None:
        """Return the Ollama embedding model name without the prefix when configured."""

        if not self.is_ollama_embedding_backend:
            return None
        _, _, name = self.embedding_model.partition(":")
        return name.strip() or None

    def supabase_rest_url(self) -> str:
        """Return the PostgREST base URL for the configured Supabase project."""

        base = (self.supabase_url or "").strip().rstrip("/")
        if not base:
            msg = "SUPABASE_URL must be set when using the Supabase store backend."
            raise ValueError(msg)
        return f"{base}/rest/v1"

    def supabase_headers(self) -> dict[str, str]:
        """Headers authenticating PostgREST requests with the project API key."""

        key = (self.supabase_key or "").strip()
        if not key:
            msg = "SUPABASE_KEY must be set when using the Supabase store backend."
            raise ValueError(msg)
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    def azure_embeddings_deployment(self) -> tuple[str, str]:
        """Return the Azure endpoint and deployment name, validating both are configured."""

        endpoint = (self.azure_openai_endpoint or "").strip().rstrip("/")
        deployment = (self.azure_embedding_deployment or "").strip()
        if not endpoint or not deployment:
            msg = (
                "AZURE_OPENAI_ENDPOINT and AZURE_EMBEDDING_DEPLOYMENT must be set "
                "when using the Azure embedding backend."
            )
            raise ValueError(msg)
        return endpoint, deployment

    def sqlite_db_path(self) -> Path:
        return Path(self.sqlite_path).expanduser().resolve()

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )
