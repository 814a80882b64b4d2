from __future__ import annotations

from pathlib import Path

import pytest

from cairn.config import Settings


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "STORE_BACKEND",
        "SUPABASE_URL",
        "SUPABASE_KEY",
        "SUPABASE_ANON_KEY",
        "EMBEDDING_MODE",
        "EMBEDDING_MODEL",
        "SIMILARITY_THRESHOLD",
        "OBSERVABILITY_METRICS_ENABLED",
        "OBSERVABILITY_PROMETHEUS_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings.from_env()

    assert settings.store_backend == "sqlite"
    assert not settings.is_supabase_store
    assert not settings.is_remote_embedding
    assert settings.is_azure_embedding_backend
    assert settings.similarity_threshold == 0.8
    assert settings.observability_metrics_enabled is True


def test_supabase_key_falls_back_to_anon_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "Supabase")
    monkeypatch.setenv("SUPABASE_URL", "https://demo.supabase.co/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")

    settings = Settings.from_env()

    assert settings.is_supabase_store
    assert settings.supabase_rest_url() == "https://demo.supabase.co/rest/v1"
    assert settings.supabase_headers() == {"apikey": "anon-key", "Authorization": "Bearer anon-key"}


def test_invalid_choice_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "mongo")

    with pytest.raises(ValueError, match="STORE_BACKEND"):
        Settings.from_env()


def test_invalid_bool_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OBSERVABILITY_METRICS_ENABLED", "maybe")

    with pytest.raises(ValueError):
        Settings.from_env()


def test_zero_threshold_is_preserved(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "0")

    assert Settings.from_env().similarity_threshold == 0.0


def test_embedding_backend_detection() -> None:
    assert Settings(embedding_model="text-embedding-3-large").is_openai_embedding_backend
    ollama = Settings(embedding_model="ollama:nomic-embed-text")
    assert ollama.is_ollama_embedding_backend
    assert ollama.ollama_embedding_model == "nomic-embed-text"
    assert Settings().ollama_embedding_model is None


def test_sqlite_path_is_resolved(tmp_path: Path) -> None:
    settings = Settings(sqlite_path=str(tmp_path / "nested" / "k.sqlite"))

    assert settings.sqlite_db_path() == (tmp_path / "nested" / "k.sqlite").resolve()


def test_metrics_recorder_follows_settings() -> None:
    recorder = Settings(observability_metrics_enabled=False).build_metrics_recorder()

    assert recorder.enabled is False
    assert recorder.prometheus_enabled is False
