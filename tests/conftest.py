from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cairn.acquisition import EmbeddingAcquirer
from cairn.errors import EmbeddingError
from cairn.knowledge_store import SQLiteKnowledgeStore
from cairn.service import KnowledgeService


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self._current
        self._current = value + timedelta(seconds=1)
        return value


class StubEmbeddingProvider:
    name = "stub"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        return [float(len(text)), 1.0, 0.0]


class FailingEmbeddingProvider:
    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    def embed_text(self, text: str) -> list[float]:  # noqa: ARG002
        self.calls += 1
        raise EmbeddingError("provider offline")


@pytest.fixture()
def sqlite_store(tmp_path: Path) -> SQLiteKnowledgeStore:
    return SQLiteKnowledgeStore(tmp_path / "knowledge.sqlite", clock=StepClock())


@pytest.fixture()
def stub_provider() -> StubEmbeddingProvider:
    return StubEmbeddingProvider()


@pytest.fixture()
def knowledge_service(sqlite_store: SQLiteKnowledgeStore, stub_provider: StubEmbeddingProvider) -> KnowledgeService:
    return KnowledgeService(sqlite_store, EmbeddingAcquirer(stub_provider))


@pytest.fixture()
def failing_provider() -> FailingEmbeddingProvider:
    return FailingEmbeddingProvider()
