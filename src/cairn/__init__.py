"""Cairn knowledge service package."""

from __future__ import annotations

from .config import Settings
from .errors import CairnError, EmbeddingError, StoreError, ValidationError
from .models import KnowledgeItem
from .tags import normalize_tags

__all__ = [
    "Settings",
    "KnowledgeItem",
    "KnowledgeService",
    "EmbeddingService",
    "CairnError",
    "EmbeddingError",
    "StoreError",
    "ValidationError",
    "normalize_tags",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "EmbeddingService":
        from .embeddings import EmbeddingService

        return EmbeddingService
    if name == "KnowledgeService":
        from .service import KnowledgeService

        return KnowledgeService
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'cairn' has no attribute {name}")
