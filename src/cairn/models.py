"""Knowledge item records exchanged between the store, the service and the API."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

from .tags import normalize_tags

KNOWLEDGE_COLUMNS: tuple[str, ...] = (
    "id",
    "category",
    "content",
    "tags",
    "embedding",
    "created_at",
    "last_updated",
)


@dataclass(slots=True)
class KnowledgeItem:
    """A persisted knowledge item with tags already normalized."""

    id: str
    category: str
    content: str
    tags: list[str] = field(default_factory=list)
    embedding: list[float] = field(default_factory=list)
    created_at: str | None = None
    last_updated: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "KnowledgeItem":
        """Build an item from a store row, tolerating serialized or missing fields."""

        embedding = row.get("embedding")
        if isinstance(embedding, str):
            embedding = _decode_vector(embedding)
        return cls(
            id=str(row["id"]),
            category=row.get("category") or "",
            content=row.get("content") or "",
            tags=normalize_tags(row.get("tags")),
            embedding=[float(value) for value in (embedding or [])],
            created_at=_as_text(row.get("created_at")),
            last_updated=_as_text(row.get("last_updated")),
        )

    def to_dict(self, *, include_embedding: bool = True) -> dict[str, Any]:
        payload = asdict(self)
        if not include_embedding:
            payload.pop("embedding", None)
        return payload


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _decode_vector(value: str) -> list[float]:
    # pgvector renders vectors as "[0.1,0.2,...]", which is also valid JSON.
    text = value.strip()
    if not text:
        return []
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        return []
    return decoded if isinstance(decoded, list) else []
