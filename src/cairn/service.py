"""Knowledge upsert engine.

Incoming knowledge is keyed on ``category``: the first write for a category
creates a row, every later write with the same category overwrites that row's
content, tags and embedding in place. The lookup and the write are separate
store calls with no lock between them, so two concurrent writes for a brand-new
category can both insert.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Mapping

from .acquisition import EmbeddingAcquirer, EmbeddingOutcome
from .errors import ValidationError
from .knowledge_store import KnowledgeStore
from .models import KnowledgeItem
from .tags import normalize_tags

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"category", "content", "tags"})


@dataclass(slots=True)
class UpsertOutcome:
    """Persisted item plus which branch ran and how embedding acquisition went."""

    item: KnowledgeItem
    created: bool
    embedding: EmbeddingOutcome


class KnowledgeService:
    """Create, update, read and delete knowledge items."""

    def __init__(
        self,
        store: KnowledgeStore,
        acquirer: EmbeddingAcquirer,
        *,
        metrics: "MetricsRecorder | None" = None,
    ) -> None:
        self._store = store
        self._acquirer = acquirer
        self._metrics = metrics

    @property
    def store(self) -> KnowledgeStore:
        return self._store

    def upsert(self, category: str, content: str, raw_tags: Any = None) -> KnowledgeItem:
        """Insert or overwrite the item for ``category`` and return it."""

        return self.upsert_with_outcome(category, content, raw_tags).item

    def upsert_with_outcome(self, category: str, content: str, raw_tags: Any = None) -> UpsertOutcome:
        tags = normalize_tags(raw_tags)
        embedding = self._acquirer.acquire(content)
        fields = {
            "category": category,
            "content": content,
            "tags": tags,
            "embedding": embedding.vector,
        }

        existing = self._store.find_by_category(category)
        if existing is not None:
            item_id = str(existing["id"])
            row = self._store.update_item(item_id, fields)
            if row is None:
                # Deleted between lookup and write; fall through to a fresh insert.
                logger.warning("knowledge.upsert.vanished id=%s category=%s", item_id, category)
                row = self._store.insert_item(fields)
                created = True
            else:
                created = False
        else:
            row = self._store.insert_item(fields)
            created = True

        item = KnowledgeItem.from_row(row)
        logger.info(
            "knowledge.upsert.%s id=%s category=%s tags=%s embedding_dim=%s",
            "created" if created else "updated",
            item.id,
            item.category,
            len(item.tags),
            len(item.embedding),
        )
        if self._metrics:
            self._metrics.increment(
                "knowledge.upserts",
                branch="create" if created else "update",
                embedded="yes" if embedding.ok else "no",
            )
        return UpsertOutcome(item=item, created=created, embedding=embedding)

    def create(self, item: Mapping[str, Any]) -> KnowledgeItem:
        """Upsert from a ``{"category", "content", "tags"}`` mapping."""

        category = item.get("category")
        content = item.get("content")
        if not isinstance(category, str):
            raise ValidationError("category must be a string")
        if not isinstance(content, str):
            raise ValidationError("content must be a string")
        return self.upsert(category, content, item.get("tags"))

    def update(self, item_id: str, fields: Mapping[str, Any]) -> KnowledgeItem | None:
        """Apply a partial update, re-embedding only when ``content`` changes."""

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for name in ("category", "content"):
            if name in fields and not isinstance(fields[name], str):
                raise ValidationError(f"{name} must be a string")

        changes: dict[str, Any] = {}
        if "category" in fields:
            changes["category"] = fields["category"]
        if "tags" in fields:
            changes["tags"] = normalize_tags(fields["tags"])
        if "content" in fields:
            changes["content"] = fields["content"]
            changes["embedding"] = self._acquirer.acquire(fields["content"]).vector
        if not changes:
            return self.get_by_id(item_id)

        row = self._store.update_item(item_id, changes)
        if row is None:
            logger.info("knowledge.update.missing id=%s", item_id)
            return None
        item = KnowledgeItem.from_row(row)
        logger.info("knowledge.update.applied id=%s fields=%s", item.id, ",".join(sorted(changes)))
        return item

    def delete(self, item_id: str) -> None:
        self._store.delete_item(item_id)
        logger.info("knowledge.deleted id=%s", item_id)
        if self._metrics:
            self._metrics.increment("knowledge.deletes")

    def get_all(self) -> List[KnowledgeItem]:
        return [KnowledgeItem.from_row(row) for row in self._store.list_items()]

    def get_by_id(self, item_id: str) -> KnowledgeItem | None:
        row = self._store.get_item(item_id)
        if row is None:
            return None
        return KnowledgeItem.from_row(row)

    def list_categories(self) -> List[str]:
        """Distinct categories, newest item first."""

        seen: list[str] = []
        for item in self.get_all():
            if item.category not in seen:
                seen.append(item.category)
        return seen

    def stats(self) -> dict[str, int]:
        items = self.get_all()
        tag_counts: Counter[str] = Counter()
        for item in items:
            tag_counts.update(item.tags)
        return {
            "total_knowledge_items": len(items),
            "unique_tags": len(tag_counts),
        }
