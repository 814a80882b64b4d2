"""Tag normalization for knowledge items.

Tags arrive in several shapes: a native list from JSON request bodies, a
JSON-encoded string from stores that keep tags in a text column, a bare string
typed by a user, or nothing at all. Every read and write path funnels through
:func:`normalize_tags` so callers only ever see ``list[str]``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from enum import Enum, auto
from typing import Any, List

from .errors import TagParseError

logger = logging.getLogger(__name__)


class TagShape(Enum):
    """Recognised representations of a raw tag value."""

    SEQUENCE = auto()
    STRING = auto()
    ABSENT = auto()
    UNSUPPORTED = auto()


def classify_tags(raw: Any) -> TagShape:
    """Return the variant describing ``raw``."""

    if raw is None:
        return TagShape.ABSENT
    if isinstance(raw, str):
        return TagShape.STRING
    if isinstance(raw, (list, tuple)):
        return TagShape.SEQUENCE
    return TagShape.UNSUPPORTED


def normalize_tags(raw: Any) -> List[str]:
    """Convert ``raw`` into an ordered list of tag strings.

    Never raises: undecodable strings become a single tag and unsupported
    values become an empty list. Every element of the result is a string;
    duplicates and order are preserved.
    """

    shape = classify_tags(raw)
    if shape is TagShape.SEQUENCE:
        return _coerce_items(raw)
    if shape is TagShape.STRING:
        try:
            return _decode_serialized(raw)
        except TagParseError:
            return [raw]
    if shape is TagShape.ABSENT:
        return []
    if shape is TagShape.UNSUPPORTED:
        logger.debug("tags.normalize.unsupported type=%s", type(raw).__name__)
        return []
    raise AssertionError(f"Unhandled tag shape: {shape!r}")


def serialize_tags(tags: Sequence[str]) -> str:
    """Encode tags for stores that keep them in a text column."""

    return json.dumps(list(tags), ensure_ascii=False)


def _decode_serialized(value: str) -> List[str]:
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, ValueError) as exc:
        raise TagParseError(f"Tag value is not valid JSON: {value!r}") from exc
    if not isinstance(decoded, list):
        raise TagParseError(f"Tag value did not decode to a list: {value!r}")
    return _coerce_items(decoded)


def _coerce_items(items: Sequence[Any]) -> List[str]:
    # Scalars become strings, nested sequences are flattened, null and objects are dropped.
    tags: List[str] = []
    for item in items:
        if isinstance(item, str):
            tags.append(item)
        elif isinstance(item, (list, tuple)):
            tags.extend(_coerce_items(item))
        elif isinstance(item, bool):
            tags.append("true" if item else "false")
        elif isinstance(item, (int, float)):
            tags.append(str(item))
        else:
            logger.debug("tags.normalize.dropped type=%s", type(item).__name__)
    return tags
