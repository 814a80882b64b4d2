"""Exception hierarchy shared across the Cairn service."""

from __future__ import annotations


class CairnError(Exception):
    """Base exception for the Cairn service."""


class ValidationError(CairnError):
    """Request payload is missing a required field or has the wrong shape."""


class EmbeddingError(CairnError):
    """Embedding provider was unreachable or returned an unusable response."""


class StoreError(CairnError):
    """Knowledge store rejected or failed to execute an operation."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class TagParseError(CairnError):
    """Serialized tag string could not be decoded into a list."""


class ProcessingError(CairnError):
    """External text-processing service failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
