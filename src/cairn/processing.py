"""Client for the external text-processing service that proposes categorizations."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, List

import httpx

from .config import Settings
from .errors import ProcessingError
from .tags import normalize_tags

logger = logging.getLogger(__name__)

_CONNECT_FAILURE = "Failed to connect to the knowledge processing service"


@dataclass(slots=True)
class Recommendation:
    """One candidate categorization offered by the processing service."""

    option_number: int
    change: str
    updated_text: str
    category: str
    tags: list[str] = field(default_factory=list)
    preview: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recommendation":
        return cls(
            option_number=_as_int(data.get("option_number")),
            change=str(data.get("change") or ""),
            updated_text=str(data.get("updated_text") or ""),
            category=str(data.get("category") or ""),
            tags=normalize_tags(data.get("tags")),
            preview=data.get("preview"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ProcessingResult:
    recommendations: list[Recommendation]
    similar_category: str | None = None
    similarity_score: float | None = None
    status: str = "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendations": [item.to_dict() for item in self.recommendations],
            "similar_category": self.similar_category,
            "similarity_score": self.similarity_score,
            "status": self.status,
        }


class ProcessingClient:
    """Thin HTTP client; ranking and similarity live entirely on the remote side."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self._base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProcessingClient":
        return cls(settings.processing_api_url, timeout=settings.processing_timeout)

    def process_text(self, text: str, threshold: float = 0.8) -> ProcessingResult:
        data = self._request("POST", "/api/process-text", json={"text": text, "threshold": threshold})
        raw_recommendations = data.get("recommendations") or []
        result = ProcessingResult(
            recommendations=[Recommendation.from_dict(item) for item in raw_recommendations if isinstance(item, dict)],
            similar_category=data.get("similar_category"),
            similarity_score=_as_float(data.get("similarity_score")),
            status=str(data.get("status") or "success"),
        )
        logger.info(
            "processing.process_text recommendations=%s similar_category=%s",
            len(result.recommendations),
            result.similar_category,
        )
        return result

    def health_check(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, json: Any = None) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.error("processing.request.failed path=%s error=%s", path, exc)
            raise ProcessingError(_CONNECT_FAILURE) from exc

        if response.is_error:
            raise ProcessingError(_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProcessingError("Processing service returned a non-JSON body", status_code=response.status_code) from exc
        if not isinstance(data, dict):
            raise ProcessingError("Processing service returned an unexpected payload", status_code=response.status_code)
        return data


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("processing.similarity_score.invalid value=%r", value)
        return None
