"""Query request models for hybrid search.

Requests arrive with camelCase keys from HTTP callers and snake_case keys from
Python callers; both spellings are accepted.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.config import config
from ..core.exceptions import ValidationError


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    request_label: ClassVar[str] = "request"

    @classmethod
    def parse(cls, payload: Any):
        """Validate *payload*, raising :class:`ValidationError` on bad input."""
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError(f"{cls.request_label.capitalize()} must be an object with a 'query' string")
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                f"Invalid {cls.request_label}",
                details={"errors": [_describe(error) for error in exc.errors()]},
            ) from exc


class TimeRange(_RequestModel):
    """Inclusive bounds on capture timestamps (epoch milliseconds)."""

    start: Optional[int] = None
    end: Optional[int] = None


class BBoxRegion(_RequestModel):
    """Rectangle tested against a node's center point; any side may be open."""

    min_x: Optional[float] = None
    max_x: Optional[float] = None
    min_y: Optional[float] = None
    max_y: Optional[float] = None


class SearchFilters(_RequestModel):
    """Symbolic prefilters, combined with AND."""

    types: Optional[list[str]] = None
    app: Optional[str] = None
    screen_id: Optional[str] = None
    clickable_only: bool = False
    visible_only: bool = False
    text_contains: Optional[str] = None
    bbox_region: Optional[BBoxRegion] = None
    time_range: Optional[TimeRange] = None


class SearchRequest(_RequestModel):
    request_label: ClassVar[str] = "search request"

    query: str
    filters: SearchFilters = Field(default_factory=SearchFilters)
    k: int = Field(default=config.search_default_k, ge=1)
    min_score: float = Field(default=config.search_default_min_score, ge=-1.0, le=1.0)

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("query must be a non-empty string")
        return value


class HistoryRequest(_RequestModel):
    request_label: ClassVar[str] = "history request"

    query: str
    time_range: TimeRange = Field(default_factory=TimeRange)
    k: int = Field(default=config.search_default_k, ge=1)

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("query must be a non-empty string")
        return value


def _describe(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid")
