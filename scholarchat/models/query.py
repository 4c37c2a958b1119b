"""Structured query returned by the interpretation call.

Every field is required-but-nullable so the models can be used directly as a
strict structured-output schema.
"""
from __future__ import annotations

from pydantic import BaseModel


class IntRange(BaseModel):
    minimum: int | None
    maximum: int | None


class QueryFilters(BaseModel):
    year_range: IntRange | None
    cited_by_range: IntRange | None
    is_open_access: bool | None
    search_term: str | None


class StructuredQuery(BaseModel):
    request_url: str | None
    filters: QueryFilters
    explanation: str | None

    @property
    def is_valid(self) -> bool:
        return self.request_url is not None
