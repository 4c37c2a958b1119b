from __future__ import annotations

from pydantic import BaseModel


class CatalogMeta(BaseModel):
    count: int
    page: int
    per_page: int


class OpenAccess(BaseModel):
    is_oa: bool


class CatalogRecord(BaseModel):
    title: str
    doi: str | None
    publication_date: str
    cited_by_count: int
    open_access: OpenAccess


class CatalogPage(BaseModel):
    meta: CatalogMeta
    results: list[CatalogRecord]

    @property
    def has_more_results(self) -> bool:
        return self.meta.count > self.meta.page * self.meta.per_page
