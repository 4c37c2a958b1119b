from __future__ import annotations

from scholarchat.models.catalog import CatalogRecord
from scholarchat.models.chat import Record


def normalize_record(raw: CatalogRecord) -> Record:
    """Map a validated catalog record to a loading placeholder."""
    return Record(
        title=raw.title,
        link=raw.doi,
        date=raw.publication_date,
        citations=raw.cited_by_count,
        is_open_access=raw.open_access.is_oa,
        summary="",
        loading=True,
    )


def normalize_records(raw_records: list[CatalogRecord]) -> tuple[Record, ...]:
    return tuple(normalize_record(raw) for raw in raw_records)
