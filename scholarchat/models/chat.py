"""Transcript value types.

Messages and records are immutable; every change produces a new value that
the transcript store swaps in by message id.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Callable
from uuid import uuid4


def new_id() -> str:
    return uuid4().hex


class Sender(StrEnum):
    USER = "user"
    BOT = "bot"


class MessageState(StrEnum):
    IDLE = "idle"
    AWAITING_QUERY_INTERPRETATION = "awaiting_query_interpretation"
    AWAITING_PAGE_FETCH = "awaiting_page_fetch"
    STREAMING_SUMMARIES = "streaming_summaries"
    SETTLED = "settled"


@dataclass(frozen=True, slots=True)
class Record:
    title: str
    link: str | None
    date: str
    citations: int
    is_open_access: bool
    summary: str = ""
    loading: bool = True
    record_id: str = field(default_factory=new_id)


@dataclass(frozen=True, slots=True)
class TextBody:
    text: str


@dataclass(frozen=True, slots=True)
class RecordsBody:
    records: tuple[Record, ...] = ()

    def append(self, records: tuple[Record, ...]) -> RecordsBody:
        return RecordsBody(records=self.records + tuple(records))

    def replace_record(self, record: Record) -> RecordsBody:
        return RecordsBody(
            records=tuple(
                record if existing.record_id == record.record_id else existing
                for existing in self.records
            )
        )

    def clear_loading(self) -> RecordsBody:
        if not any(r.loading for r in self.records):
            return self
        return RecordsBody(records=tuple(replace(r, loading=False) for r in self.records))

    @property
    def has_loading(self) -> bool:
        return any(r.loading for r in self.records)


MessageBody = TextBody | RecordsBody


@dataclass(frozen=True, slots=True)
class QueryContext:
    """Where a records message came from and how far it has paged."""

    request_url: str
    current_page: int = 0
    has_more_results: bool = False
    search_term: str | None = None
    # Cancellation token id of the page cycle currently writing to the message.
    cycle_id: str | None = None


@dataclass(frozen=True, slots=True)
class Message:
    sender: Sender
    body: MessageBody
    context: QueryContext | None = None
    is_streaming: bool = False
    state: MessageState = MessageState.SETTLED
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if self.sender is Sender.USER and (self.context is not None or self.is_streaming):
            raise ValueError("Only bot messages carry query context or a streaming flag")

    @classmethod
    def from_user(cls, text: str, *, state: MessageState = MessageState.IDLE) -> Message:
        return cls(sender=Sender.USER, body=TextBody(text), state=state)

    @classmethod
    def bot_text(cls, text: str) -> Message:
        return cls(sender=Sender.BOT, body=TextBody(text))

    @classmethod
    def bot_records(cls, context: QueryContext) -> Message:
        return cls(
            sender=Sender.BOT,
            body=RecordsBody(),
            context=context,
            is_streaming=True,
            state=MessageState.AWAITING_PAGE_FETCH,
        )

    @property
    def records(self) -> tuple[Record, ...]:
        if isinstance(self.body, RecordsBody):
            return self.body.records
        return ()

    @property
    def text(self) -> str | None:
        if isinstance(self.body, TextBody):
            return self.body.text
        return None

    @property
    def has_more_results(self) -> bool:
        return (
            isinstance(self.body, RecordsBody)
            and self.context is not None
            and self.context.has_more_results
        )

    def with_page(
        self,
        records: tuple[Record, ...],
        *,
        page: int,
        has_more_results: bool,
    ) -> Message:
        """Append a fetched page and advance the paging context."""
        if not isinstance(self.body, RecordsBody) or self.context is None:
            raise TypeError("Only records messages can receive a page")
        return replace(
            self,
            body=self.body.append(records),
            context=replace(self.context, current_page=page, has_more_results=has_more_results),
            state=MessageState.STREAMING_SUMMARIES if records else self.state,
        )

    def with_record(self, record: Record) -> Message:
        if not isinstance(self.body, RecordsBody):
            raise TypeError("Only records messages hold records")
        return replace(self, body=self.body.replace_record(record))

    def reopen(self, cycle_id: str) -> Message:
        """Start a fresh load-more cycle on a settled records message."""
        if self.context is None:
            raise TypeError("Only records messages can be reopened")
        return replace(
            self,
            context=replace(self.context, cycle_id=cycle_id),
            is_streaming=True,
            state=MessageState.AWAITING_PAGE_FETCH,
        )

    def release(self, cycle_id: str) -> Message:
        """Settle the message only while `cycle_id` still owns it."""
        if self.context is None or self.context.cycle_id != cycle_id:
            return self
        return self.settle()

    def settle(self) -> Message:
        if not self.needs_settling:
            return self
        body = self.body.clear_loading() if isinstance(self.body, RecordsBody) else self.body
        return replace(self, body=body, is_streaming=False, state=MessageState.SETTLED)

    @property
    def needs_settling(self) -> bool:
        if self.is_streaming or self.state is not MessageState.SETTLED:
            return True
        return isinstance(self.body, RecordsBody) and self.body.has_loading


MessageUpdater = Callable[[Message], Message]
