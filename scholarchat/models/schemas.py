from __future__ import annotations

from pydantic import BaseModel

from scholarchat.models.chat import Message, RecordsBody

NO_RESULTS_NOTICE = (
    "I couldn't find any papers matching your search. Try broadening your query "
    "or adjusting the filters."
)


# --- Requests ---


class SubmitRequest(BaseModel):
    text: str


# --- Responses ---


class RecordResponse(BaseModel):
    record_id: str
    title: str
    link: str | None
    date: str
    citations: int
    is_open_access: bool
    summary: str
    loading: bool


class QueryContextResponse(BaseModel):
    request_url: str
    current_page: int
    has_more_results: bool
    search_term: str | None


class MessageResponse(BaseModel):
    id: str
    sender: str
    kind: str
    text: str | None
    records: list[RecordResponse]
    context: QueryContextResponse | None
    is_streaming: bool
    state: str
    notice: str | None = None

    @classmethod
    def from_message(cls, message: Message) -> MessageResponse:
        is_records = isinstance(message.body, RecordsBody)
        notice = None
        if is_records and not message.records and not message.is_streaming:
            notice = NO_RESULTS_NOTICE
        context = message.context
        return cls(
            id=message.id,
            sender=message.sender.value,
            kind="records" if is_records else "text",
            text=message.text,
            records=[
                RecordResponse(
                    record_id=r.record_id,
                    title=r.title,
                    link=r.link,
                    date=r.date,
                    citations=r.citations,
                    is_open_access=r.is_open_access,
                    summary=r.summary,
                    loading=r.loading,
                )
                for r in message.records
            ],
            context=(
                QueryContextResponse(
                    request_url=context.request_url,
                    current_page=context.current_page,
                    has_more_results=context.has_more_results,
                    search_term=context.search_term,
                )
                if context is not None
                else None
            ),
            is_streaming=message.is_streaming,
            state=message.state.value,
            notice=notice,
        )


class TranscriptResponse(BaseModel):
    messages: list[MessageResponse]
    is_streaming: bool
    is_loading: bool
    error: str | None


class SubmitResponse(BaseModel):
    message_id: str | None


class LoadMoreResponse(BaseModel):
    loaded: bool


class AbortResponse(BaseModel):
    aborted: int
