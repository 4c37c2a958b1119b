from __future__ import annotations

from scholarchat.models.chat import Message
from scholarchat.models.events import EventType, SSEEvent
from scholarchat.models.schemas import MessageResponse


def _message_payload(message: Message) -> dict:
    return MessageResponse.from_message(message).model_dump(mode="json")


def transcript_snapshot(
    messages: tuple[Message, ...] | list[Message],
    *,
    is_streaming: bool,
) -> SSEEvent:
    """Emit the full transcript, sent first to every new subscriber."""
    return SSEEvent(
        event=EventType.TRANSCRIPT_SNAPSHOT,
        data={
            "messages": [_message_payload(m) for m in messages],
            "is_streaming": is_streaming,
        },
    )


def message_appended(message: Message) -> SSEEvent:
    return SSEEvent(event=EventType.MESSAGE_APPENDED, data={"message": _message_payload(message)})


def message_updated(message: Message) -> SSEEvent:
    return SSEEvent(event=EventType.MESSAGE_UPDATED, data={"message": _message_payload(message)})


def transcript_reset() -> SSEEvent:
    return SSEEvent(event=EventType.TRANSCRIPT_RESET, data={})


def error(message: str, message_id: str | None = None) -> SSEEvent:
    data: dict = {"message": message}
    if message_id:
        data["message_id"] = message_id
    return SSEEvent(event=EventType.ERROR, data=data)
