"""Error taxonomy for the chat engine."""
from __future__ import annotations


class ChatError(Exception):
    """Base class for errors surfaced to the chat user."""


class InterpretationError(ChatError):
    """The completion service failed or returned a malformed structured query."""


class CatalogError(ChatError):
    """The works catalog answered with a non-success status or was unreachable."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SchemaError(CatalogError):
    """The catalog response did not match the expected page schema."""


class StreamError(ChatError):
    """The summary token stream failed before it finished."""


class LoadMoreInProgressError(ChatError):
    """A load-more was requested for a message that has not settled yet."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is still loading")
        self.message_id = message_id
