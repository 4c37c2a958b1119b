from __future__ import annotations

import asyncio

from scholarchat.models.chat import Message, MessageUpdater
from scholarchat.models.events import SSEEvent
from scholarchat.services import streaming


class TranscriptStore:
    """Ordered, id-addressable chat transcript.

    The store is the only owner of message values. Callers never mutate a
    message; they pass a pure updater to `update_by_id`, which reads the
    latest value for that id at call time and swaps in the result.
    Subscribers receive an `SSEEvent` for every change.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._positions: dict[str, int] = {}
        self._subscribers: set[asyncio.Queue[SSEEvent]] = set()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def is_streaming(self) -> bool:
        return any(m.is_streaming for m in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> Message:
        if message.id in self._positions:
            raise ValueError(f"Message id already present: {message.id}")
        self._positions[message.id] = len(self._messages)
        self._messages.append(message)
        self.publish(streaming.message_appended(message))
        return message

    def find_by_id(self, message_id: str) -> Message | None:
        position = self._positions.get(message_id)
        if position is None:
            return None
        return self._messages[position]

    def update_by_id(self, message_id: str, updater: MessageUpdater) -> Message | None:
        """Replace the message with `updater(current)`; no-op when the id is unknown."""
        position = self._positions.get(message_id)
        if position is None:
            return None
        current = self._messages[position]
        updated = updater(current)
        if updated is current:
            return current
        if updated.id != current.id:
            raise ValueError("An update cannot change the message id")
        if type(updated.body) is not type(current.body):
            raise TypeError("A message body cannot switch kind")
        self._messages[position] = updated
        self.publish(streaming.message_updated(updated))
        return updated

    def settle_all(self) -> int:
        """Settle every message still streaming or holding loading records."""
        settled = 0
        for message_id in [m.id for m in self._messages if m.needs_settling]:
            self.update_by_id(message_id, Message.settle)
            settled += 1
        return settled

    def reset(self) -> None:
        self._messages.clear()
        self._positions.clear()
        self.publish(streaming.transcript_reset())

    # --- change notification ---

    def subscribe(self) -> asyncio.Queue[SSEEvent]:
        queue: asyncio.Queue[SSEEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SSEEvent]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: SSEEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)
