"""Demultiplex one streamed model response into per-record summaries.

The summarizer is instructed to emit exactly one summary per record, in
record order, separated by `SUMMARY_DELIMITER`. A summary that itself
contains the delimiter is split; the protocol has no escaping.
"""
from __future__ import annotations

from dataclasses import replace
from typing import AsyncIterable, Callable, Sequence

from loguru import logger

from scholarchat.errors import StreamError
from scholarchat.models.chat import Record
from scholarchat.services.cancellation import CancellationToken

SUMMARY_DELIMITER = "---"

RecordUpdate = Callable[[int, Record], None]


class SummaryDemultiplexer:
    def __init__(self, delimiter: str = SUMMARY_DELIMITER):
        if not delimiter:
            raise ValueError("delimiter must be non-empty")
        self.delimiter = delimiter
        self._buffer = ""

    def feed(self, fragment: str) -> list[str]:
        """Buffer a fragment and return every summary it completes."""
        self._buffer += fragment
        completed: list[str] = []
        while True:
            head, sep, rest = self._buffer.partition(self.delimiter)
            if not sep:
                break
            completed.append(head.strip())
            self._buffer = rest
        return completed

    def tail(self) -> str:
        return self._buffer.strip()


async def process_summary_stream(
    fragments: AsyncIterable[str],
    records: Sequence[Record],
    on_update: RecordUpdate,
    token: CancellationToken,
    *,
    delimiter: str = SUMMARY_DELIMITER,
) -> int:
    """Consume `fragments`, calling `on_update(index, record)` per finished summary.

    Returns the number of updates issued. Stops silently as soon as the token
    is cancelled; iterator failures raise `StreamError` unless cancelled.
    """
    demux = SummaryDemultiplexer(delimiter)
    produced = 0

    def emit(summary: str) -> bool:
        nonlocal produced
        if token.cancelled:
            return False
        if produced >= len(records):
            logger.debug("Discarding summary beyond the record batch")
            return True
        on_update(produced, replace(records[produced], summary=summary, loading=False))
        produced += 1
        return True

    try:
        async for fragment in fragments:
            if token.cancelled:
                return produced
            for summary in demux.feed(fragment):
                if not emit(summary):
                    return produced
    except Exception as exc:
        if token.cancelled:
            logger.info("Summary stream ended by cancellation")
            return produced
        raise StreamError("Summary stream failed") from exc

    if token.cancelled:
        return produced

    tail = demux.tail()
    if tail and produced < len(records):
        emit(tail)
    return produced
