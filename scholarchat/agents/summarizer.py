from __future__ import annotations

from typing import Any, Sequence

from scholarchat.config import settings
from scholarchat.llm_client import CompletionStream, client as llm_client, get_model, stream_completion
from scholarchat.models.chat import Record
from scholarchat.services.prompt_store import render_prompt
from scholarchat.services.summary_stream import SUMMARY_DELIMITER


def build_batch_text(records: Sequence[Record], search_term: str | None = None) -> str:
    lines: list[str] = []
    if search_term:
        lines.append(f"Search topic: {search_term}")
    lines.extend(record.title for record in records)
    return "\n".join(lines)


class SummaryAgent:
    """Opens one streamed completion that summarizes a batch of records."""

    name: str = "summarizer"

    def __init__(self, model: str | None = None, max_tokens: int | None = None):
        override = settings.summary_model.strip()
        self.model = model or override or get_model()
        self.max_tokens = max_tokens or settings.summary_max_tokens
        self.client: Any = None

    @property
    def system_prompt(self) -> str:
        return render_prompt("summarizer.system_prompt", delimiter=SUMMARY_DELIMITER)

    def stream(self, records: Sequence[Record], *, search_term: str | None = None) -> CompletionStream:
        active_client = self.client or llm_client()
        return stream_completion(
            active_client,
            model=self.model,
            system=self.system_prompt,
            user=build_batch_text(records, search_term),
            max_tokens=self.max_tokens,
            caller=self.name,
        )
