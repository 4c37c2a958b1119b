from __future__ import annotations

from typing import Any, Awaitable, Callable

import openai
from loguru import logger

from scholarchat.agents.interpreter import QueryInterpreter
from scholarchat.agents.summarizer import SummaryAgent
from scholarchat.errors import (
    CatalogError,
    InterpretationError,
    LoadMoreInProgressError,
    StreamError,
)
from scholarchat.models.catalog import CatalogPage
from scholarchat.models.chat import Message, MessageState, QueryContext, Record
from scholarchat.services import logger as log_service
from scholarchat.services import streaming
from scholarchat.services.cancellation import CancellationRegistry, CancellationToken
from scholarchat.services.normalizer import normalize_records
from scholarchat.services.summary_stream import process_summary_stream
from scholarchat.services.transcript import TranscriptStore
from scholarchat.tools import catalog_search

DEFAULT_INVALID_SEARCH_EXPLANATION = (
    "Sorry, I can only help you find academic papers. Try describing the topic, "
    "publication years, citation counts or open-access status you are interested in."
)
INTERPRETATION_ERROR_MESSAGE = "API error. Please try again."
CATALOG_ERROR_MESSAGE = "Unable to load results. Please try again."
STREAM_ERROR_MESSAGE = "Summary generation failed. Please try again."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred."

PageFetcher = Callable[[str], Awaitable[CatalogPage]]


class ChatOrchestrator:
    """Drives one chat transcript.

    Flow per submission:
      1. Append the user message and interpret it into a structured query
      2. Either answer with the model's explanation, or open a records message
      3. Fetch a catalog page and append loading placeholders
      4. Stream per-record summaries into the placeholders
      5. Settle the message, whatever happened on the way

    Every fetch+stream unit holds its own cancellation token; `abort` signals
    all of them and settles the transcript.
    """

    def __init__(
        self,
        *,
        interpreter: Any = None,
        summarizer: Any = None,
        fetch_page: PageFetcher | None = None,
        store: TranscriptStore | None = None,
        registry: CancellationRegistry | None = None,
    ):
        self.interpreter = interpreter or QueryInterpreter()
        self.summarizer = summarizer or SummaryAgent()
        self._fetch_page = fetch_page or catalog_search.fetch_page
        self.store = store or TranscriptStore()
        self.registry = registry or CancellationRegistry()
        self.error: str | None = None

    # --- read-only state ---

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.store.messages

    @property
    def is_streaming(self) -> bool:
        return self.store.is_streaming

    @property
    def is_loading(self) -> bool:
        return any(
            m.state is MessageState.AWAITING_QUERY_INTERPRETATION for m in self.store.messages
        )

    def clear_error(self) -> None:
        self.error = None

    # --- operations ---

    async def submit(self, text: str) -> str | None:
        """Handle one user utterance; returns the records message id if one was opened."""
        query_text = text.strip()
        if not query_text:
            return None

        user_message = self.store.append(
            Message.from_user(text, state=MessageState.AWAITING_QUERY_INTERPRETATION)
        )
        token = self.registry.open()
        try:
            try:
                query = await self.interpreter.interpret(query_text)
            except InterpretationError as exc:
                if not token.cancelled:
                    self._report_error(INTERPRETATION_ERROR_MESSAGE, exc)
                return None
            except Exception as exc:
                if not token.cancelled:
                    self._report_error(UNEXPECTED_ERROR_MESSAGE, exc)
                return None
            finally:
                self.store.update_by_id(user_message.id, Message.settle)

            if token.cancelled:
                logger.info("Submission aborted after interpretation")
                return None

            if not query.is_valid:
                self.store.append(
                    Message.bot_text(query.explanation or DEFAULT_INVALID_SEARCH_EXPLANATION)
                )
                return None

            bot_message = self.store.append(
                Message.bot_records(
                    QueryContext(
                        request_url=query.request_url,
                        search_term=query.filters.search_term,
                        cycle_id=token.id,
                    )
                )
            )
            log_service.log_event(
                event_type="search_started",
                message="Catalog search started",
                message_id=bot_message.id,
                request_url=query.request_url,
            )
            await self._run_page_cycle(bot_message.id, query.request_url, token)
            return bot_message.id
        finally:
            self.registry.complete(token)

    async def load_more(self, message_id: str) -> bool:
        """Fetch and summarize the next page for a records message.

        Returns False without touching the network when there is nothing more
        to load. Raises `LoadMoreInProgressError` while the message is busy.
        """
        message = self.store.find_by_id(message_id)
        if message is None or not message.has_more_results:
            return False
        if message.state is not MessageState.SETTLED:
            raise LoadMoreInProgressError(message_id)

        context = message.context
        next_url = catalog_search.with_page(context.request_url, context.current_page + 1)
        # Claim the message before the first await so a second call is rejected.
        token = self.registry.open()
        self.store.update_by_id(message_id, lambda m: m.reopen(token.id))
        try:
            await self._run_page_cycle(message_id, next_url, token)
        finally:
            self.registry.complete(token)
        return True

    def abort(self) -> int:
        """Cancel every in-flight unit of work and settle the transcript."""
        cancelled = self.registry.abort_all()
        settled = self.store.settle_all()
        log_service.log_event(
            event_type="aborted",
            message="All in-flight work aborted",
            cancelled_units=cancelled,
            settled_messages=settled,
        )
        return cancelled

    def reset(self) -> None:
        self.abort()
        self.store.reset()
        self.error = None

    # --- internals ---

    async def _run_page_cycle(self, message_id: str, request_url: str, token: CancellationToken) -> None:
        try:
            page = await self._fetch_page(request_url)
            if token.cancelled:
                return

            records = normalize_records(page.results)
            self.store.update_by_id(
                message_id,
                lambda m: m.with_page(
                    records,
                    page=page.meta.page,
                    has_more_results=page.has_more_results,
                ),
            )
            if records:
                await self._stream_summaries(message_id, records, token)
        except CatalogError as exc:
            if not token.cancelled:
                self._report_error(str(exc) or CATALOG_ERROR_MESSAGE, exc, message_id=message_id)
        except StreamError as exc:
            if not token.cancelled:
                self._report_error(STREAM_ERROR_MESSAGE, exc, message_id=message_id)
        except Exception as exc:
            if not token.cancelled:
                self._report_error(UNEXPECTED_ERROR_MESSAGE, exc, message_id=message_id)
        finally:
            # A cycle cancelled by abort may no longer own the message.
            self.store.update_by_id(message_id, lambda m: m.release(token.id))

    async def _stream_summaries(
        self,
        message_id: str,
        records: tuple[Record, ...],
        token: CancellationToken,
    ) -> None:
        message = self.store.find_by_id(message_id)
        search_term = message.context.search_term if message and message.context else None

        def apply(index: int, record: Record) -> None:
            if token.cancelled:
                return
            self.store.update_by_id(message_id, lambda m: m.with_record(record))

        try:
            async with self.summarizer.stream(records, search_term=search_term) as stream:
                produced = await process_summary_stream(stream.text_stream, records, apply, token)
        except openai.OpenAIError as exc:
            if token.cancelled:
                return
            raise StreamError("Summary stream could not be opened") from exc

        if produced < len(records) and not token.cancelled:
            logger.warning(f"Summary stream ended after {produced} of {len(records)} records")

    def _report_error(self, user_message: str, exc: Exception, message_id: str | None = None) -> None:
        logger.opt(exception=exc).error(f"{type(exc).__name__}: {exc}")
        self.error = user_message
        self.store.publish(streaming.error(user_message, message_id))
