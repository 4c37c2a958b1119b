"""Tests for the chat orchestrator: submit, load-more, abort and error paths."""
from __future__ import annotations

import asyncio

import openai
import pytest

from scholarchat.agents.orchestrator import (
    DEFAULT_INVALID_SEARCH_EXPLANATION,
    INTERPRETATION_ERROR_MESSAGE,
    STREAM_ERROR_MESSAGE,
    UNEXPECTED_ERROR_MESSAGE,
    ChatOrchestrator,
)
from scholarchat.errors import CatalogError, InterpretationError, LoadMoreInProgressError
from scholarchat.models.catalog import CatalogPage
from scholarchat.models.chat import MessageState, Sender
from scholarchat.models.events import EventType
from scholarchat.models.query import QueryFilters, StructuredQuery

BASE = "https://api.openalex.org/works"
REQUEST_URL = f'{BASE}?filter=default.search:"graph+neural+networks"'


def _query(request_url: str | None = REQUEST_URL, explanation: str | None = None) -> StructuredQuery:
    return StructuredQuery(
        request_url=request_url,
        filters=QueryFilters(
            year_range=None,
            cited_by_range=None,
            is_open_access=None,
            search_term="graph neural networks" if request_url else None,
        ),
        explanation=explanation,
    )


def _page(titles: list[str], *, count: int, page: int = 1, per_page: int = 25) -> CatalogPage:
    return CatalogPage.model_validate(
        {
            "meta": {"count": count, "page": page, "per_page": per_page},
            "results": [
                {
                    "title": title,
                    "doi": f"https://doi.org/10.1/{title}",
                    "publication_date": "2022-01-01",
                    "cited_by_count": 7,
                    "open_access": {"is_oa": True},
                }
                for title in titles
            ],
        }
    )


class FakeInterpreter:
    def __init__(self, query: StructuredQuery | None = None, error: Exception | None = None, gate=None):
        self.query = query
        self.error = error
        self.gate = gate
        self.calls: list[str] = []

    async def interpret(self, text: str) -> StructuredQuery:
        self.calls.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.query


class FakeFetcher:
    def __init__(self, *pages: CatalogPage, error: Exception | None = None):
        self.pages = list(pages)
        self.error = error
        self.calls: list[str] = []

    async def __call__(self, url: str) -> CatalogPage:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.pages.pop(0)


class FakeStream:
    """Yields scripted fragments; an asyncio.Event in the script blocks until set."""

    def __init__(self, script: list):
        self.script = script
        self.closed = False

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.closed = True

    async def _iter(self):
        for item in self.script:
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, Exception):
                raise item
            else:
                yield item

    @property
    def text_stream(self):
        return self._iter()


class FakeSummarizer:
    def __init__(self, *scripts: list, open_error: Exception | None = None):
        self.scripts = list(scripts)
        self.open_error = open_error
        self.calls: list[tuple[list[str], str | None]] = []
        self.streams: list[FakeStream] = []

    def stream(self, records, *, search_term=None) -> FakeStream:
        self.calls.append(([r.title for r in records], search_term))
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(self.scripts.pop(0))
        self.streams.append(stream)
        return stream


def _orchestrator(interpreter, fetcher=None, summarizer=None) -> ChatOrchestrator:
    return ChatOrchestrator(
        interpreter=interpreter,
        fetch_page=fetcher or FakeFetcher(),
        summarizer=summarizer or FakeSummarizer(),
    )


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestSubmit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_input_is_a_noop(self, text):
        interpreter = FakeInterpreter(_query())
        orchestrator = _orchestrator(interpreter)

        assert await orchestrator.submit(text) is None
        assert orchestrator.messages == ()
        assert interpreter.calls == []

    @pytest.mark.asyncio
    async def test_declined_query_appends_explanation_without_fetching(self):
        fetcher = FakeFetcher()
        summarizer = FakeSummarizer()
        orchestrator = _orchestrator(
            FakeInterpreter(_query(request_url=None, explanation="I only search for papers.")),
            fetcher,
            summarizer,
        )

        assert await orchestrator.submit("what's the capital of France?") is None

        senders = [m.sender for m in orchestrator.messages]
        assert senders == [Sender.USER, Sender.BOT]
        assert orchestrator.messages[1].text == "I only search for papers."
        assert fetcher.calls == []
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_declined_query_without_explanation_uses_default(self):
        orchestrator = _orchestrator(FakeInterpreter(_query(request_url=None)))

        await orchestrator.submit("hello")

        assert orchestrator.messages[-1].text == DEFAULT_INVALID_SEARCH_EXPLANATION

    @pytest.mark.asyncio
    async def test_full_flow_streams_summaries_into_records(self):
        fetcher = FakeFetcher(_page(["P1", "P2", "P3"], count=3))
        summarizer = FakeSummarizer(["Sum", "mary A\n---\n", "B---", "C"])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)
        queue = orchestrator.store.subscribe()

        message_id = await orchestrator.submit("graph neural networks")

        assert fetcher.calls == [REQUEST_URL]
        assert summarizer.calls == [(["P1", "P2", "P3"], "graph neural networks")]
        assert summarizer.streams[0].closed

        user, bot = orchestrator.messages
        assert user.sender is Sender.USER and user.text == "graph neural networks"
        assert bot.id == message_id
        assert [r.summary for r in bot.records] == ["Summary A", "B", "C"]
        assert all(not r.loading for r in bot.records)
        assert bot.is_streaming is False
        assert bot.state is MessageState.SETTLED
        assert bot.context.current_page == 1
        assert bot.has_more_results is False
        assert orchestrator.is_streaming is False
        assert orchestrator.error is None
        assert orchestrator.registry.live == 0

        events = [queue.get_nowait() for _ in range(queue.qsize())]
        first = events[0]
        assert first.event == EventType.MESSAGE_APPENDED
        assert first.data["message"]["sender"] == "user"

        bot_updates = [
            e.data["message"]
            for e in events
            if e.event == EventType.MESSAGE_UPDATED and e.data["message"]["id"] == message_id
        ]
        summary_counts = [sum(1 for r in m["records"] if r["summary"]) for m in bot_updates]
        assert summary_counts[-1] == 3
        for payload, filled in zip(bot_updates, summary_counts):
            if filled < 3:
                assert payload["is_streaming"] is True
        assert bot_updates[-1]["is_streaming"] is False

    @pytest.mark.asyncio
    async def test_interpretation_error_sets_error_without_bot_message(self):
        orchestrator = _orchestrator(FakeInterpreter(error=InterpretationError("bad schema")))

        assert await orchestrator.submit("papers") is None

        assert len(orchestrator.messages) == 1
        assert orchestrator.messages[0].state is MessageState.SETTLED
        assert orchestrator.error == INTERPRETATION_ERROR_MESSAGE

        orchestrator.clear_error()
        assert orchestrator.error is None

    @pytest.mark.asyncio
    async def test_catalog_error_settles_message_and_reports_text(self):
        fetcher = FakeFetcher(error=CatalogError("Invalid filter: publication_yr", status_code=403))
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher)

        await orchestrator.submit("papers")

        bot = orchestrator.messages[-1]
        assert bot.records == ()
        assert bot.is_streaming is False
        assert bot.state is MessageState.SETTLED
        assert orchestrator.error == "Invalid filter: publication_yr"

    @pytest.mark.asyncio
    async def test_stream_failure_clears_loading_and_reports_generic_error(self):
        fetcher = FakeFetcher(_page(["P1", "P2", "P3"], count=3))
        summarizer = FakeSummarizer(["A---", RuntimeError("connection reset")])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)

        await orchestrator.submit("papers")

        bot = orchestrator.messages[-1]
        assert [r.summary for r in bot.records] == ["A", "", ""]
        assert all(not r.loading for r in bot.records)
        assert bot.is_streaming is False
        assert orchestrator.error == STREAM_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_stream_open_failure_is_reported(self):
        fetcher = FakeFetcher(_page(["P1"], count=1))
        summarizer = FakeSummarizer(open_error=openai.OpenAIError("no api key"))
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)

        await orchestrator.submit("papers")

        bot = orchestrator.messages[-1]
        assert bot.records[0].loading is False
        assert orchestrator.error == STREAM_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_unexpected_fetch_failure_is_reported(self):
        fetcher = FakeFetcher(error=RuntimeError("boom"))
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher)
        queue = orchestrator.store.subscribe()

        message_id = await orchestrator.submit("papers")

        bot = orchestrator.store.find_by_id(message_id)
        assert bot.is_streaming is False
        assert bot.state is MessageState.SETTLED
        assert orchestrator.error == UNEXPECTED_ERROR_MESSAGE

        events = [queue.get_nowait() for _ in range(queue.qsize())]
        errors = [e for e in events if e.event == EventType.ERROR]
        assert [e.data for e in errors] == [
            {"message": UNEXPECTED_ERROR_MESSAGE, "message_id": message_id}
        ]

    @pytest.mark.asyncio
    async def test_unexpected_interpreter_failure_is_reported(self):
        fetcher = FakeFetcher()
        orchestrator = _orchestrator(FakeInterpreter(error=RuntimeError("boom")), fetcher)

        assert await orchestrator.submit("papers") is None

        assert [m.sender for m in orchestrator.messages] == [Sender.USER]
        assert orchestrator.messages[0].state is MessageState.SETTLED
        assert orchestrator.error == UNEXPECTED_ERROR_MESSAGE
        assert fetcher.calls == []
        assert orchestrator.registry.live == 0

    @pytest.mark.asyncio
    async def test_empty_page_settles_without_streaming(self):
        summarizer = FakeSummarizer()
        orchestrator = _orchestrator(
            FakeInterpreter(_query()), FakeFetcher(_page([], count=0)), summarizer
        )

        await orchestrator.submit("papers about nothing")

        bot = orchestrator.messages[-1]
        assert bot.records == ()
        assert bot.state is MessageState.SETTLED
        assert summarizer.calls == []

    @pytest.mark.asyncio
    async def test_is_loading_while_interpreting(self):
        gate = asyncio.Event()
        orchestrator = _orchestrator(FakeInterpreter(_query(request_url=None), gate=gate))

        task = asyncio.create_task(orchestrator.submit("papers"))
        await _until(lambda: orchestrator.is_loading)
        assert orchestrator.messages[0].state is MessageState.AWAITING_QUERY_INTERPRETATION

        gate.set()
        await task
        assert orchestrator.is_loading is False


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_mid_stream_clears_loading_and_stops_updates(self):
        gate = asyncio.Event()
        fetcher = FakeFetcher(_page(["P1", "P2", "P3"], count=3))
        summarizer = FakeSummarizer(["A---", gate, "B---C"])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)

        task = asyncio.create_task(orchestrator.submit("papers"))

        def first_summary_arrived() -> bool:
            messages = orchestrator.messages
            return len(messages) == 2 and messages[1].records and messages[1].records[0].summary == "A"

        await _until(first_summary_arrived)
        bot = orchestrator.messages[1]
        assert [r.loading for r in bot.records] == [False, True, True]
        assert orchestrator.is_streaming is True

        assert orchestrator.abort() == 1
        bot = orchestrator.messages[1]
        assert all(not r.loading for r in bot.records)
        assert bot.is_streaming is False
        assert orchestrator.is_streaming is False

        gate.set()
        await task

        bot = orchestrator.messages[1]
        assert [r.summary for r in bot.records] == ["A", "", ""]
        assert orchestrator.error is None
        assert orchestrator.registry.live == 0
        assert summarizer.streams[0].closed

    @pytest.mark.asyncio
    async def test_abort_during_interpretation_suppresses_bot_message(self):
        gate = asyncio.Event()
        fetcher = FakeFetcher(_page(["P1"], count=1))
        orchestrator = _orchestrator(FakeInterpreter(_query(), gate=gate), fetcher)

        task = asyncio.create_task(orchestrator.submit("papers"))
        await _until(lambda: orchestrator.is_loading)

        orchestrator.abort()
        gate.set()
        assert await task is None

        assert [m.sender for m in orchestrator.messages] == [Sender.USER]
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_reset_clears_transcript(self):
        orchestrator = _orchestrator(FakeInterpreter(_query(request_url=None, explanation="no")))
        await orchestrator.submit("hi")

        orchestrator.reset()

        assert orchestrator.messages == ()


class TestLoadMore:
    @pytest.mark.asyncio
    async def test_load_more_without_more_results_is_a_noop(self):
        fetcher = FakeFetcher(_page(["P1", "P2"], count=2))
        summarizer = FakeSummarizer(["A---B"])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)
        message_id = await orchestrator.submit("papers")
        before = orchestrator.messages

        assert await orchestrator.load_more(message_id) is False

        assert orchestrator.messages == before
        assert len(fetcher.calls) == 1
        assert len(summarizer.calls) == 1

    @pytest.mark.asyncio
    async def test_load_more_unknown_message_is_a_noop(self):
        orchestrator = _orchestrator(FakeInterpreter(_query()))
        assert await orchestrator.load_more("missing") is False

    @pytest.mark.asyncio
    async def test_load_more_appends_and_summarizes_only_new_records(self):
        fetcher = FakeFetcher(
            _page(["P1", "P2"], count=4, page=1, per_page=2),
            _page(["P3", "P4"], count=4, page=2, per_page=2),
        )
        summarizer = FakeSummarizer(["A---B"], ["C---D---"])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)

        message_id = await orchestrator.submit("papers")
        first_ids = [r.record_id for r in orchestrator.store.find_by_id(message_id).records]
        assert orchestrator.store.find_by_id(message_id).has_more_results is True

        assert await orchestrator.load_more(message_id) is True

        assert fetcher.calls == [REQUEST_URL, f"{REQUEST_URL}&page=2"]
        assert summarizer.calls[1] == (["P3", "P4"], "graph neural networks")

        message = orchestrator.store.find_by_id(message_id)
        assert [r.title for r in message.records] == ["P1", "P2", "P3", "P4"]
        assert [r.summary for r in message.records] == ["A", "B", "C", "D"]
        assert [r.record_id for r in message.records[:2]] == first_ids
        assert message.context.current_page == 2
        assert message.has_more_results is False
        assert message.state is MessageState.SETTLED
        assert len(orchestrator.messages) == 2

    @pytest.mark.asyncio
    async def test_load_more_rejected_while_message_is_streaming(self):
        gate = asyncio.Event()
        fetcher = FakeFetcher(
            _page(["P1", "P2"], count=10, page=1, per_page=2),
            _page(["P3", "P4"], count=10, page=2, per_page=2),
        )
        summarizer = FakeSummarizer(["A---", gate, "B"], ["C---D"])
        orchestrator = _orchestrator(FakeInterpreter(_query()), fetcher, summarizer)

        task = asyncio.create_task(orchestrator.submit("papers"))
        await _until(lambda: len(orchestrator.messages) == 2 and orchestrator.messages[1].records)
        message_id = orchestrator.messages[1].id

        with pytest.raises(LoadMoreInProgressError):
            await orchestrator.load_more(message_id)
        assert len(fetcher.calls) == 1

        gate.set()
        await task

        assert await orchestrator.load_more(message_id) is True
        assert len(orchestrator.store.find_by_id(message_id).records) == 4

    @pytest.mark.asyncio
    async def test_concurrent_load_more_calls_on_same_message(self):
        page_gate = asyncio.Event()
        fetcher = FakeFetcher(
            _page(["P1"], count=3, page=1, per_page=1),
            _page(["P2"], count=3, page=2, per_page=1),
        )

        async def gated_fetch(url: str) -> CatalogPage:
            if fetcher.calls:
                await page_gate.wait()
            return await fetcher(url)

        summarizer = FakeSummarizer(["A"], ["B"])
        orchestrator = ChatOrchestrator(
            interpreter=FakeInterpreter(_query()),
            fetch_page=gated_fetch,
            summarizer=summarizer,
        )
        message_id = await orchestrator.submit("papers")

        first = asyncio.create_task(orchestrator.load_more(message_id))
        await _until(lambda: orchestrator.store.find_by_id(message_id).is_streaming)

        with pytest.raises(LoadMoreInProgressError):
            await orchestrator.load_more(message_id)

        page_gate.set()
        assert await first is True
        assert [r.title for r in orchestrator.store.find_by_id(message_id).records] == ["P1", "P2"]

    @pytest.mark.asyncio
    async def test_aborted_cycle_does_not_settle_a_newer_load_more(self):
        stale_gate = asyncio.Event()
        fresh_gate = asyncio.Event()
        fetcher = FakeFetcher(
            _page(["P1"], count=10, page=1, per_page=1),
            _page(["P2 (aborted)"], count=10, page=2, per_page=1),
            _page(["P2"], count=10, page=2, per_page=1),
        )

        async def gated_fetch(url: str) -> CatalogPage:
            call = len(fetcher.calls)
            page = await fetcher(url)
            if call == 1:
                await stale_gate.wait()
            elif call == 2:
                await fresh_gate.wait()
            return page

        summarizer = FakeSummarizer(["A"], ["B"])
        orchestrator = ChatOrchestrator(
            interpreter=FakeInterpreter(_query()),
            fetch_page=gated_fetch,
            summarizer=summarizer,
        )
        message_id = await orchestrator.submit("papers")

        stale = asyncio.create_task(orchestrator.load_more(message_id))
        await _until(lambda: len(fetcher.calls) == 2)
        orchestrator.abort()
        assert orchestrator.store.find_by_id(message_id).state is MessageState.SETTLED

        fresh = asyncio.create_task(orchestrator.load_more(message_id))
        await _until(lambda: len(fetcher.calls) == 3)

        stale_gate.set()
        assert await stale is True

        message = orchestrator.store.find_by_id(message_id)
        assert message.is_streaming is True
        assert message.state is MessageState.AWAITING_PAGE_FETCH
        with pytest.raises(LoadMoreInProgressError):
            await orchestrator.load_more(message_id)

        fresh_gate.set()
        assert await fresh is True

        message = orchestrator.store.find_by_id(message_id)
        assert [r.title for r in message.records] == ["P1", "P2"]
        assert [r.summary for r in message.records] == ["A", "B"]
        assert message.state is MessageState.SETTLED
        assert len(fetcher.calls) == 3
        assert orchestrator.error is None
