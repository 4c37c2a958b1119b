"""scholarchat - conversational academic search

Simple CLI for running one query and paging through the results.
"""

import argparse
import asyncio

from scholarchat.agents.orchestrator import ChatOrchestrator
from scholarchat.models.events import EventType


async def _print_events(queue: asyncio.Queue) -> None:
    printed: set[str] = set()
    while True:
        event = await queue.get()
        if event.event == EventType.ERROR:
            print(f"\n[!] Error: {event.data.get('message', 'Unknown error')}")
            continue
        if event.event not in (EventType.MESSAGE_APPENDED, EventType.MESSAGE_UPDATED):
            continue

        message = event.data["message"]
        if message["sender"] != "bot":
            continue
        if message["kind"] == "text":
            print(f"\n{message['text']}")
            continue

        for record in message["records"]:
            if record["loading"] or record["record_id"] in printed:
                continue
            printed.add(record["record_id"])
            access = "open access" if record["is_open_access"] else "closed"
            print(f"\n[*] {record['title']}")
            print(f"    {record['date']} | {record['citations']} citations | {access}")
            if record["link"]:
                print(f"    {record['link']}")
            if record["summary"]:
                print(f"    {record['summary']}")


async def run_chat(query: str, pages: int = 1) -> None:
    """Run one query and load up to `pages` pages of results."""
    print(f"Query: {query}")
    print("-" * 50)

    orchestrator = ChatOrchestrator()
    queue = orchestrator.store.subscribe()
    printer = asyncio.create_task(_print_events(queue))

    try:
        message_id = await orchestrator.submit(query)
        loaded = 1
        while message_id and loaded < pages:
            if not await orchestrator.load_more(message_id):
                break
            loaded += 1
        # Let the printer drain what is already queued.
        await asyncio.sleep(0)
    except asyncio.CancelledError:
        orchestrator.abort()
        raise
    finally:
        printer.cancel()
        orchestrator.store.unsubscribe(queue)

    message = orchestrator.store.find_by_id(message_id) if message_id else None
    if message is not None:
        more = " (more available)" if message.has_more_results else ""
        print(f"\n{'=' * 50}")
        print(f"{len(message.records)} papers{more}")


def main():
    parser = argparse.ArgumentParser(description="scholarchat academic search")
    parser.add_argument("--query", "-q", required=True, help="What to search for")
    parser.add_argument("--pages", "-p", type=int, default=1, help="Pages of results to load")

    args = parser.parse_args()

    try:
        asyncio.run(run_chat(args.query, max(args.pages, 1)))
    except KeyboardInterrupt:
        print("\n[!] Aborted")


if __name__ == "__main__":
    main()
