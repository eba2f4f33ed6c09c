#!/usr/bin/env python3
"""
Example 2: Streaming Generation and Cancellation

This example demonstrates:
- Consuming a chat turn as typed events (Initiate, Token, Done/Aborted/Errored)
- Stopping a generation from another thread with a CancellationToken
- Limiting output with GenerationParams (max_length, max_time)

Requirements:
    pip install lantern-rag
    export OPENAI_API_KEY=sk-...        # or OPENAI_BASE_URL for a local server
"""

import os
import sys
import threading
from pathlib import Path

from lantern import CancellationToken, GenerationParams, SourceText, create_lantern
from lantern.models import Aborted, Done, Errored, Initiate, Token


DB_PATH = "example_stream.db"


def print_events(events):
    for event in events:
        if isinstance(event, Initiate):
            print(f"   [session {event.session_id}, {len(event.messages)} messages]")
        elif isinstance(event, Token):
            print(event.text, end="", flush=True)
        elif isinstance(event, Done):
            print(f"\n   ✅ done: {event.result.tokens} tokens, {event.result.stop_reason}")
        elif isinstance(event, Aborted):
            print(f"\n   ⏹️  aborted: {event.result.stop_reason} after {event.result.time:.0f} ms")
        elif isinstance(event, Errored):
            print(f"\n   ❌ error: {event.error}")


def main():
    if not (os.environ.get("OPENAI_API_KEY") or os.environ.get("OPENAI_BASE_URL")):
        print("⚠️  Set OPENAI_API_KEY or OPENAI_BASE_URL")
        sys.exit(1)

    print("=" * 60)
    print("Example 2: Streaming Generation")
    print("=" * 60)

    lantern = create_lantern(DB_PATH, base_url=os.environ.get("OPENAI_BASE_URL"))
    lantern.ingest([
        SourceText(
            "The lighthouse keeper lit the lamp at dusk and wound the clockwork "
            "every four hours so the lens kept turning through the night.",
            {"name": "keeper.txt", "type": ".txt"},
        ),
    ])

    # ============================================================
    # Event stream
    # ============================================================
    print("\n💬 Event stream:")
    prepared, events = lantern.stream_chat("What did the lighthouse keeper do?")
    print(f"   Sources: {[s.name for s in prepared.sources]}")
    print_events(events)

    # ============================================================
    # Cancel from another thread
    # ============================================================
    print("\n💬 Cancelled after one second:")
    token = CancellationToken()
    threading.Timer(1.0, token.cancel).start()
    answer = lantern.chat(
        "Write a long story about the lighthouse keeper.",
        cancellation=token,
        params=GenerationParams(max_new_tokens=1024),
        on_token=lambda text, progress: print(text, end="", flush=True),
    )
    print(f"\n   aborted={answer.result.aborted}, reason={answer.result.stop_reason}")

    # ============================================================
    # Output limits
    # ============================================================
    print("\n💬 Capped at 80 characters:")
    _, events = lantern.stream_chat(
        "Describe the lamp in detail.",
        params=GenerationParams(max_length=80, max_time=30.0),
    )
    print_events(events)

    lantern.close()
    Path(DB_PATH).unlink(missing_ok=True)

    print("\n✅ Example complete!")


if __name__ == "__main__":
    main()
