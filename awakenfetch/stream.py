"""JSONL streaming channel for awakenfetch.

Runs one adapter fetch as a background task and turns its progress into an
ordered stream of events, for `awakenfetch stream` and other pipe consumers.

Event types:
  batch  — {"type": "batch", "transactions": [...]}, one per progress report
  done   — {"type": "done", "total": n, "partial": bool}; terminal
  error  — {"type": "error", "error": message, "error_code": code}; terminal

Exactly one terminal event ends every stream. When the adapter never
reported progress, everything it returned goes out as a single batch
before `done`. `partial` is true when the fetch was cancelled through
FetchOptions.cancel_event.

stdout is flushed after each write (critical for pipe consumers).
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import replace
from typing import TYPE_CHECKING, Any, AsyncIterator

from awakenfetch.exceptions import AwakenFetchError
from awakenfetch.models import FetchOptions
from awakenfetch.output import DecimalEncoder

if TYPE_CHECKING:
    from awakenfetch.adapters.base import ChainAdapter

TERMINAL_EVENTS = ("done", "error")


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print() — buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event, cls=DecimalEncoder) + "\n")
    sys.stdout.flush()


def batch_event(items: list[Any]) -> dict[str, Any]:
    return {"type": "batch", "transactions": [item.to_dict() for item in items]}


async def stream_transactions(
    adapter: ChainAdapter,
    address: str,
    options: FetchOptions | None = None,
    *,
    perps: bool = False,
) -> AsyncIterator[dict[str, Any]]:
    """
    Fetch address on adapter, yielding batch events then one terminal event.

    AwakenFetchError from the adapter becomes an `error` event. Any other
    exception propagates to the consumer.
    """
    options = options or FetchOptions()
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
    reported = False
    caller_on_progress = options.on_progress

    def on_progress(batch: list[Any]) -> None:
        nonlocal reported
        reported = True
        queue.put_nowait(batch_event(batch))
        if caller_on_progress is not None:
            caller_on_progress(batch)

    run_options = replace(options, on_progress=on_progress)

    async def run() -> None:
        terminal_sent = False
        try:
            if perps:
                result = await adapter.fetch_perp_transactions(address, run_options)
            else:
                result = await adapter.fetch_transactions(address, run_options)
            if result and not reported:
                queue.put_nowait(batch_event(result))
            queue.put_nowait(
                {"type": "done", "total": len(result), "partial": run_options.cancelled}
            )
            terminal_sent = True
        except AwakenFetchError as e:
            queue.put_nowait({"type": "error", "error": e.message, "error_code": e.error_code})
            terminal_sent = True
        finally:
            if not terminal_sent:
                # Wake the consumer so it can collect the task's exception
                queue.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while True:
            event = await queue.get()
            if event is None:
                await task
                return
            yield event
            if event["type"] in TERMINAL_EVENTS:
                break
        await task
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
