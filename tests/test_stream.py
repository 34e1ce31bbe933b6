"""Tests for awakenfetch/stream.py — JSONL streaming channel."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from awakenfetch.exceptions import RateLimitError
from awakenfetch.models import FetchOptions, PerpTransaction, Transaction
from awakenfetch.stream import TERMINAL_EVENTS, emit_event, stream_transactions


def _tx(day: int, tx_hash: str) -> Transaction:
    return Transaction(
        date=datetime(2025, 1, day, tzinfo=timezone.utc),
        type="receive",
        received_quantity=Decimal("1"),
        received_currency="KAS",
        tx_hash=tx_hash,
    )


class FakeAdapter:
    """Adapter stand-in that replays canned pages through FetchOptions."""

    chain_id = "fake"

    def __init__(self, pages: list[list[Transaction]], report: bool = True, error: Exception | None = None):
        self.pages = pages
        self.report = report
        self.error = error

    async def fetch_transactions(self, address: str, options: FetchOptions | None = None) -> list[Any]:
        options = options or FetchOptions()
        collected: list[Transaction] = []
        for page in self.pages:
            if options.cancelled:
                break
            await asyncio.sleep(0)
            collected.extend(page)
            if self.report:
                options.report_progress(page)
            if self.error is not None:
                raise self.error
        return collected

    async def fetch_perp_transactions(self, address: str, options: FetchOptions | None = None) -> list[Any]:
        return [
            PerpTransaction(
                date=datetime(2025, 1, 1, tzinfo=timezone.utc),
                asset="BTC",
                amount=Decimal("1"),
                pnl=Decimal("20"),
                payment_token="USDC",
                tag="close_position",
            )
        ]


async def _collect(adapter: FakeAdapter, options: FetchOptions | None = None, **kwargs) -> list[dict]:
    return [event async for event in stream_transactions(adapter, "addr", options, **kwargs)]


# ── emit_event ────────────────────────────────────────────────────────────────


def test_emit_event_writes_jsonl(capsys) -> None:
    emit_event({"type": "done", "total": 0, "partial": False})
    captured = capsys.readouterr()
    assert captured.out.endswith("\n")
    assert json.loads(captured.out) == {"type": "done", "total": 0, "partial": False}


def test_emit_event_handles_decimal(capsys) -> None:
    emit_event({"amount": Decimal("0.000000000000000001")})
    assert json.loads(capsys.readouterr().out)["amount"] == "0.000000000000000001"


# ── stream_transactions ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_batches_then_done() -> None:
    adapter = FakeAdapter([[_tx(1, "a"), _tx(2, "b")], [_tx(3, "c")]])
    events = await _collect(adapter)

    assert [e["type"] for e in events] == ["batch", "batch", "done"]
    assert [t["tx_hash"] for t in events[0]["transactions"]] == ["a", "b"]
    assert events[-1] == {"type": "done", "total": 3, "partial": False}


@pytest.mark.asyncio
async def test_single_batch_when_adapter_never_reports() -> None:
    adapter = FakeAdapter([[_tx(1, "a")], [_tx(2, "b")]], report=False)
    events = await _collect(adapter)

    assert [e["type"] for e in events] == ["batch", "done"]
    assert len(events[0]["transactions"]) == 2


@pytest.mark.asyncio
async def test_empty_history_is_done_only() -> None:
    events = await _collect(FakeAdapter([]))
    assert events == [{"type": "done", "total": 0, "partial": False}]


@pytest.mark.asyncio
async def test_provider_error_is_terminal_error_event() -> None:
    adapter = FakeAdapter([[_tx(1, "a")]], error=RateLimitError("Kaspa API: rate limit exceeded (HTTP 429)"))
    events = await _collect(adapter)

    assert [e["type"] for e in events] == ["batch", "error"]
    assert events[-1]["error_code"] == "rate_limited"
    assert "429" in events[-1]["error"]
    assert sum(e["type"] in TERMINAL_EVENTS for e in events) == 1


@pytest.mark.asyncio
async def test_unexpected_exception_propagates() -> None:
    adapter = FakeAdapter([[_tx(1, "a")]], error=RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        await _collect(adapter)


@pytest.mark.asyncio
async def test_cancelled_fetch_is_partial() -> None:
    cancel = asyncio.Event()
    seen: list[list[Any]] = []

    def on_progress(batch: list[Any]) -> None:
        seen.append(batch)
        cancel.set()

    adapter = FakeAdapter([[_tx(1, "a")], [_tx(2, "b")]])
    events = await _collect(adapter, FetchOptions(on_progress=on_progress, cancel_event=cancel))

    assert len(seen) == 1
    assert events[-1] == {"type": "done", "total": 1, "partial": True}


@pytest.mark.asyncio
async def test_perps_stream() -> None:
    events = await _collect(FakeAdapter([]), perps=True)
    assert events[0]["transactions"][0]["tag"] == "close_position"
    assert events[-1]["total"] == 1
