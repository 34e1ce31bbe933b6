"""Tests for the EVM-style explorers: Ronin (Skynet) and Gluenet (Blockscout).

Uses respx to mock httpx calls (no real network I/O).
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
import respx

from awakenfetch.adapters.gluenet import GLUENET_API_BASE, GluenetAdapter, classify_gluenet_transaction
from awakenfetch.adapters.ronin import (
    RONIN_API_BASE,
    RoninAdapter,
    classify_native_transaction,
    classify_token_transfer,
    normalize_ronin_address,
)
from awakenfetch.exceptions import APIError, InvalidAddressError
from awakenfetch.http import RetryPolicy
from awakenfetch.models import FetchOptions

NO_RETRY = RetryPolicy(max_retries=0, base_delay=0.0)

WALLET = "0xf6fd5fca4bd769ba495b29b98dba5f2ecf4ceed3"
OTHER = "0x1111111111111111111111111111111111111111"
ZERO = "0x" + "0" * 40
FEB_1 = 1_738_404_000  # 2025-02-01 10:00:00 UTC
ONE_RON = 10**18
GWEI = 10**9


def native(**overrides) -> dict:
    raw = {
        "transactionHash": "0xn1",
        "blockTime": FEB_1,
        "from": WALLET,
        "to": OTHER,
        "value": str(2 * ONE_RON),
        "input": "0x",
        "gasUsed": 21000,
        "gasPrice": str(20 * GWEI),
        "status": 1,
    }
    raw.update(overrides)
    return raw


def transfer(**overrides) -> dict:
    raw = {
        "transactionHash": "0xt1",
        "logIndex": 3,
        "blockTime": FEB_1 + 60,
        "from": OTHER,
        "to": WALLET,
        "value": "2500000",
        "decimals": 6,
        "tokenSymbol": "USDC",
    }
    raw.update(overrides)
    return raw


def skynet(items: list, cursor: str | None = None) -> httpx.Response:
    return httpx.Response(200, json={"result": {"items": items, "paging": {"nextCursor": cursor}}})


# ── Ronin helpers ─────────────────────────────────────────────────────────────


def test_normalize_ronin_prefix() -> None:
    assert normalize_ronin_address("ronin:F6FD5FCA4BD769BA495B29B98DBA5F2ECF4CEED3") == WALLET
    assert normalize_ronin_address(" 0xF6fd5fca4bd769ba495b29b98dba5f2ecf4ceed3 ") == WALLET


@pytest.mark.parametrize(
    "address, valid",
    [
        (WALLET, True),
        ("ronin:" + WALLET[2:], True),
        (WALLET[:-1], False),
        ("ronin:xyz", False),
        (None, False),
    ],
)
def test_ronin_validate_address(address, valid: bool) -> None:
    assert RoninAdapter().validate_address(address) is valid


def test_ronin_send_carries_gas_fee() -> None:
    tx = classify_native_transaction(native(), WALLET)
    assert tx.type == "send"
    assert (tx.sent_quantity, tx.sent_currency) == (Decimal("2"), "RON")
    assert (tx.fee_amount, tx.fee_currency) == (Decimal("0.00042"), "RON")
    assert tx.date == datetime(2025, 2, 1, 10, tzinfo=timezone.utc)


def test_ronin_receive_has_no_fee() -> None:
    tx = classify_native_transaction(native(**{"from": OTHER, "to": WALLET}), WALLET)
    assert tx.type == "receive"
    assert tx.received_quantity == Decimal("2")
    assert tx.fee_amount is None


def test_ronin_prefers_effective_gas_price() -> None:
    tx = classify_native_transaction(native(effectiveGasPrice=hex(10 * GWEI)), WALLET)
    assert tx.fee_amount == Decimal("0.00021")


def test_ronin_approval_and_contract_call() -> None:
    approval = classify_native_transaction(native(value="0", input="0x095ea7b3" + "00" * 64), WALLET)
    assert approval.type == "approval"
    assert approval.fee_amount == Decimal("0.00042")

    call = classify_native_transaction(native(value="0", input="0xa9059cbb"), WALLET)
    assert call.type == "other"
    assert call.notes == "Contract interaction: 0x11111111…"


def test_ronin_failed_transaction_skipped() -> None:
    assert classify_native_transaction(native(status=0), WALLET) is None


def test_ronin_token_transfers() -> None:
    received = classify_token_transfer(transfer(), WALLET)
    assert received.type == "receive"
    assert (received.received_quantity, received.received_currency) == (Decimal("2.5"), "USDC")

    minted = classify_token_transfer(transfer(**{"from": ZERO}), WALLET)
    assert minted.notes == "Mint USDC"

    burned = classify_token_transfer(transfer(**{"from": WALLET, "to": ZERO}), WALLET)
    assert burned.type == "send"
    assert burned.notes == "Burn USDC"

    assert classify_token_transfer(transfer(value="0"), WALLET) is None


@pytest.mark.asyncio
@respx.mock
async def test_ronin_fetch_merges_native_and_token_sources() -> None:
    def txs(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-API-KEY"] == "sky_key"
        if "cursor" not in request.url.params:
            return skynet([native()], cursor="c2")
        assert request.url.params["cursor"] == "c2"
        return skynet([native(transactionHash="0xn2", **{"from": OTHER, "to": WALLET}, blockTime=FEB_1 + 120)])

    tx_route = respx.get(f"{RONIN_API_BASE}/accounts/{WALLET}/txs").mock(side_effect=txs)
    respx.get(f"{RONIN_API_BASE}/accounts/{WALLET}/tokens/transfers").mock(
        return_value=skynet([transfer(), transfer()])
    )

    adapter = RoninAdapter(api_key="sky_key", retry=NO_RETRY)
    txns = await adapter.fetch_transactions("ronin:" + WALLET[2:].upper())
    await adapter.close()

    assert tx_route.call_count == 2
    assert [(t.type, t.tx_hash) for t in txns] == [
        ("send", "0xn1"),
        ("receive", "0xt1"),
        ("receive", "0xn2"),
    ]
    assert adapter.get_explorer_url("0xn1") == "https://app.roninchain.com/tx/0xn1"


@pytest.mark.asyncio
async def test_ronin_invalid_address_raises() -> None:
    adapter = RoninAdapter()
    with pytest.raises(InvalidAddressError):
        await adapter.fetch_transactions("0x1234")
    await adapter.close()


# ── Gluenet ───────────────────────────────────────────────────────────────────


def blockscout_tx(**overrides) -> dict:
    raw = {
        "hash": "0xg1",
        "timeStamp": str(FEB_1),
        "from": OTHER,
        "to": WALLET,
        "value": str(ONE_RON),
        "gasUsed": "21000",
        "gasPrice": str(GWEI),
        "isError": "0",
    }
    raw.update(overrides)
    return raw


def blockscout(result, status: str = "1", message: str = "OK") -> httpx.Response:
    return httpx.Response(200, json={"status": status, "message": message, "result": result})


def test_gluenet_zero_value_call_is_other_with_fee() -> None:
    tx = classify_gluenet_transaction(blockscout_tx(value="0", **{"from": WALLET, "to": OTHER}), WALLET)
    assert tx.type == "other"
    assert tx.notes == "Contract: 0x11111111…"
    assert (tx.fee_amount, tx.fee_currency) == (Decimal("0.000021"), "GLUE")


def test_gluenet_skips_failed_and_incoming_zero_value() -> None:
    assert classify_gluenet_transaction(blockscout_tx(isError="1"), WALLET) is None
    assert classify_gluenet_transaction(blockscout_tx(value="0"), WALLET) is None


@pytest.mark.asyncio
@respx.mock
async def test_gluenet_pages_by_number_with_date_range() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        assert params["action"] == "txlist"
        assert params["address"] == WALLET
        assert params["offset"] == "2"
        assert params["start_timestamp"] == str(FEB_1)
        if params["page"] == "1":
            return blockscout([blockscout_tx(), blockscout_tx(hash="0xg2", **{"from": WALLET, "to": OTHER})])
        assert params["page"] == "2"
        return blockscout([blockscout_tx(hash="0xg3", timeStamp=str(FEB_1 + 60))])

    route = respx.get(GLUENET_API_BASE).mock(side_effect=handler)
    options = FetchOptions(limit=2, from_date=datetime(2025, 2, 1, 10, tzinfo=timezone.utc))
    adapter = GluenetAdapter(retry=NO_RETRY)
    txns = await adapter.fetch_transactions(WALLET.upper().replace("0X", "0x"), options)
    await adapter.close()

    assert route.call_count == 2
    assert sorted(t.tx_hash for t in txns) == ["0xg1", "0xg2", "0xg3"]
    sent = next(t for t in txns if t.tx_hash == "0xg2")
    assert sent.type == "send"
    assert sent.fee_amount == Decimal("0.000021")


@pytest.mark.asyncio
@respx.mock
async def test_gluenet_empty_history() -> None:
    respx.get(GLUENET_API_BASE).mock(return_value=blockscout([], status="0", message="No transactions found"))
    adapter = GluenetAdapter(retry=NO_RETRY)
    assert await adapter.fetch_transactions(WALLET) == []
    await adapter.close()


@pytest.mark.asyncio
@respx.mock
async def test_gluenet_error_status_raises() -> None:
    respx.get(GLUENET_API_BASE).mock(
        return_value=blockscout("Invalid address format", status="0", message="NOTOK")
    )
    adapter = GluenetAdapter(retry=NO_RETRY)
    with pytest.raises(APIError, match="NOTOK"):
        await adapter.fetch_transactions(WALLET)
    await adapter.close()
