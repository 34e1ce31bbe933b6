"""Tests for the account-model adapters — Bittensor, Polkadot, MultiversX,
Hedera, Radix and Variational.

Uses respx to mock httpx calls (no real network I/O).
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest
import respx

from awakenfetch.adapters.base import run_concurrently
from awakenfetch.adapters.bittensor import TAOSTATS_API_BASE, BittensorAdapter
from awakenfetch.adapters.hedera import HEDERA_API_BASE, HederaAdapter, payer_of
from awakenfetch.adapters.multiversx import (
    MULTIVERSX_API_BASE,
    MultiversXAdapter,
    classify_call,
)
from awakenfetch.adapters.polkadot import (
    SUBSCAN_API_BASE,
    PolkadotAdapter,
    classify_staking_call,
)
from awakenfetch.adapters.radix import (
    RADIX_GATEWAY_BASE,
    XRD_RESOURCE_ADDRESS,
    RadixAdapter,
    resource_ticker,
)
from awakenfetch.adapters.variational import (
    VARIATIONAL_API_BASE,
    VariationalAdapter,
    asset_from_instrument,
    classify_trade,
    sign_request,
)
from awakenfetch.exceptions import APIError, InvalidAddressError, MissingCredentialError
from awakenfetch.http import RequestThrottle, RetryPolicy
from awakenfetch.models import FetchOptions
from awakenfetch.stream import stream_transactions

NO_RETRY = RetryPolicy(max_retries=0, base_delay=0.0)

TAO_ADDR = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
TAO_OTHER = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
DOT_ADDR = "15oF4uVJwmo4TdGW7VfQxNLavjCXviqxT9S1MgbjMNHr6Sp5"
DOT_OTHER = "14E5nqKAp3oAJcmzgZhUD2RcptBeUBScxKHgJKU4HPNcKVf3"
EGLD_ADDR = "erd1qyu5wthldzr8wx5c9ucg8kjagg0jfs53s8nr3zpz3hypefsdd8ssycr6th"
EGLD_OTHER = "erd1spyavw0956vq68xj8y4tenjpq2wd5a9p2c6j8gsz7ztyrnpxrruqzu66jx"
XRD_ADDR = "account_rdx1" + "q" * 54
VAR_ADDR = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"


# ── Bittensor ─────────────────────────────────────────────────────────────────


def tao_transfer(tx_id: str, sender: str, recipient: str, rao: int, ts: str) -> dict:
    return {
        "id": tx_id,
        "from": {"ss58": sender},
        "to": {"ss58": recipient},
        "amount": str(rao),
        "fee": "125000",
        "timestamp": ts,
        "transaction_hash": f"0x{tx_id}",
    }


def test_bittensor_validate_address() -> None:
    adapter = BittensorAdapter(api_key="k")
    assert adapter.validate_address(TAO_ADDR)
    assert not adapter.validate_address(DOT_ADDR)
    assert not adapter.validate_address(42)


def test_bittensor_enabled_only_with_key() -> None:
    assert BittensorAdapter(api_key="k").enabled
    assert not BittensorAdapter().enabled


@pytest.mark.asyncio
async def test_bittensor_missing_key_fails_before_network() -> None:
    adapter = BittensorAdapter()
    with pytest.raises(MissingCredentialError, match="TAOSTATS_API_KEY"):
        await adapter.fetch_transactions(TAO_ADDR)
    await adapter.close()


@pytest.mark.asyncio
@respx.mock
async def test_bittensor_transfers_and_stake() -> None:
    pages = {
        "1": {
            "data": [tao_transfer("t1", TAO_ADDR, TAO_OTHER, 1_500_000_000, "2025-01-05T10:00:00Z")],
            "pagination": {"next_page": 2, "total_items": 2},
        },
        "2": {
            "data": [tao_transfer("t2", TAO_OTHER, TAO_ADDR, 250_000_000, "2025-01-07T10:00:00Z")],
            "pagination": {"next_page": None, "total_items": 2},
        },
    }

    def transfers(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "tao_key"
        assert request.url.params["network"] == "finney"
        return httpx.Response(200, json=pages[request.url.params["page"]])

    def extrinsics(request: httpx.Request) -> httpx.Response:
        if request.url.params["full_name"] != "SubtensorModule.add_stake":
            return httpx.Response(200, json={"data": [], "pagination": {"next_page": None}})
        stake = {
            "success": True,
            "full_name": "SubtensorModule.add_stake",
            "call_args": {"netuid": 1, "amountStaked": "2000000000"},
            "timestamp": "2025-01-06T00:00:00Z",
            "hash": "0xs1",
            "fee": "100000",
        }
        return httpx.Response(200, json={"data": [stake], "pagination": {"next_page": None}})

    transfer_route = respx.get(f"{TAOSTATS_API_BASE}/transfer/v1").mock(side_effect=transfers)
    extrinsic_route = respx.get(f"{TAOSTATS_API_BASE}/extrinsic/v1").mock(side_effect=extrinsics)

    adapter = BittensorAdapter(api_key="tao_key", retry=NO_RETRY)
    txns = await adapter.fetch_transactions(TAO_ADDR)
    await adapter.close()

    assert transfer_route.call_count == 2
    assert extrinsic_route.call_count == 5
    assert [tx.type for tx in txns] == ["send", "stake", "receive"]

    send, stake, receive = txns
    assert send.sent_quantity == Decimal("1.5")
    assert send.fee_amount == Decimal("0.000125")
    assert stake.sent_quantity == Decimal("2")
    assert stake.notes == "Stake on subnet 1"
    assert stake.tag == "staked"
    assert receive.received_quantity == Decimal("0.25")
    assert receive.fee_amount is None


# ── Polkadot ──────────────────────────────────────────────────────────────────


def subscan(payload: dict, code: int = 0) -> httpx.Response:
    return httpx.Response(200, json={"code": code, "message": "Success", "data": payload})


def test_classify_staking_call() -> None:
    assert classify_staking_call("Staking", "bond_extra") == ("stake", "Staking: bond_extra")
    assert classify_staking_call("nominationpools", "claim_payout") == (
        "claim",
        "Nomination Pool: claim_payout",
    )
    assert classify_staking_call("staking", "set_payee") == ("other", "Staking: set_payee")


@pytest.mark.asyncio
@respx.mock
async def test_polkadot_merges_sources_and_deduplicates() -> None:
    transfer = {
        "from": DOT_ADDR,
        "to": DOT_OTHER,
        "amount": "12.5",
        "fee": "156000000",
        "block_timestamp": 1_700_000_000,
        "hash": "0xaa",
        "success": True,
    }
    bond = {
        "call_module": "staking",
        "call_module_function": "bond",
        "block_timestamp": 1_700_000_000,
        "extrinsic_hash": "0xaa",
        "fee": "156000000",
        "success": True,
    }
    reward = {
        "amount": "20000000000",
        "block_timestamp": 1_700_100_000,
        "extrinsic_index": "18000000-2",
        "era": 1200,
    }

    def reward_slash(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["page"] == 0 and body["row"] == 100
        return subscan({"list": [reward] if body["category"] == "Reward" else [], "count": 1})

    def extrinsics(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return subscan({"extrinsics": [bond] if body["module"] == "staking" else []})

    def transfers(request: httpx.Request) -> httpx.Response:
        assert request.headers["x-api-key"] == "sub_key"
        return subscan({"transfers": [transfer], "count": 1})

    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/transfers").mock(side_effect=transfers)
    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/account/reward_slash").mock(side_effect=reward_slash)
    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/extrinsics").mock(side_effect=extrinsics)

    adapter = PolkadotAdapter(api_key="sub_key", retry=NO_RETRY)
    txns = await adapter.fetch_transactions(DOT_ADDR)
    await adapter.close()

    assert [tx.type for tx in txns] == ["send", "claim"]
    send, claim = txns
    assert send.sent_quantity == Decimal("12.5")
    assert send.fee_amount == Decimal("0.0156")
    assert claim.received_quantity == Decimal("2")
    assert claim.notes == "Staking reward (era 1200)"


@pytest.mark.asyncio
@respx.mock
async def test_polkadot_stream_batches_match_merged_result() -> None:
    transfer = {
        "from": DOT_ADDR,
        "to": DOT_OTHER,
        "amount": "3",
        "block_timestamp": 1_700_000_000,
        "hash": "0xaa",
        "success": True,
    }
    bond_same_tx = {
        "call_module": "staking",
        "call_module_function": "bond",
        "block_timestamp": 1_700_000_000,
        "extrinsic_hash": "0xaa",
        "fee": "156000000",
        "success": True,
    }
    nominate = {
        "call_module": "staking",
        "call_module_function": "nominate",
        "block_timestamp": 1_700_050_000,
        "extrinsic_hash": "0xbb",
        "fee": "156000000",
        "success": True,
    }

    def extrinsics(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return subscan({"extrinsics": [bond_same_tx, nominate] if body["module"] == "staking" else []})

    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/transfers").mock(
        return_value=subscan({"transfers": [transfer]})
    )
    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/account/reward_slash").mock(
        return_value=subscan({"list": []})
    )
    respx.post(f"{SUBSCAN_API_BASE}/api/v2/scan/extrinsics").mock(side_effect=extrinsics)

    adapter = PolkadotAdapter(retry=NO_RETRY)
    events = [event async for event in stream_transactions(adapter, DOT_ADDR)]
    await adapter.close()

    streamed = [tx for event in events if event["type"] == "batch" for tx in event["transactions"]]
    assert events[-1] == {"type": "done", "total": 2, "partial": False}
    assert len(streamed) == 2
    by_hash = {tx["tx_hash"]: tx for tx in streamed}
    assert by_hash["0xaa"]["type"] == "send"
    assert by_hash["0xaa"]["sent_quantity"] == "3"
    assert by_hash["0xbb"]["notes"] == "Staking: nominate"


@pytest.mark.asyncio
async def test_run_concurrently_cancels_siblings_on_failure() -> None:
    cancelled = asyncio.Event()

    async def slow_source() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    async def failing_source() -> None:
        raise APIError("Subscan API: Record Not Found (code 10004)")

    with pytest.raises(APIError, match="Record Not Found"):
        await run_concurrently(slow_source(), failing_source())
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_run_concurrently_keeps_result_order() -> None:
    async def value(v: int, delay: float) -> int:
        await asyncio.sleep(delay)
        return v

    assert await run_concurrently(value(1, 0.01), value(2, 0)) == [1, 2]


@pytest.mark.asyncio
@respx.mock
async def test_polkadot_nonzero_code_is_api_error() -> None:
    respx.route(method="POST", url__startswith=SUBSCAN_API_BASE).mock(
        return_value=httpx.Response(200, json={"code": 10004, "message": "Record Not Found"})
    )
    adapter = PolkadotAdapter(retry=NO_RETRY)
    with pytest.raises(APIError, match="Record Not Found"):
        await adapter.fetch_transactions(DOT_ADDR)
    await adapter.close()


@pytest.mark.asyncio
async def test_polkadot_rejects_bittensor_address() -> None:
    adapter = PolkadotAdapter()
    with pytest.raises(InvalidAddressError):
        await adapter.fetch_transactions(TAO_ADDR)
    await adapter.close()


# ── MultiversX ────────────────────────────────────────────────────────────────


def egld_tx(tx_hash: str, sender: str, receiver: str, value: str, ts: int, **extra) -> dict:
    return {
        "txHash": tx_hash,
        "sender": sender,
        "receiver": receiver,
        "value": value,
        "fee": "50000000000000",
        "status": "success",
        "timestamp": ts,
        **extra,
    }


def test_multiversx_classify_call() -> None:
    swap = egld_tx(
        "h", EGLD_ADDR, EGLD_OTHER, "0", 1,
        function="swapTokensFixedInput",
        action={"category": "esdtNft", "name": "swap", "description": "Swap 1 EGLD for 30 USDC"},
    )
    assert classify_call(swap, EGLD_ADDR) == ("trade", "Swap 1 EGLD for 30 USDC")

    token = egld_tx("h", EGLD_OTHER, EGLD_ADDR, "0", 1, function="ESDTTransfer")
    assert classify_call(token, EGLD_ADDR)[0] == "receive"

    self_send = egld_tx("h", EGLD_ADDR, EGLD_ADDR, "1", 1)
    assert classify_call(self_send, EGLD_ADDR) == ("send", "Self-transfer")


@pytest.mark.asyncio
@respx.mock
async def test_multiversx_offset_paging_and_delegate() -> None:
    staking = "erd1qqqqqqqqqqqqqqqpqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqlllsasdfg"
    page_one = [
        egld_tx("h1", EGLD_ADDR, staking, "1000000000000000000", 1_700_000_000, function="delegate"),
        egld_tx("h2", EGLD_OTHER, EGLD_ADDR, "2500000000000000000", 1_700_000_100),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["status"] == "success"
        return httpx.Response(200, json=page_one if request.url.params["from"] == "0" else [])

    route = respx.get(f"{MULTIVERSX_API_BASE}/accounts/{EGLD_ADDR}/transactions").mock(
        side_effect=handler
    )

    adapter = MultiversXAdapter(retry=NO_RETRY, throttle=RequestThrottle(calls=100, period=1.0))
    txns = await adapter.fetch_transactions(EGLD_ADDR, FetchOptions(limit=2))
    await adapter.close()

    assert route.call_count == 2
    stake, receive = txns
    assert stake.type == "stake"
    assert stake.sent_quantity == Decimal("1")
    assert stake.fee_amount == Decimal("0.00005")
    assert stake.tag == "staked"
    assert receive.type == "receive"
    assert receive.received_quantity == Decimal("2.5")
    assert receive.fee_amount is None


def test_multiversx_address_is_case_insensitive() -> None:
    adapter = MultiversXAdapter()
    assert adapter.validate_address(EGLD_ADDR.upper())
    assert not adapter.validate_address("erd1short")


# ── Hedera ────────────────────────────────────────────────────────────────────


HBAR_ACCOUNT = "0.0.1001"


def test_payer_of() -> None:
    assert payer_of("0.0.1001-1700000000-000000000") == "0.0.1001"


@pytest.mark.asyncio
@respx.mock
async def test_hedera_follows_links_next() -> None:
    send = {
        "transaction_id": "0.0.1001-1700000000-000000000",
        "consensus_timestamp": "1700000000.123456789",
        "transaction_hash": "hash1",
        "result": "SUCCESS",
        "name": "CRYPTOTRANSFER",
        "charged_tx_fee": 100000,
        "transfers": [
            {"account": HBAR_ACCOUNT, "amount": -500100000},
            {"account": "0.0.2002", "amount": 500000000},
            {"account": "0.0.98", "amount": 100000},
        ],
    }
    reward = {
        "transaction_id": "0.0.2002-1700000500-000000000",
        "consensus_timestamp": "1700000500.000000000",
        "transaction_hash": "hash2",
        "result": "SUCCESS",
        "name": "CRYPTOTRANSFER",
        "charged_tx_fee": 100000,
        "staking_reward_transfers": [{"account": HBAR_ACCOUNT, "amount": 25000000}],
        "transfers": [{"account": HBAR_ACCOUNT, "amount": 25000000}],
    }
    next_link = f"/api/v1/transactions?account.id={HBAR_ACCOUNT}&timestamp=gt:1700000000.123456789"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("timestamp", "").startswith("gt:"):
            return httpx.Response(200, json={"transactions": [reward], "links": {"next": None}})
        assert request.url.params["account.id"] == HBAR_ACCOUNT
        return httpx.Response(200, json={"transactions": [send], "links": {"next": next_link}})

    route = respx.get(f"{HEDERA_API_BASE}/transactions").mock(side_effect=handler)

    adapter = HederaAdapter(retry=NO_RETRY)
    txns = await adapter.fetch_transactions(HBAR_ACCOUNT)
    await adapter.close()

    assert route.call_count == 2
    sent, claim = txns
    assert sent.type == "send"
    assert sent.sent_quantity == Decimal("5")
    assert sent.fee_amount == Decimal("0.001")
    assert claim.type == "claim"
    assert claim.received_quantity == Decimal("0.25")
    assert claim.fee_amount is None


def test_hedera_validate_address() -> None:
    adapter = HederaAdapter()
    assert adapter.validate_address("0.0.12345")
    assert not adapter.validate_address("0.0")
    assert not adapter.validate_address("0.0.abc")


# ── Radix ─────────────────────────────────────────────────────────────────────


LSU = "resource_rdx1t4upr78guuapv5ept7d7ptekk9mqhy605zgms33mcszen8l9fac8vf"
OCI = "resource_rdx1t52pvtk5wfhltchwh3rkzls2x0r98fw9cjhpyrf3vsykhkuwrf7jg8"


def radix_item(intent_hash: str, changes: list[tuple[str, str]], classes: list[str], fee: str) -> dict:
    return {
        "transaction_status": "CommittedSuccess",
        "confirmed_at": "2025-01-10T00:00:00.000Z",
        "intent_hash": intent_hash,
        "manifest_classes": classes,
        "balance_changes": {
            "fungible_balance_changes": [
                {"entity_address": XRD_ADDR, "resource_address": resource, "balance_change": delta}
                for resource, delta in changes
            ],
            "fungible_fee_balance_changes": [
                {
                    "entity_address": XRD_ADDR,
                    "resource_address": XRD_RESOURCE_ADDRESS,
                    "type": "FeePayment",
                    "balance_change": f"-{fee}",
                }
            ],
        },
    }


def test_resource_ticker() -> None:
    assert resource_ticker(XRD_RESOURCE_ADDRESS) == "XRD"
    assert resource_ticker(LSU) == "T4UPR78G"


@pytest.mark.asyncio
@respx.mock
async def test_radix_cursor_paging_and_multi_leg_trade() -> None:
    trade = radix_item(
        "txid_1",
        [(XRD_RESOURCE_ADDRESS, "-100"), (LSU, "25.5"), (OCI, "3")],
        ["General"],
        "0.35",
    )
    stake = radix_item(
        "txid_2", [(XRD_RESOURCE_ADDRESS, "-50"), (LSU, "49")], ["ValidatorStake"], "0.2"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["affected_global_entities_filter"] == [XRD_ADDR]
        assert body["limit_per_page"] == 100
        if body.get("cursor") == "c2":
            return httpx.Response(200, json={"items": [stake], "next_cursor": None})
        return httpx.Response(200, json={"items": [trade], "next_cursor": "c2"})

    route = respx.post(f"{RADIX_GATEWAY_BASE}/stream/transactions").mock(side_effect=handler)

    adapter = RadixAdapter(retry=NO_RETRY)
    txns = await adapter.fetch_transactions(XRD_ADDR)
    await adapter.close()

    assert route.call_count == 2
    swap, staked = txns
    assert swap.type == "trade"
    assert (swap.sent_quantity, swap.sent_currency) == (Decimal("100"), "XRD")
    assert (swap.received_quantity, swap.received_currency) == (Decimal("25.5"), "T4UPR78G")
    assert [(a.quantity, a.currency) for a in swap.additional_received] == [(Decimal("3"), "T52PVTK5")]
    assert swap.fee_amount == Decimal("0.35")
    assert staked.type == "stake"
    assert staked.notes == "Validator stake"


# ── Variational ───────────────────────────────────────────────────────────────


OPEN_TRADE = {
    "id": "1",
    "status": "confirmed",
    "instrument_name": "BTC-PERP",
    "side": "buy",
    "quantity": "0.5",
    "realized_pnl": "0",
    "fee": "1.25",
    "settlement_currency": "usdc",
    "created_at": "2025-02-01T10:00:00Z",
    "transaction_hash": "0xopen",
}
CLOSE_TRADE = {
    **OPEN_TRADE,
    "id": "2",
    "side": "sell",
    "quantity": "-0.5",
    "realized_pnl": "120.5",
    "fee": "1.3",
    "created_at": "2025-02-02T10:00:00Z",
    "transaction_hash": "0xclose",
}
FUNDING = {
    "id": "f1",
    "instrument_name": "ETH_USDC",
    "position_size": "-2",
    "payment_amount": "-0.75",
    "funding_rate": "0.0001",
    "created_at": "2025-02-01T18:00:00Z",
    "transaction_hash": "0xfund",
}


@pytest.mark.parametrize(
    "name, asset",
    [("BTC-PERP", "BTC"), ("ETH_USDC", "ETH"), ("SOL-USD", "SOL"), ("DOGE-USDT-PERP", "DOGE"), ("", "UNKNOWN")],
)
def test_asset_from_instrument(name: str, asset: str) -> None:
    assert asset_from_instrument(name) == asset


def test_classify_trade_tags() -> None:
    opened = classify_trade(OPEN_TRADE)
    assert opened.tag == "open_position"
    assert opened.payment_token == ""
    assert opened.notes == "Long BTC"

    closed = classify_trade(CLOSE_TRADE)
    assert closed.tag == "close_position"
    assert closed.pnl == Decimal("120.5")
    assert closed.amount == Decimal("0.5")
    assert closed.payment_token == "USDC"

    assert classify_trade({**OPEN_TRADE, "trade_type": "settlement"}).tag == "funding_payment"
    assert classify_trade({**OPEN_TRADE, "status": "pending"}) is None


@pytest.mark.asyncio
async def test_variational_requires_key_and_secret() -> None:
    adapter = VariationalAdapter(api_key="k")
    assert not adapter.enabled
    with pytest.raises(MissingCredentialError, match="VARIATIONAL_API_SECRET"):
        await adapter.fetch_perp_transactions(VAR_ADDR)
    await adapter.close()


def assert_signed(request: httpx.Request, secret: str) -> None:
    timestamp = request.headers["X-Request-Timestamp-Ms"]
    assert timestamp.isdigit()
    payload = f"{timestamp}GET{request.url.path}?{request.url.query.decode()}"
    expected = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
    assert request.headers["X-Variational-Signature"] == expected


def test_sign_request_covers_method_path_and_query() -> None:
    base = sign_request("s", "1700000000000", "GET", "/v1/trades", "offset=0")
    assert len(base) == 64
    assert sign_request("s", "1700000000000", "get", "/v1/trades", "offset=0") == base
    assert sign_request("s", "1700000000000", "GET", "/v1/trades", "offset=1") != base
    assert sign_request("s", "1700000000001", "GET", "/v1/trades", "offset=0") != base
    assert sign_request("other", "1700000000000", "GET", "/v1/trades", "offset=0") != base
    assert sign_request("s", "1", "GET", "/v1/trades") == hmac.new(
        b"s", b"1GET/v1/trades", hashlib.sha256
    ).hexdigest()


@pytest.mark.asyncio
@respx.mock
async def test_variational_perps_merge_trades_and_funding() -> None:
    def trades(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Variational-Key"] == "var_key"
        assert_signed(request, "var_secret")
        assert request.url.params["wallet_address"] == VAR_ADDR.lower()
        if request.url.params["offset"] == "0":
            return httpx.Response(
                200,
                json={"data": [OPEN_TRADE], "pagination": {"next_page": {"offset": 1}, "total": 2}},
            )
        return httpx.Response(200, json={"data": [CLOSE_TRADE], "pagination": {"total": 2}})

    trade_route = respx.get(f"{VARIATIONAL_API_BASE}/v1/trades").mock(side_effect=trades)
    respx.get(f"{VARIATIONAL_API_BASE}/v1/funding-payments").mock(
        return_value=httpx.Response(200, json={"data": [FUNDING], "pagination": {}})
    )

    adapter = VariationalAdapter(api_key="var_key", api_secret="var_secret", retry=NO_RETRY)
    perps = await adapter.fetch_perp_transactions(VAR_ADDR)
    await adapter.close()

    assert trade_route.call_count == 2
    assert [p.tag for p in perps] == ["open_position", "funding_payment", "close_position"]
    funding = perps[1]
    assert funding.asset == "ETH"
    assert funding.amount == Decimal("2")
    assert funding.pnl == Decimal("-0.75")
    assert funding.notes == "Funding payment (rate: 0.0001)"

    csv_text = adapter.to_awaken_perp_csv(perps)
    assert csv_text.splitlines()[0] == "Date,Asset,Amount,Fee,P&L,Payment Token,Notes,Transaction Hash,Tag"


@pytest.mark.asyncio
@respx.mock
async def test_variational_standard_layout() -> None:
    def trades(request: httpx.Request) -> httpx.Response:
        assert_signed(request, "var_secret")
        return httpx.Response(200, json={"data": [CLOSE_TRADE, OPEN_TRADE], "pagination": {}})

    respx.get(f"{VARIATIONAL_API_BASE}/v1/trades").mock(side_effect=trades)
    adapter = VariationalAdapter(api_key="var_key", api_secret="var_secret", retry=NO_RETRY)
    txns = await adapter.fetch_transactions(VAR_ADDR)
    await adapter.close()

    opened, closed = txns
    assert opened.type == "trade"
    assert (opened.sent_quantity, opened.sent_currency) == (Decimal("0.5"), "BTC")
    assert (opened.fee_amount, opened.fee_currency) == (Decimal("1.25"), "USDC")
    assert opened.tag == "open position"
    assert (closed.received_quantity, closed.received_currency) == (Decimal("0.5"), "BTC")
