"""
Injective adapter — Cosmos LCD REST API (sentry.lcd.injective.network).

Same message model as Osmosis, with three differences:
- INJ and most non-bridged tokens use 18 decimals; Peggy (Ethereum-bridged)
  and IBC tokens use 6.
- Newer Cosmos SDK nodes take the tx filter as `query=` and page with an
  opaque `pagination.key` continuation token.
- DEX activity (Helix, DojoSwap, ...) arrives as CosmWasm MsgExecuteContract.
  A contract call whose action name mentions "swap", and which both spent
  funds and credited the address, is a trade.

Addresses are bech32 with the "inj" prefix; the checksum is verified locally.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import HTTPResources, ensure_valid_address, sort_transactions
from awakenfetch.classify.cosmos import (
    ClassifyContext,
    CosmosMessage,
    CosmosTx,
    DenomTable,
    MessageClassifier,
    parse_coin_string,
)
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, cursor_pages

INJECTIVE_LCD_BASE = "https://sentry.lcd.injective.network"
INJECTIVE_EXPLORER = "https://explorer.injective.network/transaction"
PAGE_SIZE = 50

INJ_ADDRESS_RE = re.compile(r"^inj1[a-z0-9]{38}$")

MSG_EXECUTE_CONTRACT = "/cosmwasm.wasm.v1.MsgExecuteContract"

INJECTIVE_DENOMS = DenomTable(
    native_denom="inj",
    native_symbol="INJ",
    native_decimals=18,
    default_decimals=18,
    aliases={
        "uinj": "INJ",
        "peggy0xdac17f958d2ee523a2206206994597c13d831ec7": "USDT",
        "peggy0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": "USDC",
        "peggy0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": "WETH",
    },
    decimal_rules=[
        (re.compile(r"^uinj$"), 18),
        (re.compile(r"^peggy0x|usdt|usdc"), 6),
        (re.compile(r"^ibc/"), 6),
        (re.compile(r"^factory/"), 18),
    ],
)


# ──────────────────────────────────────────────────────────────
# Bech32
# ──────────────────────────────────────────────────────────────

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _bech32_polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i, generator in enumerate(_BECH32_GENERATORS):
            if (top >> i) & 1:
                chk ^= generator
    return chk


def verify_bech32_checksum(address: str) -> bool:
    """True when the bech32 checksum of a (lowercase) address is valid."""
    address = address.lower()
    sep = address.rfind("1")
    if sep < 1 or sep + 7 > len(address):
        return False
    hrp, data_part = address[:sep], address[sep + 1:]
    if any(ch not in _BECH32_CHARSET for ch in data_part):
        return False
    data = [_BECH32_CHARSET.index(ch) for ch in data_part]
    expanded = [ord(ch) >> 5 for ch in hrp] + [0] + [ord(ch) & 31 for ch in hrp]
    return _bech32_polymod(expanded + data) == 1


# ──────────────────────────────────────────────────────────────
# Contract execution
# ──────────────────────────────────────────────────────────────


def map_execute_contract(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    contract = str(msg.value.get("contract") or "")
    action = "Contract execution"
    inner = msg.value.get("msg")
    if isinstance(inner, dict) and inner:
        action = next(iter(inner)).replace("_", " ")

    funds = msg.value.get("funds") or []
    sent = ctx.coin(funds[0]) if funds else None

    received = None
    for event in tx.events:
        if event.type == "coin_received" and ctx.is_self(event.get("receiver")):
            coin = parse_coin_string(event.get("amount") or "")
            if coin is not None and coin.amount > 0:
                received = coin

    if "swap" in action.lower() and sent is not None and received is not None:
        return Transaction(
            date=tx.date,
            type="trade",
            **ctx.amount_fields("sent", sent),
            **ctx.amount_fields("received", received),
            **ctx.fee_fields(tx),
            tx_hash=tx.tx_hash,
            notes=f"Swap on {contract[:10]}…",
        )
    return Transaction(
        date=tx.date,
        type="send" if sent is not None else "other",
        **ctx.amount_fields("sent", sent),
        **ctx.amount_fields("received", received),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"{action} ({contract[:10]}…)",
    )


INJECTIVE_CLASSIFIER = MessageClassifier(
    INJECTIVE_DENOMS, {MSG_EXECUTE_CONTRACT: map_execute_contract}
)


def classify_injective_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    return INJECTIVE_CLASSIFIER.classify(CosmosTx.from_lcd(raw), address)


# ──────────────────────────────────────────────────────────────
# Adapter
# ──────────────────────────────────────────────────────────────


class InjectiveAdapter:
    """Injective (INJ) via the public LCD API. No key required."""

    chain_id = "injective"
    chain_name = "Injective"
    ticker = "INJ"
    perps_capable = True

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = INJECTIVE_LCD_BASE,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        if not isinstance(address, str):
            return False
        normalized = address.strip().lower()
        return bool(INJ_ADDRESS_RE.fullmatch(normalized)) and verify_bech32_checksum(normalized)

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, "inj1<38 lowercase alphanumeric chars> (e.g. inj1qy09gsfx3gxqjahumq97…)"
        ).lower()
        options = options or FetchOptions()

        collector = PageCollector(
            lambda raw: classify_injective_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["txhash"],
        )
        for query in (f"message.sender='{address}'", f"transfer.recipient='{address}'"):
            await collector.consume(
                cursor_pages(self._page_fetcher(query), options, page_size=PAGE_SIZE)
            )
        return sort_transactions(collector.transactions)

    def _page_fetcher(self, query: str):
        async def fetch_page(cursor: str | None, limit: int) -> Page:
            params: dict[str, Any] = {
                "query": query,
                "pagination.limit": limit,
                "order_by": "ORDER_BY_DESC",
            }
            if cursor:
                params["pagination.key"] = cursor
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/cosmos/tx/v1beta1/txs",
                params=params,
                error_label="Injective LCD API",
                retry=self._http.retry,
            )
            records = data.get("tx_responses") or []
            next_key = (data.get("pagination") or {}).get("next_key")
            # A short page is the last one even if the node still hands out a key
            if len(records) < limit:
                next_key = None
            return Page(records=records, next=next_key)

        return fetch_page

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{INJECTIVE_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
