"""
Osmosis adapter — Cosmos LCD REST API (lcd.osmosis.zone).

The tx search endpoint only matches one event query at a time, so the
history is the union of two searches: transactions the address signed
(message.sender) and transfers it received (transfer.recipient). The two
overlap on self-transfers; records are deduplicated by tx hash.

On top of the common Cosmos messages, Osmosis adds GAMM pool joins/exits
(lp_add / lp_remove) and swaps (trade). Their settled amounts live in the
coin_received / token_swapped events; message fields (min/max bounds) are
the fallback.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import HTTPResources, ensure_valid_address, sort_transactions
from awakenfetch.classify.cosmos import (
    ClassifyContext,
    Coin,
    CosmosMessage,
    CosmosTx,
    DenomTable,
    MessageClassifier,
    parse_coin_string,
)
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, offset_pages

OSMOSIS_LCD_BASE = "https://lcd.osmosis.zone"
OSMOSIS_EXPLORER = "https://www.mintscan.io/osmosis/tx"
PAGE_SIZE = 100

OSMO_ADDRESS_RE = re.compile(r"^osmo1[a-z0-9]{38}$")

MSG_JOIN_POOL = "/osmosis.gamm.v1beta1.MsgJoinPool"
MSG_JOIN_SWAP_EXTERN = "/osmosis.gamm.v1beta1.MsgJoinSwapExternAmountIn"
MSG_EXIT_POOL = "/osmosis.gamm.v1beta1.MsgExitPool"
MSG_EXIT_SWAP_SHARE = "/osmosis.gamm.v1beta1.MsgExitSwapShareAmountIn"
MSG_SWAP_EXACT_IN = "/osmosis.gamm.v1beta1.MsgSwapExactAmountIn"
MSG_SWAP_EXACT_OUT = "/osmosis.gamm.v1beta1.MsgSwapExactAmountOut"
MSG_PM_SWAP_EXACT_IN = "/osmosis.poolmanager.v1beta1.MsgSwapExactAmountIn"
MSG_PM_SWAP_EXACT_OUT = "/osmosis.poolmanager.v1beta1.MsgSwapExactAmountOut"

OSMOSIS_DENOMS = DenomTable(
    native_denom="uosmo",
    native_symbol="OSMO",
    native_decimals=6,
    default_decimals=6,
    aliases={
        "osmo": "OSMO",
        "uion": "ION",
        "ibc/27394fb092d2eccd56123c74f36e4c1f926001ceada9ca97ea622b25f41e5eb2": "ATOM",
        "ibc/d189335c6e4a68b513c10ab227bf1c1d38c746766278ba3eeb4fb14124f1d858": "USDC",
        "ibc/4abbef4c8926dddb320ae5188cfd63267abbcefc0583e4ae05d6e5aa2401ddab": "USDT",
        "ibc/ea1d43981d5c9a1c4aaea9c23bb1d4fa126ba9bc7020a25e0ae4aa841ea25dc5": "ETH",
    },
    strip_micro_prefix=True,
)


# ──────────────────────────────────────────────────────────────
# Osmosis mappers
# ──────────────────────────────────────────────────────────────


def _first_coin(values: list[str], *, lp_shares: bool) -> Coin | None:
    """First parsed coin whose denom is (or is not) a GAMM share."""
    for value in values:
        coin = parse_coin_string(value)
        if coin is not None and coin.denom.startswith("gamm/pool/") == lp_shares:
            return coin
    return None


def _coin_of(denom: Any, amount: Any) -> Coin | None:
    if not denom or not amount:
        return None
    value = int(amount)
    return Coin(denom, value) if value > 0 else None


def map_lp_join(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    pool_id = str(msg.value.get("pool_id") or "")

    token_in_maxs = msg.value.get("token_in_maxs") or []
    sent = ctx.coin(token_in_maxs[0]) if token_in_maxs else ctx.coin(msg.value.get("token_in"))
    if sent is None:
        spent = tx.attribute_values("coin_spent", "amount")
        sent = parse_coin_string(spent[0]) if spent else None

    shares = _first_coin(tx.attribute_values("coin_received", "amount"), lp_shares=True)
    if shares is None:
        shares = _coin_of(f"gamm/pool/{pool_id}", msg.value.get("share_out_amount"))

    return Transaction(
        date=tx.date,
        type="lp_add",
        **ctx.amount_fields("sent", sent),
        **ctx.amount_fields("received", shares),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Add liquidity to pool {pool_id}",
    )


def map_lp_exit(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    pool_id = str(msg.value.get("pool_id") or "")
    shares = _coin_of(f"gamm/pool/{pool_id}", msg.value.get("share_in_amount"))

    received = _first_coin(tx.attribute_values("coin_received", "amount"), lp_shares=False)
    if received is None:
        token_out_mins = msg.value.get("token_out_mins") or []
        if token_out_mins:
            received = ctx.coin(token_out_mins[0])
        else:
            received = _coin_of(
                msg.value.get("token_out_denom"), msg.value.get("token_out_min_amount")
            )

    return Transaction(
        date=tx.date,
        type="lp_remove",
        **ctx.amount_fields("sent", shares),
        **ctx.amount_fields("received", received),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Remove liquidity from pool {pool_id}",
    )


def map_swap(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    routes = msg.value.get("routes") or []
    first_route = routes[0] if routes else {}
    last_route = routes[-1] if routes else {}

    sent = ctx.coin(msg.value.get("token_in"))
    if sent is None:
        sent = _coin_of(first_route.get("token_in_denom"), msg.value.get("token_in_max_amount"))
    received = ctx.coin(msg.value.get("token_out"))
    if received is None:
        received = _coin_of(last_route.get("token_out_denom"), msg.value.get("token_out_min_amount"))

    # Settled amounts beat the slippage bounds on the message
    swapped_in = tx.attribute_values("token_swapped", "tokens_in")
    swapped_out = tx.attribute_values("token_swapped", "tokens_out")
    if swapped_in:
        sent = parse_coin_string(swapped_in[0]) or sent
    if swapped_out:
        received = parse_coin_string(swapped_out[-1]) or received

    pool_id = first_route.get("pool_id", "unknown")
    return Transaction(
        date=tx.date,
        type="trade",
        **ctx.amount_fields("sent", sent),
        **ctx.amount_fields("received", received),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Swap via pool {pool_id}",
    )


OSMOSIS_CLASSIFIER = MessageClassifier(
    OSMOSIS_DENOMS,
    {
        MSG_JOIN_POOL: map_lp_join,
        MSG_JOIN_SWAP_EXTERN: map_lp_join,
        MSG_EXIT_POOL: map_lp_exit,
        MSG_EXIT_SWAP_SHARE: map_lp_exit,
        MSG_SWAP_EXACT_IN: map_swap,
        MSG_SWAP_EXACT_OUT: map_swap,
        MSG_PM_SWAP_EXACT_IN: map_swap,
        MSG_PM_SWAP_EXACT_OUT: map_swap,
    },
)


def classify_osmosis_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    return OSMOSIS_CLASSIFIER.classify(CosmosTx.from_lcd(raw), address)


# ──────────────────────────────────────────────────────────────
# Adapter
# ──────────────────────────────────────────────────────────────


class OsmosisAdapter:
    """Osmosis (OSMO) via the public LCD API. No key required."""

    chain_id = "osmosis"
    chain_name = "Osmosis"
    ticker = "OSMO"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = OSMOSIS_LCD_BASE,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(
            OSMO_ADDRESS_RE.fullmatch(address.strip().lower())
        )

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, "osmo1<38 lowercase alphanumeric chars> (e.g. osmo1clpqr4nrk4khgkxj…)"
        ).lower()
        options = options or FetchOptions()

        collector = PageCollector(
            lambda raw: classify_osmosis_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["txhash"],
        )
        for query in (f"message.sender='{address}'", f"transfer.recipient='{address}'"):
            await collector.consume(
                offset_pages(self._page_fetcher(query), options, page_size=PAGE_SIZE)
            )
        return sort_transactions(collector.transactions)

    def _page_fetcher(self, query: str):
        async def fetch_page(offset: int, limit: int) -> Page:
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/cosmos/tx/v1beta1/txs",
                params={
                    "events": query,
                    "pagination.limit": limit,
                    "pagination.offset": offset,
                    "order_by": "ORDER_BY_DESC",
                },
                error_label="Osmosis LCD",
                retry=self._http.retry,
            )
            total = (data.get("pagination") or {}).get("total")
            return Page(
                records=data.get("tx_responses") or [],
                total=int(total) if total else None,
            )

        return fetch_page

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{OSMOSIS_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
