"""
Extended adapter — perpetuals DEX on StarkNet (api.starknet.extended.exchange).

Extended (formerly X10) is a hybrid order-book exchange; every contract is a
linear perp settled in USDC. The API is scoped to the account that owns the
API key, so the address given is only validated: a StarkNet 0x address or a
numeric Extended account id.

Three sources are fetched concurrently, each paged by an opaque numeric
cursor (pagination.cursor) until a page comes back short:
- /user/trades              fills (TRADE, LIQUIDATION, DELEVERAGE)
- /user/positions/history   positions with their realised P&L
- /user/funding/history     funding payments; fromTime is mandatory

Design decisions:
- Fills do not say whether they open or close. A fill closes when it is a
  liquidation or deleverage, or when it falls inside a closed position's
  lifetime on the same market, on the opposite side. The position's realised
  P&L goes to the first such fill; every other fill opens.
- Funding fees are signed from the exchange's side, so P&L is the negated
  fee.
- Trades need the position history before they can be tagged, so in the
  perps layout they are reported in one batch once all sources are done.
  Funding payments stream page by page.
- Without --from, funding history starts one year back.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    require_credential,
    run_concurrently,
    sort_transactions,
)
from awakenfetch.classify import from_unix_millis
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, PerpTransaction, Transaction
from awakenfetch.output import generate_perp_csv, generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, cursor_pages

EXTENDED_API_BASE = "https://api.starknet.extended.exchange/api/v1"
EXTENDED_EXPLORER = "https://starkscan.co/tx"
PAGE_SIZE = 100
SETTLEMENT = "USDC"
FUNDING_LOOKBACK = timedelta(days=365)

STARKNET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")
ACCOUNT_ID_RE = re.compile(r"^\d+$")

_CLOSING_TRADE_TYPES = {"LIQUIDATION", "DELEVERAGE"}


def asset_from_market(market: str) -> str:
    """"BTC-USD" → "BTC"."""
    if not market:
        return "UNKNOWN"
    return market.split("-")[0].upper() or market.upper()


def _dec(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def classify_trade(trade: dict[str, Any], tag: str, pnl: Decimal) -> PerpTransaction:
    asset = asset_from_market(trade.get("market", ""))
    fee = _dec(trade.get("fee"))
    direction = "long" if trade.get("side") == "BUY" else "short"
    if tag == "open_position":
        notes = f"{direction.capitalize()} {asset}"
    else:
        notes = f"Close {direction} {asset}"
    return PerpTransaction(
        date=from_unix_millis(trade["createdTime"]),
        asset=asset,
        amount=abs(_dec(trade.get("qty"))),
        pnl=pnl,
        payment_token="" if tag == "open_position" and pnl == 0 else SETTLEMENT,
        tag=tag,
        fee=fee if fee != 0 else None,
        notes=notes,
    )


def closed_positions(
    positions: Sequence[dict[str, Any]], options: FetchOptions
) -> list[dict[str, Any]]:
    """Positions that were closed and opened inside the date range."""
    return [
        position
        for position in positions
        if position.get("closedTime")
        and options.in_range(from_unix_millis(position["createdTime"]))
    ]


def _closed_by(
    trade: dict[str, Any], positions: Sequence[dict[str, Any]]
) -> dict[str, Any] | None:
    """The closed position a fill reduced: same market, opposite side, inside its lifetime."""
    closing_side = "LONG" if trade.get("side") == "SELL" else "SHORT"
    when = trade["createdTime"]
    for position in positions:
        if (
            position.get("market") == trade.get("market")
            and position.get("side") == closing_side
            and position["createdTime"] <= when <= position["closedTime"]
        ):
            return position
    return None


def tag_trades(
    trades: Sequence[dict[str, Any]], positions: Sequence[dict[str, Any]]
) -> list[PerpTransaction]:
    """
    Tag fills as opens or closes against the closed positions.

    A fill closes when it is a liquidation or deleverage, or when it reduced
    one of the positions. Each position's realised P&L goes to the first fill
    that closed it; later partial closes carry zero P&L.
    """
    paid: set[Any] = set()
    tagged: list[PerpTransaction] = []
    for trade in sorted(trades, key=lambda t: t["createdTime"]):
        position = _closed_by(trade, positions)
        if position is None and trade.get("tradeType") not in _CLOSING_TRADE_TYPES:
            tagged.append(classify_trade(trade, "open_position", Decimal(0)))
            continue
        pnl = Decimal(0)
        if position is not None and position["id"] not in paid:
            paid.add(position["id"])
            pnl = _dec(position.get("realisedPnl"))
        tagged.append(classify_trade(trade, "close_position", pnl))
    return tagged


def classify_funding_payment(funding: dict[str, Any]) -> PerpTransaction:
    return PerpTransaction(
        date=from_unix_millis(funding["paidTime"]),
        asset=asset_from_market(funding.get("market", "")),
        amount=abs(_dec(funding.get("size"))),
        pnl=-_dec(funding.get("fundingFee")),
        payment_token=SETTLEMENT,
        tag="funding_payment",
        notes=f"Funding payment (rate: {funding.get('fundingRate')})",
    )


def classify_trade_as_transaction(trade: dict[str, Any]) -> Transaction:
    """A fill in the standard layout: buys receive the asset, sells send it."""
    asset = asset_from_market(trade.get("market", ""))
    quantity = abs(_dec(trade.get("qty")))
    fee = _dec(trade.get("fee"))
    side = (trade.get("side") or "").upper()
    trade_type = (trade.get("tradeType") or "TRADE").lower()

    fields: dict[str, Any] = {}
    if side == "SELL":
        fields.update(sent_quantity=quantity, sent_currency=asset)
    else:
        fields.update(received_quantity=quantity, received_currency=asset)
    if fee != 0:
        fields.update(fee_amount=abs(fee), fee_currency=SETTLEMENT)
    return Transaction(
        date=from_unix_millis(trade["createdTime"]),
        type="trade",
        notes=f"Extended {trade_type} {side.lower()} {asset}",
        tag=trade_type,
        **fields,
    )


class ExtendedAdapter:
    """Extended perpetuals (StarkNet). Requires EXTENDED_API_KEY."""

    chain_id = "extended"
    chain_name = "Extended"
    ticker = "EXT"
    perps_capable = True

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = EXTENDED_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def validate_address(self, address: Any) -> bool:
        if not isinstance(address, str):
            return False
        candidate = address.strip()
        return bool(STARKNET_ADDRESS_RE.fullmatch(candidate) or ACCOUNT_ID_RE.fullmatch(candidate))

    def _prepare(self, address: Any) -> str:
        address = ensure_valid_address(
            self,
            address,
            "0x<1-64 hex chars> (StarkNet address) or a numeric account id (e.g. 3017)",
        )
        require_credential(self._api_key, "EXTENDED_API_KEY", self.chain_name)
        return address

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        self._prepare(address)
        options = options or FetchOptions()

        collector = PageCollector(
            classify_trade_as_transaction,
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["id"],
        )
        await collector.consume(self._pages("/user/trades", {}, options))
        return sort_transactions(collector.transactions)

    async def fetch_perp_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[PerpTransaction]:
        self._prepare(address)
        options = options or FetchOptions()

        from_date = options.from_date or datetime.now(timezone.utc) - FUNDING_LOOKBACK
        funding = PageCollector(
            classify_funding_payment, options, label=self.chain_id, dedupe_key=lambda raw: raw["id"]
        )
        trades, positions, _ = await run_concurrently(
            _drain(self._pages("/user/trades", {}, options)),
            _drain(self._pages("/user/positions/history", {}, options)),
            funding.consume(
                self._pages(
                    "/user/funding/history",
                    {"fromTime": int(from_date.timestamp() * 1000)},
                    options,
                )
            ),
        )

        tagged = [
            perp
            for perp in tag_trades(trades, closed_positions(positions, options))
            if options.in_range(perp.date)
        ]
        options.report_progress(tagged)
        return sort_transactions(tagged + funding.transactions)

    def _pages(self, path: str, params: dict[str, Any], options: FetchOptions):
        async def fetch_page(cursor: Any, limit: int) -> Page:
            query: dict[str, Any] = {**params, "limit": limit}
            if cursor is not None:
                query["cursor"] = cursor
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}{path}",
                params=query,
                headers={"X-Api-Key": self._api_key or ""},
                error_label="Extended API",
                retry=self._http.retry,
            )
            records = data.get("data") or []
            pagination = data.get("pagination") or {}
            full_page = records and int(pagination.get("count") or 0) >= limit
            return Page(records=records, next=pagination.get("cursor") if full_page else None)

        return cursor_pages(fetch_page, options, page_size=PAGE_SIZE)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def to_awaken_perp_csv(self, transactions: Sequence[PerpTransaction]) -> str:
        return generate_perp_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{EXTENDED_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()


async def _drain(pages: AsyncIterator[list[Any]]) -> list[Any]:
    return [record async for page in pages for record in page]
