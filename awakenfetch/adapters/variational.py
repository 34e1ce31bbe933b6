"""
Variational adapter — perpetuals exchange (omni-client API).

Variational is an account on an EVM chain (Arbitrum), not a chain of its
own, and its activity is perpetual-futures trading. It is exported two ways:

- fetch_perp_transactions → PerpTransactions for the Awaken perps layout:
  trades become open_position / close_position (a trade with realized P&L
  closes), settlements and funding payments become funding_payment.
- fetch_transactions → the same trades in the standard layout, as "trade"
  rows, for users who import everything into one sheet.

Both endpoints (/v1/trades, /v1/funding-payments) page by offset, and the
server says where the next page starts (pagination.next_page.offset).
Pending and cancelled trades are skipped.

Requests are authenticated with X-Variational-Key, a per-request millisecond
timestamp and X-Variational-Signature: the hex HMAC-SHA256, keyed with the
API secret, of timestamp + method + path (+ "?" + query when there is one).
The key and secret are both required.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from decimal import Decimal
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    matches,
    require_credential,
    run_concurrently,
    sort_transactions,
)
from awakenfetch.classify import parse_iso_datetime
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, PerpTransaction, Transaction
from awakenfetch.output import generate_perp_csv, generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, numbered_pages

VARIATIONAL_API_BASE = "https://omni-client-api.prod.ap-northeast-1.variational.io"
VARIATIONAL_EXPLORER = "https://arbiscan.io/tx"
PAGE_SIZE = 100
DEFAULT_SETTLEMENT = "USDC"

ETH_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_INSTRUMENT_SUFFIX_RE = re.compile(r"([-_]PERP|[-_]USD[CT]?)$", re.IGNORECASE)

_SKIPPED_STATUSES = {"pending", "cancelled"}


def asset_from_instrument(instrument_name: str) -> str:
    """"BTC-PERP" / "ETH_USDC" / "SOL-USD" → "BTC" / "ETH" / "SOL"."""
    if not instrument_name:
        return "UNKNOWN"
    cleaned = instrument_name.strip()
    # Strip at most a -PERP then a -USD* suffix, in that order
    for _ in range(2):
        cleaned = _INSTRUMENT_SUFFIX_RE.sub("", cleaned, count=1)
    return cleaned.upper() or instrument_name.upper()


def sign_request(secret: str, timestamp: str, method: str, path: str, query: str = "") -> str:
    """Hex HMAC-SHA256 over timestamp + method + path [+ "?" + query]."""
    payload = f"{timestamp}{method.upper()}{path}"
    if query:
        payload = f"{payload}?{query}"
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def _dec(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def trade_tag(trade: dict[str, Any]) -> str:
    if trade.get("trade_type") == "settlement":
        return "funding_payment"
    if _dec(trade.get("realized_pnl")) != 0:
        return "close_position"
    return "open_position"


def _settlement(record: dict[str, Any]) -> str:
    return (record.get("settlement_currency") or "").upper() or DEFAULT_SETTLEMENT


def classify_trade(trade: dict[str, Any]) -> PerpTransaction | None:
    if trade.get("status") in _SKIPPED_STATUSES:
        return None
    tag = trade_tag(trade)
    asset = asset_from_instrument(trade.get("instrument_name", ""))
    pnl = _dec(trade.get("realized_pnl"))
    fee = _dec(trade.get("fee"))
    direction = "long" if trade.get("side") == "buy" else "short"

    if tag == "open_position":
        notes = f"{direction.capitalize()} {asset}"
    elif tag == "close_position":
        notes = f"Close {direction} {asset}"
    else:
        notes = ""

    return PerpTransaction(
        date=parse_iso_datetime(trade["created_at"]),
        asset=asset,
        amount=abs(_dec(trade.get("quantity"))),
        pnl=pnl,
        # An opening trade settles nothing, so it names no payment token
        payment_token="" if tag == "open_position" and pnl == 0 else _settlement(trade),
        tag=tag,
        fee=fee if fee != 0 else None,
        notes=notes,
        tx_hash=trade.get("transaction_hash"),
    )


def classify_funding_payment(funding: dict[str, Any]) -> PerpTransaction:
    return PerpTransaction(
        date=parse_iso_datetime(funding["created_at"]),
        asset=asset_from_instrument(funding.get("instrument_name", "")),
        amount=abs(_dec(funding.get("position_size"))),
        pnl=_dec(funding.get("payment_amount")),
        payment_token=_settlement(funding),
        tag="funding_payment",
        notes=f"Funding payment (rate: {funding.get('funding_rate')})",
        tx_hash=funding.get("transaction_hash"),
    )


def classify_trade_as_transaction(trade: dict[str, Any]) -> Transaction | None:
    """A trade in the standard layout: opens send the asset, closes receive it."""
    if trade.get("status") in _SKIPPED_STATUSES:
        return None
    tag = trade_tag(trade)
    asset = asset_from_instrument(trade.get("instrument_name", ""))
    quantity = abs(_dec(trade.get("quantity")))
    fee = _dec(trade.get("fee"))
    fields: dict[str, Any] = {}
    if tag == "open_position":
        fields.update(sent_quantity=quantity, sent_currency=asset)
    elif tag == "close_position":
        fields.update(received_quantity=quantity, received_currency=asset)
    if fee != 0:
        fields.update(fee_amount=abs(fee), fee_currency=_settlement(trade))
    label = tag.replace("_", " ")
    return Transaction(
        date=parse_iso_datetime(trade["created_at"]),
        type="trade",
        tx_hash=trade.get("transaction_hash"),
        notes=f"Variational {label}",
        tag=label,
        **fields,
    )


class VariationalAdapter:
    """Variational perpetuals. Requires VARIATIONAL_API_KEY and VARIATIONAL_API_SECRET."""

    chain_id = "variational"
    chain_name = "Variational"
    ticker = "VAR"
    perps_capable = True

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = VARIATIONAL_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key and self._api_secret)

    def validate_address(self, address: Any) -> bool:
        return matches(ETH_ADDRESS_RE, address)

    def _prepare(self, address: Any) -> str:
        address = ensure_valid_address(
            self, address, "0x<40 hex chars> (e.g. 0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045)"
        )
        require_credential(self._api_key, "VARIATIONAL_API_KEY", self.chain_name)
        require_credential(self._api_secret, "VARIATIONAL_API_SECRET", self.chain_name)
        return address.lower()

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = self._prepare(address)
        options = options or FetchOptions()

        collector = PageCollector(
            classify_trade_as_transaction,
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["id"],
        )
        await collector.consume(self._pages("/v1/trades", address, options))
        return sort_transactions(collector.transactions)

    async def fetch_perp_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[PerpTransaction]:
        address = self._prepare(address)
        options = options or FetchOptions()

        trades = PageCollector(
            classify_trade, options, label=self.chain_id, dedupe_key=lambda raw: raw["id"]
        )
        funding = PageCollector(
            classify_funding_payment, options, label=self.chain_id, dedupe_key=lambda raw: raw["id"]
        )
        await run_concurrently(
            trades.consume(self._pages("/v1/trades", address, options)),
            funding.consume(self._pages("/v1/funding-payments", address, options)),
        )
        return sort_transactions(trades.transactions + funding.transactions)

    def _pages(self, path: str, address: str, options: FetchOptions):
        async def fetch_page(offset: int, limit: int) -> Page:
            params: dict[str, Any] = {"wallet_address": address, "limit": limit, "offset": offset}
            if options.from_date is not None:
                params["from_date"] = options.from_date.isoformat()
            if options.to_date is not None:
                params["to_date"] = options.to_date.isoformat()
            url = f"{self._base_url}{path}"
            data = await fetch_json(
                self._http.client,
                url,
                params=params,
                headers=self._auth_headers("GET", url, params),
                error_label="Variational API",
                retry=self._http.retry,
            )
            pagination = data.get("pagination") or {}
            next_page = pagination.get("next_page") or {}
            return Page(
                records=data.get("data") or [],
                next=next_page.get("offset"),
                total=pagination.get("total"),
            )

        # The server hands out the next offset, so the page-number driver
        # (which follows Page.next) fits; positions start at offset 0.
        return numbered_pages(fetch_page, options, page_size=PAGE_SIZE, first_page=0)

    def _auth_headers(self, method: str, url: str, params: dict[str, Any]) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        # Sign exactly the path and query string httpx will send
        signature = sign_request(
            self._api_secret or "",
            timestamp,
            method,
            httpx.URL(url).path,
            str(httpx.QueryParams(params)),
        )
        return {
            "X-Variational-Key": self._api_key or "",
            "X-Request-Timestamp-Ms": timestamp,
            "X-Variational-Signature": signature,
            "Content-Type": "application/json",
        }

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def to_awaken_perp_csv(self, transactions: Sequence[PerpTransaction]) -> str:
        return generate_perp_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{VARIATIONAL_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
