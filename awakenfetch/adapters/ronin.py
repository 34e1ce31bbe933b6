"""
Ronin adapter — Skynet Explorer API (skynet-api.roninchain.com).

Ronin is EVM compatible: 0x addresses (the wallet also shows them as
"ronin:<hex>", which is accepted and normalised) and 18-decimal RON.

Two sources are fetched concurrently, both paged by result.paging.nextCursor:
- /accounts/{address}/txs               native transactions
- /accounts/{address}/tokens/transfers  ERC-20 (and other token) transfers

Native transactions classify as approval (approve() selector, no value),
other (contract call or zero-value call), or a RON send / receive. Token
transfers classify as mint, burn, send or receive of the token.

Design decisions:
- A swap shows up in both sources under one hash (RON out on the native
  side, the token in on the transfer side). Both rows are kept; they are
  different legs, not duplicates.
- Gas is only charged to the sender, so only the sender's row carries a fee.
- Failed transactions (status != 1) are skipped.
- SKYMAVIS_API_KEY is optional; the explorer API is public.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    run_concurrently,
    sort_transactions,
)
from awakenfetch.classify import from_base_units, from_unix_seconds
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, cursor_pages

RONIN_API_BASE = "https://skynet-api.roninchain.com/ronin/explorer/v2"
RONIN_EXPLORER = "https://app.roninchain.com/tx"
PAGE_SIZE = 200
RON_DECIMALS = 18

RONIN_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
ZERO_ADDRESS = "0x" + "0" * 40
APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)


def normalize_ronin_address(address: str) -> str:
    """"ronin:abc…" / "0xABC…" → "0xabc…"."""
    candidate = address.strip().lower()
    if candidate.startswith("ronin:"):
        return "0x" + candidate[len("ronin:"):]
    return candidate


def _int(raw: Any) -> int:
    text = str(raw or "0")
    return int(text, 16) if text.startswith("0x") else int(text)


def _amount(raw: Any, decimals: int) -> Decimal:
    return from_base_units(_int(raw), decimals)


def _short(address: str) -> str:
    return f"{address[:10]}…"


def gas_fee(raw: dict[str, Any]) -> dict[str, Any]:
    gas_used = _int(raw.get("gasUsed"))
    gas_price = raw.get("effectiveGasPrice") or raw.get("gasPrice") or "0"
    fee = from_base_units(gas_used * _int(gas_price), RON_DECIMALS)
    return {"fee_amount": fee, "fee_currency": "RON"} if fee > 0 else {}


def classify_native_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    if raw.get("status") != 1:
        return None

    sender = (raw.get("from") or "").lower()
    recipient = (raw.get("to") or "").lower()
    is_sender = sender == address
    is_recipient = recipient == address
    value = _amount(raw.get("value"), RON_DECIMALS)
    call_data = raw.get("input") or "0x"
    fee = gas_fee(raw) if is_sender else {}
    common = {"date": from_unix_seconds(raw["blockTime"]), "tx_hash": raw.get("transactionHash")}

    if value == 0:
        if call_data.startswith(APPROVE_SELECTOR):
            return Transaction(type="approval", notes=f"Approval to {_short(recipient)}", **fee, **common)
        if len(call_data) > 2:
            return Transaction(
                type="other", notes=f"Contract interaction: {_short(recipient)}", **fee, **common
            )
        if is_sender:
            return Transaction(type="other", notes=f"Transaction to {_short(recipient)}", **fee, **common)
        return None

    if is_sender:
        return Transaction(
            type="send",
            sent_quantity=value,
            sent_currency="RON",
            notes="Self-transfer" if is_recipient else f"Transfer to {_short(recipient)}",
            **fee,
            **common,
        )
    if is_recipient:
        return Transaction(
            type="receive",
            received_quantity=value,
            received_currency="RON",
            notes=f"Transfer from {_short(sender)}",
            **common,
        )
    return None


def classify_token_transfer(raw: dict[str, Any], address: str) -> Transaction | None:
    decimals = raw.get("decimals")
    quantity = _amount(raw.get("value"), RON_DECIMALS if decimals is None else int(decimals))
    if quantity == 0:
        return None

    sender = (raw.get("from") or "").lower()
    recipient = (raw.get("to") or "").lower()
    symbol = raw.get("tokenSymbol") or "UNKNOWN"
    common = {"date": from_unix_seconds(raw["blockTime"]), "tx_hash": raw.get("transactionHash")}
    sent = {"type": "send", "sent_quantity": quantity, "sent_currency": symbol}
    received = {"type": "receive", "received_quantity": quantity, "received_currency": symbol}

    if sender == ZERO_ADDRESS and recipient == address:
        return Transaction(notes=f"Mint {symbol}", **received, **common)
    if recipient == ZERO_ADDRESS and sender == address:
        return Transaction(notes=f"Burn {symbol}", **sent, **common)
    if sender == address and recipient == address:
        return Transaction(notes=f"Self-transfer {symbol}", **sent, **common)
    if sender == address:
        return Transaction(notes=f"Transfer {symbol} to {_short(recipient)}", **sent, **common)
    if recipient == address:
        return Transaction(notes=f"Transfer {symbol} from {_short(sender)}", **received, **common)
    return None


class RoninAdapter:
    """Ronin (RON) via the Skynet Explorer API. SKYMAVIS_API_KEY is optional."""

    chain_id = "ronin"
    chain_name = "Ronin"
    ticker = "RON"
    perps_capable = False

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = RONIN_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(
            RONIN_ADDRESS_RE.fullmatch(normalize_ronin_address(address))
        )

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = normalize_ronin_address(
            ensure_valid_address(
                self,
                address,
                "0x<40 hex chars> or ronin:<40 hex chars> "
                "(e.g. 0xf6fd5fca4bd769ba495b29b98dba5f2ecf4ceed3)",
            )
        )
        options = options or FetchOptions()

        native = PageCollector(
            lambda raw: classify_native_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw.get("transactionHash"),
        )
        tokens = PageCollector(
            lambda raw: classify_token_transfer(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: (raw.get("transactionHash"), raw.get("logIndex")),
        )
        await run_concurrently(
            native.consume(self._pages(f"/accounts/{address}/txs", options)),
            tokens.consume(self._pages(f"/accounts/{address}/tokens/transfers", options)),
        )
        return sort_transactions(native.transactions + tokens.transactions)

    def _pages(self, path: str, options: FetchOptions):
        async def fetch_page(cursor: str | None, limit: int) -> Page:
            params: dict[str, Any] = {"limit": min(limit, PAGE_SIZE)}
            if cursor:
                params["cursor"] = cursor
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}{path}",
                params=params,
                headers={"X-API-KEY": self._api_key} if self._api_key else None,
                error_label="Ronin Skynet Explorer",
                retry=self._http.retry,
            )
            result = data.get("result") or {}
            records = result.get("items") or []
            next_cursor = (result.get("paging") or {}).get("nextCursor") if records else None
            return Page(records=records, next=next_cursor)

        return cursor_pages(fetch_page, options, page_size=PAGE_SIZE)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{RONIN_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
