"""
Gluenet adapter — Glue Blockscout explorer, Etherscan-compatible API.

One query (module=account&action=txlist) lists the address's native GLUE
transactions, paged by page number (page=1.., offset=page size). The date
range is passed through as start_timestamp / end_timestamp.

Blockscout answers status "0" both for real errors and for an empty
history; only the message "No transactions found" means the latter.

Design decisions:
- GLUE has 18 decimals; the fee is gasUsed * gasPrice, charged to the
  sender only.
- A zero-value call the address made is "other" (the fee is its only
  economic content); value transfers are send / receive, a transfer to
  itself is a send noted "Self-transfer".
- Paging stops after MAX_PAGES as a guard against a provider that never
  returns a short page.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import HTTPResources, ensure_valid_address, matches, sort_transactions
from awakenfetch.classify import from_base_units, from_unix_seconds
from awakenfetch.exceptions import APIError
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, numbered_pages

GLUENET_API_BASE = "https://backend.explorer.mainnet.prod.gke.glue.net/api"
GLUENET_EXPLORER = "https://explorer.glue.net/tx"
PAGE_SIZE = 100
MAX_PAGES = 1000
GLUE_DECIMALS = 18

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
NO_TRANSACTIONS = "No transactions found"


def classify_gluenet_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    if raw.get("isError") == "1":
        return None

    sender = (raw.get("from") or "").lower()
    recipient = (raw.get("to") or "").lower()
    is_sender = sender == address
    is_recipient = recipient == address
    value = from_base_units(int(raw.get("value") or 0), GLUE_DECIMALS)
    common = {"date": from_unix_seconds(raw["timeStamp"]), "tx_hash": raw.get("hash")}

    fee_fields: dict[str, Any] = {}
    if is_sender:
        fee_wei = int(raw.get("gasUsed") or 0) * int(raw.get("gasPrice") or 0)
        fee = from_base_units(fee_wei, GLUE_DECIMALS)
        if fee > 0:
            fee_fields = {"fee_amount": fee, "fee_currency": "GLUE"}

    if value == 0:
        if not is_sender:
            return None
        target = f"Contract: {recipient[:10]}…" if recipient else "Contract interaction"
        return Transaction(type="other", notes=target, **fee_fields, **common)

    if is_sender:
        return Transaction(
            type="send",
            sent_quantity=value,
            sent_currency="GLUE",
            notes="Self-transfer" if is_recipient else f"Transfer to {recipient[:10]}…",
            **fee_fields,
            **common,
        )
    if is_recipient:
        return Transaction(
            type="receive",
            received_quantity=value,
            received_currency="GLUE",
            notes=f"Transfer from {sender[:10]}…",
            **common,
        )
    return None


class GluenetAdapter:
    """Gluenet (GLUE) via the public Blockscout API. No key required."""

    chain_id = "gluenet"
    chain_name = "Gluenet"
    ticker = "GLUE"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = GLUENET_API_BASE,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return matches(EVM_ADDRESS_RE, address)

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, "0x<40 hex chars> (e.g. 0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045)"
        ).lower()
        options = options or FetchOptions()

        async def fetch_page(page_no: int, limit: int) -> Page:
            params: dict[str, Any] = {
                "module": "account",
                "action": "txlist",
                "address": address,
                "page": page_no,
                "offset": limit,
                "sort": "asc",
            }
            if options.from_ts is not None:
                params["start_timestamp"] = options.from_ts
            if options.to_ts is not None:
                params["end_timestamp"] = options.to_ts
            data = await fetch_json(
                self._http.client,
                self._base_url,
                params=params,
                error_label="Gluenet Blockscout API",
                retry=self._http.retry,
            )
            result = data.get("result")
            if data.get("status") != "1" or not isinstance(result, list):
                if data.get("message") == NO_TRANSACTIONS:
                    return Page()
                raise APIError(
                    f"Gluenet Blockscout API: {data.get('message') or 'unknown error'}",
                    details={"result": result if isinstance(result, str) else None},
                )
            full_page = len(result) >= limit and page_no < MAX_PAGES
            return Page(records=result, next=page_no + 1 if full_page else None)

        collector = PageCollector(
            lambda raw: classify_gluenet_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw.get("hash"),
        )
        await collector.consume(numbered_pages(fetch_page, options, page_size=PAGE_SIZE))
        return sort_transactions(collector.transactions)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{GLUENET_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
