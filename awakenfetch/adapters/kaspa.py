"""
Kaspa adapter — api.kaspa.org REST client.

Kaspa is a UTXO chain. The full-transactions endpoint resolves each input's
previous outpoint ("light" mode), which gives the owning address and amount
needed for netting.

Design decisions:
- Offset pagination, 500 transactions per page.
- Unaccepted transactions (not merged into the DAG) are skipped.
- A transaction with no inputs, or whose inputs all reference the all-zero
  outpoint hash, is a coinbase: a mining reward.
- Dates come from accepting_block_time (milliseconds).
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    matches,
    sort_transactions,
)
from awakenfetch.classify import from_unix_millis
from awakenfetch.classify.utxo import AssetUnit, UtxoEntry, UtxoTransaction, net_utxo_transaction
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, offset_pages

KASPA_API_BASE = "https://api.kaspa.org"
KASPA_EXPLORER = "https://explorer.kaspa.org/txs"
PAGE_SIZE = 500

KASPA_ADDRESS_RE = re.compile(r"^kaspa:[a-z0-9]{61,63}$")
ZERO_HASH = "0" * 64

KAS = AssetUnit("KAS", 8)  # 1 KAS = 10^8 sompi


def to_utxo_transaction(raw: dict[str, Any]) -> UtxoTransaction | None:
    """Normalize one full-transactions record; None when it was not accepted."""
    if not raw.get("is_accepted", True):
        return None

    raw_inputs = raw.get("inputs") or []
    inputs = []
    for item in raw_inputs:
        resolved = item.get("previous_outpoint_resolved") or {}
        address = item.get("previous_outpoint_address") or resolved.get("script_public_key_address")
        amount = item.get("previous_outpoint_amount")
        if amount is None:
            amount = resolved.get("amount", 0)
        inputs.append(UtxoEntry(address=address, value=int(amount)))

    outputs = [
        UtxoEntry(address=item.get("script_public_key_address"), value=int(item["amount"]))
        for item in raw.get("outputs") or []
    ]

    coinbase = not raw_inputs or all(
        item.get("previous_outpoint_hash") == ZERO_HASH for item in raw_inputs
    )
    return UtxoTransaction(
        tx_hash=raw.get("transaction_id") or raw["hash"],
        date=from_unix_millis(raw.get("accepting_block_time") or raw["block_time"]),
        inputs=[] if coinbase else inputs,
        outputs=outputs,
        coinbase=coinbase,
    )


def classify_kaspa_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    tx = to_utxo_transaction(raw)
    if tx is None:
        return None
    return net_utxo_transaction(tx, address, KAS)


class KaspaAdapter:
    """Kaspa (KAS) via the public api.kaspa.org REST API. No key required."""

    chain_id = "kaspa"
    chain_name = "Kaspa"
    ticker = "KAS"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = KASPA_API_BASE,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return matches(KASPA_ADDRESS_RE, address)

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(self, address, "kaspa:<61-63 lowercase alphanumeric chars>")
        options = options or FetchOptions()

        async def fetch_page(offset: int, limit: int) -> Page:
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/addresses/{address}/full-transactions",
                params={
                    "limit": limit,
                    "offset": offset,
                    "resolve_previous_outpoints": "light",
                },
                error_label="Kaspa API",
                retry=self._http.retry,
            )
            return Page(records=data if isinstance(data, list) else [])

        collector = PageCollector(
            lambda raw: classify_kaspa_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw.get("transaction_id") or raw.get("hash"),
        )
        await collector.consume(offset_pages(fetch_page, options, page_size=PAGE_SIZE))
        return sort_transactions(collector.transactions)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{KASPA_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
