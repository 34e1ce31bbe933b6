"""
Ergo adapter — Ergo Explorer REST API with a GraphQL fallback.

Ergo is a UTXO chain whose boxes carry ERG plus arbitrary tokens, so the
netting runs per token id as well as for ERG. Token names and decimals come
from the asset entries on the boxes themselves.

Design decisions:
- Primary path: /addresses/{address}/transactions, offset pagination
  (500 per page), stopping at the reported running total.
- The address-transactions endpoint is known to time out for busy
  addresses. When it fails transiently, listing switches to GraphQL
  (50 ids per page) and each transaction is fetched by id, concurrently
  within a page. Records already collected are not classified twice.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    matches,
    run_concurrently,
    sort_transactions,
)
from awakenfetch.classify import from_unix_millis
from awakenfetch.classify.utxo import AssetUnit, UtxoEntry, UtxoTransaction, net_utxo_transaction
from awakenfetch.exceptions import TransientProviderError
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, offset_pages

logger = logging.getLogger(__name__)

ERGO_API_BASE = "https://api.ergoplatform.com/api/v1"
ERGO_GRAPHQL_URL = "https://gql.ergoplatform.com/v1/graphql"
ERGO_EXPLORER = "https://explorer.ergoplatform.com/en/transactions"
PAGE_SIZE = 500
GRAPHQL_PAGE_SIZE = 50

# Base58, covers P2PK ("9…"), P2SH and P2S addresses
ERGO_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{40,120}$")

ERG = AssetUnit("ERG", 9)  # 1 ERG = 10^9 nanoERG

_TX_REFS_QUERY = """
query TxRefs($address: String!, $take: Int!, $skip: Int!) {
  transactions(addresses: [$address], take: $take, skip: $skip) {
    transactionId
    timestamp
    inclusionHeight
  }
}
"""


def _entry(box: dict[str, Any], tokens: dict[str, AssetUnit]) -> UtxoEntry:
    assets: dict[str, int] = {}
    for asset in box.get("assets") or []:
        token_id = asset["tokenId"]
        assets[token_id] = assets.get(token_id, 0) + int(asset["amount"])
        if token_id not in tokens:
            tokens[token_id] = AssetUnit(
                asset.get("name") or token_id[:8].upper(),
                int(asset.get("decimals") or 0),
            )
    return UtxoEntry(address=box.get("address"), value=int(box["value"]), assets=assets)


def to_utxo_transaction(raw: dict[str, Any]) -> tuple[UtxoTransaction, dict[str, AssetUnit]]:
    """Normalize an Explorer transaction; also returns the token units it mentions."""
    tokens: dict[str, AssetUnit] = {}
    tx = UtxoTransaction(
        tx_hash=raw["id"],
        date=from_unix_millis(raw["timestamp"]),
        inputs=[_entry(box, tokens) for box in raw.get("inputs") or []],
        outputs=[_entry(box, tokens) for box in raw.get("outputs") or []],
    )
    return tx, tokens


def classify_ergo_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    tx, tokens = to_utxo_transaction(raw)
    return net_utxo_transaction(tx, address, ERG, tokens)


class ErgoAdapter:
    """Ergo (ERG) via the public Ergo Explorer API. No key required."""

    chain_id = "ergo"
    chain_name = "Ergo"
    ticker = "ERG"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = ERGO_API_BASE,
        graphql_url: str = ERGO_GRAPHQL_URL,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")
        self._graphql_url = graphql_url

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return matches(ERGO_ADDRESS_RE, address)

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(self, address, "base58 address, e.g. 9f4QF8jQU4Sy…")
        options = options or FetchOptions()

        collector = PageCollector(
            lambda raw: classify_ergo_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["id"],
        )
        try:
            await collector.consume(
                offset_pages(self._rest_page_fetcher(address), options, page_size=PAGE_SIZE)
            )
        except TransientProviderError as e:
            logger.warning("ergo: REST listing failed (%s), falling back to GraphQL", e.message)
            await collector.consume(
                offset_pages(
                    self._graphql_page_fetcher(address), options, page_size=GRAPHQL_PAGE_SIZE
                )
            )
        return sort_transactions(collector.transactions)

    def _rest_page_fetcher(self, address: str):
        async def fetch_page(offset: int, limit: int) -> Page:
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/addresses/{address}/transactions",
                params={"offset": offset, "limit": limit},
                error_label="Ergo Explorer",
                retry=self._http.retry,
            )
            total = data.get("total")
            return Page(records=data.get("items") or [], total=int(total) if total is not None else None)

        return fetch_page

    def _graphql_page_fetcher(self, address: str):
        async def fetch_page(offset: int, limit: int) -> Page:
            data = await fetch_json(
                self._http.client,
                self._graphql_url,
                method="POST",
                json_body={
                    "query": _TX_REFS_QUERY,
                    "variables": {"address": address, "take": limit, "skip": offset},
                },
                error_label="Ergo GraphQL",
                retry=self._http.retry,
            )
            refs = (data.get("data") or {}).get("transactions") or []
            details = await run_concurrently(*(self._fetch_tx(ref["transactionId"]) for ref in refs))
            return Page(records=details)

        return fetch_page

    async def _fetch_tx(self, tx_id: str) -> dict[str, Any]:
        return await fetch_json(
            self._http.client,
            f"{self._base_url}/transactions/{tx_id}",
            error_label="Ergo Explorer",
            retry=self._http.retry,
        )

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{ERGO_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
