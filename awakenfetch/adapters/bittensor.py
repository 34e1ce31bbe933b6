"""
Bittensor adapter — Taostats API (api.taostats.io).

Two sources make up an address's history:
- /transfer/v1     TAO transfers in and out (network=finney)
- /extrinsic/v1    staking extrinsics the address signed, one query per
                   call name (add/remove stake, subnet registration)

Both page by page number and report the next page in pagination.next_page.
The date range is applied server side (timestamp_start / timestamp_end) as
well as locally.

Taostats requires an API key, sent as the bare Authorization header. Its rate
limits are strict, so the default retry policy is longer than elsewhere.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    require_credential,
    sort_transactions,
)
from awakenfetch.classify import from_base_units, parse_iso_datetime
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, numbered_pages

TAOSTATS_API_BASE = "https://api.taostats.io/api"
TAOSTATS_EXPLORER = "https://taostats.io/extrinsic"
PAGE_SIZE = 200
TAO_DECIMALS = 9  # 1 TAO = 10^9 rao

# SS58 with the generic Substrate prefix: starts with 5, 46-48 base58 chars
SS58_ADDRESS_RE = re.compile(r"^5[1-9A-HJ-NP-Za-km-z]{45,47}$")

STAKE_EXTRINSICS = ("SubtensorModule.add_stake", "SubtensorModule.add_stake_limit")
UNSTAKE_EXTRINSICS = ("SubtensorModule.remove_stake", "SubtensorModule.remove_stake_limit")
REGISTER_EXTRINSICS = ("SubtensorModule.burned_register",)


def _tao(raw: Any):
    return from_base_units(raw, TAO_DECIMALS)


def _fee_fields(raw_fee: Any) -> dict[str, Any]:
    if not raw_fee:
        return {}
    fee = _tao(raw_fee)
    return {"fee_amount": fee, "fee_currency": "TAO"} if fee > 0 else {}


def classify_transfer(raw: dict[str, Any], address: str) -> Transaction:
    sender = (raw.get("from") or {}).get("ss58", "")
    recipient = (raw.get("to") or {}).get("ss58", "")
    amount = _tao(raw["amount"])
    date = parse_iso_datetime(raw["timestamp"])

    if sender == address:
        return Transaction(
            date=date,
            type="send",
            sent_quantity=amount,
            sent_currency="TAO",
            **_fee_fields(raw.get("fee")),
            tx_hash=raw.get("transaction_hash"),
            notes=f"Transfer to {recipient[:8]}…",
        )
    return Transaction(
        date=date,
        type="receive",
        received_quantity=amount,
        received_currency="TAO",
        tx_hash=raw.get("transaction_hash"),
        notes=f"Transfer from {sender[:8]}…",
    )


def classify_extrinsic(raw: dict[str, Any]) -> Transaction | None:
    """Staking / registration extrinsic; None for failed or unrelated calls."""
    if not raw.get("success"):
        return None

    name = raw.get("full_name", "")
    args = raw.get("call_args") or {}
    netuid = args.get("netuid")
    raw_amount = args.get("amountStaked") or args.get("amountUnstaked")
    amount = _tao(raw_amount) if raw_amount else None
    if amount is not None and amount <= 0:
        amount = None
    common = {
        "date": parse_iso_datetime(raw["timestamp"]),
        "tx_hash": raw.get("hash"),
        **_fee_fields(raw.get("fee")),
    }

    if name in STAKE_EXTRINSICS:
        return Transaction(
            type="stake",
            sent_quantity=amount,
            sent_currency="TAO" if amount is not None else None,
            notes=f"Stake on subnet {netuid}" if netuid is not None else "Stake",
            tag="staked",
            **common,
        )
    if name in UNSTAKE_EXTRINSICS:
        return Transaction(
            type="unstake",
            received_quantity=amount,
            received_currency="TAO" if amount is not None else None,
            notes=f"Unstake from subnet {netuid}" if netuid is not None else "Unstake",
            tag="unstaked",
            **common,
        )
    if name in REGISTER_EXTRINSICS:
        return Transaction(
            type="other",
            notes=(
                f"Subnet registration (netuid {netuid})"
                if netuid is not None
                else "Subnet registration"
            ),
            **common,
        )
    return None


class BittensorAdapter:
    """Bittensor (TAO) via Taostats. Requires TAOSTATS_API_KEY."""

    chain_id = "bittensor"
    chain_name = "Bittensor"
    ticker = "TAO"
    perps_capable = False

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = TAOSTATS_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._http = HTTPResources(client, retry or RetryPolicy(max_retries=5, base_delay=2.0), timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(SS58_ADDRESS_RE.fullmatch(address.strip()))

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, "SS58 (starts with 5, 46-48 characters)"
        )
        api_key = require_credential(self._api_key, "TAOSTATS_API_KEY", self.chain_name)
        options = options or FetchOptions()

        transfers = PageCollector(
            lambda raw: classify_transfer(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw.get("id") or raw.get("transaction_hash"),
        )
        await transfers.consume(
            numbered_pages(
                self._page_fetcher(
                    "transfer/v1", {"network": "finney", "address": address}, api_key, options
                ),
                options,
                page_size=PAGE_SIZE,
            )
        )

        extrinsics = PageCollector(classify_extrinsic, options, label=self.chain_id)
        for full_name in STAKE_EXTRINSICS + UNSTAKE_EXTRINSICS + REGISTER_EXTRINSICS:
            await extrinsics.consume(
                numbered_pages(
                    self._page_fetcher(
                        "extrinsic/v1",
                        {"signer_address": address, "full_name": full_name},
                        api_key,
                        options,
                    ),
                    options,
                    page_size=PAGE_SIZE,
                )
            )

        return sort_transactions(transfers.transactions + extrinsics.transactions)

    def _page_fetcher(
        self, path: str, query: dict[str, Any], api_key: str, options: FetchOptions
    ):
        async def fetch_page(page_no: int, limit: int) -> Page:
            params: dict[str, Any] = {
                **query,
                "limit": limit,
                "page": page_no,
                "order": "timestamp_asc",
            }
            if options.from_ts is not None:
                params["timestamp_start"] = options.from_ts
            if options.to_ts is not None:
                params["timestamp_end"] = options.to_ts
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/{path}",
                params=params,
                headers={"Authorization": api_key},
                error_label="Taostats API",
                retry=self._http.retry,
            )
            pagination = data.get("pagination") or {}
            return Page(
                records=data.get("data") or [],
                next=pagination.get("next_page"),
                total=pagination.get("total_items"),
            )

        return fetch_page

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{TAOSTATS_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
