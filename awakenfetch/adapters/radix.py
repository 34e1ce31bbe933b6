"""
Radix adapter — Radix Gateway API (mainnet.radixdlt.com).

The Gateway's /stream/transactions endpoint is a POST with a JSON body,
filtered to transactions that touched our account and opted in to balance
changes and manifest classes. Pagination is cursor based (next_cursor).

Radix transactions are classified by their effect on the account rather
than by their instructions:
- manifest class ValidatorStake / ValidatorClaim / ValidatorUnstake → stake
  or unstake
- otherwise by the sign of the account's fungible balance changes: both
  directions → trade, only negative → send, only positive → receive
- a transaction that only cost a fee → other

When more than one resource moves in the same direction, the first is the
primary leg and the rest are additional legs (multi-asset layout).
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import (
    HTTPResources,
    ensure_valid_address,
    matches,
    sort_transactions,
)
from awakenfetch.classify import parse_iso_datetime
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import AssetAmount, FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, cursor_pages

RADIX_GATEWAY_BASE = "https://mainnet.radixdlt.com"
RADIX_EXPLORER = "https://dashboard.radixdlt.com/transaction"
PAGE_SIZE = 100

XRD_RESOURCE_ADDRESS = "resource_rdx1tknxxxxxxxxxradxrdxxxxxxxxx009923554798xxxxxxxxxradxrd"
RADIX_ADDRESS_RE = re.compile(r"^account_rdx1[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{26,59}$")

_COMMITTED = "CommittedSuccess"


def resource_ticker(resource_address: str) -> str:
    if resource_address == XRD_RESOURCE_ADDRESS:
        return "XRD"
    prefix = "resource_rdx1"
    if resource_address.startswith(prefix):
        return resource_address[len(prefix):][:8].upper()
    return resource_address[:12].upper()


def _legs(changes: list[dict[str, Any]]) -> list[AssetAmount]:
    return [
        AssetAmount(abs(Decimal(c["balance_change"])), resource_ticker(c["resource_address"]))
        for c in changes
    ]


def _leg_fields(prefix: str, legs: list[AssetAmount]) -> dict[str, Any]:
    if not legs:
        return {}
    return {
        f"{prefix}_quantity": legs[0].quantity,
        f"{prefix}_currency": legs[0].currency,
        f"additional_{prefix}": legs[1:],
    }


def classify_radix_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    receipt = raw.get("receipt") or {}
    if raw.get("transaction_status") != _COMMITTED and receipt.get("status") != _COMMITTED:
        return None
    balance_changes = raw.get("balance_changes")
    if not balance_changes:
        return None

    own = [
        c
        for c in balance_changes.get("fungible_balance_changes") or []
        if c.get("entity_address") == address
    ]
    fee = sum(
        (
            abs(Decimal(c["balance_change"]))
            for c in balance_changes.get("fungible_fee_balance_changes") or []
            if c.get("entity_address") == address and c.get("type") == "FeePayment"
        ),
        Decimal(0),
    )
    if not own and fee == 0:
        return None

    sent = _legs([c for c in own if Decimal(c["balance_change"]) < 0])
    received = _legs([c for c in own if Decimal(c["balance_change"]) > 0])
    classes = raw.get("manifest_classes") or []

    fields: dict[str, Any] = {
        "date": parse_iso_datetime(raw["confirmed_at"]),
        "tx_hash": raw.get("intent_hash"),
        **_leg_fields("sent", sent),
        **_leg_fields("received", received),
    }
    if fee > 0:
        fields.update(fee_amount=fee, fee_currency="XRD")

    if "ValidatorStake" in classes:
        return Transaction(type="stake", notes="Validator stake", **fields)
    if "ValidatorClaim" in classes:
        return Transaction(type="unstake", notes="Validator claim", **fields)
    if "ValidatorUnstake" in classes:
        return Transaction(type="unstake", notes="Validator unstake", **fields)
    if sent and received:
        return Transaction(type="trade", **fields)
    if sent:
        return Transaction(type="send", **fields)
    if received:
        return Transaction(type="receive", **fields)
    return Transaction(
        type="other",
        notes=", ".join(classes) if classes else "Fee-only transaction",
        **fields,
    )


class RadixAdapter:
    """Radix (XRD) via the public Gateway API. No key required."""

    chain_id = "radix"
    chain_name = "Radix"
    ticker = "XRD"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = RADIX_GATEWAY_BASE,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return matches(RADIX_ADDRESS_RE, address)

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(self, address, "account_rdx1... (Bech32m encoded)")
        options = options or FetchOptions()

        body: dict[str, Any] = {
            "affected_global_entities_filter": [address],
            "order": "Asc",
            "opt_ins": {"balance_changes": True, "manifest_classes": True},
        }
        if options.from_date is not None:
            body["from_ledger_state"] = {"timestamp": options.from_date.isoformat()}
        if options.to_date is not None:
            body["at_ledger_state"] = {"timestamp": options.to_date.isoformat()}

        async def fetch_page(cursor: str | None, limit: int) -> Page:
            page_body = {**body, "limit_per_page": limit}
            if cursor:
                page_body["cursor"] = cursor
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/stream/transactions",
                method="POST",
                json_body=page_body,
                error_label="Radix Gateway API",
                retry=self._http.retry,
            )
            items = data.get("items") or []
            return Page(records=items, next=data.get("next_cursor") if items else None)

        collector = PageCollector(
            lambda raw: classify_radix_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw.get("intent_hash") or raw.get("state_version"),
        )
        await collector.consume(cursor_pages(fetch_page, options, page_size=PAGE_SIZE))
        return sort_transactions(collector.transactions)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{RADIX_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
