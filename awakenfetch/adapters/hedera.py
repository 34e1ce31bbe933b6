"""
Hedera adapter — public Mirror Node REST API.

Accounts are "shard.realm.num" ids. Every transaction lists the signed
HBAR balance change of each account involved, so classification reads the
entry for our account:

- a staking_reward_transfers entry for the account → claim ("Staking reward")
- allowance approve / delete → approval; token (dis)associate → other
- otherwise the net HBAR change: negative → send, positive → receive

The payer (the account in the transaction id) is charged the fee, and the
fee is already included in its balance change. It is added back so the
sent quantity is the transferred amount alone.

Pagination follows the links.next continuation path until it is null.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import HTTPResources, ensure_valid_address, sort_transactions
from awakenfetch.classify import from_base_units, from_unix_seconds
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, cursor_pages

HEDERA_MIRROR_ROOT = "https://mainnet-public.mirrornode.hedera.com"
HEDERA_API_BASE = f"{HEDERA_MIRROR_ROOT}/api/v1"
HEDERA_EXPLORER = "https://hashscan.io/mainnet/transaction"
PAGE_SIZE = 100
HBAR_DECIMALS = 8  # 1 HBAR = 10^8 tinybar

HEDERA_ACCOUNT_RE = re.compile(r"^\d+\.\d+\.\d+$")

_ALLOWANCE_NOTES = {
    "CRYPTOAPPROVEALLOWANCE": "Approve allowance",
    "CRYPTODELETEALLOWANCE": "Delete allowance",
}
_ASSOCIATION_NOTES = {
    "TOKENASSOCIATE": "Token associate",
    "TOKENDISSOCIATE": "Token dissociate",
}


def _hbar(tinybars: Any) -> Decimal:
    return from_base_units(int(tinybars or 0), HBAR_DECIMALS)


def payer_of(transaction_id: str) -> str:
    """"0.0.123-1700000000-000000000" → "0.0.123"."""
    return transaction_id.split("-", 1)[0]


def parse_consensus_timestamp(value: str):
    """Seconds.nanoseconds string → UTC datetime (microsecond precision)."""
    return from_unix_seconds(Decimal(value))


def classify_hedera_transaction(raw: dict[str, Any], account: str) -> Transaction | None:
    if raw.get("result") != "SUCCESS":
        return None

    date = parse_consensus_timestamp(raw["consensus_timestamp"])
    tx_hash = raw.get("transaction_hash")
    is_payer = payer_of(raw.get("transaction_id", "")) == account
    fee = _hbar(raw.get("charged_tx_fee")) if is_payer else Decimal(0)
    fee_fields = {"fee_amount": fee, "fee_currency": "HBAR"} if fee > 0 else {}

    for reward in raw.get("staking_reward_transfers") or []:
        if reward.get("account") == account and int(reward.get("amount") or 0) > 0:
            return Transaction(
                date=date,
                type="claim",
                received_quantity=_hbar(reward["amount"]),
                received_currency="HBAR",
                tx_hash=tx_hash,
                notes="Staking reward",
            )

    name = raw.get("name", "")
    if name in _ALLOWANCE_NOTES:
        return Transaction(
            date=date, type="approval", tx_hash=tx_hash, notes=_ALLOWANCE_NOTES[name], **fee_fields
        )
    if name in _ASSOCIATION_NOTES:
        return Transaction(
            date=date, type="other", tx_hash=tx_hash, notes=_ASSOCIATION_NOTES[name], **fee_fields
        )

    entry = next((t for t in raw.get("transfers") or [] if t.get("account") == account), None)
    if entry is None:
        return None

    net = int(entry.get("amount") or 0)
    if is_payer and net < 0:
        net += int(raw.get("charged_tx_fee") or 0)

    if net < 0:
        return Transaction(
            date=date,
            type="send",
            sent_quantity=_hbar(-net),
            sent_currency="HBAR",
            tx_hash=tx_hash,
            **fee_fields,
        )
    if net > 0:
        return Transaction(
            date=date,
            type="receive",
            received_quantity=_hbar(net),
            received_currency="HBAR",
            tx_hash=tx_hash,
            **fee_fields,
        )
    if is_payer:
        return Transaction(date=date, type="other", tx_hash=tx_hash, notes=name, **fee_fields)
    return None


class HederaAdapter:
    """Hedera (HBAR) via the public Mirror Node. No key required."""

    chain_id = "hedera"
    chain_name = "Hedera"
    ticker = "HBAR"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = HEDERA_API_BASE,
        mirror_root: str = HEDERA_MIRROR_ROOT,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")
        self._mirror_root = mirror_root.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(HEDERA_ACCOUNT_RE.fullmatch(address.strip()))

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        account = ensure_valid_address(self, address, "<shard>.<realm>.<num> (e.g. 0.0.12345)")
        options = options or FetchOptions()

        async def fetch_page(next_link: str | None, limit: int) -> Page:
            if next_link:
                url = next_link if not next_link.startswith("/") else f"{self._mirror_root}{next_link}"
                params = None
            else:
                url = f"{self._base_url}/transactions"
                params = [
                    ("account.id", account),
                    ("limit", limit),
                    ("order", "asc"),
                    ("result", "success"),
                ]
                if options.from_date is not None:
                    params.append(("timestamp", f"gte:{options.from_date.timestamp():.9f}"))
                if options.to_date is not None:
                    params.append(("timestamp", f"lte:{options.to_date.timestamp():.9f}"))
            data = await fetch_json(
                self._http.client,
                url,
                params=params,
                error_label="Hedera Mirror Node API",
                retry=self._http.retry,
            )
            records = data.get("transactions") or []
            next_link = (data.get("links") or {}).get("next") if records else None
            return Page(records=records, next=next_link)

        collector = PageCollector(
            lambda raw: classify_hedera_transaction(raw, account),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: (raw.get("transaction_id"), raw.get("consensus_timestamp")),
        )
        await collector.consume(cursor_pages(fetch_page, options, page_size=PAGE_SIZE))
        return sort_transactions(collector.transactions)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{HEDERA_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
