"""
Polkadot adapter — Subscan API (polkadot.api.subscan.io).

An address's history is assembled from three Subscan sources, fetched
concurrently:
- /api/v2/scan/transfers              balance transfers (send / receive)
- /api/v2/scan/account/reward_slash   staking rewards (claim) and slashes
- /api/v2/scan/extrinsics             staking, nomination-pool and crowdloan
                                      calls the address signed

Subscan endpoints are POST with a JSON body and page by page number starting
at 0. Every response is wrapped in {code, message, data}; a non-zero code is
a provider error even on HTTP 200.

Design decisions:
- Transfer amounts arrive already scaled to DOT; fees and reward amounts are
  in planck (10^10 per DOT).
- The same extrinsic can surface in more than one source. Entries sharing a
  (hash, date) pair collapse to one, preferring the entry that carries an
  amount. Progress is reported after that merge, so streamed batches never
  carry a row the final result drops.
- The first failing source cancels the others.
- An API key is optional (higher rate limits); it goes in x-api-key.
"""

from __future__ import annotations

import re
from dataclasses import replace
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
from awakenfetch.exceptions import APIError
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, numbered_pages

SUBSCAN_API_BASE = "https://polkadot.api.subscan.io"
SUBSCAN_EXPLORER = "https://polkadot.subscan.io/extrinsic"
PAGE_SIZE = 100
DOT_DECIMALS = 10  # 1 DOT = 10^10 planck

# SS58 with the Polkadot prefix: starts with 1, 46-48 base58 chars
DOT_ADDRESS_RE = re.compile(r"^1[1-9A-HJ-NP-Za-km-z]{45,47}$")

STAKING_MODULES = ("staking", "nominationpools", "crowdloan")

# (module, function) → (type, notes); "{fn}" is the call name as reported
_CALL_TYPES: dict[tuple[str, str], tuple[str, str]] = {
    ("staking", "bond"): ("stake", "Staking: {fn}"),
    ("staking", "bond_extra"): ("stake", "Staking: {fn}"),
    ("staking", "nominate"): ("stake", "Staking: nominate"),
    ("staking", "rebond"): ("stake", "Staking: rebond"),
    ("staking", "unbond"): ("unstake", "Staking: unbond"),
    ("staking", "withdraw_unbonded"): ("unstake", "Staking: withdraw_unbonded"),
    ("staking", "chill"): ("unstake", "Staking: chill"),
    ("staking", "payout_stakers"): ("claim", "Staking: payout_stakers"),
    ("nominationpools", "join"): ("stake", "Nomination Pool: {fn}"),
    ("nominationpools", "bond_extra"): ("stake", "Nomination Pool: {fn}"),
    ("nominationpools", "unbond"): ("unstake", "Nomination Pool: {fn}"),
    ("nominationpools", "withdraw_unbonded"): ("unstake", "Nomination Pool: {fn}"),
    ("nominationpools", "claim_payout"): ("claim", "Nomination Pool: claim_payout"),
    ("crowdloan", "contribute"): ("send", "Crowdloan contribution"),
}

_MODULE_LABELS = {"staking": "Staking", "nominationpools": "Nomination Pool", "crowdloan": "Crowdloan"}


def classify_staking_call(module: str, function: str) -> tuple[str, str]:
    """Transaction type and notes for a staking-related extrinsic call."""
    known = _CALL_TYPES.get((module.lower(), function.lower()))
    if known is not None:
        tx_type, notes = known
        return tx_type, notes.format(fn=function)
    label = _MODULE_LABELS.get(module.lower(), module)
    return "other", f"{label}: {function}"


def _dot_fee(raw_fee: Any) -> dict[str, Any]:
    if not raw_fee:
        return {}
    fee = from_base_units(int(Decimal(str(raw_fee))), DOT_DECIMALS)
    return {"fee_amount": fee, "fee_currency": "DOT"} if fee > 0 else {}


def classify_transfer(raw: dict[str, Any], address: str) -> Transaction | None:
    if not raw.get("success", True):
        return None
    amount = Decimal(str(raw.get("amount") or "0"))
    if amount == 0:
        return None

    is_sender = raw.get("from") == address
    is_recipient = raw.get("to") == address
    symbol = raw.get("asset_symbol") or "DOT"
    common = {"date": from_unix_seconds(raw["block_timestamp"]), "tx_hash": raw.get("hash")}

    if is_sender and is_recipient:
        return Transaction(type="other", notes="Self-transfer", **_dot_fee(raw.get("fee")), **common)
    if is_sender:
        return Transaction(
            type="send",
            sent_quantity=amount,
            sent_currency=symbol,
            **_dot_fee(raw.get("fee")),
            **common,
        )
    if is_recipient:
        return Transaction(
            type="receive", received_quantity=amount, received_currency=symbol, **common
        )
    return None


def classify_reward_slash(raw: dict[str, Any], category: str) -> Transaction | None:
    amount = from_base_units(raw.get("amount") or 0, DOT_DECIMALS)
    if amount == 0:
        return None
    common = {
        "date": from_unix_seconds(raw["block_timestamp"]),
        "tx_hash": raw.get("extrinsic_index"),
    }
    era = raw.get("era")
    if category == "Reward":
        return Transaction(
            type="claim",
            received_quantity=amount,
            received_currency="DOT",
            notes=f"Staking reward (era {era})",
            **common,
        )
    return Transaction(
        type="send",
        sent_quantity=amount,
        sent_currency="DOT",
        notes=f"Staking slash (era {era})",
        tag="lost",
        **common,
    )


def classify_extrinsic(raw: dict[str, Any]) -> Transaction | None:
    if not raw.get("success", True):
        return None
    tx_type, notes = classify_staking_call(
        raw.get("call_module", ""), raw.get("call_module_function", "")
    )
    return Transaction(
        date=from_unix_seconds(raw["block_timestamp"]),
        type=tx_type,
        tx_hash=raw.get("extrinsic_hash"),
        notes=notes,
        **_dot_fee(raw.get("fee")),
    )


class SourceMerger:
    """
    Union of several sources' transactions, keyed by (hash, date).

    A row with an amount is reported through on_progress as soon as it
    arrives; the first one for a key wins. A row without an amount (a bare
    staking call) is held until every source is done, because a later row
    with an amount for the same key replaces it. Streamed rows therefore
    always equal the final result.
    """

    def __init__(self, options: FetchOptions) -> None:
        self._options = options
        self._kept: dict[tuple[str, Any], Transaction] = {}
        self._held: dict[tuple[str, Any], Transaction] = {}

    def add(self, batch: list[Transaction]) -> None:
        fresh: list[Transaction] = []
        for tx in batch:
            key = (tx.tx_hash or "", tx.date)
            if key in self._kept:
                continue
            if _has_amount(tx):
                self._held.pop(key, None)
                self._kept[key] = tx
                fresh.append(tx)
            elif key not in self._held:
                self._held[key] = tx
        self._options.report_progress(fresh)

    def finish(self) -> list[Transaction]:
        held = list(self._held.values())
        self._held.clear()
        self._options.report_progress(held)
        return list(self._kept.values()) + held


def _has_amount(tx: Transaction) -> bool:
    return tx.sent_quantity is not None or tx.received_quantity is not None


class PolkadotAdapter:
    """Polkadot (DOT) via Subscan. SUBSCAN_API_KEY is optional."""

    chain_id = "polkadot"
    chain_name = "Polkadot"
    ticker = "DOT"
    perps_capable = False

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = SUBSCAN_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(DOT_ADDRESS_RE.fullmatch(address.strip()))

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, 'SS58 starting with "1" (46-48 characters)'
        )
        options = options or FetchOptions()
        merger = SourceMerger(options)
        source_options = replace(options, on_progress=merger.add)

        def collector(classify) -> PageCollector:
            return PageCollector(classify, source_options, label=self.chain_id)

        async def fetch_transfers() -> None:
            await collector(lambda raw: classify_transfer(raw, address)).consume(
                self._pages(
                    "/api/v2/scan/transfers",
                    {"address": address, "order": "asc", "direction": "all", "success": True},
                    "transfers",
                    options,
                )
            )

        async def fetch_rewards_and_slashes() -> None:
            for category in ("Reward", "Slash"):
                await collector(lambda raw, category=category: classify_reward_slash(raw, category)).consume(
                    self._pages(
                        "/api/v2/scan/account/reward_slash",
                        {"address": address, "category": category, "is_stash": True},
                        "list",
                        options,
                    )
                )

        async def fetch_staking_extrinsics() -> None:
            extrinsics = collector(classify_extrinsic)
            for module in STAKING_MODULES:
                await extrinsics.consume(
                    self._pages(
                        "/api/v2/scan/extrinsics",
                        {"address": address, "order": "asc", "module": module, "success": True},
                        "extrinsics",
                        options,
                    )
                )

        await run_concurrently(fetch_transfers(), fetch_rewards_and_slashes(), fetch_staking_extrinsics())
        return sort_transactions(merger.finish())

    def _pages(self, endpoint: str, body: dict[str, Any], list_key: str, options: FetchOptions):
        async def fetch_page(page_no: int, row: int) -> Page:
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}{endpoint}",
                method="POST",
                json_body={**body, "row": row, "page": page_no},
                headers=self._headers(),
                error_label="Subscan API",
                retry=self._http.retry,
            )
            if data.get("code", 0) != 0:
                raise APIError(
                    f"Subscan API: {data.get('message') or 'request failed'} (code {data.get('code')})",
                    details={"endpoint": endpoint, "code": data.get("code")},
                )
            payload = data.get("data") or {}
            records = payload.get(list_key) or []
            return Page(
                records=records,
                next=page_no + 1 if len(records) >= row else None,
                total=payload.get("count"),
            )

        return numbered_pages(fetch_page, options, page_size=PAGE_SIZE, first_page=0)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{SUBSCAN_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
