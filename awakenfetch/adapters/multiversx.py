"""
MultiversX adapter — api.multiversx.com REST API.

Account-model chain. Each transaction has a sender, a receiver, an EGLD
value and, for smart-contract calls, a function name plus the API's own
"action" interpretation. Classification tries, in order:

1. known staking functions (delegate, unDelegate, claimRewards, ...)
2. calls into a system staking contract (erd1qqq…)
3. the API action (stake category, swap, add/remove liquidity)
4. known swap functions, then ESDT token transfer functions
5. plain direction: send / receive / self-transfer

Design decisions:
- Offset pagination through `from`/`size` (50 per page), failed
  transactions filtered server side with status=success.
- The public gateway rate-limits aggressively; requests go through a
  2-per-second token bucket.
- The fee is only charged to the sender.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

import httpx

from awakenfetch.adapters.base import HTTPResources, ensure_valid_address, sort_transactions
from awakenfetch.classify import from_base_units, from_unix_seconds
from awakenfetch.http import DEFAULT_TIMEOUT, RequestThrottle, RetryPolicy, fetch_json
from awakenfetch.models import FetchOptions, Transaction
from awakenfetch.output import generate_standard_csv
from awakenfetch.pagination import Page, PageCollector, offset_pages

MULTIVERSX_API_BASE = "https://api.multiversx.com"
MULTIVERSX_EXPLORER = "https://explorer.multiversx.com/transactions"
PAGE_SIZE = 50
EGLD_DECIMALS = 18

EGLD_ADDRESS_RE = re.compile(r"^erd1[a-z0-9]{58}$")

STAKING_CONTRACT_PREFIX = "erd1qqqqqqqqqqqqqqqpqqqqqqqqqqqqqqqqqqqqqqqqqqqqqq"
TOKEN_TRANSFER_FUNCTIONS = {"ESDTTransfer", "ESDTNFTTransfer", "MultiESDTNFTTransfer"}
SWAP_FUNCTIONS = {
    "swapTokensFixedInput",
    "swapTokensFixedOutput",
    "swapNoFeeAndForward",
    "swap",
    "exchange",
}


def classify_call(raw: dict[str, Any], address: str) -> tuple[str, str | None]:
    """(type, notes) for one MultiversX transaction, seen from address."""
    fn = raw.get("function") or ""
    sender = (raw.get("sender") or "").lower()
    receiver = (raw.get("receiver") or "").lower()
    is_sender, is_receiver = sender == address, receiver == address
    short_receiver = f"{raw.get('receiver', '')[:16]}…"

    if fn == "delegate":
        return "stake", f"Delegate to {short_receiver}"
    if fn in ("unDelegate", "withdraw"):
        return "unstake", f"Undelegate from {short_receiver}"
    if fn in ("claimRewards", "reDelegateRewards"):
        return "claim", f"Claim rewards from {short_receiver}"

    if receiver.startswith(STAKING_CONTRACT_PREFIX):
        return ("stake" if is_sender else "claim"), "Staking contract interaction"

    action = raw.get("action") or {}
    if action:
        name = (action.get("name") or "").lower()
        category = (action.get("category") or "").lower()
        description = action.get("description")
        if category == "stake" or "delegate" in name:
            if "undelegate" in name or "withdraw" in name:
                return "unstake", description or "Unstake"
            if "claim" in name or "redelegate" in name:
                return "claim", description or "Claim rewards"
            return "stake", description or "Stake"
        if fn in SWAP_FUNCTIONS or "swap" in name:
            return "trade", description or "Swap"
        if "addliquidity" in name or "addinitialliquidity" in name:
            return "lp_add", description or "Add liquidity"
        if "removeliquidity" in name:
            return "lp_remove", description or "Remove liquidity"

    if fn in SWAP_FUNCTIONS:
        return "trade", f"Swap via {short_receiver}"
    if fn in TOKEN_TRANSFER_FUNCTIONS:
        if is_sender and not is_receiver:
            return "send", f"Token transfer to {short_receiver}"
        if is_receiver and not is_sender:
            return "receive", f"Token transfer from {raw.get('sender', '')[:16]}…"
    if fn and not is_sender and not is_receiver:
        return "other", f"Contract call: {fn}"
    if is_sender and is_receiver:
        return "send", "Self-transfer"
    if is_sender:
        return "send", None
    if is_receiver:
        return "receive", None
    return "other", None


def classify_multiversx_transaction(raw: dict[str, Any], address: str) -> Transaction | None:
    if raw.get("status") != "success":
        return None
    is_sender = (raw.get("sender") or "").lower() == address
    is_receiver = (raw.get("receiver") or "").lower() == address
    if not is_sender and not is_receiver:
        return None

    tx_type, notes = classify_call(raw, address)
    value = from_base_units(raw.get("value") or 0, EGLD_DECIMALS)
    fields: dict[str, Any] = {}

    fee = from_base_units(raw.get("fee") or 0, EGLD_DECIMALS)
    if is_sender and fee > 0:
        fields.update(fee_amount=fee, fee_currency="EGLD")

    outgoing = {"send": True, "stake": True, "receive": False, "unstake": False, "claim": False}
    if value > 0:
        direction = outgoing.get(tx_type)
        if direction is True or (direction is None and is_sender):
            fields.update(sent_quantity=value, sent_currency="EGLD")
        if direction is False or (direction is None and is_receiver):
            fields.update(received_quantity=value, received_currency="EGLD")
    if tx_type == "stake":
        fields["tag"] = "staked"
    elif tx_type == "unstake":
        fields["tag"] = "unstaked"

    return Transaction(
        date=from_unix_seconds(raw["timestamp"]),
        type=tx_type,
        tx_hash=raw.get("txHash"),
        notes=notes,
        **fields,
    )


class MultiversXAdapter:
    """MultiversX (EGLD) via the public API. No key required."""

    chain_id = "multiversx"
    chain_name = "MultiversX"
    ticker = "EGLD"
    perps_capable = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = MULTIVERSX_API_BASE,
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._http = HTTPResources(client, retry, timeout)
        self._base_url = base_url.rstrip("/")
        self._throttle = throttle or RequestThrottle(calls=2, period=1.0)

    @property
    def enabled(self) -> bool:
        return True

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(
            EGLD_ADDRESS_RE.fullmatch(address.strip().lower())
        )

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        address = ensure_valid_address(
            self, address, "erd1<58 lowercase alphanumeric chars>"
        ).lower()
        options = options or FetchOptions()

        params: dict[str, Any] = {
            "order": "asc",
            "status": "success",
            "withOperations": "false",
            "withLogs": "false",
            "withScResults": "false",
        }
        if options.from_ts is not None:
            params["after"] = options.from_ts
        if options.to_ts is not None:
            params["before"] = options.to_ts

        async def fetch_page(offset: int, size: int) -> Page:
            data = await fetch_json(
                self._http.client,
                f"{self._base_url}/accounts/{address}/transactions",
                params={**params, "from": offset, "size": size},
                error_label="MultiversX API",
                retry=self._http.retry,
                throttle=self._throttle,
            )
            return Page(records=data if isinstance(data, list) else [])

        collector = PageCollector(
            lambda raw: classify_multiversx_transaction(raw, address),
            options,
            label=self.chain_id,
            dedupe_key=lambda raw: raw["txHash"],
        )
        await collector.consume(offset_pages(fetch_page, options, page_size=PAGE_SIZE))
        return sort_transactions(collector.transactions)

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        return generate_standard_csv(transactions)

    def get_explorer_url(self, tx_hash: str) -> str:
        return f"{MULTIVERSX_EXPLORER}/{tx_hash}"

    async def close(self) -> None:
        await self._http.close()
