"""
Shared data models for awakenfetch.

These dataclasses are the canonical data shapes used across all modules:
classifiers produce them, adapters sort and return them, output renders them.
Using dataclasses (not Pydantic) for zero-overhead in hot paths.

Quantities are Decimal magnitudes (never negative); direction lives in which
field holds the value. PerpTransaction.pnl is the only signed amount.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

TRANSACTION_TYPES = (
    "send",
    "receive",
    "trade",
    "lp_add",
    "lp_remove",
    "stake",
    "unstake",
    "claim",
    "bridge",
    "approval",
    "other",
)

PERP_TAGS = ("open_position", "close_position", "funding_payment")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


@dataclass
class AssetAmount:
    """One extra leg of a multi-asset transaction."""

    quantity: Decimal
    currency: str
    fiat_amount: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "quantity": self.quantity,
            "currency": self.currency,
            "fiat_amount": self.fiat_amount,
        }


@dataclass
class Transaction:
    """A single classified transaction in the canonical (Awaken) shape."""

    date: datetime
    type: str                               # one of TRANSACTION_TYPES
    sent_quantity: Decimal | None = None
    sent_currency: str | None = None
    sent_fiat_amount: Decimal | None = None
    received_quantity: Decimal | None = None
    received_currency: str | None = None
    received_fiat_amount: Decimal | None = None
    fee_amount: Decimal | None = None
    fee_currency: str | None = None
    tx_hash: str | None = None
    notes: str | None = None
    tag: str | None = None                  # free-text sub-classification ("staked")
    additional_sent: list[AssetAmount] = field(default_factory=list)
    additional_received: list[AssetAmount] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in TRANSACTION_TYPES:
            raise ValueError(f"Unknown transaction type: {self.type!r}")
        self.date = _as_utc(self.date)

    def reclassify(self, new_type: str) -> None:
        """Reassign the type after construction (user-driven correction)."""
        if new_type not in TRANSACTION_TYPES:
            raise ValueError(f"Unknown transaction type: {new_type!r}")
        self.type = new_type

    @property
    def is_multi_asset(self) -> bool:
        return bool(self.additional_sent or self.additional_received)

    def has_economic_content(self) -> bool:
        """True when any quantity pair, extra leg or fee is populated."""
        return any(
            value is not None
            for value in (self.sent_quantity, self.received_quantity, self.fee_amount)
        ) or self.is_multi_asset

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": _iso(self.date),
            "type": self.type,
            "sent_quantity": self.sent_quantity,
            "sent_currency": self.sent_currency,
            "sent_fiat_amount": self.sent_fiat_amount,
            "received_quantity": self.received_quantity,
            "received_currency": self.received_currency,
            "received_fiat_amount": self.received_fiat_amount,
            "fee_amount": self.fee_amount,
            "fee_currency": self.fee_currency,
            "tx_hash": self.tx_hash,
            "notes": self.notes,
            "tag": self.tag,
            "additional_sent": [a.to_dict() for a in self.additional_sent],
            "additional_received": [a.to_dict() for a in self.additional_received],
        }


@dataclass
class PerpTransaction:
    """A perpetual-futures event: position open/close or funding payment."""

    date: datetime
    asset: str
    amount: Decimal
    pnl: Decimal
    payment_token: str
    tag: str                # one of PERP_TAGS
    fee: Decimal | None = None
    notes: str = ""
    tx_hash: str | None = None

    def __post_init__(self) -> None:
        if self.tag not in PERP_TAGS:
            raise ValueError(f"Unknown perp tag: {self.tag!r}")
        self.date = _as_utc(self.date)

    def has_economic_content(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": _iso(self.date),
            "asset": self.asset,
            "amount": self.amount,
            "fee": self.fee,
            "pnl": self.pnl,
            "payment_token": self.payment_token,
            "notes": self.notes,
            "tx_hash": self.tx_hash,
            "tag": self.tag,
        }


@dataclass
class FetchOptions:
    """
    Caller-supplied knobs for one fetch.

    from_date/to_date are inclusive. cursor is a resume point whose meaning
    depends on the adapter's pagination style (offset, page number or opaque
    token); limit overrides the page size. Setting cancel_event stops paging
    before the next request and yields a partial result.
    """

    from_date: datetime | None = None
    to_date: datetime | None = None
    cursor: str | int | None = None
    limit: int | None = None
    on_progress: Callable[[list[Any]], None] | None = None
    on_estimated_total: Callable[[int], None] | None = None
    cancel_event: asyncio.Event | None = None

    def __post_init__(self) -> None:
        if self.from_date is not None:
            self.from_date = _as_utc(self.from_date)
        if self.to_date is not None:
            self.to_date = _as_utc(self.to_date)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    @property
    def from_ts(self) -> int | None:
        return int(self.from_date.timestamp()) if self.from_date else None

    @property
    def to_ts(self) -> int | None:
        return int(self.to_date.timestamp()) if self.to_date else None

    def in_range(self, when: datetime) -> bool:
        if self.from_date is not None and when < self.from_date:
            return False
        if self.to_date is not None and when > self.to_date:
            return False
        return True

    def report_progress(self, batch: list[Any]) -> None:
        if batch and self.on_progress is not None:
            self.on_progress(batch)

    def report_estimated_total(self, total: int) -> None:
        if self.on_estimated_total is not None:
            self.on_estimated_total(total)


@dataclass
class ChainInfo:
    """Registry listing entry for one adapter."""

    chain_id: str
    chain_name: str
    ticker: str
    enabled: bool = True
    perps_capable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "ticker": self.ticker,
            "enabled": self.enabled,
            "perps_capable": self.perps_capable,
        }
