"""
UTXO netting: infer one address's economic effect from a transaction's
resolved inputs and outputs.

For the target address, the value it owns across inputs and across outputs
is summed per asset (native coin plus each token id). The difference per
asset says which assets left the wallet and which arrived:

  only arrivals                      → receive
  only departures                    → send
  departures and arrivals            → trade (extra legs go to additional_*)
  nothing moved beyond the fee       → other ("Fee-only transaction")
  native change only, came back even
  or larger, no token moved          → other ("Self-transfer")
  coinbase / reward                  → receive ("Mining reward")

The fee (sum of all input value minus sum of all output value) is charged to
the address only when it is among the spenders, and is subtracted from the
native amount it sent. Amounts stay integers in the smallest unit until the
final Decimal conversion, so no precision is lost.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Mapping

from awakenfetch.classify import from_base_units
from awakenfetch.models import AssetAmount, Transaction

NATIVE = ""  # asset key for the chain's native coin


@dataclass
class UtxoEntry:
    """One input or output box, values in smallest units."""

    address: str | None
    value: int
    assets: dict[str, int] = field(default_factory=dict)   # token id → raw amount


@dataclass
class UtxoTransaction:
    """A UTXO transaction with every input already resolved to its owner."""

    tx_hash: str
    date: datetime
    inputs: list[UtxoEntry]
    outputs: list[UtxoEntry]
    coinbase: bool = False


@dataclass
class AssetUnit:
    """Display symbol and decimal count for an asset."""

    symbol: str
    decimals: int

    def to_decimal(self, raw: int) -> Decimal:
        return from_base_units(raw, self.decimals)


def net_utxo_transaction(
    tx: UtxoTransaction,
    address: str,
    native: AssetUnit,
    tokens: Mapping[str, AssetUnit] | None = None,
) -> Transaction | None:
    """
    Classify tx from address's point of view.

    Returns None when the address owns none of the inputs or outputs.
    """
    tokens = tokens or {}
    owned_in = _owned_totals(tx.inputs, address)
    owned_out = _owned_totals(tx.outputs, address)
    if owned_in is None and owned_out is None:
        return None
    owned_in = owned_in or {}
    owned_out = owned_out or {}

    if tx.coinbase:
        reward = owned_out.get(NATIVE, 0)
        if reward <= 0:
            return None
        return Transaction(
            date=tx.date,
            type="receive",
            received_quantity=native.to_decimal(reward),
            received_currency=native.symbol,
            tx_hash=tx.tx_hash,
            notes="Mining reward",
        )

    spender = any(amount > 0 for amount in owned_in.values())
    fee = 0
    if spender:
        fee = max(0, sum(e.value for e in tx.inputs) - sum(e.value for e in tx.outputs))

    sent: list[AssetAmount] = []
    received: list[AssetAmount] = []

    native_net = owned_in.get(NATIVE, 0) - owned_out.get(NATIVE, 0)
    if native_net - fee > 0:
        sent.append(AssetAmount(native.to_decimal(native_net - fee), native.symbol))
    elif native_net < 0:
        received.append(AssetAmount(native.to_decimal(-native_net), native.symbol))

    token_moved = False
    for token_id in _token_ids(owned_in, owned_out):
        delta = owned_in.get(token_id, 0) - owned_out.get(token_id, 0)
        if delta == 0:
            continue
        token_moved = True
        unit = tokens.get(token_id) or AssetUnit(token_id[:8].upper(), 0)
        if delta > 0:
            sent.append(AssetAmount(unit.to_decimal(delta), unit.symbol))
        else:
            received.append(AssetAmount(unit.to_decimal(-delta), unit.symbol))

    result = Transaction(date=tx.date, type="other", tx_hash=tx.tx_hash)
    if spender and fee > 0:
        result.fee_amount = native.to_decimal(fee)
        result.fee_currency = native.symbol

    if sent and received:
        result.type = "trade"
    elif sent:
        result.type = "send"
    elif received and spender and not token_moved:
        # Native came back even or larger and nothing else moved.
        result.notes = "Self-transfer"
    elif received:
        result.type = "receive"
    else:
        result.notes = "Fee-only transaction" if fee > 0 else "Self-transfer"

    if sent:
        result.sent_quantity, result.sent_currency = sent[0].quantity, sent[0].currency
        result.additional_sent = sent[1:]
    if received:
        result.received_quantity = received[0].quantity
        result.received_currency = received[0].currency
        result.additional_received = received[1:]
    return result


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _owned_totals(entries: list[UtxoEntry], address: str) -> dict[str, int] | None:
    """Per-asset totals of the entries owned by address; None if it owns none."""
    totals: dict[str, int] | None = None
    for entry in entries:
        if entry.address != address:
            continue
        if totals is None:
            totals = {}
        totals[NATIVE] = totals.get(NATIVE, 0) + entry.value
        for token_id, amount in entry.assets.items():
            totals[token_id] = totals.get(token_id, 0) + amount
    return totals


def _token_ids(*totals: dict[str, int]) -> list[str]:
    seen: dict[str, None] = {}
    for mapping in totals:
        for key in mapping:
            if key != NATIVE:
                seen.setdefault(key)
    return list(seen)
