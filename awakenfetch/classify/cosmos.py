"""
Message classification for Cosmos-SDK chains.

A transaction is classified by the type URL of its first message. A
dispatch table maps each known type to a mapper that reads the message
fields and, where the settled amount is not on the message (reward
withdrawals, swaps, pool joins), falls back to the transaction's events.

Rules shared by every Cosmos chain:
- a transaction with a non-zero result code failed on chain and is skipped;
- an unknown message type becomes type "other" with the type URL in notes;
- the fee is only charged to the address when it initiated the transaction.

Chain adapters build a MessageClassifier with their own DenomTable and add
chain-specific mappers (Osmosis pools, Injective contract swaps).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable

from awakenfetch.classify import from_base_units, parse_iso_datetime
from awakenfetch.models import Transaction

MSG_SEND = "/cosmos.bank.v1beta1.MsgSend"
MSG_MULTI_SEND = "/cosmos.bank.v1beta1.MsgMultiSend"
MSG_DELEGATE = "/cosmos.staking.v1beta1.MsgDelegate"
MSG_UNDELEGATE = "/cosmos.staking.v1beta1.MsgUndelegate"
MSG_REDELEGATE = "/cosmos.staking.v1beta1.MsgBeginRedelegate"
MSG_WITHDRAW_REWARDS = "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward"
MSG_IBC_TRANSFER = "/ibc.applications.transfer.v1.MsgTransfer"
MSG_AUTHZ_EXEC = "/cosmos.authz.v1beta1.MsgExec"

_COIN_RE = re.compile(r"^(\d+)(.+)$")


# ──────────────────────────────────────────────────────────────
# Normalized transaction shape
# ──────────────────────────────────────────────────────────────


@dataclass
class Coin:
    denom: str
    amount: int


@dataclass
class CosmosEvent:
    type: str
    attributes: list[tuple[str, str]] = field(default_factory=list)

    def get(self, key: str) -> str | None:
        for attr_key, value in self.attributes:
            if attr_key == key:
                return value
        return None


@dataclass
class CosmosMessage:
    type: str
    value: dict[str, Any]


@dataclass
class CosmosTx:
    """One tx_response from the LCD /cosmos/tx/v1beta1/txs endpoint."""

    tx_hash: str
    date: datetime
    code: int
    messages: list[CosmosMessage]
    fee: Coin | None = None
    events: list[CosmosEvent] = field(default_factory=list)

    @classmethod
    def from_lcd(cls, raw: dict[str, Any]) -> CosmosTx:
        body = raw["tx"]["body"]
        messages = [
            CosmosMessage(
                type=msg.get("@type", ""),
                value={k: v for k, v in msg.items() if k != "@type"},
            )
            for msg in body.get("messages") or []
        ]

        fee = None
        fee_coins = ((raw["tx"].get("auth_info") or {}).get("fee") or {}).get("amount") or []
        if fee_coins:
            fee = Coin(fee_coins[0]["denom"], int(fee_coins[0]["amount"]))

        # Per-message logs carry richer events than the flattened top-level list.
        raw_events: list[dict[str, Any]] = []
        for log in raw.get("logs") or []:
            raw_events.extend(log.get("events") or [])
        if not raw_events:
            raw_events = raw.get("events") or []
        events = [
            CosmosEvent(
                type=event.get("type", ""),
                attributes=[
                    (attr.get("key", ""), attr.get("value") or "")
                    for attr in event.get("attributes") or []
                ],
            )
            for event in raw_events
        ]

        return cls(
            tx_hash=raw["txhash"],
            date=parse_iso_datetime(raw["timestamp"]),
            code=int(raw.get("code") or 0),
            messages=messages,
            fee=fee,
            events=events,
        )

    def attribute_values(self, event_type: str, key: str) -> list[str]:
        return [
            value
            for event in self.events
            if event.type == event_type
            for attr_key, value in event.attributes
            if attr_key == key and value
        ]


def parse_coin_string(value: str) -> Coin | None:
    """Parse "1000uosmo" (or the first entry of "1a,2b") into a Coin."""
    match = _COIN_RE.match(value.split(",")[0].strip())
    if not match:
        return None
    return Coin(denom=match.group(2), amount=int(match.group(1)))


# ──────────────────────────────────────────────────────────────
# Denominations
# ──────────────────────────────────────────────────────────────


@dataclass
class DenomTable:
    """
    Symbol and decimals for each denom a chain may report.

    decimal_rules are (regex, decimals) pairs tried in order against the
    lowercased denom; unmatched denoms use default_decimals.
    """

    native_denom: str
    native_symbol: str
    native_decimals: int
    default_decimals: int = 6
    aliases: dict[str, str] = field(default_factory=dict)
    decimal_rules: list[tuple[re.Pattern[str], int]] = field(default_factory=list)
    strip_micro_prefix: bool = False

    def symbol(self, denom: str) -> str:
        lowered = denom.lower()
        if denom == self.native_denom:
            return self.native_symbol
        if lowered in self.aliases:
            return self.aliases[lowered]
        if denom.startswith("gamm/pool/"):
            return f"GAMM-{denom[len('gamm/pool/'):]}"
        if denom.startswith("ibc/"):
            return f"IBC-{denom[4:10].upper()}"
        if denom.startswith("peggy0x"):
            return f"PEGGY-{denom[7:13].upper()}"
        if denom.startswith("factory/"):
            return denom.rsplit("/", 1)[-1].upper()
        if self.strip_micro_prefix and denom.startswith("u") and len(denom) > 1:
            return denom[1:].upper()
        return denom.upper()

    def decimals(self, denom: str) -> int:
        if denom == self.native_denom:
            return self.native_decimals
        lowered = denom.lower()
        for pattern, decimals in self.decimal_rules:
            if pattern.search(lowered):
                return decimals
        return self.default_decimals

    def quantity(self, coin: Coin) -> Decimal:
        return from_base_units(coin.amount, self.decimals(coin.denom))


# ──────────────────────────────────────────────────────────────
# Classifier
# ──────────────────────────────────────────────────────────────


@dataclass
class ClassifyContext:
    """What a mapper needs beyond the transaction itself."""

    address: str
    denoms: DenomTable

    def is_self(self, other: Any) -> bool:
        return isinstance(other, str) and other.strip().lower() == self.address

    def coin(self, raw: Any) -> Coin | None:
        """Coin from a message field ({denom, amount}); None when absent or zero."""
        if not isinstance(raw, dict) or not raw.get("denom"):
            return None
        amount = int(raw.get("amount") or 0)
        if amount <= 0:
            return None
        return Coin(raw["denom"], amount)

    def amount_fields(self, prefix: str, coin: Coin | None) -> dict[str, Any]:
        """{prefix_quantity, prefix_currency} for a Transaction, or {} when coin is None."""
        if coin is None:
            return {}
        return {
            f"{prefix}_quantity": self.denoms.quantity(coin),
            f"{prefix}_currency": self.denoms.symbol(coin.denom),
        }

    def fee_fields(self, tx: CosmosTx) -> dict[str, Any]:
        if tx.fee is None or tx.fee.amount <= 0:
            return {}
        return {
            "fee_amount": self.denoms.quantity(tx.fee),
            "fee_currency": self.denoms.symbol(tx.fee.denom),
        }


Mapper = Callable[[ClassifyContext, CosmosTx, CosmosMessage], "Transaction | None"]


class MessageClassifier:
    """Dispatches a Cosmos transaction to the mapper for its first message type."""

    def __init__(self, denoms: DenomTable, mappers: dict[str, Mapper] | None = None) -> None:
        self._denoms = denoms
        self._mappers: dict[str, Mapper] = dict(COMMON_MAPPERS)
        if mappers:
            self._mappers.update(mappers)

    def register(self, message_type: str, mapper: Mapper) -> None:
        self._mappers[message_type] = mapper

    def classify(self, tx: CosmosTx, address: str) -> Transaction | None:
        if tx.code != 0 or not tx.messages:
            return None
        ctx = ClassifyContext(address=address.strip().lower(), denoms=self._denoms)
        msg = tx.messages[0]
        mapper = self._mappers.get(msg.type)
        if mapper is None:
            return map_unknown(ctx, tx, msg)
        return mapper(ctx, tx, msg)


# ──────────────────────────────────────────────────────────────
# Mappers common to every Cosmos-SDK chain
# ──────────────────────────────────────────────────────────────


def _short(value: Any, length: int = 10) -> str:
    return f"{str(value or '')[:length]}…"


def map_send(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction | None:
    amounts = msg.value.get("amount") or []
    coin = ctx.coin(amounts[0]) if amounts else None
    if coin is None:
        return None
    sender = msg.value.get("from_address", "")
    recipient = msg.value.get("to_address", "")
    is_sender, is_recipient = ctx.is_self(sender), ctx.is_self(recipient)

    if is_sender and is_recipient:
        return Transaction(
            date=tx.date,
            type="send",
            **ctx.amount_fields("sent", coin),
            **ctx.amount_fields("received", coin),
            **ctx.fee_fields(tx),
            tx_hash=tx.tx_hash,
            notes="Self-transfer",
        )
    if is_sender:
        return Transaction(
            date=tx.date,
            type="send",
            **ctx.amount_fields("sent", coin),
            **ctx.fee_fields(tx),
            tx_hash=tx.tx_hash,
            notes=f"Transfer to {_short(recipient)}",
        )
    if is_recipient:
        return Transaction(
            date=tx.date,
            type="receive",
            **ctx.amount_fields("received", coin),
            tx_hash=tx.tx_hash,
            notes=f"Transfer from {_short(sender)}",
        )
    return None


def map_delegate(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    return Transaction(
        date=tx.date,
        type="stake",
        **ctx.amount_fields("sent", ctx.coin(msg.value.get("amount"))),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Delegate to {_short(msg.value.get('validator_address'), 16)}",
        tag="staked",
    )


def map_undelegate(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    return Transaction(
        date=tx.date,
        type="unstake",
        **ctx.amount_fields("received", ctx.coin(msg.value.get("amount"))),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Undelegate from {_short(msg.value.get('validator_address'), 16)}",
        tag="unstaked",
    )


def map_redelegate(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    return Transaction(
        date=tx.date,
        type="stake",
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Redelegate to {_short(msg.value.get('validator_dst_address'), 16)}",
        tag="staked",
    )


def map_withdraw_rewards(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    reward = None
    for value in tx.attribute_values("withdraw_rewards", "amount"):
        reward = parse_coin_string(value)
        if reward is not None and reward.amount > 0:
            break
        reward = None
    return Transaction(
        date=tx.date,
        type="claim",
        **ctx.amount_fields("received", reward),
        **ctx.fee_fields(tx),
        tx_hash=tx.tx_hash,
        notes=f"Claim rewards from {_short(msg.value.get('validator_address'), 16)}",
    )


def map_ibc_transfer(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    coin = ctx.coin(msg.value.get("token"))
    sender = msg.value.get("sender", "")
    receiver = msg.value.get("receiver", "")
    if ctx.is_self(sender):
        return Transaction(
            date=tx.date,
            type="bridge",
            **ctx.amount_fields("sent", coin),
            **ctx.fee_fields(tx),
            tx_hash=tx.tx_hash,
            notes=f"IBC transfer to {_short(receiver)}",
        )
    return Transaction(
        date=tx.date,
        type="bridge",
        **ctx.amount_fields("received", coin),
        tx_hash=tx.tx_hash,
        notes=f"IBC transfer from {_short(sender)}",
    )


def _map_generic(notes: str) -> Mapper:
    def mapper(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
        return Transaction(
            date=tx.date, type="other", **ctx.fee_fields(tx), tx_hash=tx.tx_hash, notes=notes
        )

    return mapper


def map_unknown(ctx: ClassifyContext, tx: CosmosTx, msg: CosmosMessage) -> Transaction:
    return _map_generic(f"{msg.type or 'Unknown'} transaction")(ctx, tx, msg)


COMMON_MAPPERS: dict[str, Mapper] = {
    MSG_SEND: map_send,
    MSG_DELEGATE: map_delegate,
    MSG_UNDELEGATE: map_undelegate,
    MSG_REDELEGATE: map_redelegate,
    MSG_WITHDRAW_REWARDS: map_withdraw_rewards,
    MSG_IBC_TRANSFER: map_ibc_transfer,
    MSG_MULTI_SEND: _map_generic("Multi-send transaction"),
    MSG_AUTHZ_EXEC: _map_generic("Authz exec"),
}
