"""Output rendering for awakenfetch.

CSV engine (the Awaken Tax import layouts) plus the json / jsonl / table
views used by the CLI.

CSV rules:
- Standard layout: fixed 12-column header, one row per transaction.
- Multi-asset layout: used for the whole file as soon as any transaction
  has additional legs; slot groups 1..N of six columns replace the single
  received/sent block. N is the widest leg count among multi-asset rows.
- Perpetuals layout: fixed 9-column header.
- Numbers: at most 8 decimals, trailing zeros stripped, never scientific
  notation, always the absolute value (P&L keeps its sign).
- Dates: MM/DD/YYYY HH:MM:SS in UTC.
- Rows joined with "\\n", no trailing newline.
- Rendering never raises on a malformed field; it renders an empty cell.

All functions return strings. The caller writes to stdout or a file.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table

from awakenfetch.models import AssetAmount, ChainInfo, PerpTransaction, Transaction

VALID_FORMATS = {"csv", "json", "jsonl", "table"}

STANDARD_CSV_COLUMNS = [
    "Date",
    "Received Quantity",
    "Received Currency",
    "Received Fiat Amount",
    "Sent Quantity",
    "Sent Currency",
    "Sent Fiat Amount",
    "Fee Amount",
    "Fee Currency",
    "Transaction Hash",
    "Notes",
    "Tag",
]

TRAILING_CSV_COLUMNS = ["Fee Amount", "Fee Currency", "Transaction Hash", "Notes", "Tag"]

PERP_CSV_COLUMNS = [
    "Date",
    "Asset",
    "Amount",
    "Fee",
    "P&L",
    "Payment Token",
    "Notes",
    "Transaction Hash",
    "Tag",
]

_EIGHT_PLACES = Decimal("0.00000001")
# Wide enough that quantize never overflows on 18-decimal token amounts
_WIDE_CONTEXT = Context(prec=80)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal values.

    Decimals are written as fixed-notation strings so 18-decimal amounts
    survive the round trip digit for digit.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return format(obj, "f")
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


# ── Cell formatting ──────────────────────────────────────────────────────────


def format_quantity(value: Any) -> str:
    """Absolute value, up to 8 decimals, fixed notation. "" when missing or not a number."""
    number = _to_decimal(value)
    if number is None:
        return ""
    return _fixed(abs(number))


def format_pnl(value: Any) -> str:
    """Like format_quantity but keeps the sign."""
    number = _to_decimal(value)
    if number is None:
        return ""
    return _fixed(number)


def format_date(value: Any) -> str:
    if not isinstance(value, datetime):
        return ""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%m/%d/%Y %H:%M:%S")


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _fixed(number: Decimal) -> str:
    text = format(number.quantize(_EIGHT_PLACES, rounding=ROUND_HALF_UP, context=_WIDE_CONTEXT), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# ── CSV ──────────────────────────────────────────────────────────────────────


def _write_rows(rows: list[list[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerows(rows)
    return buf.getvalue()[:-1] if rows else ""


def generate_standard_csv(transactions: Sequence[Transaction]) -> str:
    """
    Render transactions in the Awaken standard layout.

    Switches the whole file to the multi-asset layout when any transaction
    carries additional legs.
    """
    multi = [tx for tx in transactions if getattr(tx, "is_multi_asset", False)]
    if multi:
        return _generate_multi_asset_csv(transactions, multi)

    rows = [list(STANDARD_CSV_COLUMNS)]
    for tx in transactions:
        rows.append(
            [
                format_date(getattr(tx, "date", None)),
                format_quantity(tx.received_quantity),
                _text(tx.received_currency),
                format_quantity(tx.received_fiat_amount),
                format_quantity(tx.sent_quantity),
                _text(tx.sent_currency),
                format_quantity(tx.sent_fiat_amount),
                *_trailing_cells(tx),
            ]
        )
    return _write_rows(rows)


def _received_legs(tx: Transaction) -> list[AssetAmount]:
    legs = []
    if tx.received_quantity is not None or tx.received_currency:
        legs.append(
            AssetAmount(tx.received_quantity, tx.received_currency or "", tx.received_fiat_amount)
        )
    return legs + list(tx.additional_received)


def _sent_legs(tx: Transaction) -> list[AssetAmount]:
    legs = []
    if tx.sent_quantity is not None or tx.sent_currency:
        legs.append(AssetAmount(tx.sent_quantity, tx.sent_currency or "", tx.sent_fiat_amount))
    return legs + list(tx.additional_sent)


def multi_asset_slot_count(transactions: Sequence[Transaction]) -> int:
    """Number of numbered slot groups needed for the multi-asset layout."""
    slots = 1
    for tx in transactions:
        if tx.is_multi_asset:
            slots = max(slots, len(_received_legs(tx)), len(_sent_legs(tx)))
    return slots


def _generate_multi_asset_csv(
    transactions: Sequence[Transaction], multi: Sequence[Transaction]
) -> str:
    slots = multi_asset_slot_count(multi)

    header = ["Date"]
    for n in range(1, slots + 1):
        header += [
            f"Received Quantity {n}",
            f"Received Currency {n}",
            f"Received Fiat Amount {n}",
            f"Sent Quantity {n}",
            f"Sent Currency {n}",
            f"Sent Fiat Amount {n}",
        ]
    header += TRAILING_CSV_COLUMNS

    rows = [header]
    for tx in transactions:
        received, sent = _received_legs(tx), _sent_legs(tx)
        row = [format_date(tx.date)]
        for i in range(slots):
            row += _leg_cells(received[i] if i < len(received) else None)
            row += _leg_cells(sent[i] if i < len(sent) else None)
        row += _trailing_cells(tx)
        rows.append(row)
    return _write_rows(rows)


def _leg_cells(leg: AssetAmount | None) -> list[str]:
    if leg is None:
        return ["", "", ""]
    return [format_quantity(leg.quantity), _text(leg.currency), format_quantity(leg.fiat_amount)]


def _trailing_cells(tx: Transaction) -> list[str]:
    return [
        format_quantity(tx.fee_amount),
        _text(tx.fee_currency),
        _text(tx.tx_hash),
        _text(tx.notes),
        _text(tx.tag),
    ]


def generate_perp_csv(transactions: Sequence[PerpTransaction]) -> str:
    """Render perpetuals activity in the Awaken perps layout."""
    rows = [list(PERP_CSV_COLUMNS)]
    for tx in transactions:
        rows.append(
            [
                format_date(tx.date),
                _text(tx.asset),
                format_quantity(tx.amount),
                format_quantity(tx.fee),
                format_pnl(tx.pnl),
                _text(tx.payment_token),
                _text(tx.notes),
                _text(tx.tx_hash),
                _text(tx.tag),
            ]
        )
    return _write_rows(rows)


def build_csv_filename(
    chain_id: str,
    address: str,
    when: datetime | None = None,
    perps: bool = False,
) -> str:
    """awakenfetch_{chain}_{first 8 address chars}_{YYYYMMDD}[_perps].csv"""
    when = when or datetime.now(tz=timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    suffix = "_perps" if perps else ""
    return f"awakenfetch_{chain_id.lower()}_{address[:8]}_{when:%Y%m%d}{suffix}.csv"


# ── JSON / JSONL ─────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, cls=DecimalEncoder, ensure_ascii=False)


def format_jsonl(items: Sequence[Any]) -> str:
    """One JSON object per line."""
    return "\n".join(json.dumps(item, cls=DecimalEncoder) for item in items)


# ── Table ────────────────────────────────────────────────────────────────────


def _type_color(tx_type: str) -> str:
    if tx_type in ("receive", "claim", "unstake"):
        return "green"
    if tx_type in ("send", "stake"):
        return "red"
    if tx_type == "other":
        return "dim"
    return "yellow"


def format_table(transactions: Sequence[Transaction], title: str = "Transactions") -> str:
    """Rich terminal table of transactions."""
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=140)

    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Date (UTC)", no_wrap=True)
    table.add_column("Type", justify="center")
    table.add_column("Received", justify="right")
    table.add_column("Sent", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Tx Hash", style="cyan", no_wrap=True)
    table.add_column("Notes", style="italic")

    for tx in transactions:
        tx_hash = tx.tx_hash or ""
        short_hash = f"{tx_hash[:8]}…{tx_hash[-6:]}" if len(tx_hash) > 16 else tx_hash
        table.add_row(
            format_date(tx.date),
            f"[{_type_color(tx.type)}]{tx.type}[/]",
            _amount_cell(tx.received_quantity, tx.received_currency, len(tx.additional_received)),
            _amount_cell(tx.sent_quantity, tx.sent_currency, len(tx.additional_sent)),
            _amount_cell(tx.fee_amount, tx.fee_currency, 0),
            short_hash,
            tx.notes or "",
        )

    console.print(table)
    console.print(f"Total: [bold]{len(transactions)}[/bold] transactions")
    return buf.getvalue()


def format_perp_table(transactions: Sequence[PerpTransaction], title: str = "Perpetuals") -> str:
    """Rich terminal table of perpetuals events."""
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=140)

    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Date (UTC)", no_wrap=True)
    table.add_column("Tag", justify="center")
    table.add_column("Asset")
    table.add_column("Amount", justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Notes", style="italic")

    for tx in transactions:
        pnl_color = "green" if tx.pnl > 0 else "red" if tx.pnl < 0 else "dim"
        pnl = f"{format_pnl(tx.pnl)} {tx.payment_token}".strip()
        table.add_row(
            format_date(tx.date),
            tx.tag,
            tx.asset,
            format_quantity(tx.amount),
            f"[{pnl_color}]{pnl}[/]",
            format_quantity(tx.fee) or "—",
            tx.notes,
        )

    console.print(table)
    console.print(f"Total: [bold]{len(transactions)}[/bold] events")
    return buf.getvalue()


def format_chain_table(chains: Sequence[ChainInfo]) -> str:
    """Rich terminal table of registered chains."""
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=120)

    table = Table(title="Supported chains", show_header=True, header_style="bold blue")
    table.add_column("Chain ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Ticker", justify="center")
    table.add_column("Enabled", justify="center")
    table.add_column("Perps", justify="center")

    for info in chains:
        table.add_row(
            info.chain_id,
            info.chain_name,
            info.ticker,
            "[green]yes[/]" if info.enabled else "[red]no (missing key)[/]",
            "yes" if info.perps_capable else "",
        )

    console.print(table)
    return buf.getvalue()


def _amount_cell(quantity: Any, currency: str | None, extra_legs: int) -> str:
    if quantity is None:
        return "—"
    cell = f"{format_quantity(quantity)} {currency or ''}".strip()
    return f"{cell} (+{extra_legs})" if extra_legs else cell


def format_transactions(transactions: Sequence[Any], fmt: str, perps: bool = False) -> str:
    """
    Render transactions in the requested CLI format.

    perps=True renders PerpTransactions (perps CSV layout, perps table).

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")
    if fmt == "csv":
        return generate_perp_csv(transactions) if perps else generate_standard_csv(transactions)
    if fmt == "table":
        return format_perp_table(transactions) if perps else format_table(transactions)
    if fmt == "jsonl":
        return format_jsonl([tx.to_dict() for tx in transactions])
    return format_json([tx.to_dict() for tx in transactions])


# ── Utility ──────────────────────────────────────────────────────────────────


def mask_api_key(key: str) -> str:
    """
    Mask an API key for safe display.

    'abcdefg123' → 'abcd****'
    '' → '****'
    """
    if not key or len(key) <= 4:
        return "****"
    return key[:4] + "****"
