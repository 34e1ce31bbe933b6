"""
Classification engines shared by the chain adapters.

utxo   — netting of resolved inputs/outputs (Kaspa, Ergo)
cosmos — message-type dispatch for Cosmos-SDK transactions (Osmosis, Injective)

The helpers below convert the raw units and timestamps providers send.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal

# ISO-8601 with optional fraction (any length) and Z / ±HH:MM offset
_ISO_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)


def from_base_units(raw: int | str, decimals: int) -> Decimal:
    """
    Convert an integer amount in the smallest unit to a Decimal.

    Built from a string so the result is exact whatever the context precision.
    """
    value = int(raw)
    if decimals <= 0:
        return Decimal(value)
    return Decimal(f"{value}e-{decimals}")


def parse_iso_datetime(value: str) -> datetime:
    """Parse a provider ISO timestamp; naive values are taken as UTC."""
    match = _ISO_RE.match(value.strip())
    if not match:
        raise ValueError(f"Unrecognised timestamp: {value!r}")
    text = match.group("base").replace(" ", "T")
    if match.group("frac"):
        text += "." + match.group("frac")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz and tz != "Z":
        text += tz if ":" in tz else f"{tz[:3]}:{tz[3:]}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def from_unix_seconds(value: int | float | str) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def from_unix_millis(value: int | float | str) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
