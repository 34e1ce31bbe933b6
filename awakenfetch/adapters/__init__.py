"""
Chain adapters for awakenfetch.

One module per chain; every adapter implements ChainAdapter (and the
perps-capable ones PerpsAdapter). Adapters are constructed by
awakenfetch.registry.build_registry(), which passes credentials and HTTP
settings in explicitly.

Usage:
    from awakenfetch.registry import build_registry
    registry = build_registry(config)
    adapter = registry.get("kaspa")
    txns = await adapter.fetch_transactions(address)
"""

from __future__ import annotations

from awakenfetch.adapters.base import ChainAdapter, PerpsAdapter

__all__ = ["ChainAdapter", "PerpsAdapter"]
