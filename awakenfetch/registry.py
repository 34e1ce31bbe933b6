"""
Adapter registry: chain id → ChainAdapter.

build_registry() populates one registry per process from the loaded config,
injecting API keys, timeout and retry settings into each adapter. An unknown
chain id is not an error at this level: get() returns None and the caller
decides (the CLI raises UnsupportedChainError).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from awakenfetch.adapters.bittensor import BittensorAdapter
from awakenfetch.adapters.ergo import ErgoAdapter
from awakenfetch.adapters.extended import ExtendedAdapter
from awakenfetch.adapters.gluenet import GluenetAdapter
from awakenfetch.adapters.hedera import HederaAdapter
from awakenfetch.adapters.injective import InjectiveAdapter
from awakenfetch.adapters.kaspa import KaspaAdapter
from awakenfetch.adapters.multiversx import MultiversXAdapter
from awakenfetch.adapters.osmosis import OsmosisAdapter
from awakenfetch.adapters.polkadot import PolkadotAdapter
from awakenfetch.adapters.radix import RadixAdapter
from awakenfetch.adapters.ronin import RoninAdapter
from awakenfetch.adapters.variational import VariationalAdapter
from awakenfetch.http import RetryPolicy
from awakenfetch.models import ChainInfo

if TYPE_CHECKING:
    from awakenfetch.adapters.base import ChainAdapter
    from awakenfetch.config import AwakenFetchConfig


class AdapterRegistry:
    """Mapping of chain id to adapter, in registration order."""

    def __init__(self) -> None:
        self._adapters: dict[str, ChainAdapter] = {}

    def register(self, adapter: ChainAdapter, overwrite: bool = False) -> None:
        """
        Add an adapter under its chain_id.

        Raises:
            ValueError: chain_id already registered and overwrite is False.
        """
        if adapter.chain_id in self._adapters and not overwrite:
            raise ValueError(
                f"Adapter already registered for chain {adapter.chain_id!r}. "
                "Pass overwrite=True to replace it."
            )
        self._adapters[adapter.chain_id] = adapter

    def unregister(self, chain_id: str) -> ChainAdapter | None:
        return self._adapters.pop(chain_id, None)

    def get(self, chain_id: str) -> ChainAdapter | None:
        return self._adapters.get(chain_id)

    def chain_ids(self) -> list[str]:
        return list(self._adapters)

    def list(self) -> list[ChainInfo]:
        return [
            ChainInfo(
                chain_id=adapter.chain_id,
                chain_name=adapter.chain_name,
                ticker=adapter.ticker,
                enabled=adapter.enabled,
                perps_capable=adapter.perps_capable,
            )
            for adapter in self._adapters.values()
        ]

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._adapters


def build_registry(config: AwakenFetchConfig) -> AdapterRegistry:
    """One adapter per supported chain, configured from config."""
    retry = RetryPolicy(max_retries=config.http.max_retries, base_delay=config.http.base_delay)
    timeout = config.http.timeout
    api = config.api

    registry = AdapterRegistry()
    for adapter in (
        KaspaAdapter(retry=retry, timeout=timeout),
        ErgoAdapter(retry=retry, timeout=timeout),
        OsmosisAdapter(retry=retry, timeout=timeout),
        InjectiveAdapter(retry=retry, timeout=timeout),
        BittensorAdapter(api_key=api.taostats_api_key or None, timeout=timeout),
        PolkadotAdapter(api_key=api.subscan_api_key or None, retry=retry, timeout=timeout),
        MultiversXAdapter(retry=retry, timeout=timeout),
        HederaAdapter(retry=retry, timeout=timeout),
        RadixAdapter(retry=retry, timeout=timeout),
        RoninAdapter(api_key=api.skymavis_api_key or None, retry=retry, timeout=timeout),
        GluenetAdapter(retry=retry, timeout=timeout),
        VariationalAdapter(
            api_key=api.variational_api_key or None,
            api_secret=api.variational_api_secret or None,
            retry=retry,
            timeout=timeout,
        ),
        ExtendedAdapter(api_key=api.extended_api_key or None, retry=retry, timeout=timeout),
    ):
        registry.register(adapter)
    return registry
