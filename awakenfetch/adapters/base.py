"""Chain adapter contract and the helpers every adapter shares."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any, Awaitable, Protocol, Sequence, runtime_checkable

import httpx

from awakenfetch.exceptions import InvalidAddressError, MissingCredentialError
from awakenfetch.http import DEFAULT_TIMEOUT, RetryPolicy, new_client

if TYPE_CHECKING:
    from awakenfetch.models import FetchOptions, PerpTransaction, Transaction


@runtime_checkable
class ChainAdapter(Protocol):
    """
    Protocol that all chain adapters must implement.

    Adapters are responsible for:
    - Validating addresses locally, before any network access
    - Driving the right pagination strategy against the provider API
    - Classifying raw records into canonical Transactions
    - Returning them sorted by date ascending (stable on ties)

    Adapters are NOT responsible for:
    - Reading credentials from the environment (passed in at construction)
    - Writing files (that's the CLI)
    """

    chain_id: str
    chain_name: str
    ticker: str
    perps_capable: bool

    @property
    def enabled(self) -> bool:
        """False when a credential the adapter needs was not configured."""
        ...

    def validate_address(self, address: Any) -> bool:
        """
        Validate address format for this chain.

        Pure, no network access, never raises. Non-strings are invalid.
        """
        ...

    async def fetch_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[Transaction]:
        """
        Fetch and classify the address's full history.

        Returns:
            Transactions sorted by date ascending. If options.cancel_event was
            set mid-fetch, the transactions classified so far.

        Raises:
            InvalidAddressError: Address format invalid for this chain
            MissingCredentialError: Required API key not configured
            ProviderClientError: Provider rejected the request (4xx)
            TransientProviderError: Retries exhausted (429, 5xx, network)
        """
        ...

    def to_awaken_csv(self, transactions: Sequence[Transaction]) -> str:
        ...

    def get_explorer_url(self, tx_hash: str) -> str:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class PerpsAdapter(ChainAdapter, Protocol):
    """Adapter that can also export perpetuals activity."""

    async def fetch_perp_transactions(
        self, address: str, options: FetchOptions | None = None
    ) -> list[PerpTransaction]:
        ...

    def to_awaken_perp_csv(self, transactions: Sequence[PerpTransaction]) -> str:
        ...


class HTTPResources:
    """
    The HTTP client and retry policy an adapter owns.

    A client passed in is shared, not owned, and is left open on close().
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.client = client or new_client(timeout)
        self.retry = retry or RetryPolicy()
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def sort_transactions(transactions: Sequence[Any]) -> list[Any]:
    """Ascending by date; ties keep their input order."""
    return sorted(transactions, key=lambda tx: tx.date)


def matches(pattern: re.Pattern[str], address: Any) -> bool:
    """Regex address check that never raises."""
    return isinstance(address, str) and bool(pattern.fullmatch(address.strip()))


def ensure_valid_address(adapter: ChainAdapter, address: Any, expected: str) -> str:
    """Return the trimmed address, or raise InvalidAddressError naming the expected format."""
    if not adapter.validate_address(address):
        raise InvalidAddressError(
            f"Invalid {adapter.chain_name} address. Expected format: {expected}",
            details={"chain": adapter.chain_id, "address": address if isinstance(address, str) else ""},
        )
    return address.strip()


def require_credential(value: str | None, setting: str, chain_name: str) -> str:
    """Raise MissingCredentialError before any network access when a key is absent."""
    if not value:
        raise MissingCredentialError(
            f"{chain_name} requires an API key. Set {setting} or api.{setting.lower()} "
            "in the config file.",
            details={"setting": setting},
        )
    return value


async def run_concurrently(*aws: Awaitable[Any]) -> list[Any]:
    """
    Await aws concurrently and return their results in order.

    Unlike a bare asyncio.gather, the first failure cancels the siblings
    before it propagates, so no source keeps paging (or reporting progress)
    after the fetch has already failed.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
