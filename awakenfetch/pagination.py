"""
Pagination drivers and the page collector.

Three drivers cover every provider's paging idiom. Each one is an async
generator that yields the raw records of one page at a time:

  offset_pages    — offset/limit; stops on an empty or short page, or once the
                    provider-reported running total is reached.
  numbered_pages  — page number; stops when the provider signals no next page
                    (Page.next is None) or returns an empty page.
  cursor_pages    — opaque continuation token; stops when no token comes back.

Adapters supply a fetch_page(position, limit) coroutine returning a Page, so
the driver never knows the provider's parameter names.

Design decisions:
- Pages are requested strictly in sequence: each position depends on the
  previous response.
- Cancellation is checked before every request. A cancelled driver simply
  stops; whatever was collected is the (partial) result.
- FetchOptions.cursor / FetchOptions.limit override the starting position and
  page size, for resumption.
- PageCollector classifies each page as it arrives, so a single malformed
  record is logged and skipped instead of aborting the fetch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Hashable

from awakenfetch.models import FetchOptions, Transaction

logger = logging.getLogger(__name__)

# Errors a classifier may raise on a malformed record
CLASSIFY_ERRORS = (KeyError, IndexError, TypeError, ValueError, ArithmeticError, AttributeError)


@dataclass
class Page:
    """One page of raw provider records."""

    records: list[Any] = field(default_factory=list)
    next: Any = None            # next page number / cursor token; unused by offset paging
    total: int | None = None    # provider-reported total record count, if any


FetchPage = Callable[[Any, int], Awaitable[Page]]


async def offset_pages(
    fetch_page: FetchPage,
    options: FetchOptions,
    *,
    page_size: int,
) -> AsyncIterator[list[Any]]:
    """Drive offset/limit pagination."""
    limit = options.limit or page_size
    offset = _int_position(options.cursor, default=0)

    while not options.cancelled:
        page = await fetch_page(offset, limit)
        if page.total is not None:
            options.report_estimated_total(page.total)
        logger.debug("offset page at %d: %d records", offset, len(page.records))

        if page.records:
            yield page.records
        if len(page.records) < limit:
            return
        offset += len(page.records)
        if page.total is not None and offset >= page.total:
            return


async def numbered_pages(
    fetch_page: FetchPage,
    options: FetchOptions,
    *,
    page_size: int,
    first_page: int = 1,
) -> AsyncIterator[list[Any]]:
    """Drive page-number pagination; fetch_page reports the next page in Page.next."""
    per_page = options.limit or page_size
    page_no = _int_position(options.cursor, default=first_page)

    while not options.cancelled:
        page = await fetch_page(page_no, per_page)
        if page.total is not None:
            options.report_estimated_total(page.total)
        logger.debug("page %d: %d records", page_no, len(page.records))

        if page.records:
            yield page.records
        if not page.records or page.next is None:
            return
        page_no = int(page.next)


async def cursor_pages(
    fetch_page: FetchPage,
    options: FetchOptions,
    *,
    page_size: int,
) -> AsyncIterator[list[Any]]:
    """Drive opaque-cursor pagination; the first request goes out with no cursor."""
    limit = options.limit or page_size
    cursor = options.cursor
    seen: set[Any] = set()

    while not options.cancelled:
        page = await fetch_page(cursor, limit)
        if page.total is not None:
            options.report_estimated_total(page.total)
        logger.debug("cursor page %r: %d records", cursor, len(page.records))

        if page.records:
            yield page.records
        if not page.next:
            return
        if page.next in seen:
            logger.warning("provider repeated cursor %r, stopping", page.next)
            return
        seen.add(page.next)
        cursor = page.next


class PageCollector:
    """
    Turns pages of raw records into canonical transactions (or perp events).

    Per page: drop records already seen (when dedupe_key is given, so two
    overlapping queries classify their union), classify each record, drop
    empty or out-of-range results, then report the batch via on_progress.
    Several drivers may feed one collector concurrently.
    """

    def __init__(
        self,
        classify: Callable[[Any], Transaction | None],
        options: FetchOptions,
        *,
        label: str,
        dedupe_key: Callable[[Any], Hashable] | None = None,
    ) -> None:
        self._classify = classify
        self._options = options
        self._label = label
        self._dedupe_key = dedupe_key
        self._seen: set[Hashable] = set()
        self.transactions: list[Transaction] = []
        self.skipped = 0

    async def consume(self, pages: AsyncIterator[list[Any]]) -> None:
        async for records in pages:
            self.add_page(records)

    def add_page(self, records: list[Any]) -> list[Transaction]:
        batch: list[Transaction] = []
        for record in records:
            if self._dedupe_key is not None:
                key = self._dedupe_key(record)
                if key in self._seen:
                    continue
                self._seen.add(key)

            tx = self._safe_classify(record)
            if tx is None or not self._options.in_range(tx.date):
                continue
            batch.append(tx)

        self.transactions.extend(batch)
        self._options.report_progress(batch)
        return batch

    def _safe_classify(self, record: Any) -> Transaction | None:
        try:
            tx = self._classify(record)
        except CLASSIFY_ERRORS as e:
            self.skipped += 1
            logger.warning(
                "%s: skipping malformed record %s: %r", self._label, _record_id(record), e
            )
            return None
        if tx is not None and not tx.has_economic_content():
            logger.debug("%s: dropping record with no economic content %s", self._label, tx.tx_hash)
            return None
        return tx


def _int_position(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _record_id(record: Any) -> str:
    if isinstance(record, dict):
        for key in ("hash", "txhash", "tx_hash", "transaction_hash", "transaction_id", "id", "txHash"):
            if record.get(key):
                return str(record[key])
    return "<unknown>"
