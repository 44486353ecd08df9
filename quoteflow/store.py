"""In-memory quote store with optimistic concurrency.

Suitable for tests and single-process deployments. It keeps deep copies, so
callers can never change a stored quote except through ``save``.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from quoteflow.errors import ConcurrencyConflictError, QuoteNotFoundError
from quoteflow.quote import Quote
from quoteflow.rules import EXPIRABLE_STATUSES


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _activity_sort_key(quote: Quote) -> Tuple[bool, datetime]:
    # Quotes without any activity timestamp go last
    anchor = quote.last_activity_at or quote.updated_at or quote.created_at
    return (anchor is None, anchor or _EPOCH)


class InMemoryQuoteStore:
    """QuoteStore backed by a dict and guarded by a re-entrant lock.

    Examples:
        >>> store = InMemoryQuoteStore()
        >>> saved = store.add(Quote(id="q_1"))
        >>> saved.version
        0
        >>> store.save(saved, expected_version=0).version
        1
    """

    def __init__(self):
        self._quotes: Dict[str, Quote] = {}
        self._lock = threading.RLock()

    def get(self, quote_id: str) -> Quote:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None:
                raise QuoteNotFoundError(quote_id)
            return quote.copy()

    def add(self, quote: Quote) -> Quote:
        with self._lock:
            if quote.id in self._quotes:
                raise ValueError(f"Quote '{quote.id}' already exists")
            self._quotes[quote.id] = quote.copy()
            return quote.copy()

    def save(self, quote: Quote, expected_version: int) -> Quote:
        """Write ``quote`` if the stored version still equals ``expected_version``.

        Raises:
            QuoteNotFoundError: If the quote was never added
            ConcurrencyConflictError: If another writer got there first
        """
        with self._lock:
            current = self._quotes.get(quote.id)
            if current is None:
                raise QuoteNotFoundError(quote.id)
            if current.version != expected_version:
                logger.debug(
                    "Stale write for quote %s: expected version %d, stored %d",
                    quote.id, expected_version, current.version,
                )
                raise ConcurrencyConflictError(quote.id, expected_version, current.version)
            stored = quote.copy()
            stored.version = expected_version + 1
            self._quotes[quote.id] = stored
            return stored.copy()

    def list_expirable(self, limit: Optional[int] = None) -> List[Quote]:
        """Quotes in DRAFT or PRESENTED, oldest activity first."""
        with self._lock:
            candidates = [q for q in self._quotes.values() if q.status in EXPIRABLE_STATUSES]
        candidates.sort(key=_activity_sort_key)
        if limit is not None:
            candidates = candidates[:limit]
        return [q.copy() for q in candidates]

    def __len__(self) -> int:
        with self._lock:
            return len(self._quotes)


__all__ = [
    "InMemoryQuoteStore",
]
