"""Collaborator interfaces for the lifecycle engine.

The engine never reaches for a global database handle, wall clock or mailer.
Each of those is passed in as an object satisfying one of the protocols
below, so tests can hand in fakes and production can hand in real adapters.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from typing_extensions import Protocol, runtime_checkable

from quoteflow.quote import Quote


logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Source of the current time (timezone-aware, UTC)."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock that returns a settable instant.

    Examples:
        >>> clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        >>> clock.advance(days=2).now().day
        3
    """

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> "FixedClock":
        self._instant = instant
        return self

    def advance(self, **delta) -> "FixedClock":
        self._instant = self._instant + timedelta(**delta)
        return self


@runtime_checkable
class QuoteStore(Protocol):
    """Persistence for quotes with optimistic concurrency.

    ``save`` must write the whole record atomically and bump ``version``.
    It raises ConcurrencyConflictError when the stored version differs from
    ``expected_version`` and PersistenceError when the write cannot commit;
    on either error the stored quote is left unchanged.
    """

    def get(self, quote_id: str) -> Quote:
        ...

    def add(self, quote: Quote) -> Quote:
        ...

    def save(self, quote: Quote, expected_version: int) -> Quote:
        ...

    def list_expirable(self, limit: Optional[int] = None) -> List[Quote]:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Outbound customer/associate notifications (email, SMS, ...)."""

    def send_expiration_warning(self, quote: Quote, days_until_expiration: int) -> None:
        ...

    def send_expiration_notice(self, quote: Quote) -> None:
        ...


class NullNotificationDispatcher:
    """Dispatcher that only logs; used when no mailer is configured."""

    def send_expiration_warning(self, quote: Quote, days_until_expiration: int) -> None:
        logger.info(
            "Expiration warning for quote %s (%d days left) not dispatched: no notifier configured",
            quote.quote_number or quote.id,
            days_until_expiration,
        )

    def send_expiration_notice(self, quote: Quote) -> None:
        logger.info(
            "Expiration notice for quote %s not dispatched: no notifier configured",
            quote.quote_number or quote.id,
        )


__all__ = [
    "Clock",
    "SystemClock",
    "FixedClock",
    "QuoteStore",
    "NotificationDispatcher",
    "NullNotificationDispatcher",
]
