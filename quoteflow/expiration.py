"""Auto-expiration decisions for inactive quotes.

Quotes in DRAFT or PRESENTED expire after ``auto_expire_after_days`` whole
days without activity. A warning goes out ``warning_lead_days`` earlier,
once per quote. The functions here only decide; quoteflow.sweeper acts.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta

from quoteflow.quote import Quote
from quoteflow.rules import EXPIRABLE_STATUSES


DEFAULT_WARNING_LEAD_DAYS = 3

_DAY = timedelta(days=1)


def _activity_anchor(quote: Quote) -> Optional[datetime]:
    return quote.last_activity_at or quote.updated_at or quote.created_at


def days_since_activity(quote: Quote, now: datetime) -> int:
    """Whole days elapsed since the quote's last activity (floored)."""
    anchor = _activity_anchor(quote)
    if anchor is None:
        return 0
    return math.floor((now - anchor) / _DAY)


def expiration_date(quote: Quote) -> Optional[datetime]:
    """When the quote expires if nothing happens; None without any activity timestamp."""
    anchor = _activity_anchor(quote)
    if anchor is None:
        return None
    return anchor + relativedelta(days=quote.auto_expire_after_days)


def days_until_expiration(quote: Quote, now: datetime) -> Optional[int]:
    """Days left before expiration, rounded up and never negative."""
    expires = expiration_date(quote)
    if expires is None:
        return None
    return max(0, math.ceil((expires - now) / _DAY))


@dataclass(frozen=True)
class ExpirationDecision:
    """What the sweeper should do with one quote.

    Attributes:
        should_expire: Force the quote into EXPIRED
        should_warn: Dispatch an expiration warning and mark it sent
        days_since_activity: Whole days since last activity
        expiration_date: When the quote expires (None without activity data)
        days_until_expiration: Days left, never negative
    """
    should_expire: bool
    should_warn: bool
    days_since_activity: int
    expiration_date: Optional[datetime]
    days_until_expiration: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shouldExpire": self.should_expire,
            "shouldWarn": self.should_warn,
            "daysSinceActivity": self.days_since_activity,
            "expirationDate": self.expiration_date.isoformat() if self.expiration_date else None,
            "daysUntilExpiration": self.days_until_expiration,
        }


def evaluate_expiration(
    quote: Quote,
    now: datetime,
    warning_lead_days: int = DEFAULT_WARNING_LEAD_DAYS,
) -> ExpirationDecision:
    """Decide whether a quote should expire or be warned about.

    Quotes outside DRAFT and PRESENTED never expire or warn.

    Examples:
        >>> from datetime import timezone
        >>> now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        >>> q = Quote(id="q_1", status="DRAFT", last_activity_at=now - timedelta(days=28))
        >>> d = evaluate_expiration(q, now)
        >>> d.should_warn, d.should_expire
        (True, False)
    """
    elapsed = days_since_activity(quote, now)
    expires = expiration_date(quote)
    remaining = days_until_expiration(quote, now)

    if quote.status not in EXPIRABLE_STATUSES or _activity_anchor(quote) is None:
        return ExpirationDecision(False, False, elapsed, expires, remaining)

    threshold = quote.auto_expire_after_days
    should_expire = elapsed >= threshold
    should_warn = (
        elapsed >= threshold - warning_lead_days
        and not quote.expire_notification_sent
    )
    return ExpirationDecision(should_expire, should_warn, elapsed, expires, remaining)


__all__ = [
    "DEFAULT_WARNING_LEAD_DAYS",
    "ExpirationDecision",
    "days_since_activity",
    "days_until_expiration",
    "evaluate_expiration",
    "expiration_date",
]
