"""Quoteflow: quote lifecycle engine for eyewear point-of-sale.

Quoteflow governs how a quote (exam services, eyeglasses, contact lenses)
moves through its lifecycle:
- Structural transition table between BUILDING, DRAFT, PRESENTED, SIGNED,
  COMPLETED, CANCELLED and EXPIRED
- Data preconditions that name every unmet requirement and the next action
- Manager approval for high-value signing and for cancelling signed quotes
- Write-once milestone timestamps and a status audit trail
- Time-based auto-expiration with one-time warnings

Basic usage:
    >>> from quoteflow.runtime import QuoteLifecycleService
    >>> from quoteflow.store import InMemoryQuoteStore
    >>> from quoteflow.quote import LineItem
    >>> from quoteflow.types import Actor
    >>> service = QuoteLifecycleService(store=InMemoryQuoteStore())
    >>> quote = service.create_quote(Actor(id="user_1"), exam_services=[LineItem(name="Eye Exam")])
    >>> service.change_quote_status(quote.id, "DRAFT", Actor(id="user_1"))["status"]
    'DRAFT'
"""

__version__ = "0.1.0"
__author__ = "Quoteflow Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from quoteflow.config import QuoteflowSettings
from quoteflow.runtime import QuoteLifecycleService
from quoteflow.state_machine import QuoteStateMachine
from quoteflow.sweeper import ExpirationSweeper
from quoteflow.types import Actor, QuoteStatus, UserRole

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "Actor",
    "ExpirationSweeper",
    "QuoteLifecycleService",
    "QuoteStateMachine",
    "QuoteStatus",
    "QuoteflowSettings",
    "UserRole",
]
