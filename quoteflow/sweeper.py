"""Batch job that expires inactive quotes and sends expiration warnings.

The sweeper is meant to run on a schedule (cron, a worker beat). Each run
lists DRAFT and PRESENTED quotes oldest-activity first, evaluates them
against the clock and either forces them into EXPIRED through the lifecycle
service or dispatches a one-time warning.

Usage:
    >>> from quoteflow.runtime import QuoteLifecycleService
    >>> from quoteflow.store import InMemoryQuoteStore
    >>> service = QuoteLifecycleService(store=InMemoryQuoteStore())
    >>> result = ExpirationSweeper(service).run()
    >>> result.quotes_checked
    0
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from quoteflow.config import QuoteflowSettings
from quoteflow.expiration import evaluate_expiration
from quoteflow.ports import NotificationDispatcher, NullNotificationDispatcher
from quoteflow.quote import Quote
from quoteflow.runtime import QuoteLifecycleService


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counters for one sweeper run.

    ``quotes_expired`` and ``warnings_sent`` also count what a dry run
    would have done.
    """
    quotes_checked: int = 0
    quotes_expired: int = 0
    warnings_sent: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotesChecked": self.quotes_checked,
            "quotesExpired": self.quotes_expired,
            "warningsSent": self.warnings_sent,
            "errors": list(self.errors),
            "executionTimeMs": self.execution_time_ms,
            "dryRun": self.dry_run,
        }


class ExpirationSweeper:
    """Expires inactive quotes in batches.

    Attributes:
        service: Lifecycle service used for every write
        notifier: Outbound warnings and expiry notices
        settings: Batch size, sweep cap, dry-run and notification switches
    """

    def __init__(
        self,
        service: QuoteLifecycleService,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[QuoteflowSettings] = None,
    ):
        self.service = service
        self.notifier = notifier or NullNotificationDispatcher()
        self.settings = settings or service.settings

    @property
    def clock(self):
        return self.service.clock

    def run(self) -> SweepResult:
        """Run one sweep. Failures on individual quotes never abort it."""
        started = time.monotonic()
        result = SweepResult(dry_run=self.settings.sweep_dry_run)
        logger.info(
            "Starting expiration sweep%s", " (dry run)" if result.dry_run else "",
        )

        candidates = self.service.store.list_expirable(limit=self.settings.sweep_max_quotes)
        result.quotes_checked = len(candidates)

        batch_size = self.settings.sweep_batch_size
        batch_count = (len(candidates) + batch_size - 1) // batch_size
        for index in range(batch_count):
            batch = candidates[index * batch_size:(index + 1) * batch_size]
            logger.debug("Processing batch %d/%d (%d quotes)", index + 1, batch_count, len(batch))
            for quote in batch:
                self._process(quote, result)

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Expiration sweep finished in %dms: %d checked, %d expired, %d warnings, %d errors",
            result.execution_time_ms, result.quotes_checked, result.quotes_expired,
            result.warnings_sent, len(result.errors),
        )
        return result

    def _process(self, quote: Quote, result: SweepResult) -> None:
        label = quote.quote_number or quote.id
        try:
            decision = evaluate_expiration(quote, self.clock.now(), self.settings.warning_lead_days)
            if decision.should_expire:
                self._expire(quote, label, result)
            elif decision.should_warn:
                self._warn(quote, label, decision.days_until_expiration, result)
        except Exception as exc:
            logger.exception("Expiration sweep failed for quote %s", label)
            result.errors.append(f"Failed to process quote {label}: {exc}")

    def _expire(self, quote: Quote, label: str, result: SweepResult) -> None:
        if self.settings.sweep_dry_run:
            logger.info("[dry run] Would expire quote %s", label)
            result.quotes_expired += 1
            return

        response = self.service.expire_if_due(quote.id)
        if response.get("skipped"):
            logger.info("Quote %s no longer due for expiry", label)
            return
        if not response["ok"]:
            message = response["error"].get("message", response["error"]["type"])
            result.errors.append(f"Failed to expire quote {label}: {message}")
            logger.warning("Failed to expire quote %s: %s", label, message)
            return

        result.quotes_expired += 1
        logger.info("Expired quote %s", label)
        if self.settings.send_notifications:
            self.notifier.send_expiration_notice(self.service.get_quote(quote.id))

    def _warn(self, quote: Quote, label: str, days_left: int, result: SweepResult) -> None:
        if self.settings.sweep_dry_run:
            logger.info("[dry run] Would warn about quote %s (%d days left)", label, days_left)
            result.warnings_sent += 1
            return

        response = self.service.mark_expiration_warning_sent(quote.id)
        if response.get("skipped"):
            logger.info("Quote %s no longer due for a warning", label)
            return
        if not response["ok"]:
            message = response["error"].get("message", response["error"]["type"])
            result.errors.append(f"Failed to warn about quote {label}: {message}")
            logger.warning("Failed to warn about quote %s: %s", label, message)
            return

        days_left = response["daysUntilExpiration"]
        try:
            self.notifier.send_expiration_warning(self.service.get_quote(quote.id), days_left)
        except Exception:
            self.service.clear_expiration_warning(quote.id)
            raise
        result.warnings_sent += 1
        logger.info("Sent expiration warning for quote %s (%d days left)", label, days_left)


def run_expiration_sweep(
    service: QuoteLifecycleService,
    notifier: Optional[NotificationDispatcher] = None,
    settings: Optional[QuoteflowSettings] = None,
) -> SweepResult:
    """Convenience entry point for schedulers."""
    return ExpirationSweeper(service, notifier=notifier, settings=settings).run()


__all__ = [
    "SweepResult",
    "ExpirationSweeper",
    "run_expiration_sweep",
]
