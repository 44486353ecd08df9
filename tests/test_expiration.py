"""Unit tests for auto-expiration decisions."""

from datetime import datetime, timedelta, timezone

from quoteflow.expiration import (
    days_since_activity,
    days_until_expiration,
    evaluate_expiration,
    expiration_date,
)
from quoteflow.quote import Quote
from quoteflow.types import QuoteStatus


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _idle(days, status=QuoteStatus.DRAFT, **overrides) -> Quote:
    return Quote(id="q_1", status=status, last_activity_at=NOW - timedelta(days=days), **overrides)


class TestEvaluateExpiration:
    """Test the expire/warn decision with the default 30-day threshold."""

    def test_35_days_idle_expires(self):
        """A draft idle for 35 days should expire."""
        decision = evaluate_expiration(_idle(35), NOW)
        assert decision.should_expire
        assert decision.days_since_activity == 35
        assert decision.days_until_expiration == 0

    def test_5_days_idle_does_nothing(self):
        """A draft idle for 5 days neither expires nor warns."""
        decision = evaluate_expiration(_idle(5), NOW)
        assert not decision.should_expire
        assert not decision.should_warn

    def test_28_days_idle_warns(self):
        """A draft idle for 28 days gets a warning but does not expire."""
        decision = evaluate_expiration(_idle(28), NOW)
        assert decision.should_warn
        assert not decision.should_expire
        assert decision.days_until_expiration == 2

    def test_warning_is_sent_once(self):
        """No second warning once expire_notification_sent is set."""
        decision = evaluate_expiration(_idle(28, expire_notification_sent=True), NOW)
        assert not decision.should_warn

    def test_warning_window_starts_at_lead_days(self):
        """The warning window opens exactly warning_lead_days before expiry."""
        assert evaluate_expiration(_idle(27), NOW).should_warn
        assert not evaluate_expiration(_idle(26), NOW).should_warn
        assert evaluate_expiration(_idle(25), NOW, warning_lead_days=5).should_warn

    def test_presented_quotes_expire(self):
        """PRESENTED quotes are expiration candidates too."""
        assert evaluate_expiration(_idle(31, status=QuoteStatus.PRESENTED), NOW).should_expire

    def test_other_statuses_never_expire(self):
        """Only DRAFT and PRESENTED quotes are candidates."""
        for status in (QuoteStatus.BUILDING, QuoteStatus.SIGNED, QuoteStatus.COMPLETED,
                       QuoteStatus.CANCELLED, QuoteStatus.EXPIRED):
            decision = evaluate_expiration(_idle(90, status=status), NOW)
            assert not decision.should_expire, status
            assert not decision.should_warn, status

    def test_custom_threshold_per_quote(self):
        """auto_expire_after_days is read from the quote."""
        decision = evaluate_expiration(_idle(8, auto_expire_after_days=7), NOW)
        assert decision.should_expire

    def test_quote_without_timestamps(self):
        """Quotes with no activity timestamps are left alone."""
        decision = evaluate_expiration(Quote(id="q_1", status=QuoteStatus.DRAFT), NOW)
        assert not decision.should_expire
        assert decision.expiration_date is None
        assert decision.to_dict()["expirationDate"] is None


class TestDayArithmetic:
    """Test elapsed and remaining day computations."""

    def test_days_since_activity_floors(self):
        """Partial days are not counted."""
        quote = Quote(id="q_1", last_activity_at=NOW - timedelta(days=29, hours=23))
        assert days_since_activity(quote, NOW) == 29

    def test_falls_back_to_updated_then_created(self):
        """Without last_activity_at the anchor is updated_at, then created_at."""
        quote = Quote(id="q_1", updated_at=NOW - timedelta(days=4), created_at=NOW - timedelta(days=10))
        assert days_since_activity(quote, NOW) == 4
        quote = Quote(id="q_1", created_at=NOW - timedelta(days=10))
        assert days_since_activity(quote, NOW) == 10

    def test_expiration_date(self):
        """The expiration date is the anchor plus the threshold in days."""
        quote = Quote(id="q_1", last_activity_at=NOW)
        assert expiration_date(quote) == NOW + timedelta(days=30)

    def test_days_until_expiration_rounds_up(self):
        """Remaining partial days count as a full day."""
        quote = Quote(id="q_1", last_activity_at=NOW - timedelta(days=27, hours=12))
        assert days_until_expiration(quote, NOW) == 3

    def test_days_until_expiration_never_negative(self):
        """Overdue quotes report zero days left."""
        assert days_until_expiration(_idle(40), NOW) == 0
