"""
Tests for error handling utilities.
"""

from datetime import datetime, timedelta

import pytest

from rent_watch.utils.error_handling import (
    ErrorCategory,
    ErrorInfo,
    ErrorSeverity,
    ErrorTracker,
    RetryConfig,
    get_error_tracker,
    reset_error_tracker,
    with_error_handling,
)


class TestErrorTracker:
    """Test cases for ErrorTracker."""

    def test_record_error(self):
        """Test error recording."""
        tracker = ErrorTracker()

        error_info = tracker.record_error(
            component="scheduler",
            category=ErrorCategory.LISTING_SOURCE,
            severity=ErrorSeverity.HIGH,
            message="Actor run failed",
            context={"search_id": 3},
        )

        assert isinstance(error_info, ErrorInfo)
        assert error_info.component == "scheduler"
        assert error_info.category == ErrorCategory.LISTING_SOURCE
        assert error_info.context == {"search_id": 3}
        assert error_info.exception_type == "Unknown"
        assert tracker.errors == [error_info]

    def test_record_error_with_exception(self):
        """Test error recording with exception."""
        tracker = ErrorTracker()

        try:
            raise ValueError("Test exception")
        except ValueError as e:
            error_info = tracker.record_error(
                component="registry",
                category=ErrorCategory.PERSISTENCE,
                severity=ErrorSeverity.MEDIUM,
                message="Write failed",
                exception=e,
            )

        assert error_info.exception_type == "ValueError"
        assert "Test exception" in error_info.traceback

    def test_error_counts(self):
        """Test error count tracking."""
        tracker = ErrorTracker()

        for i in range(3):
            tracker.record_error(
                component="dispatcher",
                category=ErrorCategory.MESSAGE_DELIVERY,
                severity=ErrorSeverity.LOW,
                message=f"Error {i}",
            )
        tracker.record_error(
            component="dispatcher",
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.HIGH,
            message="Connection reset",
        )

        assert tracker.error_counts["dispatcher.message_delivery.low"] == 3
        assert tracker.error_counts["dispatcher.network.high"] == 1

    def test_get_error_stats(self):
        """Test error statistics."""
        tracker = ErrorTracker()
        tracker.record_error("scheduler", ErrorCategory.SYSTEM, ErrorSeverity.HIGH, "Error 1")
        tracker.record_error("engine", ErrorCategory.CONVERSATION, ErrorSeverity.LOW, "Error 2")

        stats = tracker.get_error_stats()

        assert stats["total_errors"] == 2
        assert stats["errors_last_hour"] == 2
        assert stats["severity_breakdown"]["high"] == 1
        assert stats["severity_breakdown"]["low"] == 1
        assert stats["category_breakdown"]["conversation"] == 1
        assert stats["component_error_counts"] == {"scheduler": 1, "engine": 1}

    def test_max_errors_bound(self):
        """Test that old errors are dropped past the limit."""
        tracker = ErrorTracker(max_errors=3, max_per_component=2)

        for i in range(5):
            tracker.record_error("ledger", ErrorCategory.PERSISTENCE, ErrorSeverity.LOW, f"E{i}")

        assert [e.message for e in tracker.errors] == ["E2", "E3", "E4"]
        assert [e.message for e in tracker.get_component_errors("ledger")] == ["E3", "E4"]

    def test_errors_since_and_clear_old(self):
        """Test time-window queries and pruning."""
        tracker = ErrorTracker()
        old = tracker.record_error("ledger", ErrorCategory.PERSISTENCE, ErrorSeverity.LOW, "old")
        old.timestamp = datetime.now() - timedelta(days=10)
        tracker.record_error("ledger", ErrorCategory.PERSISTENCE, ErrorSeverity.LOW, "new")

        assert tracker.errors_since(datetime.now() - timedelta(minutes=5)) == 1

        tracker.clear_old_errors(older_than_days=7)

        assert [e.message for e in tracker.errors] == ["new"]
        assert [e.message for e in tracker.component_errors["ledger"]] == ["new"]

    def test_global_tracker_reset(self):
        """Test the process-wide tracker accessor."""
        tracker = get_error_tracker()
        assert get_error_tracker() is tracker

        reset_error_tracker()

        assert get_error_tracker() is not tracker


class TestRetryConfig:
    """Test cases for RetryConfig."""

    def test_exponential_delay_without_jitter(self):
        """Test exponential growth capped at max_delay."""
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

        assert [config.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_fixed_delay(self):
        """Test constant delay."""
        config = RetryConfig(base_delay=2.0, exponential_backoff=False, jitter=False)

        assert config.delay_for(3) == 2.0

    def test_jitter_stays_within_half(self):
        """Test that jitter scales the delay into [50%, 100%]."""
        config = RetryConfig(base_delay=4.0)

        for attempt in range(3):
            delay = config.delay_for(attempt)
            full = min(4.0 * 2**attempt, 60.0)
            assert full * 0.5 <= delay <= full


class TestWithErrorHandling:
    """Test cases for the with_error_handling decorator."""

    @pytest.mark.asyncio
    async def test_async_success(self):
        """Test that a successful call passes its result through."""

        @with_error_handling("orchestrator", ErrorCategory.SYSTEM)
        async def work():
            return 42

        assert await work() == 42
        assert get_error_tracker().get_error_stats()["total_errors"] == 0

    @pytest.mark.asyncio
    async def test_async_failure_recorded_and_raised(self):
        """Test that failures are tracked and re-raised."""

        @with_error_handling("orchestrator", ErrorCategory.CONFIGURATION, ErrorSeverity.CRITICAL)
        async def work():
            raise ValueError("bad config")

        with pytest.raises(ValueError):
            await work()

        errors = get_error_tracker().get_component_errors("orchestrator")
        assert len(errors) == 1
        assert errors[0].severity == ErrorSeverity.CRITICAL
        assert errors[0].context["function"] == "work"

    @pytest.mark.asyncio
    async def test_async_suppressed_returns_fallback(self):
        """Test fallback values when suppressing."""

        @with_error_handling(
            "orchestrator", ErrorCategory.SYSTEM, fallback_value="fallback", suppress_exceptions=True
        )
        async def work():
            raise RuntimeError("boom")

        assert await work() == "fallback"

    @pytest.mark.asyncio
    async def test_async_retry(self):
        """Test retrying until success."""
        calls = []

        @with_error_handling(
            "orchestrator",
            ErrorCategory.NETWORK,
            retry_config=RetryConfig(max_attempts=3, base_delay=0.001, jitter=False),
        )
        async def work():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("flaky")
            return "ok"

        assert await work() == "ok"
        assert len(calls) == 3
        assert get_error_tracker().get_error_stats()["total_errors"] == 2

    def test_sync_failure(self):
        """Test the synchronous wrapper."""

        @with_error_handling("registry", ErrorCategory.PERSISTENCE)
        def work():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            work()
        assert get_error_tracker().get_error_stats()["category_breakdown"]["persistence"] == 1

    def test_sync_suppressed(self):
        """Test synchronous suppression."""

        @with_error_handling(
            "registry", ErrorCategory.PERSISTENCE, fallback_value=[], suppress_exceptions=True
        )
        def work():
            raise KeyError("missing")

        assert work() == []

    def test_wraps_preserves_name(self):
        """Test that decorated functions keep their metadata."""

        @with_error_handling("registry", ErrorCategory.PERSISTENCE)
        def lookup_search():
            """Look up a search."""

        assert lookup_search.__name__ == "lookup_search"
        assert lookup_search.__doc__ == "Look up a search."
