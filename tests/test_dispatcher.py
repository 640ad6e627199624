"""
Unit tests for the listing dispatcher.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from telegram.error import Forbidden, NetworkError, RetryAfter, TimedOut

from rent_watch.components.dispatcher import ListingDispatcher, is_retryable
from rent_watch.exceptions import DeliveryFailure
from rent_watch.utils.error_handling import ErrorCategory, get_error_tracker


class DeliveredThenTimedOutChannel:
    """Accepts every message but reports a timeout for the first one."""

    def __init__(self, error):
        self.error = error
        self.texts = []

    async def send_text(self, chat_id, text, keyboard=None):
        self.texts.append((chat_id, text))
        if len(self.texts) == 1:
            raise self.error


class TestIsRetryable:
    """Test the classification of send failures."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (RetryAfter(3), True),
            (NetworkError("Connection refused"), True),
            (ConnectionResetError(), True),
            (TimedOut("Timed out"), False),
            (asyncio.TimeoutError(), False),
            (Forbidden("bot was blocked by the user"), False),
            (RuntimeError("unexpected"), False),
        ],
    )
    def test_classification(self, error, expected):
        """Test which failures may be retried safely."""
        assert is_retryable(error) is expected


class TestListingDispatcher:
    """Test ListingDispatcher."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sleep = AsyncMock()

    def make_dispatcher(self, channel, **kwargs):
        kwargs.setdefault("retry_delay", 1.0)
        kwargs.setdefault("inter_message_delay", 0.2)
        return ListingDispatcher(channel, sleep=self.sleep, **kwargs)

    @pytest.mark.asyncio
    async def test_send_chooses_message_type_by_photo_count(self, fake_channel, make_listing):
        """Test text, single photo and photo group delivery."""
        dispatcher = self.make_dispatcher(fake_channel)
        listings = [make_listing(1), make_listing(2, photos=1), make_listing(3, photos=3)]

        report = await dispatcher.send(555, listings)

        assert report.confirmed_count == 3
        assert len(fake_channel.texts) == 1
        assert fake_channel.photos[0][2] == listings[1].photo_urls[0]
        assert fake_channel.photo_groups[0][2] == listings[2].photo_urls
        assert all(call[0] == 555 for call in fake_channel.texts + fake_channel.photos)

    @pytest.mark.asyncio
    async def test_delay_between_listings(self, fake_channel, make_listing):
        """Test the fixed pause between consecutive listings."""
        dispatcher = self.make_dispatcher(fake_channel)

        await dispatcher.send(1, [make_listing(1), make_listing(2), make_listing(3)])

        assert self.sleep.await_count == 2
        self.sleep.assert_awaited_with(0.2)

    @pytest.mark.asyncio
    async def test_failed_listing_isolated(self, fake_channel, make_listing):
        """Test that one failing listing does not stop the batch."""
        listings = [make_listing(1), make_listing(2), make_listing(3)]
        fake_channel.fail_urls.add(listings[1].url)
        dispatcher = self.make_dispatcher(fake_channel, max_retries=1)

        report = await dispatcher.send(1, listings)

        assert [l.external_id for l in report.confirmed] == ["1", "3"]
        assert [l.external_id for l in report.failed] == ["2"]
        assert report.attempted_count == 3

    @pytest.mark.asyncio
    async def test_failure_recorded_in_error_tracker(self, fake_channel, make_listing):
        """Test that delivery failures are tracked."""
        listing = make_listing(9)
        fake_channel.fail_urls.add(listing.url)
        dispatcher = self.make_dispatcher(fake_channel, max_retries=0)

        await dispatcher.send(1, [listing])

        stats = get_error_tracker().get_error_stats()
        assert stats["total_errors"] == 1
        assert stats["category_breakdown"][ErrorCategory.MESSAGE_DELIVERY.value] == 1

    @pytest.mark.asyncio
    async def test_deliver_retries_then_succeeds(self, make_listing):
        """Test retry with exponential backoff after connection failures."""
        channel = AsyncMock()
        channel.send_text.side_effect = [
            NetworkError("Connection refused"),
            NetworkError("Connection refused"),
            None,
        ]
        dispatcher = self.make_dispatcher(channel, max_retries=2, retry_delay=1.0)

        result = await dispatcher.deliver(1, make_listing(1))

        assert result.success
        assert result.attempts == 3
        assert [call.args[0] for call in self.sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_deliver_raises_after_all_attempts(self, make_listing):
        """Test that exhausting retries raises DeliveryFailure."""
        channel = AsyncMock()
        channel.send_text.side_effect = NetworkError("Connection reset by peer")
        dispatcher = self.make_dispatcher(channel, max_retries=2)

        with pytest.raises(DeliveryFailure) as exc_info:
            await dispatcher.deliver(1, make_listing(4))

        assert exc_info.value.external_id == "4"
        assert exc_info.value.attempts == 3
        assert channel.send_text.await_count == 3

    @pytest.mark.asyncio
    async def test_rejected_send_not_retried(self, make_listing):
        """Test that a refusal by the platform fails at once."""
        channel = AsyncMock()
        channel.send_text.side_effect = Forbidden("bot was blocked by the user")
        dispatcher = self.make_dispatcher(channel, max_retries=2)

        with pytest.raises(DeliveryFailure) as exc_info:
            await dispatcher.deliver(1, make_listing(4))

        assert exc_info.value.attempts == 1
        assert channel.send_text.await_count == 1
        self.sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_hint_honoured(self, make_listing):
        """Test that flood-control hints extend the backoff."""
        channel = AsyncMock()
        channel.send_text.side_effect = [RetryAfter(7), None]
        dispatcher = self.make_dispatcher(channel, max_retries=1, retry_delay=1.0)

        await dispatcher.deliver(1, make_listing(1))

        self.sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [TimedOut("Timed out"), asyncio.TimeoutError()], ids=["telegram", "asyncio"]
    )
    async def test_timed_out_send_is_not_repeated(self, make_listing, error):
        """Test that a send which may have arrived is never sent twice."""
        channel = DeliveredThenTimedOutChannel(error)
        dispatcher = self.make_dispatcher(channel, max_retries=2)
        listing = make_listing(12)

        report = await dispatcher.send(1, [listing])

        assert len(channel.texts) == 1
        assert report.confirmed == []
        assert report.failed == [listing]
        self.sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timed_out_listing_does_not_block_batch(self, make_listing):
        """Test that the next listing is still delivered after a timeout."""
        channel = DeliveredThenTimedOutChannel(TimedOut("Timed out"))
        dispatcher = self.make_dispatcher(channel, max_retries=2)
        listings = [make_listing(1), make_listing(2)]

        report = await dispatcher.send(1, listings)

        assert [l.external_id for l in report.failed] == ["1"]
        assert [l.external_id for l in report.confirmed] == ["2"]
        assert len(channel.texts) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, fake_channel):
        """Test sending nothing."""
        dispatcher = self.make_dispatcher(fake_channel)

        report = await dispatcher.send(1, [])

        assert report.attempted_count == 0
        self.sleep.assert_not_awaited()
