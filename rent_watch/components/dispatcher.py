"""
Listing dispatcher for the Rent Watch system.

Delivers listings to a chat one at a time. A send is retried only when the
platform certainly did not deliver it: flood control and connection
failures. A timed out send may already have reached the user, so it is
reported as failed without a retry and the listing is offered again on the
next pass. A listing that still fails is reported as failed and the batch
carries on with the next one.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from telegram.error import NetworkError, RetryAfter, TimedOut

from ..exceptions import DeliveryFailure
from ..interfaces import IMessagingChannel
from ..models.delivery import DeliveryResult, DispatchReport
from ..models.listing import Listing
from ..utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    RetryConfig,
    get_error_tracker,
)
from ..utils.logging import get_logger
from .listing_formatter import ListingFormatter

logger = get_logger("dispatcher")


def _retry_after_seconds(error: Exception) -> float:
    """Flood-control hint carried by some platform errors."""
    retry_after = getattr(error, "retry_after", None)
    if isinstance(retry_after, timedelta):
        return retry_after.total_seconds()
    if isinstance(retry_after, (int, float)):
        return float(retry_after)
    return 0.0


def is_retryable(error: Exception) -> bool:
    """Whether a failed send is known not to have reached the chat."""
    if isinstance(error, (TimedOut, asyncio.TimeoutError, TimeoutError)):
        return False
    return isinstance(error, (RetryAfter, NetworkError, ConnectionError))


class ListingDispatcher:
    """Sends listings through a messaging channel with per-listing retries."""

    def __init__(
        self,
        channel: IMessagingChannel,
        formatter: Optional[ListingFormatter] = None,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        inter_message_delay: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize dispatcher.

        Args:
            channel: Messaging channel used for delivery
            formatter: Listing text formatter
            max_retries: Retries per listing after the first attempt
            retry_delay: Initial delay between retries in seconds
            inter_message_delay: Fixed pause between consecutive listings
            sleep: Awaitable sleep function
        """
        self.channel = channel
        self.formatter = formatter or ListingFormatter()
        self.max_retries = max_retries
        self.retry_config = RetryConfig(
            max_attempts=max_retries + 1, base_delay=retry_delay, jitter=False
        )
        self.inter_message_delay = inter_message_delay
        self._sleep = sleep

    async def send(self, chat_id: int, listings: List[Listing]) -> DispatchReport:
        """
        Send listings in order.

        Returns:
            DispatchReport whose ``confirmed`` list holds exactly the listings
            the platform accepted.
        """
        report = DispatchReport()

        for index, listing in enumerate(listings):
            if index > 0 and self.inter_message_delay > 0:
                await self._sleep(self.inter_message_delay)

            try:
                await self.deliver(chat_id, listing)
                report.confirmed.append(listing)
            except DeliveryFailure as e:
                report.failed.append(listing)
                get_error_tracker().record_error(
                    component="dispatcher",
                    category=ErrorCategory.MESSAGE_DELIVERY,
                    severity=ErrorSeverity.MEDIUM,
                    message=str(e),
                    exception=e,
                    context={
                        "chat_id": chat_id,
                        "external_id": listing.external_id,
                        "attempts": e.attempts,
                    },
                )

        logger.info(
            "Dispatch finished",
            extra={
                "chat_id": chat_id,
                "confirmed": report.confirmed_count,
                "failed": len(report.failed),
            },
        )
        return report

    async def deliver(self, chat_id: int, listing: Listing) -> DeliveryResult:
        """
        Deliver a single listing with retry logic.

        Raises:
            DeliveryFailure: If every attempt failed, or an attempt failed in
                a way that may have delivered the message anyway.
        """
        start_time = datetime.now()
        last_error = None
        total_attempts = self.retry_config.max_attempts
        attempts_made = 0

        for attempt in range(total_attempts):
            attempts_made = attempt + 1
            try:
                await self._send_listing(chat_id, listing)
                delivery_time = datetime.now()
                logger.debug(
                    "Listing delivered",
                    extra={
                        "chat_id": chat_id,
                        "external_id": listing.external_id,
                        "attempt": attempt + 1,
                        "seconds": (delivery_time - start_time).total_seconds(),
                    },
                )
                result = DeliveryResult(
                    success=True,
                    delivery_time=delivery_time,
                    error_message=None,
                    attempts=attempt + 1,
                )
                result.validate()
                return result

            except Exception as e:
                last_error = e
                logger.warning(
                    f"Send attempt {attempt + 1}/{total_attempts} failed: {e}",
                    extra={"chat_id": chat_id, "external_id": listing.external_id},
                )

                if not is_retryable(e):
                    break

                if attempt < total_attempts - 1:
                    sleep_time = max(
                        self.retry_config.delay_for(attempt), _retry_after_seconds(e)
                    )
                    await self._sleep(sleep_time)

        raise DeliveryFailure(
            listing.external_id, str(last_error)[:400], attempts=attempts_made
        )

    async def _send_listing(self, chat_id: int, listing: Listing) -> None:
        """Text only, single photo or photo group depending on the photo count."""
        text = self.formatter.format_listing(listing)
        photos = listing.photo_urls

        if not photos:
            await self.channel.send_text(chat_id, text)
        elif len(photos) == 1:
            await self.channel.send_photo(chat_id, text, photos[0])
        else:
            await self.channel.send_photo_group(chat_id, text, photos)
