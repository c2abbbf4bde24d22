"""Typed operations over the platform's JSON endpoints."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta

from classbooker.config import BookingConstants
from classbooker.exceptions import DataError, TransportError, UpstreamError
from classbooker.models import (
    BookingRef,
    BookingResult,
    ClassInstance,
    Location,
    booking_ref_from_upstream,
    class_from_upstream,
    location_from_upstream,
    unwrap_list,
)
from classbooker.session import SessionClient

logger = logging.getLogger(__name__)


class UpstreamGateway:
    """Domain operations for one user's session."""

    def __init__(self, session: SessionClient):
        self.session = session

    async def list_locations(self) -> list[Location]:
        payload = await self.session.request(BookingConstants.GYMS_PATH)
        return [location_from_upstream(raw) for raw in unwrap_list(payload, "gyms")]

    async def list_classes(self, location_id: str, day: date) -> list[ClassInstance]:
        endpoint = (
            f"{BookingConstants.EVENTS_PATH}"
            f"?center_id={location_id}&date={day.strftime('%Y-%m-%d')}"
        )
        payload = await self.session.request(endpoint)
        return [class_from_upstream(raw) for raw in unwrap_list(payload, "ss_events")]

    async def list_my_bookings(self) -> list[BookingRef]:
        payload = await self.session.request(BookingConstants.MY_BOOKINGS_PATH)
        refs = (
            booking_ref_from_upstream(raw)
            for raw in unwrap_list(payload, "ss_participations")
        )
        return [ref for ref in refs if ref is not None]

    async def book_class(self, event_id: str) -> BookingResult:
        """
        Submit a booking for one class.

        An upstream refusal (quota exhausted, class full) comes back as a
        failed ``BookingResult``. Only transport and authentication failures
        raise.
        """
        endpoint = BookingConstants.BOOK_EVENT_PATH.format(event_id=event_id)
        logger.info(f"Attempting to book class {event_id}...")

        try:
            payload = await self.session.request(endpoint, method="POST", body={})
        except UpstreamError as e:
            return booking_refusal(event_id, e)

        logger.info(f"Booking successful: {event_id}")
        return BookingResult(
            event_id=event_id,
            success=True,
            data=payload if isinstance(payload, dict) else {},
        )

    async def list_classes_window(
        self,
        days: int,
        start: date | None = None,
        max_concurrency: int = 5,
    ) -> list[ClassInstance]:
        """Classes at every location for ``days`` days starting at ``start``."""
        start = start or date.today()
        locations = await self.list_locations()
        dates = [start + timedelta(days=offset) for offset in range(days)]
        return await fetch_catalog(self, locations, dates, max_concurrency)


def booking_refusal(event_id: str, error: UpstreamError) -> BookingResult:
    message = str(error)
    logger.error(f"Book class error: {message}")

    if message == BookingConstants.NO_MORE_BOOKINGS_MESSAGE:
        return BookingResult(
            event_id=event_id,
            success=False,
            error="No more bookings available",
            code=BookingConstants.NO_MORE_BOOKINGS_CODE,
            message=message,
        )

    body = error.body if isinstance(error.body, dict) else {}
    return BookingResult(event_id=event_id, success=False, error=message, data=body)


async def fetch_catalog(
    gateway: UpstreamGateway,
    locations: list[Location],
    dates: list[date],
    max_concurrency: int,
) -> list[ClassInstance]:
    """
    Fan out one class fetch per (location, date) pair with bounded concurrency.

    A failing pair is logged and contributes nothing; the other pairs still
    count. Results keep date-major, location-minor order.
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def fetch_pair(location: Location, day: date) -> list[ClassInstance]:
        async with semaphore:
            try:
                return await gateway.list_classes(location.id, day)
            except (UpstreamError, TransportError, DataError) as e:
                logger.warning(
                    f"Could not fetch classes for gym {location.id} on {day}: {e}"
                )
                return []

    tasks = [fetch_pair(location, day) for day in dates for location in locations]
    results = await asyncio.gather(*tasks)

    catalog: list[ClassInstance] = []
    for classes in results:
        catalog.extend(classes)
    return catalog
