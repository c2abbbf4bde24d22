"""
One-off operations on a single user's platform account.

Everything here logs in with the user's stored credentials for the duration of
one call. Bookings made this way are recorded in the same history as the
scheduled ones, marked as manual.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncGenerator, Callable

from classbooker.config import Settings, get_settings, open_store
from classbooker.crypto import derive_key
from classbooker.exceptions import DataError
from classbooker.gateway import UpstreamGateway
from classbooker.models import (
    BookingAttemptRecord,
    BookingRef,
    BookingResult,
    ClassInstance,
    Location,
)
from classbooker.session import SessionClient
from classbooker.store import CredentialStore, DocumentStore, HistoryStore

logger = logging.getLogger(__name__)


class AccountService:
    """Ad-hoc account actions: connection check, listings and manual bookings."""

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        history: HistoryStore,
        session_factory: Callable[[Settings], SessionClient] = SessionClient,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.history = history
        self.session_factory = session_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @asynccontextmanager
    async def gateway(self, user_id: str) -> AsyncGenerator[UpstreamGateway, None]:
        """
        Log in as ``user_id`` and yield a gateway over that session.

        Raises:
            DataError: If the user has no (readable) stored credentials
            AuthError: If the login fails
        """
        if not self.credentials.has_credentials(user_id):
            raise DataError("No credentials saved")
        credentials = self.credentials.get(user_id)

        async with self.session_factory(self.settings) as session:
            await session.login(credentials.username, credentials.password)
            yield UpstreamGateway(session)

    async def test_connection(self, user_id: str) -> bool:
        async with self.gateway(user_id) as gateway:
            return await gateway.session.test_connection()

    async def list_locations(self, user_id: str) -> list[Location]:
        async with self.gateway(user_id) as gateway:
            locations = await gateway.list_locations()
        logger.info(f"Number of gyms: {len(locations)}")
        return locations

    async def list_bookings(self, user_id: str) -> list[BookingRef]:
        async with self.gateway(user_id) as gateway:
            bookings = await gateway.list_my_bookings()
        logger.info(f"Number of bookings: {len(bookings)}")
        return bookings

    async def list_classes(
        self, user_id: str, days: int, start: date | None = None
    ) -> list[ClassInstance]:
        async with self.gateway(user_id) as gateway:
            return await gateway.list_classes_window(
                days,
                start=start,
                max_concurrency=self.settings.max_concurrent_fetches,
            )

    async def book_class(
        self,
        user_id: str,
        event_id: str,
        class_name: str | None = None,
        class_time: str | None = None,
        gym: str | None = None,
        instructor: str | None = None,
    ) -> tuple[BookingResult, BookingAttemptRecord]:
        """
        Book one class by event id, outside of any rule.

        The attempt is recorded with ``automatic`` off and no rule id, whether
        the platform accepts or refuses it. Transport and login failures raise
        and leave no history entry.
        """
        if not event_id:
            raise DataError("eventId is required")

        async with self.gateway(user_id) as gateway:
            result = await gateway.book_class(str(event_id))

        record = BookingAttemptRecord.from_manual(
            result,
            booked_at=self.clock(),
            class_name=class_name,
            class_time=class_time,
            gym=gym,
            instructor=instructor,
        )
        self.history.append(user_id, record)
        return result, record


def build_account_service(settings: Settings | None = None) -> AccountService:
    """Wire the account service to the configured store and credential key."""
    settings = settings or get_settings()
    cache = open_store(settings)
    return AccountService(
        settings=settings,
        credentials=CredentialStore(
            DocumentStore(cache), derive_key(settings.session_secret)
        ),
        history=HistoryStore(cache),
    )
