"""
Scheduled booking run.

One run processes every user with enabled rules. Each user gets an isolated
session; a failure for one user is recorded and never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from classbooker.config import Settings, get_settings, open_store
from classbooker.crypto import derive_key
from classbooker.exceptions import TransportError
from classbooker.gateway import UpstreamGateway, fetch_catalog
from classbooker.matcher import (
    days_until_class,
    matches,
    parse_class_start,
    should_book_given_waitlist,
    today_in_zone,
)
from classbooker.models import (
    BookingAttemptRecord,
    BookingResult,
    BookingRule,
    ClassInstance,
    RunResults,
    UserError,
)
from classbooker.session import SessionClient
from classbooker.store import CredentialStore, DocumentStore, HistoryStore, RuleStore

logger = logging.getLogger(__name__)

RUN_TIMEOUT_MESSAGE = "run timed out before this user finished"


class BookingOrchestrator:
    """Evaluates every user's rules against the upcoming catalog and books matches."""

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        rules: RuleStore,
        history: HistoryStore,
        session_factory: Callable[[Settings], SessionClient] = SessionClient,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.rules = rules
        self.history = history
        self.session_factory = session_factory
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop = asyncio.Event()

    # --- Whole run ---

    async def run(self) -> RunResults:
        """Process all users with enabled rules within the run-wide timeout."""
        self._stop = asyncio.Event()
        user_ids = self.rules.users_with_enabled_rules()
        logger.info(f"Starting booking check for {len(user_ids)} users")

        semaphore = asyncio.Semaphore(self.settings.max_concurrent_users)
        partials = {user_id: RunResults() for user_id in user_ids}

        async def guarded(user_id: str) -> None:
            async with semaphore:
                await self.run_for_user(user_id, partials[user_id])

        tasks = {
            asyncio.ensure_future(guarded(user_id)): user_id for user_id in user_ids
        }

        pending = set()
        if tasks:
            _, pending = await asyncio.wait(
                tasks, timeout=self.settings.run_timeout_seconds
            )

        if pending:
            logger.warning(
                f"Run timeout reached; stopping {len(pending)} unfinished users"
            )
            self._stop.set()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                partials[tasks[task]].errors.append(
                    UserError(user_id=tasks[task], error=RUN_TIMEOUT_MESSAGE)
                )

        results = RunResults()
        for user_id in user_ids:
            results.merge(partials[user_id])

        logger.info(f"Booking check completed: {results.to_dict()}")
        return results

    # --- Single user ---

    async def run_for_user(self, user_id: str, results: RunResults) -> None:
        """
        Run the full check for one user, recording into ``results``.

        Any exception except cancellation is caught and recorded as a
        per-user error.
        """
        try:
            enabled_rules = self.rules.list_enabled_rules(user_id)
            if not enabled_rules:
                return

            if not self.credentials.has_credentials(user_id):
                logger.info(f"Skipping user {user_id} - no credentials stored")
                return

            results.checked += 1
            credentials = self.credentials.get(user_id)

            async with self.session_factory(self.settings) as session:
                await session.login(credentials.username, credentials.password)
                await self._book_for_user(
                    user_id, UpstreamGateway(session), enabled_rules, results
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Error processing user {user_id}: {e}")
            results.errors.append(UserError(user_id=user_id, error=str(e)))

    async def _book_for_user(
        self,
        user_id: str,
        gateway: UpstreamGateway,
        enabled_rules: list[BookingRule],
        results: RunResults,
    ) -> None:
        bookings = await gateway.list_my_bookings()
        booked_event_ids = {ref.event_id for ref in bookings}
        logger.info(
            f"User {user_id} has {len(booked_event_ids)} current bookings upstream"
        )

        catalog = await self._fetch_catalog(gateway)
        logger.info(f"Found {len(catalog)} classes for user {user_id}")

        for rule in enabled_rules:
            logger.info(
                f"Checking rule: {rule.class_name} on {rule.day_of_week} at "
                f"{rule.time} (maxWaitingList: {rule.max_waiting_list})"
            )
            for class_instance in catalog:
                if self._stop.is_set():
                    logger.info("Run stopping - no new booking attempts")
                    return
                if not self.is_eligible(
                    user_id, class_instance, rule, booked_event_ids
                ):
                    continue

                record = await self._attempt_booking(
                    user_id, gateway, class_instance, rule, results
                )
                if record.status == "success":
                    booked_event_ids.add(class_instance.id)

    async def _fetch_catalog(self, gateway: UpstreamGateway) -> list[ClassInstance]:
        locations = await gateway.list_locations()
        today = today_in_zone(self.settings.reference_timezone, self.clock())
        dates = [
            today + timedelta(days=offset)
            for offset in range(1, self.settings.max_days_ahead + 1)
        ]
        return await fetch_catalog(
            gateway, locations, dates, self.settings.max_concurrent_fetches
        )

    def is_eligible(
        self,
        user_id: str,
        class_instance: ClassInstance,
        rule: BookingRule,
        booked_event_ids: set[str],
    ) -> bool:
        """Apply the match and every pre-booking check, in order."""
        tz_name = self.settings.reference_timezone
        if not matches(class_instance, rule, tz_name):
            return False

        event_id = class_instance.id
        if event_id is None:
            logger.warning(f"Skipping class {class_instance.name} - no event id")
            return False

        start = parse_class_start(class_instance.start_date_time, tz_name)
        days_ahead = days_until_class(start, tz_name, self.clock())
        if days_ahead > self.settings.max_days_ahead:
            logger.info(
                f"Skipping class {event_id} - too far in advance ({days_ahead} days)"
            )
            return False

        if event_id in booked_event_ids:
            logger.info(f"Skipping class {event_id} - already booked upstream")
            return False

        if not should_book_given_waitlist(class_instance, rule):
            logger.info(f"Skipping class {event_id} - waiting list too long")
            return False

        if self.history.exists_successful(user_id, event_id):
            logger.info(f"Skipping class {event_id} - already in successful history")
            return False

        return True

    async def _attempt_booking(
        self,
        user_id: str,
        gateway: UpstreamGateway,
        class_instance: ClassInstance,
        rule: BookingRule,
        results: RunResults,
    ) -> BookingAttemptRecord:
        """
        Book and record one class.

        A started submission always runs to completion and gets its history
        entry, even if the surrounding run is cancelled meanwhile.
        """
        attempt = asyncio.ensure_future(
            self._book_and_record(user_id, gateway, class_instance, rule, results)
        )
        try:
            return await asyncio.shield(attempt)
        except asyncio.CancelledError:
            await asyncio.gather(attempt, return_exceptions=True)
            raise

    async def _book_and_record(
        self,
        user_id: str,
        gateway: UpstreamGateway,
        class_instance: ClassInstance,
        rule: BookingRule,
        results: RunResults,
    ) -> BookingAttemptRecord:
        logger.info(
            f"Attempting to book class {class_instance.id}: {class_instance.name}"
        )
        try:
            result = await gateway.book_class(class_instance.id)
        except TransportError as e:
            result = BookingResult(
                event_id=class_instance.id, success=False, error=str(e)
            )

        record = BookingAttemptRecord.from_attempt(
            class_instance, rule, result, booked_at=self.clock()
        )
        self.history.append(user_id, record)

        if result.success:
            results.booked += 1
            logger.info(
                f"Successfully booked class {class_instance.id} for user {user_id}"
            )
        else:
            results.failed += 1
            logger.error(f"Failed to book class {class_instance.id}: {result.error}")
        return record


def build_orchestrator(settings: Settings | None = None) -> BookingOrchestrator:
    """Wire the orchestrator to the configured store and credential key."""
    settings = settings or get_settings()
    cache = open_store(settings)
    documents = DocumentStore(cache)
    return BookingOrchestrator(
        settings=settings,
        credentials=CredentialStore(documents, derive_key(settings.session_secret)),
        rules=RuleStore(documents),
        history=HistoryStore(cache),
    )
