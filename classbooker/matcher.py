"""
Rule matching and booking-decision predicates.

All weekday and time-of-day comparisons happen in the platform's home
timezone, whatever offset the upstream timestamp happens to carry.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

import pytz

from classbooker.exceptions import DataError
from classbooker.models import WEEKDAYS, BookingRule, ClassInstance

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_TIMEZONE = "Europe/Copenhagen"


def parse_class_start(
    value: str | None, tz_name: str = DEFAULT_REFERENCE_TIMEZONE
) -> datetime:
    """
    Parse an ISO-8601 class start into an aware datetime in the reference zone.

    Timestamps without an offset are read as reference-zone wall time.

    Raises:
        DataError: If the value is missing or not a valid timestamp
    """
    if not value or not isinstance(value, str):
        raise DataError(f"missing start time: {value!r}")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise DataError(f"invalid start time: {value!r}") from e

    zone = pytz.timezone(tz_name)
    if parsed.tzinfo is None:
        return zone.localize(parsed)
    return parsed.astimezone(zone)


def class_slot(start: datetime) -> tuple[str, str]:
    """Weekday name and ``HH:MM`` of an already zone-converted datetime."""
    return WEEKDAYS[start.weekday()], start.strftime("%H:%M")


def _same(left: str | None, right: str | None) -> bool:
    return (left or "").strip().lower() == (right or "").strip().lower()


def matches(
    class_instance: ClassInstance,
    rule: BookingRule,
    tz_name: str = DEFAULT_REFERENCE_TIMEZONE,
) -> bool:
    """
    True when name, weekday, time and (if the rule names one) location agree.

    The instructor never takes part: the same slot is taught by different
    people from week to week.
    """
    try:
        start = parse_class_start(class_instance.start_date_time, tz_name)
    except DataError as e:
        logger.warning(f"Invalid class date for class {class_instance.id}: {e}")
        return False

    weekday, time_of_day = class_slot(start)

    if not class_instance.name or not _same(class_instance.name, rule.class_name):
        return False
    if weekday != rule.day_of_week.strip().lower():
        return False
    if time_of_day != rule.time.strip():
        return False
    if rule.location and not _same(class_instance.location_name, rule.location):
        return False

    logger.info(
        f"Match found: {class_instance.name} at {class_instance.location_name} "
        f"on {weekday} at {time_of_day} (instructor: {class_instance.instructor})"
    )
    return True


def should_book_given_waitlist(
    class_instance: ClassInstance, rule: BookingRule
) -> bool:
    """Free spot, or a waiting list no longer than the rule tolerates."""
    if class_instance.spots_available > 0:
        logger.info(f"Spots available: {class_instance.spots_available}")
        return True

    max_waiting_list = rule.max_waiting_list or 0
    if class_instance.waiting_list_count <= max_waiting_list:
        logger.info(
            f"Waiting list OK: {class_instance.waiting_list_count} people "
            f"(max: {max_waiting_list})"
        )
        return True

    logger.info(
        f"Waiting list too long: {class_instance.waiting_list_count} people "
        f"(max: {max_waiting_list})"
    )
    return False


def today_in_zone(
    tz_name: str = DEFAULT_REFERENCE_TIMEZONE, now: datetime | None = None
) -> date:
    zone = pytz.timezone(tz_name)
    if now is None:
        return datetime.now(zone).date()
    if now.tzinfo is None:
        return zone.localize(now).date()
    return now.astimezone(zone).date()


def days_until_class(
    start: datetime,
    tz_name: str = DEFAULT_REFERENCE_TIMEZONE,
    now: datetime | None = None,
) -> int:
    """Calendar days from today to the class date, both taken in the reference zone."""
    zone = pytz.timezone(tz_name)
    class_day = start.astimezone(zone).date()
    return (class_day - today_in_zone(tz_name, now)).days
