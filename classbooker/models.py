"""
Data model for the booking automation.

Upstream payloads are loosely typed and their field names drift between
endpoint variants, so every record coming from the platform goes through one
of the ``*_from_upstream`` normalizers below. Business logic only ever sees
the canonical dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Known aliases, in lookup order.
CLASS_START_KEYS = ("start_date_time", "startDateTime", "start")
CLASS_LOCATION_KEYS = ("gym", "location", "center")
SPOTS_AVAILABLE_KEYS = ("spots_available", "spotsAvailable", "free_space")
WAITING_LIST_KEYS = ("waiting_list_count", "waitingListCount")
BOOKING_EVENT_ID_KEYS = ("ss_event_id", "event_id", "eventId", "id")

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def first_present(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    """Return the first value under ``keys`` that is not None."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def to_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_event_id(value: Any) -> str | None:
    """Event ids arrive as ints or strings depending on the endpoint."""
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class Credentials:
    """Plaintext login pair for the upstream platform."""

    username: str
    password: str


@dataclass(frozen=True)
class Location:
    """A gym as listed by the platform."""

    id: str
    name: str
    city: str | None = None


@dataclass
class ClassInstance:
    """One scheduled class, normalized from the upstream catalog."""

    id: str | None
    name: str | None
    start_date_time: str | None
    location_id: str | None = None
    location_name: str | None = None
    instructor: str | None = None
    spots_available: int = 0
    waiting_list_count: int = 0


@dataclass(frozen=True)
class BookingRef:
    """An existing booking of the current user."""

    event_id: str


@dataclass
class BookingRule:
    """A recurring booking preference owned by one user."""

    id: str | None
    class_name: str
    day_of_week: str
    time: str
    instructor: str | None = None
    location: str | None = None
    enabled: bool = True
    max_waiting_list: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> BookingRule:
        max_waiting_list = raw.get("maxWaitingList")
        return cls(
            id=raw.get("id"),
            class_name=raw.get("className") or "",
            day_of_week=(raw.get("dayOfWeek") or "").lower(),
            time=raw.get("time") or "",
            instructor=raw.get("instructor"),
            location=raw.get("location"),
            enabled=raw.get("enabled", True) is not False,
            max_waiting_list=to_int(max_waiting_list, 0),
            created_at=raw.get("createdAt"),
            updated_at=raw.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "className": self.class_name,
            "dayOfWeek": self.day_of_week,
            "time": self.time,
            "instructor": self.instructor,
            "location": self.location,
            "enabled": self.enabled,
            "maxWaitingList": self.max_waiting_list,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class BookingResult:
    """Outcome of a single booking submission."""

    event_id: str
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    code: str | None = None
    message: str | None = None


@dataclass
class BookingAttemptRecord:
    """Append-only history entry written once per booking attempt."""

    event_id: str
    class_name: str
    class_time: str | None
    gym: str
    instructor: str
    rule_id: str | None
    booked_at: str
    status: str
    error: str | None = None
    details: dict[str, Any] | None = None
    automatic: bool = True

    @classmethod
    def from_attempt(
        cls,
        class_instance: ClassInstance,
        rule: BookingRule,
        result: BookingResult,
        booked_at: datetime,
    ) -> BookingAttemptRecord:
        return cls(
            event_id=class_instance.id or result.event_id,
            class_name=class_instance.name or "Unknown",
            class_time=class_instance.start_date_time,
            gym=class_instance.location_name or "Unknown",
            instructor=class_instance.instructor or "Unknown",
            rule_id=rule.id or None,
            booked_at=booked_at.isoformat(),
            status="success" if result.success else "failed",
            error=None if result.success else (result.error or "Unknown error"),
            details=result.data or None,
        )

    @classmethod
    def from_manual(
        cls,
        result: BookingResult,
        booked_at: datetime,
        class_name: str | None = None,
        class_time: str | None = None,
        gym: str | None = None,
        instructor: str | None = None,
    ) -> BookingAttemptRecord:
        return cls(
            event_id=result.event_id,
            class_name=class_name or "Unknown",
            class_time=class_time or None,
            gym=gym or "Unknown",
            instructor=instructor or "Unknown",
            rule_id=None,
            booked_at=booked_at.isoformat(),
            status="success" if result.success else "failed",
            error=None if result.success else (result.error or "Unknown error"),
            details=result.data or None,
            automatic=False,
        )

    def to_dict(self) -> dict[str, Any]:
        record = {
            "eventId": self.event_id,
            "className": self.class_name,
            "classTime": self.class_time,
            "gym": self.gym,
            "instructor": self.instructor,
            "ruleId": self.rule_id,
            "bookedAt": self.booked_at,
            "status": self.status,
            "automatic": self.automatic,
        }
        if self.error is not None:
            record["error"] = self.error
        if self.details:
            record["details"] = self.details
        return record


@dataclass
class UserError:
    user_id: str
    error: str


@dataclass
class RunResults:
    """Aggregate counters for one scheduled run."""

    checked: int = 0
    booked: int = 0
    failed: int = 0
    errors: list[UserError] = field(default_factory=list)

    def merge(self, other: RunResults) -> None:
        self.checked += other.checked
        self.booked += other.booked
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "booked": self.booked,
            "failed": self.failed,
            "errors": [
                {"userId": error.user_id, "error": error.error} for error in self.errors
            ],
        }


# --- Upstream normalization ---


def _name_of(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("name")
    if value is None:
        return None
    return str(value)


def location_from_upstream(raw: dict[str, Any]) -> Location:
    return Location(
        id=str(raw.get("id")),
        name=raw.get("name") or "",
        city=raw.get("city"),
    )


def class_from_upstream(raw: dict[str, Any]) -> ClassInstance:
    location = first_present(raw, CLASS_LOCATION_KEYS)
    location_id = None
    location_name = None
    if isinstance(location, dict):
        location_id = normalize_event_id(location.get("id"))
        location_name = location.get("name")
    elif location is not None:
        location_name = str(location)
    if location_name is None:
        location_name = raw.get("gym_name")

    instructor = first_present(raw, ("instructor", "instructor_name"))

    return ClassInstance(
        id=normalize_event_id(raw.get("id")),
        name=raw.get("name"),
        start_date_time=first_present(raw, CLASS_START_KEYS),
        location_id=location_id,
        location_name=location_name,
        instructor=_name_of(instructor),
        spots_available=to_int(first_present(raw, SPOTS_AVAILABLE_KEYS)),
        waiting_list_count=to_int(first_present(raw, WAITING_LIST_KEYS)),
    )


def booking_ref_from_upstream(raw: dict[str, Any]) -> BookingRef | None:
    event_id = normalize_event_id(first_present(raw, BOOKING_EVENT_ID_KEYS))
    if event_id is None:
        return None
    return BookingRef(event_id=event_id)


def unwrap_list(payload: Any, key: str) -> list[dict[str, Any]]:
    """Pull a record list out of a response that may or may not be wrapped."""
    if isinstance(payload, dict):
        items = payload.get(key)
    else:
        items = payload
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]
