"""
Document store for users, booking rules and booking history.

Backed by a ``diskcache.Cache``. Each user is one document under
``user:<id>``. Attempt history entries are stored one per key under
``history:<id>:<n>``, with ``history:<id>`` holding the entry count.
``users`` indexes the known user ids.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timezone
from typing import Any

from diskcache import Cache

from classbooker.crypto import decrypt, encrypt
from classbooker.exceptions import DataError
from classbooker.models import (
    WEEKDAYS,
    BookingAttemptRecord,
    BookingRule,
    Credentials,
)

logger = logging.getLogger(__name__)

USERS_KEY = "users"
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def history_key(user_id: str) -> str:
    return f"history:{user_id}"


def history_entry_key(user_id: str, index: int) -> str:
    return f"history:{user_id}:{index}"


def booked_key(user_id: str) -> str:
    return f"booked:{user_id}"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore:
    """Thin document layer over the disk cache."""

    def __init__(self, cache: Cache):
        self.cache = cache

    def user_ids(self) -> list[str]:
        return list(self.cache.get(USERS_KEY, []))

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self.cache.get(user_key(user_id))

    def update_user(self, user_id: str, **fields: Any) -> dict[str, Any]:
        with self.cache.transact():
            document = self.cache.get(user_key(user_id)) or {"userId": user_id}
            document.update(fields)
            self.cache.set(user_key(user_id), document)

            ids = self.cache.get(USERS_KEY, [])
            if user_id not in ids:
                self.cache.set(USERS_KEY, [*ids, user_id])
        return document


class CredentialStore:
    """Encrypted upstream credentials per user."""

    def __init__(self, documents: DocumentStore, key: bytes):
        self.documents = documents
        self._key = key

    def save(self, user_id: str, username: str, password: str) -> None:
        self.documents.update_user(
            user_id,
            credentials={
                "username": encrypt(username, self._key),
                "password": encrypt(password, self._key),
                "updatedAt": utcnow_iso(),
            },
        )
        logger.info(f"Saved credentials for user {user_id}")

    def get(self, user_id: str) -> Credentials | None:
        """
        Decrypt the stored pair, or None if the user never saved one.

        Raises:
            DataError: If the stored document is incomplete or undecryptable
        """
        document = self.documents.get_user(user_id) or {}
        stored = document.get("credentials")
        if not stored:
            return None

        username = stored.get("username") if isinstance(stored, dict) else None
        password = stored.get("password") if isinstance(stored, dict) else None
        if not isinstance(username, str) or not isinstance(password, str):
            raise DataError(f"Incomplete stored credentials for user {user_id}")

        return Credentials(
            username=decrypt(username, self._key),
            password=decrypt(password, self._key),
        )

    def has_credentials(self, user_id: str) -> bool:
        document = self.documents.get_user(user_id) or {}
        return bool(document.get("credentials"))


def validate_rule_fields(class_name: str, day_of_week: str, time: str) -> None:
    if not class_name or not day_of_week or not time:
        raise DataError("Missing required fields")
    if day_of_week.lower() not in WEEKDAYS:
        raise DataError(f"Unknown day of week: {day_of_week}")
    if not TIME_PATTERN.match(time):
        raise DataError(f"Time must be HH:MM, got {time!r}")


class RuleStore:
    """Booking rules, stored inline on the user document."""

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    def _raw_rules(self, user_id: str) -> list[dict[str, Any]]:
        document = self.documents.get_user(user_id) or {}
        return list(document.get("bookingRules") or [])

    def list_rules(self, user_id: str) -> list[BookingRule]:
        return [BookingRule.from_dict(raw) for raw in self._raw_rules(user_id)]

    def list_enabled_rules(self, user_id: str) -> list[BookingRule]:
        return [rule for rule in self.list_rules(user_id) if rule.enabled]

    def add_rule(
        self,
        user_id: str,
        class_name: str,
        day_of_week: str,
        time: str,
        instructor: str | None = None,
        location: str | None = None,
        enabled: bool = True,
        max_waiting_list: int = 0,
    ) -> BookingRule:
        validate_rule_fields(class_name, day_of_week, time)

        rule = BookingRule(
            id=secrets.token_hex(8),
            class_name=class_name,
            day_of_week=day_of_week.lower(),
            time=time,
            instructor=instructor or None,
            location=location or None,
            enabled=enabled,
            max_waiting_list=max_waiting_list,
            created_at=utcnow_iso(),
        )
        self.documents.update_user(
            user_id, bookingRules=[*self._raw_rules(user_id), rule.to_dict()]
        )
        return rule

    def update_rule(
        self, user_id: str, rule_id: str, **changes: Any
    ) -> BookingRule | None:
        """Apply camelCase ``changes`` to one rule; None if the rule does not exist."""
        updated = None
        rules = []
        for raw in self._raw_rules(user_id):
            if raw.get("id") == rule_id:
                raw = {**raw, **changes, "updatedAt": utcnow_iso()}
                validate_rule_fields(
                    raw.get("className"), raw.get("dayOfWeek"), raw.get("time")
                )
                raw["dayOfWeek"] = raw["dayOfWeek"].lower()
                updated = BookingRule.from_dict(raw)
            rules.append(raw)

        if updated is not None:
            self.documents.update_user(user_id, bookingRules=rules)
        return updated

    def delete_rule(self, user_id: str, rule_id: str) -> bool:
        rules = self._raw_rules(user_id)
        remaining = [raw for raw in rules if raw.get("id") != rule_id]
        if len(remaining) == len(rules):
            return False
        self.documents.update_user(user_id, bookingRules=remaining)
        return True

    def users_with_enabled_rules(self) -> list[str]:
        return [
            user_id
            for user_id in self.documents.user_ids()
            if self.list_enabled_rules(user_id)
        ]


class HistoryStore:
    """
    Append-only booking attempt history per user.

    Each entry is its own key, so appending never rewrites earlier entries.
    Successful event ids are also kept in a set under ``booked:<id>`` so the
    dedup lookup does not scan the history.
    """

    def __init__(self, cache: Cache):
        self.cache = cache

    def append(self, user_id: str, record: BookingAttemptRecord) -> None:
        with self.cache.transact():
            index = self.cache.incr(history_key(user_id))
            self.cache.set(history_entry_key(user_id, index), record.to_dict())
            if record.status == "success":
                booked = self.cache.get(booked_key(user_id), frozenset())
                self.cache.set(booked_key(user_id), booked | {str(record.event_id)})

    def count(self, user_id: str) -> int:
        return self.cache.get(history_key(user_id), 0)

    def entries(self, user_id: str) -> list[dict[str, Any]]:
        """All entries, oldest first."""
        return self._read(user_id, range(1, self.count(user_id) + 1))

    def _read(self, user_id: str, indexes: range) -> list[dict[str, Any]]:
        entries = (self.cache.get(history_entry_key(user_id, i)) for i in indexes)
        return [entry for entry in entries if entry is not None]

    def exists_successful(self, user_id: str, event_id: str) -> bool:
        return str(event_id) in self.cache.get(booked_key(user_id), frozenset())

    def recent(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """The last ``limit`` entries, newest first."""
        newest = self.count(user_id)
        return self._read(user_id, range(newest, max(newest - limit, 0), -1))
