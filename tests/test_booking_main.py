"""Tests for the command line verbs."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from classbooker.booking_main import book_now, build_parser, handle_update_rule
from classbooker.models import BookingResult


class TestParser:
    def test_enable_and_disable_only_touch_enabled(self):
        parser = build_parser()

        enable = parser.parse_args(["enable", "alice", "r1"])
        disable = parser.parse_args(["disable", "alice", "r1"])

        assert enable.handler is handle_update_rule
        assert enable.enabled is True
        assert disable.enabled is False
        assert disable.class_name is None
        assert disable.max_waiting_list is None

    def test_update_rule_leaves_enabled_alone(self):
        args = build_parser().parse_args(
            ["update-rule", "alice", "r1", "--time", "07:00", "--max-waiting-list", "2"]
        )

        assert args.enabled is None
        assert args.time == "07:00"
        assert args.max_waiting_list == 2

    @pytest.mark.parametrize("verb", ["gyms", "bookings", "classes", "test-connection"])
    def test_account_verbs_take_a_user(self, verb):
        args = build_parser().parse_args([verb, "alice"])
        assert args.user_id == "alice"


class TestUpdateRule:
    def run(self, rule_store, argv):
        args = build_parser().parse_args(argv)
        with patch(
            "classbooker.booking_main.build_orchestrator",
            return_value=SimpleNamespace(rules=rule_store),
        ):
            return handle_update_rule(args)

    def test_disable_then_enable(self, rule_store):
        rule = rule_store.add_rule("alice", "WOD", "monday", "18:00")

        assert self.run(rule_store, ["disable", "alice", rule.id])
        assert rule_store.list_enabled_rules("alice") == []

        assert self.run(rule_store, ["enable", "alice", rule.id])
        assert [r.id for r in rule_store.list_enabled_rules("alice")] == [rule.id]

    def test_update_fields(self, rule_store):
        rule = rule_store.add_rule("alice", "WOD", "monday", "18:00")

        assert self.run(
            rule_store,
            ["update-rule", "alice", rule.id, "--time", "07:00", "--location", "Valby"],
        )

        (updated,) = rule_store.list_rules("alice")
        assert updated.time == "07:00"
        assert updated.location == "Valby"
        assert updated.enabled is True

    def test_unknown_rule_or_no_changes(self, rule_store):
        assert not self.run(rule_store, ["disable", "alice", "missing"])
        assert not self.run(rule_store, ["update-rule", "alice", "missing"])


class TestBookNow:
    @pytest.mark.asyncio
    async def test_passes_class_details_through(self):
        result = BookingResult(event_id="101", success=True)
        record = SimpleNamespace(event_id="101")
        service = MagicMock()
        service.book_class = AsyncMock(return_value=(result, record))
        args = build_parser().parse_args(
            ["book", "alice", "101", "--class-name", "WOD", "--gym", "Kirken"]
        )

        with patch(
            "classbooker.booking_main.build_account_service", return_value=service
        ):
            assert await book_now(args) is True

        service.book_class.assert_awaited_once_with(
            "alice",
            "101",
            class_name="WOD",
            class_time=None,
            gym="Kirken",
            instructor=None,
        )

    @pytest.mark.asyncio
    async def test_refusal_is_a_failed_command(self):
        result = BookingResult(event_id="101", success=False, error="Class is full")
        service = MagicMock()
        service.book_class = AsyncMock(return_value=(result, MagicMock()))
        args = build_parser().parse_args(["book", "alice", "101"])

        with patch(
            "classbooker.booking_main.build_account_service", return_value=service
        ):
            assert await book_now(args) is False
