"""Tests for the gateway operations and upstream normalization."""

from datetime import date

import pytest

from classbooker.config import BookingConstants
from classbooker.exceptions import AuthError
from classbooker.gateway import UpstreamGateway, fetch_catalog
from classbooker.models import (
    booking_ref_from_upstream,
    class_from_upstream,
    unwrap_list,
)

from tests.conftest import PASSWORD, USERNAME


class TestNormalization:
    def test_snake_case_event(self):
        raw = {
            "id": 101,
            "name": "WOD",
            "start_date_time": "2024-11-11T18:00:00+01:00",
            "gym": {"id": 1, "name": "Kirken"},
            "instructor": "Mette",
            "spots_available": "4",
            "waiting_list_count": 0,
        }
        class_instance = class_from_upstream(raw)

        assert class_instance.id == "101"
        assert class_instance.location_id == "1"
        assert class_instance.location_name == "Kirken"
        assert class_instance.spots_available == 4
        assert class_instance.instructor == "Mette"

    def test_camel_case_event(self):
        raw = {
            "id": "202",
            "name": "Spinning",
            "startDateTime": "2024-11-12T07:00:00+01:00",
            "location": {"id": "3", "name": "Valby"},
            "instructor": {"name": "Jonas"},
            "spotsAvailable": 0,
            "waitingListCount": 5,
        }
        class_instance = class_from_upstream(raw)

        assert class_instance.start_date_time == "2024-11-12T07:00:00+01:00"
        assert class_instance.location_name == "Valby"
        assert class_instance.instructor == "Jonas"
        assert class_instance.waiting_list_count == 5

    def test_missing_and_junk_counts_default_to_zero(self):
        class_instance = class_from_upstream(
            {"id": 1, "name": "WOD", "spots_available": None, "waitingListCount": "n/a"}
        )
        assert class_instance.spots_available == 0
        assert class_instance.waiting_list_count == 0
        assert class_instance.start_date_time is None
        assert class_instance.location_name is None

    def test_zero_spots_is_not_skipped_for_an_alias(self):
        class_instance = class_from_upstream({"spots_available": 0, "free_space": 7})
        assert class_instance.spots_available == 0

    @pytest.mark.parametrize(
        "raw",
        [{"ss_event_id": 7}, {"event_id": "7"}, {"eventId": 7}, {"id": 7}],
    )
    def test_booking_ref_aliases(self, raw):
        assert booking_ref_from_upstream(raw).event_id == "7"

    def test_booking_ref_without_id(self):
        assert booking_ref_from_upstream({"status": "booked"}) is None

    def test_unwrap_accepts_bare_lists(self):
        assert unwrap_list([{"id": 1}, "junk"], "ss_participations") == [{"id": 1}]
        assert unwrap_list({"ss_participations": None}, "ss_participations") == []


class TestGateway:
    @pytest.mark.asyncio
    async def test_list_locations(self, session_client):
        await session_client.login(USERNAME, PASSWORD)
        locations = await UpstreamGateway(session_client).list_locations()
        await session_client.aclose()

        assert [(loc.id, loc.name, loc.city) for loc in locations] == [
            ("1", "Kirken", "København")
        ]

    @pytest.mark.asyncio
    async def test_list_classes_sends_calendar_date(self, session_client, platform):
        platform.add_event(1, "2024-11-11", id=101, name="WOD")
        await session_client.login(USERNAME, PASSWORD)
        classes = await UpstreamGateway(session_client).list_classes(
            "1", date(2024, 11, 11)
        )
        await session_client.aclose()

        assert [c.id for c in classes] == ["101"]
        request = next(r for r in platform.requests if r.url.path == "/react/events")
        assert request.url.params["date"] == "2024-11-11"
        assert request.url.params["center_id"] == "1"

    @pytest.mark.asyncio
    async def test_list_my_bookings(self, session_client, platform):
        platform.participations = [{"ss_event_id": 5}, {"event_id": 6}, {"note": "x"}]
        await session_client.login(USERNAME, PASSWORD)
        refs = await UpstreamGateway(session_client).list_my_bookings()
        await session_client.aclose()

        assert [ref.event_id for ref in refs] == ["5", "6"]

    @pytest.mark.asyncio
    async def test_book_class_success(self, session_client, platform):
        await session_client.login(USERNAME, PASSWORD)
        result = await UpstreamGateway(session_client).book_class("101")
        await session_client.aclose()

        assert result.success
        assert result.data == {"id": 9001}
        booking = next(
            r for r in platform.requests if r.url.path == "/react/events/101/book"
        )
        assert booking.method == "POST"

    @pytest.mark.asyncio
    async def test_quota_exhausted_is_normalized(self, session_client, platform):
        platform.book_errors["101"] = (
            422,
            {"error": BookingConstants.NO_MORE_BOOKINGS_MESSAGE},
        )
        await session_client.login(USERNAME, PASSWORD)
        result = await UpstreamGateway(session_client).book_class("101")
        await session_client.aclose()

        assert not result.success
        assert result.code == BookingConstants.NO_MORE_BOOKINGS_CODE
        assert result.error == "No more bookings available"
        assert result.message == BookingConstants.NO_MORE_BOOKINGS_MESSAGE

    @pytest.mark.asyncio
    async def test_other_refusal_is_soft_failure(self, session_client, platform):
        platform.book_errors["101"] = (409, {"error": "Class is full"})
        await session_client.login(USERNAME, PASSWORD)
        result = await UpstreamGateway(session_client).book_class("101")
        await session_client.aclose()

        assert not result.success
        assert result.code is None
        assert result.error == "Class is full"
        assert result.data == {"error": "Class is full"}

    @pytest.mark.asyncio
    async def test_booking_without_session_raises(self, session_client):
        with pytest.raises(AuthError):
            await UpstreamGateway(session_client).book_class("101")
        await session_client.aclose()


class TestFetchCatalog:
    @pytest.mark.asyncio
    async def test_failed_pair_does_not_hide_others(self, session_client, platform):
        platform.gyms.append({"id": 2, "name": "Valby", "city": "København"})
        platform.add_event(1, "2024-11-11", id=101, name="WOD")
        platform.add_event(2, "2024-11-12", id=202, name="Yoga")
        platform.failing_pairs.add(("2", "2024-11-11"))

        await session_client.login(USERNAME, PASSWORD)
        gateway = UpstreamGateway(session_client)
        locations = await gateway.list_locations()
        catalog = await fetch_catalog(
            gateway, locations, [date(2024, 11, 11), date(2024, 11, 12)], 2
        )
        await session_client.aclose()

        assert [c.id for c in catalog] == ["101", "202"]

    @pytest.mark.asyncio
    async def test_list_classes_window_starts_at_given_day(
        self, session_client, platform
    ):
        platform.add_event(1, "2024-11-05", id=1, name="A")
        platform.add_event(1, "2024-11-07", id=3, name="C")
        await session_client.login(USERNAME, PASSWORD)
        classes = await UpstreamGateway(session_client).list_classes_window(
            2, start=date(2024, 11, 5)
        )
        await session_client.aclose()

        assert [c.id for c in classes] == ["1"]
