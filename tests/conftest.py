"""Shared fixtures: an in-memory fake of the booking platform and temp stores."""

from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from diskcache import Cache

from classbooker.account import AccountService
from classbooker.config import Settings
from classbooker.crypto import derive_key
from classbooker.orchestrator import BookingOrchestrator
from classbooker.session import SessionClient
from classbooker.store import CredentialStore, DocumentStore, HistoryStore, RuleStore

CSRF_TOKEN = "tok3n-from-meta-tag"
USERNAME = "alice@example.com"
PASSWORD = "hunter2"

# Monday 2024-11-04 10:00 in Copenhagen
FIXED_NOW = datetime(2024, 11, 4, 9, 0, tzinfo=timezone.utc)

LOGIN_PAGE = f"""
<html>
  <head><meta name="csrf-token" content="{CSRF_TOKEN}"></head>
  <body>
    <form action="/user_sessions" method="post">
      <input type="hidden" name="authenticity_token" value="{CSRF_TOKEN}">
      <input type="text" name="username">
      <input type="password" name="password">
    </form>
  </body>
</html>
"""


class FakePlatform:
    """Just enough of the upstream to drive login, catalog and booking flows."""

    def __init__(self):
        self.accounts = {USERNAME: PASSWORD}
        self.gyms = [{"id": 1, "name": "Kirken", "city": "København"}]
        self.events: dict[tuple[str, str], list[dict]] = {}
        self.participations: list[dict] = []
        self.failing_pairs: set[tuple[str, str]] = set()
        self.book_errors: dict[str, tuple[int, dict]] = {}
        self.booked: list[str] = []
        self.requests: list[httpx.Request] = []
        self.active_sessions: set[str] = set()
        self.logins = 0

    def add_event(self, gym_id, day: str, **event):
        self.events.setdefault((str(gym_id), day), []).append(event)

    def expire_sessions(self):
        self.active_sessions.clear()

    def _has_session(self, request: httpx.Request) -> bool:
        cookie = request.headers.get("cookie", "")
        return any(session in cookie for session in self.active_sessions)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/user_sessions/new":
            return httpx.Response(
                200,
                text=LOGIN_PAGE,
                headers={"set-cookie": "_init_visit=abc123; path=/"},
            )

        if path == "/user_sessions" and request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if (
                form.get("authenticity_token") == CSRF_TOKEN
                and self.accounts.get(form.get("username")) == form.get("password")
            ):
                self.logins += 1
                session = f"_cfc2_session=s{self.logins}"
                self.active_sessions.add(session)
                return httpx.Response(
                    302,
                    headers={
                        "location": "/",
                        "set-cookie": f"{session}; path=/; HttpOnly",
                    },
                )
            return httpx.Response(200, text=LOGIN_PAGE)

        if not self._has_session(request):
            return httpx.Response(401, json={"error": "Not logged in"})

        if path == "/booking":
            return httpx.Response(200, text="<html>booking</html>")

        if path == "/react/login":
            return httpx.Response(200, json={})

        if path == "/react/gyms":
            return httpx.Response(200, json={"gyms": self.gyms})

        if path == "/react/events":
            key = (request.url.params["center_id"], request.url.params["date"])
            if key in self.failing_pairs:
                return httpx.Response(500, json={"error": "boom"})
            return httpx.Response(200, json={"ss_events": self.events.get(key, [])})

        if path == "/react/participations/bookings":
            return httpx.Response(200, json={"ss_participations": self.participations})

        if path.startswith("/react/events/") and path.endswith("/book"):
            event_id = path.split("/")[3]
            if event_id in self.book_errors:
                status, body = self.book_errors[event_id]
                return httpx.Response(status, json=body)
            self.booked.append(event_id)
            self.participations.append({"ss_event_id": int(event_id)})
            return httpx.Response(200, json={"id": 9000 + len(self.booked)})

        return httpx.Response(404, json={"error": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        base_url="https://arca.test",
        session_secret="test-secret",
        store_path=tmp_path / "store",
        max_concurrent_fetches=3,
        run_timeout_seconds=30,
    )


@pytest.fixture
def session_client(settings, platform):
    return SessionClient(settings, transport=platform.transport())


@pytest.fixture
def cache(settings):
    cache = Cache(str(settings.store_path))
    yield cache
    cache.close()


@pytest.fixture
def documents(cache):
    return DocumentStore(cache)


@pytest.fixture
def credential_store(documents, settings):
    return CredentialStore(documents, derive_key(settings.session_secret))


@pytest.fixture
def rule_store(documents):
    return RuleStore(documents)


@pytest.fixture
def history_store(cache):
    return HistoryStore(cache)


@pytest.fixture
def orchestrator(settings, platform, credential_store, rule_store, history_store):
    return BookingOrchestrator(
        settings=settings,
        credentials=credential_store,
        rules=rule_store,
        history=history_store,
        session_factory=lambda s: SessionClient(s, transport=platform.transport()),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def account(settings, platform, credential_store, history_store):
    return AccountService(
        settings=settings,
        credentials=credential_store,
        history=history_store,
        session_factory=lambda s: SessionClient(s, transport=platform.transport()),
        clock=lambda: FIXED_NOW,
    )
