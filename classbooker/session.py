"""
Authenticated session against the booking platform.

The platform has no public API. Access goes through its server-rendered login
form (double-submit CSRF token plus an opaque session cookie) and then through
the JSON endpoints its own frontend uses. One ``SessionClient`` owns exactly one
session for one user; it is never shared between users.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
from bs4 import BeautifulSoup

from classbooker.config import BookingConstants, Settings, get_settings
from classbooker.exceptions import AuthError, TransportError, UpstreamError
from classbooker.models import Credentials

logger = logging.getLogger(__name__)

CSRF_FALLBACK_PATTERN = re.compile(
    BookingConstants.CSRF_FIELD_NAME + r"[\"\s:=]+([^\"<>\s]+)", re.IGNORECASE
)


# --- Utility Functions ---


def extract_csrf_token(html_content: str) -> str:
    """
    Extract the CSRF token from the login page.

    Looks at the ``csrf-token`` meta tag first, then the hidden
    ``authenticity_token`` form field, then falls back to a regex over the raw
    markup.

    Raises:
        AuthError: If no token can be found
    """
    soup = BeautifulSoup(html_content, "html.parser")

    meta = soup.find("meta", {"name": BookingConstants.CSRF_META_NAME})
    if meta and meta.get("content"):
        return meta["content"]

    token_input = soup.find("input", {"name": BookingConstants.CSRF_FIELD_NAME})
    if token_input and token_input.get("value"):
        return token_input["value"]

    match = CSRF_FALLBACK_PATTERN.search(html_content)
    if match:
        return match.group(1)

    raise AuthError("csrf token not found")


def cookie_pairs(response: httpx.Response) -> list[str]:
    """Return the ``name=value`` part of every Set-Cookie header."""
    return [
        header.split(";", 1)[0].strip()
        for header in response.headers.get_list("set-cookie")
        if header.strip()
    ]


def find_session_cookie(response: httpx.Response) -> str | None:
    for pair in cookie_pairs(response):
        if BookingConstants.SESSION_COOKIE_NAME in pair:
            return pair
    return None


def create_http_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """
    Create HTTP client with standard headers.

    Cookies are attached explicitly per request from the session the client
    owns, so the client's own jar is never consulted.
    """
    client = httpx.AsyncClient(
        base_url=settings.base_url,
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    client.headers.update({"User-Agent": BookingConstants.USER_AGENT})
    return client


class SessionClient:
    """Owns one logged-in session and re-establishes it when it lapses."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self._client = create_http_client(self.settings, transport)
        self._credentials: Credentials | None = None
        self.session_cookie: str | None = None
        self._auth_lock = asyncio.Lock()

    async def __aenter__(self) -> SessionClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    @property
    def is_logged_in(self) -> bool:
        return self.session_cookie is not None

    async def _send(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        **kwargs: Any,
    ) -> httpx.Response:
        request = self._client.build_request(method, path, headers=headers, **kwargs)
        # Drop anything the jar may have merged in; the owned session is the
        # only cookie source.
        if "cookie" not in {key.lower() for key in headers}:
            request.headers.pop("cookie", None)
        try:
            return await self._client.send(request, follow_redirects=False)
        except httpx.RequestError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

    # --- Authentication ---

    async def login(self, username: str, password: str) -> str:
        """
        Log in with a fresh CSRF token and store the resulting session cookie.

        Returns:
            The session cookie (``name=value``)

        Raises:
            AuthError: If any step of the login fails
        """
        self._credentials = Credentials(username=username, password=password)
        self.session_cookie = None

        try:
            logger.info("Fetching login page...")
            page = await self._send(
                "GET",
                BookingConstants.LOGIN_PAGE_PATH,
                {"Accept": BookingConstants.ACCEPT_HTML},
            )
            page.raise_for_status()
            csrf_token = extract_csrf_token(page.text)
            logger.info(f"CSRF token found: {csrf_token[:10]}...")

            login_headers = {
                "Content-Type": "application/x-www-form-urlencoded",
                "Referer": str(
                    self._client.base_url.join(BookingConstants.LOGIN_PAGE_PATH)
                ),
            }
            initial_cookies = "; ".join(cookie_pairs(page))
            if initial_cookies:
                login_headers["Cookie"] = initial_cookies

            logger.info("Submitting username and password...")
            response = await self._send(
                "POST",
                BookingConstants.LOGIN_ACTION_PATH,
                login_headers,
                data={
                    BookingConstants.CSRF_FIELD_NAME: csrf_token,
                    "username": username,
                    "password": password,
                },
            )
            logger.info(f"Login response status: {response.status_code}")
            if response.status_code >= 400:
                raise AuthError(f"login rejected with status {response.status_code}")

            session_cookie = find_session_cookie(response)
            if not session_cookie:
                raise AuthError("no session cookie")

        except AuthError:
            logger.error("Login failed")
            raise
        except (httpx.HTTPStatusError, TransportError) as e:
            logger.exception(f"Login failed: {e}")
            raise AuthError(f"Login failed: {e}") from e

        self.session_cookie = session_cookie
        await self._establish_react_session()
        logger.info("Login successful!")
        return session_cookie

    async def _establish_react_session(self) -> None:
        try:
            response = await self._send(
                "GET", BookingConstants.REACT_LOGIN_PATH, self._json_headers()
            )
            logger.debug(f"React session response status: {response.status_code}")
        except TransportError as e:
            logger.info(f"React session endpoint not available: {e}")

    async def test_connection(self) -> bool:
        """Probe an authenticated-only page; 200 or 302 means the session holds."""
        if not self.session_cookie:
            return False

        try:
            response = await self._send(
                "GET",
                BookingConstants.SESSION_PROBE_PATH,
                {"Cookie": self.session_cookie},
            )
        except TransportError as e:
            logger.warning(f"Session probe failed: {e}")
            return False

        return response.status_code in (200, 302)

    async def ensure_authenticated(self) -> None:
        """
        Re-login with the stored credentials if the session is no longer valid.

        Raises:
            AuthError: If the client was never logged in or re-login fails
        """
        async with self._auth_lock:
            if await self.test_connection():
                return

            if self._credentials is None:
                raise AuthError("no stored credentials")

            logger.info("Session invalid - logging in again")
            await self.login(self._credentials.username, self._credentials.password)

    # --- Requests ---

    def _json_headers(self) -> dict[str, str]:
        header_name, header_value = BookingConstants.AJAX_HEADER
        headers = {
            "Accept": BookingConstants.ACCEPT_JSON,
            header_name: header_value,
        }
        if self.session_cookie:
            headers["Cookie"] = self.session_cookie
        return headers

    async def request(
        self, endpoint: str, method: str = "GET", body: Any = None
    ) -> Any:
        """
        Perform an authenticated JSON request.

        Raises:
            AuthError: If the session cannot be (re-)established
            UpstreamError: On a non-2xx status or a malformed body
            TransportError: On network failure
        """
        await self.ensure_authenticated()

        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body

        response = await self._send(method, endpoint, self._json_headers(), **kwargs)

        if not response.is_success:
            message = upstream_error_message(response)
            logger.error(f"Request to {endpoint} failed: {message}")
            raise UpstreamError(
                message, status_code=response.status_code, body=parse_body(response)
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise UpstreamError(
                f"malformed response from {endpoint}",
                status_code=response.status_code,
                body=response.text[:200],
            ) from e


def parse_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except json.JSONDecodeError:
        return response.text[:500]


def upstream_error_message(response: httpx.Response) -> str:
    body = parse_body(response)
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return str(message)
    return f"HTTP {response.status_code}: {response.text[:200]}"


# --- Session Management ---


@asynccontextmanager
async def authenticated_session(
    credentials: Credentials,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncGenerator[SessionClient, None]:
    """
    Context manager yielding a logged-in client that is closed on exit.

    Raises:
        AuthError: If authentication fails
    """
    client = SessionClient(settings=settings, transport=transport)
    try:
        await client.login(credentials.username, credentials.password)
        yield client
    finally:
        await client.aclose()
