"""
Tests for response classification, row parsing and the fetch/refresh flow.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from otp_relay.domain.errors import AuthError, FetchError, TransportError
from otp_relay.infrastructure.dashboard_http import DashboardResponse
from otp_relay.infrastructure.message_fetcher import (
    ExpiredSession,
    MalformedResponse,
    MessageFetcher,
    ValidData,
    build_query_params,
    classify_response,
    parse_rows,
)
from otp_relay.infrastructure.session_store import SessionStore

from tests.conftest import DASHBOARD_URL, DATA_URL, NOW, data_response, make_row

LOGIN_PATH = "/ints/signin"


def login_redirect_response() -> DashboardResponse:
    return DashboardResponse(
        status_code=200,
        text="<form action='signin'><input type='password'></form>",
        url=f"{DASHBOARD_URL}{LOGIN_PATH}",
        redirected=True,
    )


class TestBuildQueryParams:
    """Tests for build_query_params."""

    def test_window_and_sorting(self):
        """Test the window bounds and newest-first ordering."""
        params = build_query_params("2025-01-01 10:59:00", "2025-01-01 12:01:00", page_length=50, now_ms=123)

        assert params["fdate1"] == "2025-01-01 10:59:00"
        assert params["fdate2"] == "2025-01-01 12:01:00"
        assert params["iDisplayLength"] == "50"
        assert params["iSortCol_0"] == "0"
        assert params["sSortDir_0"] == "desc"
        assert params["_"] == "123"

    def test_describes_every_column(self):
        """Test per-column DataTables parameters are present."""
        params = build_query_params("a", "b")

        assert params["iColumns"] == "7"
        for column in range(7):
            assert params[f"mDataProp_{column}"] == str(column)
            assert params[f"bSortable_{column}"] == "true"


class TestClassifyResponse:
    """Tests for classify_response."""

    def test_valid_table(self):
        """Test a JSON body with the data array is valid."""
        outcome = classify_response(200, DATA_URL, json.dumps({"aaData": [["x"]]}), LOGIN_PATH)

        assert isinstance(outcome, ValidData)
        assert outcome.rows == [["x"]]

    def test_data_wins_over_error_status(self):
        """Test the data array is trusted despite a server error status."""
        outcome = classify_response(500, DATA_URL, json.dumps({"aaData": []}), LOGIN_PATH)

        assert isinstance(outcome, ValidData)

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status_is_expired(self, status):
        """Test auth failures mean the session expired."""
        assert isinstance(classify_response(status, DATA_URL, "{}", LOGIN_PATH), ExpiredSession)

    def test_expiry_checked_before_data(self):
        """Test auth statuses and the login URL win over a data array."""
        body = json.dumps({"aaData": [["x"]]})

        assert isinstance(classify_response(401, DATA_URL, body, LOGIN_PATH), ExpiredSession)
        assert isinstance(
            classify_response(200, f"{DASHBOARD_URL}{LOGIN_PATH}", body, LOGIN_PATH), ExpiredSession
        )

    def test_redirect_to_login_is_expired(self):
        """Test landing on the login page means the session expired."""
        response = login_redirect_response()

        outcome = classify_response(response.status_code, response.url, response.text, LOGIN_PATH)

        assert isinstance(outcome, ExpiredSession)

    def test_empty_body_is_expired(self):
        """Test an empty body means the session expired."""
        assert isinstance(classify_response(200, DATA_URL, "  ", LOGIN_PATH), ExpiredSession)

    def test_session_expired_text(self):
        """Test expiry phrases in the body."""
        outcome = classify_response(200, DATA_URL, "Your session expired. Please login again", LOGIN_PATH)

        assert isinstance(outcome, ExpiredSession)

    def test_server_error_raises(self):
        """Test other HTTP errors are fetch failures."""
        with pytest.raises(FetchError):
            classify_response(502, DATA_URL, "Bad Gateway", LOGIN_PATH)

    @pytest.mark.parametrize("body", ["{}", '{"aaData": "none"}', "<html>hello</html>"])
    def test_malformed(self, body):
        """Test unexpected 200 bodies are malformed."""
        assert isinstance(classify_response(200, DATA_URL, body, LOGIN_PATH), MalformedResponse)


class TestParseRows:
    """Tests for parse_rows."""

    def test_maps_fields(self, sample_rows):
        """Test valid rows become messages and the totals row is dropped."""
        messages = parse_rows(sample_rows)

        assert len(messages) == 2
        first = messages[0]
        assert first.timestamp == "2025-01-01 11:59:10"
        assert first.country == "United Kingdom"
        assert first.phone == "447400123456"
        assert first.sender == "WhatsApp"
        assert first.body.startswith("Telegram code 55123")
        assert first.symbol == "$"
        assert first.message_id == 0.01

    def test_drops_invalid_rows(self):
        """Test short rows, bad dates and non-string bodies are skipped."""
        rows = [
            ["2025-01-01 11:00:00", "UK", "44740"],
            ["yesterday", "UK", "447400123456", "WA", "code 1234"],
            ["2025-01-01 11:00:00", "UK", "447400123456", "WA", None],
            "not a row",
            ["2025-01-01 11:00:00", None, 447400123456, None, "code 1234"],
        ]

        messages = parse_rows(rows)

        assert len(messages) == 1
        assert messages[0].phone == "447400123456"
        assert messages[0].country == ""
        assert messages[0].symbol is None


class TestMessageFetcher:
    """Tests for MessageFetcher.fetch_messages."""

    @pytest.fixture
    def http(self):
        mock = MagicMock()
        mock.url_for = MagicMock(return_value=f"{DASHBOARD_URL}/ints/client/SMSCDRStats")
        mock.request = AsyncMock()
        return mock

    @pytest.fixture
    def session_store(self):
        return SessionStore("PHPSESSID=old")

    @pytest.fixture
    def authenticator(self, session_store):
        mock = MagicMock()

        async def login():
            session_store.set("PHPSESSID=new")
            return "PHPSESSID=new"

        mock.login = AsyncMock(side_effect=login)
        return mock

    @pytest.fixture
    def fetcher(self, settings, http, session_store, authenticator):
        return MessageFetcher(settings, http, session_store, authenticator, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_valid_response(self, fetcher, http, authenticator, sample_rows):
        """Test rows are returned newest first without logging in."""
        http.request.return_value = data_response(sample_rows)

        messages = await fetcher.fetch_messages()

        assert [m.timestamp for m in messages] == ["2025-01-01 11:59:10", "2025-01-01 11:58:00"]
        authenticator.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_request_uses_window_and_session(self, fetcher, http):
        """Test the request carries the trailing window and stored cookie."""
        http.request.return_value = data_response([])

        await fetcher.fetch_messages()

        kwargs = http.request.call_args.kwargs
        assert kwargs["cookie"] == "PHPSESSID=old"
        assert kwargs["params"]["fdate1"] == "2025-01-01 10:59:00"
        assert kwargs["params"]["fdate2"] == "2025-01-01 12:01:00"
        assert kwargs["headers"]["X-Requested-With"] == "XMLHttpRequest"
        assert kwargs["headers"]["Referer"].endswith("/ints/client/SMSCDRStats")

    @pytest.mark.asyncio
    async def test_expired_session_refreshes_once(self, fetcher, http, authenticator):
        """Test an expired session logs in and retries with the new cookie."""
        row = make_row("2025-01-01 11:59:30", "Your WhatsApp code 112233")
        http.request.side_effect = [login_redirect_response(), data_response([row])]

        messages = await fetcher.fetch_messages()

        assert len(messages) == 1
        authenticator.login.assert_awaited_once()
        assert http.request.call_args_list[1].kwargs["cookie"] == "PHPSESSID=new"

    @pytest.mark.asyncio
    async def test_malformed_response_refreshes(self, fetcher, http, authenticator):
        """Test a malformed body is treated like an expired session."""
        http.request.side_effect = [
            DashboardResponse(status_code=200, text="<html>?</html>", url=DATA_URL),
            data_response([]),
        ]

        assert await fetcher.fetch_messages() == []
        authenticator.login.assert_awaited_once()
        assert http.request.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_after_refresh_gives_up(self, fetcher, http, authenticator):
        """Test a second expiry does not trigger another login."""
        http.request.return_value = login_redirect_response()

        assert await fetcher.fetch_messages() == []
        authenticator.login.assert_awaited_once()
        assert http.request.await_count == 2

    @pytest.mark.asyncio
    async def test_login_failure_returns_empty(self, fetcher, http, authenticator):
        """Test an authentication failure degrades to an empty result."""
        http.request.return_value = login_redirect_response()
        authenticator.login.side_effect = AuthError(AuthError.MAX_ATTEMPTS_EXCEEDED)

        assert await fetcher.fetch_messages() == []
        assert http.request.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, fetcher, http, authenticator):
        """Test a network failure is retried without logging in."""
        http.request.side_effect = [TransportError("connection reset"), data_response([])]

        assert await fetcher.fetch_messages() == []
        assert http.request.await_count == 2
        authenticator.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, fetcher, http, settings):
        """Test persistent failures stop after max_retries attempts."""
        http.request.side_effect = TransportError("connection refused")

        assert await fetcher.fetch_messages() == []
        assert http.request.await_count == settings.max_retries

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, fetcher, http):
        """Test HTTP errors without login markers are retried."""
        http.request.side_effect = [
            DashboardResponse(status_code=503, text="Service Unavailable", url=DATA_URL),
            data_response([]),
        ]

        assert await fetcher.fetch_messages() == []
        assert http.request.await_count == 2
