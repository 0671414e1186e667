"""
Tests for the dashboard HTTP primitive and redirect handling.
"""

import httpx
import pytest

from otp_relay.domain.errors import CrossOriginRedirectError, TooManyRedirectsError, TransportError
from otp_relay.infrastructure.dashboard_http import DashboardHttp, resolve_redirect

from tests.conftest import DASHBOARD_URL


class TestResolveRedirect:
    """Tests for resolve_redirect."""

    def test_root_relative(self):
        """Test root-relative locations stay on the dashboard."""
        target = resolve_redirect("/ints/agent/SMSDashboard", f"{DASHBOARD_URL}/ints/signin", DASHBOARD_URL)

        assert target == f"{DASHBOARD_URL}/ints/agent/SMSDashboard"

    def test_relative(self):
        """Test relative locations resolve against the current URL."""
        target = resolve_redirect("SMSDashboard", f"{DASHBOARD_URL}/ints/signin", DASHBOARD_URL)

        assert target == f"{DASHBOARD_URL}/ints/SMSDashboard"

    def test_cross_origin_rejected(self):
        """Test redirects to another host are refused."""
        with pytest.raises(CrossOriginRedirectError):
            resolve_redirect("http://evil.test/steal", f"{DASHBOARD_URL}/ints/signin", DASHBOARD_URL)

    def test_missing_location(self):
        """Test a redirect without Location is a transport failure."""
        with pytest.raises(TransportError):
            resolve_redirect(None, f"{DASHBOARD_URL}/ints/signin", DASHBOARD_URL)


class TestDashboardHttp:
    """Tests for DashboardHttp.request."""

    def test_url_follows_base_url_changes(self, settings):
        """Test a base URL changed at runtime is used for the next request."""
        http = DashboardHttp(settings)

        assert http.url_for("/ints/signin") == f"{DASHBOARD_URL}/ints/signin"

        settings.dashboard_base_url = "http://backup.test/"

        assert http.url_for("/ints/signin") == "http://backup.test/ints/signin"

    @pytest.mark.asyncio
    async def test_follows_redirect_with_issued_cookie(self, settings):
        """Test the cookie issued on a redirect is sent on the next hop."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, request.headers.get("cookie")))
            if request.url.path == "/ints/signin":
                return httpx.Response(
                    302,
                    headers=[("location", "/ints/agent/SMSDashboard"), ("set-cookie", "PHPSESSID=fresh; path=/")],
                )
            return httpx.Response(200, text="SMSDashboard")

        http = DashboardHttp(settings, transport=httpx.MockTransport(handler))

        response = await http.request("POST", "/ints/signin", cookie="PHPSESSID=page", data={"capt": "12"})

        assert response.status_code == 200
        assert response.text == "SMSDashboard"
        assert response.session_id == "fresh"
        assert response.redirected
        assert response.url == f"{DASHBOARD_URL}/ints/agent/SMSDashboard"
        assert seen == [
            ("POST", "/ints/signin", "PHPSESSID=page"),
            ("GET", "/ints/agent/SMSDashboard", "PHPSESSID=fresh"),
        ]

    @pytest.mark.asyncio
    async def test_sends_browser_headers_and_params(self, settings):
        """Test query params and a browser user agent are sent."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["agent"] = request.headers.get("user-agent")
            captured["params"] = dict(request.url.params)
            return httpx.Response(200, json={"aaData": []})

        http = DashboardHttp(settings, transport=httpx.MockTransport(handler))

        response = await http.request("GET", settings.dashboard_data_path, params={"fdate1": "2025-01-01 10:59:00"})

        assert response.status_code == 200
        assert not response.redirected
        assert response.session_id is None
        assert "Mozilla" in captured["agent"]
        assert captured["params"] == {"fdate1": "2025-01-01 10:59:00"}

    @pytest.mark.asyncio
    async def test_too_many_redirects(self, settings):
        """Test a redirect loop is cut off at the hop limit."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(302, headers={"location": f"/loop/{len(calls)}"})

        http = DashboardHttp(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(TooManyRedirectsError):
            await http.request("GET", "/start")

        assert len(calls) == settings.max_redirects + 1

    @pytest.mark.asyncio
    async def test_cross_origin_redirect(self, settings):
        """Test a redirect off the dashboard host is refused."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "https://elsewhere.test/login"})

        http = DashboardHttp(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(CrossOriginRedirectError):
            await http.request("GET", "/ints/signin")

    @pytest.mark.asyncio
    async def test_network_failure(self, settings):
        """Test connection errors become TransportError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http = DashboardHttp(settings, transport=httpx.MockTransport(handler))

        with pytest.raises(TransportError):
            await http.request("GET", "/ints/signin")
