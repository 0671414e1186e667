"""
HTTP primitive for the SMS dashboard with same-origin redirect handling.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from otp_relay.config.settings import Settings
from otp_relay.domain.errors import (
    CrossOriginRedirectError,
    TooManyRedirectsError,
    TransportError,
)

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = (301, 302, 303, 307, 308)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
)


@dataclass
class DashboardResponse:
    """Final response after following redirects."""
    status_code: int
    text: str
    url: str
    session_id: Optional[str] = None
    redirected: bool = False


def resolve_redirect(location: Optional[str], current_url: str, origin: str) -> str:
    """
    Resolve a redirect Location against the current URL.

    Args:
        location: Location header value (absolute, root-relative or relative)
        current_url: URL of the response that redirected
        origin: Dashboard base URL; the target must share its host

    Returns:
        Absolute URL to request next

    Raises:
        TransportError: If the Location header is missing
        CrossOriginRedirectError: If the target host differs from the origin
    """
    if not location:
        raise TransportError("Empty redirect location")

    target = urljoin(current_url, location.strip())
    expected_host = urlsplit(origin).hostname
    target_host = urlsplit(target).hostname

    if target_host != expected_host:
        raise CrossOriginRedirectError(
            f"Cross-origin redirect not allowed: {target_host} (expected {expected_host})"
        )

    return target


class DashboardHttp:
    """Issues dashboard requests, following redirects by hand."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.cookie_name = settings.session_cookie_name
        self.transport = transport

    @property
    def origin(self) -> str:
        # Read on every request; /config can change the base URL at runtime
        return self.settings.dashboard_origin

    def url_for(self, path: str) -> str:
        return urljoin(self.origin + "/", path)

    async def request(
        self,
        method: str,
        path: str,
        cookie: Optional[str] = None,
        data: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> DashboardResponse:
        """
        Send a request and follow same-origin redirects.

        Args:
            method: HTTP method
            path: Path (or absolute URL on the dashboard host)
            cookie: Cookie header value to send
            data: Form fields for POST requests
            params: Query parameters for the first request
            headers: Extra headers

        Returns:
            DashboardResponse for the final hop

        Raises:
            CrossOriginRedirectError, TooManyRedirectsError, TransportError
        """
        url = self.url_for(path)
        session_id = None
        redirected = False
        max_redirects = self.settings.max_redirects

        request_headers = {"User-Agent": BROWSER_USER_AGENT}
        if headers:
            request_headers.update(headers)

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.settings.request_timeout_seconds,
            follow_redirects=False,
        ) as client:
            hops = 0
            while True:
                hop_headers = dict(request_headers)
                if cookie:
                    hop_headers["Cookie"] = cookie

                try:
                    response = await client.request(
                        method,
                        url,
                        headers=hop_headers,
                        data=data,
                        params=params,
                    )
                except httpx.HTTPError as e:
                    raise TransportError(f"{method} {url} failed: {e}") from e

                issued = response.cookies.get(self.cookie_name)
                if issued:
                    session_id = issued
                    cookie = f"{self.cookie_name}={issued}"

                if response.status_code not in REDIRECT_STATUS_CODES:
                    return DashboardResponse(
                        status_code=response.status_code,
                        text=response.text,
                        url=str(response.url),
                        session_id=session_id,
                        redirected=redirected,
                    )

                if hops >= max_redirects:
                    raise TooManyRedirectsError(
                        f"More than {max_redirects} redirects starting from {path}"
                    )

                url = resolve_redirect(response.headers.get("location"), str(response.url), self.origin)
                logger.debug(f"Following redirect to {url}")
                hops += 1
                redirected = True
                method = "GET"
                data = None
                params = None
