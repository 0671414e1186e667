"""
Dashboard login with math-captcha solving and session renewal.
"""

import logging
import re

from otp_relay.config.settings import Settings
from otp_relay.domain.errors import AuthError, CaptchaParseError, TransportError
from otp_relay.infrastructure.dashboard_http import DashboardHttp
from otp_relay.infrastructure.session_store import SessionStore

logger = logging.getLogger(__name__)

CAPTCHA_PATTERN = re.compile(r"What\s+is\s+(\d+)\s*\+\s*(\d+)\s*=\s*\?", re.IGNORECASE)
CAPTCHA_FAILED_MARKER = "Captcha Verification Failed"

LOGIN_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def solve_math_captcha(page_text: str) -> int:
    """
    Solve the arithmetic challenge embedded in the login page.

    Args:
        page_text: Login page HTML

    Returns:
        Sum of the two operands

    Raises:
        CaptchaParseError: If the challenge is not present
    """
    match = CAPTCHA_PATTERN.search(page_text or "")
    if not match:
        raise CaptchaParseError()
    left, right = (int(group) for group in match.groups())
    return left + right


class Authenticator:
    """Performs the login handshake and stores the new session cookie."""

    def __init__(self, settings: Settings, http: DashboardHttp, session_store: SessionStore):
        self.settings = settings
        self.http = http
        self.session_store = session_store

    async def login(self) -> str:
        """
        Log in to the dashboard.

        Returns:
            New cookie header value (e.g. "PHPSESSID=abc123")

        Raises:
            AuthError: Attempts exhausted, unknown response or transport failure
            CaptchaParseError: Login page had no captcha challenge
        """
        max_attempts = self.settings.max_login_attempts
        login_path = self.settings.dashboard_login_path
        headers = dict(LOGIN_HEADERS, Referer=self.http.url_for(login_path))

        for attempt in range(1, max_attempts + 1):
            logger.info(f"Attempting to login (attempt {attempt}/{max_attempts})")

            try:
                page = await self.http.request("GET", login_path, headers=headers)
            except TransportError as e:
                raise AuthError(AuthError.TRANSPORT, f"Login page request failed: {e}") from e

            answer = solve_math_captcha(page.text)
            logger.info(f"Captcha solved: {answer}")

            page_cookie = None
            if page.session_id:
                page_cookie = f"{self.settings.session_cookie_name}={page.session_id}"

            try:
                result = await self.http.request(
                    "POST",
                    login_path,
                    cookie=page_cookie,
                    data={
                        "username": self.settings.login_username,
                        "password": self.settings.login_password,
                        "capt": str(answer),
                    },
                    headers=headers,
                )
            except TransportError as e:
                raise AuthError(AuthError.TRANSPORT, f"Login submit failed: {e}") from e

            if any(marker in result.text for marker in self.settings.login_success_markers):
                session_id = result.session_id or page.session_id
                if not session_id:
                    raise AuthError(
                        AuthError.NO_SESSION_COOKIE,
                        "Login succeeded but no session cookie was issued"
                    )

                cookie = f"{self.settings.session_cookie_name}={session_id}"
                self.session_store.set(cookie)
                logger.info("Login successful, session refreshed")
                return cookie

            if CAPTCHA_FAILED_MARKER in result.text:
                logger.warning("Captcha verification failed, retrying login")
                continue

            raise AuthError(AuthError.UNKNOWN_RESPONSE, "Login failed - unknown response")

        raise AuthError(AuthError.MAX_ATTEMPTS_EXCEEDED, f"Login failed after {max_attempts} attempts")
