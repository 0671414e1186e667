"""
Session store holding the dashboard authentication cookie.
"""

from typing import Optional

from otp_relay.config.env_file import save_env_value
from otp_relay.domain.message import Session

SESSION_COOKIE_ENV_KEY = "SESSION_COOKIE"


class SessionStore:
    """
    In-memory session cookie, optionally mirrored to the .env file.

    The authenticator is the only writer; the message fetcher reads it on
    every request.
    """

    def __init__(self, initial_cookie: Optional[str] = None, env_file: Optional[str] = None):
        self.env_file = env_file
        self._session: Optional[Session] = None
        if initial_cookie:
            self._session = Session(cookie_value=initial_cookie)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def get(self) -> Optional[str]:
        """Current cookie header value, or None if never logged in."""
        if self._session is None:
            return None
        return self._session.cookie_value

    def set(self, cookie: str) -> None:
        """
        Replace the session cookie.

        Args:
            cookie: Cookie header value (e.g. "PHPSESSID=abc123")
        """
        if not cookie or "\n" in cookie or "\r" in cookie:
            raise ValueError("Session cookie must be a non-empty single line")

        self._session = Session(cookie_value=cookie)

        save_env_value(self.env_file, SESSION_COOKIE_ENV_KEY, cookie)
