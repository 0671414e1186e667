"""
Error taxonomy for the relay.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class AuthError(RelayError):
    """Login handshake failed."""

    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    UNKNOWN_RESPONSE = "unknown_response"
    CAPTCHA_NOT_FOUND = "captcha_not_found"
    NO_SESSION_COOKIE = "no_session_cookie"
    TRANSPORT = "transport"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class CaptchaParseError(AuthError):
    """Login page did not contain the arithmetic challenge."""

    def __init__(self, message: str = "Captcha challenge not found on login page"):
        super().__init__(AuthError.CAPTCHA_NOT_FOUND, message)


class TransportError(RelayError):
    """A single dashboard request could not be completed."""


class CrossOriginRedirectError(TransportError):
    """Redirect pointed at a host other than the dashboard."""


class TooManyRedirectsError(TransportError):
    """Redirect chain exceeded the hop limit."""


class FetchError(RelayError):
    """Generic network or HTTP failure while fetching messages."""


class PersistenceError(RelayError):
    """State or subscriber list could not be written."""
