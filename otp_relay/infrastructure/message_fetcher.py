"""
Message fetcher for the dashboard's SMS table endpoint.

Builds the DataTables query for a trailing time window, classifies the
response (valid rows, expired session, malformed body) and refreshes the
session at most once per fetch.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from otp_relay.config.settings import Settings
from otp_relay.domain.errors import AuthError, FetchError, TransportError
from otp_relay.domain.message import RawMessage
from otp_relay.infrastructure.authenticator import Authenticator
from otp_relay.infrastructure.dashboard_http import DashboardHttp
from otp_relay.infrastructure.session_store import SessionStore
from otp_relay.utils.time import get_current_time, trailing_window

logger = logging.getLogger(__name__)

TABLE_COLUMNS = 7
DATA_FIELD = "aaData"
DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

EXPIRY_MARKERS = ("session expired", "please login")

FETCH_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "Accept-Language": "en-US,en;q=0.9",
    "X-Requested-With": "XMLHttpRequest",
}


class RefreshAttempt(str, Enum):
    """Where a fetch call is in its single refresh-and-retry allowance."""
    FIRST_ATTEMPT = "first_attempt"
    RETRIED_AFTER_REFRESH = "retried_after_refresh"


@dataclass
class ValidData:
    rows: List[Any] = field(default_factory=list)


@dataclass
class ExpiredSession:
    reason: str


@dataclass
class MalformedResponse:
    reason: str


FetchOutcome = Union[ValidData, ExpiredSession, MalformedResponse]


def build_query_params(start: str, end: str, page_length: int = 100, now_ms: Optional[int] = None) -> Dict[str, str]:
    """
    Build the DataTables query for the SMS report, newest first.

    Args:
        start: Window start, dashboard time format
        end: Window end, dashboard time format
        page_length: Number of rows to request
        now_ms: Cache-busting value (defaults to the current epoch millis)
    """
    params = {
        "fdate1": start,
        "fdate2": end,
        "frange": "",
        "fnum": "",
        "fcli": "",
        "fgdate": "",
        "fgmonth": "",
        "fgrange": "",
        "fgnumber": "",
        "fgcli": "",
        "fg": "0",
        "sEcho": "1",
        "iColumns": str(TABLE_COLUMNS),
        "sColumns": "," * (TABLE_COLUMNS - 1),
        "iDisplayStart": "0",
        "iDisplayLength": str(page_length),
    }

    for column in range(TABLE_COLUMNS):
        params[f"mDataProp_{column}"] = str(column)
        params[f"sSearch_{column}"] = ""
        params[f"bRegex_{column}"] = "false"
        params[f"bSearchable_{column}"] = "true"
        params[f"bSortable_{column}"] = "true"

    params.update({
        "sSearch": "",
        "bRegex": "false",
        "iSortCol_0": "0",
        "sSortDir_0": "desc",
        "iSortingCols": "1",
        "_": str(now_ms if now_ms is not None else int(time.time() * 1000)),
    })
    return params


def _looks_like_login_page(body: str) -> bool:
    lower = body.lower()
    if "<form" in lower and ("signin" in lower or "password" in lower):
        return True
    return any(marker in lower for marker in EXPIRY_MARKERS)


def classify_response(status_code: int, url: str, body: str, login_path: str) -> FetchOutcome:
    """
    Decide what a dashboard response means.

    Auth statuses and a redirect onto the login page mark the session as
    expired before the body is read. Otherwise a JSON body carrying the
    data array is valid whatever the status, and an empty body or a login
    form means the session expired.

    Raises:
        FetchError: For HTTP errors that do not indicate an expired session
    """
    if status_code in (401, 403):
        return ExpiredSession(f"HTTP {status_code}")

    if login_path and urlsplit(url).path.rstrip("/") == login_path.rstrip("/"):
        return ExpiredSession("redirected to login page")

    if not body or not body.strip():
        return ExpiredSession("empty response body")

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get(DATA_FIELD), list):
        return ValidData(payload[DATA_FIELD])

    if _looks_like_login_page(body):
        return ExpiredSession("login page returned")

    if status_code >= 400:
        raise FetchError(f"HTTP {status_code}")

    if payload is None:
        return MalformedResponse("body is not JSON")
    return MalformedResponse(f"JSON without {DATA_FIELD} array")


def parse_rows(rows: List[Any]) -> List[RawMessage]:
    """
    Convert table rows into messages, silently dropping invalid rows.

    A row needs at least five fields, a YYYY-MM-DD timestamp in field 0
    and a string message body in field 4.
    """
    messages = []
    for row in rows:
        if not isinstance(row, list) or len(row) < 5:
            continue
        if not isinstance(row[0], str) or not DATE_PREFIX.match(row[0]):
            continue
        if not isinstance(row[4], str):
            continue

        messages.append(RawMessage(
            timestamp=row[0],
            country="" if row[1] is None else str(row[1]),
            phone="" if row[2] is None else str(row[2]),
            sender="" if row[3] is None else str(row[3]),
            body=row[4],
            symbol=row[5] if len(row) > 5 else None,
            message_id=row[6] if len(row) > 6 else None,
        ))
    return messages


class MessageFetcher:
    """Fetches recent messages, refreshing an expired session once."""

    def __init__(
        self,
        settings: Settings,
        http: DashboardHttp,
        session_store: SessionStore,
        authenticator: Authenticator,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.http = http
        self.session_store = session_store
        self.authenticator = authenticator
        self.clock = clock or (lambda: get_current_time(settings.dashboard_timezone))

    async def fetch_messages(self) -> List[RawMessage]:
        """
        Fetch the trailing window of messages, newest first.

        Never raises: every failure degrades to an empty list.
        """
        attempt = RefreshAttempt.FIRST_ATTEMPT

        while True:
            try:
                outcome = await self._fetch_with_retry()
            except (FetchError, TransportError) as e:
                logger.error(f"Fetch failed after {self.settings.max_retries} attempts: {e}")
                return []

            if isinstance(outcome, ValidData):
                messages = parse_rows(outcome.rows)
                logger.debug(f"Fetched {len(outcome.rows)} rows, {len(messages)} valid")
                return messages

            if attempt is RefreshAttempt.RETRIED_AFTER_REFRESH:
                logger.error(f"Session still invalid after refresh ({outcome.reason}), giving up this cycle")
                return []

            logger.warning(f"Session expired ({outcome.reason}), refreshing")
            try:
                await self.authenticator.login()
            except AuthError as e:
                logger.error(f"Session refresh failed [{e.reason}]: {e}")
                return []

            attempt = RefreshAttempt.RETRIED_AFTER_REFRESH

    async def _fetch_with_retry(self) -> FetchOutcome:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(self.settings.max_retries, 1)),
            wait=wait_fixed(self.settings.retry_delay_seconds),
            retry=retry_if_exception_type((FetchError, TransportError)),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._fetch_once()

    async def _fetch_once(self) -> FetchOutcome:
        start, end = trailing_window(
            self.clock(),
            self.settings.fetch_window_minutes,
            self.settings.clock_skew_tolerance_seconds,
            self.settings.dashboard_timezone,
        )
        params = build_query_params(start, end, self.settings.page_length)
        headers = dict(FETCH_HEADERS, Referer=self.http.url_for(self.settings.dashboard_referer_path))

        response = await self.http.request(
            "GET",
            self.settings.dashboard_data_path,
            cookie=self.session_store.get(),
            params=params,
            headers=headers,
        )

        if self.settings.debug:
            logger.debug(f"Raw dashboard response: {response.text[:500]}")

        return classify_response(
            response.status_code,
            response.url,
            response.text,
            self.settings.dashboard_login_path,
        )

    @staticmethod
    def _log_retry(retry_state) -> None:
        logger.warning(
            f"Fetch attempt {retry_state.attempt_number} failed: "
            f"{retry_state.outcome.exception()}, retrying"
        )
