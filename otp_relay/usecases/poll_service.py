"""
Poll service: one fetch -> dedupe -> dispatch -> persist cycle at a time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from otp_relay.config.settings import Settings
from otp_relay.domain.errors import PersistenceError
from otp_relay.domain.message import MessageStatus, OtpEvent, RawMessage
from otp_relay.domain.poll_state import PollState, make_fingerprint
from otp_relay.infrastructure.message_fetcher import MessageFetcher
from otp_relay.infrastructure.state_store import StateStore
from otp_relay.infrastructure.telegram_notifier import TelegramNotifier
from otp_relay.utils.otp import extract_otp, has_otp_indicators, mask_otp
from otp_relay.utils.phone import format_phone_with_flag
from otp_relay.utils.time import get_current_time

logger = logging.getLogger(__name__)


@dataclass
class PollReport:
    """Counters for one poll cycle."""
    fetched: int = 0
    sent: int = 0
    failed: int = 0
    duplicates: int = 0
    no_otp: int = 0
    already_seen: int = 0

    def record(self, status: MessageStatus) -> None:
        if status == MessageStatus.SENT:
            self.sent += 1
        elif status == MessageStatus.FAILED:
            self.failed += 1
        elif status == MessageStatus.DUPLICATE:
            self.duplicates += 1
        elif status == MessageStatus.NO_OTP:
            self.no_otp += 1


class PollService:
    """Service class for the poll cycle."""

    def __init__(
        self,
        settings: Settings,
        fetcher: MessageFetcher,
        notifier: TelegramNotifier,
        state: PollState,
        state_store: StateStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.notifier = notifier
        self.state = state
        self.state_store = state_store
        self.clock = clock or (lambda: get_current_time(settings.dashboard_timezone))
        self._polling = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_polling(self) -> bool:
        return self._polling

    async def wait_until_idle(self) -> None:
        """Wait for the in-flight cycle, if any, to finish."""
        await self._idle.wait()

    async def establish_baseline(self) -> Optional[str]:
        """
        Mark everything currently on the dashboard as already seen.

        Runs once before the scheduler starts so history is never replayed.

        Returns:
            The boundary after the baseline (None if still unset)
        """
        logger.info("Fetching latest messages to set baseline...")
        messages = await self.fetcher.fetch_messages()

        if messages:
            newest = max(message.timestamp for message in messages)
            self.state.advance_boundary(newest)
            logger.info(f"Baseline set: only OTPs newer than {self.state.last_seen_timestamp} will be sent")
        else:
            logger.warning("No messages found, will send all new OTPs")

        await self._persist()
        return self.state.last_seen_timestamp

    async def poll(self) -> Optional[PollReport]:
        """
        Run one poll cycle.

        Returns:
            PollReport, or None if a cycle was already running

        Never raises; failures are logged and the next tick tries again.
        """
        if self._polling:
            logger.debug("Skipping poll - previous cycle still running")
            return None

        self._polling = True
        self._idle.clear()
        try:
            return await self._run_cycle()
        except Exception as e:
            logger.exception(f"Polling error: {e}")
            return None
        finally:
            self._polling = False
            self._idle.set()

    async def _run_cycle(self) -> PollReport:
        report = PollReport()
        messages = await self.fetcher.fetch_messages()
        report.fetched = len(messages)

        newest_timestamp = self.state.last_seen_timestamp

        # Dashboard returns newest first; notify oldest first
        for message in reversed(messages):
            if self.state.is_seen(message.timestamp):
                report.already_seen += 1
                continue

            status = await self.process_message(message)
            report.record(status)

            # Advance past every new message regardless of outcome
            if newest_timestamp is None or message.timestamp > newest_timestamp:
                newest_timestamp = message.timestamp

        if self.state.advance_boundary(newest_timestamp):
            logger.debug(f"Boundary advanced to {newest_timestamp}")

        cutoff = self.clock() - timedelta(seconds=self.settings.cache_retention_seconds)
        pruned = self.state.prune(cutoff, self.settings.dashboard_timezone)
        if pruned:
            logger.debug(f"Pruned {pruned} expired fingerprints")

        self.state.last_checked_at = datetime.utcnow()
        await self._persist()

        logger.info(
            f"Fetched: {report.fetched} | New: {report.sent} | Failed: {report.failed} | "
            f"Duplicates: {report.duplicates} | No OTP: {report.no_otp}"
        )
        return report

    async def process_message(self, message: RawMessage) -> MessageStatus:
        """
        Extract, dedupe and dispatch one message.

        Args:
            message: Message past the seen boundary

        Returns:
            Outcome of processing
        """
        otp = extract_otp(message.body)
        if not otp:
            if has_otp_indicators(message.body):
                logger.debug(f"No code extracted from likely OTP message at {message.timestamp}")
            return MessageStatus.NO_OTP

        fingerprint = make_fingerprint(message.phone, message.timestamp, otp)
        if self.state.contains(fingerprint):
            logger.debug(f"Skipping duplicate message from {message.phone} at {message.timestamp}")
            return MessageStatus.DUPLICATE

        phone_info = format_phone_with_flag(message.phone)
        event = OtpEvent(
            otp=otp,
            phone=phone_info.formatted,
            country_flag=phone_info.flag,
            country_code=phone_info.country_code,
            timestamp=message.timestamp,
            raw_body=message.body,
        )

        try:
            delivered = await self.notifier.send_otp_notification(event)
        except Exception as e:
            logger.exception(f"Notifier error for {phone_info.formatted}: {e}")
            delivered = False

        status = MessageStatus.SENT if delivered else MessageStatus.FAILED
        logger.info(
            f"OTP {status.value.upper()} | Code: {mask_otp(otp)} | "
            f"Number: {phone_info.flag} {phone_info.formatted} | Time: {message.timestamp}"
        )

        if delivered:
            self.state.remember(fingerprint, self.settings.max_cache_size)
        return status

    async def _persist(self) -> None:
        try:
            await self.state_store.save(self.state)
        except PersistenceError as e:
            logger.error(f"State not persisted, will retry next cycle: {e}")
