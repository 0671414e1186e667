"""
Telegram notification delivery with retry logic.
"""

import html
import logging
from typing import Optional, Tuple

from telegram import Bot, CopyTextButton, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, RetryAfter, TelegramError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    retry_if_not_exception_type,
)

from otp_relay.config.settings import Settings
from otp_relay.domain.message import OtpEvent
from otp_relay.domain.poll_state import LayoutOverrides
from otp_relay.infrastructure.subscriber_repository import SubscriberRepository
from otp_relay.utils.otp import mask_otp
from otp_relay.utils.phone import mask_phone_number
from otp_relay.utils.platform import detect_platform, get_platform_info, is_known_platform

logger = logging.getLogger(__name__)

# Update types the webhook handles
ALLOWED_UPDATES = ["message", "my_chat_member", "callback_query"]


class TelegramNotifier:
    """Delivers OTP events to every subscribed chat."""

    def __init__(
        self,
        settings: Settings,
        subscribers: SubscriberRepository,
        bot: Optional[Bot] = None,
        layout: Optional[LayoutOverrides] = None
    ):
        self.settings = settings
        self.subscribers = subscribers
        self.bot = bot or Bot(token=settings.telegram_bot_token)
        self.layout = layout if layout is not None else LayoutOverrides()

    async def start(self) -> None:
        """
        Initialize the bot and register the webhook.

        Raises TelegramError if the token is rejected or the webhook
        cannot be set; both are fatal at startup.
        """
        await self.bot.initialize()
        logger.info(f"Telegram bot initialized as @{self.bot.username}")

        url = self.settings.telegram_webhook_url
        if not url:
            logger.warning("TELEGRAM_WEBHOOK_URL not set; commands arrive only if the webhook is registered elsewhere")
            return

        await self.bot.set_webhook(
            url=url,
            secret_token=self.settings.telegram_webhook_secret,
            allowed_updates=ALLOWED_UPDATES,
            drop_pending_updates=True,
        )
        logger.info(f"Telegram webhook registered at {url}")

    async def stop(self) -> None:
        await self.bot.shutdown()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=(
            retry_if_exception_type((NetworkError, RetryAfter))
            & retry_if_not_exception_type(BadRequest)
        ),
        reraise=True
    )
    async def _send(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> None:
        """
        Single Telegram send with retry logic.

        Args:
            chat_id: Destination chat
            text: HTML message text
            reply_markup: Optional inline keyboard
        """
        await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
            reply_markup=reply_markup,
        )

    async def reply(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> bool:
        """
        Send an HTML reply to one chat.

        Returns:
            True if message sent successfully, False otherwise
        """
        try:
            await self._send(chat_id, text, reply_markup)
            return True
        except TelegramError as e:
            logger.error(f"Failed to reply to {chat_id}: {e}")
            return False

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> bool:
        """Replace the text of a message the bot sent earlier."""
        try:
            await self.bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=ParseMode.HTML,
            )
            return True
        except TelegramError as e:
            logger.error(f"Failed to edit message {message_id} in {chat_id}: {e}")
            return False

    async def answer_callback(self, query_id: str) -> None:
        """Stop the loading spinner on a pressed inline button."""
        try:
            await self.bot.answer_callback_query(query_id)
        except TelegramError as e:
            logger.warning(f"Failed to answer callback query {query_id}: {e}")

    async def send_otp_notification(self, event: OtpEvent) -> bool:
        """
        Send a formatted OTP notification to all subscribers.

        Destinations are sent to one after another; a failing chat does
        not stop delivery to the rest.

        Args:
            event: OTP event to deliver

        Returns:
            True if at least one destination received it
        """
        chat_ids = await self.subscribers.list_chat_ids()
        if not chat_ids:
            logger.warning("No subscribers yet. Add the bot to a group and use /subscribe")
            return False

        text, keyboard = self.build_notification(event)

        success_count = 0
        fail_count = 0
        for chat_id in chat_ids:
            try:
                await self._send(chat_id, text, keyboard)
                success_count += 1
            except TelegramError as e:
                fail_count += 1
                logger.error(f"Failed to send to {chat_id}: {e}")

        platform = get_platform_info(detect_platform(event.raw_body))
        logger.info(
            f"Sent OTP {mask_otp(event.otp)} [{platform.short}]: "
            f"{success_count} success, {fail_count} failed"
        )
        return success_count > 0

    def build_notification(self, event: OtpEvent) -> Tuple[str, InlineKeyboardMarkup]:
        """
        Format the message text and keyboard for an event.

        Known platforms get a copy-code button; unknown ones include the
        full message body instead.
        """
        platform_key = detect_platform(event.raw_body)
        platform = get_platform_info(platform_key)
        masked_phone = html.escape(mask_phone_number(event.phone))
        country = event.country_code or "XX"

        link_row = [
            InlineKeyboardButton(self._layout("number_button_text"), url=self._layout("number_button_url")),
            InlineKeyboardButton(self._layout("backup_button_text"), url=self._layout("backup_button_url")),
        ]

        if is_known_platform(platform_key):
            text = (
                f"{event.country_flag} #{country} #{platform.short} {masked_phone}\n\n\n"
                f"{self._footer()}"
            )
            keyboard = InlineKeyboardMarkup([
                [InlineKeyboardButton(event.otp, copy_text=CopyTextButton(event.otp))],
                link_row,
            ])
        else:
            text = (
                f"{event.country_flag} #{country} {platform.name} {masked_phone}\n\n"
                f"<b>Message:</b>\n"
                f"<pre>{html.escape(event.raw_body)}</pre>\n\n\n"
                f"{self._footer()}"
            )
            keyboard = InlineKeyboardMarkup([link_row])

        return text, keyboard

    def _layout(self, name: str) -> str:
        """Runtime override if one was set, else the configured value."""
        return getattr(self.layout, name) or getattr(self.settings, name)

    def _footer(self) -> str:
        link = html.escape(self._layout("footer_link"), quote=True)
        return f'<b><a href="{link}">{html.escape(self._layout("footer_text"))}</a></b>'
