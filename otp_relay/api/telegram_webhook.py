"""
Telegram webhook endpoint for subscription management and admin configuration.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Request, HTTPException
from telegram import CallbackQuery, Chat, ChatMember, InlineKeyboardButton, InlineKeyboardMarkup, Update, User

from otp_relay.domain.errors import PersistenceError
from otp_relay.usecases.admin_config import ConfigField

logger = logging.getLogger(__name__)
router = APIRouter()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

JOINED_STATUSES = (ChatMember.MEMBER, ChatMember.ADMINISTRATOR)
LEFT_STATUSES = (ChatMember.LEFT, ChatMember.BANNED)

CONFIG_CALLBACK_PREFIX = "config:"
CONFIG_CANCEL = "cancel"
CONFIG_MENU_TEXT = "⚙️ <b>Bot Configuration</b>\n\nSelect a setting to change:"


def validate_secret_token(request: Request, expected: Optional[str]) -> bool:
    """
    Validate the Telegram webhook secret token.

    Args:
        request: FastAPI request object
        expected: Configured secret, or None to skip validation

    Returns:
        True if the token matches
    """
    if not expected:
        return True
    received = request.headers.get(SECRET_HEADER, "")
    return hmac.compare_digest(received, expected)


def _command(text: Optional[str]) -> Optional[str]:
    """Extract "/command" from message text, dropping any @botname suffix."""
    if not text or not text.startswith("/"):
        return None
    return text.split()[0].split("@")[0].lower()


def config_keyboard() -> InlineKeyboardMarkup:
    """Menu of settings the admin can change."""
    def button(text: str, action: str) -> InlineKeyboardButton:
        return InlineKeyboardButton(text, callback_data=f"{CONFIG_CALLBACK_PREFIX}{action}")

    return InlineKeyboardMarkup([
        [button("🔑 Password", ConfigField.PASSWORD.value), button("🌐 API URL", ConfigField.API_URL.value)],
        [button("📝 Footer Text", ConfigField.FOOTER_TEXT.value), button("🔗 Footer Link", ConfigField.FOOTER_LINK.value)],
        [
            button("♻️ Number Text", ConfigField.NUMBER_BUTTON_TEXT.value),
            button("♻️ Number URL", ConfigField.NUMBER_BUTTON_URL.value),
        ],
        [
            button("‼️ Backup Text", ConfigField.BACKUP_BUTTON_TEXT.value),
            button("‼️ Backup URL", ConfigField.BACKUP_BUTTON_URL.value),
        ],
        [button("❌ Close", CONFIG_CANCEL)],
    ])


async def handle_subscribe(relay, chat: Chat, user: Optional[User]) -> str:
    if chat.type == Chat.PRIVATE:
        # The admin may receive notifications directly
        if user is not None and relay.admin.is_admin(user.id):
            if await relay.subscribers.add_user(user.id, user.username, user.first_name):
                return "✅ You are now subscribed to OTP notifications!"
            return "👋 You are already subscribed!"
        return "⚠️ This bot only works in groups.\n\nPlease add me to a group and use /subscribe there."

    if await relay.subscribers.add_group(chat.id, chat.title):
        return "✅ This group is now subscribed to OTP notifications!"
    return "👋 This group is already subscribed!"


async def handle_stats(relay) -> str:
    stats = await relay.subscribers.stats()
    return (
        f"📊 <b>Bot Statistics</b>\n\n"
        f"👤 Users: {stats.users}\n👥 Groups: {stats.groups}\n📬 Total subscribers: {stats.total}"
    )


async def handle_membership(relay, update: Update) -> None:
    """Track the bot being added to or removed from groups."""
    chat = update.my_chat_member.chat
    if chat.type not in (Chat.GROUP, Chat.SUPERGROUP):
        return

    status = update.my_chat_member.new_chat_member.status
    if status in JOINED_STATUSES:
        await relay.subscribers.add_group(chat.id, chat.title)
    elif status in LEFT_STATUSES:
        await relay.subscribers.remove(chat.id)


async def handle_callback(relay, query: CallbackQuery) -> None:
    """Handle a press on the /config menu."""
    await relay.notifier.answer_callback(query.id)

    data = query.data or ""
    if not data.startswith(CONFIG_CALLBACK_PREFIX) or query.message is None:
        return
    if not relay.admin.is_admin(query.from_user.id):
        logger.warning(f"Ignoring /config action from non-admin {query.from_user.id}")
        return

    action = data[len(CONFIG_CALLBACK_PREFIX):]
    if action == CONFIG_CANCEL:
        text = relay.admin.cancel(query.from_user.id)
    else:
        try:
            field = ConfigField(action)
        except ValueError:
            logger.warning(f"Unknown /config action: {action}")
            return
        text = relay.admin.begin(query.from_user.id, field)

    await relay.notifier.edit_message(query.message.chat.id, query.message.message_id, text)


@router.post("/webhook/telegram")
async def telegram_webhook(request: Request):
    """
    Handle updates pushed by Telegram.

    Supports /subscribe, /stats and the admin /config menu, plus group
    membership changes.
    """
    relay = request.app.state.relay

    if not validate_secret_token(request, relay.settings.telegram_webhook_secret):
        logger.warning("Invalid Telegram webhook secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    payload = await request.json()
    update = Update.de_json(payload, relay.notifier.bot)
    if update is None:
        return {"ok": True}

    try:
        if update.my_chat_member:
            await handle_membership(relay, update)
            return {"ok": True}

        if update.callback_query:
            await handle_callback(relay, update.callback_query)
            return {"ok": True}

        message = update.effective_message
        user = update.effective_user
        user_id = user.id if user else None
        command = _command(message.text) if message else None

        if command == "/subscribe":
            reply = await handle_subscribe(relay, message.chat, user)
        elif command == "/stats":
            reply = await handle_stats(relay)
        elif command == "/config":
            if not relay.admin.is_admin(user_id):
                return {"ok": True}
            await relay.notifier.reply(message.chat.id, CONFIG_MENU_TEXT, reply_markup=config_keyboard())
            return {"ok": True}
        elif command is None and message and message.text and relay.admin.is_awaiting(user_id):
            reply = await relay.admin.apply(user_id, message.text)
        else:
            return {"ok": True}

        await relay.notifier.reply(message.chat.id, reply)
    except PersistenceError as e:
        logger.error(f"Storage update failed for update {update.update_id}: {e}")

    return {"ok": True}


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "sms-otp-relay"}
