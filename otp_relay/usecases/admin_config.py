"""
Admin configuration service: runtime changes made through /config.

The admin picks a setting from the menu, then sends the new value as
their next message. Credentials and the dashboard URL are mirrored to
the .env file; footer and button changes are kept in the poll state.
"""

import html
import logging
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlsplit

from otp_relay.config.env_file import save_env_value
from otp_relay.config.settings import Settings
from otp_relay.domain.errors import PersistenceError
from otp_relay.domain.poll_state import PollState
from otp_relay.infrastructure.state_store import StateStore

logger = logging.getLogger(__name__)


class ConfigField(str, Enum):
    """Settings the admin can change at runtime."""
    PASSWORD = "password"
    API_URL = "api_url"
    FOOTER_TEXT = "footer_text"
    FOOTER_LINK = "footer_link"
    NUMBER_BUTTON_TEXT = "number_button_text"
    NUMBER_BUTTON_URL = "number_button_url"
    BACKUP_BUTTON_TEXT = "backup_button_text"
    BACKUP_BUTTON_URL = "backup_button_url"


FIELD_LABELS = {
    ConfigField.PASSWORD: "Password",
    ConfigField.API_URL: "API URL",
    ConfigField.FOOTER_TEXT: "Footer Text",
    ConfigField.FOOTER_LINK: "Footer Link",
    ConfigField.NUMBER_BUTTON_TEXT: "Number Button Text",
    ConfigField.NUMBER_BUTTON_URL: "Number Button URL",
    ConfigField.BACKUP_BUTTON_TEXT: "Backup Button Text",
    ConfigField.BACKUP_BUTTON_URL: "Backup Button URL",
}

# Stored on PollState.layout under the same attribute name
LAYOUT_FIELDS = (
    ConfigField.FOOTER_TEXT,
    ConfigField.FOOTER_LINK,
    ConfigField.NUMBER_BUTTON_TEXT,
    ConfigField.NUMBER_BUTTON_URL,
    ConfigField.BACKUP_BUTTON_TEXT,
    ConfigField.BACKUP_BUTTON_URL,
)

URL_FIELDS = (
    ConfigField.API_URL,
    ConfigField.FOOTER_LINK,
    ConfigField.NUMBER_BUTTON_URL,
    ConfigField.BACKUP_BUTTON_URL,
)


def is_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class AdminConfigService:
    """Service class for the /config conversation."""

    def __init__(
        self,
        settings: Settings,
        state: PollState,
        state_store: StateStore,
        env_file: Optional[str] = None,
    ):
        self.settings = settings
        self.state = state
        self.state_store = state_store
        self.env_file = env_file
        # Admin user id -> setting awaiting a value
        self._pending: Dict[int, ConfigField] = {}

    def is_admin(self, user_id: Optional[int]) -> bool:
        """Only the configured admin may use /config; without one it is disabled."""
        return self.settings.admin_id is not None and user_id == self.settings.admin_id

    def is_awaiting(self, user_id: Optional[int]) -> bool:
        return user_id in self._pending

    def current_value(self, field: ConfigField) -> str:
        if field == ConfigField.PASSWORD:
            return "********"
        if field == ConfigField.API_URL:
            return self.settings.dashboard_base_url
        return getattr(self.state.layout, field.value) or getattr(self.settings, field.value)

    def begin(self, user_id: int, field: ConfigField) -> str:
        """
        Wait for the admin's next message as the new value.

        Returns:
            Prompt to show the admin
        """
        self._pending[user_id] = field
        label = FIELD_LABELS[field]
        logger.info(f"Admin {user_id} editing {field.value}")
        return (
            f"⚙️ <b>{label}</b>\n\n"
            f"Current: <code>{html.escape(self.current_value(field))}</code>\n\n"
            f"Send the new {label.lower()}:"
        )

    def cancel(self, user_id: int) -> str:
        self._pending.pop(user_id, None)
        return "⚙️ Configuration cancelled."

    async def apply(self, user_id: int, value: str) -> str:
        """
        Apply the admin's reply to the setting they picked.

        Invalid values keep the setting pending so the admin can retry.

        Returns:
            Confirmation or error text for the admin
        """
        field = self._pending.get(user_id)
        if field is None:
            return "⚠️ Nothing to configure. Use /config first."

        value = value.strip()
        if not value:
            return "❌ Value cannot be empty. Try again:"
        if field in URL_FIELDS and not is_http_url(value):
            return "❌ Please send a full http:// or https:// URL. Try again:"

        del self._pending[user_id]
        label = FIELD_LABELS[field]

        if field == ConfigField.PASSWORD:
            self.settings.login_password = value
            save_env_value(self.env_file, "LOGIN_PASSWORD", value)
            logger.info("Dashboard password updated by admin")
            return "✅ Password updated successfully!"

        if field == ConfigField.API_URL:
            # Paths are configured separately; keep only the origin
            parts = urlsplit(value)
            origin = f"{parts.scheme}://{parts.netloc}"
            self.settings.dashboard_base_url = origin
            save_env_value(self.env_file, "DASHBOARD_BASE_URL", origin)
            logger.info(f"Dashboard URL updated to {origin}")
            return f"✅ API URL updated to: <code>{html.escape(origin)}</code>"

        setattr(self.state.layout, field.value, value)
        logger.info(f"{label} updated by admin")
        try:
            await self.state_store.save(self.state)
        except PersistenceError as e:
            logger.error(f"{label} applied but not saved: {e}")
            return f"⚠️ {label} updated, but could not be saved. It will reset on restart."

        return f"✅ {label} updated to: <code>{html.escape(value)}</code>"
