"""
Detects which service sent an OTP from the message text.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PlatformInfo:
    key: str
    icon: str
    name: str
    short: str
    keywords: List[str] = field(default_factory=list)


UNKNOWN = "unknown"

PLATFORMS: Dict[str, PlatformInfo] = {
    "whatsapp": PlatformInfo("whatsapp", "📱", "WhatsApp", "WA", ["whatsapp", "whats app", "wa.me"]),
    "telegram": PlatformInfo(
        "telegram", "✈️", "Telegram", "TG",
        ["telegram", "telegram code", "login code", "t.me/login", "tg://login"],
    ),
    "facebook": PlatformInfo(
        "facebook", "📘", "Facebook", "FB",
        ["facebook", "meta", "fb-", "fb code", "facebook code"],
    ),
    UNKNOWN: PlatformInfo(UNKNOWN, "❓", "Others", "Others"),
}

# WhatsApp first since Facebook can send WhatsApp codes
DETECTION_ORDER = ["whatsapp", "telegram", "facebook"]


def detect_platform(message: Optional[str]) -> str:
    """
    Detect the platform key for a message.

    Returns:
        "whatsapp", "telegram", "facebook" or "unknown"
    """
    if not message or not isinstance(message, str):
        return UNKNOWN

    lower = message.lower()
    for key in DETECTION_ORDER:
        if any(keyword in lower for keyword in PLATFORMS[key].keywords):
            return key
    return UNKNOWN


def get_platform_info(key: str) -> PlatformInfo:
    return PLATFORMS.get(key, PLATFORMS[UNKNOWN])


def is_known_platform(key: str) -> bool:
    return key != UNKNOWN and key in PLATFORMS
