"""
OTP extraction from SMS bodies.
"""

import re
from typing import Optional

# Ordered by specificity, most specific first
OTP_PATTERNS = [
    re.compile(r"\bcode[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"\bOTP[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"verification\s*code[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"your\s+code\s+is[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"\bPIN[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"(?:\b(?:otp|one[-\s]?time|verification|code|pin)[:\s]*)(\d{4,8})", re.IGNORECASE),
    re.compile(r"Telegram(?:[:\s]+code)?[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"WhatsApp(?:[:\s]+code)?[:\s]+(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"^(\d{4,8})\s+is\s+your", re.IGNORECASE),
    # Standalone number not glued to other alphanumerics
    re.compile(r"(?<![A-Za-z0-9])(\d{4,8})(?![A-Za-z0-9])"),
]

OTP_INDICATORS = [
    re.compile(r"\bcode\b", re.IGNORECASE),
    re.compile(r"\bOTP\b", re.IGNORECASE),
    re.compile(r"\bverification\b", re.IGNORECASE),
    re.compile(r"\bPIN\b", re.IGNORECASE),
    re.compile(r"\bpassword\b", re.IGNORECASE),
    re.compile(r"\bTelegram\b", re.IGNORECASE),
    re.compile(r"\bWhatsApp\b", re.IGNORECASE),
    re.compile(r"\d{4,8}"),
]


def extract_otp(message: Optional[str]) -> Optional[str]:
    """
    Extract the OTP code from an SMS body.

    Args:
        message: Raw SMS text

    Returns:
        The code, or None if nothing looks like one
    """
    if not message or not isinstance(message, str):
        return None

    normalized = re.sub(r"\s+", " ", message).strip()

    for pattern in OTP_PATTERNS:
        match = pattern.search(normalized)
        if match and match.group(1):
            return match.group(1)

    return None


def has_otp_indicators(message: Optional[str]) -> bool:
    """Cheap check for whether a message probably carries a code."""
    if not message or not isinstance(message, str):
        return False
    return any(pattern.search(message) for pattern in OTP_INDICATORS)


def mask_otp(otp: str) -> str:
    """Mask a code for logs: 1***** for short codes, 12****** otherwise."""
    if not otp:
        return ""
    visible = 1 if len(otp) < 8 else 2
    return otp[:visible] + "*" * (len(otp) - visible)
