"""
Phone number formatting with country detection and flag emojis.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)

GLOBE = "🌐"
# Regional indicator "A" minus ord("A")
FLAG_OFFSET = 0x1F1E6 - ord("A")


@dataclass
class PhoneInfo:
    formatted: str
    flag: str
    country_code: Optional[str]


def country_code_to_flag(country_code: Optional[str]) -> str:
    """Convert an ISO 3166-1 alpha-2 code to its flag emoji."""
    if not country_code or len(country_code) != 2 or not country_code.isalpha():
        return GLOBE
    return "".join(chr(ord(char) + FLAG_OFFSET) for char in country_code.upper())


def format_phone_with_flag(phone_number: str) -> PhoneInfo:
    """
    Format a raw dashboard number in international form with its flag.

    Args:
        phone_number: Digits as reported by the dashboard (e.g. "593985987705")

    Returns:
        PhoneInfo; unknown numbers get a globe and no country code
    """
    digits = re.sub(r"\D", "", phone_number or "")
    fallback = PhoneInfo(formatted=f"+{digits}", flag=GLOBE, country_code=None)

    try:
        parsed = phonenumbers.parse(f"+{digits}", None)
    except phonenumbers.NumberParseException as e:
        logger.debug(f"Phone parsing error for {digits}: {e}")
        return fallback

    country_code = phonenumbers.region_code_for_number(parsed)
    if not country_code or country_code == "ZZ":
        return fallback

    formatted = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.INTERNATIONAL)
    return PhoneInfo(
        formatted=formatted,
        flag=country_code_to_flag(country_code),
        country_code=country_code,
    )


def mask_phone_number(phone: str) -> str:
    """
    Mask a number for display, e.g. +2217XXXXX777.

    Shows the first 4 and last 3 digits.
    """
    if not phone:
        return ""

    digits = re.sub(r"\D", "", phone)
    visible_prefix = 4
    visible_suffix = 3

    if len(digits) <= visible_prefix + visible_suffix:
        if len(digits) <= 2:
            return phone
        return f"+{digits[:1]}...{digits[-1:]}"

    middle = len(digits) - visible_prefix - visible_suffix
    return f"+{digits[:visible_prefix]}{'X' * middle}{digits[-visible_suffix:]}"
