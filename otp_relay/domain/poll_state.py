"""
Poll state model: the "last seen" boundary and the recent fingerprint cache.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from otp_relay.utils.time import parse_dashboard_time

FINGERPRINT_SEPARATOR = "_"


def make_fingerprint(phone: str, timestamp: str, otp: str) -> str:
    """
    Build the dedupe key for a message.

    Two messages with the same phone, timestamp and OTP collapse to one key.
    """
    return f"{phone}{FINGERPRINT_SEPARATOR}{timestamp}{FINGERPRINT_SEPARATOR}{otp}"


def fingerprint_timestamp(fingerprint: str) -> Optional[str]:
    """Extract the timestamp component embedded in a fingerprint."""
    parts = fingerprint.split(FINGERPRINT_SEPARATOR)
    if len(parts) < 3:
        return None
    return parts[1]


class LayoutOverrides(BaseModel):
    """Notification footer and link buttons changed at runtime via /config."""

    footer_text: Optional[str] = None
    footer_link: Optional[str] = None
    number_button_text: Optional[str] = None
    number_button_url: Optional[str] = None
    backup_button_text: Optional[str] = None
    backup_button_url: Optional[str] = None


class PollState(BaseModel):
    """Durable record of processing progress (one per deployment)."""

    last_seen_timestamp: Optional[str] = None
    recent_fingerprints: List[str] = Field(default_factory=list)
    last_checked_at: Optional[datetime] = None
    layout: LayoutOverrides = Field(default_factory=LayoutOverrides)

    def is_seen(self, timestamp: str) -> bool:
        """True if the timestamp is at or before the processed boundary."""
        return self.last_seen_timestamp is not None and timestamp <= self.last_seen_timestamp

    def advance_boundary(self, timestamp: Optional[str]) -> bool:
        """
        Move the boundary forward.

        Never moves backwards; returns True only when the boundary changed.
        """
        if not timestamp:
            return False
        if self.last_seen_timestamp is not None and timestamp <= self.last_seen_timestamp:
            return False
        self.last_seen_timestamp = timestamp
        return True

    def contains(self, fingerprint: str) -> bool:
        return fingerprint in self.recent_fingerprints

    def remember(self, fingerprint: str, capacity: int) -> None:
        """Insert a fingerprint, evicting the oldest entries over capacity."""
        if fingerprint in self.recent_fingerprints:
            return
        self.recent_fingerprints.append(fingerprint)
        self.trim(capacity)

    def trim(self, capacity: int) -> int:
        """Evict the oldest fingerprints beyond capacity; returns how many."""
        overflow = len(self.recent_fingerprints) - max(capacity, 0)
        if overflow <= 0:
            return 0
        del self.recent_fingerprints[:overflow]
        return overflow

    def prune(self, cutoff: datetime, timezone: str = "UTC") -> int:
        """
        Drop fingerprints whose embedded timestamp is older than cutoff.

        Entries without a parseable timestamp are dropped as well.

        Returns:
            Number of entries removed
        """
        kept = []
        for fingerprint in self.recent_fingerprints:
            raw = fingerprint_timestamp(fingerprint)
            message_time = parse_dashboard_time(raw, timezone) if raw else None
            if message_time is not None and message_time > cutoff:
                kept.append(fingerprint)

        removed = len(self.recent_fingerprints) - len(kept)
        self.recent_fingerprints = kept
        return removed
