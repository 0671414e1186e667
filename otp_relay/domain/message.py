"""
Message domain models and schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageStatus(str, Enum):
    """Outcome of processing a single dashboard message."""
    SENT = "sent"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    NO_OTP = "no_otp"


class Session(BaseModel):
    """Authentication cookie for the dashboard."""
    cookie_value: str
    obtained_at: datetime = Field(default_factory=datetime.utcnow)


class RawMessage(BaseModel):
    """One row of the dashboard's SMS table."""
    timestamp: str  # YYYY-MM-DD HH:MM:SS, dashboard-local
    country: str = ""
    phone: str
    sender: str = ""
    body: str
    symbol: Optional[Any] = None
    message_id: Optional[Any] = None

    class Config:
        frozen = True


class OtpEvent(BaseModel):
    """Structured notification handed to the notifier."""
    otp: str
    phone: str
    country_flag: str
    country_code: Optional[str] = None
    timestamp: str
    raw_body: str
