"""
Subscriber domain model and schemas.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, BigInteger, Enum as SQLEnum
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel

Base = declarative_base()


class SubscriberKind(str, Enum):
    """Kind of Telegram chat receiving notifications."""
    USER = "user"
    GROUP = "group"


class Subscriber(Base):
    """SQLAlchemy model for notification destinations."""

    __tablename__ = "subscribers"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    kind = Column(SQLEnum(SubscriberKind), nullable=False)
    title = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    joined_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Subscriber(chat_id={self.chat_id}, kind={self.kind})>"


# Pydantic Schemas

class SubscriberStats(BaseModel):
    """Counts of subscribed chats."""
    users: int = 0
    groups: int = 0

    @property
    def total(self) -> int:
        return self.users + self.groups
