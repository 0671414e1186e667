"""
Subscriber repository: the list of Telegram chats that receive OTPs.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from otp_relay.domain.errors import PersistenceError
from otp_relay.domain.subscriber import Subscriber, SubscriberKind, SubscriberStats

logger = logging.getLogger(__name__)


class SubscriberRepository:
    """Keyed collection of destinations backed by SQLite."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        # One write in flight at a time
        self._write_lock = asyncio.Lock()

    async def add_user(
        self,
        chat_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None
    ) -> bool:
        """
        Subscribe a private chat.

        Returns:
            True if the chat was newly added
        """
        subscriber = Subscriber(
            chat_id=chat_id,
            kind=SubscriberKind.USER,
            username=username,
            first_name=first_name,
            joined_at=datetime.utcnow(),
        )
        added = await self._insert(subscriber)
        if added:
            logger.info(f"New user subscribed: {chat_id}")
        return added

    async def add_group(self, chat_id: int, title: Optional[str] = None) -> bool:
        """
        Subscribe a group chat.

        Returns:
            True if the group was newly added
        """
        subscriber = Subscriber(
            chat_id=chat_id,
            kind=SubscriberKind.GROUP,
            title=title,
            joined_at=datetime.utcnow(),
        )
        added = await self._insert(subscriber)
        if added:
            logger.info(f"Bot added to group: {title or chat_id}")
        return added

    async def remove(self, chat_id: int) -> bool:
        """
        Unsubscribe a chat.

        Returns:
            True if a subscriber was removed
        """
        async with self._write_lock:
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        delete(Subscriber).where(Subscriber.chat_id == chat_id)
                    )
                    await session.commit()
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to remove subscriber {chat_id}: {e}") from e

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Subscriber removed: {chat_id}")
        return removed

    async def list_chat_ids(self) -> List[int]:
        """All destination IDs, users first, oldest subscription first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscriber.chat_id, Subscriber.kind)
                .order_by(Subscriber.joined_at)
            )
            rows = result.all()

        users = [chat_id for chat_id, kind in rows if kind == SubscriberKind.USER]
        groups = [chat_id for chat_id, kind in rows if kind == SubscriberKind.GROUP]
        return users + groups

    async def stats(self) -> SubscriberStats:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscriber.kind, func.count()).group_by(Subscriber.kind)
            )
            counts = dict(result.all())

        return SubscriberStats(
            users=counts.get(SubscriberKind.USER, 0),
            groups=counts.get(SubscriberKind.GROUP, 0),
        )

    async def _insert(self, subscriber: Subscriber) -> bool:
        async with self._write_lock:
            try:
                async with self.session_factory() as session:
                    existing = await session.get(Subscriber, subscriber.chat_id)
                    if existing is not None:
                        return False
                    session.add(subscriber)
                    await session.commit()
            except SQLAlchemyError as e:
                raise PersistenceError(
                    f"Failed to save subscriber {subscriber.chat_id}: {e}"
                ) from e
        return True
