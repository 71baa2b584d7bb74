"""Persistence for per-user movie collections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CollectionRecord
from ..errors import ConcurrentModificationError
from ..models import SavedItem

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CollectionSnapshot:
    """The collection document as read from storage, plus its version token."""

    user_id: int
    version: int
    items: list[SavedItem] = field(default_factory=list)

    def saved_ids(self) -> set[int]:
        return {item.id for item in self.items}


class CollectionStore:
    """Reads and writes one collection document per user.

    Writes always replace the full item list. ``save`` only succeeds when the
    stored version still equals the version the caller read.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, user_id: int) -> CollectionSnapshot | None:
        async with self._session_factory() as session:
            record = await session.scalar(
                select(CollectionRecord).where(CollectionRecord.user_id == user_id)
            )
            if record is None:
                return None
            return self._record_to_snapshot(record)

    async def create(self, user_id: int) -> CollectionSnapshot:
        """Create an empty collection, or return the one that already exists."""

        existing = await self.load(user_id)
        if existing is not None:
            return existing

        now = datetime.utcnow()
        async with self._session_factory() as session:
            record = CollectionRecord(
                user_id=user_id,
                items=[],
                version=1,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Collection for user %s created concurrently", user_id)
            else:
                logger.info("Created movie collection for user %s", user_id)
                return self._record_to_snapshot(record)

        snapshot = await self.load(user_id)
        if snapshot is None:  # pragma: no cover - only if the row vanished again
            raise ConcurrentModificationError()
        return snapshot

    async def save(
        self, user_id: int, items: list[SavedItem], expected_version: int
    ) -> CollectionSnapshot:
        """Replace the item list if nobody saved since ``expected_version``."""

        payload = [item.model_dump(mode="json") for item in items]
        new_version = expected_version + 1
        async with self._session_factory() as session:
            result = await session.execute(
                update(CollectionRecord)
                .where(
                    CollectionRecord.user_id == user_id,
                    CollectionRecord.version == expected_version,
                )
                .values(items=payload, version=new_version, updated_at=datetime.utcnow())
            )
            if result.rowcount != 1:
                await session.rollback()
                logger.warning(
                    "Stale write rejected for user %s collection (version %s)",
                    user_id,
                    expected_version,
                )
                raise ConcurrentModificationError()
            await session.commit()
        return CollectionSnapshot(user_id=user_id, version=new_version, items=list(items))

    async def saved_ids(self, user_id: int) -> set[int]:
        snapshot = await self.load(user_id)
        if snapshot is None:
            return set()
        return snapshot.saved_ids()

    @staticmethod
    def _record_to_snapshot(record: CollectionRecord) -> CollectionSnapshot:
        items = [SavedItem.model_validate(entry) for entry in record.items or []]
        return CollectionSnapshot(
            user_id=record.user_id, version=record.version, items=items
        )
