"""Operations over a user's saved-movie collection."""

from __future__ import annotations

import asyncio
import logging
import weakref

from ..errors import ConflictError, NotFoundError
from ..models import SavedItem, WatchStatus
from .collection_store import CollectionSnapshot, CollectionStore

logger = logging.getLogger(__name__)

COLLECTION_NOT_FOUND = "Movie collection not found"
MOVIE_NOT_FOUND = "Movie not found in user's collection"
MOVIE_ALREADY_SAVED = "Movie already exists in collection"


class CollectionManager:
    """Add, update, remove and list the movies a user has saved.

    Every change re-reads the whole collection, edits it in memory and writes
    it back. Changes for one user run one at a time inside this process, and
    the store's version check rejects writes that raced with another process.
    """

    def __init__(self, store: CollectionStore):
        self._store = store
        # Entries vanish once no operation holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def get(self, user_id: int) -> list[SavedItem]:
        snapshot = await self._load_existing(user_id)
        return snapshot.items

    async def add(self, user_id: int, item: SavedItem) -> SavedItem:
        """Append ``item``, creating the collection on first use.

        Uniqueness is by exact title, so the same catalog id may be saved
        again under a different title.
        """

        async with self._lock_for(user_id):
            snapshot = await self._store.create(user_id)
            if any(saved.title == item.title for saved in snapshot.items):
                raise ConflictError(MOVIE_ALREADY_SAVED)
            await self._store.save(
                user_id, [*snapshot.items, item], snapshot.version
            )
        logger.info("User %s saved movie %s", user_id, item.id)
        return item

    async def update_status(
        self, user_id: int, movie_id: int, status: WatchStatus
    ) -> SavedItem:
        async with self._lock_for(user_id):
            snapshot = await self._load_existing(user_id)
            index = self._index_of(snapshot, movie_id)
            updated = snapshot.items[index].model_copy(update={"status": status})
            items = list(snapshot.items)
            items[index] = updated
            await self._store.save(user_id, items, snapshot.version)
        return updated

    async def remove(self, user_id: int, movie_id: int) -> SavedItem:
        async with self._lock_for(user_id):
            snapshot = await self._load_existing(user_id)
            index = self._index_of(snapshot, movie_id)
            items = list(snapshot.items)
            removed = items.pop(index)
            await self._store.save(user_id, items, snapshot.version)
        logger.info("User %s removed movie %s", user_id, movie_id)
        return removed

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _load_existing(self, user_id: int) -> CollectionSnapshot:
        snapshot = await self._store.load(user_id)
        if snapshot is None:
            raise NotFoundError(COLLECTION_NOT_FOUND)
        return snapshot

    @staticmethod
    def _index_of(snapshot: CollectionSnapshot, movie_id: int) -> int:
        for index, saved in enumerate(snapshot.items):
            if saved.id == movie_id:
                return index
        raise NotFoundError(MOVIE_NOT_FOUND)
