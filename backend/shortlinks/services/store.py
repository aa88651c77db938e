"""
Key-value persistence for the engine.

Each key holds a whole collection (a JSON document). Callers read the full
collection, change it in memory and write it back; there is no atomicity
across keys. Every method is a coroutine, so each store call is an explicit
suspension point.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StorageError
from ..models import StoreEntry

logger = logging.getLogger(__name__)

# Storage keys
STORAGE_KEYS = {
    "URLS": "shortened_urls",
    "CLICKS": "url_clicks",
    "SETTINGS": "url_storage_settings",
    "PERMANENT": "permanent_urls",
}


class BaseStore:
    """Interface shared by all stores"""

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def keys(self) -> List[str]:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class SqlStore(BaseStore):
    """Durable store backed by the ``store_entries`` table"""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self._session_maker() as session:
                entry = await session.get(StoreEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting {key} from storage: {e}")
            raise StorageError(f"Failed to read {key}") from e

    async def set(self, key: str, value: Any) -> None:
        try:
            async with self._session_maker() as session:
                await session.merge(StoreEntry(key=key, value=value))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error setting {key} to storage: {e}")
            raise StorageError(f"Failed to write {key}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._session_maker() as session:
                await session.execute(delete(StoreEntry).where(StoreEntry.key == key))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error removing {key} from storage: {e}")
            raise StorageError(f"Failed to remove {key}") from e

    async def keys(self) -> List[str]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(StoreEntry.key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing storage keys: {e}")
            raise StorageError("Failed to list keys") from e

    async def clear(self) -> None:
        try:
            async with self._session_maker() as session:
                await session.execute(delete(StoreEntry))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error clearing storage: {e}")
            raise StorageError("Failed to clear storage") from e


class MemoryStore(BaseStore):
    """In-process store with the same serialization semantics as SqlStore.

    Values go through a JSON round trip so callers never share references
    with what is stored.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = self._dump(key, value)

    @staticmethod
    def _dump(key: str, value: Any) -> str:
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to serialize {key}") from e

    async def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = self._dump(key, value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data)

    async def clear(self) -> None:
        self._data.clear()

    def snapshot(self) -> Dict[str, Any]:
        return {key: json.loads(raw) for key, raw in self._data.items()}


class FallbackStore(BaseStore):
    """Use ``primary`` and keep ``secondary`` as a mirror of it.

    Every value read from or written to the primary is copied to the
    secondary. While the primary is down, reads are served only for keys the
    mirror already holds; an unknown key raises StorageError instead of
    looking empty. Writes made during an outage land in the secondary and are
    replayed to the primary before the key is next used there.
    """

    def __init__(self, primary: BaseStore, secondary: BaseStore):
        self.primary = primary
        self.secondary = secondary
        self._mirrored: Set[str] = set()
        self._pending: Set[str] = set()

    async def _mirror(self, key: str, value: Any) -> None:
        try:
            if value is None:
                await self.secondary.delete(key)
            else:
                await self.secondary.set(key, value)
            self._mirrored.add(key)
        except StorageError as e:
            logger.error(f"Failed to mirror {key}: {e.reason}")
            self._mirrored.discard(key)

    async def _replay(self, key: str) -> None:
        if key not in self._pending:
            return
        value = await self.secondary.get(key)
        if value is None:
            await self.primary.delete(key)
        else:
            await self.primary.set(key, value)
        self._pending.discard(key)
        logger.info(f"Replayed {key} to primary store")

    async def get(self, key: str) -> Optional[Any]:
        try:
            await self._replay(key)
            value = await self.primary.get(key)
        except StorageError as error:
            if key not in self._mirrored:
                logger.error(f"Primary store failed reading {key} and no copy is held: {error.reason}")
                raise
            logger.warning(f"Primary store failed reading {key}, using mirror: {error.reason}")
            return await self.secondary.get(key)
        await self._mirror(key, value)
        return value

    async def _write(self, key: str, value: Any) -> None:
        try:
            await self._replay(key)
            if value is None:
                await self.primary.delete(key)
            else:
                await self.primary.set(key, value)
        except StorageError as error:
            logger.warning(f"Primary store failed writing {key}, keeping it in mirror: {error.reason}")
            try:
                if value is None:
                    await self.secondary.delete(key)
                else:
                    await self.secondary.set(key, value)
            except StorageError as fallback_error:
                logger.error(f"Both stores failed writing {key}: {error.reason}; {fallback_error.reason}")
                raise StorageError(f"Failed to write {key}") from fallback_error
            self._mirrored.add(key)
            self._pending.add(key)
            return
        await self._mirror(key, value)

    async def set(self, key: str, value: Any) -> None:
        await self._write(key, value)

    async def delete(self, key: str) -> None:
        await self._write(key, None)

    async def keys(self) -> List[str]:
        try:
            return await self.primary.keys()
        except StorageError as error:
            logger.warning(f"Primary store failed listing keys, using mirror: {error.reason}")
            return await self.secondary.keys()

    async def clear(self) -> None:
        await self.primary.clear()
        self._pending.clear()
        self._mirrored.clear()
        await self.secondary.clear()
