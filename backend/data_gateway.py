"""
Generic data access over the Supabase record collections.

IMPORTANT: The supabase-py client is SYNCHRONOUS (httpx.Client, not AsyncClient).
Every .execute() call blocks the thread, so SupabaseGateway runs each query in a
thread pool via asyncio.to_thread(). Callers only ever see the async interface.

There is no transactional composition across collections; each call stands alone.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Collection names used across the app
USERS = "user_profiles"
USER_SETTINGS = "user_settings"
CONNECTIONS = "whatsapp_connections"
AGENTS = "ai_agents"
INTEGRATIONS = "integrations"
API_KEYS = "api_keys"
SYSTEM_SETTINGS = "system_settings"
THEMES = "themes"


class DataAccessError(Exception):
    """Raised when a storage call fails."""
    pass


async def _db(fn):
    """Run a synchronous Supabase call in a thread pool to avoid blocking the event loop."""
    return await asyncio.to_thread(fn)


class DataGateway(ABC):
    """Filtered reads, inserts, updates and deletes over named collections."""

    @abstractmethod
    async def get(
        self,
        collection: str,
        filters: Optional[dict] = None,
        columns: str = "*",
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Return the records matching every filter (scalar = equality, list = membership)."""

    @abstractmethod
    async def insert(self, collection: str, record: dict) -> dict:
        """Insert one record and return it as stored."""

    @abstractmethod
    async def update(self, collection: str, filters: dict, patch: dict) -> list[dict]:
        """Apply `patch` to the matching records and return them."""

    @abstractmethod
    async def delete(self, collection: str, filters: dict) -> None:
        """Delete the matching records."""

    @abstractmethod
    async def upsert(self, collection: str, record: dict, on_conflict: str) -> dict:
        """Insert or update one record keyed by `on_conflict` columns."""

    async def count(self, collection: str, filters: Optional[dict] = None) -> int:
        return len(await self.get(collection, filters, columns="id"))

    async def get_one(self, collection: str, filters: dict, columns: str = "*") -> Optional[dict]:
        rows = await self.get(collection, filters, columns=columns, limit=1)
        return rows[0] if rows else None


def _apply_filters(query, filters: Optional[dict]):
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            query = query.in_(key, list(value))
        elif value is None:
            query = query.is_(key, "null")
        else:
            query = query.eq(key, value)
    return query


class SupabaseGateway(DataGateway):
    """DataGateway backed by a supabase-py client."""

    def __init__(self, supabase):
        self.supabase = supabase

    async def _run(self, collection: str, action: str, fn) -> Any:
        try:
            return await _db(fn)
        except Exception as e:
            logger.error(f"Supabase {action} on {collection} failed: {e}")
            raise DataAccessError(f"{action} on {collection} failed: {e}") from e

    async def get(self, collection, filters=None, columns="*", order=None, desc=False, limit=None):
        def _query():
            query = _apply_filters(self.supabase.table(collection).select(columns), filters)
            if order:
                query = query.order(order, desc=desc)
            if limit:
                query = query.limit(limit)
            return query.execute()

        result = await self._run(collection, "select", _query)
        return result.data or []

    async def insert(self, collection, record):
        result = await self._run(
            collection, "insert",
            lambda: self.supabase.table(collection).insert(record).execute(),
        )
        if not result.data:
            raise DataAccessError(f"insert on {collection} returned no rows")
        return result.data[0]

    async def update(self, collection, filters, patch):
        result = await self._run(
            collection, "update",
            lambda: _apply_filters(self.supabase.table(collection).update(patch), filters).execute(),
        )
        return result.data or []

    async def delete(self, collection, filters):
        await self._run(
            collection, "delete",
            lambda: _apply_filters(self.supabase.table(collection).delete(), filters).execute(),
        )

    async def upsert(self, collection, record, on_conflict):
        result = await self._run(
            collection, "upsert",
            lambda: self.supabase.table(collection).upsert(record, on_conflict=on_conflict).execute(),
        )
        return result.data[0] if result.data else record

    async def count(self, collection, filters=None):
        def _query():
            query = self.supabase.table(collection).select("id", count="exact")
            return _apply_filters(query, filters).execute()

        result = await self._run(collection, "count", _query)
        if result.count is not None:
            return result.count
        return len(result.data or [])


def create_supabase_gateway(url: str, key: str) -> SupabaseGateway:
    """Build a gateway from project credentials."""
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")

    from supabase import create_client
    return SupabaseGateway(create_client(url, key))
