"""
System settings with a short-lived cache, plus the per-user quota checks that
read them (agents and WhatsApp connections).

One SettingsStore lives on the application state; nothing here is a
module-level cache.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from config import SETTINGS_CACHE_TTL
from data_gateway import DataGateway, DataAccessError, AGENTS, CONNECTIONS, SYSTEM_SETTINGS, USER_SETTINGS

logger = logging.getLogger(__name__)

DEFAULT_AGENTS_LIMIT = 5
DEFAULT_CONNECTIONS_LIMIT = 1


class SettingsStore:
    """Key/value rows from system_settings, cached for `ttl` seconds."""

    def __init__(self, gateway: DataGateway, ttl: float = SETTINGS_CACHE_TTL, clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, Any] = {}
        self._fetched_at: Optional[float] = None

    def _is_stale(self) -> bool:
        return self._fetched_at is None or self._clock() - self._fetched_at > self.ttl

    def invalidate(self) -> None:
        self._cache = {}
        self._fetched_at = None

    async def refresh(self) -> None:
        try:
            rows = await self.gateway.get(SYSTEM_SETTINGS, columns="setting_key, setting_value")
        except DataAccessError as e:
            logger.error(f"Failed to load system settings: {e}")
            # Unset timestamp forces another attempt on the next read
            self.invalidate()
            return

        self._cache = {row["setting_key"]: row.get("setting_value") for row in rows}
        self._fetched_at = self._clock()
        logger.debug(f"System settings cache refreshed ({len(self._cache)} keys)")

    async def all(self) -> Dict[str, Any]:
        if self._is_stale():
            await self.refresh()
        return dict(self._cache)

    async def get(self, key: str, default: Any = None) -> Any:
        if self._is_stale():
            await self.refresh()
        return self._cache.get(key, default)

    async def update(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Upsert each key, then reload the cache. Returns the keys that failed."""
        failed = {}
        for key, value in values.items():
            try:
                await self.gateway.upsert(
                    SYSTEM_SETTINGS,
                    {"setting_key": key, "setting_value": value},
                    on_conflict="setting_key",
                )
            except DataAccessError as e:
                logger.error(f"Failed to save setting {key}: {e}")
                failed[key] = str(e)

        self.invalidate()
        await self.refresh()
        return failed


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _user_limit(
    gateway: DataGateway,
    settings: SettingsStore,
    user_id: str,
    column: str,
    setting_key: str,
    fallback: int,
) -> int:
    """User override, then system default, then the hard-coded fallback."""
    try:
        row = await gateway.get_one(USER_SETTINGS, {"user_id": user_id}, columns=column)
    except DataAccessError as e:
        logger.warning(f"Failed to read {column} for user {user_id}: {e}")
        row = None

    limit = _as_int(row.get(column)) if row else None
    if limit is not None:
        return limit

    limit = _as_int(await settings.get(setting_key))
    return limit if limit is not None else fallback


async def get_agent_limit(gateway: DataGateway, settings: SettingsStore, user_id: str) -> int:
    return await _user_limit(
        gateway, settings, user_id, "agents_limit", "default_agents_limit", DEFAULT_AGENTS_LIMIT
    )


async def get_connection_limit(gateway: DataGateway, settings: SettingsStore, user_id: str) -> int:
    return await _user_limit(
        gateway, settings, user_id,
        "whatsapp_connections_limit", "default_whatsapp_connections_limit", DEFAULT_CONNECTIONS_LIMIT,
    )


async def check_user_can_create(gateway: DataGateway, settings: SettingsStore, user_id: str, kind: str) -> dict:
    """Quota check for "agent" or "connection" creation."""
    if kind == "agent":
        limit = await get_agent_limit(gateway, settings, user_id)
        collection = AGENTS
    elif kind == "connection":
        limit = await get_connection_limit(gateway, settings, user_id)
        collection = CONNECTIONS
    else:
        raise ValueError(f"Unknown quota kind: {kind}")

    current = await gateway.count(collection, {"user_id": user_id})
    return {"can_create": current < limit, "current_count": current, "limit": limit}
