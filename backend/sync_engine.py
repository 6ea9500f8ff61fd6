"""
Connection status sync.
Reconciles whatsapp_connections.status with the state the Evolution API reports.

Sync is best-effort and human-triggered (modal open, refresh button, page load).
There is no locking: two callers syncing the same row race and the last write
wins. Every write is a full overwrite of (status, updated_at) or (updated_at),
so a race can lose an update but never corrupt a row.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from config import CONNECTION_STATE_TIMEOUT, SYNC_DELAY_SECONDS
from connection_status import ConnectionStatus, extract_provider_state, map_provider_state
from connection_manager import list_connections
from data_gateway import DataGateway, DataAccessError, CONNECTIONS
from evolution_api import EvolutionAPI, EvolutionAPIError

logger = logging.getLogger(__name__)


class SyncFailurePolicy:
    """What a sync does with a record when the gateway can't be asked.

    SOFT: touch updated_at only, keep the last known status, report success.
    HARD: mark the record ERROR and report failure.
    """
    SOFT = "soft"
    HARD = "hard"

    ALL = frozenset({SOFT, HARD})

    @classmethod
    def parse(cls, value: Optional[str]) -> str:
        value = (value or "").strip().lower()
        if value in cls.ALL:
            return value
        logger.warning(f"Unknown sync failure policy {value!r}, using {cls.SOFT!r}")
        return cls.SOFT


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatusSynchronizer:
    """Syncs one connection record with its gateway instance."""

    def __init__(
        self,
        gateway: DataGateway,
        evolution: EvolutionAPI,
        policy: str = SyncFailurePolicy.SOFT,
        state_timeout: float = CONNECTION_STATE_TIMEOUT,
    ):
        self.gateway = gateway
        self.evolution = evolution
        self.policy = SyncFailurePolicy.parse(policy)
        self.state_timeout = state_timeout

    async def sync_one(self, connection_id: str) -> dict:
        """
        Query the gateway for the connection's live state and write the mapped
        status back with a fresh updated_at.

        Never raises. Returns a dict with at least "success"; on a gateway or
        lookup failure the result depends on the failure policy (see _degrade).
        """
        try:
            connection = await self.gateway.get_one(
                CONNECTIONS, {"id": connection_id}, columns="id, instance_name, status"
            )
        except DataAccessError as e:
            logger.warning(f"Lookup failed for connection {connection_id}: {e}")
            return await self._degrade(connection_id, "Could not load connection")

        if not connection:
            logger.warning(f"Sync requested for unknown connection {connection_id}")
            return {"success": False, "updated": False, "error": "Connection not found"}

        instance_name = connection.get("instance_name")
        if not instance_name:
            return await self._degrade(connection_id, "Connection has no instance name")

        try:
            body = await asyncio.wait_for(
                self.evolution.connection_state(instance_name, timeout=self.state_timeout),
                timeout=self.state_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"connectionState timed out for {instance_name} after {self.state_timeout}s")
            return await self._degrade(connection_id, "Timed out checking connection state")
        except EvolutionAPIError as e:
            logger.warning(f"connectionState failed for {instance_name} ({e.kind}): {e.message}")
            return await self._degrade(connection_id, e.message)
        except Exception as e:
            logger.error(f"Unexpected error checking {instance_name}: {e}")
            return await self._degrade(connection_id, "Could not reach the Evolution API")

        state, phone = extract_provider_state(body)
        status = map_provider_state(state)

        try:
            rows = await self.gateway.update(
                CONNECTIONS, {"id": connection_id}, {"status": status, "updated_at": _now_iso()}
            )
        except DataAccessError as e:
            logger.error(f"Failed to write status for connection {connection_id}: {e}")
            return {"success": False, "updated": False, "error": "Failed to update connection status"}

        logger.info(f"Connection {instance_name}: state {state!r} -> {status!r}")
        return {
            "success": True,
            "updated": True,
            "status": status,
            "previous_status": connection.get("status"),
            "provider_state": state,
            "phone_number": phone,
            "connection": rows[0] if rows else None,
        }

    async def _degrade(self, connection_id: str, reason: str) -> dict:
        """Apply the failure policy when the live state couldn't be determined."""
        patch = {"updated_at": _now_iso()}
        if self.policy == SyncFailurePolicy.HARD:
            patch["status"] = ConnectionStatus.ERROR

        try:
            await self.gateway.update(CONNECTIONS, {"id": connection_id}, patch)
        except DataAccessError as e:
            logger.error(f"Failed to update timestamp for connection {connection_id}: {e}")
            return {"success": False, "updated": False, "error": reason}

        if self.policy == SyncFailurePolicy.HARD:
            return {"success": False, "updated": True, "status": ConnectionStatus.ERROR, "error": reason}

        return {
            "success": True,
            "updated": True,
            "degraded": True,
            "status": None,
            "reason": reason,
            "note": "Only timestamp updated",
        }


class BulkSyncOrchestrator:
    """Runs the synchronizer over many connections, one at a time.

    Calls are strictly sequential with `delay` seconds between consecutive
    connections to keep the gateway load low. A run can't be cancelled once
    started. A second run for the same scope while one is in flight is refused.
    """

    def __init__(
        self,
        synchronizer: StatusSynchronizer,
        delay: float = SYNC_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.synchronizer = synchronizer
        self.delay = delay
        self._sleep = sleep
        self._running: set[str] = set()

    def is_running(self, scope: str) -> bool:
        return scope in self._running

    async def sync_all(self, connections: list[dict], scope: str = "default") -> dict:
        """Sync every connection in order. Per-record failures are logged and skipped."""
        if scope in self._running:
            logger.info(f"Bulk sync already running for {scope}, skipping duplicate")
            return {"success": False, "error": "Sync already running"}

        self._running.add(scope)
        results = []
        failed = 0
        try:
            logger.info(f"Bulk sync of {len(connections)} connections for {scope}")
            for index, connection in enumerate(connections):
                if index > 0 and self.delay > 0:
                    await self._sleep(self.delay)

                connection_id = connection.get("id")
                try:
                    result = await self.synchronizer.sync_one(connection_id)
                except Exception as e:
                    logger.error(f"Sync crashed for connection {connection_id}: {e}")
                    result = {"success": False, "error": str(e)}

                if not result.get("success"):
                    failed += 1
                    logger.warning(
                        f"Sync failed for {connection.get('instance_name') or connection_id}: "
                        f"{result.get('error')}"
                    )
                results.append({"id": connection_id, **result})
        finally:
            self._running.discard(scope)

        return {
            "success": True,
            "total": len(connections),
            "synced": len(connections) - failed,
            "failed": failed,
            "results": results,
        }


def scope_key(user_id: str, is_admin: bool, target_user_id: Optional[str] = None) -> str:
    """Re-entrancy key for a bulk sync: whose connections are being synced."""
    if is_admin and not target_user_id:
        return "all"
    return f"user:{target_user_id if is_admin else user_id}"


async def sync_scope(
    orchestrator: BulkSyncOrchestrator,
    gateway: DataGateway,
    user_id: str,
    is_admin: bool,
    target_user_id: Optional[str] = None,
) -> dict:
    """Sync every connection visible to the caller, then re-read the collection."""
    connections = await list_connections(gateway, user_id, is_admin, target_user_id)
    summary = await orchestrator.sync_all(
        connections, scope=scope_key(user_id, is_admin, target_user_id)
    )
    if not summary.get("success"):
        return summary

    summary["connections"] = await list_connections(gateway, user_id, is_admin, target_user_id)
    return summary
