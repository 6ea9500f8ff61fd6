"""
WhatsApp connection manager.
Local whatsapp_connections rows and the Evolution API instances behind them.

Creation is "create remotely, then record locally"; if the local insert fails
the remote instance is deleted again so the gateway doesn't keep an orphan.
"""

import logging
import random
import re
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any

from connection_status import ConnectionStatus
from data_gateway import DataGateway, DataAccessError, CONNECTIONS, USERS
from evolution_api import EvolutionAPI, EvolutionAPIError
from settings_store import SettingsStore, check_user_can_create

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_NAME = "impaai"
MAX_NAME_ATTEMPTS = 10

DEFAULT_INSTANCE_SETTINGS = {
    "groupsIgnore": False,
    "readMessages": True,
    "alwaysOnline": False,
    "readStatus": True,
    "rejectCall": False,
    "msgCall": "I can't take calls right now, please send a message.",
    "syncFullHistory": False,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())


def generate_instance_name(platform_name: str, connection_name: str) -> str:
    """e.g. "impaai_sales_4821"."""
    suffix = random.randint(1000, 10998)
    return f"{_slug(platform_name) or DEFAULT_PLATFORM_NAME}_{_slug(connection_name)}_{suffix}"


def generate_instance_token() -> str:
    return str(uuid.uuid4()).upper()


async def list_connections(
    gateway: DataGateway,
    user_id: str,
    is_admin: bool,
    target_user_id: Optional[str] = None,
) -> List[Dict]:
    """Connections visible to the caller, newest first.

    Admins see everything unless they ask for one user; everyone else sees
    only their own.
    """
    if is_admin and not target_user_id:
        filters = {}
    else:
        filters = {"user_id": target_user_id if is_admin else user_id}
    return await gateway.get(CONNECTIONS, filters, order="created_at", desc=True)


async def get_owned_connection(
    gateway: DataGateway, connection_id: str, user_id: str, is_admin: bool
) -> Optional[Dict]:
    """Fetch a connection the caller may act on (admins may act on any)."""
    filters = {"id": connection_id}
    if not is_admin:
        filters["user_id"] = user_id
    return await gateway.get_one(CONNECTIONS, filters)


class ConnectionManager:
    """Lifecycle operations for a user's WhatsApp connections."""

    def __init__(self, gateway: DataGateway, evolution: EvolutionAPI, settings: SettingsStore):
        self.gateway = gateway
        self.evolution = evolution
        self.settings = settings

    async def _name_taken(self, instance_name: str, token: str) -> bool:
        by_name = await self.gateway.get(CONNECTIONS, {"instance_name": instance_name}, columns="id", limit=1)
        if by_name:
            return True
        by_token = await self.gateway.get(CONNECTIONS, {"instance_token": token}, columns="id", limit=1)
        return bool(by_token)

    async def create_connection(
        self, user_id: str, connection_name: str, platform_name: str = DEFAULT_PLATFORM_NAME
    ) -> Dict[str, Any]:
        """Create a gateway instance and its local record."""
        quota = await check_user_can_create(self.gateway, self.settings, user_id, "connection")
        if not quota["can_create"]:
            return {
                "success": False,
                "error": f"Connection limit reached ({quota['current_count']}/{quota['limit']}).",
                "code": "limit_reached",
            }

        for _ in range(MAX_NAME_ATTEMPTS):
            instance_name = generate_instance_name(platform_name, connection_name)
            token = generate_instance_token()
            if not await self._name_taken(instance_name, token):
                break
        else:
            return {"success": False, "error": "Could not generate a unique instance name. Try again."}

        try:
            remote = await self.evolution.create_instance(instance_name, token)
        except EvolutionAPIError as e:
            logger.error(f"Instance creation failed for {instance_name}: {e.message}")
            return {"success": False, "error": e.message}

        instance = remote.get("instance") if isinstance(remote, dict) else None
        try:
            connection = await self.gateway.insert(CONNECTIONS, {
                "user_id": user_id,
                "connection_name": connection_name,
                "instance_name": instance_name,
                "instance_id": (instance or {}).get("instanceId"),
                "instance_token": token,
                "status": ConnectionStatus.DISCONNECTED,
                "created_at": _now_iso(),
                "updated_at": _now_iso(),
            })
        except DataAccessError as e:
            logger.error(f"Failed to save connection {instance_name}, removing remote instance: {e}")
            try:
                await self.evolution.delete_instance(instance_name)
            except EvolutionAPIError as inner_e:
                logger.error(f"Compensation failed, instance {instance_name} is orphaned: {inner_e.message}")
            return {"success": False, "error": "Failed to save the connection."}

        logger.info(f"Created connection {instance_name} for user {user_id}")
        return {"success": True, "connection": connection, "evolution_response": remote}

    async def get_qr_code(self, instance_name: str) -> Dict[str, Any]:
        try:
            qr_code = await self.evolution.get_qr_code(instance_name)
        except EvolutionAPIError as e:
            return {"success": False, "error": e.message}
        if not qr_code:
            return {"success": False, "error": "The gateway returned no QR code."}
        return {"success": True, "qr_code": qr_code}

    async def get_instance_details(self, instance_name: str) -> Dict[str, Any]:
        try:
            details = await self.evolution.fetch_instance(instance_name)
        except EvolutionAPIError as e:
            return {"success": False, "error": e.message}
        if not details:
            return {"success": False, "error": "Instance not found"}
        return {"success": True, "data": details}

    async def disconnect(self, instance_name: str) -> Dict[str, Any]:
        """Log the instance out (best effort) and mark it disconnected locally."""
        try:
            await self.evolution.logout_instance(instance_name)
            logger.info(f"Instance {instance_name} logged out")
        except EvolutionAPIError as e:
            logger.warning(f"Logout failed for {instance_name}, updating local record anyway: {e.message}")

        try:
            await self.gateway.update(
                CONNECTIONS,
                {"instance_name": instance_name},
                {"status": ConnectionStatus.DISCONNECTED, "updated_at": _now_iso()},
            )
        except DataAccessError as e:
            logger.error(f"Failed to mark {instance_name} disconnected: {e}")
            return {"success": False, "error": "Failed to disconnect"}
        return {"success": True}

    async def delete_connection(self, connection: Dict) -> Dict[str, Any]:
        """Delete the gateway instance, then the local record."""
        instance_name = connection.get("instance_name")
        if instance_name:
            try:
                await self.evolution.delete_instance(instance_name)
            except EvolutionAPIError as e:
                logger.warning(f"Remote delete failed for {instance_name}: {e.message}")

        try:
            await self.gateway.delete(CONNECTIONS, {"id": connection["id"]})
        except DataAccessError as e:
            logger.error(f"Failed to delete connection {connection['id']}: {e}")
            return {"success": False, "error": "Failed to delete the connection."}
        return {"success": True}

    async def transfer_connection(self, connection_id: str, new_user_id: str) -> Dict[str, Any]:
        """Move a connection to another user (admin action)."""
        user = await self.gateway.get_one(USERS, {"id": new_user_id}, columns="id")
        if not user:
            return {"success": False, "error": "Target user not found"}

        rows = await self.gateway.update(
            CONNECTIONS, {"id": connection_id}, {"user_id": new_user_id, "updated_at": _now_iso()}
        )
        if not rows:
            return {"success": False, "error": "Connection not found"}
        logger.info(f"Connection {connection_id} transferred to user {new_user_id}")
        return {"success": True, "connection": rows[0]}

    async def get_instance_settings(self, instance_name: str) -> Dict[str, Any]:
        connection = await self.gateway.get_one(CONNECTIONS, {"instance_name": instance_name})
        if not connection:
            return {"success": False, "error": "Instance not found", "settings": None}
        return {
            "success": True,
            "settings": {**DEFAULT_INSTANCE_SETTINGS, **(connection.get("settings") or {})},
        }

    async def save_instance_settings(self, instance_name: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        try:
            rows = await self.gateway.update(
                CONNECTIONS,
                {"instance_name": instance_name},
                {"settings": settings, "updated_at": _now_iso()},
            )
        except DataAccessError as e:
            logger.error(f"Failed to save settings for {instance_name}: {e}")
            return {"success": False, "error": "Failed to save settings"}
        if not rows:
            return {"success": False, "error": "Instance not found"}
        return {"success": True}
