"""Per-user API keys for external integrations (n8n flows, scripts)."""
import secrets
import logging
from datetime import datetime, timezone
from typing import Optional

from data_gateway import DataGateway, DataAccessError, AGENTS, API_KEYS, CONNECTIONS, USERS

logger = logging.getLogger(__name__)

USER_KEY_PREFIX = "impa"
ADMIN_KEY_PREFIX = "impa_admin"

LIST_COLUMNS = "id, api_key, name, description, created_at, last_used_at, is_active, is_admin_key, access_scope"


class APIKeyError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def generate_api_key(is_admin_key: bool = False) -> str:
    """"impa_<32 hex>" or "impa_admin_<32 hex>"."""
    prefix = ADMIN_KEY_PREFIX if is_admin_key else USER_KEY_PREFIX
    return f"{prefix}_{secrets.token_hex(16)}"


async def list_api_keys(gateway: DataGateway, user_id: str) -> list:
    return await gateway.get(API_KEYS, {"user_id": user_id}, columns=LIST_COLUMNS, order="created_at", desc=True)


async def create_api_key(
    gateway: DataGateway,
    user_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_admin_key: bool = False,
) -> dict:
    user = await gateway.get_one(USERS, {"id": user_id}, columns="id, role")
    if not user:
        raise APIKeyError("User not found.", status_code=404)
    if is_admin_key and user.get("role") != "admin":
        raise APIKeyError("Only administrators can create admin API keys.", status_code=403)

    now = datetime.now(timezone.utc).isoformat()
    api_key = generate_api_key(is_admin_key)
    record = await gateway.insert(API_KEYS, {
        "user_id": user_id,
        "api_key": api_key,
        "name": name or ("Admin API key" if is_admin_key else "Integration API key"),
        "description": description or (
            "Global access to every agent" if is_admin_key else "Access for external systems"
        ),
        "permissions": ["read", "write", "admin"] if is_admin_key else ["read"],
        "rate_limit": 1000 if is_admin_key else 100,
        "is_active": True,
        "is_admin_key": is_admin_key,
        "access_scope": "admin" if is_admin_key else "user",
        "created_at": now,
        "updated_at": now,
    })

    # Older integrations read the key straight off the profile
    try:
        await gateway.update(USERS, {"id": user_id}, {"api_key": api_key})
    except DataAccessError as e:
        logger.warning(f"Failed to copy API key onto profile {user_id}: {e}")

    logger.info(f"API key {record.get('id')} created for user {user_id} (scope={record.get('access_scope')})")
    return {k: record.get(k) for k in (
        "id", "api_key", "name", "description", "created_at", "is_active", "is_admin_key", "access_scope"
    )}


async def revoke_api_key(gateway: DataGateway, key_id: str, user_id: str) -> None:
    """Delete a key; only the owner's keys match."""
    await gateway.delete(API_KEYS, {"id": key_id, "user_id": user_id})
    logger.info(f"API key {key_id} revoked for user {user_id}")


# ============ External access (apikey header) ============

KEY_COLUMNS = "id, user_id, is_admin_key, access_scope, permissions, is_active"

PUBLIC_AGENT_FIELDS = (
    "id", "name", "description", "status", "main_function", "tone", "is_default",
    "created_at", "updated_at",
)
DETAIL_AGENT_FIELDS = PUBLIC_AGENT_FIELDS + (
    "model", "temperature", "system_prompt", "model_config", "transcribe_audio",
    "understand_images", "voice_response_enabled", "calendar_integration", "vector_store_enabled",
)


def has_global_access(key: dict) -> bool:
    """Only an admin key with admin scope sees every user's agents."""
    return bool(key.get("is_admin_key")) and key.get("access_scope") == "admin"


async def resolve_api_key(gateway: DataGateway, api_key: Optional[str]) -> Optional[dict]:
    """The active key row for `api_key` with its owner's profile under "owner", or None."""
    if not api_key:
        return None
    key = await gateway.get_one(API_KEYS, {"api_key": api_key, "is_active": True}, columns=KEY_COLUMNS)
    if not key:
        return None
    key["owner"] = await gateway.get_one(USERS, {"id": key["user_id"]}, columns="id, full_name, email, role") or {}
    return key


async def touch_api_key(gateway: DataGateway, key_id: str) -> None:
    try:
        await gateway.update(API_KEYS, {"id": key_id}, {"last_used_at": datetime.now(timezone.utc).isoformat()})
    except DataAccessError as e:
        logger.warning(f"Failed to record use of API key {key_id}: {e}")


async def _decorate(gateway: DataGateway, agents: list, key: dict, fields: tuple) -> list:
    connection_ids = {a["whatsapp_connection_id"] for a in agents if a.get("whatsapp_connection_id")}
    connections = {}
    if connection_ids:
        rows = await gateway.get(
            CONNECTIONS, {"id": list(connection_ids)}, columns="id, connection_name, instance_name, status"
        )
        connections = {row["id"]: row for row in rows}

    owners = {}
    if key.get("is_admin_key") and agents:
        rows = await gateway.get(USERS, {"id": list({a["user_id"] for a in agents})}, columns="id, full_name, email")
        owners = {row["id"]: row for row in rows}

    result = []
    for agent in agents:
        item = {k: agent.get(k) for k in fields}
        item["whatsapp_connection"] = connections.get(agent.get("whatsapp_connection_id"))
        if key.get("is_admin_key"):
            owner = owners.get(agent["user_id"]) or {}
            item["owner"] = {"id": owner.get("id"), "name": owner.get("full_name"), "email": owner.get("email")}
        result.append(item)
    return result


def _access_info(key: dict) -> dict:
    return {
        "is_admin_access": bool(key.get("is_admin_key")),
        "access_scope": key.get("access_scope"),
        "can_access_all_bots": has_global_access(key),
    }


async def list_agents_for_key(gateway: DataGateway, key: dict) -> dict:
    filters = {} if has_global_access(key) else {"user_id": key["user_id"]}
    agents = await gateway.get(AGENTS, filters, order="created_at", desc=True)
    items = await _decorate(gateway, agents, key, PUBLIC_AGENT_FIELDS)
    await touch_api_key(gateway, key["id"])

    owner = key.get("owner") or {}
    return {
        "user": {"id": owner.get("id"), "name": owner.get("full_name"),
                 "email": owner.get("email"), "role": owner.get("role")},
        "agents": items,
        "total": len(items),
        "access_info": _access_info(key),
    }


async def get_agent_for_key(gateway: DataGateway, key: dict, agent_id: str) -> Optional[dict]:
    filters = {"id": agent_id}
    if not has_global_access(key):
        filters["user_id"] = key["user_id"]
    agent = await gateway.get_one(AGENTS, filters)
    if not agent:
        return None
    item, = await _decorate(gateway, [agent], key, DETAIL_AGENT_FIELDS)
    await touch_api_key(gateway, key["id"])
    return {"agent": item, "access_info": _access_info(key)}
