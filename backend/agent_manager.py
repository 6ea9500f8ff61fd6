"""
AI agent records (ai_agents) and the Evolution API bots that front them.

Each agent owns one evolutionBot on its connection's instance. The bot forwards
matching messages to the automation flow (n8n integration) tagged with the
agent id. A "default" agent becomes the instance's fallback bot.

Write order is local first, remote second. When the remote step of a create
fails, the local row is deleted again.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from config import PUBLIC_BASE_URL
from data_gateway import DataGateway, DataAccessError, AGENTS, CONNECTIONS, INTEGRATIONS
from evolution_api import EvolutionAPI, EvolutionAPIError
from settings_store import SettingsStore, check_user_can_create

logger = logging.getLogger(__name__)

# Columns a caller may set on an agent
AGENT_FIELDS = (
    "name", "description", "whatsapp_connection_id", "status", "is_default",
    "model", "temperature", "system_prompt", "tone", "main_function",
    "model_config", "voice_response_enabled", "transcribe_audio",
    "understand_images", "calendar_integration", "vector_store_enabled",
)


class AgentError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k in AGENT_FIELDS}


def build_webhook_url(flow_url: str, agent_id: str) -> str:
    separator = "&" if "?" in flow_url else "?"
    return f"{flow_url}{separator}bot_token=AGENT_{agent_id}"


def build_bot_payload(agent: Dict[str, Any], flow_url: str, flow_api_key: str) -> Dict[str, Any]:
    """evolutionBot body for an agent."""
    mc = agent.get("model_config") or {}
    is_default = bool(agent.get("is_default"))
    return {
        "enabled": agent.get("status", "active") == "active",
        "description": agent.get("name", ""),
        "apiUrl": build_webhook_url(flow_url, agent["id"]),
        "apiKey": flow_api_key or "",
        "triggerType": "all" if is_default else "keyword",
        "triggerOperator": "equals",
        "triggerValue": "" if is_default else mc.get("activation_keyword", ""),
        "expire": mc.get("expire_message_bot", 0),
        "keywordFinish": mc.get("keyword_finish", "#exit"),
        "delayMessage": mc.get("delay_message", 1000),
        "unknownMessage": mc.get("unknown_message", "Sorry, I didn't understand."),
        "listeningFromMe": mc.get("listening_from_me", False),
        "stopBotFromMe": mc.get("stop_bot_from_me", True),
        "keepOpen": mc.get("keep_open", False),
        "debounceTime": mc.get("debounce_time", 10),
        "ignoreJids": mc.get("ignore_jids", []),
        "splitMessages": mc.get("split_messages", True),
        "timePerChar": mc.get("time_per_char", 100),
    }


def build_fallback_settings(agent: Dict[str, Any], bot_id: str) -> Dict[str, Any]:
    """Instance-wide bot settings that make `bot_id` the fallback."""
    mc = agent.get("model_config") or {}
    return {
        "botIdFallback": bot_id,
        "expire": mc.get("expire_message_bot", 20),
        "keywordFinish": mc.get("keyword_finish", "#EXIT"),
        "delayMessage": mc.get("delay_message", 1000),
        "unknownMessage": mc.get("unknown_message", "Message not recognised"),
        "listeningFromMe": mc.get("listening_from_me", False),
        "stopBotFromMe": mc.get("stop_bot_from_me", False),
        "keepOpen": mc.get("keep_open", False),
        "splitMessages": mc.get("split_messages", True),
        "timePerChar": mc.get("time_per_char", 50),
        "debounceTime": mc.get("debounce_time", 5),
        "ignoreJids": mc.get("ignore_jids", ["@g.us"]),
    }


class AgentManager:
    """Agent CRUD with the matching gateway bot kept in step."""

    def __init__(self, gateway: DataGateway, evolution: EvolutionAPI, settings: SettingsStore):
        self.gateway = gateway
        self.evolution = evolution
        self.settings = settings

    async def list_agents(self, user_id: str, is_admin: bool) -> List[Dict]:
        filters = {} if is_admin else {"user_id": user_id}
        return await self.gateway.get(AGENTS, filters, order="created_at", desc=True)

    async def get_agent(self, agent_id: str, user_id: str, is_admin: bool) -> Optional[Dict]:
        filters = {"id": agent_id}
        if not is_admin:
            filters["user_id"] = user_id
        return await self.gateway.get_one(AGENTS, filters)

    async def _flow_config(self) -> Tuple[str, str]:
        """Webhook target for bots: the n8n flow if configured, else our own endpoint."""
        row = await self.gateway.get_one(INTEGRATIONS, {"type": "n8n", "is_active": True}, columns="config")
        config = (row or {}).get("config") or {}
        if config.get("flowUrl"):
            return config["flowUrl"], config.get("apiKey", "")
        if PUBLIC_BASE_URL:
            return f"{PUBLIC_BASE_URL}/api/agents/webhook", ""
        raise AgentError("No automation flow is configured for agents.")

    async def _instance_name(self, connection_id: str, owner_id: str, is_admin: bool) -> str:
        filters = {"id": connection_id}
        if not is_admin:
            filters["user_id"] = owner_id
        connection = await self.gateway.get_one(CONNECTIONS, filters, columns="instance_name")
        if not connection or not connection.get("instance_name"):
            raise AgentError("WhatsApp connection not found.", status_code=404)
        return connection["instance_name"]

    async def create_agent(self, user_id: str, data: Dict[str, Any], is_admin: bool = False) -> Dict[str, Any]:
        quota = await check_user_can_create(self.gateway, self.settings, user_id, "agent")
        if not quota["can_create"]:
            raise AgentError(
                f"Agent limit reached ({quota['current_count']}/{quota['limit']}).", status_code=403
            )

        fields = _clean(data)
        if not fields.get("name"):
            raise AgentError("Agent name is required.")
        if not fields.get("whatsapp_connection_id"):
            raise AgentError("A WhatsApp connection is required.")

        instance_name = await self._instance_name(fields["whatsapp_connection_id"], user_id, is_admin)
        flow_url, flow_api_key = await self._flow_config()

        agent = await self.gateway.insert(AGENTS, {
            **fields,
            "user_id": user_id,
            "status": fields.get("status", "active"),
            "is_default": bool(fields.get("is_default")),
            "created_at": _now_iso(),
            "updated_at": _now_iso(),
        })

        try:
            bot_id = await self.evolution.create_bot(
                instance_name, build_bot_payload(agent, flow_url, flow_api_key)
            )
        except EvolutionAPIError as e:
            logger.error(f"Bot creation failed for agent {agent['id']}, rolling back: {e.message}")
            try:
                await self.gateway.delete(AGENTS, {"id": agent["id"]})
            except DataAccessError as inner_e:
                logger.error(f"Rollback failed, agent {agent['id']} has no bot: {inner_e}")
            raise AgentError(e.message, status_code=502)

        warnings = []
        try:
            await self.gateway.update(AGENTS, {"id": agent["id"]}, {"evolution_bot_id": bot_id})
        except DataAccessError as e:
            logger.error(f"Failed to save bot id {bot_id} on agent {agent['id']}: {e}")
            warnings.append("Bot created but its id could not be saved.")
        agent["evolution_bot_id"] = bot_id

        if agent["is_default"]:
            warnings.extend(await self._make_default(agent, instance_name, bot_id))

        logger.info(f"Agent {agent['id']} created with bot {bot_id} on {instance_name}")
        return {"success": True, "agent": agent, "warnings": warnings}

    async def update_agent(self, agent: Dict[str, Any], data: Dict[str, Any], is_admin: bool = False) -> Dict[str, Any]:
        fields = _clean(data)
        old_connection_id = agent.get("whatsapp_connection_id")
        was_default = bool(agent.get("is_default"))
        bot_id = agent.get("evolution_bot_id")

        if "whatsapp_connection_id" in fields and not fields["whatsapp_connection_id"]:
            raise AgentError("A WhatsApp connection is required.")

        # Target connection and flow must resolve before anything is written
        new_connection_id = fields.get("whatsapp_connection_id", old_connection_id)
        instance_name = await self._instance_name(new_connection_id, agent["user_id"], is_admin)
        flow_url, flow_api_key = await self._flow_config()

        rows = await self.gateway.update(AGENTS, {"id": agent["id"]}, {**fields, "updated_at": _now_iso()})
        updated = rows[0] if rows else {**agent, **fields}

        warnings = []
        payload = build_bot_payload(updated, flow_url, flow_api_key)

        try:
            if bot_id and updated["whatsapp_connection_id"] != old_connection_id:
                # Bot moves with the agent to the new instance
                old_instance = await self._instance_name(old_connection_id, agent["user_id"], True)
                await self._delete_bot_quietly(old_instance, bot_id)
                bot_id = None
            if bot_id:
                await self.evolution.update_bot(instance_name, bot_id, payload)
            else:
                bot_id = await self.evolution.create_bot(instance_name, payload)
                await self.gateway.update(AGENTS, {"id": agent["id"]}, {"evolution_bot_id": bot_id})
                updated["evolution_bot_id"] = bot_id
        except (EvolutionAPIError, AgentError) as e:
            message = getattr(e, "message", str(e))
            logger.warning(f"Bot sync failed for agent {agent['id']}: {message}")
            warnings.append(f"Agent saved but the gateway bot was not updated: {message}")
            return {"success": True, "agent": updated, "warnings": warnings}

        if updated.get("is_default"):
            warnings.extend(await self._make_default(updated, instance_name, bot_id))
        elif was_default:
            warnings.extend(await self._clear_fallback(instance_name, bot_id))

        return {"success": True, "agent": updated, "warnings": warnings}

    async def delete_agent(self, agent: Dict[str, Any]) -> Dict[str, Any]:
        bot_id = agent.get("evolution_bot_id")
        if bot_id and agent.get("whatsapp_connection_id"):
            try:
                instance_name = await self._instance_name(agent["whatsapp_connection_id"], agent["user_id"], True)
                await self._delete_bot_quietly(instance_name, bot_id)
            except AgentError:
                logger.warning(f"Connection for agent {agent['id']} is gone, skipping bot delete")

        await self.gateway.delete(AGENTS, {"id": agent["id"]})
        logger.info(f"Agent {agent['id']} deleted")
        return {"success": True}

    async def _delete_bot_quietly(self, instance_name: str, bot_id: str) -> None:
        try:
            await self.evolution.delete_bot(instance_name, bot_id)
        except EvolutionAPIError as e:
            logger.warning(f"Failed to delete bot {bot_id} on {instance_name}: {e.message}")

    async def _make_default(self, agent: Dict[str, Any], instance_name: str, bot_id: str) -> List[str]:
        """Make this agent the only default on its connection and the instance fallback."""
        warnings = []
        try:
            others = await self.gateway.get(
                AGENTS,
                {"whatsapp_connection_id": agent["whatsapp_connection_id"], "is_default": True},
                columns="id",
            )
            for other in others:
                if other["id"] != agent["id"]:
                    await self.gateway.update(AGENTS, {"id": other["id"]}, {"is_default": False})
        except DataAccessError as e:
            logger.error(f"Failed to clear other default agents: {e}")
            warnings.append("Other agents on this connection may still be marked default.")

        try:
            await self.evolution.set_bot_settings(instance_name, build_fallback_settings(agent, bot_id))
        except EvolutionAPIError as e:
            logger.error(f"Failed to set fallback bot on {instance_name}: {e.message}")
            warnings.append(f"Could not set the fallback bot: {e.message}")
        return warnings

    async def _clear_fallback(self, instance_name: str, bot_id: str) -> List[str]:
        try:
            current = await self.evolution.fetch_bot_settings(instance_name)
            if isinstance(current, dict) and current.get("botIdFallback") == bot_id:
                await self.evolution.set_bot_settings(instance_name, {**current, "botIdFallback": None})
        except EvolutionAPIError as e:
            logger.warning(f"Failed to clear fallback bot on {instance_name}: {e.message}")
            return [f"Could not clear the fallback bot: {e.message}"]
        return []
