"""
Agents and their gateway bots: create with rollback, default/fallback handling,
update and delete.
"""

import pytest
import sys
import os
from unittest.mock import MagicMock, AsyncMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import InMemoryGateway
from data_gateway import AGENTS, CONNECTIONS, INTEGRATIONS
from evolution_api import EvolutionAPIError
from settings_store import SettingsStore
from agent_manager import (
    AgentError, AgentManager, build_bot_payload, build_fallback_settings, build_webhook_url,
)

FLOW_URL = "https://n8n.example.com/webhook/agent"


def _gateway(agents=None):
    return InMemoryGateway({
        CONNECTIONS: [
            {"id": "c1", "user_id": "u1", "instance_name": "inst_one"},
            {"id": "c2", "user_id": "u1", "instance_name": "inst_two"},
            {"id": "c9", "user_id": "u2", "instance_name": "inst_other"},
        ],
        INTEGRATIONS: [{"id": "n1", "type": "n8n", "is_active": True, "config": {"flowUrl": FLOW_URL, "apiKey": "n8n-key"}}],
        AGENTS: agents or [],
    })


def _evolution():
    evolution = MagicMock()
    evolution.create_bot = AsyncMock(return_value="bot-1")
    evolution.update_bot = AsyncMock(return_value={})
    evolution.delete_bot = AsyncMock(return_value={})
    evolution.set_bot_settings = AsyncMock(return_value={})
    evolution.fetch_bot_settings = AsyncMock(return_value={})
    return evolution


def _manager(gateway, evolution=None):
    return AgentManager(gateway, evolution or _evolution(), SettingsStore(gateway))


class TestPayloads:

    def test_webhook_url(self):
        assert build_webhook_url("https://x/flow", "a1") == "https://x/flow?bot_token=AGENT_a1"
        assert build_webhook_url("https://x/flow?v=2", "a1") == "https://x/flow?v=2&bot_token=AGENT_a1"

    def test_keyword_bot(self):
        agent = {"id": "a1", "name": "Sales", "status": "active", "is_default": False,
                 "model_config": {"activation_keyword": "buy"}}
        payload = build_bot_payload(agent, FLOW_URL, "k")
        assert payload["enabled"] is True
        assert payload["description"] == "Sales"
        assert payload["triggerType"] == "keyword"
        assert payload["triggerValue"] == "buy"
        assert payload["apiUrl"] == f"{FLOW_URL}?bot_token=AGENT_a1"
        assert payload["apiKey"] == "k"

    def test_default_bot_triggers_on_everything(self):
        agent = {"id": "a1", "name": "Main", "status": "inactive", "is_default": True}
        payload = build_bot_payload(agent, FLOW_URL, "")
        assert payload["enabled"] is False
        assert payload["triggerType"] == "all"

    def test_explicit_false_is_kept(self):
        agent = {"id": "a1", "name": "x", "model_config": {"stop_bot_from_me": False}}
        assert build_bot_payload(agent, FLOW_URL, "")["stopBotFromMe"] is False

    def test_fallback_settings(self):
        settings = build_fallback_settings({"model_config": {}}, "bot-1")
        assert settings["botIdFallback"] == "bot-1"
        assert settings["ignoreJids"] == ["@g.us"]


class TestCreateAgent:

    @pytest.mark.asyncio
    async def test_creates_local_then_bot(self):
        gateway = _gateway()
        evolution = _evolution()

        result = await _manager(gateway, evolution).create_agent(
            "u1", {"name": "Sales", "whatsapp_connection_id": "c1", "user_id": "hacker"}
        )

        assert result["success"] is True
        stored = gateway.rows(AGENTS)[0]
        assert stored["user_id"] == "u1"
        assert stored["evolution_bot_id"] == "bot-1"
        instance, payload = evolution.create_bot.await_args.args
        assert instance == "inst_one"
        assert payload["apiUrl"].endswith(f"bot_token=AGENT_{stored['id']}")
        evolution.set_bot_settings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bot_failure_rolls_back_local_record(self):
        gateway = _gateway()
        evolution = _evolution()
        evolution.create_bot.side_effect = EvolutionAPIError("Evolution API error 400: bad bot")

        with pytest.raises(AgentError) as exc:
            await _manager(gateway, evolution).create_agent("u1", {"name": "Sales", "whatsapp_connection_id": "c1"})

        assert exc.value.status_code == 502
        assert gateway.rows(AGENTS) == []

    @pytest.mark.asyncio
    async def test_limit_reached(self):
        agents = [{"id": f"a{i}", "user_id": "u1"} for i in range(5)]
        gateway = _gateway(agents)
        evolution = _evolution()

        with pytest.raises(AgentError) as exc:
            await _manager(gateway, evolution).create_agent("u1", {"name": "x", "whatsapp_connection_id": "c1"})

        assert exc.value.status_code == 403
        evolution.create_bot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_connection_is_rejected(self):
        gateway = _gateway()
        with pytest.raises(AgentError) as exc:
            await _manager(gateway).create_agent("u1", {"name": "x", "whatsapp_connection_id": "c9"})
        assert exc.value.status_code == 404
        assert gateway.rows(AGENTS) == []

    @pytest.mark.asyncio
    async def test_missing_name(self):
        with pytest.raises(AgentError):
            await _manager(_gateway()).create_agent("u1", {"whatsapp_connection_id": "c1"})

    @pytest.mark.asyncio
    async def test_default_agent_becomes_fallback_and_clears_others(self):
        gateway = _gateway([{"id": "old", "user_id": "u1", "whatsapp_connection_id": "c1", "is_default": True}])
        evolution = _evolution()

        result = await _manager(gateway, evolution).create_agent(
            "u1", {"name": "Main", "whatsapp_connection_id": "c1", "is_default": True}
        )

        assert result["warnings"] == []
        old = next(a for a in gateway.rows(AGENTS) if a["id"] == "old")
        assert old["is_default"] is False
        instance, settings = evolution.set_bot_settings.await_args.args
        assert instance == "inst_one"
        assert settings["botIdFallback"] == "bot-1"

    @pytest.mark.asyncio
    async def test_fallback_failure_is_a_warning(self):
        gateway = _gateway()
        evolution = _evolution()
        evolution.set_bot_settings.side_effect = EvolutionAPIError("down", kind="transport")

        result = await _manager(gateway, evolution).create_agent(
            "u1", {"name": "Main", "whatsapp_connection_id": "c1", "is_default": True}
        )

        assert result["success"] is True
        assert len(result["warnings"]) == 1


class TestUpdateAndDelete:

    def _agent(self, **overrides):
        agent = {"id": "a1", "user_id": "u1", "name": "Sales", "status": "active",
                 "whatsapp_connection_id": "c1", "is_default": False, "evolution_bot_id": "bot-1"}
        agent.update(overrides)
        return agent

    @pytest.mark.asyncio
    async def test_update_pushes_bot(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()

        result = await _manager(gateway, evolution).update_agent(agent, {"name": "Sales v2"})

        assert result["agent"]["name"] == "Sales v2"
        instance, bot_id, payload = evolution.update_bot.await_args.args
        assert (instance, bot_id) == ("inst_one", "bot-1")
        assert payload["description"] == "Sales v2"

    @pytest.mark.asyncio
    async def test_remote_update_failure_keeps_local_change(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()
        evolution.update_bot.side_effect = EvolutionAPIError("down", kind="transport")

        result = await _manager(gateway, evolution).update_agent(agent, {"name": "Renamed"})

        assert result["success"] is True
        assert result["warnings"]
        assert gateway.rows(AGENTS)[0]["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_moving_connection_recreates_bot(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()
        evolution.create_bot.return_value = "bot-2"

        result = await _manager(gateway, evolution).update_agent(agent, {"whatsapp_connection_id": "c2"})

        evolution.delete_bot.assert_awaited_once_with("inst_one", "bot-1")
        assert evolution.create_bot.await_args.args[0] == "inst_two"
        assert result["agent"]["evolution_bot_id"] == "bot-2"
        assert gateway.rows(AGENTS)[0]["evolution_bot_id"] == "bot-2"

    @pytest.mark.asyncio
    async def test_update_to_foreign_connection_writes_nothing(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()

        with pytest.raises(AgentError) as exc:
            await _manager(gateway, evolution).update_agent(agent, {"whatsapp_connection_id": "c9"})

        assert exc.value.status_code == 404
        assert gateway.rows(AGENTS)[0]["whatsapp_connection_id"] == "c1"
        assert gateway.writes(AGENTS) == []
        evolution.delete_bot.assert_not_awaited()
        evolution.create_bot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_without_flow_writes_nothing(self, monkeypatch):
        monkeypatch.setattr("agent_manager.PUBLIC_BASE_URL", "")
        agent = self._agent()
        gateway = _gateway([agent])
        gateway.tables[INTEGRATIONS] = []
        evolution = _evolution()

        with pytest.raises(AgentError):
            await _manager(gateway, evolution).update_agent(agent, {"name": "Renamed"})

        assert gateway.rows(AGENTS)[0]["name"] == "Sales"
        assert gateway.writes(AGENTS) == []
        evolution.update_bot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undefaulting_clears_matching_fallback(self):
        agent = self._agent(is_default=True)
        gateway = _gateway([agent])
        evolution = _evolution()
        evolution.fetch_bot_settings.return_value = {"botIdFallback": "bot-1", "expire": 20}

        await _manager(gateway, evolution).update_agent(agent, {"is_default": False})

        _, settings = evolution.set_bot_settings.await_args.args
        assert settings == {"botIdFallback": None, "expire": 20}

    @pytest.mark.asyncio
    async def test_undefaulting_leaves_other_fallback(self):
        agent = self._agent(is_default=True)
        gateway = _gateway([agent])
        evolution = _evolution()
        evolution.fetch_bot_settings.return_value = {"botIdFallback": "someone-else"}

        await _manager(gateway, evolution).update_agent(agent, {"is_default": False})

        evolution.set_bot_settings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_removes_bot_then_record(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()

        assert await _manager(gateway, evolution).delete_agent(agent) == {"success": True}

        evolution.delete_bot.assert_awaited_once_with("inst_one", "bot-1")
        assert gateway.rows(AGENTS) == []

    @pytest.mark.asyncio
    async def test_delete_survives_bot_failure(self):
        agent = self._agent()
        gateway = _gateway([agent])
        evolution = _evolution()
        evolution.delete_bot.side_effect = EvolutionAPIError("gone", status_code=404)

        await _manager(gateway, evolution).delete_agent(agent)

        assert gateway.rows(AGENTS) == []

    @pytest.mark.asyncio
    async def test_list_is_owner_scoped(self):
        gateway = _gateway([self._agent(), self._agent(id="a2", user_id="u2")])
        manager = _manager(gateway)
        assert [a["id"] for a in await manager.list_agents("u1", is_admin=False)] == ["a1"]
        assert len(await manager.list_agents("admin", is_admin=True)) == 2
        assert await manager.get_agent("a2", "u1", is_admin=False) is None
