"""
WhatsApp connection lifecycle: create (with quota and compensation), disconnect,
delete, transfer and instance settings.
"""

import re
import pytest
import sys
import os
from unittest.mock import MagicMock, AsyncMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import InMemoryGateway
from data_gateway import CONNECTIONS, SYSTEM_SETTINGS, USER_SETTINGS, USERS
from evolution_api import EvolutionAPIError
from settings_store import SettingsStore
import connection_manager
from connection_manager import (
    DEFAULT_INSTANCE_SETTINGS, ConnectionManager, generate_instance_name,
    generate_instance_token, list_connections,
)


def _evolution():
    evolution = MagicMock()
    evolution.create_instance = AsyncMock(return_value={"instance": {"instanceName": "x", "instanceId": "iid-1"}})
    evolution.delete_instance = AsyncMock(return_value={})
    evolution.logout_instance = AsyncMock(return_value={})
    evolution.get_qr_code = AsyncMock(return_value="data:image/png;base64,AAA")
    evolution.fetch_instance = AsyncMock(return_value={"name": "inst", "connectionStatus": "open"})
    return evolution


def _manager(gateway, evolution=None):
    return ConnectionManager(gateway, evolution or _evolution(), SettingsStore(gateway))


class TestNaming:

    def test_instance_name_shape(self):
        name = generate_instance_name("Impa AI", "Sales Team!")
        assert re.fullmatch(r"impaai_salesteam_\d{4,5}", name)
        suffix = int(name.rsplit("_", 1)[1])
        assert 1000 <= suffix <= 10998

    def test_empty_platform_uses_default(self):
        assert generate_instance_name("", "x").startswith("impaai_x_")

    def test_token_is_uppercase_uuid(self):
        token = generate_instance_token()
        assert token == token.upper()
        assert len(token) == 36


class TestListConnections:

    @pytest.fixture
    def gateway(self):
        return InMemoryGateway({CONNECTIONS: [
            {"id": "c1", "user_id": "u1", "created_at": "2026-01-01"},
            {"id": "c2", "user_id": "u2", "created_at": "2026-02-01"},
            {"id": "c3", "user_id": "u1", "created_at": "2026-03-01"},
        ]})

    @pytest.mark.asyncio
    async def test_user_sees_own_newest_first(self, gateway):
        rows = await list_connections(gateway, "u1", is_admin=False)
        assert [r["id"] for r in rows] == ["c3", "c1"]

    @pytest.mark.asyncio
    async def test_user_cannot_target_others(self, gateway):
        rows = await list_connections(gateway, "u1", is_admin=False, target_user_id="u2")
        assert [r["id"] for r in rows] == ["c3", "c1"]

    @pytest.mark.asyncio
    async def test_admin_sees_all(self, gateway):
        rows = await list_connections(gateway, "admin", is_admin=True)
        assert [r["id"] for r in rows] == ["c3", "c2", "c1"]

    @pytest.mark.asyncio
    async def test_admin_can_target_user(self, gateway):
        rows = await list_connections(gateway, "admin", is_admin=True, target_user_id="u2")
        assert [r["id"] for r in rows] == ["c2"]


class TestCreateConnection:

    @pytest.mark.asyncio
    async def test_creates_remote_then_local(self):
        gateway = InMemoryGateway()
        evolution = _evolution()

        result = await _manager(gateway, evolution).create_connection("u1", "Sales")

        assert result["success"] is True
        connection = result["connection"]
        assert connection["status"] == "disconnected"
        assert connection["instance_id"] == "iid-1"
        assert connection["connection_name"] == "Sales"
        evolution.create_instance.assert_awaited_once_with(connection["instance_name"], connection["instance_token"])

    @pytest.mark.asyncio
    async def test_limit_reached(self):
        gateway = InMemoryGateway({CONNECTIONS: [{"id": "c1", "user_id": "u1"}]})
        evolution = _evolution()

        result = await _manager(gateway, evolution).create_connection("u1", "Second")

        assert result["success"] is False
        assert result["code"] == "limit_reached"
        evolution.create_instance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_user_limit_overrides_system_default(self):
        gateway = InMemoryGateway({
            CONNECTIONS: [{"id": "c1", "user_id": "u1"}],
            USER_SETTINGS: [{"user_id": "u1", "whatsapp_connections_limit": 3}],
            SYSTEM_SETTINGS: [{"setting_key": "default_whatsapp_connections_limit", "setting_value": 1}],
        })
        result = await _manager(gateway).create_connection("u1", "Second")
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_retries_taken_names(self):
        gateway = InMemoryGateway({CONNECTIONS: [{"id": "c0", "user_id": "other", "instance_name": "impaai_sales_1000"}]})
        names = iter(["impaai_sales_1000", "impaai_sales_2000"])

        with patch.object(connection_manager, "generate_instance_name", side_effect=lambda p, c: next(names)):
            result = await _manager(gateway).create_connection("u1", "Sales")

        assert result["connection"]["instance_name"] == "impaai_sales_2000"

    @pytest.mark.asyncio
    async def test_gives_up_after_ten_attempts(self):
        gateway = InMemoryGateway({CONNECTIONS: [{"id": "c0", "user_id": "other", "instance_name": "taken"}]})
        evolution = _evolution()

        with patch.object(connection_manager, "generate_instance_name", return_value="taken"):
            result = await _manager(gateway, evolution).create_connection("u1", "Sales")

        assert result["success"] is False
        evolution.create_instance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_failure_writes_nothing(self):
        gateway = InMemoryGateway()
        evolution = _evolution()
        evolution.create_instance.side_effect = EvolutionAPIError("Evolution API error 401: unauthorized")

        result = await _manager(gateway, evolution).create_connection("u1", "Sales")

        assert result == {"success": False, "error": "Evolution API error 401: unauthorized"}
        assert gateway.rows(CONNECTIONS) == []

    @pytest.mark.asyncio
    async def test_local_failure_deletes_remote_instance(self):
        gateway = InMemoryGateway()
        gateway.fail_on.add(("insert", CONNECTIONS))
        evolution = _evolution()

        result = await _manager(gateway, evolution).create_connection("u1", "Sales")

        assert result["success"] is False
        name = evolution.create_instance.await_args.args[0]
        evolution.delete_instance.assert_awaited_once_with(name)


class TestConnectionOperations:

    @pytest.fixture
    def gateway(self):
        return InMemoryGateway({
            CONNECTIONS: [{"id": "c1", "user_id": "u1", "instance_name": "inst", "status": "connected",
                           "settings": {"rejectCall": True}}],
            USERS: [{"id": "u2", "email": "bob@example.com"}],
        })

    @pytest.mark.asyncio
    async def test_disconnect_updates_locally_even_if_logout_fails(self, gateway):
        evolution = _evolution()
        evolution.logout_instance.side_effect = EvolutionAPIError("already logged out")

        result = await _manager(gateway, evolution).disconnect("inst")

        assert result == {"success": True}
        assert gateway.rows(CONNECTIONS)[0]["status"] == "disconnected"

    @pytest.mark.asyncio
    async def test_delete_removes_local_even_if_remote_fails(self, gateway):
        evolution = _evolution()
        evolution.delete_instance.side_effect = EvolutionAPIError("not found", status_code=404)

        result = await _manager(gateway, evolution).delete_connection(gateway.rows(CONNECTIONS)[0])

        assert result == {"success": True}
        assert gateway.rows(CONNECTIONS) == []

    @pytest.mark.asyncio
    async def test_transfer(self, gateway):
        result = await _manager(gateway).transfer_connection("c1", "u2")
        assert result["success"] is True
        assert gateway.rows(CONNECTIONS)[0]["user_id"] == "u2"

    @pytest.mark.asyncio
    async def test_transfer_to_unknown_user(self, gateway):
        result = await _manager(gateway).transfer_connection("c1", "nobody")
        assert result["success"] is False
        assert gateway.rows(CONNECTIONS)[0]["user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_qr_code(self, gateway):
        result = await _manager(gateway).get_qr_code("inst")
        assert result == {"success": True, "qr_code": "data:image/png;base64,AAA"}

    @pytest.mark.asyncio
    async def test_qr_code_missing(self, gateway):
        evolution = _evolution()
        evolution.get_qr_code.return_value = None
        result = await _manager(gateway, evolution).get_qr_code("inst")
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_instance_details_not_found(self, gateway):
        evolution = _evolution()
        evolution.fetch_instance.return_value = None
        result = await _manager(gateway, evolution).get_instance_details("inst")
        assert result == {"success": False, "error": "Instance not found"}

    @pytest.mark.asyncio
    async def test_settings_merge_defaults(self, gateway):
        result = await _manager(gateway).get_instance_settings("inst")
        assert result["settings"] == {**DEFAULT_INSTANCE_SETTINGS, "rejectCall": True}

    @pytest.mark.asyncio
    async def test_settings_unknown_instance(self, gateway):
        result = await _manager(gateway).get_instance_settings("ghost")
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_save_settings(self, gateway):
        result = await _manager(gateway).save_instance_settings("inst", {"alwaysOnline": True})
        assert result == {"success": True}
        assert gateway.rows(CONNECTIONS)[0]["settings"] == {"alwaysOnline": True}
