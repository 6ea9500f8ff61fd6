"""
Smoke baseline tests.
Verifies all backend modules import cleanly and key classes/functions exist.
No Supabase or Evolution API calls needed.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestModuleImports:
    def test_import_sync_engine(self):
        import sync_engine
        assert hasattr(sync_engine, "StatusSynchronizer")
        assert hasattr(sync_engine, "BulkSyncOrchestrator")
        assert hasattr(sync_engine, "sync_scope")

    def test_import_evolution_api(self):
        import evolution_api
        assert hasattr(evolution_api, "EvolutionAPI")
        assert hasattr(evolution_api, "EvolutionAPIError")

    def test_import_managers(self):
        import connection_manager
        import agent_manager
        assert hasattr(connection_manager, "ConnectionManager")
        assert hasattr(agent_manager, "AgentManager")

    def test_import_server(self):
        from server import app, api_router
        paths = {getattr(route, "path", None) for route in app.routes}
        assert "/api/health" in paths
        assert "/api/getbots" in paths
        assert "/api/whatsapp/connections/sync-all" in paths
        assert api_router.prefix == "/api"


class TestConfigDefaults:
    def test_sync_defaults(self):
        import config
        assert config.SYNC_DELAY_SECONDS == float(os.environ.get("SYNC_DELAY_SECONDS", "0.5"))
        assert config.CONNECTION_STATE_TIMEOUT == float(os.environ.get("CONNECTION_STATE_TIMEOUT", "8.0"))
        assert config.SETTINGS_CACHE_TTL == 300


class TestCryptoUtils:
    def test_mask_secret(self):
        from crypto_utils import mask_secret
        assert mask_secret("") == ""
        assert mask_secret("abc") == "***"
        assert mask_secret("super-secret-key") == "********-key"

    def test_decrypt_passes_plaintext_through(self):
        from crypto_utils import decrypt_value, encrypt_value
        assert decrypt_value(encrypt_value("value")) == "value"
        assert decrypt_value("not-encrypted") == "not-encrypted"
