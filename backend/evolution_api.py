"""
Evolution API client.
Instances (one WhatsApp session each), connection state, and the per-instance
"evolutionBot" resources that route messages to an agent.

The base URL and API key live in the `integrations` row (type=evolution_api)
and are re-read on every call, so an operator edit takes effect immediately.
No retries: a failed call surfaces as EvolutionAPIError.
"""

import httpx
import logging
import time
from typing import Optional, Dict, Any, List

from crypto_utils import decrypt_value
from data_gateway import DataGateway, DataAccessError, INTEGRATIONS

logger = logging.getLogger(__name__)

INTEGRATION_TYPE = "evolution_api"
EVOLUTION_TIMEOUT = 30.0
BAILEYS_INTEGRATION = "WHATSAPP-BAILEYS"


class EvolutionAPIError(Exception):
    """Custom exception for Evolution API errors.

    kind is one of: config, transport, timeout, http, invalid_response
    """

    def __init__(self, message: str, kind: str = "http", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code


async def load_evolution_config(gateway: DataGateway) -> Dict[str, str]:
    """Read and validate the active Evolution API integration record."""
    try:
        row = await gateway.get_one(
            INTEGRATIONS, {"type": INTEGRATION_TYPE, "is_active": True}, columns="config"
        )
    except DataAccessError as e:
        raise EvolutionAPIError(f"Could not load Evolution API configuration: {e}", kind="config")

    if not row:
        raise EvolutionAPIError(
            "Evolution API is not configured. Set it up in the administration panel.", kind="config"
        )

    config = row.get("config")
    if not isinstance(config, dict):
        raise EvolutionAPIError("Evolution API configuration is malformed.", kind="config")

    api_url = (config.get("apiUrl") or "").strip().rstrip("/")
    api_key = decrypt_value((config.get("apiKey") or "").strip())
    if not api_url:
        raise EvolutionAPIError("Evolution API URL is not configured.", kind="config")
    if not api_key:
        raise EvolutionAPIError("Evolution API key is not configured.", kind="config")

    return {"apiUrl": api_url, "apiKey": api_key}


class EvolutionAPI:
    """Client for the Evolution API, configured from storage."""

    def __init__(self, gateway: DataGateway, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.gateway = gateway
        self._transport = transport

    async def _call(
        self,
        method: str,
        path: str,
        data: dict = None,
        timeout: float = EVOLUTION_TIMEOUT,
    ) -> Any:
        """Make authenticated API call to the Evolution API."""
        config = await load_evolution_config(self.gateway)

        url = f"{config['apiUrl']}{path}"
        headers = {"apikey": config["apiKey"]}
        if data is not None:
            headers["Content-Type"] = "application/json"

        logger.debug(f"Evolution API {method} {url}")

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, json=data)
        except httpx.TimeoutException:
            raise EvolutionAPIError("Timed out waiting for the Evolution API", kind="timeout")
        except httpx.RequestError as e:
            logger.warning(f"Evolution API connection error on {method} {path}: {e}")
            raise EvolutionAPIError(
                "Could not reach the Evolution API. Check that the server is up and the URL is correct.",
                kind="transport",
            )

        if response.status_code >= 400:
            error_body = response.text[:500]
            logger.error(f"Evolution API error {response.status_code} on {method} {path}: {error_body}")
            raise EvolutionAPIError(
                f"Evolution API error {response.status_code}: {error_body}",
                kind="http",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise EvolutionAPIError("Evolution API returned a non-JSON body", kind="invalid_response")

    # ==================== Instances ====================

    async def create_instance(self, instance_name: str, token: str) -> Dict[str, Any]:
        """Create a Baileys instance. Returns the first element of the response list."""
        result = await self._call("POST", "/instance/create", {
            "instanceName": instance_name,
            "token": token,
            "integration": BAILEYS_INTEGRATION,
        })
        if isinstance(result, list):
            return result[0] if result else {}
        return result

    async def fetch_instances(self) -> List[Dict[str, Any]]:
        result = await self._call("GET", "/instance/fetchInstances")
        return result if isinstance(result, list) else [result]

    async def fetch_instance(self, instance_name: str) -> Optional[Dict[str, Any]]:
        """Details of a single instance, or None if the gateway doesn't know it."""
        for instance in await self.fetch_instances():
            if isinstance(instance, dict) and instance.get("name") == instance_name:
                return instance
        return None

    async def get_qr_code(self, instance_name: str) -> Optional[str]:
        """Base64 QR image for pairing a phone."""
        result = await self._call("GET", f"/instance/connect/{instance_name}")
        return result.get("base64") if isinstance(result, dict) else None

    async def connection_state(self, instance_name: str, timeout: float = EVOLUTION_TIMEOUT) -> Any:
        """Raw connectionState body: {"instance": {"instanceName", "state", ...}}"""
        return await self._call("GET", f"/instance/connectionState/{instance_name}", timeout=timeout)

    async def logout_instance(self, instance_name: str) -> Dict[str, Any]:
        return await self._call("DELETE", f"/instance/logout/{instance_name}")

    async def delete_instance(self, instance_name: str) -> Dict[str, Any]:
        return await self._call("DELETE", f"/instance/delete/{instance_name}")

    # ==================== Bots ====================

    async def create_bot(self, instance_name: str, bot: Dict[str, Any]) -> str:
        """Create an evolutionBot on the instance and return its id."""
        result = await self._call("POST", f"/evolutionBot/create/{instance_name}", bot)
        bot_id = result.get("id") if isinstance(result, dict) else None
        if not bot_id:
            raise EvolutionAPIError("Bot creation response has no bot id", kind="invalid_response")
        return bot_id

    async def update_bot(self, instance_name: str, bot_id: str, bot: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("PUT", f"/evolutionBot/update/{bot_id}/{instance_name}", bot)

    async def delete_bot(self, instance_name: str, bot_id: str) -> Dict[str, Any]:
        return await self._call("DELETE", f"/evolutionBot/delete/{bot_id}/{instance_name}")

    async def fetch_bot(self, instance_name: str, bot_id: str) -> Dict[str, Any]:
        return await self._call("GET", f"/evolutionBot/fetch/{bot_id}/{instance_name}")

    async def fetch_bot_settings(self, instance_name: str) -> Dict[str, Any]:
        return await self._call("GET", f"/evolutionBot/fetchSettings/{instance_name}")

    async def set_bot_settings(self, instance_name: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Instance-wide bot settings; `botIdFallback` selects the default bot."""
        return await self._call("POST", f"/evolutionBot/settings/{instance_name}", settings)

    # ==================== Diagnostics ====================

    async def diagnose(self) -> Dict[str, Any]:
        """Check configuration and reachability for the admin diagnostics page."""
        report = {
            "config": {"ok": False, "message": ""},
            "connectivity": {"ok": False, "message": "", "latency_ms": None, "instances": None},
        }
        try:
            config = await load_evolution_config(self.gateway)
        except EvolutionAPIError as e:
            report["config"]["message"] = e.message
            return report
        report["config"] = {"ok": True, "message": f"Configured for {config['apiUrl']}"}

        started = time.monotonic()
        try:
            instances = await self.fetch_instances()
        except EvolutionAPIError as e:
            report["connectivity"]["message"] = e.message
            return report

        report["connectivity"] = {
            "ok": True,
            "message": "Evolution API reachable",
            "latency_ms": round((time.monotonic() - started) * 1000),
            "instances": len(instances),
        }
        return report
