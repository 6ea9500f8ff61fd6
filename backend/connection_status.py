"""
Canonical status values for whatsapp_connections.status column.

Import these everywhere status strings are written or compared.
Using plain class constants (not Python Enum) so the values serialize to bare strings
naturally for Supabase updates without .value unwrapping.

The gateway reports its own vocabulary ("open" / "connecting" / "close").
Only three of our values can come out of a gateway state; ERROR is written
by the hard-fail sync policy.
"""

from typing import Any, Optional, Tuple


class ConnectionStatus:
    CONNECTED = "connected"        # gateway state "open"
    CONNECTING = "connecting"      # gateway state "connecting" (QR shown, not scanned yet)
    DISCONNECTED = "disconnected"  # "close" or anything unrecognised
    ERROR = "error"                # gateway unreachable under the hard-fail policy

    ALL = frozenset({CONNECTED, CONNECTING, DISCONNECTED, ERROR})

    @classmethod
    def is_valid(cls, value: str) -> bool:
        return value in cls.ALL


class ProviderState:
    OPEN = "open"
    CONNECTING = "connecting"
    CLOSE = "close"


_PROVIDER_STATE_MAP = {
    ProviderState.OPEN: ConnectionStatus.CONNECTED,
    ProviderState.CONNECTING: ConnectionStatus.CONNECTING,
}


def map_provider_state(state: Any) -> str:
    """Map a gateway state string to a ConnectionStatus value."""
    if not isinstance(state, str):
        return ConnectionStatus.DISCONNECTED
    return _PROVIDER_STATE_MAP.get(state, ConnectionStatus.DISCONNECTED)


def extract_provider_state(body: Any) -> Tuple[str, Optional[str]]:
    """Pull (state, phone) out of a connectionState response.

    Expected shape: {"instance": {"instanceName": "...", "state": "open", "wuid": "..."}}
    Anything else reads as a closed instance with no phone.
    """
    instance = body.get("instance") if isinstance(body, dict) else None
    if not isinstance(instance, dict):
        return ProviderState.CLOSE, None

    state = instance.get("state")
    if not isinstance(state, str) or not state:
        state = ProviderState.CLOSE
    phone = instance.get("wuid") or instance.get("number") or None
    return state, phone
