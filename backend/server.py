"""Impa AI admin console - Main Server"""
from fastapi import FastAPI, APIRouter, HTTPException, Depends, Header, Request, Query
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from config import (
    CORS_ORIGINS, LOG_LEVEL, SUPABASE_URL, SUPABASE_SERVICE_KEY, SYNC_FAILURE_POLICY,
)
from auth_service import (
    AuthError, TokenData, authenticate, change_password, create_access_token,
    public_user, register_user, verify_token,
)
from agent_manager import AgentError, AgentManager
from api_keys import (
    APIKeyError, create_api_key, get_agent_for_key, list_agents_for_key, list_api_keys,
    resolve_api_key, revoke_api_key,
)
from connection_manager import ConnectionManager, get_owned_connection, list_connections
from crypto_utils import decrypt_value, encrypt_value, mask_secret
from data_gateway import (
    DataGateway, DataAccessError, CONNECTIONS, INTEGRATIONS, USERS, USER_SETTINGS, create_supabase_gateway,
)
from evolution_api import EvolutionAPI, INTEGRATION_TYPE
from settings_store import SettingsStore, check_user_can_create
from sync_engine import BulkSyncOrchestrator, StatusSynchronizer, sync_scope
from theme_service import THEME_PRESETS, ThemeConfig, ThemeStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Impa AI - WhatsApp Agent Console")
api_router = APIRouter(prefix="/api")


def init_services(application: FastAPI, gateway: DataGateway, evolution: Optional[EvolutionAPI] = None) -> None:
    """Attach the gateway and the long-lived stores to the application state."""
    evolution = evolution or EvolutionAPI(gateway)
    synchronizer = StatusSynchronizer(gateway, evolution, policy=SYNC_FAILURE_POLICY)
    application.state.gateway = gateway
    application.state.evolution = evolution
    application.state.settings = SettingsStore(gateway)
    application.state.theme = ThemeStore(gateway)
    application.state.synchronizer = synchronizer
    application.state.orchestrator = BulkSyncOrchestrator(synchronizer)


# ============ Pydantic Models ============

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    full_name: str

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class AuthResponse(BaseModel):
    token: str
    user: Dict[str, Any]

class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

class AdminUserUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    agents_limit: Optional[int] = None
    whatsapp_connections_limit: Optional[int] = None

class ConnectionCreate(BaseModel):
    connection_name: str
    platform_name: Optional[str] = None

class ConnectionTransfer(BaseModel):
    user_id: str

class InstanceSettingsUpdate(BaseModel):
    settings: Dict[str, Any]

class EvolutionConfigUpdate(BaseModel):
    apiUrl: str
    apiKey: Optional[str] = None
    is_active: bool = True

class AgentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    whatsapp_connection_id: Optional[str] = None
    status: Optional[str] = None
    is_default: Optional[bool] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None
    tone: Optional[str] = None
    main_function: Optional[str] = None
    bot_config: Optional[Dict[str, Any]] = Field(None, alias="model_config")
    voice_response_enabled: Optional[bool] = None
    transcribe_audio: Optional[bool] = None
    understand_images: Optional[bool] = None
    calendar_integration: Optional[bool] = None
    vector_store_enabled: Optional[bool] = None

class APIKeyCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_admin_key: bool = False

class SystemSettingsUpdate(BaseModel):
    settings: Dict[str, Any]


# ============ Dependencies ============

def get_gateway(request: Request) -> DataGateway:
    return request.app.state.gateway

def get_evolution(request: Request) -> EvolutionAPI:
    return request.app.state.evolution

def get_settings_store(request: Request) -> SettingsStore:
    return request.app.state.settings

def get_theme_store(request: Request) -> ThemeStore:
    return request.app.state.theme

def get_connection_manager(request: Request) -> ConnectionManager:
    state = request.app.state
    return ConnectionManager(state.gateway, state.evolution, state.settings)

def get_agent_manager(request: Request) -> AgentManager:
    state = request.app.state
    return AgentManager(state.gateway, state.evolution, state.settings)


# ============ Auth Middleware ============

async def get_current_user(authorization: Optional[str] = Header(None)) -> TokenData:
    """Verify JWT token and return current user data"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Invalid authentication scheme")
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    token_data = verify_token(token)
    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return token_data


async def require_admin(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return current_user


async def get_api_key(apikey: Optional[str] = Header(None), gateway: DataGateway = Depends(get_gateway)) -> dict:
    """Resolve the `apikey` header to an active key row for external callers."""
    if not apikey:
        raise HTTPException(status_code=401, detail="API key required")
    key = await resolve_api_key(gateway, apikey)
    if not key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    if "read" not in (key.get("permissions") or ["read"]):
        raise HTTPException(status_code=403, detail="API key lacks read permission")
    return key


def _raise_on_failure(result: dict, status_code: int = 400) -> dict:
    """Turn a {"success": False, "error": ...} service result into an HTTP error."""
    if not result.get("success"):
        raise HTTPException(status_code=status_code, detail=result.get("error") or "Request failed")
    return result


async def _owned_connection(gateway: DataGateway, connection_id: str, user: TokenData) -> dict:
    connection = await get_owned_connection(gateway, connection_id, user.user_id, user.is_admin)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


async def _owned_instance(gateway: DataGateway, instance_name: str, user: TokenData) -> dict:
    filters = {"instance_name": instance_name}
    if not user.is_admin:
        filters["user_id"] = user.user_id
    connection = await gateway.get_one(CONNECTIONS, filters, columns="id, instance_name, user_id")
    if not connection:
        raise HTTPException(status_code=404, detail="Instance not found")
    return connection


# ============ Auth Endpoints ============

@api_router.post("/auth/register", response_model=AuthResponse)
async def register(request: RegisterRequest, gateway: DataGateway = Depends(get_gateway)):
    """Register a new user account"""
    try:
        user = await register_user(gateway, request.email, request.password, request.full_name)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    token = create_access_token(user["id"], user["email"], user.get("role", "user"))
    return AuthResponse(token=token, user=user)


@api_router.post("/auth/login", response_model=AuthResponse)
async def login(request: LoginRequest, gateway: DataGateway = Depends(get_gateway)):
    """Login and get access token"""
    try:
        user = await authenticate(gateway, request.email, request.password)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    token = create_access_token(user["id"], user["email"], user.get("role", "user"))
    return AuthResponse(token=token, user=user)


@api_router.get("/auth/me")
async def get_me(current_user: TokenData = Depends(get_current_user), gateway: DataGateway = Depends(get_gateway)):
    """Get current user info"""
    user = await gateway.get_one(USERS, {"id": current_user.user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@api_router.post("/auth/change-password")
async def change_password_endpoint(
    request: ChangePasswordRequest,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    try:
        await change_password(gateway, current_user.user_id, request.current_password, request.new_password)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True}


# ============ User Endpoints ============

@api_router.put("/user/profile")
async def update_profile(
    request: ProfileUpdate,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    update_data = request.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="Nothing to update")

    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    rows = await gateway.update(USERS, {"id": current_user.user_id}, update_data)
    if not rows:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(rows[0])


@api_router.get("/user/limits")
async def get_limits(
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    settings: SettingsStore = Depends(get_settings_store),
):
    """Current usage against the agent and connection quotas."""
    return {
        "agents": await check_user_can_create(gateway, settings, current_user.user_id, "agent"),
        "connections": await check_user_can_create(gateway, settings, current_user.user_id, "connection"),
    }


@api_router.get("/user/api-keys")
async def get_api_keys(current_user: TokenData = Depends(get_current_user), gateway: DataGateway = Depends(get_gateway)):
    return {"apiKeys": await list_api_keys(gateway, current_user.user_id)}


@api_router.post("/user/api-keys")
async def create_api_key_endpoint(
    request: APIKeyCreate,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    try:
        api_key = await create_api_key(
            gateway, current_user.user_id, request.name, request.description, request.is_admin_key
        )
    except APIKeyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True, "apiKey": api_key}


@api_router.delete("/user/api-keys/{key_id}")
async def delete_api_key(
    key_id: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    await revoke_api_key(gateway, key_id, current_user.user_id)
    return {"success": True}


# ============ Admin: Users ============

@api_router.get("/admin/users")
async def admin_list_users(admin: TokenData = Depends(require_admin), gateway: DataGateway = Depends(get_gateway)):
    users = await gateway.get(USERS, order="created_at", desc=True)
    return {"users": [public_user(u) for u in users]}


@api_router.put("/admin/users/{user_id}")
async def admin_update_user(
    user_id: str,
    request: AdminUserUpdate,
    admin: TokenData = Depends(require_admin),
    gateway: DataGateway = Depends(get_gateway),
):
    data = request.model_dump(exclude_unset=True)
    limits = {k: data.pop(k) for k in ("agents_limit", "whatsapp_connections_limit") if k in data}

    if data.get("role") and data["role"] not in ("admin", "user"):
        raise HTTPException(status_code=400, detail="Invalid role")

    user = await gateway.get_one(USERS, {"id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if data:
        data["updated_at"] = datetime.now(timezone.utc).isoformat()
        rows = await gateway.update(USERS, {"id": user_id}, data)
        user = rows[0] if rows else {**user, **data}
    if limits:
        await gateway.upsert(USER_SETTINGS, {"user_id": user_id, **limits}, on_conflict="user_id")

    logger.info(f"Admin {admin.email} updated user {user_id}: {sorted({**data, **limits})}")
    return public_user(user)


# ============ WhatsApp Connections ============

@api_router.get("/whatsapp/connections")
async def get_connections(
    user_id: Optional[str] = Query(None),
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    """Connections visible to the caller. Admins may pass ?user_id= to filter."""
    connections = await list_connections(gateway, current_user.user_id, current_user.is_admin, user_id)
    return {"connections": connections}


@api_router.post("/whatsapp/connections")
async def create_connection(
    request: ConnectionCreate,
    current_user: TokenData = Depends(get_current_user),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    if not request.connection_name.strip():
        raise HTTPException(status_code=400, detail="Connection name is required")

    kwargs = {"platform_name": request.platform_name} if request.platform_name else {}
    result = await manager.create_connection(current_user.user_id, request.connection_name.strip(), **kwargs)
    if result.get("code") == "limit_reached":
        raise HTTPException(status_code=403, detail=result["error"])
    return _raise_on_failure(result, status_code=502)


@api_router.post("/whatsapp/connections/sync-all")
async def sync_all_connections(
    request: Request,
    user_id: Optional[str] = Query(None),
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    """Sync every visible connection with the gateway, one at a time."""
    summary = await sync_scope(
        request.app.state.orchestrator, gateway, current_user.user_id, current_user.is_admin, user_id
    )
    if not summary.get("success"):
        raise HTTPException(status_code=409, detail=summary.get("error"))
    return summary


@api_router.post("/whatsapp/connections/{connection_id}/sync")
async def sync_connection(
    connection_id: str,
    request: Request,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
):
    """Sync one connection. Degraded results come back as 200 with the result body."""
    await _owned_connection(gateway, connection_id, current_user)
    return await request.app.state.synchronizer.sync_one(connection_id)


@api_router.get("/whatsapp/connections/{connection_id}/qrcode")
async def get_qr_code(
    connection_id: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    connection = await _owned_connection(gateway, connection_id, current_user)
    return _raise_on_failure(await manager.get_qr_code(connection["instance_name"]), status_code=502)


@api_router.get("/whatsapp/connections/{connection_id}/details")
async def get_connection_details(
    connection_id: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    connection = await _owned_connection(gateway, connection_id, current_user)
    result = await manager.get_instance_details(connection["instance_name"])
    return _raise_on_failure(result, status_code=404 if result.get("error") == "Instance not found" else 502)


@api_router.post("/whatsapp/connections/{connection_id}/disconnect")
async def disconnect_connection(
    connection_id: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    connection = await _owned_connection(gateway, connection_id, current_user)
    return _raise_on_failure(await manager.disconnect(connection["instance_name"]), status_code=500)


@api_router.post("/whatsapp/connections/{connection_id}/transfer")
async def transfer_connection(
    connection_id: str,
    request: ConnectionTransfer,
    admin: TokenData = Depends(require_admin),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    return _raise_on_failure(await manager.transfer_connection(connection_id, request.user_id), status_code=404)


@api_router.delete("/whatsapp/connections/{connection_id}")
async def delete_connection(
    connection_id: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    connection = await _owned_connection(gateway, connection_id, current_user)
    return _raise_on_failure(await manager.delete_connection(connection), status_code=500)


@api_router.get("/whatsapp/settings/{instance_name}")
async def get_instance_settings(
    instance_name: str,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await _owned_instance(gateway, instance_name, current_user)
    return _raise_on_failure(await manager.get_instance_settings(instance_name), status_code=404)


@api_router.put("/whatsapp/settings/{instance_name}")
async def save_instance_settings(
    instance_name: str,
    request: InstanceSettingsUpdate,
    current_user: TokenData = Depends(get_current_user),
    gateway: DataGateway = Depends(get_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    await _owned_instance(gateway, instance_name, current_user)
    return _raise_on_failure(await manager.save_instance_settings(instance_name, request.settings), status_code=500)


# ============ Evolution API Integration ============

@api_router.get("/integrations/evolution")
async def get_evolution_config(admin: TokenData = Depends(require_admin), gateway: DataGateway = Depends(get_gateway)):
    """Integration row with the API key masked."""
    row = await gateway.get_one(INTEGRATIONS, {"type": INTEGRATION_TYPE})
    if not row:
        return {"configured": False, "apiUrl": "", "apiKey": "", "is_active": False}

    config = row.get("config") or {}
    return {
        "configured": bool(config.get("apiUrl") and config.get("apiKey")),
        "apiUrl": config.get("apiUrl", ""),
        "apiKey": mask_secret(decrypt_value(config.get("apiKey") or "")),
        "is_active": bool(row.get("is_active")),
    }


@api_router.put("/integrations/evolution")
async def save_evolution_config(
    request: EvolutionConfigUpdate,
    admin: TokenData = Depends(require_admin),
    gateway: DataGateway = Depends(get_gateway),
):
    """Save the gateway URL and key. An omitted key keeps the stored one."""
    api_url = request.apiUrl.strip().rstrip("/")
    if not api_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="apiUrl must be an http(s) URL")

    existing = await gateway.get_one(INTEGRATIONS, {"type": INTEGRATION_TYPE})
    stored_key = ((existing or {}).get("config") or {}).get("apiKey")
    if request.apiKey:
        stored_key = encrypt_value(request.apiKey.strip())
    if not stored_key:
        raise HTTPException(status_code=400, detail="apiKey is required")

    data = {
        "name": "Evolution API",
        "type": INTEGRATION_TYPE,
        "config": {"apiUrl": api_url, "apiKey": stored_key},
        "is_active": request.is_active,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    if existing:
        await gateway.update(INTEGRATIONS, {"id": existing["id"]}, data)
    else:
        await gateway.insert(INTEGRATIONS, data)

    logger.info(f"Evolution API integration saved by {admin.email} ({api_url})")
    return {"success": True}


@api_router.get("/admin/diagnostics/evolution-api")
async def evolution_diagnostics(admin: TokenData = Depends(require_admin), evolution: EvolutionAPI = Depends(get_evolution)):
    return await evolution.diagnose()


# ============ Agents ============

def _agent_error(e: AgentError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


async def _owned_agent(manager: AgentManager, agent_id: str, user: TokenData) -> dict:
    agent = await manager.get_agent(agent_id, user.user_id, user.is_admin)
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@api_router.get("/agents")
async def get_agents(current_user: TokenData = Depends(get_current_user), manager: AgentManager = Depends(get_agent_manager)):
    return {"agents": await manager.list_agents(current_user.user_id, current_user.is_admin)}


@api_router.post("/agents")
async def create_agent(
    request: AgentPayload,
    current_user: TokenData = Depends(get_current_user),
    manager: AgentManager = Depends(get_agent_manager),
):
    try:
        return await manager.create_agent(
            current_user.user_id, request.model_dump(by_alias=True, exclude_unset=True), current_user.is_admin
        )
    except AgentError as e:
        _agent_error(e)


@api_router.get("/agents/{agent_id}")
async def get_agent(
    agent_id: str,
    current_user: TokenData = Depends(get_current_user),
    manager: AgentManager = Depends(get_agent_manager),
):
    return await _owned_agent(manager, agent_id, current_user)


@api_router.put("/agents/{agent_id}")
async def update_agent(
    agent_id: str,
    request: AgentPayload,
    current_user: TokenData = Depends(get_current_user),
    manager: AgentManager = Depends(get_agent_manager),
):
    agent = await _owned_agent(manager, agent_id, current_user)
    try:
        return await manager.update_agent(
            agent, request.model_dump(by_alias=True, exclude_unset=True), current_user.is_admin
        )
    except AgentError as e:
        _agent_error(e)


@api_router.delete("/agents/{agent_id}")
async def delete_agent(
    agent_id: str,
    current_user: TokenData = Depends(get_current_user),
    manager: AgentManager = Depends(get_agent_manager),
):
    agent = await _owned_agent(manager, agent_id, current_user)
    return await manager.delete_agent(agent)


# ============ External Agent Access (API key) ============

@api_router.get("/getbots")
async def get_bots(key: dict = Depends(get_api_key), gateway: DataGateway = Depends(get_gateway)):
    """Agents visible to the calling API key."""
    return await list_agents_for_key(gateway, key)


@api_router.get("/getbot/{agent_id}")
async def get_bot(agent_id: str, key: dict = Depends(get_api_key), gateway: DataGateway = Depends(get_gateway)):
    result = await get_agent_for_key(gateway, key, agent_id)
    if not result:
        raise HTTPException(status_code=404, detail="Agent not found or not accessible with this key")
    return result


# ============ System Settings & Theme ============

@api_router.get("/admin/settings")
async def get_system_settings(admin: TokenData = Depends(require_admin), settings: SettingsStore = Depends(get_settings_store)):
    return {"settings": await settings.all()}


@api_router.put("/admin/settings")
async def update_system_settings(
    request: SystemSettingsUpdate,
    admin: TokenData = Depends(require_admin),
    settings: SettingsStore = Depends(get_settings_store),
):
    failed = await settings.update(request.settings)
    if failed:
        raise HTTPException(status_code=500, detail={"message": "Some settings were not saved", "failed": failed})
    return {"success": True, "settings": await settings.all()}


@api_router.get("/theme", response_model=ThemeConfig)
async def get_theme(themes: ThemeStore = Depends(get_theme_store)):
    return await themes.get_theme()


@api_router.get("/theme/presets", response_model=Dict[str, ThemeConfig])
async def get_theme_presets():
    return THEME_PRESETS


@api_router.put("/theme")
async def save_theme(
    request: ThemeConfig,
    admin: TokenData = Depends(require_admin),
    themes: ThemeStore = Depends(get_theme_store),
):
    try:
        saved = await themes.save_theme(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not saved:
        raise HTTPException(status_code=500, detail="Failed to save theme")
    return {"success": True}


# ============ Health Check ============

@api_router.get("/")
async def root():
    return {"message": "Impa AI API - WhatsApp agent console"}


@api_router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# Include router and add middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError):
    return JSONResponse(status_code=503, content={"detail": "Storage is unavailable, try again shortly"})


@app.on_event("startup")
async def startup():
    if getattr(app.state, "gateway", None) is None:
        init_services(app, create_supabase_gateway(SUPABASE_URL, SUPABASE_SERVICE_KEY))
    logger.info(f"Services ready (sync failure policy: {app.state.synchronizer.policy})")
