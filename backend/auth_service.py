"""Authentication Service using JWT"""
import os
import re
import hmac
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional
import bcrypt
import jwt
from pydantic import BaseModel

import config  # noqa: F401  (loads .env before JWT_SECRET is read)
from data_gateway import DataGateway, DataAccessError, USERS, USER_SETTINGS

logger = logging.getLogger(__name__)

JWT_SECRET = (os.environ.get('JWT_SECRET') or '').strip()
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET environment variable is required")

JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = int(os.environ.get('JWT_EXPIRATION_HOURS', '24'))

MIN_PASSWORD_LENGTH = 6
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Defaults written for every new account
DEFAULT_USER_SETTINGS = {
    "agents_limit": 5,
    "transcribe_audio_enabled": True,
    "understand_images_enabled": True,
    "voice_response_enabled": True,
    "calendar_integration_enabled": True,
    "vector_store_enabled": True,
}


class AuthError(Exception):
    """Login / registration failure with a user-facing message."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TokenData(BaseModel):
    user_id: str
    email: str
    role: str
    exp: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify a password against a bcrypt hash."""
    if not stored_hash or not stored_hash.startswith('$2'):
        return False
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except ValueError:
        return False


def verify_legacy_password(password: str, stored_plaintext: str) -> bool:
    """Compare against a pre-migration plaintext password in constant time."""
    if not stored_plaintext:
        return False
    return hmac.compare_digest(password.encode(), stored_plaintext.encode())


def needs_rehash(user: dict) -> bool:
    """True while the account still carries a plaintext password."""
    return not (user.get("password_hash") or "").startswith('$2')


def create_access_token(user_id: str, email: str, role: str) -> str:
    """Create a JWT access token"""
    expiration = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRATION_HOURS)
    payload = {
        "user_id": user_id,
        "email": email,
        "role": role,
        "exp": expiration
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenData]:
    """Verify and decode a JWT token"""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return TokenData(
            user_id=payload["user_id"],
            email=payload["email"],
            role=payload.get("role", "user"),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        return None
    except (jwt.InvalidTokenError, KeyError) as e:
        logger.warning(f"Invalid token: {str(e)}")
        return None


def public_user(user: dict) -> dict:
    """Strip credential columns from a user row."""
    return {k: v for k, v in user.items() if k not in ("password", "password_hash")}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def register_user(gateway: DataGateway, email: str, password: str, full_name: str) -> dict:
    """Create an active `user` account and its default settings row."""
    email = (email or "").strip().lower()
    if not full_name or not email or not password:
        raise AuthError("All fields are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not EMAIL_RE.match(email):
        raise AuthError("Invalid email.")

    existing = await gateway.get(USERS, {"email": email}, columns="id")
    if existing:
        raise AuthError("This email is already in use.", status_code=409)

    user = await gateway.insert(USERS, {
        "full_name": full_name,
        "email": email,
        "password_hash": hash_password(password),
        "role": "user",
        "status": "active",
        "login_count": 0,
        "created_at": _now_iso(),
        "updated_at": _now_iso(),
    })

    try:
        await gateway.insert(USER_SETTINGS, {"user_id": user["id"], **DEFAULT_USER_SETTINGS})
    except DataAccessError as e:
        logger.error(f"Failed to create default settings for {email}: {e}")

    logger.info(f"User registered: {email}")
    return public_user(user)


async def authenticate(gateway: DataGateway, email: str, password: str) -> dict:
    """Check credentials and return the public user row.

    Accounts that still hold a plaintext password are migrated to bcrypt on
    their first successful login.
    """
    email = (email or "").strip().lower()
    user = await gateway.get_one(USERS, {"email": email})
    if not user:
        logger.warning(f"Login attempt for unknown email {email}")
        raise AuthError("Invalid credentials.", status_code=401)

    if needs_rehash(user):
        valid = verify_legacy_password(password, user.get("password") or "")
    else:
        valid = verify_password(password, user["password_hash"])
    if not valid:
        logger.warning(f"Wrong password for {email}")
        raise AuthError("Invalid credentials.", status_code=401)

    if user.get("status") != "active":
        logger.warning(f"Inactive account {email} (status={user.get('status')})")
        raise AuthError("Your account is inactive. Contact support.", status_code=403)

    patch = {
        "last_login_at": _now_iso(),
        "login_count": (user.get("login_count") or 0) + 1,
    }
    if needs_rehash(user):
        patch["password_hash"] = hash_password(password)
        patch["password"] = None
        logger.info(f"Migrated plaintext password to bcrypt for {email}")

    try:
        await gateway.update(USERS, {"id": user["id"]}, patch)
    except DataAccessError as e:
        logger.warning(f"Failed to record login for {email}: {e}")

    return public_user(user)


async def change_password(gateway: DataGateway, user_id: str, old_password: str, new_password: str) -> None:
    """Replace the password after checking the current one."""
    user = await gateway.get_one(USERS, {"id": user_id})
    if not user:
        raise AuthError("User not found.", status_code=404)

    if needs_rehash(user):
        valid = verify_legacy_password(old_password, user.get("password") or "")
    else:
        valid = verify_password(old_password, user["password_hash"])
    if not valid:
        raise AuthError("Current password is incorrect.")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    await gateway.update(USERS, {"id": user_id}, {
        "password_hash": hash_password(new_password),
        "password": None,
        "updated_at": _now_iso(),
    })
    logger.info(f"Password changed for user {user_id}")
