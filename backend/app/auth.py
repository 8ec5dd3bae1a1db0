import base64
import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from app import settings

DEFAULT_TOKEN_TTL_HOURS = 24
VALID_ROLES = {"client", "provider", "admin"}


def _read_token_ttl_hours() -> int:
    raw = os.getenv("AUTH_TOKEN_TTL_HOURS", str(DEFAULT_TOKEN_TTL_HOURS)).strip()
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_TOKEN_TTL_HOURS
    return value if value > 0 else DEFAULT_TOKEN_TTL_HOURS


TOKEN_TTL_HOURS = _read_token_ttl_hours()
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "false").lower() in {"1", "true", "yes"}
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")


@dataclass(frozen=True)
class TokenIdentity:
    user_id: str
    role: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes) -> bytes:
    return hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()


def resolve_role(user_id: str, requested_role: str = "client") -> str:
    if user_id in settings.ADMIN_USER_IDS:
        return "admin"
    return requested_role if requested_role in VALID_ROLES - {"admin"} else "client"


def create_access_token(user_id: str, role: str = "client") -> tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{role}|{int(expiry.timestamp())}".encode("utf-8")
    token = f"{_b64url(payload)}.{_b64url(_sign(payload))}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[TokenIdentity]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
    except ValueError:
        return None
    if not hmac.compare_digest(sent_sig, _sign(payload)):
        return None
    try:
        user_id, role, expiry_ts = payload.decode("utf-8").split("|", 2)
        expires_at = int(expiry_ts)
    except ValueError:
        return None
    if datetime.now(timezone.utc).timestamp() > expires_at or role not in VALID_ROLES:
        return None
    return TokenIdentity(user_id=user_id, role=role)


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_identity(authorization: Optional[str]) -> Optional[TokenIdentity]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_authenticated_identity(authorization: Optional[str] = Header(default=None)) -> TokenIdentity:
    identity = resolve_request_identity(authorization)
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return identity


def assert_actor_authorized(
    actor_user_id: str,
    authorization: Optional[str] = Header(default=None),
) -> None:
    identity = resolve_request_identity(authorization)
    if not identity:
        if AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if identity.role == "admin":
        return
    if identity.user_id != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token user does not match actor user")
