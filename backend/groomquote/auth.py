import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from groomquote.config import settings
from groomquote.models import Actor
from groomquote.services.market_store import market_store


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes) -> bytes:
    return hmac.new(settings.auth_secret.encode("utf-8"), payload, hashlib.sha256).digest()


def create_access_token(user_id: str) -> tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=settings.token_ttl_hours)
    payload = f"{user_id}|{int(expiry.timestamp())}".encode("utf-8")
    token = f"{_b64url(payload)}.{_b64url(_sign(payload))}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        if not hmac.compare_digest(_b64urldecode(sig_part), _sign(payload)):
            return None
        user_id, expiry_ts = payload.decode("utf-8").split("|", 1)
        if datetime.now(timezone.utc).timestamp() > int(expiry_ts):
            return None
        return user_id
    except (ValueError, UnicodeDecodeError):
        return None


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_user(authorization: Optional[str]) -> Optional[str]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_authenticated_user(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = resolve_request_user(authorization)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return user_id


def require_actor(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> Actor:
    """Resolve the calling user and role.

    A valid bearer token always wins. Without one, local development setups
    (``AUTH_REQUIRED`` off) may name the caller through ``X-User-Id``.
    """
    user_id = resolve_request_user(authorization)
    if not user_id and authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid bearer token")
    if not user_id:
        if settings.auth_required or not x_user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        user_id = x_user_id.strip()
    user = market_store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return Actor(user_id=user.id, role=user.role)
