from fastapi import APIRouter, Depends, HTTPException

from groomquote.auth import create_access_token, require_actor
from groomquote.models import (
    Actor,
    AuthLoginRequest,
    AuthLoginResponse,
    AuthMeResponse,
    AuthRegisterRequest,
    UserProfile,
)
from groomquote.services.market_store import market_store, utc_now_iso

router = APIRouter(prefix="/auth", tags=["auth"])

DEMO_PASSWORD = "groomquote-demo"


def _issue_token(user: UserProfile) -> AuthLoginResponse:
    token, expires_at = create_access_token(user_id=user.id)
    return AuthLoginResponse(access_token=token, user_id=user.id, role=user.role, expires_at=expires_at)


@router.post("/register", response_model=AuthLoginResponse, status_code=201)
def register(payload: AuthRegisterRequest):
    user_id = payload.user_id.strip()
    if not user_id or not payload.name.strip():
        raise HTTPException(status_code=400, detail="user_id and name are required")
    if payload.password != DEMO_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if payload.role == "ADMIN":
        raise HTTPException(status_code=403, detail="Admin accounts cannot self-register")
    if (payload.latitude is None) != (payload.longitude is None):
        raise HTTPException(status_code=400, detail="Latitude and longitude must be provided together")
    if market_store.get_user(user_id) is not None:
        raise HTTPException(status_code=409, detail="User already exists")
    user = market_store.save_user(
        UserProfile(
            id=user_id,
            name=payload.name.strip(),
            role=payload.role,
            latitude=payload.latitude,
            longitude=payload.longitude,
            address=payload.address.strip(),
            business_name=(payload.business_name or "").strip() or None,
            created_at=utc_now_iso(),
        )
    )
    return _issue_token(user)


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    user = market_store.get_user(user_id)
    if user is None or payload.password != DEMO_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _issue_token(user)


@router.get("/me", response_model=AuthMeResponse)
def me(actor: Actor = Depends(require_actor)):
    return AuthMeResponse(user_id=actor.user_id, role=actor.role)
