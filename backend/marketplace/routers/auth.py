from fastapi import APIRouter, Depends, HTTPException

from marketplace import config
from marketplace.auth import create_access_token, require_authenticated_user
from marketplace.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse
from marketplace.routers.http_errors import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if payload.password != config.DEMO_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    try:
        user = marketplace_store.ensure_user(user_id, name=payload.name)
    except MarketplaceError as exc:
        raise_http_error(exc)
    token, expires_at = create_access_token(user_id=user_id)
    return AuthLoginResponse(access_token=token, user_id=user_id, role=user.role, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(user_id: str = Depends(require_authenticated_user)):
    return AuthMeResponse(user_id=user_id)
