from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import (
    PaymentDetailsUpdateRequest,
    ProfileUpdateRequest,
    RoleAssignRequest,
    RoleChoiceRequest,
    UserProfile,
)
from marketplace.routers.http_errors import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("/me", response_model=UserProfile)
def get_me(user_id: str = Query(...), authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return marketplace_store.get_user(user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/me", response_model=UserProfile)
def update_me(request: ProfileUpdateRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.update_profile(request.user_id, request.name)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/role", response_model=UserProfile)
def choose_role(request: RoleChoiceRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.choose_role(request.user_id, request.role)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/roles/assign", response_model=UserProfile)
def assign_role(request: RoleAssignRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.assign_role(
            actor_user_id=request.actor_user_id,
            user_id=request.user_id,
            role=request.role,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/payment-details", response_model=UserProfile)
def update_payment_details(request: PaymentDetailsUpdateRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.user_id, authorization=authorization)
    try:
        return marketplace_store.update_payment_details(
            user_id=request.user_id,
            payment_qr_code=request.payment_qr_code,
            payment_notes=request.payment_notes,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.delete("/payment-details/qr-code", response_model=UserProfile)
def delete_payment_qr_code(user_id: str = Query(...), authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return marketplace_store.delete_payment_qr_code(user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
