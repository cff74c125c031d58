from datetime import date
from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import CapacityCheck, Service, ServiceCreateRequest, Slot
from marketplace.routers.http_errors import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.marketplace_store import marketplace_store

router = APIRouter(tags=["services"])


@router.get("", response_model=list[Service])
def list_services(
    category: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
):
    try:
        return marketplace_store.list_services(category=category, search=search)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("", response_model=Service)
def create_service(request: ServiceCreateRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.provider_id, authorization=authorization)
    try:
        return marketplace_store.create_service(request)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/capacity", response_model=CapacityCheck)
def can_add_service(
    provider_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=provider_id, authorization=authorization)
    return marketplace_store.can_add_service(provider_id)


@router.get("/{service_id}", response_model=Service)
def get_service(service_id: str):
    try:
        return marketplace_store.get_service(service_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{service_id}/slots", response_model=list[Slot])
def available_slots(service_id: str, date: date = Query(...)):
    try:
        return marketplace_store.get_available_slots(service_id=service_id, day=date)
    except MarketplaceError as exc:
        raise_http_error(exc)
