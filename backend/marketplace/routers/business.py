from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import (
    BusinessSubscription,
    PaymentDetails,
    SubscriptionActivateRequest,
    SubscriptionActorRequest,
    SubscriptionOverview,
)
from marketplace.routers.http_errors import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/business", tags=["business"])


@router.get("/subscription", response_model=SubscriptionOverview)
def my_subscription(
    provider_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=provider_id, authorization=authorization)
    try:
        return marketplace_store.get_subscription(provider_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/subscription/payment-sent", response_model=BusinessSubscription)
def mark_payment_sent(request: SubscriptionActorRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.mark_subscription_payment_sent(request.actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/payment-collector", response_model=PaymentDetails)
def payment_collector():
    try:
        return marketplace_store.get_payment_collector()
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/activations", response_model=list[BusinessSubscription])
def pending_activations(
    admin_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=admin_id, authorization=authorization)
    try:
        return marketplace_store.list_pending_activations(admin_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/activations/{subscription_id}/activate", response_model=BusinessSubscription)
def activate_subscription(
    subscription_id: str,
    request: SubscriptionActivateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.activate_subscription(
            admin_id=request.actor_user_id,
            subscription_id=subscription_id,
            service_limit=request.service_limit,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)
