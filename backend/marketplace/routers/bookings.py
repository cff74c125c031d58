from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import (
    Booking,
    BookingActorRequest,
    BookingHistoryEntry,
    BookingPaymentInfo,
    BookingRequest,
    BookingStatusUpdateRequest,
)
from marketplace.routers.http_errors import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.marketplace_store import marketplace_store

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=Booking)
def create_booking(request: BookingRequest, authorization: Optional[str] = Header(default=None)):
    assert_actor_authorized(actor_user_id=request.customer_id, authorization=authorization)
    try:
        return marketplace_store.create_booking(
            customer_id=request.customer_id,
            service_id=request.service_id,
            start_time=request.start_time,
            notes=request.notes,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/provider-schedule", response_model=list[Booking])
def provider_schedule(
    provider_id: str = Query(...),
    status: Optional[str] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=provider_id, authorization=authorization)
    try:
        return marketplace_store.get_provider_schedule(
            provider_id,
            status=status,
            date_from=date_from,
            date_to=date_to,
        )
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/mine", response_model=list[Booking])
def customer_bookings(
    customer_id: str = Query(...),
    status: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=customer_id, authorization=authorization)
    try:
        return marketplace_store.get_customer_bookings(customer_id, status=status)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}", response_model=Booking)
def get_booking(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return marketplace_store.get_booking(user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}/payment-info", response_model=BookingPaymentInfo)
def payment_info(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return marketplace_store.get_payment_info(user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}/history", response_model=list[BookingHistoryEntry])
def booking_history(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return marketplace_store.list_booking_history(user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/status", response_model=Booking)
def update_booking_status(
    booking_id: str,
    request: BookingStatusUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.update_booking_status(request.actor_user_id, booking_id, request.status)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: str,
    request: BookingActorRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.cancel_booking(request.actor_user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/mark-paid", response_model=Booking)
def mark_as_paid(
    booking_id: str,
    request: BookingActorRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.mark_as_paid(request.actor_user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/confirm-payment", response_model=Booking)
def confirm_payment(
    booking_id: str,
    request: BookingActorRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    try:
        return marketplace_store.confirm_payment(request.actor_user_id, booking_id)
    except MarketplaceError as exc:
        raise_http_error(exc)
