"""Booking status and payment-status transition rules.

Every rule takes the caller id explicitly and checks it against the parties
stored on the booking. Planning a change never touches storage; the store
applies the returned ``BookingChange`` with a compare-and-swap update.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from marketplace.models import Booking
from marketplace.services.errors import (
    MarketplaceBadStateError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)

TERMINAL_BOOKING_STATUSES = ("CANCELLED", "COMPLETED")


@dataclass(frozen=True)
class BookingChange:
    booking_id: str
    expected_status: str
    expected_payment_status: str
    status: str
    payment_status: str
    history: List[Tuple[str, str, str]] = field(default_factory=list)


def is_party(booking: Booking, user_id: str) -> bool:
    return user_id in (booking.customer_id, booking.provider_id)


def require_party(booking: Booking, user_id: str) -> None:
    if not is_party(booking, user_id):
        raise MarketplacePermissionError("You do not have access to this booking")


def _bad_state(booking: Booking, message: str) -> MarketplaceBadStateError:
    return MarketplaceBadStateError(
        message,
        current_status=booking.status,
        current_payment_status=booking.payment_status,
    )


def _change(booking: Booking, *, status: Optional[str] = None, payment_status: Optional[str] = None) -> BookingChange:
    next_status = status or booking.status
    next_payment_status = payment_status or booking.payment_status
    history = []
    if next_status != booking.status:
        history.append(("status", booking.status, next_status))
    if next_payment_status != booking.payment_status:
        history.append(("payment_status", booking.payment_status, next_payment_status))
    return BookingChange(
        booking_id=booking.id,
        expected_status=booking.status,
        expected_payment_status=booking.payment_status,
        status=next_status,
        payment_status=next_payment_status,
        history=history,
    )


def plan_status_change(booking: Booking, actor_user_id: str, new_status: str, now: datetime) -> BookingChange:
    require_party(booking, actor_user_id)
    is_provider = actor_user_id == booking.provider_id

    if new_status == "CONFIRMED":
        if not is_provider:
            raise MarketplacePermissionError("Only the provider can confirm a booking")
        if booking.status != "PENDING":
            raise _bad_state(booking, f"Cannot confirm a {booking.status.lower()} booking")
        return _change(booking, status="CONFIRMED")

    if new_status == "CANCELLED":
        if booking.status in TERMINAL_BOOKING_STATUSES:
            raise _bad_state(booking, f"Cannot cancel a {booking.status.lower()} booking")
        if booking.status == "CONFIRMED" and booking.end_time <= now:
            raise _bad_state(booking, "Cannot cancel a booking that has already ended")
        return _change(booking, status="CANCELLED")

    if new_status == "COMPLETED":
        if not is_provider:
            raise MarketplacePermissionError("Only the provider can complete a booking")
        if booking.status != "CONFIRMED":
            raise _bad_state(booking, f"Cannot complete a {booking.status.lower()} booking")
        if booking.end_time > now:
            raise _bad_state(booking, "Booking cannot be completed before it ends")
        return _change(booking, status="COMPLETED")

    raise MarketplaceValidationError(f"Unsupported target status: {new_status}")


def plan_mark_paid(booking: Booking, actor_user_id: str) -> BookingChange:
    require_party(booking, actor_user_id)
    if actor_user_id != booking.customer_id:
        raise MarketplacePermissionError("Only the customer can mark as paid")
    if booking.payment_status != "UNPAID":
        raise _bad_state(booking, "Payment has already been marked")
    if booking.status == "CANCELLED":
        raise _bad_state(booking, "Cannot pay for a cancelled booking")
    return _change(booking, payment_status="CUSTOMER_MARKED_PAID")


def plan_confirm_payment(booking: Booking, actor_user_id: str) -> BookingChange:
    # Confirming payment also confirms an active booking; COMPLETED stays COMPLETED.
    require_party(booking, actor_user_id)
    if actor_user_id != booking.provider_id:
        raise MarketplacePermissionError("Only the provider can confirm payment")
    if booking.payment_status != "CUSTOMER_MARKED_PAID":
        raise _bad_state(booking, "Payment must be marked as paid by the customer first")
    if booking.status == "CANCELLED":
        raise _bad_state(booking, "Cannot confirm payment for a cancelled booking")
    if booking.status == "COMPLETED":
        return _change(booking, payment_status="PROVIDER_CONFIRMED")
    return _change(booking, status="CONFIRMED", payment_status="PROVIDER_CONFIRMED")
