from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

ServiceCategory = Literal["GRASS_CUTTING", "AIRCON_REPAIR", "CLEANING", "HAIRCUT"]
UserRole = Literal["CUSTOMER", "PROVIDER", "ADMIN"]
BookingStatus = Literal["PENDING", "CONFIRMED", "CANCELLED", "COMPLETED"]
PaymentStatus = Literal["UNPAID", "CUSTOMER_MARKED_PAID", "PROVIDER_CONFIRMED"]
SubscriptionStatus = Literal["PENDING", "PAYMENT_SENT", "ACTIVE"]


class UserProfile(BaseModel):
    id: str
    name: str = ""
    role: UserRole = "CUSTOMER"
    payment_qr_code: Optional[str] = None
    payment_notes: Optional[str] = None
    created_at: datetime


class Service(BaseModel):
    id: str
    title: str
    description: str
    category: ServiceCategory
    base_price: Decimal
    duration_minutes: int
    provider_id: str
    created_at: datetime


class ServiceCreateRequest(BaseModel):
    provider_id: str
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    category: ServiceCategory
    base_price: Decimal = Field(gt=0)
    duration_minutes: int = Field(gt=0)


class Booking(BaseModel):
    id: str
    service_id: str
    customer_id: str
    provider_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus = "PENDING"
    payment_status: PaymentStatus = "UNPAID"
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookingRequest(BaseModel):
    customer_id: str
    service_id: str
    start_time: datetime
    notes: Optional[str] = Field(default=None, max_length=1000)


class BookingStatusUpdateRequest(BaseModel):
    actor_user_id: str
    status: Literal["CONFIRMED", "CANCELLED", "COMPLETED"]


class BookingActorRequest(BaseModel):
    actor_user_id: str


class BookingHistoryEntry(BaseModel):
    id: str
    booking_id: str
    actor_user_id: str
    field: Literal["status", "payment_status"]
    from_value: str
    to_value: str
    created_at: datetime


class Slot(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool


class ServiceSummary(BaseModel):
    id: str
    title: str
    base_price: Decimal


class PaymentDetails(BaseModel):
    user_id: str
    name: str = ""
    payment_qr_code: Optional[str] = None
    payment_notes: Optional[str] = None


class BookingPaymentInfo(BaseModel):
    booking: Booking
    service: ServiceSummary
    provider: PaymentDetails
    is_customer: bool
    is_provider: bool


class CapacityCheck(BaseModel):
    allowed: bool
    limit: int
    current_count: int
    subscription_status: Optional[SubscriptionStatus] = None
    reason: str = ""


class BusinessSubscription(BaseModel):
    id: str
    provider_id: str
    status: SubscriptionStatus = "PENDING"
    service_limit: int = 1
    payment_sent_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    activated_by: Optional[str] = None
    created_at: datetime


class SubscriptionOverview(BaseModel):
    subscription: BusinessSubscription
    current_service_count: int
    can_add_service: bool


class SubscriptionActorRequest(BaseModel):
    actor_user_id: str


class SubscriptionActivateRequest(BaseModel):
    actor_user_id: str
    service_limit: Optional[int] = Field(default=None, gt=0)


class ProfileUpdateRequest(BaseModel):
    user_id: str
    name: str = Field(min_length=1, max_length=100)


class RoleChoiceRequest(BaseModel):
    user_id: str
    role: Literal["CUSTOMER", "PROVIDER"]


class RoleAssignRequest(BaseModel):
    actor_user_id: str
    user_id: str
    role: UserRole


class PaymentDetailsUpdateRequest(BaseModel):
    user_id: str
    payment_qr_code: Optional[str] = None
    payment_notes: Optional[str] = Field(default=None, max_length=500)


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str = "marketplace-demo"
    name: str = ""


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: UserRole
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
