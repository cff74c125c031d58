from typing import Callable, Dict, Optional

from marketplace import config
from marketplace.models import BusinessSubscription, CapacityCheck
from marketplace.services.errors import MarketplaceCapacityError


def _free_tier(_: Optional[BusinessSubscription]) -> int:
    return config.FREE_TIER_SERVICE_LIMIT


def _subscribed(subscription: Optional[BusinessSubscription]) -> int:
    return subscription.service_limit if subscription else config.FREE_TIER_SERVICE_LIMIT


# A subscription that is not ACTIVE confers no extra capacity.
_LIMIT_BY_STATUS: Dict[Optional[str], Callable[[Optional[BusinessSubscription]], int]] = {
    None: _free_tier,
    "PENDING": _free_tier,
    "PAYMENT_SENT": _free_tier,
    "ACTIVE": _subscribed,
}


def service_limit_for(subscription: Optional[BusinessSubscription]) -> int:
    status = subscription.status if subscription else None
    return _LIMIT_BY_STATUS[status](subscription)


def evaluate_capacity(current_count: int, subscription: Optional[BusinessSubscription]) -> CapacityCheck:
    status = subscription.status if subscription else None
    limit = service_limit_for(subscription)
    allowed = current_count < limit
    if allowed:
        reason = f"You can add up to {limit} services" if status == "ACTIVE" else f"Free tier allows {limit} service"
    elif status == "ACTIVE":
        reason = "Service limit reached. Please contact an admin to increase your limit."
    elif status is None:
        reason = "Free tier limit reached. Please subscribe to add more services."
    else:
        reason = "Please complete payment and wait for activation to add more services."
    return CapacityCheck(
        allowed=allowed,
        limit=limit,
        current_count=current_count,
        subscription_status=status,
        reason=reason,
    )


def ensure_capacity(check: CapacityCheck) -> None:
    if not check.allowed:
        raise MarketplaceCapacityError(
            check.reason,
            limit=check.limit,
            current_count=check.current_count,
            subscription_status=check.subscription_status,
        )
