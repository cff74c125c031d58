from datetime import datetime
from typing import Any, Dict, Optional


class MarketplaceError(ValueError):
    """Base class for user-visible marketplace errors."""

    code = "VALIDATION"

    def context(self) -> Dict[str, Any]:
        return {}


class MarketplaceValidationError(MarketplaceError):
    pass


class MarketplaceNotFoundError(MarketplaceError):
    code = "NOT_FOUND"


class MarketplacePermissionError(MarketplaceError):
    code = "PERMISSION"


class MarketplaceCapacityError(MarketplacePermissionError):
    code = "CAPACITY"

    def __init__(self, message: str, *, limit: int, current_count: int, subscription_status: Optional[str] = None):
        super().__init__(message)
        self.limit = limit
        self.current_count = current_count
        self.subscription_status = subscription_status

    def context(self) -> Dict[str, Any]:
        return {
            "limit": self.limit,
            "current_count": self.current_count,
            "subscription_status": self.subscription_status,
        }


class MarketplaceBadStateError(MarketplaceError):
    code = "BAD_STATE"

    def __init__(self, message: str, *, current_status: Optional[str] = None, current_payment_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.current_payment_status = current_payment_status

    def context(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.current_status is not None:
            payload["current_status"] = self.current_status
        if self.current_payment_status is not None:
            payload["current_payment_status"] = self.current_payment_status
        return payload


class MarketplaceConflictError(MarketplaceError):
    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        conflict_start: Optional[datetime] = None,
        conflict_end: Optional[datetime] = None,
    ):
        super().__init__(message)
        self.conflict_start = conflict_start
        self.conflict_end = conflict_end

    def context(self) -> Dict[str, Any]:
        if self.conflict_start is None or self.conflict_end is None:
            return {}
        return {
            "conflict_start": self.conflict_start.isoformat(),
            "conflict_end": self.conflict_end.isoformat(),
        }
