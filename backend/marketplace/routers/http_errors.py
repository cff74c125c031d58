from typing import NoReturn

from fastapi import HTTPException

from marketplace.services.errors import (
    MarketplaceBadStateError,
    MarketplaceConflictError,
    MarketplaceError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
)


def raise_http_error(exc: MarketplaceError) -> NoReturn:
    detail = {"code": exc.code, "message": str(exc), **exc.context()}
    if isinstance(exc, MarketplaceNotFoundError):
        raise HTTPException(status_code=404, detail=detail)
    # Capacity errors are permission errors too; the code field tells them apart.
    if isinstance(exc, MarketplacePermissionError):
        raise HTTPException(status_code=403, detail=detail)
    if isinstance(exc, (MarketplaceConflictError, MarketplaceBadStateError)):
        raise HTTPException(status_code=409, detail=detail)
    raise HTTPException(status_code=400, detail=detail)
