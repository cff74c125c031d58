"""Signed bearer tokens that tie a request's explicit actor id to the caller.

A token is ``<payload>.<signature>`` where the payload is
``<user_id>|<expiry unix seconds>``, both parts url-safe base64 without padding.
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Header, HTTPException, status

from marketplace import config


def _encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(payload: bytes) -> bytes:
    return hmac.new(config.AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(user_id: str, now: Optional[datetime] = None) -> Tuple[str, str]:
    expires_at = (now or _utcnow()) + timedelta(hours=config.AUTH_TOKEN_TTL_HOURS)
    payload = f"{user_id}|{int(expires_at.timestamp())}".encode("utf-8")
    return f"{_encode(payload)}.{_encode(_sign(payload))}", expires_at.isoformat()


def verify_access_token(token: str, now: Optional[datetime] = None) -> Optional[str]:
    """Return the token's user id, or None when it is malformed, forged or expired."""
    try:
        payload_part, signature_part = token.split(".", 1)
        payload = _decode(payload_part)
        signature = _decode(signature_part)
        user_id, expiry = payload.decode("utf-8").rsplit("|", 1)
        expires_ts = int(expiry)
    except (ValueError, UnicodeDecodeError):
        return None
    if not hmac.compare_digest(signature, _sign(payload)):
        return None
    if (now or _utcnow()).timestamp() > expires_ts:
        return None
    return user_id or None


def bearer_user(authorization: Optional[str]) -> Optional[str]:
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return verify_access_token(token)


def require_authenticated_user(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = bearer_user(authorization)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return user_id


def assert_actor_authorized(actor_user_id: str, authorization: Optional[str] = Header(default=None)) -> None:
    # Anonymous calls pass unless AUTH_REQUIRED; a token must always match the actor.
    token_user = bearer_user(authorization)
    if token_user is None:
        if config.AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if token_user != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token user does not match actor user")
