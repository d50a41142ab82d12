"""Signed token helpers: user session tokens and spend capability tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "wpv_session"
SPEND_TOKEN_TYPE = "spend_capability"


def _encode(claims: Dict[str, Any]) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, expected_type: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != expected_type:
        raise ValueError("Invalid token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Token missing subject.")

    return payload


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    expires_at = now + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    return {
        "token": _encode(claims),
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    return _decode(token, SESSION_TOKEN_TYPE)


def create_spend_token(
    user_id: str,
    *,
    reason: str,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Opaque capability proving `user_id` paid for `reason`/`reference_id`.

    Only meaningful to `decode_spend_token`; ownership checks never rely on it.
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=max(int(settings.SPEND_TOKEN_TTL_MINUTES), 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SPEND_TOKEN_TYPE,
        "reason": reason,
        "ref": reference_id or "",
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return {
        "token": _encode(claims),
        "expires_at": int(expires_at.timestamp()),
    }


def decode_spend_token(token: str, user_id: str) -> Dict[str, Any]:
    """Verify a spend token server-side and bind it to the presenting user."""
    payload = _decode(token, SPEND_TOKEN_TYPE)
    if str(payload.get("sub")) != user_id:
        raise ValueError("Spend token was issued to a different user.")
    return payload
