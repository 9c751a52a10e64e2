"""JWT verification, worker-secret checks, and webhook signatures.

Provides the security primitives used by API dependencies:
- Owner access tokens (issued by the dashboard, verified here)
- Shared worker secret for internal triggers (cron, direct processing)
- HMAC-SHA256 webhook signature verification with optional prefixes
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.dealflow.config import get_settings

# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    The data dict should contain at minimum:
    - sub: owner (user) id (str)
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        if payload.get("type") != token_type:
            raise credentials_exception
        if not payload.get("sub"):
            raise credentials_exception
        return payload
    except JWTError:
        raise credentials_exception


# ── Worker Secret ─────────────────────────────────────────────────────────────


def verify_worker_secret(authorization: str | None) -> bool:
    """Check an ``Authorization: Bearer <secret>`` header against WORKER_SECRET.

    An unset WORKER_SECRET rejects every request.
    """
    secret = get_settings().WORKER_SECRET
    if not secret or not authorization:
        return False
    if not authorization.startswith("Bearer "):
        return False
    return hmac.compare_digest(authorization[7:], secret)


# ── Webhook Signatures ────────────────────────────────────────────────────────


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of a raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    body: bytes,
    signature: str | None,
    secret: str,
    prefix: str = "",
) -> bool:
    """Verify a provider webhook signature in constant time.

    Args:
        body: Raw request body exactly as received.
        signature: Header value sent by the provider.
        secret: Shared webhook secret.
        prefix: Scheme prefix the provider puts before the digest
            (e.g. ``"sha256="``). Required when set.

    Returns:
        True when the signature matches.
    """
    if not signature or not secret:
        return False
    if prefix:
        if not signature.startswith(prefix):
            return False
        signature = signature[len(prefix):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(signature.strip().lower(), expected)
