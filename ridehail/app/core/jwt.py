"""
JWT token utilities.

Bearer tokens are minted by the external OIDC provider; this service only
verifies them. ``create_access_token`` exists for local development and
tests, where no provider is running.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from ridehail.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode (should include: sub, user_type; optionally email, given_name, family_name)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example payload:
        {
            "sub": "oidc|8f2c",
            "user_type": "rider",
            "email": "rider@example.com",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    if settings.oidc_audience and "aud" not in to_encode:
        to_encode["aud"] = settings.oidc_audience
    if settings.oidc_issuer and "iss" not in to_encode:
        to_encode["iss"] = settings.oidc_issuer

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string to decode

    Returns:
        Decoded claims if valid, None otherwise
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            audience=settings.oidc_audience,
            issuer=settings.oidc_issuer,
            options={"verify_aud": settings.oidc_audience is not None},
        )
    except JWTError:
        return None
