"""
Authentication dependencies for FastAPI.

Bearer tokens come from the external OIDC provider. The first request
carrying a new subject creates the matching User row from the token's
claims.
"""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.jwt import decode_access_token
from ridehail.app.db.session import get_db
from ridehail.app.models.enums import UserType
from ridehail.app.models.user import User

logger = logging.getLogger("ridehail.auth")

# HTTP Bearer security scheme
security = HTTPBearer()


def _claimed_type(payload: dict) -> UserType:
    try:
        return UserType(payload.get("user_type") or UserType.RIDER.value)
    except ValueError:
        return UserType.RIDER


async def upsert_user_from_claims(db: AsyncSession, payload: dict) -> User:
    """Load the user for a token subject, creating it on first sight."""
    user_id = payload["sub"]
    user = await db.get(User, user_id)
    if user is not None:
        return user

    user = User(
        id=user_id,
        email=payload.get("email"),
        first_name=payload.get("given_name") or payload.get("first_name"),
        last_name=payload.get("family_name") or payload.get("last_name"),
        profile_image_url=payload.get("picture"),
        user_type=_claimed_type(payload),
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Another request created the same subject first
        await db.rollback()
        user = await db.get(User, user_id)
        if user is None:
            raise
        return user

    await db.refresh(user)
    logger.info("Registered user %s as %s", user.id, user.user_type.value)
    return user


async def resolve_token_user(token: str, db: AsyncSession) -> dict:
    """
    Validate a bearer token and return the caller as a plain dict.

    Raises:
        HTTPException: 401 if the token is invalid
    """
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await upsert_user_from_claims(db, payload)

    # Admin comes from the identity provider; other roles from the profile
    role = UserType.ADMIN if _claimed_type(payload) == UserType.ADMIN else user.user_type

    return {
        "user_id": user.id,
        "sub": payload["sub"],
        "email": user.email,
        "role": role.value,
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Dict with user_id, sub, email and role

    Raises:
        HTTPException: 401 if authentication fails
    """
    return await resolve_token_user(credentials.credentials, db)
