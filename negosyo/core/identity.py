"""Identity-provider session tokens.

The identity provider owns sign-up, passwords and sessions; this service only
needs the stable opaque user id it puts in the token's ``sub`` claim.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import admin_identity_ids, settings
from negosyo.core.exceptions import ForbiddenError, UnauthorizedError
from negosyo.database import get_db


@dataclass(frozen=True)
class Identity:
    subject: str
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.subject in admin_identity_ids()


def create_identity_token(subject: str, email: str | None = None, expires_hours: int = 24) -> str:
    """Mint a token the way the identity provider does. Used by tests and seed scripts."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    if email:
        payload["email"] = email
    if settings.identity_jwt_audience:
        payload["aud"] = settings.identity_jwt_audience
    return jwt.encode(payload, settings.identity_jwt_secret, algorithm=settings.identity_jwt_algorithm)


def decode_identity(authorization: str | None) -> Identity:
    """Extract the identity from a Bearer token. Raises UnauthorizedError if invalid."""
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Authorization header must be: Bearer <token>")
    options = {"verify_aud": bool(settings.identity_jwt_audience)}
    try:
        payload = jwt.decode(
            parts[1],
            settings.identity_jwt_secret,
            algorithms=[settings.identity_jwt_algorithm],
            audience=settings.identity_jwt_audience or None,
            options=options,
        )
    except JWTError as e:
        raise UnauthorizedError(f"Invalid token: {e}")
    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError("Token missing subject")
    return Identity(subject=subject, email=payload.get("email"))


async def current_identity(authorization: str | None = Header(None)) -> Identity:
    """FastAPI dependency: the signed-in identity."""
    return decode_identity(authorization)


async def require_admin(authorization: str | None = Header(None)) -> Identity:
    """FastAPI dependency: the signed-in identity, which must be an admin."""
    identity = decode_identity(authorization)
    if not identity.is_admin:
        raise ForbiddenError()
    return identity


async def current_creator_id(
    identity: Identity = Depends(current_identity),
    db: AsyncSession = Depends(get_db),
) -> str:
    """FastAPI dependency: the creator record behind the signed-in identity."""
    from negosyo.services.creator_service import resolve_creator_id

    return await resolve_creator_id(db, identity)
