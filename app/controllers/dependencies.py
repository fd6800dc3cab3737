"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

import logging
from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.dependencies import PipelineServices
from app.models.user import User as UserModel, UserRole
from app.services.errors import AuthError
from app.utils import AuthenticationError, decode_access_token, secrets_match

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_services(request: Request) -> PipelineServices:
    return request.app.state.services


ServicesDep = Annotated[PipelineServices, Depends(get_services)]


async def get_session(services: ServicesDep) -> AsyncIterator[AsyncSession]:
    async with services.session_factory() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: SessionDep,
) -> UserModel:
    """Resolve and validate the user referenced by the bearer token."""

    try:
        payload = decode_access_token(token)
        user_id = int(payload.sub)
    except (AuthenticationError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from None

    result = await session.execute(select(UserModel).where(UserModel.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


CurrentUserDep = Annotated[UserModel, Depends(get_current_user)]


def _require_roles(*roles: UserRole):
    async def dependency(user: CurrentUserDep) -> UserModel:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency


InstructorDep = Annotated[
    UserModel, Depends(_require_roles(UserRole.INSTRUCTOR, UserRole.ADMIN))
]
AdminDep = Annotated[UserModel, Depends(_require_roles(UserRole.ADMIN))]


async def verify_webhook_secret(
    services: ServicesDep,
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """Check the worker's ``Authorization: Bearer <secret>`` header."""

    secret = services.settings.webhook.secret
    if secret is None or not secret.get_secret_value():
        logger.warning("WEBHOOK_SECRET is not configured; accepting unauthenticated webhook")
        return

    if not authorization:
        raise AuthError("Missing webhook authorization header", missing=True)

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Malformed webhook authorization header", missing=True)

    if not secrets_match(token.strip(), secret.get_secret_value()):
        raise AuthError("Invalid webhook secret", missing=False)


WebhookAuthDep = Depends(verify_webhook_secret)


__all__ = [
    "get_services",
    "get_session",
    "get_current_user",
    "verify_webhook_secret",
    "oauth2_scheme",
    "ServicesDep",
    "SessionDep",
    "CurrentUserDep",
    "InstructorDep",
    "AdminDep",
    "WebhookAuthDep",
]
