"""Authentication helpers and FastAPI security dependency.

This module provides utilities to issue and decode JWT tokens and a
FastAPI dependency `get_current_session` that validates the bearer token
and returns a `SessionContext` for the caller. Services receive that
context explicitly; nothing reads the session from ambient state.

A missing or bad token raises `AuthenticationError` (HTTP 401), which is
kept distinct from role failures (`AuthorizationError`, HTTP 403).
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import AuthenticationError
from .permissions import Role

logger = logging.getLogger("eksetasi.auth")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionContext:
    """The authenticated caller: the only identity services see."""
    user_id: int
    role: Role
    name: str = ''
    email: str = ''

    @classmethod
    def from_user(cls, user: models.User) -> "SessionContext":
        return cls(user_id=user.id, role=Role(user.role), name=user.name, email=user.email)

    def to_dict(self) -> dict:
        return {'id': self.user_id, 'name': self.name, 'email': self.email, 'role': self.role.value}


def create_token(user: models.User) -> str:
    """Sign a token carrying the user's id, contact details and role."""
    expire = models.utcnow() + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "role": Role(user.role).value,
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises
    `AuthenticationError` on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('token expired')
    except jwt.InvalidTokenError:
        raise AuthenticationError('invalid token')


def get_current_session(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
                        db: Session = Depends(get_session)) -> SessionContext:
    """FastAPI dependency that returns the authenticated caller.

    The role is read from the database rather than the token so that a
    role change made by an admin applies to tokens already issued.
    """
    if credentials is None:
        raise AuthenticationError('Authentication required')
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise AuthenticationError('invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        logger.info("token for unknown user_id=%s rejected", user_id)
        raise AuthenticationError('user not found')
    return SessionContext.from_user(user)
