"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens and two FastAPI
dependencies: `get_current_user` validates the bearer token and returns
the corresponding `User`, while `get_optional_user` does the same for
public routes and yields `None` for anonymous callers.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

from typing import Optional
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import engine
from . import models, repositories

bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail='invalid token')


# Shared by the required and optional dependencies; tokens carry `user_id`.
def _load_user(token: str) -> models.User:
    payload = decode_token(token)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    with Session(engine) as session:
        user = repositories.UserRepository(session).get(user_id)
        if not user:
            raise HTTPException(status_code=401, detail='user not found')
        return user


def get_current_user(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and performs a database lookup to return the `User` object. It raises
    an HTTPException(401) for any authentication issue.
    """
    return _load_user(credentials.credentials)


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer_scheme)) -> Optional[models.User]:
    """Like `get_current_user` but returns `None` when no token is sent.

    A token that is present but invalid is still rejected with 401.
    """
    if credentials is None:
        return None
    return _load_user(credentials.credentials)
