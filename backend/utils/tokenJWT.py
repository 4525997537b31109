# utils/tokenJWT.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models.session import UserSession
from models.users import ADMIN, MODERATOR, ROLE_NAMES, TABLE_MODELS
from utils.exceptions import InvalidCredentials, Unauthorized, ValidationError
from utils.role_router import get_profile

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
COOKIE_NAME = "token"

# Bearer header is optional: browsers send the cookie instead
bearer_scheme = HTTPBearer(auto_error=False)


# Identity injected into routes once a token is verified
@dataclass
class AuthContext:
    id: int
    role_id: int
    table_name: str
    token: str
    profile: Any

    @property
    def role(self) -> str:
        return ROLE_NAMES.get(self.role_id, "student")


# Generate a new JWT access token
def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


# Mint an identity token for a profile row and record its session.
# Runs inside the caller's transaction; the caller commits.
def issue_token(db: Session, profile) -> str:
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(
        {"id": profile.id, "role_id": profile.role_id, "table_name": profile.table_name},
        expires_delta=expires_delta,
    )
    db.add(UserSession(user_id=profile.id, token=token, expires_at=datetime.utcnow() + expires_delta))
    db.flush()
    return token


def set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def clear_token_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True, secure=settings.COOKIE_SECURE, samesite="lax")


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(COOKIE_NAME)


# Retrieve the currently authenticated user based on the JWT token
def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthContext:
    token = _extract_token(request, credentials)
    if not token:
        raise InvalidCredentials("Token is missing", code="TOKEN_MISSING")

    try:
        payload = decode_token(token)
    except JWTError:
        raise Unauthorized("Invalid token", code="INVALID_TOKEN")

    user_id = payload.get("id")
    table_name = payload.get("table_name")
    if table_name not in TABLE_MODELS:
        raise ValidationError("Invalid token: unknown table", code="INVALID_TABLE_NAME")
    if user_id is None:
        raise Unauthorized("Invalid token", code="INVALID_TOKEN")

    # A token whose row moved to another table (role migration) or was deleted stops here
    profile = get_profile(db, user_id, table_name)

    session = (
        db.query(UserSession)
        .filter(UserSession.user_id == user_id, UserSession.token == token)
        .first()
    )
    if session is None or session.expires_at < datetime.utcnow():
        raise InvalidCredentials("Session has been revoked", code="SESSION_REVOKED")

    return AuthContext(
        id=profile.id,
        role_id=profile.role_id,
        table_name=table_name,
        token=token,
        profile=profile,
    )


# Dependency factory for role-based access control
def require_roles(*allowed_role_ids):
    def _checker(current_user: AuthContext = Depends(get_current_user)):
        if allowed_role_ids and current_user.role_id not in allowed_role_ids:
            raise Unauthorized("Access denied", code="ACCESS_DENIED")
        return current_user
    return _checker


require_moderator = require_roles(ADMIN, MODERATOR)
require_admin = require_roles(ADMIN)
