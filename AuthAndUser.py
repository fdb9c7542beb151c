from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
import logging

import secretmanager
from config import Settings
from dependencies import get_app_settings, get_store
from domain.user import CurrentUser
from services.relational_store import RelationalStore
ALGORITHM = "HS256"

logger = logging.getLogger('uvicorn.error')

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")


def get_secret_key(settings: Settings):
    if settings.SECRET_KEY_RESOURCE:
        return secretmanager.get_secret(settings.SECRET_KEY_RESOURCE)
    if settings.SECRET_KEY:
        return settings.SECRET_KEY
    raise RuntimeError("Neither SECRET_KEY nor SECRET_KEY_RESOURCE is configured")


def verify_password(plain_password, hashed_password):
    return bcrypt.checkpw(
        bytes(plain_password, encoding="utf-8"),
        bytes(hashed_password, encoding="utf-8"),
    )


def get_password_hash(password):
    return bcrypt.hashpw(
        bytes(password, encoding="utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


async def get_user_by(store: RelationalStore, **match):
    users = await store.select("users", match=match)
    if len(users) > 0:
        return users[0]


async def authenticate_user(store: RelationalStore, email: str, password: str):
    user = await get_user_by(store, email=email)
    if not user:
        return False
    if not verify_password(password, user["hashed_password"]):
        return False
    return user


def create_access_token(data: dict, secret_key: str, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)
    return encoded_jwt


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    store: Annotated[RelationalStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, get_secret_key(settings), algorithms=[ALGORITHM])
        user_id = int(payload.get("sub"))
    except (InvalidTokenError, TypeError, ValueError):
        raise credentials_exception
    user = await get_user_by(store, id=user_id)
    if user is None:
        logger.warning(f"Token presented for unknown user {user_id}")
        raise credentials_exception
    return CurrentUser(id=user["id"], username=user["username"], email=user["email"])
