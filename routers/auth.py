from datetime import timedelta
from typing import Annotated
import logging

from fastapi import APIRouter, Depends, HTTPException, status

import AuthAndUser as auth
from config import Settings
from dependencies import get_activity_log, get_app_settings, get_store
from domain.user import (
    CurrentUser, LoginRequest, LoginResponse, RegisterResponse, RegisterUser, UserSummary,
)
from services.activity_log import ActivityAction, ActivityLog
from services.relational_store import RelationalStore, StoreConstraintError, StoreError

logger = logging.getLogger('uvicorn.error')

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"]
)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_in: RegisterUser,
    store: Annotated[RelationalStore, Depends(get_store)],
    activity_log: Annotated[ActivityLog, Depends(get_activity_log)],
):
    try:
        if await auth.get_user_by(store, email=user_in.email):
            raise HTTPException(status_code=409, detail="Email already registered.")
        if await auth.get_user_by(store, username=user_in.username):
            raise HTTPException(status_code=409, detail="Username already taken.")
        user = await store.insert("users", {
            "username": user_in.username,
            "email": user_in.email,
            "hashed_password": auth.get_password_hash(user_in.password),
        })
    except StoreConstraintError as e:
        # Lost a race with a concurrent registration for the same name or email
        logger.warning(f"Duplicate registration for {user_in.email}: {e.message}")
        raise HTTPException(status_code=409, detail={"error": "User already exists.", "details": e.message})
    except StoreError as e:
        logger.error(f"Error registering user {user_in.username}: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to register user.")

    logger.info(f"Registered user {user['id']} ({user['username']})")
    activity_log.dispatch(user["id"], ActivityAction.REGISTER_SUCCESS, {"username": user["username"]})
    return RegisterResponse(message="User registered successfully", userId=user["id"])


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    store: Annotated[RelationalStore, Depends(get_store)],
    activity_log: Annotated[ActivityLog, Depends(get_activity_log)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    try:
        user = await auth.authenticate_user(store, credentials.email, credentials.password)
    except StoreError as e:
        logger.error(f"Error looking up user for login: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to log in.")
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = auth.create_access_token(
        data={"sub": str(user["id"]), "username": user["username"]},
        secret_key=auth.get_secret_key(settings),
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    activity_log.dispatch(user["id"], ActivityAction.LOGIN_SUCCESS, {"username": user["username"]})
    return LoginResponse(
        message="Login successful",
        token=access_token,
        user=UserSummary(id=user["id"], username=user["username"]),
    )


@router.get("/me", response_model=CurrentUser)
async def read_users_me(
    current_user: Annotated[CurrentUser, Depends(auth.get_current_user)],
):
    return current_user
