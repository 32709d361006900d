import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from meetscribe.services.auth import login_session, logout_session
from meetscribe.services.user_store import (
    UserExistsError,
    UserStore,
    UserValidationError,
    public_user,
)


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def create_auth_router(user_store: UserStore, require_user: Callable) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetscribe.api.auth")

    @router.post("/api/auth/register", status_code=201)
    def register(payload: RegisterRequest) -> dict:
        try:
            user = user_store.register(payload.name, payload.email, payload.password)
        except UserExistsError as exc:
            logger.warning("Registration rejected: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except UserValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"message": "User created successfully", "user": public_user(user)}

    @router.post("/api/auth/login")
    def login(payload: LoginRequest, request: Request) -> dict:
        user = user_store.authenticate(payload.email, payload.password)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid email or password")
        login_session(request, user)
        logger.info("Login: user_id=%s", user["id"])
        return {"user": public_user(user)}

    @router.post("/api/auth/logout")
    def logout(request: Request) -> dict:
        logout_session(request)
        return {"ok": True}

    @router.get("/api/auth/session")
    def session(user: dict = Depends(require_user)) -> dict:
        return {"user": public_user(user)}

    return router
