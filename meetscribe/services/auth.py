from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import HTTPException, Request, WebSocket

from meetscribe.services.user_store import UserStore

SESSION_USER_KEY = "user_id"
WS_UNAUTHORIZED_CLOSE_CODE = 4401

logger = logging.getLogger("meetscribe.auth")


def login_session(request: Request, user: dict) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user["id"]


def logout_session(request: Request) -> None:
    request.session.clear()


def session_user(user_store: UserStore, session: dict) -> Optional[dict]:
    user_id = session.get(SESSION_USER_KEY)
    if not user_id:
        return None
    user = user_store.get(user_id)
    if user is None:
        logger.info("Session references unknown user_id=%s", user_id)
    return user


def create_require_user(user_store: UserStore) -> Callable[[Request], dict]:
    """FastAPI dependency resolving the signed-in user or raising 401."""

    def require_user(request: Request) -> dict:
        user = session_user(user_store, request.session)
        if user is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user

    return require_user


async def websocket_user(user_store: UserStore, websocket: WebSocket) -> Optional[dict]:
    """Resolve the session user for a WebSocket, closing it with 4401 if absent."""
    user = session_user(user_store, websocket.session)
    if user is None:
        await websocket.close(code=WS_UNAUTHORIZED_CLOSE_CODE)
    return user
