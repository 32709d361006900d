import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from meetscribe.services.meeting_store import MeetingStore
from meetscribe.services.user_store import (
    UserStore,
    UserValidationError,
    recording_time_summary,
)


class RecordingTimeRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    duration: float = Field(..., ge=0, description="Recorded seconds")


class TrackUsageRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    service: str
    duration: float = Field(..., ge=0)


def create_usage_router(
    user_store: UserStore, meeting_store: MeetingStore, require_user: Callable
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetscribe.api.usage")

    def _recompute(user: dict) -> dict:
        total = meeting_store.total_recorded_seconds(user["id"])
        user_store.set_recording_time_used(user["id"], total)
        return recording_time_summary(user, total)

    @router.get("/api/users/recording-time")
    def get_recording_time(user: dict = Depends(require_user)) -> dict:
        return _recompute(user)

    @router.post("/api/users/recording-time")
    def close_out_recording(payload: RecordingTimeRequest, user: dict = Depends(require_user)) -> dict:
        meeting = meeting_store.set_end_time_if_missing(user["id"], payload.meeting_id, payload.duration)
        if not meeting:
            raise HTTPException(status_code=404, detail="Meeting not found")
        return _recompute(user)

    @router.post("/api/usage/track")
    def track_usage(payload: TrackUsageRequest, user: dict = Depends(require_user)) -> dict:
        if payload.user_id != user["id"]:
            logger.warning("Usage tracking rejected for foreign user_id=%s", payload.user_id)
            raise HTTPException(status_code=401, detail="Unauthorized")
        try:
            record = user_store.track_usage(user["id"], payload.service, payload.duration)
        except UserValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "usage": record}

    return router
