import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from meetscribe.services.meeting_store import MeetingStore, MeetingValidationError


class MeetingFields(BaseModel):
    # Older clients send camelCase; the store normalizes both spellings.
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    start_time: Optional[Any] = None
    end_time: Optional[Any] = None
    status: Optional[str] = None
    participants: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    transcriptions: Optional[list[dict]] = None
    speaker_names: Optional[dict[str, str]] = None
    summary: Optional[dict] = None


def create_meetings_router(meeting_store: MeetingStore, require_user: Callable) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetscribe.api.meetings")

    @router.get("/api/meetings")
    def list_meetings(
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        user: dict = Depends(require_user),
    ) -> dict:
        return meeting_store.list(user["id"], status=status, search=search, page=page, limit=limit)

    @router.post("/api/meetings", status_code=201)
    def create_meeting(payload: MeetingFields, user: dict = Depends(require_user)) -> dict:
        try:
            return meeting_store.create(user["id"], payload.model_dump(exclude_none=True))
        except MeetingValidationError as exc:
            logger.warning("Meeting create rejected: %s", exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.get("/api/meetings/{meeting_id}")
    def get_meeting(meeting_id: str, user: dict = Depends(require_user)) -> dict:
        meeting = meeting_store.get(user["id"], meeting_id)
        if not meeting:
            raise HTTPException(status_code=404, detail="Meeting not found")
        return meeting

    @router.patch("/api/meetings/{meeting_id}")
    def update_meeting(
        meeting_id: str, payload: MeetingFields, user: dict = Depends(require_user)
    ) -> dict:
        try:
            meeting = meeting_store.update(
                user["id"], meeting_id, payload.model_dump(exclude_unset=True)
            )
        except MeetingValidationError as exc:
            logger.warning("Meeting update rejected: id=%s error=%s", meeting_id, exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not meeting:
            raise HTTPException(status_code=404, detail="Meeting not found")
        return meeting

    @router.delete("/api/meetings/{meeting_id}")
    def delete_meeting(meeting_id: str, user: dict = Depends(require_user)) -> dict:
        if not meeting_store.delete(user["id"], meeting_id):
            raise HTTPException(status_code=404, detail="Meeting not found")
        return {"message": "Meeting deleted successfully"}

    return router
