import json
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from meetscribe.services.auth import websocket_user
from meetscribe.services.config_store import ConfigStore
from meetscribe.services.recording_session import (
    MeetingNotFoundError,
    RecordingLimitError,
    RecordingSession,
    RecordingSessionManager,
    SessionNotFoundError,
)
from meetscribe.services.speech import SpeechServiceError, SpeechStreamConfig, SpeechTokenIssuer
from meetscribe.services.transcript import RecordingInProgressError
from meetscribe.services.user_store import UserStore

WS_SESSION_NOT_FOUND_CLOSE_CODE = 4404


class StartRecordingRequest(BaseModel):
    meeting_id: Optional[str] = Field(None, description="Continue recording into an existing meeting")
    title: Optional[str] = Field(None, max_length=100)


class OpenMeetingRequest(BaseModel):
    meeting_id: str = Field(..., min_length=1)
    transcriptions: Optional[list[dict]] = None
    speaker_names: Optional[dict[str, str]] = None


class RenameSpeakerRequest(BaseModel):
    name: str


def create_recording_router(
    sessions: RecordingSessionManager,
    config_store: ConfigStore,
    user_store: UserStore,
    token_issuer: SpeechTokenIssuer,
    require_user: Callable,
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetscribe.api.recording")

    def _session(user: dict, session_id: str) -> RecordingSession:
        try:
            return sessions.get(user["id"], session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    def _state_response(session: RecordingSession) -> dict:
        return {**session.state(), "notifications": session.drain_notifications()}

    @router.get("/api/speech/token")
    def speech_token(user: dict = Depends(require_user)) -> dict:
        try:
            config = SpeechStreamConfig.from_config(config_store.section("speech"))
        except SpeechServiceError as exc:
            logger.warning("Speech token unavailable: %s", exc)
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        try:
            return token_issuer.issue(config)
        except SpeechServiceError as exc:
            logger.warning("Speech token request failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @router.post("/api/recording/start", status_code=201)
    async def start_recording(
        payload: StartRecordingRequest, user: dict = Depends(require_user)
    ) -> dict:
        try:
            session = await sessions.start(user["id"], meeting_id=payload.meeting_id, title=payload.title)
        except RecordingLimitError as exc:
            logger.warning("Recording refused: user_id=%s error=%s", user["id"], exc)
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _state_response(session)

    @router.post("/api/recording/open", status_code=201)
    async def open_meeting(payload: OpenMeetingRequest, user: dict = Depends(require_user)) -> dict:
        initial = payload.model_dump(include={"transcriptions", "speaker_names"}, exclude_none=True)
        try:
            session = await sessions.open_meeting(user["id"], payload.meeting_id, initial or None)
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _state_response(session)

    @router.get("/api/recording/{session_id}")
    async def recording_state(session_id: str, user: dict = Depends(require_user)) -> dict:
        return _state_response(_session(user, session_id))

    @router.post("/api/recording/{session_id}/events")
    async def relay_event(
        session_id: str, payload: dict = Body(...), user: dict = Depends(require_user)
    ) -> dict:
        session = _session(user, session_id)
        try:
            result = session.handle_payload(payload)
        except SpeechServiceError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {**result["state"], "notifications": result["notifications"]}

    @router.websocket("/api/recording/{session_id}/stream")
    async def relay_stream(websocket: WebSocket, session_id: str) -> None:
        user = await websocket_user(user_store, websocket)
        if user is None:
            return
        try:
            session = sessions.get(user["id"], session_id)
        except SessionNotFoundError:
            await websocket.close(code=WS_SESSION_NOT_FOUND_CLOSE_CODE)
            return

        await websocket.accept()
        logger.info("Relay connected: session_id=%s", session_id)
        await websocket.send_json({"type": "state", **_state_response(session)})
        try:
            while True:
                message = await websocket.receive_text()
                try:
                    result = session.handle_payload(json.loads(message))
                except SpeechServiceError as exc:
                    await websocket.send_json({"type": "error", "message": str(exc)})
                    await websocket.close()
                    break
                except ValueError as exc:
                    await websocket.send_json({"type": "error", "message": str(exc)})
                    continue
                await websocket.send_json(
                    {"type": "state", **result["state"], "notifications": result["notifications"]}
                )
        except WebSocketDisconnect:
            logger.info("Relay disconnected: session_id=%s", session_id)

    @router.post("/api/recording/{session_id}/stop")
    async def stop_recording(session_id: str, user: dict = Depends(require_user)) -> dict:
        session = _session(user, session_id)
        await session.stop()
        return _state_response(session)

    @router.post("/api/recording/{session_id}/save")
    async def save_recording(session_id: str, user: dict = Depends(require_user)) -> dict:
        session = _session(user, session_id)
        try:
            await session.save_now()
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except OSError as exc:
            logger.exception("Explicit save failed: session_id=%s", session_id)
            raise HTTPException(status_code=500, detail="Failed to save transcript") from exc
        return _state_response(session)

    @router.patch("/api/recording/{session_id}/speakers/{raw_speaker_id}")
    async def rename_speaker(
        session_id: str,
        raw_speaker_id: str,
        payload: RenameSpeakerRequest,
        user: dict = Depends(require_user),
    ) -> dict:
        session = _session(user, session_id)
        try:
            renamed = await session.rename_speaker(raw_speaker_id, payload.name)
        except RecordingInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except MeetingNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except OSError as exc:
            logger.exception("Rename save failed: session_id=%s", session_id)
            raise HTTPException(
                status_code=503, detail="Speaker renamed but not saved; retry the save"
            ) from exc
        return {"renamed": renamed, **_state_response(session)}

    @router.get("/api/recording/{session_id}/transcript")
    async def flattened_transcript(session_id: str, user: dict = Depends(require_user)) -> dict:
        return {"transcript": _session(user, session_id).flattened()}

    @router.delete("/api/recording/{session_id}")
    async def discard_session(session_id: str, user: dict = Depends(require_user)) -> dict:
        try:
            state = await sessions.discard(user["id"], session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return state

    return router
