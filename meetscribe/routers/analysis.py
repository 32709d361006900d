import asyncio
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from meetscribe.services.analysis import AnalysisService, format_transcript_lines
from meetscribe.services.llm import LLMProviderError
from meetscribe.services.meeting_store import MeetingStore
from meetscribe.services.recording_session import (
    RecordingSession,
    RecordingSessionManager,
    SessionNotFoundError,
)


class TranscriptLine(BaseModel):
    speaker: str
    text: str


class AnalyzeRequest(BaseModel):
    transcript: list[TranscriptLine] = Field(..., min_length=1)
    meeting_id: Optional[str] = Field(None, description="Persist the analysis on this meeting")


class QueryRequest(BaseModel):
    transcript: list[TranscriptLine] = Field(..., min_length=1)
    question: str = Field(..., min_length=1)


class SessionQueryRequest(BaseModel):
    question: str = Field(..., min_length=1)


def create_analysis_router(
    analysis_service: AnalysisService,
    meeting_store: MeetingStore,
    sessions: RecordingSessionManager,
    require_user: Callable,
) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("meetscribe.api.analysis")

    def _session(user: dict, session_id: str) -> RecordingSession:
        try:
            return sessions.get(user["id"], session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @router.post("/api/meeting/analyze")
    def analyze_meeting(payload: AnalyzeRequest, user: dict = Depends(require_user)) -> dict:
        if payload.meeting_id and not meeting_store.get(user["id"], payload.meeting_id):
            raise HTTPException(status_code=404, detail="Meeting not found")
        transcript = format_transcript_lines([line.model_dump() for line in payload.transcript])
        try:
            analysis = analysis_service.analyze(transcript)
        except LLMProviderError as exc:
            logger.warning("Analysis failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        result = analysis.to_dict()
        if payload.meeting_id:
            meeting_store.update(user["id"], payload.meeting_id, {"summary": result})
            logger.info("Analysis saved: meeting_id=%s", payload.meeting_id)
        return result

    @router.post("/api/meeting/query")
    def query_meeting(payload: QueryRequest, user: dict = Depends(require_user)) -> dict:
        if not payload.question.strip():
            raise HTTPException(status_code=400, detail="Question is required")
        transcript = format_transcript_lines([line.model_dump() for line in payload.transcript])
        try:
            answer = analysis_service.query(transcript, payload.question)
        except LLMProviderError as exc:
            logger.warning("Query failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"answer": answer}

    @router.post("/api/recording/{session_id}/analyze")
    async def analyze_session(session_id: str, user: dict = Depends(require_user)) -> dict:
        session = _session(user, session_id)
        transcript = session.flattened()
        if not transcript.strip():
            raise HTTPException(status_code=400, detail="Transcript is empty")
        try:
            analysis = await asyncio.to_thread(analysis_service.analyze, transcript)
        except LLMProviderError as exc:
            logger.warning("Session analysis failed: session_id=%s error=%s", session_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        result = analysis.to_dict()
        meeting = await asyncio.to_thread(
            meeting_store.update, user["id"], session.meeting_id, {"summary": result}
        )
        if meeting is None:
            raise HTTPException(status_code=404, detail="Meeting not found")
        logger.info("Analysis saved: meeting_id=%s session_id=%s", session.meeting_id, session_id)
        return result

    @router.post("/api/recording/{session_id}/query")
    async def query_session(
        session_id: str, payload: SessionQueryRequest, user: dict = Depends(require_user)
    ) -> dict:
        session = _session(user, session_id)
        transcript = session.flattened()
        if not transcript.strip():
            raise HTTPException(status_code=400, detail="Transcript is empty")
        if not payload.question.strip():
            raise HTTPException(status_code=400, detail="Question is required")
        try:
            answer = await asyncio.to_thread(analysis_service.query, transcript, payload.question)
        except LLMProviderError as exc:
            logger.warning("Session query failed: session_id=%s error=%s", session_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"answer": answer}

    return router
