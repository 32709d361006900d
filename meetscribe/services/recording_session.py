"""Server-side hosts for the transcript engine.

A RecordingSession owns one TranscriptReconciler, its autosave loop and the
relayed speech stream feeding it. The manager keeps sessions in memory keyed
by session id and only ever hands a session back to the user who owns it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from meetscribe.services.config_store import ConfigStore
from meetscribe.services.meeting_store import MeetingStore
from meetscribe.services.speech import (
    RelayedSpeechStream,
    SpeechServiceError,
    SpeechStreamConfig,
)
from meetscribe.services.transcript import (
    AutosaveLoop,
    TranscriptReconciler,
    TranscriptionEvent,
    now_ms,
)
from meetscribe.services.user_store import DEFAULT_RECORDING_TIME_LIMIT, UserStore, UserValidationError


class SessionNotFoundError(RuntimeError):
    pass


class MeetingNotFoundError(RuntimeError):
    pass


class RecordingLimitError(RuntimeError):
    pass


class RecordingSession:
    def __init__(
        self,
        *,
        user_id: str,
        meeting_id: str,
        meeting_store: MeetingStore,
        user_store: UserStore,
        autosave_interval: float,
        speech_config: Optional[SpeechStreamConfig] = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.user_id = user_id
        self.meeting_id = meeting_id
        self.speech_config = speech_config
        self._meeting_store = meeting_store
        self._user_store = user_store
        self._notifications: list[dict] = []
        self._engine = TranscriptReconciler(on_notify=self._notify)
        self._stream = RelayedSpeechStream(speech_config)
        self._save_lock = asyncio.Lock()
        self._stop_lock = asyncio.Lock()
        self._autosave = AutosaveLoop(
            interval=autosave_interval,
            should_save=self._should_autosave,
            save=self._persist,
            on_error=self._on_save_error,
        )
        self.started_at: Optional[int] = None
        self.stopped_at: Optional[int] = None
        self.last_active = now_ms()
        self._logger = logging.getLogger("meetscribe.recording")

    @property
    def engine(self) -> TranscriptReconciler:
        return self._engine

    @property
    def autosave(self) -> AutosaveLoop:
        return self._autosave

    @property
    def is_recording(self) -> bool:
        return self._engine.is_recording

    # ── Notifications ──────────────────────────────────────────────────

    def _notify(self, message: dict) -> None:
        self._notifications.append(message)

    def _on_save_error(self, exc: Exception) -> None:
        self._notify({"type": "error", "message": f"Autosave failed: {exc}"})

    def drain_notifications(self) -> list[dict]:
        drained, self._notifications = self._notifications, []
        return drained

    def state(self) -> dict:
        snapshot = self._engine.snapshot()
        return {
            "session_id": self.session_id,
            "meeting_id": self.meeting_id,
            "recording": self.is_recording,
            "speaker_identified": self._engine.speaker_identified,
            "speaker_names": snapshot["speaker_names"],
            "transcriptions": snapshot["transcriptions"],
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "speech": self.speech_config.public_dict() if self.speech_config else None,
        }

    # ── Lifecycle ──────────────────────────────────────────────────────

    def begin(self) -> None:
        self.started_at = now_ms()
        self._engine.begin_recording()
        self._stream.start(self._engine.handle_event)
        self._autosave.start()
        self._logger.info(
            "Recording started: session_id=%s meeting_id=%s", self.session_id, self.meeting_id
        )

    def touch(self) -> None:
        self.last_active = now_ms()

    async def stop(self) -> dict:
        # Concurrent callers (stop racing discard or shutdown) wait for the first.
        async with self._stop_lock:
            if not self.is_recording:
                return self.state()
            await self._finish_recording()
        return self.state()

    async def _finish_recording(self) -> None:
        try:
            self._stream.stop()
        finally:
            await self._autosave.stop()
        self.stopped_at = now_ms()
        self.touch()
        self._engine.end_recording()

        elapsed = max(0.0, (self.stopped_at - (self.started_at or self.stopped_at)) / 1000)
        end_time = datetime.fromtimestamp(self.stopped_at / 1000, tz=timezone.utc).isoformat()
        try:
            await self._persist(end_time=end_time, status="completed")
        except (OSError, MeetingNotFoundError) as exc:
            self._logger.exception("Final save failed: session_id=%s", self.session_id)
            self._notify({"type": "error", "message": f"Final save failed: {exc}"})
        try:
            await asyncio.to_thread(self._record_usage, elapsed)
        except (OSError, UserValidationError) as exc:
            self._logger.exception("Usage accounting failed: session_id=%s", self.session_id)
            self._notify({"type": "error", "message": f"Usage accounting failed: {exc}"})
        self._logger.info(
            "Recording stopped: session_id=%s utterances=%s elapsed=%.1fs",
            self.session_id,
            len(self._engine),
            elapsed,
        )

    def _record_usage(self, elapsed: float) -> None:
        self._user_store.track_usage(self.user_id, "speech", round(elapsed, 3))
        total = self._meeting_store.total_recorded_seconds(self.user_id)
        self._user_store.set_recording_time_used(self.user_id, total)

    # ── Events and edits ───────────────────────────────────────────────

    def handle_payload(self, payload: dict) -> dict:
        """Feed one relayed recognition result to the engine.

        Raises SpeechServiceError when the session is not recording and
        ValueError for malformed payloads.
        """
        event: TranscriptionEvent = self._stream.push(payload)
        self._logger.debug(
            "Event: session_id=%s final=%s speaker=%s", self.session_id, event.is_final, event.raw_speaker_id
        )
        return {"state": self.state(), "notifications": self.drain_notifications()}

    async def rename_speaker(self, raw_speaker_id: str, new_name: str) -> bool:
        changed = self._engine.rename_speaker(raw_speaker_id, new_name)
        if changed and not self.is_recording:
            await self._persist()
        return changed

    async def save_now(self) -> None:
        await self._persist()

    def flattened(self) -> str:
        return self._engine.flatten_for_analysis()

    # ── Persistence ────────────────────────────────────────────────────

    def _should_autosave(self) -> bool:
        return self.is_recording and len(self._engine) > 0

    async def _persist(self, **extra) -> None:
        async with self._save_lock:
            partial = {**self._engine.snapshot(), **extra}
            meeting = await asyncio.to_thread(
                self._meeting_store.update, self.user_id, self.meeting_id, partial
            )
        if meeting is None:
            raise MeetingNotFoundError(f"Meeting {self.meeting_id} no longer exists")
        self._logger.debug(
            "Saved: session_id=%s meeting_id=%s utterances=%s",
            self.session_id,
            self.meeting_id,
            len(partial["transcriptions"]),
        )


SESSION_IDLE_TTL_SECONDS = 30 * 60


class RecordingSessionManager:
    """In-memory registry of recording sessions.

    A user holds at most one session per meeting. Stopped sessions stay
    available for renames and analysis until they sit idle longer than
    ``idle_ttl`` seconds, then they are evicted on the next start or open.
    """

    def __init__(
        self,
        meeting_store: MeetingStore,
        user_store: UserStore,
        config_store: ConfigStore,
        idle_ttl: float = SESSION_IDLE_TTL_SECONDS,
    ) -> None:
        self._meeting_store = meeting_store
        self._user_store = user_store
        self._config = config_store
        self._idle_ttl = idle_ttl
        self._sessions: dict[str, RecordingSession] = {}
        self._logger = logging.getLogger("meetscribe.recording")

    def _speech_config(self) -> Optional[SpeechStreamConfig]:
        try:
            return SpeechStreamConfig.from_config(self._config.section("speech"))
        except SpeechServiceError as exc:
            self._logger.warning("Speech config unavailable: %s", exc)
            return None

    def _new_session(self, user_id: str, meeting_id: str) -> RecordingSession:
        session = RecordingSession(
            user_id=user_id,
            meeting_id=meeting_id,
            meeting_store=self._meeting_store,
            user_store=self._user_store,
            autosave_interval=self._config.autosave_interval(),
            speech_config=self._speech_config(),
        )
        self._sessions[session.session_id] = session
        return session

    def _find(self, user_id: str, meeting_id: str) -> Optional[RecordingSession]:
        for session in self._sessions.values():
            if session.user_id == user_id and session.meeting_id == meeting_id:
                return session
        return None

    def evict_idle(self) -> int:
        cutoff = now_ms() - int(self._idle_ttl * 1000)
        idle = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.is_recording and session.last_active < cutoff
        ]
        for session_id in idle:
            del self._sessions[session_id]
        if idle:
            self._logger.info("Evicted idle sessions: count=%s", len(idle))
        return len(idle)

    def _check_recording_limit(self, user_id: str) -> None:
        user = self._user_store.get(user_id) or {}
        limit = int(user.get("recording_time_limit") or DEFAULT_RECORDING_TIME_LIMIT)
        used = self._meeting_store.total_recorded_seconds(user_id)
        if used >= limit:
            raise RecordingLimitError("Recording time limit reached")

    async def start(
        self, user_id: str, meeting_id: Optional[str] = None, title: Optional[str] = None
    ) -> RecordingSession:
        self.evict_idle()
        if meeting_id:
            existing = self._find(user_id, meeting_id)
            if existing is not None and existing.is_recording:
                existing.touch()
                return existing
        await asyncio.to_thread(self._check_recording_limit, user_id)
        if meeting_id:
            meeting = await asyncio.to_thread(
                self._meeting_store.update, user_id, meeting_id, {"status": "in-progress"}
            )
            if meeting is None:
                raise MeetingNotFoundError("Meeting not found")
        else:
            now = datetime.now(timezone.utc)
            meeting = await asyncio.to_thread(
                self._meeting_store.create,
                user_id,
                {
                    "title": (title or "").strip() or f"Meeting {now:%Y-%m-%d %H:%M}",
                    "start_time": now.isoformat(),
                    "status": "in-progress",
                },
            )
        stale = self._find(user_id, meeting["id"])
        if stale is not None:
            self._sessions.pop(stale.session_id, None)
        session = self._new_session(user_id, meeting["id"])
        if meeting.get("transcriptions"):
            session.engine.load_from_persisted(meeting)
        session.begin()
        return session

    async def open_meeting(
        self, user_id: str, meeting_id: str, initial: Optional[dict] = None
    ) -> RecordingSession:
        meeting = await asyncio.to_thread(self._meeting_store.get, user_id, meeting_id)
        if meeting is None:
            raise MeetingNotFoundError("Meeting not found")
        self.evict_idle()
        session = self._find(user_id, meeting_id)
        if session is not None and session.is_recording:
            session.touch()
            return session
        if session is None:
            session = self._new_session(user_id, meeting_id)
        session.touch()
        initial = initial or {}
        session.engine.load_from_persisted(
            meeting,
            initial.get("transcriptions"),
            initial.get("speaker_names"),
        )
        self._logger.info(
            "Meeting opened: session_id=%s meeting_id=%s utterances=%s",
            session.session_id,
            meeting_id,
            len(session.engine),
        )
        return session

    def get(self, user_id: str, session_id: str) -> RecordingSession:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError("Recording session not found")
        session.touch()
        return session

    async def discard(self, user_id: str, session_id: str) -> dict:
        session = self.get(user_id, session_id)
        try:
            state = await session.stop()
        finally:
            self._sessions.pop(session_id, None)
        self._logger.info("Session discarded: session_id=%s", session_id)
        return state

    async def shutdown(self) -> None:
        for session_id, session in list(self._sessions.items()):
            try:
                await session.stop()
            except Exception:
                self._logger.exception("Failed to stop session on shutdown: %s", session_id)
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
