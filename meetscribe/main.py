import logging
import os
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from meetscribe.context import AppContext
from meetscribe.routers.analysis import create_analysis_router
from meetscribe.routers.auth import create_auth_router
from meetscribe.routers.meetings import create_meetings_router
from meetscribe.routers.recording import create_recording_router
from meetscribe.routers.usage import create_usage_router
from meetscribe.services.analysis import AnalysisService
from meetscribe.services.auth import create_require_user
from meetscribe.services.config_store import ConfigStore
from meetscribe.services.logging_setup import configure_logging, enable_crash_logging
from meetscribe.services.meeting_store import MeetingStore
from meetscribe.services.recording_session import RecordingSessionManager
from meetscribe.services.speech import SpeechTokenIssuer
from meetscribe.services.user_store import UserStore

VERSION = "0.1.0"


def create_app(cwd: Optional[str] = None) -> FastAPI:
    cwd = cwd or os.getcwd()
    ctx = AppContext.from_cwd(cwd)
    ctx.ensure_dirs()

    configure_logging(ctx.logs_dir)
    logger = logging.getLogger("meetscribe.boot")
    logger.info("Boot: starting create_app cwd=%s", cwd)
    enable_crash_logging(ctx.logs_dir)

    config_store = ConfigStore(ctx.config_path)
    meeting_store = MeetingStore(ctx.meetings_dir)
    user_store = UserStore(ctx.users_dir, ctx.usage_dir)
    analysis_service = AnalysisService(config_store, ctx.prompts_dir)
    sessions = RecordingSessionManager(meeting_store, user_store, config_store)
    require_user = create_require_user(user_store)
    logger.info("Boot: stores ready data_dir=%s", ctx.data_dir)

    app = FastAPI(title="meetscribe", version=VERSION)
    app.state.ctx = ctx
    app.state.sessions = sessions
    app.add_middleware(
        SessionMiddleware,
        secret_key=config_store.session_secret(),
        session_cookie="meetscribe_session",
        same_site="lax",
    )

    app.include_router(create_auth_router(user_store, require_user))
    app.include_router(create_meetings_router(meeting_store, require_user))
    app.include_router(create_analysis_router(analysis_service, meeting_store, sessions, require_user))
    app.include_router(create_usage_router(user_store, meeting_store, require_user))
    app.include_router(
        create_recording_router(sessions, config_store, user_store, SpeechTokenIssuer(), require_user)
    )
    logger.info("Boot: routers mounted")

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "version": VERSION}

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await sessions.shutdown()
        logger.info("Recording sessions stopped")

    logger.info("Boot: create_app complete")
    return app
