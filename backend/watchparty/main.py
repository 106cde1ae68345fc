import logging
import time

import socketio
import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from watchparty import config
from watchparty.gateway import SessionGateway
from watchparty.services.media import CommentsProxy, CommentsUnavailable
from watchparty.services.registry import RoomRegistry
from watchparty.services.room import VIDEO_ID_PATTERNS

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


def create_app(registry: RoomRegistry = None, comments: CommentsProxy = None,
               control_policy: str = config.CONTROL_POLICY) -> socketio.ASGIApp:
    registry = registry or RoomRegistry()
    comments = comments or CommentsProxy()
    origins = config.ALLOWED_ORIGINS
    started_at = time.time()

    app = FastAPI()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    sio = socketio.AsyncServer(
        async_mode='asgi',
        cors_allowed_origins=origins if origins != ["*"] else "*",
        ping_interval=10,
        ping_timeout=5,
    )
    gateway = SessionGateway(sio, registry, control_policy=control_policy)
    gateway.register()

    app.state.registry = registry
    app.state.gateway = gateway
    app.state.comments = comments

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "rooms": registry.room_count(),
            "users": registry.participant_count(),
            "uptime": time.time() - started_at,
        }

    @app.get("/api/comments/{video_id}")
    async def get_comments(video_id: str, sort_by: str = Query("top", pattern="^(top|new)$"), continuation: str = None):
        if not VIDEO_ID_PATTERNS[-1].match(video_id):
            raise HTTPException(status_code=400, detail="Invalid video id")
        try:
            return await comments.fetch(video_id, sort_by, continuation)
        except CommentsUnavailable as e:
            logger.error(f"Comments error: {e}")
            raise HTTPException(status_code=502, detail="Comments are unavailable right now")

    return socketio.ASGIApp(sio, app)


def run():
    logger.info(f"WatchParty server running on {config.HOST}:{config.PORT} (control policy: {config.CONTROL_POLICY})")
    uvicorn.run("watchparty.main:create_app", factory=True, host=config.HOST, port=config.PORT, workers=1, log_level="info")


if __name__ == "__main__":
    run()
