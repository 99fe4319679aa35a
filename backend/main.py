import logging
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings as default_settings
from engine.phase_machine import CrashEngine
from engine.scheduler import AsyncioScheduler, Scheduler
from services.broadcast_gateway import BroadcastGateway

logging.basicConfig(level=getattr(logging, default_settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

SERVICE_NAME = "aviator-socket-server"
AVAILABLE_ENDPOINTS = [
    "/", "/ping", "/health", "/debug", "/current-state", "/queue",
    "/trigger-next", "/force-start", "/test-round/{round}", "/ws",
]


def create_app(
    settings: Optional[Settings] = None,
    scheduler: Optional[Scheduler] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gateway = BroadcastGateway(disclose_early=settings.disclose_crash_point_early)
        engine = CrashEngine(
            scheduler=scheduler or AsyncioScheduler(),
            publisher=gateway,
            settings=settings,
            rng=rng,
        )
        app.state.gateway = gateway
        app.state.engine = engine
        logger.info("🚀 Round engine up — waiting for multiplier batches")
        logger.info(
            "🎮 Phases: betting(%dms) → flying → crashed → wait(%dms), tick %dms",
            settings.betting_phase_ms, settings.wait_phase_ms, settings.multiplier_update_interval_ms,
        )
        try:
            yield
        finally:
            logger.info("🛑 Shutting down round engine...")
            engine.shutdown()
            await gateway.close()
            logger.info("✅ Round engine stopped")

    app = FastAPI(
        title="Aviator Socket Server",
        version="0.1.0",
        description="Live crash-round engine: replays producer multipliers and streams them to viewers",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/")
    async def root():
        """Uptime probe."""
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping():
        return "pong"

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(status_code=404, content={
                "error": "Not Found",
                "message": "Endpoint not found",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            })
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    from routers.game_router import router as game_router
    from routers.ws_router import router as ws_router

    app.include_router(game_router)
    app.include_router(ws_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=default_settings.socket_port, reload=default_settings.debug)
