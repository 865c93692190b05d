"""FastAPI entrypoint for Werewolf Arena."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from packages.werewolf_core.engine.errors import WerewolfError

from .config import autostart_poller, config_from_env, cors_origins
from .routers.werewolf import router as werewolf_router
from .services.match_poller import start_match_poller, stop_match_poller
from .storage.werewolf import init_db as init_werewolf_db
from .storage.werewolf import ping as ping_werewolf_db

logging.basicConfig(
    level=getattr(logging, config_from_env().log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("werewolf_api")

app = FastAPI(title="Werewolf Arena API", version="0.1.0")

_cors_origins = cors_origins() or ["*"]
_cors_allow_credentials = "*" not in _cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=_cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(werewolf_router)


@app.exception_handler(WerewolfError)
async def _werewolf_error_handler(request: Request, exc: WerewolfError):
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict(), headers=headers)


@app.on_event("startup")
def startup() -> None:
    logger.info("[STARTUP] Werewolf Arena API starting up at %s", datetime.now(timezone.utc).isoformat())
    logger.info("[STARTUP] Engine config: %s", config_from_env().as_dict())
    try:
        logger.info("[STARTUP] Initializing werewolf database...")
        init_werewolf_db()
        logger.info("[STARTUP] Werewolf database initialized successfully")
    except Exception as e:
        logger.error("[STARTUP] Failed to initialize werewolf database: %s", e)
        raise

    if autostart_poller():
        start_match_poller()
        logger.info("[STARTUP] Background match phase poller autostart is enabled")

    logger.info("[STARTUP] Werewolf Arena API startup complete")


@app.on_event("shutdown")
def shutdown() -> None:
    stop_match_poller()


@app.get("/healthz")
def healthz():
    logger.debug("[HEALTH] Health check requested")
    try:
        ping_werewolf_db()
    except Exception as exc:
        logger.warning("[HEALTH] DB ping failed: %s", exc)
        return JSONResponse(status_code=503, content={"status": "error", "detail": str(exc)})
    return {"status": "ok"}
