from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from campus_sos.api.routers import alerts, console, map_router, preferences
from campus_sos.infra.db import DB_AUTO_CREATE, check_db_ready, create_schema
from campus_sos.infra.logging_config import setup_logging
from campus_sos.infra.redis_state import check_redis_ready

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if DB_AUTO_CREATE:
        create_schema()
        logger.info("database schema created")
    yield


app = FastAPI(
    title="campus-sos",
    description="Campus emergency SOS alerts with a live admin console.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(alerts.router, prefix="/api/alerts", tags=["alerts"])
app.include_router(map_router.router, prefix="/api/map", tags=["map"])
app.include_router(preferences.router, prefix="/api/preferences", tags=["preferences"])
app.include_router(console.ws_router, tags=["console-ws"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
