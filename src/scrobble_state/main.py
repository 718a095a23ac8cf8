"""FastAPI application entrypoint for the reference backend."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scrobble_state.api.routes import router
from scrobble_state.config import settings

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# CORS configuration
# ---------------------------------------------------------------------------

_DEFAULT_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
}


def _get_allowed_origins() -> set[str]:
    origins = set(_DEFAULT_ORIGINS)
    if settings.allowed_origins:
        origins.update(o.strip() for o in settings.allowed_origins.split(",") if o.strip())
    return origins


_ALLOWED_ORIGINS = _get_allowed_origins()


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app.startup", allowed_origins=sorted(_ALLOWED_ORIGINS))
    yield
    logger.info("app.shutdown")


app = FastAPI(
    title="Scrobble State Reference API",
    description="Preferences and bulk metadata fetch endpoints consumed by the client state layer",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_ALLOWED_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
