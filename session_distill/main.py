"""Session distill FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from session_distill import config
from session_distill.observability import initialize as initialize_observability, shutdown as shutdown_observability
from session_distill.routers.distill import journeys_router, sessions_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("session_distill")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Session distill starting up (project=%s)", config.PROJECT_DIR)
    initialize_observability(app)
    yield
    logger.info("Session distill shutting down")
    shutdown_observability(app)


app = FastAPI(
    title="Session Distill API",
    description="Distills recorded agent sessions into structured summaries",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN, "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(journeys_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "project_dir": str(config.PROJECT_DIR),
        "sessions_dir": "present" if config.sessions_dir(config.PROJECT_DIR).exists() else "missing",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("session_distill.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
