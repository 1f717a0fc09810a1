"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, and includes all route modules.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from canvasflow.config import API_HOST, API_PORT, CORS_ORIGINS
from canvasflow.logging_config import configure_logging

from .database import close_db, init_db

logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database lifecycle."""
    await init_db()
    logger.info("canvasflow API started")
    yield
    await close_db()


app = FastAPI(title="canvasflow API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from .routes.trigger import router as trigger_router  # noqa: E402
from .routes.logs import router as logs_router  # noqa: E402

app.include_router(trigger_router)
app.include_router(logs_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("canvasflow_api.main:app", host=API_HOST, port=API_PORT)
