"""
CathodeAnode FastAPI Application Entry Point.

Run with: uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.api.routes import (
    auth,
    chats,
    events,
    match,
    profiles,
    state,
)
from app.db.session import dispose_engine
from app.services.search_loops import search_loops

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    # Startup
    yield
    # Shutdown: no search loop may outlive the app
    await search_loops.stop_all()
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    description="Campus matchmaking and staged-reveal chat API",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(state.router)
app.include_router(profiles.router)
app.include_router(match.router)
app.include_router(chats.router)
app.include_router(events.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
