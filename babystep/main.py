from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CONFIG
from .routes import caregivers as caregiver_routes
from .routes import digest as digest_routes
from .routes import realtime as realtime_routes
from .routes import session as session_routes
from .routes import shifts as shift_routes
from .routes import voice as voice_routes

logging.basicConfig(level=CONFIG.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="BabyStep API",
    version="0.1.0",
    description="Shared caregiver shifts, recovery tracking and daily digests",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(shift_routes.router)
app.include_router(caregiver_routes.router)
app.include_router(voice_routes.router)
app.include_router(digest_routes.router)
app.include_router(realtime_routes.router)
app.include_router(session_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {"message": "BabyStep API ready"}
