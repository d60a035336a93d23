"""FastAPI application exposing the agent build API."""

from __future__ import annotations

import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .routes import builds, internal


load_dotenv()

app = FastAPI(
    title=os.getenv("API_TITLE", "Agentforge Build API"),
    version=os.getenv("API_VERSION", "1.0.0"),
    description="Queue agent-specification builds and follow their progress.",
)


def _configure_cors(api_app: FastAPI) -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "").strip()
    if not raw_origins:
        return

    origins: List[str] = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    if not origins:
        return

    api_app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_configure_cors(app)


@app.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    """Simple health endpoint for load balancers and smoke tests."""

    return {"status": "ok"}


app.include_router(builds.router, prefix="/v1", tags=["builds"])
app.include_router(internal.router, prefix="/v1", tags=["internal"])
