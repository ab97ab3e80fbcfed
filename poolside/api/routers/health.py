"""Health check router."""

from datetime import datetime, timezone

from fastapi import APIRouter

from poolside.config import VERSION

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe.  The service is stateless, so there is nothing deeper to check."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/version")
async def health_version() -> dict:
    return {"version": VERSION}


@router.get("/")
async def root() -> dict:
    """Service banner with a map of the public endpoints."""
    return {
        "name": "Poolside Code API",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "storage": "/api/storage",
            "github": "/api/github",
            "chat": "/api/chat",
        },
    }
