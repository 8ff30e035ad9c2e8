"""Health check API routes.

Provides:
- GET /health: process health plus a summary of circuit breaker states
- GET /health/circuit-breakers: full per-operation-class breaker state
"""

import time
from typing import Any

from fastapi import APIRouter, status

from leadsync.api.deps import Breakers

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_VERSION = "1.0.0"


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(breakers: Breakers) -> dict[str, Any]:
    """Overall health. ``degraded`` while any circuit is open."""
    snapshot = breakers.snapshot()
    any_open = any(b["is_open"] for b in snapshot.values())
    return {
        "status": "degraded" if any_open else "healthy",
        "version": _VERSION,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "circuit_breakers": {name: b["state"] for name, b in snapshot.items()},
    }


@router.get("/circuit-breakers", status_code=status.HTTP_200_OK)
async def circuit_breakers(breakers: Breakers) -> dict[str, Any]:
    """Breaker state per operation class (only classes that have failed)."""
    return {"circuit_breakers": breakers.snapshot()}
