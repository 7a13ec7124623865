"""
api/routes/health.py
--------------------
Liveness probe. Reports the configured storage backends; Postgres is pinged
only when results are persisted there.
"""
from __future__ import annotations

from fastapi import APIRouter

import config

router = APIRouter()


@router.get("/health", summary="Health check")
def health() -> dict:
    body = {
        "status": "ok",
        "service": "fairtrip-backend",
        "algorithm_version": config.ALGORITHM_VERSION,
        "result_backend": config.RESULT_BACKEND,
        "progress_backend": config.PROGRESS_BACKEND,
    }
    if config.PERSIST_RESULTS:
        from db.connection import ping
        body["database"] = "ok" if ping() else "unavailable"
    return body
