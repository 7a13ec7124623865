"""
api/server.py
-------------
FastAPI application entry point.

Run dev server:
    cd backend
    uvicorn api.server:app --reload --port 8000

Endpoints:
    GET  /v1/health
    POST /v1/trips/{trip_id}/optimize
    GET  /v1/trips/{trip_id}/progress
"""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from api.routes import health, optimize
from modules.optimization.errors import (
    ComputationError,
    ExternalDependencyError,
    OptimizationError,
)

app = FastAPI(
    title="FairTrip Optimization API",
    version=config.ALGORITHM_VERSION,
    description=(
        "Fair group-trip optimizer: normalizes member ratings, selects places "
        "fairly, sequences a route and splits it into daily schedules."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Allow the web frontend (any origin during development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OptimizationError)
async def optimization_error_handler(request: Request, exc: OptimizationError) -> JSONResponse:
    """ValidationError / InsufficientDataError -> 422, Computation -> 500, External -> 502."""
    if isinstance(exc, ComputationError):
        status = 500
    elif isinstance(exc, ExternalDependencyError):
        status = 502
    else:
        status = 422
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


app.include_router(health.router,   prefix="/v1",       tags=["Health"])
app.include_router(optimize.router, prefix="/v1/trips", tags=["Optimize"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
