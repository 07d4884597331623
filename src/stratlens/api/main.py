from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stratlens.api.routes_projects import router as projects_router
from stratlens.api.routes_runs import router as runs_router
from stratlens.config.logging import configure_logging
from stratlens.config.settings import settings
from stratlens.db.engine import build_engine, ping_db

configure_logging()

app = FastAPI(title="stratlens")

# Local dev CORS (same-origin in production)
cors_env = os.getenv("CORS_ORIGINS", settings.cors_origins)
cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes under /api
app.include_router(runs_router, prefix="/api")
app.include_router(projects_router, prefix="/api")


@app.get("/api/health")
def health() -> dict:
    engine = build_engine()
    db = ping_db(engine)
    return {
        "status": "ok" if db.ok else "degraded",
        "db": {"ok": db.ok, "detail": db.detail},
        "pipeline_version": settings.pipeline_version,
    }


@app.get("/health")
def health_root() -> dict:
    return health()
