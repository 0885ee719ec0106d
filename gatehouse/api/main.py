"""
gatehouse.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn gatehouse.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from gatehouse.api.auth import router as auth_router  # noqa: E402
from gatehouse.api.deps import get_config, get_engine  # noqa: E402
from gatehouse.api.routes.alerts import router as alerts_router  # noqa: E402
from gatehouse.api.routes.estates import router as estates_router  # noqa: E402
from gatehouse.api.routes.gate import router as gate_router  # noqa: E402
from gatehouse.api.routes.passes import router as passes_router  # noqa: E402
from gatehouse.api.routes.reports import router as reports_router  # noqa: E402
from gatehouse.api.routes.visitors import router as visitors_router  # noqa: E402
from gatehouse.exceptions import GatehouseError  # noqa: E402
from gatehouse.services.sweeper import ExpirySweeper  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, run the sweeper."""
    engine = get_engine()
    sweeper = ExpirySweeper(engine, get_config())
    sweeper.start()
    logger.info("Gatehouse API started — engine ready (%s)", engine.url.database)
    yield
    await sweeper.stop()
    logger.info("Gatehouse API shutting down")


app = FastAPI(
    title="Gatehouse Visitor Access API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatehouseError)
async def gatehouse_error_handler(request: Request, exc: GatehouseError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Gate routes first: /estate/visitor-pass/… must not be read as an estate id.
app.include_router(auth_router, prefix="/api")
app.include_router(gate_router, prefix="/api")
app.include_router(estates_router, prefix="/api")
app.include_router(visitors_router, prefix="/api")
app.include_router(passes_router, prefix="/api")
app.include_router(reports_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
