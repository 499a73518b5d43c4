from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .api.leadership import router as leadership_router
from .services.hierarchy_errors import HierarchyError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Creates tables for all registered SQLModel models (idempotent)
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Namhatta Leadership API",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Hierarchy refusals keep the {"detail": ...} envelope ---
    @app.exception_handler(HierarchyError)
    async def hierarchy_error_handler(request: Request, exc: HierarchyError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "env": settings.env,
            "strict_parent_rank": settings.strict_parent_rank,
        }

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"name": settings.app_name, "version": settings.app_version}

    # --- API routers ---
    app.include_router(leadership_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(level=getattr(logging, str(settings.log_level).upper(), logging.INFO))
    import uvicorn

    # reload should be True in local dev, False in prod.
    logger.info("starting %s %s on %s:%s", settings.app_name, settings.app_version, settings.host, settings.port)
    uvicorn.run(
        "namhatta.main:app",
        host=settings.host,
        port=int(settings.port),
        reload=bool(settings.reload),
    )
