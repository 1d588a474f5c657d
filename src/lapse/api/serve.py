"""API server for ``lapse serve``.

Mounts the versioned ``/api/v1/`` routers with CORS.  The database schema is
created on startup if it does not exist yet.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app):
    from lapse.db.database import get_database

    get_database().create_all()
    yield


def create_api_app():
    """Build the FastAPI application with all v1 routers."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from lapse import __version__
    from lapse.api.v1 import mount_v1_routers
    from lapse.config import get_settings

    app = FastAPI(
        title="Lapse API",
        description="Delegated access: consent, token exchange and scope-gated REST.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan,
    )

    # CORS: configured origins plus any localhost port.
    origins = list(get_settings().api_cors_allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    mount_v1_routers(app)
    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8888, dev: bool = False) -> None:
    """Start the API server with uvicorn.

    ``log_config=None`` leaves the Rich handler from ``setup_logging`` in
    charge of uvicorn's loggers.  ``dev`` serves the app factory under the
    reloader, watching ``src/``.
    """
    import uvicorn

    logger.info("API docs: http://%s:%d/api/v1/docs", host, port)

    if not dev:
        uvicorn.run(create_api_app(), host=host, port=port, log_config=None)
        return

    src_dir = Path(__file__).resolve().parents[2]
    uvicorn.run(
        "lapse.api.serve:create_api_app",
        factory=True,
        host=host,
        port=port,
        log_config=None,
        reload=True,
        reload_dirs=[str(src_dir)],
    )
