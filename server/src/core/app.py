from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from server.src.core.logging import get_logger

from .. import database
from ..api.routes import health, loggers, nodes, polling, stats
from ..config import Settings
from ..repositories.node_monitor import NodeMonitorRepository
from ..services.collector import Collector

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, *, start_collector: bool = True) -> FastAPI:
    """Construct the FastAPI application with configured lifespan hooks.

    The collector runs inside the lifespan; `start_collector=False` serves the
    read API only.
    """
    settings = settings or Settings()
    database.configure_database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        await database.init_database(settings)

        collector = None
        if start_collector:
            collector = Collector(settings, NodeMonitorRepository(database.get_backend()))
            await collector.start()
        app.state.collector = collector

        try:
            yield
        finally:
            if collector is not None:
                await collector.stop()

    app = FastAPI(
        title="TurtleCoin Node Monitor",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Request-finish middleware: gated by the `api.call` logger level so it can
    # be toggled through logging configuration or the admin API.

    class RequestFinishMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):

            start = time.time()
            response = await call_next(request)
            duration_ms = (time.time() - start) * 1000.0
            access_logger = logging.getLogger("api.call")
            if access_logger.isEnabledFor(logging.DEBUG):
                client = request.client
                client_addr = client.host if client else "-"

                full_path = request.url.path or "/"
                if request.url.query:
                    full_path = f"{full_path}?{request.url.query}"

                access_logger.debug(
                    "Finished %s %s %s %s in %.3fms",
                    client_addr,
                    request.method,
                    full_path,
                    response.status_code,
                    duration_ms,
                )
            return response

    app.add_middleware(RequestFinishMiddleware)

    # Expose settings early so request handlers can access configuration even if
    # startup lifespan hooks are bypassed (e.g. during direct testing scenarios).
    app.state.settings = settings
    app.state.collector = None

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health.router)
    app.include_router(nodes.router)
    app.include_router(stats.router)
    app.include_router(polling.router)
    app.include_router(loggers.router)

    return app
