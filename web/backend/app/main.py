"""FastAPI application for the cathub catalog API.

Provides REST API endpoints over the cathub registry service for:
- Servers, per registry and aggregated across registries
- Skills, per registry
- Registry management
- Health and readiness probes

``create_app()`` builds the storage components at startup from the file
named by ``CATHUB_CONFIG`` (default ``config.yaml``) and releases them at
shutdown. Tests pass ready-made components instead. To run it directly::

    uvicorn --factory web.backend.app.main:create_app
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cathub import __version__
from cathub.config import Config, load_config
from cathub.errors import (
    CatalogError,
    ConfigRegistryError,
    NotFoundError,
    NotManagedRegistryError,
    RegistryAlreadyExistsError,
    RegistryNotFoundError,
    UnsupportedOperationError,
    ValidationError,
    VersionAlreadyExistsError,
)
from cathub.storage.factory import StorageComponents, new_storage_factory
from web.backend.app.routers import registries, servers, skills

logger = logging.getLogger(__name__)

# Checked in order; subclasses of ValidationError all land on 400.
_ERROR_STATUS = (
    (NotFoundError, 404),
    (RegistryNotFoundError, 404),
    (NotManagedRegistryError, 403),
    (ConfigRegistryError, 403),
    (VersionAlreadyExistsError, 409),
    (RegistryAlreadyExistsError, 409),
    (ValidationError, 400),
    (UnsupportedOperationError, 501),
)


def status_for(exc: CatalogError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    status = status_for(exc)
    if status == 500:
        logger.error("Unhandled catalog error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=status, content={"detail": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"detail": f"Invalid request: {problems}"})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(
    components: Optional[StorageComponents] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """Build the application.

    With *components*, the app serves them as-is and never releases them.
    Otherwise *config* (or the file named by ``CATHUB_CONFIG``) is loaded at
    startup and a storage factory is built and cleaned up around the app's
    lifetime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if components is not None:
            _install(app, components, config)
            yield
            return

        cfg = config or load_config(os.environ.get("CATHUB_CONFIG", "config.yaml"))
        factory = new_storage_factory(cfg)
        try:
            _install(app, factory.build(), cfg)
            logger.info("cathub API ready with %d registries", len(cfg.registries))
            yield
        finally:
            factory.cleanup()

    app = FastAPI(
        title="cathub API",
        description=(
            "REST API for cathub. Lists, publishes and deletes servers and "
            "skills across many registries with cursor pagination."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # CORS middleware (allow all origins for development)
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # -----------------------------------------------------------------------
    # Include routers
    # -----------------------------------------------------------------------
    app.include_router(servers.aggregated_router)
    app.include_router(servers.router)
    app.include_router(skills.router)
    app.include_router(registries.router)

    # -----------------------------------------------------------------------
    # Root and probe endpoints
    # -----------------------------------------------------------------------

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "cathub API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Liveness probe."""
        return {"status": "healthy"}

    @app.get("/readiness", tags=["meta"])
    async def readiness_check(request: Request):
        """Ready once the registry service can reach its data source."""
        try:
            await run_in_threadpool(request.app.state.registry_service.check_readiness)
        except CatalogError as exc:
            logger.warning("Readiness check failed: %s", exc)
            return JSONResponse(status_code=503, content={"status": "not ready", "detail": str(exc)})
        return {"status": "ready"}

    return app


def _install(app: FastAPI, components: StorageComponents, config: Optional[Config]) -> None:
    app.state.registry_service = components.registry_service
    app.state.state_service = components.state_service
    app.state.enable_aggregated_endpoints = bool(
        config is not None and config.enable_aggregated_endpoints
    )
