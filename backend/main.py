#!/usr/bin/env python3
"""
Image Label Resolver - admission helper service
Resolves a pod image's OCI config labels from its registry and returns the
subset that is valid as Kubernetes labels

Endpoints
---------
POST /      pod JSON in, {"labels": {...}} out
GET  /ping  liveness probe

Only registries we hold credentials for (or that are explicitly configured as
anonymous) are queried; images from any other registry resolve to no labels.
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config.settings import AppConfig, HealthCheckFilter, setup_logging
from labels.service import LabelService
from models.label_models import ErrorResponse, LabelsResponse
from registry.credentials import CredentialStore
from registry.errors import (
    BlobDecodeError,
    CredentialsDocumentError,
    PodFormatError,
    ReferenceParseError,
    RegistryError,
)

logger = logging.getLogger(__name__)


def get_label_service(request: Request) -> LabelService:
    """Dependency: the LabelService owned by this application"""
    return request.app.state.label_service


def create_app(service: Optional[LabelService] = None, config=AppConfig) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Prebuilt LabelService (tests, main()). When None, the lifespan
            loads credentials from config.CREDENTIALS_FILE and builds one.
        config: AppConfig-style settings
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        # Validate configuration early to fail fast on misconfiguration
        config.validate()

        logger.info("Starting image label resolver...")

        # Reapply health check filter to uvicorn access logger (must be done after uvicorn starts)
        uvicorn_access = logging.getLogger("uvicorn.access")
        uvicorn_access.addFilter(HealthCheckFilter())

        if getattr(app.state, "label_service", None) is None:
            credentials = CredentialStore.from_file(config.CREDENTIALS_FILE)
            app.state.label_service = LabelService.from_config(config, credentials)
        label_service: LabelService = app.state.label_service

        sweeper = await label_service.start(config.CACHE_SWEEP_INTERVAL)

        yield

        # Shutdown
        logger.info("Shutting down image label resolver...")
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass  # Normal shutdown
        await label_service.close()

    app = FastAPI(
        title="Image Label Resolver",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.label_service = service

    # ==================== Error Handling ====================

    @app.exception_handler(PodFormatError)
    @app.exception_handler(ReferenceParseError)
    async def caller_error_handler(request: Request, exc: Exception):
        """Malformed pod or image: a failed request, never an empty label set"""
        logger.error(f"Rejecting request to {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(RegistryError)
    @app.exception_handler(BlobDecodeError)
    async def registry_error_handler(request: Request, exc: Exception):
        """A trusted registry failed or returned something we cannot read"""
        logger.error(f"Registry lookup failed: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    # ==================== API Routes ====================

    @app.post(
        "/",
        response_model=LabelsResponse,
        responses={500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    )
    async def resolve_labels(request: Request, label_service: LabelService = Depends(get_label_service)):
        """Resolve filtered image labels for the pod in the request body"""
        body = await request.body()
        try:
            pod = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PodFormatError(f"Request body is not valid JSON: {e}")

        try:
            labels = await asyncio.wait_for(
                label_service.resolve_pod_labels(pod),
                timeout=config.REQUEST_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error(f"Label resolution exceeded {config.REQUEST_TIMEOUT}s")
            raise HTTPException(
                status_code=504,
                detail=f"Label resolution timed out after {config.REQUEST_TIMEOUT}s"
            )

        return LabelsResponse(labels=labels)

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping():
        """Liveness probe - no registry involvement"""
        return "OK"

    return app


app = create_app()


def main():
    """Process entry point. Exits nonzero only if startup cannot complete."""
    setup_logging()

    try:
        AppConfig.validate()
        credentials = CredentialStore.from_file(AppConfig.CREDENTIALS_FILE)
    except (CredentialsDocumentError, ValueError) as e:
        logger.critical(f"Startup failed: {e}")
        sys.exit(1)

    label_service = LabelService.from_config(AppConfig, credentials)
    logger.info(f"Listening on {AppConfig.HOST}:{AppConfig.PORT}")
    uvicorn.run(
        create_app(service=label_service),
        host=AppConfig.HOST,
        port=AppConfig.PORT,
        timeout_keep_alive=int(AppConfig.REQUEST_TIMEOUT),
        log_config=None,
    )


if __name__ == "__main__":
    main()
