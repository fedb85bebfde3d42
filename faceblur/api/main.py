"""FastAPI entrypoint and HTTP routes."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from faceblur.api.auth import FunctionKeyDependency, FunctionKeyError
from faceblur.config.settings import Settings, get_settings
from faceblur.errors import FaceBlurError
from faceblur.monitoring.logging import configure_logging
from faceblur.services.container import FaceBlurServices, build_services
from faceblur.storage.backend import BlobRef

logger = logging.getLogger(__name__)


class ManualTriggerRequest(BaseModel):
    """Body of the on-demand processing request."""

    model_config = ConfigDict(populate_by_name=True)

    container_name: str | None = Field(default=None, alias="containerName")
    blob_name: str | None = Field(default=None, alias="blobName")


def _error_response(status_code: int, error: str, category: str, details: str | None = None) -> JSONResponse:
    body = {"error": error, "category": category}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def create_app(services: FaceBlurServices | None = None, settings: Settings | None = None) -> FastAPI:
    """Initialise the FastAPI application."""

    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(settings)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title="Face Blur API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services
    app.mount("/metrics", make_asgi_app())

    @app.exception_handler(FunctionKeyError)
    async def function_key_error(request: Request, exc: FunctionKeyError) -> JSONResponse:
        return _error_response(status.HTTP_401_UNAUTHORIZED, str(exc), "unauthorized")

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.post("/api/face-blur/test", tags=["face-blur"], dependencies=[FunctionKeyDependency])
    async def manual_trigger(request: Request) -> JSONResponse:
        """Run the redaction pipeline for one blob on demand."""

        try:
            body = await request.json()
            payload = ManualTriggerRequest.model_validate(body)
        except (ValueError, ValidationError):
            payload = ManualTriggerRequest()
        if not payload.container_name or not payload.blob_name:
            return _error_response(
                status.HTTP_400_BAD_REQUEST,
                "containerName and blobName are required",
                "invalid_request",
            )

        ref = BlobRef(container=payload.container_name, name=payload.blob_name)
        logger.info("Test trigger: Processing %s", ref)
        try:
            outcome = await request.app.state.services.pipeline.process(ref)
        except FaceBlurError as exc:
            logger.error("Test trigger error for %s: %s", ref, exc)
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                exc.category,
                str(exc),
            )
        except Exception as exc:  # pragma: no cover - defensive branch
            logger.exception("Unexpected test trigger failure for %s", ref)
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Internal server error",
                "internal",
                str(exc),
            )

        if outcome.skip_reason == "no_faces":
            message = "No faces detected"
        elif outcome.skipped:
            message = f"Skipped: {outcome.skip_reason}"
        else:
            message = "Successfully processed image"
        return JSONResponse(
            content={
                "message": message,
                "facesFound": outcome.faces_found,
                "facesBlurred": outcome.faces_blurred,
            },
        )

    return app


app = create_app()
