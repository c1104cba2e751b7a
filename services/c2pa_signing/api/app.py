"""
FastAPI application factory for the C2PA signing service.

Startup order (lifespan): configure logging -> load/generate CA -> construct
manifest engine -> build the server's default signer -> serve. Services
passed to create_application() are used as-is and skipped at startup.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from c2pa_signing import __version__
from c2pa_signing.auth.ca import CertificateAuthorityService, get_certificate_fingerprint
from c2pa_signing.config import Settings, settings as default_settings
from c2pa_signing.errors import ServiceUnavailable
from c2pa_signing.logging_config import configure_logging, get_logger
from c2pa_signing.services.engine import C2paEngine, ManifestEngine
from c2pa_signing.services.signing_pipeline import ManifestSigningPipeline
from c2pa_signing.signing import Signer
from c2pa_signing.signing.factory import SignerFactory

from .health import router as health_router
from .routers.c2pa import router as c2pa_router
from .routers.certificates import router as certificates_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    settings: Settings = app.state.settings
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting C2PA signing server", version=__version__)

    if app.state.ca is None:
        app.state.ca = await run_in_threadpool(
            CertificateAuthorityService.load_or_generate,
            settings.ca_data_dir,
            settings.certificates,
        )
    logger.info(
        "Certificate Authority initialized",
        root_fingerprint=get_certificate_fingerprint(app.state.ca.root_cert)[:16],
    )

    if app.state.pipeline is None:
        engine = C2paEngine()
        app.state.pipeline = ManifestSigningPipeline(
            engine, verify_after_sign=settings.signing.verify_after_sign
        )
    logger.info("Manifest engine initialized")

    if app.state.signer is None:
        factory = SignerFactory(ca=app.state.ca, signing_config=settings.signing)
        app.state.signer = await run_in_threadpool(factory.server_signer)
    logger.info("Server signer initialized", algorithm=app.state.signer.algorithm.value)

    yield

    logger.info("Shutting down C2PA signing server")


def create_application(
    settings: Settings | None = None,
    ca: CertificateAuthorityService | None = None,
    engine: ManifestEngine | None = None,
    signer: Signer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    app = FastAPI(
        title=settings.app_name,
        description="Certificate issuance and C2PA manifest signing",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings
    app.state.ca = ca
    app.state.pipeline = (
        ManifestSigningPipeline(engine, verify_after_sign=settings.signing.verify_after_sign)
        if engine is not None
        else None
    )
    app.state.signer = signer

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Any:
        """Add request ID to context for logging correlation."""
        request_id = request.headers.get("X-Request-ID")
        if request_id:
            structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)

        if request_id:
            response.headers["X-Request-ID"] = request_id
            structlog.contextvars.unbind_contextvars("request_id")

        return response

    @app.exception_handler(ServiceUnavailable)
    async def service_unavailable_handler(request: Request, exc: ServiceUnavailable) -> JSONResponse:
        """A required service is missing at request time."""
        logger.critical("Service unavailable", error=str(exc), path=str(request.url.path))
        return JSONResponse(
            status_code=503,
            content={"detail": "Service unavailable"},
        )

    # Exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # API v1 routers
    app.include_router(certificates_router, prefix=settings.api_prefix)
    app.include_router(c2pa_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_application()
