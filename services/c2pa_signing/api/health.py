"""
Health check endpoints for the C2PA signing service.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

from fastapi import APIRouter, Request, Response, status

from c2pa_signing.logging_config import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """
    Liveness probe endpoint.

    Returns 200 if the API server is running.
    """
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(request: Request, response: Response) -> dict[str, str | dict[str, str]]:
    """
    Readiness probe endpoint.

    Ready once the certificate authority, manifest engine and server
    signer have been initialized.
    """
    state = request.app.state
    checks: dict[str, str] = {
        "certificate_authority": "ready" if getattr(state, "ca", None) else "unavailable",
        "engine": "ready" if getattr(state, "pipeline", None) else "unavailable",
        "signer": "ready" if getattr(state, "signer", None) else "unavailable",
    }

    if any(value != "ready" for value in checks.values()):
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
