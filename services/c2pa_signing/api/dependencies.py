"""FastAPI dependencies for service lookup and authentication.

Services are created in the application lifespan and stored on
``app.state``; handlers reach them through these dependencies.

Authentication is a shared bearer secret. When ``bearer_token`` is not
configured every route is open.
"""

from fastapi import Depends, Header, HTTPException, Request, status

from c2pa_signing.auth.ca import CertificateAuthorityService
from c2pa_signing.auth.tokens import parse_bearer, verify_bearer_token
from c2pa_signing.config import Settings
from c2pa_signing.logging_config import get_logger
from c2pa_signing.services.signing_pipeline import ManifestSigningPipeline
from c2pa_signing.signing import Signer

logger = get_logger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.critical("Service not initialized", service=name)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available",
        )
    return service


def get_ca(request: Request) -> CertificateAuthorityService:
    return _service(request, "ca")


def get_pipeline(request: Request) -> ManifestSigningPipeline:
    return _service(request, "pipeline")


def get_server_signer(request: Request) -> Signer:
    return _service(request, "signer")


async def require_bearer(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests without the configured bearer token."""
    expected = settings.bearer_token
    if not expected:
        return

    if not verify_bearer_token(parse_bearer(authorization), expected):
        logger.warning("Rejected request with missing or invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
