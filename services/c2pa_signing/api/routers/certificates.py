"""Certificates router for CA operations.

Consumers:
    Mobile clients (hardware key enrollment):
        POST /api/v1/certificates/sign       certify a CSR
    Signing clients without their own key:
        POST /api/v1/certificates/temporary  1-day certificate plus key
    Anyone validating signatures:
        GET  /api/v1/certificates/ca         root and intermediate certificates
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from c2pa_signing.api.dependencies import get_ca, require_bearer
from c2pa_signing.api.models.certificates import (
    CACertificateResponse,
    CertificateSigningRequestBody,
    SignedCertificateResponse,
    TemporaryCertificateResponse,
)
from c2pa_signing.api.models.common import error_responses
from c2pa_signing.auth.ca import CertificateAuthorityService
from c2pa_signing.errors import CertificateRequestInvalid, ServiceUnavailable
from c2pa_signing.logging_config import get_logger

router = APIRouter(
    prefix="/certificates",
    tags=["certificates"],
    dependencies=[Depends(require_bearer)],
    responses=error_responses(401, 503),
)
logger = get_logger(__name__)


@router.get("/ca", response_model=CACertificateResponse)
async def get_ca_certificates(
    ca: CertificateAuthorityService = Depends(get_ca),
) -> CACertificateResponse:
    """Return the public root and intermediate certificates."""
    return CACertificateResponse(
        root_certificate=ca.root_cert_pem,
        intermediate_certificate=ca.intermediate_cert_pem,
    )


@router.post("/sign", response_model=SignedCertificateResponse, responses=error_responses(400))
async def sign_certificate_request(
    body: CertificateSigningRequestBody,
    ca: CertificateAuthorityService = Depends(get_ca),
) -> SignedCertificateResponse:
    """Issue an end-entity signing certificate for a CSR.

    The key stays with the caller; only the public key in the CSR is certified.
    """
    metadata = body.metadata.to_metadata() if body.metadata else None
    try:
        issued = await run_in_threadpool(ca.sign_csr, body.csr, metadata)
    except CertificateRequestInvalid as e:
        logger.info("Rejected certificate request", reason=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ServiceUnavailable as e:
        logger.critical("Certificate authority unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate authority unavailable",
        ) from e

    return SignedCertificateResponse(
        certificate_id=issued.certificate_id,
        certificate_chain=issued.certificate_chain_pem,
        expires_at=issued.expires_at,
        serial_number=issued.serial_number,
    )


@router.post("/temporary", response_model=TemporaryCertificateResponse)
async def issue_temporary_certificate(
    ca: CertificateAuthorityService = Depends(get_ca),
) -> TemporaryCertificateResponse:
    """Issue a short-lived certificate with a server-generated key."""
    try:
        issued = await run_in_threadpool(ca.issue_temporary_certificate)
    except ServiceUnavailable as e:
        logger.critical("Certificate authority unavailable", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate authority unavailable",
        ) from e

    return TemporaryCertificateResponse(
        certificate_id=issued.certificate_id,
        certificate_chain=issued.certificate_chain_pem,
        expires_at=issued.expires_at,
        serial_number=issued.serial_number,
        private_key=issued.private_key_pem or "",
    )
