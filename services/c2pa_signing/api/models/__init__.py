"""C2PA signing API Pydantic models."""

from .c2pa import (
    ManifestSigningRequestBody,
    ManifestSigningResponse,
    RawSigningRequestBody,
    RawSigningResponse,
    SignatureInfoModel,
    SignerConfigurationResponse,
)
from .certificates import (
    CACertificateResponse,
    CertificateSigningRequestBody,
    CSRMetadataModel,
    SignedCertificateResponse,
    TemporaryCertificateResponse,
)
from .common import ErrorResponse, SigningBaseModel, SigningResponseModel, error_responses

__all__ = [
    # Common
    "ErrorResponse",
    "SigningBaseModel",
    "SigningResponseModel",
    "error_responses",
    # Certificates
    "CACertificateResponse",
    "CertificateSigningRequestBody",
    "CSRMetadataModel",
    "SignedCertificateResponse",
    "TemporaryCertificateResponse",
    # C2PA
    "ManifestSigningRequestBody",
    "ManifestSigningResponse",
    "RawSigningRequestBody",
    "RawSigningResponse",
    "SignatureInfoModel",
    "SignerConfigurationResponse",
]
