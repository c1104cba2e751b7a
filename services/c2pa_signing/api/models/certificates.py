"""Certificate-related Pydantic models."""

from datetime import datetime

from pydantic import AliasChoices, Field

from c2pa_signing.auth.ca import CSRMetadata

from .common import SigningBaseModel, SigningResponseModel


def _either(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class CSRMetadataModel(SigningBaseModel):
    """Optional CSR context. Accepts snake_case or camelCase keys."""

    device_id: str | None = Field(default=None, validation_alias=_either("device_id", "deviceId"))
    app_version: str | None = Field(
        default=None, validation_alias=_either("app_version", "appVersion")
    )
    purpose: str | None = None
    common_name: str | None = Field(
        default=None, max_length=64, validation_alias=_either("common_name", "commonName")
    )
    organization: str | None = Field(default=None, max_length=64)
    organizational_unit: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=_either("organizational_unit", "organizationalUnit"),
    )
    country: str | None = Field(default=None, min_length=2, max_length=2)
    state: str | None = Field(default=None, max_length=128)
    locality: str | None = Field(default=None, max_length=128)

    def to_metadata(self) -> CSRMetadata:
        return CSRMetadata(**self.model_dump())


class CertificateSigningRequestBody(SigningBaseModel):
    """Request to certify a caller-held key."""

    csr: str = Field(..., min_length=1, description="PEM-encoded PKCS#10 certificate request")
    metadata: CSRMetadataModel | None = None


class SignedCertificateResponse(SigningResponseModel):
    """Issued end-entity certificate."""

    certificate_id: str
    certificate_chain: str = Field(description="PEM chain: end-entity, intermediate, root")
    expires_at: datetime
    serial_number: str = Field(description="Lowercase hex serial number")


class TemporaryCertificateResponse(SignedCertificateResponse):
    """Short-lived certificate with its server-generated key."""

    private_key: str = Field(description="PEM-encoded P-256 private key (PKCS#8)")


class CACertificateResponse(SigningResponseModel):
    """Response containing the public CA certificates."""

    root_certificate: str = Field(description="PEM-encoded root CA certificate")
    intermediate_certificate: str = Field(description="PEM-encoded intermediate CA certificate")
