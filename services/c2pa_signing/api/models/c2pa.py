"""C2PA signing Pydantic models.

Field names follow the mobile client wire format (camelCase for manifest
signing, snake_case for configuration).
"""

from datetime import datetime

from pydantic import AliasChoices, Field

from .common import SigningBaseModel, SigningResponseModel


class ManifestSigningRequestBody(SigningBaseModel):
    """Manifest signing request. ``imageData`` is required for JSON bodies only."""

    manifest_json: str = Field(..., alias="manifestJSON", min_length=1)
    format: str = Field(..., min_length=1, description="Asset MIME type, e.g. image/jpeg")
    image_data: str | None = Field(default=None, alias="imageData", description="Base64 asset")


class SignatureInfoModel(SigningResponseModel):
    algorithm: str
    certificate_chain: str | None = Field(default=None, alias="certificateChain")
    timestamp: datetime


class ManifestSigningResponse(SigningResponseModel):
    manifest_store: str = Field(alias="manifestStore", description="Base64 signed asset")
    signature_info: SignatureInfoModel = Field(alias="signatureInfo")


class RawSigningRequestBody(SigningBaseModel):
    """Remote signer request: bytes to sign, base64 encoded. May be empty."""

    data_to_sign: str = Field(..., validation_alias=AliasChoices("dataToSign", "claim"))


class RawSigningResponse(SigningResponseModel):
    signature: str = Field(description="Base64 raw signature")


class SignerConfigurationResponse(SigningResponseModel):
    """Parameters a client needs to use this server as a remote signer."""

    algorithm: str
    timestamp_url: str
    signing_url: str
    certificate_chain: str = Field(description="Base64 of the PEM chain")
