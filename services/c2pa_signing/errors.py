"""Error taxonomy for signing and certificate issuance.

Validation errors (CertificateRequestInvalid, MalformedSignature,
UnsupportedAlgorithm) are caller mistakes and map to 4xx responses.
SigningFailed and the remote-call failures are operational errors and map to
5xx with a generic message. ServiceUnavailable means the process was not
initialized correctly and is treated as fatal.
"""


class C2PASigningError(Exception):
    """Base class for all service errors."""


class CertificateRequestInvalid(C2PASigningError):
    """CSR is missing, malformed, or carries an invalid self-signature."""


class CertificateChainInvalid(C2PASigningError):
    """A certificate chain does not validate against this CA."""


class MalformedSignature(C2PASigningError):
    """A DER or raw ECDSA signature could not be decoded."""


class ManifestInvalid(C2PASigningError):
    """Manifest definition is not a JSON object or the asset format is unusable."""


class SigningFailed(C2PASigningError):
    """A signer did not produce a usable signature."""


class SignerConfigurationError(C2PASigningError):
    """Signer material is inconsistent (e.g. key type does not match algorithm)."""


class UnsupportedAlgorithm(SignerConfigurationError):
    """Algorithm name is unknown or not supported for fixed-width signing."""

    def __init__(self, algorithm: str) -> None:
        super().__init__(f"Unsupported algorithm: {algorithm}")
        self.algorithm = algorithm


class ConfigurationFetchFailed(C2PASigningError):
    """Remote signer configuration could not be fetched or parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EnrollmentFailed(C2PASigningError):
    """Hardware key enrollment with a remote CA failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KeyStoreError(C2PASigningError):
    """Keystore lookup, generation or signing failed."""


class ServiceUnavailable(C2PASigningError):
    """A required service (CA keys, manifest engine) is not available."""
