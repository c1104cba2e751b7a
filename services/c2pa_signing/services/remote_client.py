"""Client for remote signing servers.

Covers the three outbound calls a signer may need:
- GET  {server}/api/v1/c2pa/configuration  (remote signer parameters)
- POST {server}/api/v1/certificates/sign   (hardware key enrollment)
- POST {signing_url}                       (raw signature over bytes)

Calls are synchronous because they run inside signing callbacks, which the
manifest engine invokes synchronously. Every call is a single attempt.
"""

import base64
import binascii
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from c2pa_signing.auth.ca import CSRMetadata
from c2pa_signing.auth.tokens import authorization_headers
from c2pa_signing.config import settings
from c2pa_signing.errors import (
    ConfigurationFetchFailed,
    EnrollmentFailed,
    SigningFailed,
)
from c2pa_signing.logging_config import get_logger
from c2pa_signing.signing import CallbackSigner, SigningAlgorithm
from c2pa_signing.signing.keystore import KeyStore, SubjectInfo

logger = get_logger(__name__)

CONFIGURATION_PATH = "/api/v1/c2pa/configuration"
ENROLLMENT_PATH = "/api/v1/certificates/sign"


@dataclass(frozen=True)
class RemoteSignerConfiguration:
    """Parameters advertised by a remote signing server."""

    algorithm: SigningAlgorithm
    timestamp_url: str
    signing_url: str
    certificate_chain_pem: str


def configuration_url(remote_url: str) -> str:
    """Resolve the configuration endpoint for a server base URL."""
    url = remote_url.rstrip("/")
    if url.endswith(CONFIGURATION_PATH):
        return url
    return url + CONFIGURATION_PATH


class RemoteConfigurationClient:
    """Synchronous HTTP client for remote configuration, enrollment and signing."""

    def __init__(
        self,
        keystore: KeyStore | None = None,
        client: httpx.Client | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._keystore = keystore
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=timeout_seconds or settings.remote.timeout_seconds
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RemoteConfigurationClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Configuration ────────────────────────────────────────────────────

    def fetch_configuration(
        self,
        remote_url: str,
        bearer_token: str | None = None,
    ) -> RemoteSignerConfiguration:
        """Fetch the signer configuration advertised by a remote server.

        Raises ConfigurationFetchFailed with the HTTP status for non-2xx
        responses, and without one for transport errors or a malformed payload.
        An algorithm this service cannot sign with raises UnsupportedAlgorithm.
        """
        url = configuration_url(remote_url)
        try:
            resp = self._client.get(url, headers=authorization_headers(bearer_token))
        except httpx.HTTPError as e:
            logger.warning("Configuration fetch failed", url=url, error=str(e))
            raise ConfigurationFetchFailed(f"Could not reach {url}") from e

        if not resp.is_success:
            logger.warning("Configuration fetch rejected", url=url, status_code=resp.status_code)
            raise ConfigurationFetchFailed(
                f"Configuration request returned {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
            algorithm_name = payload["algorithm"]
            signing_url = payload["signing_url"]
            chain_b64 = payload["certificate_chain"]
            timestamp_url = payload.get("timestamp_url") or ""
            chain_pem = base64.b64decode(chain_b64, validate=True).decode()
        except (ValueError, KeyError, TypeError, binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationFetchFailed("Malformed configuration payload") from e

        if not isinstance(algorithm_name, str) or not isinstance(timestamp_url, str):
            raise ConfigurationFetchFailed("Malformed configuration payload")
        if "BEGIN CERTIFICATE" not in chain_pem:
            raise ConfigurationFetchFailed("Configuration certificate chain is not PEM")
        if not isinstance(signing_url, str) or not signing_url:
            raise ConfigurationFetchFailed("Configuration is missing a signing URL")

        config = RemoteSignerConfiguration(
            algorithm=SigningAlgorithm.parse(algorithm_name),
            timestamp_url=timestamp_url,
            signing_url=signing_url,
            certificate_chain_pem=chain_pem,
        )
        logger.info(
            "Fetched remote signer configuration",
            url=url,
            algorithm=config.algorithm.value,
            signing_url=config.signing_url,
        )
        return config

    # ── Enrollment ───────────────────────────────────────────────────────

    def enroll_hardware_key(
        self,
        alias: str,
        remote_url: str,
        bearer_token: str | None = None,
        subject: SubjectInfo | None = None,
        metadata: CSRMetadata | None = None,
    ) -> str:
        """Have a remote CA certify the keystore key ``alias``. Returns the chain PEM."""
        if self._keystore is None:
            raise EnrollmentFailed("No keystore configured for enrollment")

        csr_pem = self._keystore.create_csr(alias, subject)
        body: dict[str, Any] = {"csr": csr_pem}
        if metadata is not None:
            body["metadata"] = {k: v for k, v in asdict(metadata).items() if v is not None}

        url = remote_url.rstrip("/") + ENROLLMENT_PATH
        try:
            resp = self._client.post(url, json=body, headers=authorization_headers(bearer_token))
        except httpx.HTTPError as e:
            logger.warning("Enrollment request failed", url=url, alias=alias, error=str(e))
            raise EnrollmentFailed(f"Could not reach {url}") from e

        if not resp.is_success:
            logger.warning(
                "Enrollment rejected", url=url, alias=alias, status_code=resp.status_code
            )
            raise EnrollmentFailed(
                f"Enrollment returned {resp.status_code}", status_code=resp.status_code
            )

        try:
            payload = resp.json()
            chain_pem = payload["certificate_chain"]
        except (ValueError, KeyError, TypeError) as e:
            raise EnrollmentFailed("Malformed enrollment response") from e
        if not isinstance(chain_pem, str) or "BEGIN CERTIFICATE" not in chain_pem:
            raise EnrollmentFailed("Enrollment response does not contain a PEM chain")

        logger.info(
            "Enrolled hardware key",
            alias=alias,
            url=url,
            certificate_id=payload.get("certificate_id"),
            serial_number=payload.get("serial_number"),
        )
        return chain_pem

    # ── Remote Signing ───────────────────────────────────────────────────

    def sign_remote(
        self,
        signing_url: str,
        data: bytes,
        bearer_token: str | None = None,
    ) -> bytes:
        """POST bytes to a remote signer and return the decoded signature."""
        body = {"dataToSign": base64.b64encode(data).decode()}
        try:
            resp = self._client.post(
                signing_url, json=body, headers=authorization_headers(bearer_token)
            )
        except httpx.HTTPError as e:
            logger.warning("Remote signing request failed", url=signing_url, error=str(e))
            raise SigningFailed(f"Could not reach {signing_url}") from e

        if not resp.is_success:
            logger.warning(
                "Remote signing rejected", url=signing_url, status_code=resp.status_code
            )
            raise SigningFailed(f"Remote signer returned {resp.status_code}")

        try:
            return base64.b64decode(resp.json()["signature"], validate=True)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise SigningFailed("Malformed remote signing response") from e

    def remote_signer(
        self,
        config: RemoteSignerConfiguration,
        bearer_token: str | None = None,
    ) -> CallbackSigner:
        """A signer whose raw-sign step is a call to ``config.signing_url``."""
        return CallbackSigner(
            algorithm=config.algorithm,
            certificate_chain_pem=config.certificate_chain_pem,
            callback=lambda data: self.sign_remote(config.signing_url, data, bearer_token),
            timestamp_authority_url=config.timestamp_url or None,
        )
